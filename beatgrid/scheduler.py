"""Lookahead step clock.

A coarse timer wakes every ``tick_interval`` seconds and fires every step
whose deadline falls inside ``[now, now + lookahead)`` of the *audio* clock.
Deadlines advance by exactly one step duration each time, so timer jitter
never accumulates into drift; it only changes how early a step is fired.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from typing import Protocol

from .config import MAX_BPM, MIN_BPM, STEPS
from .errors import EngineNotReadyError, InvalidTempoError

_LOGGER = logging.getLogger("beatgrid.scheduler")

LOOKAHEAD = 0.1
TICK_INTERVAL = 0.025

StepCallback = Callable[[int, float], None]


class AudioClock(Protocol):
    @property
    def current_time(self) -> float: ...


def step_duration(bpm: float) -> float:
    """Length of one sixteenth note in seconds."""
    return 60.0 / bpm / 4.0


def validate_bpm(bpm: float) -> float:
    if not MIN_BPM <= bpm <= MAX_BPM:
        raise InvalidTempoError(f"bpm must be within {MIN_BPM}..{MAX_BPM}, got {bpm}")
    return float(bpm)


class StepScheduler:
    def __init__(
        self,
        clock: AudioClock | None,
        *,
        lookahead: float = LOOKAHEAD,
        tick_interval: float = TICK_INTERVAL,
        steps: int = STEPS,
        autorun: bool = True,
    ) -> None:
        self._clock = clock
        self.lookahead = lookahead
        self.tick_interval = tick_interval
        self.steps = steps
        self.autorun = autorun
        self._bpm = 120.0
        self._step_duration = step_duration(self._bpm)
        self._current_step = 0
        self._next_deadline = 0.0
        self._running = False
        self._on_step: StepCallback | None = None
        self._task: asyncio.Task[None] | None = None
        self._lock = threading.RLock()

    @property
    def bpm(self) -> float:
        return self._bpm

    @property
    def step_duration(self) -> float:
        return self._step_duration

    @property
    def current_step(self) -> int:
        return self._current_step

    @property
    def next_deadline(self) -> float:
        return self._next_deadline

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, bpm: float, on_step: StepCallback) -> None:
        """Start from step 0 with the first deadline at the current audio time.

        A second ``start`` while running is ignored. The tempo is fixed until
        the next ``stop``/``start``.
        """
        bpm = validate_bpm(bpm)
        with self._lock:
            if self._running:
                _LOGGER.debug("Scheduler already running; start ignored")
                return
            if self._clock is None:
                raise EngineNotReadyError("scheduler has no audio clock")
            loop: asyncio.AbstractEventLoop | None = None
            if self.autorun:
                try:
                    loop = asyncio.get_running_loop()
                except RuntimeError as exc:
                    raise EngineNotReadyError("scheduler autorun needs a running event loop") from exc
            self._bpm = bpm
            self._step_duration = step_duration(bpm)
            self._on_step = on_step
            self._current_step = 0
            self._next_deadline = self._clock.current_time
            self._running = True
            if loop is not None:
                self._task = loop.create_task(self._run())
        _LOGGER.info("Scheduler started at %.1f BPM (step %.4fs)", bpm, self._step_duration)

    def tick(self, until: float | None = None) -> int:
        """Fire every step due within the lookahead window; returns how many fired.

        ``until`` caps the window so offline renders stop at an exact time.
        """
        with self._lock:
            if not self._running or self._clock is None or self._on_step is None:
                return 0
            horizon = self._clock.current_time + self.lookahead
            if until is not None:
                horizon = min(horizon, until)
            fired = 0
            while self._running and self._next_deadline < horizon:
                step, when = self._current_step, self._next_deadline
                try:
                    self._on_step(step, when)
                except Exception:
                    _LOGGER.exception("Step callback failed at step %d", step)
                self._next_deadline += self._step_duration
                self._current_step = (self._current_step + 1) % self.steps
                fired += 1
            return fired

    async def _run(self) -> None:
        while self._running:
            self.tick()
            await asyncio.sleep(self.tick_interval)

    def stop(self) -> None:
        """Stop firing. Safe from inside a step callback and when already stopped."""
        with self._lock:
            was_running = self._running
            self._running = False
            task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        if was_running:
            _LOGGER.info("Scheduler stopped at step %d", self._current_step)
