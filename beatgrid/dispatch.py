from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any, Protocol

import numpy as np

from .audio import SAMPLE_RATE
from .config import TrackParams
from .errors import InvalidGraphError
from .graph import VoiceGraph
from .logging_utils import log_exception
from .notes import is_rest, note_to_frequency, note_to_midi
from .samples import SampleLibrary
from .soundfonts import SoundfontLibrary, is_gm_instrument
from .voices import Sample, SoundfontNote, Voice, build_voice, resolve_note, resolve_sound

_LOGGER = logging.getLogger("beatgrid.dispatch")

DRUM_DEFAULTS = TrackParams()
NOTE_DEFAULTS = TrackParams(gain=0.5, lpf=5000.0)
NOTE_DURATION = 0.3


class VoiceSink(Protocol):
    @property
    def current_time(self) -> float: ...

    def submit(self, graph: VoiceGraph) -> int: ...


class VoiceDispatcher:
    """Turns sound ids and notes into voices on a :class:`VoiceSink`.

    Asset-backed sounds play straight from cache when possible. A miss
    starts a background load (never blocking the caller) and the voice
    plays when it lands, or is synthesized instead if the load fails.
    """

    def __init__(
        self,
        sink: VoiceSink,
        *,
        samples: SampleLibrary | None = None,
        soundfonts: SoundfontLibrary | None = None,
        note_duration: float = NOTE_DURATION,
        sample_rate: int = SAMPLE_RATE,
        rng: np.random.Generator | None = None,
    ) -> None:
        self._sink = sink
        self._samples = samples
        self._soundfonts = soundfonts
        self.note_duration = note_duration
        self._sample_rate = sample_rate
        self._rng = rng if rng is not None else np.random.default_rng()
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def closed(self) -> bool:
        return self._closed

    def dispatch(
        self,
        sound_id: str,
        params: TrackParams | None = None,
        *,
        drum_bank: str | None = None,
        when: float | None = None,
    ) -> int | None:
        """Play ``sound_id`` at ``when`` (default: now).

        Returns the voice id, or ``None`` when the voice was deferred to a
        background sample load.
        """
        params = params or DRUM_DEFAULTS
        start = self._start_time(when)
        samples = self._samples
        if drum_bank and samples is not None and samples.has_samples(drum_bank, sound_id):
            label = f"{drum_bank}_{sound_id}"
            cached = samples.peek(drum_bank, sound_id)
            if cached is not None:
                return self.play_voice(Sample(cached, label=label), params, when=start)
            if self._spawn(self._sample_when_loaded(drum_bank, sound_id, params, start)):
                return None
        elif drum_bank:
            _LOGGER.debug("No %s samples for %s, synthesizing", drum_bank, sound_id)
        return self.play_voice(resolve_sound(sound_id), params, when=start)

    def play_note(
        self,
        note: str,
        sound_id: str,
        params: TrackParams | None = None,
        *,
        when: float | None = None,
        duration: float | None = None,
    ) -> int | None:
        """Play a pitch string on a melodic sound. Rests schedule nothing."""
        if is_rest(note):
            return None
        params = params or NOTE_DEFAULTS
        start = self._start_time(when)
        length = duration if duration is not None else self.note_duration
        frequency = note_to_frequency(note)
        soundfonts = self._soundfonts
        if soundfonts is not None and is_gm_instrument(sound_id):
            midi_note = note_to_midi(note)
            instrument = soundfonts.peek(sound_id)
            if instrument is not None:
                return self.play_voice(
                    SoundfontNote(instrument, midi_note, length), params, when=start
                )
            if self._spawn(
                self._note_when_loaded(sound_id, midi_note, frequency, length, params, start)
            ):
                return None
        return self.play_voice(resolve_note(sound_id, frequency, length), params, when=start)

    def play_voice(self, voice: Voice, params: TrackParams, *, when: float) -> int | None:
        if self._closed:
            return None
        try:
            graph = build_voice(
                voice, when, params, rng=self._rng, sample_rate=self._sample_rate
            )
        except InvalidGraphError as exc:
            _LOGGER.warning("Dropping malformed voice %s: %s", type(voice).__name__, exc)
            return None
        if graph is None:
            return None
        return self._sink.submit(graph)

    def _start_time(self, when: float | None) -> float:
        now = self._sink.current_time
        return now if when is None else max(when, now)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> bool:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return False
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return True

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _LOGGER.error("Deferred voice failed: %s", exc, exc_info=exc)
            log_exception("deferred voice", exc)

    async def _sample_when_loaded(
        self, drum_bank: str, sound_id: str, params: TrackParams, when: float
    ) -> None:
        assert self._samples is not None
        buffer = await self._samples.load_sample(drum_bank, sound_id)
        if self._closed:
            return
        start = self._start_time(when)
        if buffer is None:
            _LOGGER.info("Sample %s_%s unavailable, synthesizing", drum_bank, sound_id)
            self.play_voice(resolve_sound(sound_id), params, when=start)
            return
        self.play_voice(Sample(buffer, label=f"{drum_bank}_{sound_id}"), params, when=start)

    async def _note_when_loaded(
        self,
        name: str,
        midi_note: int,
        frequency: float,
        duration: float,
        params: TrackParams,
        when: float,
    ) -> None:
        assert self._soundfonts is not None
        instrument = await self._soundfonts.load_instrument(name)
        if self._closed:
            return
        start = self._start_time(when)
        if instrument is None:
            self.play_voice(resolve_note(name, frequency, duration), params, when=start)
            return
        self.play_voice(SoundfontNote(instrument, midi_note, duration), params, when=start)

    async def wait_pending(self) -> None:
        """Wait for every deferred voice started so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        self._closed = True
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
