from __future__ import annotations

import asyncio
import logging
import threading

import numpy as np

from .assets import Fetcher, UrllibFetcher
from .config import EngineSettings, SequencerModel, Track, TrackParams
from .dispatch import VoiceDispatcher
from .errors import EngineNotReadyError
from .graph import DESTINATION, Gain, GraphBuilder, Oscillator, Param
from .notes import is_rest
from .render import Renderer
from .samples import SampleLibrary
from .scheduler import StepScheduler
from .soundfonts import SoundfontLibrary

_LOGGER = logging.getLogger("beatgrid.engine")

WARMUP_SECONDS = 0.001


class Engine:
    """Owns the rendering context and wires scheduler, dispatcher and asset libraries.

    Nothing plays before :meth:`init`; every playback call on an engine that
    is not initialized raises :class:`EngineNotReadyError`.
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        fetcher: Fetcher | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self._fetcher = fetcher or UrllibFetcher(timeout=self.settings.fetch_timeout)
        self._rng = rng if rng is not None else np.random.default_rng(self.settings.seed)
        self._renderer: Renderer | None = None
        self._samples: SampleLibrary | None = None
        self._soundfonts: SoundfontLibrary | None = None
        self._dispatcher: VoiceDispatcher | None = None
        self._scheduler: StepScheduler | None = None
        self._model: SequencerModel | None = None
        self._lock = threading.RLock()
        self._init_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self._renderer is not None

    @property
    def is_playing(self) -> bool:
        return self._scheduler is not None and self._scheduler.is_running

    async def init(self, *, load_sample_map: bool = True) -> None:
        """Create the rendering context and fetch the sample map. Idempotent.

        Concurrent callers share one initialization.
        """
        async with self._init_lock:
            if self._renderer is None:
                await self._build(load_sample_map)

    async def _build(self, load_sample_map: bool) -> None:
        settings = self.settings
        renderer = Renderer(settings.sample_rate)
        self._warmup(renderer)
        samples = SampleLibrary(self._fetcher, map_url=settings.sample_map_url)
        soundfonts = SoundfontLibrary(self._fetcher, base_url=settings.soundfont_base_url)
        if load_sample_map:
            await samples.init()
        with self._lock:
            self._renderer = renderer
            self._samples = samples
            self._soundfonts = soundfonts
            self._dispatcher = VoiceDispatcher(
                renderer,
                samples=samples,
                soundfonts=soundfonts,
                note_duration=settings.note_duration,
                sample_rate=settings.sample_rate,
                rng=self._rng,
            )
            self._scheduler = StepScheduler(
                renderer,
                lookahead=settings.lookahead,
                tick_interval=settings.tick_interval,
                steps=settings.steps,
            )
        _LOGGER.info("Engine initialized at %d Hz", settings.sample_rate)

    @staticmethod
    def _warmup(renderer: Renderer) -> None:
        """Push one silent voice through the renderer to prime the mix path."""
        builder = GraphBuilder("warmup")
        osc = builder.add(Oscillator("sine", Param(440.0), stop=WARMUP_SECONDS))
        silent = builder.add(Gain(Param(0.0)))
        builder.connect(builder.chain(osc, silent), DESTINATION)
        renderer.submit(builder.build(renderer.current_time))

    def _require(self) -> tuple[Renderer, VoiceDispatcher, StepScheduler]:
        renderer, dispatcher, scheduler = self._renderer, self._dispatcher, self._scheduler
        if renderer is None or dispatcher is None or scheduler is None:
            raise EngineNotReadyError("engine is not initialized; call init() first")
        return renderer, dispatcher, scheduler

    def start(self, model: SequencerModel, *, autorun: bool = True) -> None:
        """Begin stepping through ``model`` at its current tempo.

        With ``autorun=False`` no timer task is created and the caller drives
        :meth:`tick` (used for offline rendering).
        """
        with self._lock:
            renderer, _, scheduler = self._require()
            if scheduler.is_running:
                _LOGGER.debug("Engine already playing; start ignored")
                return
            self._model = model
            renderer.master_gain = model.master_volume
            scheduler.autorun = autorun
            scheduler.start(model.bpm, self._on_step)

    def tick(self, until: float | None = None) -> int:
        _, _, scheduler = self._require()
        return scheduler.tick(until)

    def stop(self) -> None:
        with self._lock:
            if self._scheduler is not None:
                self._scheduler.stop()

    async def dispose(self) -> None:
        """Stop playback, cancel deferred voices and release the rendering context."""
        with self._lock:
            self.stop()
            dispatcher, self._dispatcher = self._dispatcher, None
            samples, self._samples = self._samples, None
            soundfonts, self._soundfonts = self._soundfonts, None
            renderer, self._renderer = self._renderer, None
            self._scheduler = None
            self._model = None
        if dispatcher is not None:
            dispatcher.close()
        if samples is not None:
            samples.close()
        if soundfonts is not None:
            soundfonts.close()
        if renderer is not None:
            renderer.close()
            _LOGGER.info("Engine disposed")

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------

    @property
    def renderer(self) -> Renderer:
        return self._require()[0]

    @property
    def dispatcher(self) -> VoiceDispatcher:
        return self._require()[1]

    @property
    def scheduler(self) -> StepScheduler:
        return self._require()[2]

    @property
    def samples(self) -> SampleLibrary:
        self._require()
        assert self._samples is not None
        return self._samples

    @property
    def soundfonts(self) -> SoundfontLibrary:
        self._require()
        assert self._soundfonts is not None
        return self._soundfonts

    def set_master_volume(self, volume: float) -> None:
        renderer, _, _ = self._require()
        renderer.master_gain = volume

    def play_sound(
        self,
        sound_id: str,
        params: TrackParams | None = None,
        *,
        drum_bank: str | None = None,
        when: float | None = None,
    ) -> int | None:
        _, dispatcher, _ = self._require()
        return dispatcher.dispatch(sound_id, params, drum_bank=drum_bank, when=when)

    def play_note(
        self,
        note: str,
        sound_id: str,
        params: TrackParams | None = None,
        *,
        when: float | None = None,
    ) -> int | None:
        _, dispatcher, _ = self._require()
        return dispatcher.play_note(note, sound_id, params, when=when)

    # ------------------------------------------------------------------
    # Step handling
    # ------------------------------------------------------------------

    def _on_step(self, step: int, when: float) -> None:
        model, dispatcher = self._model, self._dispatcher
        if model is None or dispatcher is None:
            return
        model.on_step(step)
        for track in model.active_tracks:
            self._play_track(dispatcher, track, step, when)

    @staticmethod
    def _play_track(dispatcher: VoiceDispatcher, track: Track, step: int, when: float) -> None:
        if not track.is_melodic:
            if track.pattern[step % len(track.pattern)]:
                dispatcher.dispatch(
                    track.sound_id, track.params, drum_bank=track.drum_bank, when=when
                )
            return
        # Eight notes over sixteen steps: melodic tracks play on even steps.
        if step % 2:
            return
        note = track.notes[(step // 2) % len(track.notes)]
        if note and not is_rest(note):
            dispatcher.play_note(note, track.sound_id, track.params, when=when)
