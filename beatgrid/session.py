from __future__ import annotations

import logging
from pathlib import Path
from types import TracebackType

import numpy as np

from .assets import Fetcher
from .audio import write_wav
from .config import EngineSettings, Project, SequencerModel
from .engine import Engine
from .errors import PlaybackError
from .playback import LiveOutput, PlaybackBackend
from .scheduler import step_duration

_LOGGER = logging.getLogger("beatgrid.session")


class Session:
    """Top-level owner of one engine, its project and its audio output.

    Sessions share no state, so several can coexist in one process.
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        project: Project | None = None,
        fetcher: Fetcher | None = None,
        backend: PlaybackBackend | None = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.project = project or Project()
        self.engine = Engine(self.settings, fetcher=fetcher)
        self._backend = backend
        self._output: LiveOutput | None = None

    async def __aenter__(self) -> Session:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def open(self) -> None:
        await self.engine.init()

    @property
    def is_playing(self) -> bool:
        return self.engine.is_playing

    async def play(self, model: SequencerModel | None = None) -> None:
        """Start real-time playback through the output backend."""
        await self.engine.init()
        if self._output is None:
            self._output = LiveOutput(
                self.engine.renderer.render,
                sample_rate=self.settings.sample_rate,
                block_size=self.settings.block_size,
                backend=self._backend,
            )
        self._output.start()
        self.engine.start(model or self.project)

    def stop(self) -> None:
        self.engine.stop()
        if self._output is not None:
            self._output.stop()

    async def close(self) -> None:
        self.stop()
        self._output = None
        await self.engine.dispose()

    async def bounce(
        self,
        path: str | Path,
        *,
        bars: int = 1,
        model: SequencerModel | None = None,
        tail: float = 1.0,
    ) -> Path:
        """Render ``bars`` bars offline to a wav file, faster than real time.

        Sample and soundfont loads are awaited block by block, so the result
        does not depend on network speed.
        """
        if self.engine.is_playing:
            raise PlaybackError("stop live playback before bouncing")
        await self.engine.init()
        model = model or self.project
        renderer = self.engine.renderer
        block = self.settings.block_size
        sample_rate = self.settings.sample_rate
        length = bars * self.settings.steps * step_duration(model.bpm)
        start_time = renderer.current_time
        total_frames = int(round((length + tail) * sample_rate))
        end_time = start_time + length

        blocks: list[np.ndarray] = []
        self.engine.start(model, autorun=False)
        try:
            rendered = 0
            while rendered < total_frames:
                self.engine.tick(until=end_time)
                await self.engine.dispatcher.wait_pending()
                frames = min(block, total_frames - rendered)
                blocks.append(renderer.render(frames))
                rendered += frames
        finally:
            self.engine.stop()

        audio = np.concatenate(blocks, axis=0) if blocks else np.zeros((0, 2), dtype=np.float32)
        target = write_wav(path, audio, sample_rate=sample_rate)
        _LOGGER.info(
            "Bounced %d bar(s) from t=%.3fs to %s (%.2fs)",
            bars,
            start_time,
            target,
            audio.shape[0] / sample_rate,
        )
        return target
