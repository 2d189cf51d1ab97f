from __future__ import annotations

import logging
from typing import Any, Callable, Protocol

from pydantic import BaseModel, ConfigDict

from .audio import FloatArray
from .errors import PlaybackError

_LOGGER = logging.getLogger("beatgrid.playback")

BlockSource = Callable[[int], FloatArray]


class OutputStream(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...

    def close(self) -> None: ...


class PlaybackBackend(BaseModel):
    name: str
    open_stream: Callable[[BlockSource, int, int], OutputStream]

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


def _load_backend() -> PlaybackBackend | None:
    return _load_sounddevice()


def resolve_backend() -> PlaybackBackend:
    backend = _load_backend()
    if backend is None:
        raise PlaybackError(
            "Real-time playback requires sounddevice. "
            "Install beatgrid[audio] (or render offline with Session.bounce())."
        )
    return backend


def _load_sounddevice() -> PlaybackBackend | None:
    try:
        import sounddevice as sd_module  # type: ignore[import]
    except (ImportError, OSError) as exc:
        # OSError: the PortAudio library itself is missing.
        _LOGGER.info("sounddevice not available: %s", exc, exc_info=True)
        return None
    sd: Any = sd_module

    def _open_stream(pull: BlockSource, sample_rate: int, block_size: int) -> OutputStream:
        def _callback(outdata: Any, frames: int, time_info: Any, status: Any) -> None:
            if status:
                _LOGGER.debug("Output stream status: %s", status)
            outdata[:] = pull(frames)

        stream: OutputStream = sd.OutputStream(
            samplerate=sample_rate,
            blocksize=block_size,
            channels=2,
            dtype="float32",
            callback=_callback,
        )
        return stream

    return PlaybackBackend(name="sounddevice", open_stream=_open_stream)


class LiveOutput:
    """Pulls stereo blocks from ``pull`` on the device thread.

    The renderer's clock only advances while this is running.
    """

    def __init__(
        self,
        pull: BlockSource,
        *,
        sample_rate: int,
        block_size: int = 512,
        backend: PlaybackBackend | None = None,
    ) -> None:
        self._pull = pull
        self.sample_rate = sample_rate
        self.block_size = block_size
        self._backend = backend
        self._stream: OutputStream | None = None

    @property
    def active(self) -> bool:
        return self._stream is not None

    def start(self) -> None:
        if self._stream is not None:
            return
        backend = self._backend or resolve_backend()
        stream = backend.open_stream(self._pull, self.sample_rate, self.block_size)
        stream.start()
        self._stream = stream
        _LOGGER.info("Output started via %s (%d-frame blocks)", backend.name, self.block_size)

    def stop(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
        _LOGGER.info("Output stopped")
