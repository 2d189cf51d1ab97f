from __future__ import annotations

import io
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeAlias

import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray

from .errors import AssetUnavailableError

FloatArray: TypeAlias = NDArray[np.float32]
AudioNumbers: TypeAlias = NDArray[np.floating[Any]] | Sequence[float] | FloatArray

SAMPLE_RATE = 44_100


@dataclass(frozen=True, eq=False, slots=True)
class AudioBuffer:
    """Decoded PCM audio, shaped ``(channels, frames)``.

    Compared by identity so cached buffers can be checked with ``is``.
    """

    samples: FloatArray
    sample_rate: int

    @property
    def channels(self) -> int:
        return int(self.samples.shape[0])

    @property
    def frames(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        return self.frames / self.sample_rate if self.sample_rate > 0 else 0.0

    def mono(self) -> FloatArray:
        if self.channels == 1:
            return self.samples[0]
        return self.samples.mean(axis=0, dtype=np.float32)

    @classmethod
    def from_mono(cls, samples: AudioNumbers, sample_rate: int = SAMPLE_RATE) -> AudioBuffer:
        mono = np.asarray(samples, dtype=np.float32).reshape(1, -1)
        return cls(samples=mono, sample_rate=sample_rate)


def decode_audio(data: bytes) -> AudioBuffer:
    """Decode an encoded audio file (wav, flac, ogg, mp3) held in memory."""

    if not data:
        raise AssetUnavailableError("cannot decode an empty payload")
    try:
        frames, sample_rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
    except (RuntimeError, TypeError, ValueError) as exc:
        # soundfile.LibsndfileError derives from RuntimeError.
        raise AssetUnavailableError(f"audio decode failed: {exc}") from exc
    samples: FloatArray = np.ascontiguousarray(np.asarray(frames, dtype=np.float32).T)
    if samples.shape[1] == 0:
        raise AssetUnavailableError("decoded audio contains no frames")
    return AudioBuffer(samples=samples, sample_rate=int(sample_rate))


def ensure_audio_contract(audio: AudioNumbers) -> FloatArray:
    """Coerce to float32 and clip into [-1, 1]."""

    array: FloatArray = np.asarray(audio, dtype=np.float32)
    if array.size == 0:
        return array
    return np.clip(array, -1.0, 1.0)


def write_wav(
    path: str | Path,
    audio: AudioNumbers,
    *,
    sample_rate: int = SAMPLE_RATE,
) -> Path:
    """Write mono ``(frames,)`` or interleaved ``(frames, channels)`` audio to a wav file."""

    target = Path(path)
    array = ensure_audio_contract(audio)
    match array.ndim:
        case 1 | 2:
            pass
        case _:
            raise ValueError(f"expected 1-D or 2-D audio, got shape {array.shape}")
    sf.write(target, array, sample_rate, subtype="FLOAT")
    return target
