"""Noise sample generators.

Every generator takes the number of samples and a ``numpy`` Generator so
callers (and tests) control the random source.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Literal, TypeAlias

import numpy as np
from numpy.typing import NDArray
from scipy.signal import lfilter  # type: ignore[import]

NoiseColor = Literal["white", "pink", "brown", "crackle"]
NoiseArray: TypeAlias = NDArray[np.float64]

# Paul Kellet's refined pink filter: (pole, white weight) per stage.
PINK_STAGES: tuple[tuple[float, float], ...] = (
    (0.99886, 0.0555179),
    (0.99332, 0.0750759),
    (0.96900, 0.1538520),
    (0.86650, 0.3104856),
    (0.55000, 0.5329522),
    (-0.7616, -0.0168980),
)
PINK_WHITE_WEIGHT = 0.5362
PINK_DELAYED_WEIGHT = 0.115926
PINK_NORMALIZE = 0.11

BROWN_STEP = 0.02
BROWN_LEAK = 1.02
BROWN_GAIN = 3.5

CRACKLE_MAX_TAIL = 100


def white_noise(n: int, rng: np.random.Generator) -> NoiseArray:
    """Uniform samples in [-1, 1)."""
    return rng.uniform(-1.0, 1.0, size=n)


def pink_from_white(white: NoiseArray) -> NoiseArray:
    """Run Kellet's six-pole recurrence over an existing white sequence.

    Per sample: ``b_i = pole_i * b_i + white * weight_i`` for the six stages,
    ``pink = (sum(b) + b6 + white * 0.5362) * 0.11`` where ``b6`` holds the
    previous sample's ``white * 0.115926``.
    """
    pink = white * PINK_WHITE_WEIGHT
    for pole, weight in PINK_STAGES:
        pink = pink + lfilter([weight], [1.0, -pole], white)
    delayed = np.zeros_like(white)
    delayed[1:] = white[:-1] * PINK_DELAYED_WEIGHT
    return (pink + delayed) * PINK_NORMALIZE


def pink_noise(n: int, rng: np.random.Generator) -> NoiseArray:
    return pink_from_white(white_noise(n, rng))


def brown_from_white(white: NoiseArray) -> NoiseArray:
    """Leaky integrator: ``last = (last + 0.02 * white) / 1.02``, scaled by 3.5."""
    integrated = lfilter([BROWN_STEP / BROWN_LEAK], [1.0, -1.0 / BROWN_LEAK], white)
    return np.asarray(integrated, dtype=np.float64) * BROWN_GAIN


def brown_noise(n: int, rng: np.random.Generator) -> NoiseArray:
    return brown_from_white(white_noise(n, rng))


def crackle_noise(
    n: int,
    rng: np.random.Generator,
    *,
    density: float = 10.0,
    sample_rate: int = 44_100,
) -> NoiseArray:
    """Sparse random impulses, ``density`` per second on average.

    Each impulse decays linearly over a random tail of 1..100 samples.
    """
    out = np.zeros(n, dtype=np.float64)
    if n == 0 or density <= 0.0:
        return out
    probability = min(1.0, density / sample_rate)
    onsets = np.flatnonzero(rng.random(n) < probability)
    for onset in onsets:
        amplitude = rng.uniform(-1.0, 1.0)
        tail = int(rng.integers(1, CRACKLE_MAX_TAIL + 1))
        end = min(n, onset + tail)
        ramp = 1.0 - np.arange(end - onset) / tail
        out[onset:end] += amplitude * ramp
    return out


NoiseFn: TypeAlias = Callable[[int, np.random.Generator], NoiseArray]

NOISE_GENERATORS: Mapping[Literal["white", "pink", "brown"], NoiseFn] = MappingProxyType(
    {
        "white": white_noise,
        "pink": pink_noise,
        "brown": brown_noise,
    }
)


def generate_noise(
    color: NoiseColor,
    n: int,
    rng: np.random.Generator,
    *,
    density: float = 10.0,
    sample_rate: int = 44_100,
) -> NoiseArray:
    if color == "crackle":
        return crackle_noise(n, rng, density=density, sample_rate=sample_rate)
    return NOISE_GENERATORS[color](n, rng)
