import numpy as np
import pytest

from beatgrid.noise import (
    CRACKLE_MAX_TAIL,
    brown_from_white,
    crackle_noise,
    generate_noise,
    pink_from_white,
    pink_noise,
    white_noise,
)

SR = 44_100


def _band_power(signal: np.ndarray, low: float, high: float) -> float:
    spectrum = np.abs(np.fft.rfft(signal)) ** 2
    freqs = np.fft.rfftfreq(signal.size, d=1.0 / SR)
    band = (freqs >= low) & (freqs < high)
    return float(spectrum[band].mean())


def test_white_noise_range(rng: np.random.Generator) -> None:
    noise = white_noise(10_000, rng)
    assert noise.min() >= -1.0
    assert noise.max() < 1.0
    assert abs(noise.mean()) < 0.05


def test_pink_matches_kellet_recurrence(rng: np.random.Generator) -> None:
    white = white_noise(256, rng)
    b = [0.0] * 7
    expected = []
    for w in white:
        b[0] = 0.99886 * b[0] + w * 0.0555179
        b[1] = 0.99332 * b[1] + w * 0.0750759
        b[2] = 0.96900 * b[2] + w * 0.1538520
        b[3] = 0.86650 * b[3] + w * 0.3104856
        b[4] = 0.55000 * b[4] + w * 0.5329522
        b[5] = -0.7616 * b[5] - w * 0.0168980
        expected.append((sum(b) + w * 0.5362) * 0.11)
        b[6] = w * 0.115926
    assert np.allclose(pink_from_white(white), expected)


def test_brown_matches_leaky_integrator(rng: np.random.Generator) -> None:
    white = white_noise(256, rng)
    last = 0.0
    expected = []
    for w in white:
        last = (last + 0.02 * w) / 1.02
        expected.append(last * 3.5)
    assert np.allclose(brown_from_white(white), expected)


def test_pink_energy_rolls_off(rng: np.random.Generator) -> None:
    pink = pink_noise(2**16, rng)
    low = _band_power(pink, 50.0, 200.0)
    mid = _band_power(pink, 800.0, 1600.0)
    high = _band_power(pink, 5000.0, 10_000.0)
    assert low > mid > high
    assert low / high > 10.0


def test_white_energy_is_flat(rng: np.random.Generator) -> None:
    white = white_noise(2**16, rng)
    ratio = _band_power(white, 50.0, 1000.0) / _band_power(white, 5000.0, 10_000.0)
    assert 0.5 < ratio < 2.0


def test_crackle_is_sparse_and_bounded(rng: np.random.Generator) -> None:
    crackle = crackle_noise(SR, rng, density=20.0, sample_rate=SR)
    active = np.count_nonzero(crackle)
    assert 0 < active < 200 * CRACKLE_MAX_TAIL
    assert np.abs(crackle).max() < 10.0


def test_crackle_zero_density_is_silent(rng: np.random.Generator) -> None:
    assert not np.any(crackle_noise(1000, rng, density=0.0))


@pytest.mark.parametrize("color", ["white", "pink", "brown", "crackle"])
def test_generate_noise_length(color: str, rng: np.random.Generator) -> None:
    assert generate_noise(color, 512, rng).shape == (512,)  # type: ignore[arg-type]
