from pathlib import Path

import numpy as np
import pytest
import soundfile as sf
from conftest import wav_bytes

from beatgrid.audio import AudioBuffer, decode_audio, ensure_audio_contract, write_wav
from beatgrid.errors import AssetUnavailableError


def test_decode_wav_payload() -> None:
    buffer = decode_audio(wav_bytes(0.1, sample_rate=16_000))
    assert buffer.sample_rate == 16_000
    assert buffer.channels == 1
    assert buffer.frames == 1600
    assert buffer.duration == pytest.approx(0.1)
    assert buffer.samples.dtype == np.float32
    assert np.abs(buffer.mono()).max() == pytest.approx(0.5, abs=1e-3)


@pytest.mark.parametrize("payload", [b"", b"RIFF\x00\x00garbage", b"\x00" * 64])
def test_decode_rejects_bad_payloads(payload: bytes) -> None:
    with pytest.raises(AssetUnavailableError):
        decode_audio(payload)


def test_buffers_compare_by_identity() -> None:
    a = AudioBuffer.from_mono([0.1, 0.2])
    b = AudioBuffer.from_mono([0.1, 0.2])
    assert a != b
    assert a == a


def test_stereo_mono_mixdown() -> None:
    buffer = AudioBuffer(np.array([[1.0, 0.0], [0.0, 1.0]], dtype=np.float32), 8000)
    assert np.allclose(buffer.mono(), [0.5, 0.5])


def test_write_wav_clips_and_accepts_sequences(tmp_path: Path) -> None:
    target = write_wav(tmp_path / "out.wav", [0.0, 0.5, 2.0, -3.0], sample_rate=8000)
    data, sample_rate = sf.read(target)
    assert sample_rate == 8000
    assert np.allclose(data, [0.0, 0.5, 1.0, -1.0])


def test_write_wav_rejects_3d(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        write_wav(tmp_path / "bad.wav", np.zeros((2, 2, 2)))


def test_ensure_audio_contract_empty() -> None:
    assert ensure_audio_contract([]).size == 0
