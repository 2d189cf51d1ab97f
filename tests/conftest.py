from __future__ import annotations

import asyncio
import io
from collections.abc import Mapping

import numpy as np
import pytest
import soundfile as sf

from beatgrid.errors import AssetUnavailableError
from beatgrid.graph import VoiceGraph


def wav_bytes(seconds: float = 0.05, *, sample_rate: int = 22_050, freq: float = 440.0) -> bytes:
    t = np.arange(int(seconds * sample_rate)) / sample_rate
    data = (0.5 * np.sin(2 * np.pi * freq * t)).astype(np.float32)
    buffer = io.BytesIO()
    sf.write(buffer, data, sample_rate, format="WAV", subtype="PCM_16")
    return buffer.getvalue()


class FakeFetcher:
    """Serves canned payloads; unknown URLs fail like a 404."""

    def __init__(
        self,
        responses: Mapping[str, bytes] | None = None,
        *,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.responses = dict(responses or {})
        self.calls: list[str] = []
        self.gate = gate

    async def fetch(self, url: str) -> bytes:
        self.calls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if url not in self.responses:
            raise AssetUnavailableError(f"HTTP 404 for {url}")
        return self.responses[url]


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    @property
    def current_time(self) -> float:
        return self.now


class RecordingSink:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now
        self.graphs: list[VoiceGraph] = []

    @property
    def current_time(self) -> float:
        return self.now

    def submit(self, graph: VoiceGraph) -> int:
        self.graphs.append(graph)
        return len(self.graphs) - 1

    @property
    def labels(self) -> list[str]:
        return [graph.label for graph in self.graphs]


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(0)
