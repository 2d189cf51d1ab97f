# pyright: reportUnknownVariableType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownArgumentType=false

"""Offline voice rendering and the pull-based mixing context.

Architecture:

1. ``render_voice``: one :class:`VoiceGraph` -> a stereo buffer, node by node
   in index order (connections only run forward, so index order is a
   topological order).
2. :class:`Renderer`: the audio clock and master stage. Submitted voices are
   rendered once, kept in an arena keyed by a monotonic id, mixed block by
   block as the output pulls, and dropped once their stop deadline passes.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from functools import lru_cache
from typing import TypeAlias

import numpy as np
from numpy.typing import NDArray
from scipy.signal import lfilter, sawtooth, square  # type: ignore[import]

from .audio import SAMPLE_RATE, FloatArray
from .errors import EngineNotReadyError
from .graph import (
    DESTINATION,
    ECHO_TAPS,
    REVERB_DELAYS,
    BiquadFilter,
    BufferSource,
    Echo,
    FilterKind,
    Gain,
    Oscillator,
    Reverb,
    Shaper,
    StereoPanner,
    TimeArray,
    VoiceGraph,
)

_LOGGER = logging.getLogger("beatgrid.render")

Signal: TypeAlias = NDArray[np.float64]


# =============================================================================
# PART 1: NODE PRIMITIVES
# =============================================================================


def _span(start: float, stop: float, n: int, sr: int) -> tuple[int, int]:
    first = min(n, max(0, int(round(start * sr))))
    last = min(n, max(first, int(round(stop * sr))))
    return first, last


def render_oscillator(
    node: Oscillator,
    times: TimeArray,
    sr: int,
    modulation: Signal | None = None,
) -> Signal:
    n = times.shape[0]
    out = np.zeros(n, dtype=np.float64)
    first, last = _span(node.start, node.stop, n, sr)
    if last <= first:
        return out
    local = times[first:last] - node.start
    freq = node.frequency.evaluate(local)
    if node.detune:
        freq = freq * 2.0 ** (node.detune / 1200.0)
    if modulation is not None:
        freq = freq + modulation[first:last]
    phase = 2.0 * np.pi * np.concatenate(([0.0], np.cumsum(freq[:-1]))) / sr
    match node.waveform:
        case "sine":
            wave = np.sin(phase)
        case "square":
            wave = square(phase)
        case "sawtooth":
            wave = sawtooth(phase)
        case "triangle":
            wave = sawtooth(phase, width=0.5)
    out[first:last] = wave
    return out


def render_buffer(node: BufferSource, times: TimeArray, sr: int) -> Signal:
    n = times.shape[0]
    out = np.zeros(n, dtype=np.float64)
    first, last = _span(node.start, node.end_time, n, sr)
    if last <= first:
        return out
    source = node.buffer.mono().astype(np.float64)
    frames = source.shape[0]
    step = node.playback_rate * node.buffer.sample_rate / sr
    positions = np.arange(last - first, dtype=np.float64) * step
    if node.loop:
        loop_start = node.loop_start * node.buffer.sample_rate
        loop_end = node.loop_end * node.buffer.sample_rate
        if loop_end <= loop_start or loop_end > frames:
            loop_start, loop_end = 0.0, float(frames)
        wrapped = positions >= loop_end
        positions[wrapped] = loop_start + (positions[wrapped] - loop_start) % (
            loop_end - loop_start
        )
    out[first:last] = np.interp(positions, np.arange(frames), source, right=0.0)
    return out


def _quantize(value: float, step: float = 0.0001) -> float:
    return round(value / step) * step


@lru_cache(maxsize=512)
def _biquad_cached(
    kind: FilterKind, normalized: float, q: float
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """RBJ cookbook coefficients; ``normalized`` is cutoff / sample rate."""
    w0 = 2.0 * math.pi * normalized
    cos_w0 = math.cos(w0)
    alpha = math.sin(w0) / (2.0 * q)
    match kind:
        case "lowpass":
            b = ((1.0 - cos_w0) / 2.0, 1.0 - cos_w0, (1.0 - cos_w0) / 2.0)
        case "highpass":
            b = ((1.0 + cos_w0) / 2.0, -(1.0 + cos_w0), (1.0 + cos_w0) / 2.0)
        case "bandpass":
            b = (alpha, 0.0, -alpha)
    a = (1.0 + alpha, -2.0 * cos_w0, 1.0 - alpha)
    return np.asarray(b) / a[0], np.asarray(a) / a[0]


def apply_biquad(signal: Signal, node: BiquadFilter, sr: int) -> Signal:
    normalized = min(max(node.frequency / sr, 0.0005), 0.4995)
    b, a = _biquad_cached(node.kind, _quantize(normalized), max(node.q, 1e-4))
    return np.asarray(lfilter(b, a, signal, axis=-1), dtype=np.float64)


def apply_pan(signal: Signal, pan: float) -> Signal:
    """Equal-power pan of a mono signal into ``(2, n)``."""
    mono = signal.mean(axis=0) if signal.ndim == 2 else signal
    x = (min(max(pan, -1.0), 1.0) + 1.0) / 2.0
    return np.stack((mono * math.cos(x * math.pi / 2), mono * math.sin(x * math.pi / 2)))


def apply_shaper(signal: Signal, node: Shaper) -> Signal:
    out = signal
    if node.drive > 0.0:
        k = 1.0 + node.drive * 20.0
        out = np.tanh(out * k) / math.tanh(k)
    if node.bits < 16.0:
        levels = 2.0 ** (node.bits - 1.0)
        out = np.round(out * levels) / levels
    return out


def apply_echo(signal: Signal, node: Echo, sr: int) -> Signal:
    delay_samples = int(node.time * sr)
    output = signal.copy()
    length = signal.shape[-1]
    for i in range(1, ECHO_TAPS + 1):
        offset = delay_samples * i
        if 0 < offset < length:
            output[..., offset:] += signal[..., :-offset] * (node.feedback**i) * node.wet
    return output


def apply_reverb(signal: Signal, node: Reverb, sr: int) -> Signal:
    output = signal.copy()
    length = signal.shape[-1]
    for i, delay in enumerate(REVERB_DELAYS):
        delay_samples = int(delay * node.scale * sr)
        if 0 < delay_samples < length:
            output[..., delay_samples:] += signal[..., :-delay_samples] * node.room * (0.7**i)
    return output


def _accumulate(existing: Signal | None, incoming: Signal) -> Signal:
    if existing is None:
        return incoming.copy()
    if existing.ndim == incoming.ndim:
        return existing + incoming
    return np.broadcast_to(existing, (2, existing.shape[-1])) + np.broadcast_to(
        incoming, (2, incoming.shape[-1])
    )


def render_voice(graph: VoiceGraph, sample_rate: int = SAMPLE_RATE) -> FloatArray:
    """Render a voice graph to a ``(2, n)`` float32 buffer starting at t=0."""

    n = max(1, int(math.ceil(graph.duration * sample_rate)))
    times: TimeArray = np.arange(n, dtype=np.float64) / sample_rate
    inputs: list[Signal | None] = [None] * len(graph.nodes)
    modulation: list[Signal | None] = [None] * len(graph.nodes)
    mix = np.zeros((2, n), dtype=np.float64)
    silence = np.zeros(n, dtype=np.float64)

    outgoing: dict[int, list[tuple[int, str]]] = {}
    for connection in graph.connections:
        outgoing.setdefault(connection.source, []).append((connection.target, connection.port))

    for index, node in enumerate(graph.nodes):
        signal_in = inputs[index] if inputs[index] is not None else silence
        match node:
            case Oscillator():
                out = render_oscillator(node, times, sample_rate, modulation[index])
            case BufferSource():
                out = render_buffer(node, times, sample_rate)
            case BiquadFilter():
                out = apply_biquad(signal_in, node, sample_rate)
            case Gain():
                out = signal_in * node.gain.evaluate(times)
            case StereoPanner():
                out = apply_pan(signal_in, node.pan)
            case Shaper():
                out = apply_shaper(signal_in, node)
            case Echo():
                out = apply_echo(signal_in, node, sample_rate)
            case Reverb():
                out = apply_reverb(signal_in, node, sample_rate)

        for target, port in outgoing.get(index, ()):
            if target == DESTINATION:
                mix += out
            elif port == "frequency":
                mono = out.mean(axis=0) if out.ndim == 2 else out
                modulation[target] = _accumulate(modulation[target], mono)
            else:
                inputs[target] = _accumulate(inputs[target], out)

    return mix.astype(np.float32)


# =============================================================================
# PART 2: MIXING CONTEXT
# =============================================================================


@dataclass(frozen=True, slots=True)
class ActiveVoice:
    voice_id: int
    label: str
    start_frame: int
    samples: FloatArray

    @property
    def end_frame(self) -> int:
        return self.start_frame + self.samples.shape[1]


class Renderer:
    """Shared rendering context: audio clock, master gain, and voice arena.

    ``current_time`` only advances as blocks are rendered, so it is the
    authoritative clock for sample-accurate scheduling.
    """

    def __init__(self, sample_rate: int = SAMPLE_RATE) -> None:
        self.sample_rate = int(sample_rate)
        self._frame = 0
        self._master_gain = 1.0
        self._voices: dict[int, ActiveVoice] = {}
        self._next_id = 0
        self._closed = False
        self._lock = threading.Lock()

    @property
    def current_time(self) -> float:
        return self._frame / self.sample_rate

    @property
    def current_frame(self) -> int:
        return self._frame

    @property
    def master_gain(self) -> float:
        return self._master_gain

    @master_gain.setter
    def master_gain(self, value: float) -> None:
        self._master_gain = min(max(float(value), 0.0), 1.0)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def active_voice_count(self) -> int:
        with self._lock:
            return len(self._voices)

    def voices(self) -> list[ActiveVoice]:
        with self._lock:
            return list(self._voices.values())

    def submit(self, graph: VoiceGraph) -> int:
        if self._closed:
            raise EngineNotReadyError("renderer is closed")
        samples = render_voice(graph, self.sample_rate)
        with self._lock:
            start_frame = max(self._frame, int(round(graph.when * self.sample_rate)))
            voice_id = self._next_id
            self._next_id += 1
            self._voices[voice_id] = ActiveVoice(
                voice_id=voice_id,
                label=graph.label,
                start_frame=start_frame,
                samples=samples,
            )
        _LOGGER.debug(
            "Voice %d (%s) scheduled at frame %d for %d frames",
            voice_id,
            graph.label or "unnamed",
            start_frame,
            samples.shape[1],
        )
        return voice_id

    def render(self, frames: int) -> FloatArray:
        """Mix the next ``frames`` frames and advance the clock. Returns ``(frames, 2)``."""

        block = np.zeros((2, frames), dtype=np.float32)
        with self._lock:
            if self._closed:
                self._frame += frames
                return block.T.copy()
            block_start = self._frame
            block_end = block_start + frames
            finished: list[int] = []
            for voice_id, voice in self._voices.items():
                lo = max(block_start, voice.start_frame)
                hi = min(block_end, voice.end_frame)
                if hi > lo:
                    block[:, lo - block_start : hi - block_start] += voice.samples[
                        :, lo - voice.start_frame : hi - voice.start_frame
                    ]
                if voice.end_frame <= block_end:
                    finished.append(voice_id)
            for voice_id in finished:
                del self._voices[voice_id]
            self._frame = block_end
            gain = self._master_gain
        block *= gain
        np.clip(block, -1.0, 1.0, out=block)
        return block.T.copy()

    def advance(self, seconds: float) -> FloatArray:
        return self.render(int(round(seconds * self.sample_rate)))

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._voices.clear()
