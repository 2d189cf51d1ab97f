"""Value types describing one voice's processing subgraph.

A voice is a small, immutable graph of sources (oscillators, buffer players)
and processors (filters, gains, panners, effects) plus the parameter
automation that shapes it. Synthesis functions build these values; the
:class:`~beatgrid.render.Renderer` turns them into samples and owns their
lifetime. Node times are seconds relative to the voice's ``when``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Literal, TypeAlias

import numpy as np
from numpy.typing import NDArray

from .audio import AudioBuffer
from .errors import InvalidGraphError

ENVELOPE_FLOOR = 0.001
DEFAULT_Q = math.sqrt(0.5)
DESTINATION = -1

Waveform = Literal["sine", "square", "sawtooth", "triangle"]
FilterKind = Literal["lowpass", "highpass", "bandpass"]
RampKind = Literal["set", "linear", "exponential"]
Port = Literal["input", "frequency"]

TimeArray: TypeAlias = NDArray[np.float64]


@dataclass(frozen=True, slots=True)
class AutomationPoint:
    kind: RampKind
    value: float
    time: float


@dataclass(frozen=True, slots=True)
class Param:
    """An audio parameter: an initial value plus scheduled automation events.

    Ramps run from the previous event (or t=0 and the initial value) to the
    ramp's own time; after the last event the parameter holds its value.
    """

    value: float
    automation: tuple[AutomationPoint, ...] = ()

    def set_at(self, value: float, time: float) -> Param:
        return self._append(AutomationPoint("set", value, time))

    def linear_to(self, value: float, time: float) -> Param:
        return self._append(AutomationPoint("linear", value, time))

    def exponential_to(self, value: float, time: float) -> Param:
        if value == 0.0:
            raise InvalidGraphError("exponential ramps cannot target zero; use ENVELOPE_FLOOR")
        return self._append(AutomationPoint("exponential", value, time))

    def decay(self, time: float) -> Param:
        """Exponential fall from the current value to the envelope floor."""
        return self.exponential_to(ENVELOPE_FLOOR, time)

    def _append(self, point: AutomationPoint) -> Param:
        if point.time < 0.0:
            raise InvalidGraphError(f"automation time must be >= 0, got {point.time}")
        if self.automation and point.time < self.automation[-1].time:
            raise InvalidGraphError("automation events must be added in time order")
        return replace(self, automation=self.automation + (point,))

    @property
    def is_constant(self) -> bool:
        return not self.automation

    def evaluate(self, times: TimeArray) -> TimeArray:
        out = np.full(times.shape, self.value, dtype=np.float64)
        prev_time = 0.0
        prev_value = self.value
        for point in self.automation:
            after = times >= point.time
            if point.kind != "set" and point.time > prev_time:
                segment = (times >= prev_time) & ~after
                frac = (times[segment] - prev_time) / (point.time - prev_time)
                if point.kind == "linear":
                    out[segment] = prev_value + (point.value - prev_value) * frac
                elif prev_value * point.value > 0.0:
                    out[segment] = prev_value * (point.value / prev_value) ** frac
                else:
                    out[segment] = prev_value
            out[after] = point.value
            prev_time = point.time
            prev_value = point.value
        return out

    def value_at(self, time: float) -> float:
        return float(self.evaluate(np.array([time], dtype=np.float64))[0])


# -----------------------------------------------------------------------------
# Sources
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Oscillator:
    waveform: Waveform
    frequency: Param
    stop: float
    detune: float = 0.0
    start: float = 0.0

    @property
    def end_time(self) -> float:
        return self.stop


@dataclass(frozen=True, slots=True)
class BufferSource:
    buffer: AudioBuffer
    playback_rate: float = 1.0
    loop: bool = False
    loop_start: float = 0.0
    loop_end: float = 0.0
    start: float = 0.0
    stop: float | None = None

    @property
    def end_time(self) -> float:
        if self.stop is not None:
            return self.stop
        return self.start + self.buffer.duration / self.playback_rate


# -----------------------------------------------------------------------------
# Processors
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BiquadFilter:
    kind: FilterKind
    frequency: float
    q: float = DEFAULT_Q


@dataclass(frozen=True, slots=True)
class Gain:
    gain: Param


@dataclass(frozen=True, slots=True)
class StereoPanner:
    pan: float = 0.0


@dataclass(frozen=True, slots=True)
class Shaper:
    """tanh saturation followed by bit-depth reduction."""

    drive: float = 0.0
    bits: float = 16.0


ECHO_TAPS = 4


@dataclass(frozen=True, slots=True)
class Echo:
    time: float
    feedback: float
    wet: float

    @property
    def tail(self) -> float:
        return self.time * ECHO_TAPS


REVERB_DELAYS = (0.029, 0.037, 0.041, 0.053, 0.067)


@dataclass(frozen=True, slots=True)
class Reverb:
    room: float
    size: float

    @property
    def scale(self) -> float:
        return 1.0 + 4.0 * self.size

    @property
    def tail(self) -> float:
        return REVERB_DELAYS[-1] * self.scale


Source: TypeAlias = Oscillator | BufferSource
Node: TypeAlias = Oscillator | BufferSource | BiquadFilter | Gain | StereoPanner | Shaper | Echo | Reverb


@dataclass(frozen=True, slots=True)
class Connection:
    source: int
    target: int = DESTINATION
    port: Port = "input"


@dataclass(frozen=True, slots=True)
class VoiceGraph:
    nodes: tuple[Node, ...]
    connections: tuple[Connection, ...]
    when: float = 0.0
    label: str = ""

    @property
    def sources(self) -> tuple[Source, ...]:
        return tuple(node for node in self.nodes if isinstance(node, (Oscillator, BufferSource)))

    @property
    def duration(self) -> float:
        sources = self.sources
        if not sources:
            return 0.0
        tail = sum(node.tail for node in self.nodes if isinstance(node, (Echo, Reverb)))
        return max(source.end_time for source in sources) + tail

    @property
    def stop_time(self) -> float:
        return self.when + self.duration

    def at(self, when: float) -> VoiceGraph:
        return replace(self, when=when)

    def nodes_of(self, kind: type) -> list[Node]:
        return [node for node in self.nodes if isinstance(node, kind)]


@dataclass
class GraphBuilder:
    """Accumulates nodes and forward-only connections into a :class:`VoiceGraph`."""

    label: str = ""
    _nodes: list[Node] = field(default_factory=list, init=False)
    _connections: list[Connection] = field(default_factory=list, init=False)

    def add(self, node: Node) -> int:
        if isinstance(node, Oscillator) and node.stop <= node.start:
            raise InvalidGraphError("oscillator stop must come after start")
        if isinstance(node, BufferSource):
            if node.playback_rate <= 0.0:
                raise InvalidGraphError("playback_rate must be positive")
            if node.loop and node.stop is None:
                raise InvalidGraphError("looping buffer sources need an explicit stop")
        self._nodes.append(node)
        return len(self._nodes) - 1

    def connect(self, source: int, target: int = DESTINATION, port: Port = "input") -> None:
        if not 0 <= source < len(self._nodes):
            raise InvalidGraphError(f"unknown source node {source}")
        if target != DESTINATION:
            if not source < target < len(self._nodes):
                raise InvalidGraphError(
                    f"connection {source}->{target} must point at a later node"
                )
            target_node = self._nodes[target]
            if port == "frequency" and not isinstance(target_node, Oscillator):
                raise InvalidGraphError("only oscillators accept frequency modulation")
            if port == "input" and isinstance(target_node, (Oscillator, BufferSource)):
                raise InvalidGraphError("sources have no audio input")
        elif port != "input":
            raise InvalidGraphError("the destination only accepts audio input")
        self._connections.append(Connection(source, target, port))

    def chain(self, *indices: int) -> int:
        """Connect ``indices`` in series and return the last one."""
        for source, target in zip(indices, indices[1:]):
            self.connect(source, target)
        return indices[-1]

    def build(self, when: float = 0.0) -> VoiceGraph:
        if not any(connection.target == DESTINATION for connection in self._connections):
            raise InvalidGraphError("voice graph never reaches the destination")
        return VoiceGraph(
            nodes=tuple(self._nodes),
            connections=tuple(self._connections),
            when=when,
            label=self.label,
        )
