import math

import numpy as np
import pytest

from beatgrid.audio import AudioBuffer
from beatgrid.errors import InvalidGraphError
from beatgrid.graph import (
    DESTINATION,
    ENVELOPE_FLOOR,
    BiquadFilter,
    BufferSource,
    Echo,
    Gain,
    GraphBuilder,
    Oscillator,
    Param,
    Reverb,
)


class TestParamAutomation:
    def test_constant_param(self) -> None:
        param = Param(0.3)
        assert param.is_constant
        assert param.value_at(10.0) == pytest.approx(0.3)

    def test_decay_reaches_floor(self) -> None:
        param = Param(0.8).decay(0.3)
        assert param.value_at(0.0) == pytest.approx(0.8)
        assert param.value_at(0.15) == pytest.approx(math.sqrt(0.8 * ENVELOPE_FLOOR))
        assert param.value_at(0.3) == pytest.approx(ENVELOPE_FLOOR)
        assert param.value_at(1.0) == pytest.approx(ENVELOPE_FLOOR)

    def test_linear_ramp_midpoint(self) -> None:
        assert Param(0.0).linear_to(1.0, 1.0).value_at(0.5) == pytest.approx(0.5)

    def test_attack_sustain_release(self) -> None:
        env = Param(0.0).linear_to(0.5, 0.01).set_at(0.5, 0.2).linear_to(0.0, 0.3)
        assert env.value_at(0.005) == pytest.approx(0.25)
        assert env.value_at(0.1) == pytest.approx(0.5)
        assert env.value_at(0.25) == pytest.approx(0.25)
        assert env.value_at(0.3) == pytest.approx(0.0)

    def test_exponential_ramp_from_zero_holds(self) -> None:
        param = Param(0.0).exponential_to(1.0, 1.0)
        assert param.value_at(0.5) == 0.0

    def test_exponential_ramp_to_zero_rejected(self) -> None:
        with pytest.raises(InvalidGraphError):
            Param(1.0).exponential_to(0.0, 0.1)

    def test_events_must_be_ordered(self) -> None:
        with pytest.raises(InvalidGraphError):
            Param(1.0).linear_to(0.5, 0.2).linear_to(0.1, 0.1)

    def test_params_are_immutable_values(self) -> None:
        base = Param(1.0)
        ramped = base.decay(0.1)
        assert base.is_constant
        assert not ramped.is_constant

    def test_evaluate_vectorised(self) -> None:
        times = np.linspace(0.0, 0.1, 11)
        values = Param(1.0).linear_to(0.0, 0.1).evaluate(times)
        assert np.allclose(values, 1.0 - times / 0.1)


class TestGraphBuilder:
    def test_simple_chain(self) -> None:
        builder = GraphBuilder("test")
        osc = builder.add(Oscillator("sine", Param(440.0), stop=0.2))
        env = builder.add(Gain(Param(0.5).decay(0.2)))
        builder.connect(builder.chain(osc, env))
        graph = builder.build(when=1.5)
        assert graph.label == "test"
        assert graph.duration == pytest.approx(0.2)
        assert graph.stop_time == pytest.approx(1.7)
        assert graph.connections[-1].target == DESTINATION

    def test_backward_connection_rejected(self) -> None:
        builder = GraphBuilder()
        osc = builder.add(Oscillator("sine", Param(440.0), stop=0.1))
        env = builder.add(Gain(Param(1.0)))
        with pytest.raises(InvalidGraphError):
            builder.connect(env, osc)

    def test_frequency_port_needs_oscillator(self) -> None:
        builder = GraphBuilder()
        mod = builder.add(Oscillator("sine", Param(2.0), stop=0.1))
        filt = builder.add(BiquadFilter("lowpass", 1000.0))
        with pytest.raises(InvalidGraphError):
            builder.connect(mod, filt, port="frequency")

    def test_sources_have_no_audio_input(self) -> None:
        builder = GraphBuilder()
        first = builder.add(Oscillator("sine", Param(2.0), stop=0.1))
        second = builder.add(Oscillator("sine", Param(440.0), stop=0.1))
        with pytest.raises(InvalidGraphError):
            builder.connect(first, second)
        builder.connect(first, second, port="frequency")

    def test_graph_must_reach_destination(self) -> None:
        builder = GraphBuilder()
        builder.add(Oscillator("sine", Param(440.0), stop=0.1))
        with pytest.raises(InvalidGraphError):
            builder.build()

    def test_invalid_sources_rejected(self) -> None:
        builder = GraphBuilder()
        buffer = AudioBuffer.from_mono(np.zeros(100), 44_100)
        with pytest.raises(InvalidGraphError):
            builder.add(Oscillator("sine", Param(440.0), stop=0.0))
        with pytest.raises(InvalidGraphError):
            builder.add(BufferSource(buffer, playback_rate=0.0))
        with pytest.raises(InvalidGraphError):
            builder.add(BufferSource(buffer, loop=True))

    def test_duration_includes_effect_tails(self) -> None:
        builder = GraphBuilder()
        osc = builder.add(Oscillator("sine", Param(440.0), stop=0.1))
        echo = builder.add(Echo(time=0.25, feedback=0.5, wet=0.3))
        verb = builder.add(Reverb(room=0.5, size=0.0))
        builder.connect(builder.chain(osc, echo, verb))
        graph = builder.build()
        assert graph.duration == pytest.approx(0.1 + 1.0 + 0.067)
        assert len(graph.nodes_of(Echo)) == 1

    def test_buffer_source_length_follows_rate(self) -> None:
        buffer = AudioBuffer.from_mono(np.zeros(44_100), 44_100)
        assert BufferSource(buffer).end_time == pytest.approx(1.0)
        assert BufferSource(buffer, playback_rate=2.0).end_time == pytest.approx(0.5)
        assert BufferSource(buffer, loop=True, stop=3.0).end_time == pytest.approx(3.0)

    def test_at_moves_start_time(self) -> None:
        builder = GraphBuilder()
        osc = builder.add(Oscillator("sine", Param(440.0), stop=0.1))
        builder.connect(osc)
        graph = builder.build()
        moved = graph.at(2.0)
        assert moved.when == 2.0
        assert graph.when == 0.0
        assert moved.nodes is graph.nodes
