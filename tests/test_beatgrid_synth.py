import numpy as np
import pytest

from beatgrid import synth
from beatgrid.audio import AudioBuffer
from beatgrid.config import TrackParams
from beatgrid.graph import (
    BiquadFilter,
    BufferSource,
    Echo,
    Gain,
    Oscillator,
    Reverb,
    Shaper,
    StereoPanner,
)
from beatgrid.render import render_voice
from beatgrid.soundfonts import SoundfontZone

SR = 44_100


def _zone(*, loop_start: int = 0, loop_end: int = 0, pitch: float = 6000.0) -> SoundfontZone:
    return SoundfontZone(
        original_pitch=pitch,
        key_range_low=0,
        key_range_high=127,
        loop_start=loop_start,
        loop_end=loop_end,
        sample_rate=22_050,
        buffer=AudioBuffer.from_mono(np.ones(22_050), 22_050),
    )


class TestDrums:
    def test_kick_sweeps_down(self) -> None:
        graph = synth.kick(0.8, when=1.0)
        (osc,) = graph.nodes_of(Oscillator)
        assert osc.frequency.value_at(0.0) == pytest.approx(150.0)
        assert osc.frequency.value_at(0.1) == pytest.approx(40.0)
        assert graph.duration == pytest.approx(0.3)
        assert graph.when == 1.0
        assert graph.label == "kick"

    def test_snare_layers_tone_and_noise(self, rng: np.random.Generator) -> None:
        graph = synth.snare(0.6, rng=rng)
        assert len(graph.sources) == 2
        cutoffs = sorted(f.frequency for f in graph.nodes_of(BiquadFilter))
        assert cutoffs == [3000.0, 8000.0]
        assert graph.duration == pytest.approx(0.15)

    def test_hihat_open_rings_longer(self, rng: np.random.Generator) -> None:
        closed = synth.hihat(0.3, rng=rng)
        opened = synth.hihat(0.3, open_=True, rng=rng)
        assert closed.duration == pytest.approx(0.08)
        assert opened.duration == pytest.approx(0.3)
        assert opened.label == "open_hihat"

    @pytest.mark.parametrize(
        ("voice", "duration", "band"),
        [
            (synth.clap, 0.15, [1500.0, 5000.0]),
            (synth.crash, 0.8, [4000.0, 16_000.0]),
            (synth.ride, 0.4, [6000.0, 12_000.0]),
            (synth.shaker, 0.08, [8000.0, 14_000.0]),
        ],
    )
    def test_noise_bursts(self, voice, duration: float, band: list[float]) -> None:
        graph = voice(0.5, rng=np.random.default_rng(1))
        assert graph.duration == pytest.approx(duration, abs=1e-4)
        assert sorted(f.frequency for f in graph.nodes_of(BiquadFilter)) == band

    def test_tom_pitch_drop(self) -> None:
        (osc,) = synth.tom(120.0).nodes_of(Oscillator)
        assert osc.frequency.value_at(0.0) == pytest.approx(180.0)
        assert osc.frequency.value_at(0.05) == pytest.approx(120.0)

    def test_cowbell_partials_through_bandpass(self) -> None:
        graph = synth.cowbell()
        assert sorted(o.frequency.value for o in graph.nodes_of(Oscillator)) == [560.0, 845.0]
        (band,) = graph.nodes_of(BiquadFilter)
        assert band.kind == "bandpass"
        assert band.frequency == 700.0
        assert band.q == 3.0

    def test_rimshot_and_perc_are_short(self, rng: np.random.Generator) -> None:
        assert synth.rimshot(rng=rng).duration == pytest.approx(0.03)
        assert synth.perc().duration == pytest.approx(0.1)


class TestMelodic:
    def test_tone_chain(self) -> None:
        fx = synth.Effects(lpf=5000.0, pan=0.5)
        graph = synth.tone("sawtooth", 220.0, 0.3, 0.5, fx=fx)
        kinds = [type(node) for node in graph.nodes]
        assert kinds == [Oscillator, BiquadFilter, Gain, StereoPanner]
        assert graph.nodes_of(BiquadFilter)[0].frequency == 5000.0
        assert graph.nodes_of(StereoPanner)[0].pan == 0.5

    def test_fm_ratio(self) -> None:
        graph = synth.fm(200.0, 0.3)
        oscillators = graph.nodes_of(Oscillator)
        assert sorted(o.frequency.value for o in oscillators) == [200.0, 400.0]
        fm_links = [c for c in graph.connections if c.port == "frequency"]
        assert len(fm_links) == 1
        depth = graph.nodes[fm_links[0].source]
        assert isinstance(depth, Gain)
        assert depth.gain.value == 400.0

    @pytest.mark.parametrize(
        ("waveform", "detunes"),
        [
            ("sawtooth", [-40.0, -25.0, -15.0, 0.0, 15.0, 25.0, 40.0]),
            ("square", [-30.0, -15.0, 0.0, 15.0, 30.0]),
        ],
    )
    def test_unison_stack(self, waveform, detunes: list[float]) -> None:
        graph = synth.unison(waveform, 110.0, 0.3)
        oscillators = graph.nodes_of(Oscillator)
        assert [o.detune for o in oscillators] == detunes
        bus = graph.nodes_of(Gain)[0]
        assert bus.gain.value == pytest.approx(1.0 / len(detunes))

    @pytest.mark.parametrize("color", ["white", "pink", "brown", "crackle"])
    def test_noise_tone_renders(self, color: str, rng: np.random.Generator) -> None:
        graph = synth.noise_tone(color, 0.2, 0.5, frequency=300.0, rng=rng)  # type: ignore[arg-type]
        (source,) = graph.nodes_of(BufferSource)
        assert source.buffer.frames == int(SR * 0.2)
        assert render_voice(graph, SR).shape[1] >= int(SR * 0.2)


class TestEffects:
    def test_default_track_params_are_neutral(self) -> None:
        assert synth.Effects.from_params(TrackParams()).is_neutral

    def test_neutral_effects_add_nothing(self) -> None:
        plain = synth.kick()
        with_fx = synth.kick(fx=synth.Effects.from_params(TrackParams()))
        assert len(plain.nodes) == len(with_fx.nodes) == 2

    def test_effects_chain_order(self) -> None:
        params = TrackParams(hpf=400.0, distort=0.5, pan=0.0, delay=0.3, reverb=0.4)
        graph = synth.kick(fx=synth.Effects.from_params(params))
        kinds = [type(node) for node in graph.nodes]
        assert kinds == [Oscillator, Gain, BiquadFilter, Shaper, StereoPanner, Echo, Reverb]
        assert graph.nodes_of(StereoPanner)[0].pan == -1.0
        assert graph.duration > 0.3 + 0.25 * 3

    def test_multi_branch_voices_share_a_bus(self, rng: np.random.Generator) -> None:
        graph = synth.snare(fx=synth.Effects(crush=8.0), rng=rng)
        destinations = [c for c in graph.connections if c.target < 0]
        assert len(destinations) == 1
        assert graph.nodes_of(Shaper)[0].bits == 8.0

    def test_sample_rate_and_gain(self) -> None:
        buffer = AudioBuffer.from_mono(np.ones(4410), SR)
        graph = synth.sample(buffer, 0.7, rate=2.0)
        (source,) = graph.nodes_of(BufferSource)
        assert source.playback_rate == 2.0
        assert graph.nodes_of(Gain)[0].gain.value == 0.7
        assert graph.duration == pytest.approx(0.05)


class TestSoundfontNote:
    def test_playback_rate_from_original_pitch(self) -> None:
        zone = _zone(pitch=6000.0)
        assert synth.soundfont_rate(60, zone) == pytest.approx(1.0)
        assert synth.soundfont_rate(72, zone) == pytest.approx(2.0)
        assert synth.soundfont_rate(55, zone) == pytest.approx(2 ** (-5 / 12))

    def test_envelope_shape(self) -> None:
        graph = synth.soundfont_note(_zone(), 60, 1.0, 0.5)
        env = graph.nodes_of(Gain)[0].gain
        assert env.value_at(0.0) == 0.0
        assert env.value_at(0.01) == pytest.approx(0.5)
        assert env.value_at(0.9) == pytest.approx(0.5)
        assert env.value_at(0.95) == pytest.approx(0.25)
        assert env.value_at(1.0) == pytest.approx(0.0)
        assert graph.duration == pytest.approx(1.0)

    def test_note_shorter_than_attack(self) -> None:
        graph = synth.soundfont_note(_zone(), 60, 0.004, 0.5)
        env = graph.nodes_of(Gain)[0].gain
        assert env.value_at(0.002) == pytest.approx(0.25)
        assert env.value_at(0.004) == 0.0
        assert graph.duration == pytest.approx(0.004)

    def test_loop_points_in_seconds(self) -> None:
        graph = synth.soundfont_note(_zone(loop_start=2205, loop_end=11_025), 60, 2.0)
        (source,) = graph.nodes_of(BufferSource)
        assert source.loop
        assert source.loop_start == pytest.approx(0.1)
        assert source.loop_end == pytest.approx(0.5)

    @pytest.mark.parametrize(("start", "end"), [(0, 500), (500, 0), (900, 100)])
    def test_loop_needs_both_points_in_order(self, start: int, end: int) -> None:
        graph = synth.soundfont_note(_zone(loop_start=start, loop_end=end), 60, 2.0)
        (source,) = graph.nodes_of(BufferSource)
        assert not source.loop

    def test_zone_without_buffer_rejected(self) -> None:
        zone = SoundfontZone(6000.0, 0, 127, 0, 0, 44_100, None)
        with pytest.raises(ValueError):
            synth.soundfont_note(zone, 60, 1.0)
