"""
Synthesis library.

Every voice is a pure function returning a :class:`VoiceGraph`; nothing is
rendered here. Times inside a graph are relative to its ``when``.

1. Effects: per-track post-processing appended to any voice
2. Drum voices: kick, snare, hats, clap, toms, cowbell, cymbals, rimshot, perc
3. Melodic voices: basic oscillators, noise colours, FM, unison stacks
4. Sampled voices: one-shot buffers and soundfont zones

Decays to silence use exponential ramps to ``ENVELOPE_FLOOR``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Any, Literal

import numpy as np

from .audio import SAMPLE_RATE, AudioBuffer
from .config import TrackParams
from .graph import (
    DEFAULT_Q,
    DESTINATION,
    BiquadFilter,
    BufferSource,
    Echo,
    Gain,
    GraphBuilder,
    Oscillator,
    Param,
    Reverb,
    Shaper,
    StereoPanner,
    VoiceGraph,
    Waveform,
)
from .noise import NoiseColor, generate_noise, white_noise
from .soundfonts import SoundfontZone

MAX_CUTOFF = 20_000.0
MIN_CUTOFF = 20.0

KICK_START_HZ = 150.0
KICK_END_HZ = 40.0
TOM_FREQUENCIES = {"lt": 80.0, "mt": 120.0, "ht": 180.0}
COWBELL_PARTIALS = (560.0, 845.0)
FM_RATIO = 2.0
SUPERSAW_DETUNE = (-40.0, -25.0, -15.0, 0.0, 15.0, 25.0, 40.0)
SUPERSQUARE_DETUNE = (-30.0, -15.0, 0.0, 15.0, 30.0)

SOUNDFONT_ATTACK = 0.01
SOUNDFONT_RELEASE = 0.1


# =============================================================================
# PART 1: EFFECTS
# =============================================================================


@dataclass(frozen=True, slots=True)
class Effects:
    """Post-processing applied after a voice's own envelope.

    Defaults are neutral: a default ``Effects`` adds no nodes.
    """

    lpf: float = MAX_CUTOFF
    lpq: float = 0.0
    hpf: float = MIN_CUTOFF
    hpq: float = 0.0
    pan: float = 0.0
    distort: float = 0.0
    crush: float = 16.0
    delay: float = 0.0
    delay_time: float = 0.25
    delay_feedback: float = 0.5
    reverb: float = 0.0
    reverb_size: float = 0.5

    @classmethod
    def from_params(cls, params: TrackParams) -> Effects:
        return cls(
            lpf=params.lpf,
            lpq=params.lpq,
            hpf=params.hpf,
            hpq=params.hpq,
            pan=params.pan * 2.0 - 1.0,
            distort=params.distort,
            crush=params.crush,
            delay=params.delay,
            delay_time=params.delay_time,
            delay_feedback=params.delay_feedback,
            reverb=params.reverb,
            reverb_size=params.reverb_size,
        )

    @property
    def is_neutral(self) -> bool:
        return self == NEUTRAL

    def without_tone_controls(self) -> Effects:
        """Drop low-pass and pan for voices that apply their own."""
        return replace(self, lpf=MAX_CUTOFF, lpq=0.0, pan=0.0)


NEUTRAL = Effects()


def _q(resonance: float) -> float:
    return DEFAULT_Q + resonance


def _finish(builder: GraphBuilder, outputs: Sequence[int], fx: Effects | None) -> None:
    """Route ``outputs`` through the effect chain into the destination."""
    if fx is None or fx.is_neutral:
        for output in outputs:
            builder.connect(output)
        return

    if len(outputs) == 1:
        last = outputs[0]
    else:
        last = builder.add(Gain(Param(1.0)))
        for output in outputs:
            builder.connect(output, last)

    chain: list[int] = [last]
    if fx.lpf < MAX_CUTOFF:
        chain.append(builder.add(BiquadFilter("lowpass", fx.lpf, _q(fx.lpq))))
    if fx.hpf > MIN_CUTOFF:
        chain.append(builder.add(BiquadFilter("highpass", fx.hpf, _q(fx.hpq))))
    if fx.distort > 0.0 or fx.crush < 16.0:
        chain.append(builder.add(Shaper(drive=fx.distort, bits=fx.crush)))
    if fx.pan != 0.0:
        chain.append(builder.add(StereoPanner(fx.pan)))
    if fx.delay > 0.0:
        chain.append(builder.add(Echo(fx.delay_time, fx.delay_feedback, fx.delay)))
    if fx.reverb > 0.0:
        chain.append(builder.add(Reverb(fx.reverb, fx.reverb_size)))
    builder.connect(builder.chain(*chain), DESTINATION)


def _rng(rng: np.random.Generator | None) -> np.random.Generator:
    return rng if rng is not None else np.random.default_rng()


# =============================================================================
# PART 2: DRUM VOICES
# =============================================================================


def _noise_branch(
    builder: GraphBuilder,
    duration: float,
    gain: float,
    hpf: float,
    lpf: float,
    rng: np.random.Generator,
    sample_rate: int,
) -> int:
    samples = white_noise(int(sample_rate * duration), rng)
    source = builder.add(BufferSource(AudioBuffer.from_mono(samples, sample_rate)))
    high = builder.add(BiquadFilter("highpass", hpf))
    low = builder.add(BiquadFilter("lowpass", lpf))
    env = builder.add(Gain(Param(gain).decay(duration)))
    return builder.chain(source, high, low, env)


def noise_burst(
    duration: float,
    gain: float = 0.3,
    *,
    hpf: float = 5000.0,
    lpf: float = 10_000.0,
    when: float = 0.0,
    fx: Effects | None = None,
    rng: np.random.Generator | None = None,
    sample_rate: int = SAMPLE_RATE,
    label: str = "noise_burst",
) -> VoiceGraph:
    """Band-limited white noise with an exponential decay."""
    builder = GraphBuilder(label)
    out = _noise_branch(builder, duration, gain, hpf, lpf, _rng(rng), sample_rate)
    _finish(builder, [out], fx)
    return builder.build(when)


def kick(gain: float = 0.8, *, when: float = 0.0, fx: Effects | None = None) -> VoiceGraph:
    builder = GraphBuilder("kick")
    osc = builder.add(
        Oscillator("sine", Param(KICK_START_HZ).exponential_to(KICK_END_HZ, 0.1), stop=0.3)
    )
    env = builder.add(Gain(Param(gain).decay(0.3)))
    _finish(builder, [builder.chain(osc, env)], fx)
    return builder.build(when)


def snare(
    gain: float = 0.6,
    *,
    when: float = 0.0,
    fx: Effects | None = None,
    rng: np.random.Generator | None = None,
    sample_rate: int = SAMPLE_RATE,
) -> VoiceGraph:
    """Triangle body layered with a 3-8 kHz noise rattle."""
    builder = GraphBuilder("snare")
    osc = builder.add(Oscillator("triangle", Param(200.0), stop=0.1))
    body = builder.chain(osc, builder.add(Gain(Param(gain * 0.5).decay(0.1))))
    rattle = _noise_branch(builder, 0.15, gain * 0.5, 3000.0, 8000.0, _rng(rng), sample_rate)
    _finish(builder, [body, rattle], fx)
    return builder.build(when)


def hihat(
    gain: float = 0.3,
    *,
    open_: bool = False,
    when: float = 0.0,
    fx: Effects | None = None,
    rng: np.random.Generator | None = None,
    sample_rate: int = SAMPLE_RATE,
) -> VoiceGraph:
    duration = 0.3 if open_ else 0.08
    return noise_burst(
        duration,
        gain,
        hpf=7000.0,
        lpf=14_000.0,
        when=when,
        fx=fx,
        rng=rng,
        sample_rate=sample_rate,
        label="open_hihat" if open_ else "hihat",
    )


def clap(gain: float = 0.5, **kwargs: Any) -> VoiceGraph:
    return noise_burst(0.15, gain, hpf=1500.0, lpf=5000.0, label="clap", **kwargs)


def crash(gain: float = 0.4, **kwargs: Any) -> VoiceGraph:
    return noise_burst(0.8, gain, hpf=4000.0, lpf=16_000.0, label="crash", **kwargs)


def ride(gain: float = 0.3, **kwargs: Any) -> VoiceGraph:
    return noise_burst(0.4, gain, hpf=6000.0, lpf=12_000.0, label="ride", **kwargs)


def shaker(gain: float = 0.3, **kwargs: Any) -> VoiceGraph:
    return noise_burst(0.08, gain, hpf=8000.0, lpf=14_000.0, label="shaker", **kwargs)


def tom(
    frequency: float,
    gain: float = 0.7,
    *,
    when: float = 0.0,
    fx: Effects | None = None,
) -> VoiceGraph:
    builder = GraphBuilder("tom")
    sweep = Param(frequency * 1.5).exponential_to(frequency, 0.05)
    osc = builder.add(Oscillator("sine", sweep, stop=0.25))
    env = builder.add(Gain(Param(gain).decay(0.25)))
    _finish(builder, [builder.chain(osc, env)], fx)
    return builder.build(when)


def cowbell(gain: float = 0.4, *, when: float = 0.0, fx: Effects | None = None) -> VoiceGraph:
    builder = GraphBuilder("cowbell")
    partials = [builder.add(Oscillator("square", Param(f), stop=0.4)) for f in COWBELL_PARTIALS]
    band = builder.add(BiquadFilter("bandpass", 700.0, q=3.0))
    for partial in partials:
        builder.connect(partial, band)
    env = builder.add(Gain(Param(gain).decay(0.4)))
    _finish(builder, [builder.chain(band, env)], fx)
    return builder.build(when)


def rimshot(
    gain: float = 0.5,
    *,
    when: float = 0.0,
    fx: Effects | None = None,
    rng: np.random.Generator | None = None,
    sample_rate: int = SAMPLE_RATE,
) -> VoiceGraph:
    """1.8 kHz triangle tick plus a 20 ms noise click."""
    builder = GraphBuilder("rimshot")
    osc = builder.add(Oscillator("triangle", Param(1800.0), stop=0.03))
    tick = builder.chain(osc, builder.add(Gain(Param(gain).decay(0.03))))
    click = _noise_branch(builder, 0.02, gain * 0.5, 2000.0, 8000.0, _rng(rng), sample_rate)
    _finish(builder, [tick, click], fx)
    return builder.build(when)


def perc(gain: float = 0.5, *, when: float = 0.0, fx: Effects | None = None) -> VoiceGraph:
    builder = GraphBuilder("perc")
    osc = builder.add(
        Oscillator("triangle", Param(800.0).exponential_to(400.0, 0.05), stop=0.1)
    )
    env = builder.add(Gain(Param(gain).decay(0.1)))
    _finish(builder, [builder.chain(osc, env)], fx)
    return builder.build(when)


# =============================================================================
# PART 3: MELODIC VOICES
# =============================================================================


def _tone_tail(builder: GraphBuilder, head: int, duration: float, gain: float, fx: Effects) -> None:
    """Low-pass, decaying gain, and pan shared by all pitched voices."""
    low = builder.add(BiquadFilter("lowpass", fx.lpf, _q(fx.lpq)))
    env = builder.add(Gain(Param(gain).decay(duration)))
    pan = builder.add(StereoPanner(fx.pan))
    _finish(builder, [builder.chain(head, low, env, pan)], fx.without_tone_controls())


def tone(
    waveform: Waveform,
    frequency: float,
    duration: float,
    gain: float = 0.5,
    *,
    when: float = 0.0,
    fx: Effects | None = None,
) -> VoiceGraph:
    builder = GraphBuilder(f"tone:{waveform}")
    osc = builder.add(Oscillator(waveform, Param(frequency), stop=duration))
    _tone_tail(builder, osc, duration, gain, fx or NEUTRAL)
    return builder.build(when)


def noise_tone(
    color: NoiseColor,
    duration: float,
    gain: float = 0.5,
    *,
    frequency: float = 440.0,
    when: float = 0.0,
    fx: Effects | None = None,
    rng: np.random.Generator | None = None,
    sample_rate: int = SAMPLE_RATE,
) -> VoiceGraph:
    """Coloured noise shaped like a tone; ``frequency`` sets crackle density."""
    builder = GraphBuilder(f"noise:{color}")
    samples = generate_noise(
        color,
        int(sample_rate * duration),
        _rng(rng),
        density=frequency,
        sample_rate=sample_rate,
    )
    source = builder.add(BufferSource(AudioBuffer.from_mono(samples, sample_rate)))
    _tone_tail(builder, source, duration, gain, fx or NEUTRAL)
    return builder.build(when)


def fm(
    frequency: float,
    duration: float,
    gain: float = 0.5,
    *,
    when: float = 0.0,
    fx: Effects | None = None,
) -> VoiceGraph:
    """Two-operator FM: modulator at 2x the carrier, depth 2x the carrier."""
    builder = GraphBuilder("fm")
    modulator = builder.add(Oscillator("sine", Param(frequency * FM_RATIO), stop=duration))
    depth = builder.add(Gain(Param(frequency * FM_RATIO)))
    carrier = builder.add(Oscillator("sine", Param(frequency), stop=duration))
    builder.connect(modulator, depth)
    builder.connect(depth, carrier, port="frequency")
    _tone_tail(builder, carrier, duration, gain, fx or NEUTRAL)
    return builder.build(when)


def unison(
    waveform: Literal["sawtooth", "square"],
    frequency: float,
    duration: float,
    gain: float = 0.5,
    *,
    when: float = 0.0,
    fx: Effects | None = None,
) -> VoiceGraph:
    """Detuned oscillator stack (supersaw / supersquare) normalised by its size."""
    offsets = SUPERSAW_DETUNE if waveform == "sawtooth" else SUPERSQUARE_DETUNE
    builder = GraphBuilder("supersaw" if waveform == "sawtooth" else "supersquare")
    oscillators = [
        builder.add(Oscillator(waveform, Param(frequency), stop=duration, detune=cents))
        for cents in offsets
    ]
    bus = builder.add(Gain(Param(1.0 / len(offsets))))
    for osc in oscillators:
        builder.connect(osc, bus)
    _tone_tail(builder, bus, duration, gain, fx or NEUTRAL)
    return builder.build(when)


# =============================================================================
# PART 4: SAMPLED VOICES
# =============================================================================


def sample(
    buffer: AudioBuffer,
    gain: float = 0.8,
    *,
    rate: float = 1.0,
    when: float = 0.0,
    fx: Effects | None = None,
    label: str = "sample",
) -> VoiceGraph:
    builder = GraphBuilder(label)
    source = builder.add(BufferSource(buffer, playback_rate=rate))
    level = builder.add(Gain(Param(gain)))
    _finish(builder, [builder.chain(source, level)], fx)
    return builder.build(when)


def soundfont_rate(midi_note: int, zone: SoundfontZone) -> float:
    return float(2.0 ** ((midi_note - zone.original_pitch / 100.0) / 12.0))


def soundfont_note(
    zone: SoundfontZone,
    midi_note: int,
    duration: float,
    gain: float = 0.5,
    *,
    when: float = 0.0,
    fx: Effects | None = None,
    label: str = "soundfont",
) -> VoiceGraph:
    """Play a decoded zone pitched to ``midi_note`` with a linear attack/release."""
    if zone.buffer is None:
        raise ValueError("soundfont zone has no decoded buffer")
    loop = zone.loop_start > 0 and zone.loop_end > 0 and zone.loop_end > zone.loop_start
    builder = GraphBuilder(label)
    source = builder.add(
        BufferSource(
            zone.buffer,
            playback_rate=soundfont_rate(midi_note, zone),
            loop=loop,
            loop_start=zone.loop_start / zone.sample_rate if loop else 0.0,
            loop_end=zone.loop_end / zone.sample_rate if loop else 0.0,
            stop=duration,
        )
    )
    attack = min(SOUNDFONT_ATTACK, duration)
    sustain_end = min(duration, max(attack, duration - SOUNDFONT_RELEASE))
    envelope = (
        Param(0.0)
        .linear_to(gain, attack)
        .set_at(gain, sustain_end)
        .linear_to(0.0, duration)
    )
    env = builder.add(Gain(envelope))
    _finish(builder, [builder.chain(source, env)], fx)
    return builder.build(when)
