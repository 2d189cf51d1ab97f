"""Voice kinds and sound-id resolution.

Every playable sound is one of a closed set of frozen dataclasses. String
sound ids are resolved once, at the edge, through immutable tables; from
there on :func:`build_voice` matches exhaustively over the variant.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Literal, TypeAlias, assert_never

import numpy as np

from . import synth
from .audio import SAMPLE_RATE, AudioBuffer
from .config import TrackParams
from .graph import VoiceGraph, Waveform
from .noise import NoiseColor
from .soundfonts import Instrument

_LOGGER = logging.getLogger("beatgrid.voices")

WAVEFORMS: tuple[Waveform, ...] = ("sine", "sawtooth", "square", "triangle")
NOISE_COLORS: tuple[NoiseColor, ...] = ("white", "pink", "brown", "crackle")


@dataclass(frozen=True, slots=True)
class Kick:
    pass


@dataclass(frozen=True, slots=True)
class Snare:
    pass


@dataclass(frozen=True, slots=True)
class HiHat:
    open: bool = False


@dataclass(frozen=True, slots=True)
class Clap:
    pass


@dataclass(frozen=True, slots=True)
class Tom:
    frequency: float


@dataclass(frozen=True, slots=True)
class Cowbell:
    pass


@dataclass(frozen=True, slots=True)
class Crash:
    pass


@dataclass(frozen=True, slots=True)
class Ride:
    pass


@dataclass(frozen=True, slots=True)
class Shaker:
    pass


@dataclass(frozen=True, slots=True)
class Rimshot:
    pass


@dataclass(frozen=True, slots=True)
class Perc:
    pass


@dataclass(frozen=True, slots=True)
class Tone:
    waveform: Waveform
    frequency: float
    duration: float


@dataclass(frozen=True, slots=True)
class Noise:
    color: NoiseColor
    frequency: float
    duration: float


@dataclass(frozen=True, slots=True)
class Fm:
    frequency: float
    duration: float


@dataclass(frozen=True, slots=True)
class Unison:
    waveform: Literal["sawtooth", "square"]
    frequency: float
    duration: float


@dataclass(frozen=True, slots=True)
class Sample:
    buffer: AudioBuffer
    rate: float = 1.0
    label: str = "sample"


@dataclass(frozen=True, slots=True)
class SoundfontNote:
    instrument: Instrument
    midi_note: int
    duration: float


Voice: TypeAlias = (
    Kick
    | Snare
    | HiHat
    | Clap
    | Tom
    | Cowbell
    | Crash
    | Ride
    | Shaker
    | Rimshot
    | Perc
    | Tone
    | Noise
    | Fm
    | Unison
    | Sample
    | SoundfontNote
)

DRUM_VOICES: Mapping[str, Voice] = MappingProxyType(
    {
        "bd": Kick(),
        "sd": Snare(),
        "hh": HiHat(),
        "oh": HiHat(open=True),
        "cp": Clap(),
        "rim": Rimshot(),
        "lt": Tom(synth.TOM_FREQUENCIES["lt"]),
        "mt": Tom(synth.TOM_FREQUENCIES["mt"]),
        "ht": Tom(synth.TOM_FREQUENCIES["ht"]),
        "cb": Cowbell(),
        "cr": Crash(),
        "rd": Ride(),
        "sh": Shaker(),
        "perc": Perc(),
    }
)

SYNTH_IDS: frozenset[str] = frozenset(
    (*WAVEFORMS, *NOISE_COLORS, "fm", "supersaw", "supersquare")
)

FALLBACK_VOICE = Tone("sine", 220.0, 0.2)
DEFAULT_SYNTH_FREQUENCY = 440.0
DEFAULT_SYNTH_DURATION = 0.3


def synth_voice(sound_id: str, frequency: float, duration: float) -> Voice | None:
    """Map a synth id onto its pitched voice, or ``None`` for non-synth ids."""
    if sound_id in WAVEFORMS:
        return Tone(sound_id, frequency, duration)  # type: ignore[arg-type]
    if sound_id in NOISE_COLORS:
        return Noise(sound_id, frequency, duration)  # type: ignore[arg-type]
    match sound_id:
        case "fm":
            return Fm(frequency, duration)
        case "supersaw":
            return Unison("sawtooth", frequency, duration)
        case "supersquare":
            return Unison("square", frequency, duration)
    return None


def resolve_sound(
    sound_id: str,
    *,
    frequency: float = DEFAULT_SYNTH_FREQUENCY,
    duration: float = DEFAULT_SYNTH_DURATION,
) -> Voice:
    """Resolve any sound id; unknown ids give :data:`FALLBACK_VOICE`."""
    drum = DRUM_VOICES.get(sound_id)
    if drum is not None:
        return drum
    voice = synth_voice(sound_id, frequency, duration)
    if voice is not None:
        return voice
    _LOGGER.debug("Unknown sound id %r, using fallback voice", sound_id)
    return FALLBACK_VOICE


def resolve_note(sound_id: str, frequency: float, duration: float) -> Voice:
    """Pitched voice for a melodic track; non-synth ids play a sawtooth."""
    return synth_voice(sound_id, frequency, duration) or Tone("sawtooth", frequency, duration)


def build_voice(
    voice: Voice,
    when: float,
    params: TrackParams,
    *,
    rng: np.random.Generator | None = None,
    sample_rate: int = SAMPLE_RATE,
) -> VoiceGraph | None:
    """Turn a voice into a graph starting at ``when``.

    Returns ``None`` only for soundfont notes whose zone has no audio.
    """
    gain = params.gain
    fx = synth.Effects.from_params(params)
    noisy = {"rng": rng, "sample_rate": sample_rate}
    match voice:
        case Kick():
            return synth.kick(gain, when=when, fx=fx)
        case Snare():
            return synth.snare(gain, when=when, fx=fx, **noisy)
        case HiHat(open=is_open):
            return synth.hihat(gain, open_=is_open, when=when, fx=fx, **noisy)
        case Clap():
            return synth.clap(gain, when=when, fx=fx, **noisy)
        case Tom(frequency=frequency):
            return synth.tom(frequency, gain, when=when, fx=fx)
        case Cowbell():
            return synth.cowbell(gain, when=when, fx=fx)
        case Crash():
            return synth.crash(gain, when=when, fx=fx, **noisy)
        case Ride():
            return synth.ride(gain, when=when, fx=fx, **noisy)
        case Shaker():
            return synth.shaker(gain, when=when, fx=fx, **noisy)
        case Rimshot():
            return synth.rimshot(gain, when=when, fx=fx, **noisy)
        case Perc():
            return synth.perc(gain, when=when, fx=fx)
        case Tone(waveform=waveform, frequency=frequency, duration=duration):
            return synth.tone(waveform, frequency, duration, gain, when=when, fx=fx)
        case Noise(color=color, frequency=frequency, duration=duration):
            return synth.noise_tone(
                color, duration, gain, frequency=frequency, when=when, fx=fx, **noisy
            )
        case Fm(frequency=frequency, duration=duration):
            return synth.fm(frequency, duration, gain, when=when, fx=fx)
        case Unison(waveform=waveform, frequency=frequency, duration=duration):
            return synth.unison(waveform, frequency, duration, gain, when=when, fx=fx)
        case Sample(buffer=buffer, rate=rate, label=label):
            return synth.sample(
                buffer, gain, rate=rate * params.speed, when=when, fx=fx, label=label
            )
        case SoundfontNote(instrument=instrument, midi_note=midi_note, duration=duration):
            zone = instrument.find_zone(midi_note)
            if zone is None or zone.buffer is None:
                _LOGGER.warning(
                    "No playable zone in %s for MIDI note %d", instrument.name, midi_note
                )
                return None
            return synth.soundfont_note(
                zone,
                midi_note,
                duration,
                gain,
                when=when,
                fx=fx,
                label=f"soundfont:{instrument.name}",
            )
        case _:
            assert_never(voice)
