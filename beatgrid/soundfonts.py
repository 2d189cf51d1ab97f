"""
General MIDI soundfonts in the webaudiofont format.

Each instrument is a JavaScript file assigning one object literal::

    var _tone_0000_GeneralUserGS_sf2_file = {zones: [{midi: 0, originalPitch: 2700, ...,
        file: 'data:audio/mp3;base64,...'}]};

1. Instrument table: 128 GM names (``gm_*``) in program order
2. Payload parsing: JS object literal -> JSON -> validated zones
3. SoundfontLibrary: coalesced loading and zone lookup
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

import numpy as np
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from .assets import AssetCache, Fetcher
from .audio import AudioBuffer, decode_audio
from .config import DEFAULT_SOUNDFONT_BASE_URL
from .errors import AssetUnavailableError

_LOGGER = logging.getLogger("beatgrid.soundfonts")

SOUNDFONT_SUFFIX = "_GeneralUserGS_sf2_file.js"


# =============================================================================
# PART 1: INSTRUMENT TABLE
# =============================================================================

GM_CATEGORIES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Piano", ("gm_piano", "gm_bright_piano", "gm_electric_grand", "gm_honky_tonk",
               "gm_epiano1", "gm_epiano2", "gm_harpsichord", "gm_clavinet")),
    ("Chromatic", ("gm_celesta", "gm_glockenspiel", "gm_music_box", "gm_vibraphone",
                   "gm_marimba", "gm_xylophone", "gm_tubular_bells", "gm_dulcimer")),
    ("Organ", ("gm_drawbar_organ", "gm_percussive_organ", "gm_rock_organ", "gm_church_organ",
               "gm_reed_organ", "gm_accordion", "gm_harmonica", "gm_bandoneon")),
    ("Guitar", ("gm_acoustic_guitar_nylon", "gm_acoustic_guitar_steel",
                "gm_electric_guitar_jazz", "gm_electric_guitar_clean",
                "gm_electric_guitar_muted", "gm_overdriven_guitar", "gm_distortion_guitar",
                "gm_guitar_harmonics")),
    ("Bass", ("gm_acoustic_bass", "gm_electric_bass_finger", "gm_electric_bass_pick",
              "gm_fretless_bass", "gm_slap_bass_1", "gm_slap_bass_2", "gm_synth_bass_1",
              "gm_synth_bass_2")),
    ("Strings", ("gm_violin", "gm_viola", "gm_cello", "gm_contrabass", "gm_tremolo_strings",
                 "gm_pizzicato_strings", "gm_orchestral_harp", "gm_timpani")),
    ("Ensemble", ("gm_string_ensemble_1", "gm_string_ensemble_2", "gm_synth_strings_1",
                  "gm_synth_strings_2", "gm_choir_aahs", "gm_voice_oohs", "gm_synth_choir",
                  "gm_orchestra_hit")),
    ("Brass", ("gm_trumpet", "gm_trombone", "gm_tuba", "gm_muted_trumpet", "gm_french_horn",
               "gm_brass_section", "gm_synth_brass_1", "gm_synth_brass_2")),
    ("Reed", ("gm_soprano_sax", "gm_alto_sax", "gm_tenor_sax", "gm_baritone_sax", "gm_oboe",
              "gm_english_horn", "gm_bassoon", "gm_clarinet")),
    ("Pipe", ("gm_piccolo", "gm_flute", "gm_recorder", "gm_pan_flute", "gm_blown_bottle",
              "gm_shakuhachi", "gm_whistle", "gm_ocarina")),
    ("Synth Lead", ("gm_lead_1_square", "gm_lead_2_sawtooth", "gm_lead_3_calliope",
                    "gm_lead_4_chiff", "gm_lead_5_charang", "gm_lead_6_voice",
                    "gm_lead_7_fifths", "gm_lead_8_bass_lead")),
    ("Synth Pad", ("gm_pad_new_age", "gm_pad_warm", "gm_pad_poly", "gm_pad_choir",
                   "gm_pad_bowed", "gm_pad_metallic", "gm_pad_halo", "gm_pad_sweep")),
    ("Synth FX", ("gm_fx_rain", "gm_fx_soundtrack", "gm_fx_crystal", "gm_fx_atmosphere",
                  "gm_fx_brightness", "gm_fx_goblins", "gm_fx_echoes", "gm_fx_sci_fi")),
    ("Ethnic", ("gm_sitar", "gm_banjo", "gm_shamisen", "gm_koto", "gm_kalimba", "gm_bagpipe",
                "gm_fiddle", "gm_shanai")),
    ("Percussive", ("gm_tinkle_bell", "gm_agogo", "gm_steel_drums", "gm_woodblock",
                    "gm_taiko_drum", "gm_melodic_tom", "gm_synth_drum", "gm_reverse_cymbal")),
    ("Sound FX", ("gm_guitar_fret_noise", "gm_breath_noise", "gm_seashore", "gm_bird_tweet",
                  "gm_telephone", "gm_helicopter", "gm_applause", "gm_gunshot")),
)

GM_INSTRUMENTS: tuple[str, ...] = tuple(
    name for _, names in GM_CATEGORIES for name in names
)
GM_PROGRAMS: Mapping[str, int] = MappingProxyType(
    {name: program for program, name in enumerate(GM_INSTRUMENTS)}
)


def is_gm_instrument(name: str) -> bool:
    return name in GM_PROGRAMS


def instrument_file(name: str) -> str:
    """``gm_piano`` -> ``0000_GeneralUserGS_sf2_file.js``."""
    return f"{GM_PROGRAMS[name] * 10:04d}{SOUNDFONT_SUFFIX}"


# =============================================================================
# PART 2: PAYLOAD PARSING
# =============================================================================

_ASSIGNMENT_RE = re.compile(r"var\s+\w+\s*=\s*(\{[\s\S]*\});?\s*$")
_JS_TOKEN_RE = re.compile(
    r"""
    (?P<single>'(?:[^'\\]|\\.)*')
    | (?P<double>"(?:[^"\\]|\\.)*")
    | (?P<lead>[{,]\s*)(?P<key>[A-Za-z_$][\w$]*)(?P<colon>\s*:)
    | ,(?P<close>\s*[}\]])
    """,
    re.VERBOSE,
)
_DATA_URL_RE = re.compile(r"^data:audio/\w+;base64,")


def _normalize_token(match: re.Match[str]) -> str:
    if match.group("single") is not None:
        inner = match.group("single")[1:-1].replace("\\'", "'").replace('"', '\\"')
        return f'"{inner}"'
    if match.group("double") is not None:
        return match.group("double")
    if match.group("key") is not None:
        return f'{match.group("lead")}"{match.group("key")}"{match.group("colon")}'
    return match.group("close")


def js_object_to_json(literal: str) -> str:
    """Quote bare keys, convert single-quoted strings, drop trailing commas."""
    return _JS_TOKEN_RE.sub(_normalize_token, literal)


def parse_payload(text: str) -> dict[str, Any]:
    match = _ASSIGNMENT_RE.search(text)
    if match is None:
        raise AssetUnavailableError("could not find a soundfont assignment in payload")
    try:
        data = json.loads(js_object_to_json(match.group(1)))
    except json.JSONDecodeError as exc:
        raise AssetUnavailableError(f"soundfont payload is not a valid object: {exc}") from exc
    if not isinstance(data, dict) or not isinstance(data.get("zones"), list):
        raise AssetUnavailableError("soundfont payload has no zones")
    return data


class ZonePayload(BaseModel):
    midi: int = 0
    original_pitch: float = 6000.0
    key_range_low: int = 0
    key_range_high: int = 127
    loop_start: int = 0
    loop_end: int = 0
    coarse_tune: int = 0
    fine_tune: int = 0
    sample_rate: int = 44_100
    ahdsr: bool | list[Any] = False
    file: str | None = None
    sample: str | None = None

    model_config = ConfigDict(
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )


@dataclass(frozen=True, slots=True)
class SoundfontZone:
    """One sampled key range. ``original_pitch`` is in cents (MIDI * 100)."""

    original_pitch: float
    key_range_low: int
    key_range_high: int
    loop_start: int
    loop_end: int
    sample_rate: int
    buffer: AudioBuffer | None
    coarse_tune: int = 0
    fine_tune: int = 0

    def contains(self, midi_note: int) -> bool:
        return self.key_range_low <= midi_note <= self.key_range_high


@dataclass(frozen=True, slots=True)
class Instrument:
    name: str
    zones: tuple[SoundfontZone, ...]

    def find_zone(self, midi_note: int) -> SoundfontZone | None:
        """First zone whose key range holds the note, else the first zone."""
        for zone in self.zones:
            if zone.contains(midi_note):
                return zone
        return self.zones[0] if self.zones else None


def _pcm16_buffer(encoded: str, sample_rate: int) -> AudioBuffer:
    raw = base64.b64decode(encoded)
    pcm = np.frombuffer(raw[: len(raw) - len(raw) % 2], dtype="<i2")
    if pcm.size == 0:
        raise AssetUnavailableError("soundfont sample contains no frames")
    return AudioBuffer.from_mono(pcm.astype(np.float32) / 32768.0, sample_rate)


def _decode_zone_audio(
    payload: ZonePayload, decoder: Callable[[bytes], AudioBuffer]
) -> AudioBuffer | None:
    try:
        if payload.file:
            return decoder(base64.b64decode(_DATA_URL_RE.sub("", payload.file)))
        if payload.sample:
            return _pcm16_buffer(payload.sample, payload.sample_rate)
    except binascii.Error as exc:
        _LOGGER.warning("Soundfont zone has invalid base64 audio: %s", exc)
    except AssetUnavailableError as exc:
        _LOGGER.warning("Failed to decode soundfont zone: %s", exc)
    return None


async def build_zone(
    raw: Mapping[str, Any], decoder: Callable[[bytes], AudioBuffer] = decode_audio
) -> SoundfontZone:
    try:
        payload = ZonePayload.model_validate(raw)
    except ValidationError as exc:
        raise AssetUnavailableError(f"invalid soundfont zone: {exc}") from exc
    buffer = await asyncio.to_thread(_decode_zone_audio, payload, decoder)
    return SoundfontZone(
        original_pitch=payload.original_pitch,
        key_range_low=payload.key_range_low,
        key_range_high=payload.key_range_high,
        loop_start=payload.loop_start,
        loop_end=payload.loop_end,
        sample_rate=payload.sample_rate,
        buffer=buffer,
        coarse_tune=payload.coarse_tune,
        fine_tune=payload.fine_tune,
    )


# =============================================================================
# PART 3: LIBRARY
# =============================================================================


class SoundfontLibrary:
    def __init__(
        self,
        fetcher: Fetcher,
        *,
        base_url: str = DEFAULT_SOUNDFONT_BASE_URL,
        decoder: Callable[[bytes], AudioBuffer] = decode_audio,
    ) -> None:
        self._fetcher = fetcher
        self._base_url = base_url
        self._decoder = decoder
        self._cache: AssetCache[str, Instrument] = AssetCache("soundfonts")

    @staticmethod
    def available_instruments() -> list[str]:
        return sorted(GM_INSTRUMENTS)

    @staticmethod
    def instruments_by_category() -> list[tuple[str, list[str]]]:
        return [(category, list(names)) for category, names in GM_CATEGORIES]

    @staticmethod
    def is_gm_instrument(name: str) -> bool:
        return is_gm_instrument(name)

    def url_for(self, name: str) -> str:
        return f"{self._base_url}{instrument_file(name)}"

    def peek(self, name: str) -> Instrument | None:
        return self._cache.peek(name)

    async def load_instrument(self, name: str) -> Instrument | None:
        if not is_gm_instrument(name):
            _LOGGER.warning("Unknown instrument: %s", name)
            return None
        return await self._cache.get_or_load(name, lambda: self._fetch_instrument(name))

    async def _fetch_instrument(self, name: str) -> Instrument:
        _LOGGER.info("Loading soundfont %s", name)
        raw = await self._fetcher.fetch(self.url_for(name))
        payload = parse_payload(raw.decode("utf-8", errors="replace"))
        zones = await asyncio.gather(
            *(build_zone(zone, self._decoder) for zone in payload["zones"])
        )
        instrument = Instrument(name=name, zones=tuple(zones))
        decoded = sum(1 for zone in zones if zone.buffer is not None)
        _LOGGER.info("Loaded %s with %d zones (%d decoded)", name, len(zones), decoded)
        return instrument

    @staticmethod
    def find_zone(instrument: Instrument, midi_note: int) -> SoundfontZone | None:
        return instrument.find_zone(midi_note)

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()

    def close(self) -> None:
        self._cache.cancel()
