"""Pitch-string resolution for melodic tracks.

Notes are written ``<letter>[#]<octave>`` (``"c4"``, ``"a#3"``); ``"~"`` is a rest.
Tuning is 12-tone equal temperament with A4 = 440 Hz.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from types import MappingProxyType
from typing import Literal

REST = "~"
A4_FREQUENCY = 440.0
A4_MIDI = 69

NoteName = Literal["c", "c#", "d", "d#", "e", "f", "f#", "g", "g#", "a", "a#", "b"]

NOTE_SEMITONES: Mapping[NoteName, int] = MappingProxyType(
    {
        "c": 0,
        "c#": 1,
        "d": 2,
        "d#": 3,
        "e": 4,
        "f": 5,
        "f#": 6,
        "g": 7,
        "g#": 8,
        "a": 9,
        "a#": 10,
        "b": 11,
    }
)

SCALES: Mapping[str, tuple[int, ...]] = MappingProxyType(
    {
        "chromatic": (0, 1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11),
        "major": (0, 2, 4, 5, 7, 9, 11),
        "minor": (0, 2, 3, 5, 7, 8, 10),
        "dorian": (0, 2, 3, 5, 7, 9, 10),
        "phrygian": (0, 1, 3, 5, 7, 8, 10),
        "lydian": (0, 2, 4, 6, 7, 9, 11),
        "mixolydian": (0, 2, 4, 5, 7, 9, 10),
        "pentatonicMajor": (0, 2, 4, 7, 9),
        "pentatonicMinor": (0, 3, 5, 7, 10),
        "blues": (0, 3, 5, 6, 7, 10),
    }
)

_NOTE_RE = re.compile(r"^([a-g]#?)(\d)$", re.IGNORECASE)
_NOTE_ORDER: tuple[NoteName, ...] = tuple(NOTE_SEMITONES)


def is_rest(note: str) -> bool:
    return note == REST


def _parse(note: str) -> tuple[int, int] | None:
    match = _NOTE_RE.match(note)
    if match is None:
        return None
    name = match.group(1).lower()
    semitone = NOTE_SEMITONES.get(name)  # type: ignore[call-overload]
    if semitone is None:
        return None
    return semitone, int(match.group(2))


def note_to_frequency(note: str) -> float:
    """Return the frequency in Hz; malformed input resolves to A4."""

    parsed = _parse(note)
    if parsed is None:
        return A4_FREQUENCY
    semitone, octave = parsed
    semitones_from_a4 = (octave - 4) * 12 + (semitone - 9)
    if semitones_from_a4 == 0:
        return A4_FREQUENCY
    return A4_FREQUENCY * 2 ** (semitones_from_a4 / 12)


def note_to_midi(note: str) -> int:
    """Return the MIDI key number (c4 = 60); malformed input resolves to A4."""

    parsed = _parse(note)
    if parsed is None:
        return A4_MIDI
    semitone, octave = parsed
    return (octave + 1) * 12 + semitone


def midi_to_frequency(midi: float) -> float:
    return A4_FREQUENCY * 2 ** ((midi - A4_MIDI) / 12)


def notes_in_scale(root: NoteName, scale: str, octave: int) -> list[str]:
    if scale not in SCALES:
        raise ValueError(f"Unknown scale: {scale}. Valid: {list(SCALES)}")
    root_index = _NOTE_ORDER.index(root)
    notes: list[str] = []
    for interval in SCALES[scale]:
        index = root_index + interval
        notes.append(f"{_NOTE_ORDER[index % 12]}{octave + index // 12}")
    return notes


def note_options(root: NoteName = "c", scale: str = "major", base_octave: int = 3) -> list[str]:
    """Rest plus the scale spelled over the octave below, at, and above ``base_octave``."""

    options = [REST]
    for octave in range(base_octave - 1, base_octave + 2):
        if 1 <= octave <= 6:
            options.extend(notes_in_scale(root, scale, octave))
    return list(dict.fromkeys(options))
