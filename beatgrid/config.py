from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from typing import Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .notes import REST

_LOGGER = logging.getLogger("beatgrid.config")

STEPS = 16
NOTE_SLOTS = 8
MIN_BPM = 60
MAX_BPM = 200
DEFAULT_SAMPLE_MAP_URL = (
    "https://raw.githubusercontent.com/felixroos/dough-samples/main/tidal-drum-machines.json"
)
DEFAULT_SOUNDFONT_BASE_URL = "https://surikov.github.io/webaudiofontdata/sound/"

TrackType = Literal["drum", "synth", "bass"]
Vowel = Literal["", "a", "e", "i", "o", "u", "ae", "aa", "oe", "ue", "y"]


class TrackParams(BaseModel):
    """Per-track sound parameters. Field names accept camelCase aliases."""

    gain: float = Field(default=0.8, ge=0.0, le=1.5)
    pan: float = Field(default=0.5, ge=0.0, le=1.0)
    speed: float = Field(default=1.0, ge=0.25, le=2.0)

    lpf: float = Field(default=20_000.0, ge=20.0, le=20_000.0)
    lpq: float = Field(default=0.0, ge=0.0, le=20.0)
    hpf: float = Field(default=20.0, ge=20.0, le=20_000.0)
    hpq: float = Field(default=0.0, ge=0.0, le=20.0)

    delay: float = Field(default=0.0, ge=0.0, le=1.0)
    delay_time: float = Field(default=0.25, ge=0.1, le=1.0)
    delay_feedback: float = Field(default=0.5, ge=0.0, le=0.9)

    reverb: float = Field(default=0.0, ge=0.0, le=1.0)
    reverb_size: float = Field(default=0.5, ge=0.0, le=1.0)

    distort: float = Field(default=0.0, ge=0.0, le=1.0)
    crush: float = Field(default=16.0, ge=1.0, le=16.0)

    phaser: float = Field(default=0.0, ge=0.0, le=1.0)
    phaser_depth: float = Field(default=0.5, ge=0.0, le=1.0)
    vowel: Vowel = ""

    attack: float = Field(default=0.001, ge=0.0, le=1.0)
    decay: float = Field(default=0.1, ge=0.0, le=1.0)
    sustain: float = Field(default=0.5, ge=0.0, le=1.0)
    release: float = Field(default=0.1, ge=0.0, le=1.0)

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Track(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str = ""
    type: TrackType = "drum"
    sound_id: str = "bd"
    pattern: list[bool] = Field(default_factory=lambda: [False] * STEPS)
    notes: list[str] = Field(default_factory=lambda: [REST] * NOTE_SLOTS)
    params: TrackParams = Field(default_factory=TrackParams)
    drum_bank: str | None = None
    muted: bool = False
    solo: bool = False

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @field_validator("pattern")
    @classmethod
    def _validate_pattern(cls, value: list[bool]) -> list[bool]:
        if len(value) != STEPS:
            raise ValueError(f"pattern must have {STEPS} steps, got {len(value)}")
        return value

    @field_validator("notes")
    @classmethod
    def _validate_notes(cls, value: list[str]) -> list[str]:
        if len(value) != NOTE_SLOTS:
            raise ValueError(f"notes must have {NOTE_SLOTS} slots, got {len(value)}")
        return value

    @property
    def is_melodic(self) -> bool:
        return self.type != "drum"


@runtime_checkable
class SequencerModel(Protocol):
    """What the engine reads from (and reports steps to) the owning sequencer."""

    @property
    def bpm(self) -> float: ...

    @property
    def master_volume(self) -> float: ...

    @property
    def active_tracks(self) -> Sequence[Track]: ...

    def on_step(self, step: int) -> None: ...


class Project(BaseModel):
    """Reference in-memory sequencer model."""

    name: str = "Untitled"
    tracks: list[Track] = Field(default_factory=list)
    bpm: float = Field(default=120.0, ge=MIN_BPM, le=MAX_BPM)
    master_volume: float = Field(default=0.7, ge=0.0, le=1.0)
    current_step: int = Field(default=0, ge=0, lt=STEPS)

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    @property
    def active_tracks(self) -> list[Track]:
        soloed = [track for track in self.tracks if track.solo]
        if soloed:
            return soloed
        return [track for track in self.tracks if not track.muted]

    def on_step(self, step: int) -> None:
        self.current_step = step

    def set_bpm(self, value: float) -> None:
        self.bpm = max(MIN_BPM, min(MAX_BPM, value))

    def add_track(
        self,
        sound_id: str,
        track_type: TrackType = "drum",
        *,
        drum_bank: str | None = None,
        name: str | None = None,
    ) -> Track:
        track = Track(
            name=name or sound_id,
            type=track_type,
            sound_id=sound_id,
            drum_bank=drum_bank,
        )
        self.tracks.append(track)
        _LOGGER.debug("Added %s track %s (%s)", track_type, track.id, sound_id)
        return track

    def get_track(self, track_id: str) -> Track:
        for track in self.tracks:
            if track.id == track_id:
                return track
        raise KeyError(track_id)

    def toggle_step(self, track_id: str, step: int) -> None:
        track = self.get_track(track_id)
        pattern = list(track.pattern)
        pattern[step] = not pattern[step]
        track.pattern = pattern

    def set_note(self, track_id: str, index: int, note: str) -> None:
        track = self.get_track(track_id)
        notes = list(track.notes)
        notes[index] = note
        track.notes = notes


class EngineSettings(BaseModel):
    sample_rate: int = Field(default=44_100, gt=0)
    block_size: int = Field(default=512, gt=0)
    lookahead: float = Field(default=0.1, gt=0.0)
    tick_interval: float = Field(default=0.025, gt=0.0)
    steps: int = Field(default=STEPS, gt=0)
    note_duration: float = Field(default=0.3, gt=0.0)
    sample_map_url: str = DEFAULT_SAMPLE_MAP_URL
    soundfont_base_url: str = DEFAULT_SOUNDFONT_BASE_URL
    fetch_timeout: float = Field(default=30.0, gt=0.0)
    seed: int | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")
