from __future__ import annotations

from .assets import AssetCache, Fetcher, UrllibFetcher
from .audio import SAMPLE_RATE, AudioBuffer, decode_audio, write_wav
from .config import (
    EngineSettings,
    Project,
    SequencerModel,
    Track,
    TrackParams,
    TrackType,
)
from .dispatch import VoiceDispatcher
from .engine import Engine
from .errors import (
    AssetUnavailableError,
    BeatgridError,
    EngineNotReadyError,
    InvalidGraphError,
    InvalidTempoError,
    PlaybackError,
)
from .graph import GraphBuilder, Param, VoiceGraph
from .logging_utils import configure_logging as _configure_logging
from .notes import REST, note_to_frequency, note_to_midi
from .render import Renderer, render_voice
from .samples import SampleLibrary, SampleMap
from .scheduler import StepScheduler
from .session import Session
from .soundfonts import GM_INSTRUMENTS, Instrument, SoundfontLibrary, SoundfontZone
from .voices import Voice, build_voice, resolve_note, resolve_sound

__all__ = [
    "SAMPLE_RATE",
    "REST",
    "GM_INSTRUMENTS",
    "AssetCache",
    "AssetUnavailableError",
    "AudioBuffer",
    "BeatgridError",
    "Engine",
    "EngineNotReadyError",
    "EngineSettings",
    "Fetcher",
    "GraphBuilder",
    "Instrument",
    "InvalidGraphError",
    "InvalidTempoError",
    "Param",
    "PlaybackError",
    "Project",
    "Renderer",
    "SampleLibrary",
    "SampleMap",
    "SequencerModel",
    "Session",
    "SoundfontLibrary",
    "SoundfontZone",
    "StepScheduler",
    "Track",
    "TrackParams",
    "TrackType",
    "UrllibFetcher",
    "Voice",
    "VoiceDispatcher",
    "VoiceGraph",
    "build_voice",
    "decode_audio",
    "note_to_frequency",
    "note_to_midi",
    "render_voice",
    "resolve_note",
    "resolve_sound",
    "write_wav",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging
