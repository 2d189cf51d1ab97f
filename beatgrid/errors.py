from __future__ import annotations


class BeatgridError(Exception):
    """Base error for the beatgrid engine."""


class EngineNotReadyError(BeatgridError):
    """Raised when playback or scheduling is requested before the audio context exists."""


class AssetUnavailableError(BeatgridError):
    """Raised when a sample or soundfont cannot be fetched, parsed, or decoded."""


class InvalidGraphError(BeatgridError):
    """Raised when a voice subgraph is wired incorrectly."""


class InvalidTempoError(BeatgridError, ValueError):
    """Raised when a tempo falls outside the supported BPM range."""


class PlaybackError(BeatgridError):
    """Raised when no real-time output backend is available."""
