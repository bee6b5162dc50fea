"""Playback engine for BingoBuzz.

Sequencing (Playlist, seeded shuffles) and the single-voice AudioEngine with
its pygame backends.
"""

from .audio import AudioEngine, AudioState
from .backends import PlaybackBackend, SoundBackend, StreamBackend, probe_backend
from .errors import (
    AudioEngineError,
    ClipSourceError,
    PlaybackBlockedError,
    PlaybackBusyError,
    PlaybackCancelledError,
)
from .events import EndedEvent, EndReason, PlaybackEventEmitter, PlaybackEventType, StateEvent
from .fetch import ClipFetcher
from .playlist import Playlist, PlaylistResult, PlaylistSnapshot
from .shuffler import FavoritesOrder, build_favorites_first_order, fisher_yates_shuffle

__all__ = [
    "AudioEngine", "AudioState",
    "PlaybackBackend", "SoundBackend", "StreamBackend", "probe_backend",
    "AudioEngineError", "ClipSourceError", "PlaybackBlockedError",
    "PlaybackBusyError", "PlaybackCancelledError",
    "EndedEvent", "EndReason", "PlaybackEventEmitter", "PlaybackEventType", "StateEvent",
    "ClipFetcher",
    "Playlist", "PlaylistResult", "PlaylistSnapshot",
    "FavoritesOrder", "build_favorites_first_order", "fisher_yates_shuffle",
]
