"""Exception hierarchy for the playback engine."""

from __future__ import annotations


class AudioEngineError(RuntimeError):
    """Base class for playback failures.

    ``retryable`` tells the caller whether skipping to another clip may help.
    """

    retryable = False
    code = "audio-error"


class PlaybackBusyError(AudioEngineError):
    """``play()`` was called while a clip is playing or fading."""

    code = "busy"


class ClipSourceError(AudioEngineError):
    """A candidate source could not be fetched or decoded."""

    retryable = True
    code = "source"

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class PlaybackBlockedError(AudioEngineError):
    """The audio output refused to open; user action is required."""

    code = "not-allowed"


class PlaybackCancelledError(AudioEngineError):
    """A pending ``play()`` was preempted by a stop or fade."""

    code = "cancelled"
