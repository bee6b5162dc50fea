"""Playback event system for broadcasting engine lifecycle changes.

Provides event types, event payloads, and an emitter for decoupled
communication between the AudioEngine and the board controller, CLI, and
tests.

Usage:
    emitter = PlaybackEventEmitter()
    unsubscribe = emitter.subscribe("ended", lambda evt: print(evt.reason))
    emitter.emit("ended", EndedEvent(clip=clip, reason=EndReason.FADED))
    unsubscribe()
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional


class PlaybackEventType(str, Enum):
    """Events the engine publishes."""

    ENDED = "ended"    # Exactly once per completed/failed/stopped/faded playback
    STATE = "state"    # Every state transition (idle/playing/fading/error)


class EndReason(str, Enum):
    """Why a playback ended."""

    ENDED = "ended"        # Played to its natural end
    FADED = "faded"        # Faded out on request
    STOPPED = "stopped"    # Hard stop
    ERROR = "error"        # Every candidate source failed
    CLEANUP = "cleanup"    # Stale playback torn down while starting a new one


@dataclass
class EndedEvent:
    """Payload of the ``ended`` event.

    Attributes:
        clip: The clip whose playback ended
        reason: Why it ended
        error: Underlying exception for ``reason == ERROR``
        timestamp: Set by the emitter when not provided
    """
    clip: Any
    reason: EndReason
    error: Optional[BaseException] = None
    timestamp: Optional[float] = None

    def __str__(self) -> str:
        clip_id = getattr(self.clip, "id", self.clip)
        return f"EndedEvent({clip_id}, {self.reason.value})"


@dataclass
class StateEvent:
    previous: str
    current: str
    clip: Any = None
    timestamp: Optional[float] = field(default=None)


Listener = Callable[[Any], None]


class PlaybackEventEmitter:
    """Multi-subscriber broadcast for playback events.

    Listener exceptions are logged and never propagate into the engine.
    """

    def __init__(self) -> None:
        self._subscribers: dict[PlaybackEventType, list[Listener]] = {}
        self.logger = logging.getLogger(__name__)

    def subscribe(self, event_type: PlaybackEventType | str, callback: Listener) -> Callable[[], None]:
        """Subscribe to an event type.

        Returns:
            Function that removes this subscription when called. Unknown event
            names and non-callables yield a no-op unsubscribe.
        """
        try:
            key = PlaybackEventType(event_type)
        except ValueError:
            self.logger.warning("[events] Unknown event type: %s", event_type)
            return lambda: None
        if not callable(callback):
            return lambda: None

        listeners = self._subscribers.setdefault(key, [])
        if callback not in listeners:
            listeners.append(callback)
            self.logger.debug("[events] Subscribed to %s (total=%d)", key.value, len(listeners))

        def _unsubscribe() -> None:
            self.unsubscribe(key, callback)

        return _unsubscribe

    def unsubscribe(self, event_type: PlaybackEventType | str, callback: Listener) -> None:
        try:
            key = PlaybackEventType(event_type)
        except ValueError:
            return
        listeners = self._subscribers.get(key)
        if listeners and callback in listeners:
            listeners.remove(callback)
            self.logger.debug("[events] Unsubscribed from %s (total=%d)", key.value, len(listeners))

    def emit(self, event_type: PlaybackEventType | str, payload: Any) -> None:
        key = PlaybackEventType(event_type)
        if getattr(payload, "timestamp", "missing") is None:
            payload.timestamp = time.time()

        self.logger.debug("[events] Emitting %s: %s", key.value, payload)

        # Copy so listeners may unsubscribe while being notified
        for callback in list(self._subscribers.get(key, ())):
            try:
                callback(payload)
            except Exception as e:
                self.logger.error("[events] Callback error for %s: %s", key.value, e, exc_info=True)

    def listener_count(self, event_type: PlaybackEventType | str) -> int:
        return len(self._subscribers.get(PlaybackEventType(event_type), ()))

    def clear_all(self) -> None:
        """Remove all event subscribers (useful for testing/cleanup)."""
        self._subscribers.clear()
        self.logger.debug("[events] Cleared all subscribers")
