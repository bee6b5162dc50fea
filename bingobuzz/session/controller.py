"""
Board controller: the single-button control loop.

One action drives the board:

- idle: pull the next clip from the playlist and play it, skipping clips
  that fail until one plays or the skip ceiling is reached;
- playing: fade the current clip out;
- fading: ignored.

Every step publishes a :class:`BoardStatus` for whatever front-end is
attached (the CLI prints them).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from ..constants import STOP_FADE_MS
from ..engine.audio import AudioEngine, AudioState
from ..engine.errors import (
    AudioEngineError,
    PlaybackBlockedError,
    PlaybackBusyError,
    PlaybackCancelledError,
)
from ..engine.events import EndedEvent, EndReason
from ..engine.playlist import Playlist, PlaylistResult, PlaylistSnapshot
from ..manifest import Manifest
from .coordinator import BootstrapResult, SessionCoordinator
from .storage import Prefs

logger = logging.getLogger(__name__)


class BoardPhase(str, Enum):
    READY = "ready"
    PLAYING = "playing"
    FADING = "fading"
    SKIPPING = "skipping"
    BLOCKED = "blocked"
    EXHAUSTED = "exhausted"
    FAILED = "failed"
    EMPTY = "empty"


@dataclass(frozen=True)
class BoardStatus:
    phase: BoardPhase
    text: str
    action_label: str
    action_enabled: bool = True
    show_reset: bool = False
    clip: Any = None


StatusListener = Callable[[BoardStatus], None]


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class BoardController:
    """
    Runs the board on top of an engine, a playlist and a coordinator.

    Args:
        engine: Playback state machine
        coordinator: Session continuity (owns the playlist and storage)
        prefs: Favorites-first and auto-fade preferences
        stop_fade_ms: Fade length used for the action button
    """

    def __init__(
        self,
        engine: AudioEngine,
        coordinator: SessionCoordinator,
        *,
        prefs: Optional[Prefs] = None,
        stop_fade_ms: float = STOP_FADE_MS,
    ) -> None:
        self.engine = engine
        self.coordinator = coordinator
        self.prefs = prefs or Prefs()
        self.stop_fade_ms = stop_fade_ms
        self.favorites: list[str] = []
        self._status: Optional[BoardStatus] = None
        self._listeners: list[StatusListener] = []
        self._auto_fade_task: Optional[asyncio.Task] = None
        self._unsubscribe_ended = engine.on("ended", self._on_ended)

    @property
    def playlist(self) -> Playlist:
        return self.coordinator.playlist

    @property
    def status(self) -> Optional[BoardStatus]:
        return self._status

    # ------------------------------------------------------------------
    # Status publishing
    # ------------------------------------------------------------------

    def on_status(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self, status: BoardStatus) -> None:
        self._status = status
        logger.debug("[board] %s: %s", status.phase.value, status.text)
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as exc:
                logger.error("[board] status listener failed: %s", exc)

    def _ready_status(self) -> BoardStatus:
        playlist = self.playlist
        if playlist.size == 0:
            return BoardStatus(
                BoardPhase.EMPTY, "No clips available · check the manifest", "No clips", action_enabled=False
            )
        return BoardStatus(
            BoardPhase.READY,
            f"Ready · #{playlist.cursor + 1} of {playlist.size} up next",
            "Play next",
        )

    def _exhausted_status(self) -> BoardStatus:
        return BoardStatus(
            BoardPhase.EXHAUSTED,
            "Everything played this session · start over",
            "All played",
            action_enabled=False,
            show_reset=True,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(
        self,
        manifest: Manifest,
        *,
        favorites: Optional[Iterable[str]] = None,
        seed: Optional[int] = None,
    ) -> BootstrapResult:
        """Bootstrap the session for ``manifest`` and point the engine at its sources."""
        self.favorites = list(favorites or ())
        result = self.coordinator.bootstrap(
            manifest,
            seed=seed,
            favorites=self.favorites if self.prefs.favorites_first else None,
        )
        self.engine.configure(base_path=manifest.base_path, formats=manifest.formats)
        logger.info(
            "[board] session %s (%s) at #%d of %d",
            "resumed" if result.resumed else "started",
            result.decision.reason,
            result.snapshot.index + 1,
            result.snapshot.total,
        )
        if self.playlist.is_complete() and self.playlist.size:
            self._publish(self._exhausted_status())
        else:
            self._publish(self._ready_status())
            self._prefetch_upcoming()
        return result

    def reset(self, *, seed: Optional[int] = None) -> PlaylistSnapshot:
        """Abandon the current session and start a new one."""
        self.engine.cancel_prepare()
        self._cancel_auto_fade()
        self.engine.stop_immediate()
        snapshot = self.coordinator.reset_session(
            seed=seed,
            favorites=self.favorites if self.prefs.favorites_first else None,
        )
        self._publish(self._ready_status())
        self._prefetch_upcoming()
        return snapshot

    async def aclose(self) -> None:
        self._cancel_auto_fade()
        self._unsubscribe_ended()
        self._listeners.clear()
        await self.engine.aclose()

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def handle_action(self) -> None:
        """The one button: fade while playing, otherwise play the next clip."""
        state = self.engine.state
        if state is AudioState.PLAYING:
            await self.fade_current()
            return
        if state is AudioState.FADING:
            return
        if self.playlist.is_complete():
            self._publish(self._exhausted_status())
            return
        await self.play_next()

    async def fade_current(self) -> None:
        self._cancel_auto_fade()
        self._publish(
            BoardStatus(
                BoardPhase.FADING,
                "Fading out …",
                "Fading out …",
                action_enabled=False,
                clip=self.engine.current_clip,
            )
        )
        try:
            await self.engine.fade_out(self.stop_fade_ms)
        except AudioEngineError as exc:
            logger.error("[board] fade out failed: %s", exc)
            self._publish(BoardStatus(BoardPhase.READY, "Fade failed · try again", "Play next"))

    async def play_next(self) -> bool:
        """Serve the next clip and play it. Returns True once a clip is audible."""
        return await self._play_result(self.playlist.next())

    async def _play_result(self, result: PlaylistResult) -> bool:
        while True:
            clip = result.clip
            if clip is None:
                self._publish(self._exhausted_status())
                return False

            status_text = f"Playing #{(result.index or 0) + 1} of {result.total} …"
            self._publish(BoardStatus(BoardPhase.PLAYING, status_text, "Fade out", clip=clip))
            try:
                await self.engine.play(clip)
            except PlaybackBlockedError as exc:
                logger.error("[board] playback blocked: %s", exc)
                # Put the clip back under the cursor so the next action retries it
                self.playlist.rewind(result.index or 0)
                self._publish(
                    BoardStatus(
                        BoardPhase.BLOCKED,
                        "Audio output unavailable · check the sound device and try again",
                        "Play next",
                    )
                )
                return False
            except (PlaybackBusyError, PlaybackCancelledError) as exc:
                logger.info("[board] play of %s abandoned: %s", clip.id, exc)
                return False
            except AudioEngineError as exc:
                logger.warning("[board] %s failed to play: %s", clip.id, exc)
                skip = self.playlist.skip_failed(clip.id)
                if skip.clip is None:
                    self._publish(
                        BoardStatus(
                            BoardPhase.FAILED,
                            "Could not play the clips · start over",
                            "All played",
                            action_enabled=False,
                            show_reset=True,
                        )
                    )
                    return False
                snapshot = self.playlist.snapshot()
                self.coordinator.persist(index=snapshot.index, order=list(snapshot.order))
                self._publish(BoardStatus(BoardPhase.SKIPPING, "Skipped a file · trying the next …", "Play next"))
                result = skip
                continue

            self.playlist.mark_success()
            self.coordinator.persist(index=self.playlist.cursor)
            self._prefetch_upcoming()
            self._schedule_auto_fade(clip)
            self._publish(BoardStatus(BoardPhase.PLAYING, status_text, "Fade out", clip=clip))
            return True

    # ------------------------------------------------------------------
    # Engine callbacks and background work
    # ------------------------------------------------------------------

    def _on_ended(self, event: EndedEvent) -> None:
        if event.reason in (EndReason.CLEANUP, EndReason.ERROR):
            return
        self._cancel_auto_fade()
        if self.playlist.is_complete():
            self.engine.cancel_prepare()
            self._publish(self._exhausted_status())
        else:
            self._publish(self._ready_status())
            self._prefetch_upcoming()

    def _prefetch_upcoming(self) -> None:
        upcoming = self.playlist.peek()
        if upcoming is None:
            self.engine.cancel_prepare()
            return
        if not _loop_running():
            logger.debug("[board] no running loop; prefetch of %s skipped", upcoming.id)
            return
        self.engine.prepare(upcoming)

    def _schedule_auto_fade(self, clip: Any) -> None:
        self._cancel_auto_fade()
        seconds = self.prefs.auto_fade_seconds
        if seconds <= 0:
            return
        self._auto_fade_task = asyncio.create_task(self._auto_fade(clip, seconds))

    async def _auto_fade(self, clip: Any, seconds: float) -> None:
        await asyncio.sleep(seconds)
        if self.engine.state is AudioState.PLAYING and self.engine.current_clip is clip:
            logger.info("[board] auto-fade after %ss", seconds)
            self._auto_fade_task = None
            await self.fade_current()

    def _cancel_auto_fade(self) -> None:
        task = self._auto_fade_task
        self._auto_fade_task = None
        if task is not None and not task.done() and (not _loop_running() or task is not asyncio.current_task()):
            task.cancel()
