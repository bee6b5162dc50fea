"""
Playback state machine.

The AudioEngine plays exactly one clip at a time through whichever backend
the capability probe picked, supports timed fade-outs and hard stops, and
publishes one ``ended`` event per playback.

States::

    idle -> playing -> idle      (natural end, stop_immediate)
                    -> fading -> idle   (fade_out completes)
                    -> error             (every candidate failed)

``play()`` while playing or fading fails at once with PlaybackBusyError;
ordering retries is the caller's job.

Example:
    ```python
    engine = AudioEngine(base_path="https://example.org/sounds", formats=["webm", "mp3"])
    engine.on("ended", lambda evt: print(evt.clip.id, evt.reason.value))
    await engine.play(clip)
    await engine.fade_out(1200)
    ```
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from ..constants import DEFAULT_BASE_PATH, DEFAULT_FORMATS
from ..logging_utils import PerfTracer
from .audio_utils import build_source_urls, db_to_volume
from .backends import PlaybackBackend, probe_backend, sleep_until
from .errors import AudioEngineError, PlaybackBusyError, PlaybackCancelledError
from .events import EndedEvent, EndReason, PlaybackEventEmitter, PlaybackEventType, StateEvent
from .fetch import ClipFetcher

logger = logging.getLogger(__name__)


class AudioState(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    FADING = "fading"
    ERROR = "error"


@dataclass
class _PlaybackToken:
    """Cancellation token for one playback; set when the playback is torn down."""

    clip_id: str
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)


def _safe_duration(duration_ms: Any) -> float:
    try:
        value = float(duration_ms)
    except (TypeError, ValueError):
        return 0.0
    if value != value or value in (float("inf"), float("-inf")):
        return 0.0
    return max(value, 0.0)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class AudioEngine:
    """
    Single-voice clip player.

    Args:
        base_path: Default URL/path prefix for clip sources
        formats: Encoding extensions, most preferred first
        backend: Explicit backend (skips the capability probe)
        mixer: Mixer module handed to the probe (tests pass a fake)
        fetcher: Byte fetcher shared by playback and prefetch
        poll_interval: Seconds between natural-end checks
    """

    POLL_INTERVAL_S = 0.05

    def __init__(
        self,
        *,
        base_path: Optional[str] = None,
        formats: Optional[Iterable[str]] = None,
        backend: Optional[PlaybackBackend] = None,
        mixer: Any = None,
        fetcher: Optional[ClipFetcher] = None,
        poll_interval: Optional[float] = None,
    ) -> None:
        self._backend = backend or probe_backend(mixer)
        self._fetcher = fetcher or ClipFetcher()
        self._events = PlaybackEventEmitter()
        self._tracer = PerfTracer("audio")
        self._poll_interval = poll_interval if poll_interval is not None else self.POLL_INTERVAL_S

        self._status = AudioState.IDLE
        self._current_clip: Any = None
        self._handle: Any = None
        self._token: Optional[_PlaybackToken] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._prefetch_task: Optional[asyncio.Task] = None
        self._last_error: Optional[BaseException] = None

        self._base_path = DEFAULT_BASE_PATH
        self._formats: list[str] = list(DEFAULT_FORMATS)
        self.configure(base_path=base_path, formats=formats)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> AudioState:
        return self._status

    @property
    def current_clip(self) -> Any:
        return self._current_clip

    @property
    def last_error(self) -> Optional[BaseException]:
        return self._last_error

    @property
    def backend_name(self) -> str:
        return self._backend.name

    @property
    def base_path(self) -> str:
        return self._base_path

    @property
    def formats(self) -> list[str]:
        return list(self._formats)

    def source_urls(self, clip: Any) -> list[str]:
        return build_source_urls(clip, self._base_path, self._formats)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: str, handler: Callable[[Any], None]) -> Callable[[], None]:
        """Subscribe to ``ended`` (or ``state``); returns an unsubscribe function."""
        return self._events.subscribe(event, handler)

    def _set_status(self, status: AudioState) -> None:
        previous = self._status
        self._status = status
        if previous is not status:
            logger.debug("[audio] state %s -> %s", previous.value, status.value)
            self._events.emit(
                PlaybackEventType.STATE,
                StateEvent(previous=previous.value, current=status.value, clip=self._current_clip),
            )

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure(self, *, base_path: Optional[str] = None, formats: Optional[Iterable[str]] = None) -> None:
        """Update URL defaults; applies to the next play()/prepare() only."""
        if isinstance(base_path, str) and base_path.strip():
            self._base_path = base_path.strip()
        if formats is not None:
            cleaned = [fmt.strip() for fmt in formats if isinstance(fmt, str) and fmt.strip()]
            if cleaned:
                self._formats = cleaned

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def _cleanup_playback(
        self,
        *,
        notify: bool = False,
        reason: EndReason = EndReason.CLEANUP,
        error: Optional[BaseException] = None,
    ) -> None:
        clip = self._current_clip

        if self._token is not None:
            self._token.cancelled.set()
        self._token = None

        task = self._watch_task
        self._watch_task = None
        if task is not None and task is not _current_task() and not task.done():
            task.cancel()

        if self._handle is not None:
            self._backend.stop(self._handle)
        self._handle = None
        self._current_clip = None

        if notify and clip is not None:
            self._events.emit(PlaybackEventType.ENDED, EndedEvent(clip=clip, reason=reason, error=error))

    async def play(self, clip: Any) -> None:
        """
        Start playing ``clip``; returns once sound is audible.

        Raises:
            PlaybackBusyError: a clip is already playing or fading
            PlaybackBlockedError: the audio output refused to open
            ClipSourceError: every candidate failed (last underlying error)
            PlaybackCancelledError: stopped or faded before the sound started
        """
        if self._status in (AudioState.PLAYING, AudioState.FADING):
            raise PlaybackBusyError("audio: busy")
        if clip is None:
            raise AudioEngineError("audio: clip metadata missing")
        urls = self.source_urls(clip)
        if not urls:
            raise AudioEngineError("audio: no source urls")

        self._cleanup_playback(notify=True, reason=EndReason.CLEANUP)
        token = _PlaybackToken(clip_id=getattr(clip, "id", ""))
        self._token = token
        self._current_clip = clip
        self._last_error = None
        self._set_status(AudioState.PLAYING)

        try:
            handle = await self._backend.start_first(
                urls,
                self._fetcher,
                volume=db_to_volume(getattr(clip, "gain", None)),
                tracer=self._tracer,
                cancelled=token.cancelled,
            )
        except asyncio.CancelledError:
            # The caller's task went away mid-start; never leave the engine busy
            if self._token is token:
                self._cleanup_playback(notify=True, reason=EndReason.STOPPED)
                self._set_status(AudioState.IDLE)
            raise
        except PlaybackCancelledError:
            raise
        except Exception as exc:
            if token.cancelled.is_set():
                raise PlaybackCancelledError("audio: playback cancelled before start") from exc
            logger.error("[audio] play failed for %s: %s", token.clip_id, exc)
            self._cleanup_playback(notify=True, reason=EndReason.ERROR, error=exc)
            self._last_error = exc
            self._set_status(AudioState.ERROR)
            raise

        if token.cancelled.is_set() or self._token is not token:
            self._backend.stop(handle)
            raise PlaybackCancelledError("audio: playback cancelled before start")

        self._handle = handle
        self._watch_task = asyncio.create_task(self._watch_until_end(token))
        logger.info("[audio] playing %s via %s", token.clip_id, self._backend.name)
        if self._tracer.enabled:
            logger.debug("[audio.perf] %s", self._tracer.dump_json())
            self._tracer.clear()

    async def _watch_until_end(self, token: _PlaybackToken) -> None:
        """Poll the backend and finish the playback when it falls silent."""
        while self._token is token and self._status is AudioState.PLAYING:
            await asyncio.sleep(self._poll_interval)
            if self._token is not token or self._status is not AudioState.PLAYING:
                return
            if not self._backend.is_active(self._handle):
                logger.debug("[audio] %s reached its end", token.clip_id)
                self._cleanup_playback(notify=True, reason=EndReason.ENDED)
                self._set_status(AudioState.IDLE)
                return

    async def fade_out(self, duration_ms: float = 0) -> None:
        """
        Fade the current clip to silence, then tear it down.

        No-op unless playing. The ``faded`` event fires exactly once, after the
        full duration has elapsed, unless stop_immediate() preempts the fade.
        """
        if self._status is not AudioState.PLAYING:
            return
        self._set_status(AudioState.FADING)
        duration = _safe_duration(duration_ms)
        token = self._token
        handle = self._handle
        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration / 1000.0
        logger.info("[audio] fading out over %.0fms", duration)

        try:
            if handle is not None and token is not None:
                preempted = await self._backend.fade(handle, duration, token.cancelled)
            else:
                # Still starting: abort the pending start and honour the duration
                if token is not None:
                    token.cancelled.set()
                preempted = False
                await sleep_until(deadline)
            if preempted or self._token is not token or self._status is not AudioState.FADING:
                return
            self._cleanup_playback(notify=True, reason=EndReason.FADED)
            self._set_status(AudioState.IDLE)
        except Exception as exc:
            logger.error("[audio] fade failed: %s", exc)
            self._cleanup_playback(notify=True, reason=EndReason.ERROR, error=exc)
            self._last_error = exc
            self._set_status(AudioState.ERROR)
            raise

    def stop_immediate(self) -> None:
        """Tear down whatever is playing, fading or starting."""
        self._cleanup_playback(notify=True, reason=EndReason.STOPPED)
        self._set_status(AudioState.IDLE)

    # ------------------------------------------------------------------
    # Prefetch
    # ------------------------------------------------------------------

    def prepare(self, clip: Any) -> Optional[asyncio.Task]:
        """Begin fetching the upcoming clip's bytes; supersedes any prior prefetch."""
        self.cancel_prepare()
        urls = self.source_urls(clip)
        if not urls:
            return None
        self._prefetch_task = asyncio.create_task(self._prefetch(clip, urls))
        return self._prefetch_task

    async def _prefetch(self, clip: Any, urls: list[str]) -> None:
        clip_id = getattr(clip, "id", clip)
        try:
            url = await self._fetcher.prefetch(urls)
            if url:
                logger.debug("[audio] prefetched %s from %s", clip_id, url)
        except asyncio.CancelledError:
            logger.debug("[audio] prefetch cancelled for %s", clip_id)
            raise
        except AudioEngineError as exc:
            logger.warning("[audio] prefetch failed for %s: %s", clip_id, exc)

    def cancel_prepare(self) -> None:
        task = self._prefetch_task
        self._prefetch_task = None
        if task is not None and not task.done():
            task.cancel()
        self._fetcher.discard_cache()

    async def aclose(self) -> None:
        """Stop playback, abort prefetch and release the HTTP client."""
        self.cancel_prepare()
        self.stop_immediate()
        self._events.clear_all()
        await self._fetcher.aclose()
