"""
Playback backends built on the pygame mixer.

Two interchangeable implementations share one contract:

- :class:`SoundBackend` decodes the whole clip into a ``pygame.mixer.Sound``
  and plays it on a dedicated ``Channel``. Fades use the mixer's own
  gain ramp (``Channel.fadeout``), so they are sample-accurate.
- :class:`StreamBackend` streams the clip through ``pygame.mixer.music`` and
  animates the volume by hand for fades.

:func:`probe_backend` picks one once, by capability: the Sound backend is used
whenever the mixer offers decoded, channel-addressable sounds.

Both start from a prioritized candidate URL list and fall through to the next
candidate on fetch or decode failure (see :meth:`PlaybackBackend.start_first`).
"""

from __future__ import annotations

import asyncio
import contextlib
import io
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Sequence

os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")
import pygame

from ..logging_utils import PerfTracer
from .errors import AudioEngineError, ClipSourceError, PlaybackBlockedError, PlaybackCancelledError
from .fetch import ClipFetcher

logger = logging.getLogger(__name__)

BACKEND_ENV_VAR = "BINGOBUZZ_AUDIO_BACKEND"
RAMP_STEP_S = 0.02
FADE_FLOOR = 0.0001
MIXER_FREQUENCY = 44100
MIXER_BUFFER = 512


async def sleep_until(deadline: float, cancelled: Optional[asyncio.Event] = None) -> bool:
    """Wait until the loop clock reaches ``deadline``.

    Returns True if ``cancelled`` was set first, False once the deadline passed.
    """
    loop = asyncio.get_running_loop()
    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            return False
        if cancelled is None:
            await asyncio.sleep(remaining)
            continue
        if cancelled.is_set():
            return True
        try:
            await asyncio.wait_for(cancelled.wait(), timeout=remaining)
            return True
        except asyncio.TimeoutError:
            continue


def _format_hint(url: str) -> str:
    tail = url.rsplit("/", 1)[-1]
    return tail.rsplit(".", 1)[-1].lower() if "." in tail else ""


def _has_attr(obj: Any, name: str) -> bool:
    # pygame replaces unavailable submodules with stubs that raise
    # NotImplementedError on attribute access
    try:
        return callable(getattr(obj, name, None))
    except NotImplementedError:
        return False


@dataclass
class _SoundHandle:
    sound: Any
    channel: Any
    url: str
    volume: float


@dataclass
class _StreamHandle:
    url: str
    volume: float
    buffer: io.BytesIO


class PlaybackBackend(ABC):
    """Common contract of the two playback backends."""

    name = "base"

    def __init__(self, mixer: Any = None) -> None:
        self._mixer = mixer

    @property
    def mixer(self) -> Any:
        return self._mixer if self._mixer is not None else pygame.mixer

    def ensure_ready(self) -> None:
        """Open the audio output lazily.

        Raises:
            PlaybackBlockedError: the output device cannot be opened
        """
        mixer = self.mixer
        try:
            if mixer.get_init():
                return
            mixer.pre_init(MIXER_FREQUENCY, -16, 2, MIXER_BUFFER)
            mixer.init()
            logger.info("[audio] pygame mixer initialized (%s backend)", self.name)
        except (pygame.error, NotImplementedError) as exc:
            logger.error("[audio] mixer init failed: %s", exc)
            raise PlaybackBlockedError(f"audio: output unavailable: {exc}") from exc

    async def start_first(
        self,
        urls: Sequence[str],
        fetcher: ClipFetcher,
        *,
        volume: float = 1.0,
        tracer: Optional[PerfTracer] = None,
        cancelled: Optional[asyncio.Event] = None,
    ) -> Any:
        """
        Try each candidate in order and start the first one that plays.

        Returns:
            Backend-specific playback handle

        Raises:
            PlaybackBlockedError: immediately, without trying further candidates
            PlaybackCancelledError: ``cancelled`` was set; the mixer is left untouched
            AudioEngineError: the last source failure when every candidate failed
        """
        self.ensure_ready()
        last_error: Optional[AudioEngineError] = None
        for url in urls:
            if cancelled is not None and cancelled.is_set():
                raise PlaybackCancelledError("audio: playback cancelled before start")
            span = (
                tracer.span("clip_start", category="audio", metadata={"url": url, "backend": self.name})
                if tracer
                else contextlib.nullcontext()
            )
            try:
                with span:
                    data = await fetcher.fetch(url)
                    # A stop during the fetch must not reach the mixer
                    if cancelled is not None and cancelled.is_set():
                        raise PlaybackCancelledError("audio: playback cancelled before start")
                    return self.start(data, url, volume)
            except PlaybackBlockedError:
                raise
            except ClipSourceError as exc:
                last_error = exc
                logger.warning("[audio] %s backend failed to use %s: %s", self.name, url, exc)
        raise last_error or ClipSourceError("audio: no playable source found.")

    @abstractmethod
    def start(self, data: bytes, url: str, volume: float) -> Any:
        """Decode ``data`` and start playing it; raise ClipSourceError on decode failure."""

    @abstractmethod
    def is_active(self, handle: Any) -> bool:
        """True while the handle is still producing sound."""

    @abstractmethod
    async def fade(self, handle: Any, duration_ms: float, cancelled: asyncio.Event) -> bool:
        """Ramp to silence over ``duration_ms``; True if ``cancelled`` cut it short."""

    @abstractmethod
    def stop(self, handle: Any) -> None:
        """Tear the handle down. Must never raise."""


class SoundBackend(PlaybackBackend):
    """Fully decoded sounds on a mixer channel, with native gain fades."""

    name = "sound"

    def start(self, data: bytes, url: str, volume: float) -> _SoundHandle:
        mixer = self.mixer
        try:
            sound = mixer.Sound(file=io.BytesIO(data))
        except (pygame.error, ValueError, TypeError) as exc:
            raise ClipSourceError(f"audio: cannot decode {url}: {exc}", url=url) from exc
        channel = sound.play()
        if channel is None:
            raise ClipSourceError(f"audio: no free mixer channel for {url}", url=url)
        channel.set_volume(volume)
        logger.debug("[audio] sound started %s (volume=%.2f)", url, volume)
        return _SoundHandle(sound=sound, channel=channel, url=url, volume=volume)

    def is_active(self, handle: _SoundHandle) -> bool:
        try:
            return bool(handle.channel.get_busy())
        except pygame.error:
            return False

    async def fade(self, handle: _SoundHandle, duration_ms: float, cancelled: asyncio.Event) -> bool:
        duration_ms = max(float(duration_ms), 0.0)
        if duration_ms <= 0:
            return cancelled.is_set()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration_ms / 1000.0
        try:
            handle.channel.fadeout(int(round(duration_ms)))
        except pygame.error as exc:
            logger.warning("[audio] channel fadeout failed, waiting out the fade: %s", exc)
        return await sleep_until(deadline, cancelled)

    def stop(self, handle: _SoundHandle) -> None:
        try:
            handle.channel.stop()
        except pygame.error as exc:
            logger.warning("[audio] cleanup stop failed: %s", exc)


class StreamBackend(PlaybackBackend):
    """Streamed playback through ``pygame.mixer.music`` with a manual volume ramp."""

    name = "stream"

    def __init__(self, mixer: Any = None) -> None:
        super().__init__(mixer)
        # mixer.music is a single global voice; only the newest handle owns it
        self._active: Optional[_StreamHandle] = None

    def start(self, data: bytes, url: str, volume: float) -> _StreamHandle:
        music = self.mixer.music
        buffer = io.BytesIO(data)
        try:
            music.stop()
            music.load(buffer, _format_hint(url))
            music.set_volume(volume)
            music.play()
        except (pygame.error, ValueError, TypeError) as exc:
            raise ClipSourceError(f"audio: stream failed for {url}: {exc}", url=url) from exc
        logger.debug("[audio] stream started %s (volume=%.2f)", url, volume)
        self._active = _StreamHandle(url=url, volume=volume, buffer=buffer)
        return self._active

    def is_active(self, handle: _StreamHandle) -> bool:
        if handle is not self._active:
            return False
        try:
            return bool(self.mixer.music.get_busy())
        except pygame.error:
            return False

    async def fade(self, handle: _StreamHandle, duration_ms: float, cancelled: asyncio.Event) -> bool:
        duration_ms = max(float(duration_ms), 0.0)
        music = self.mixer.music
        if duration_ms <= 0:
            music.set_volume(0.0)
            return cancelled.is_set()

        loop = asyncio.get_running_loop()
        start = loop.time()
        duration_s = duration_ms / 1000.0
        deadline = start + duration_s
        start_volume = handle.volume
        while True:
            progress = min((loop.time() - start) / duration_s, 1.0)
            level = max(start_volume * (1.0 - progress), FADE_FLOOR)
            try:
                music.set_volume(level)
            except pygame.error as exc:
                logger.warning("[audio] volume ramp step failed: %s", exc)
            logger.debug("[audio.ramp] progress=%.2f volume=%.4f", progress, level)
            if progress >= 1.0:
                break
            step_deadline = min(loop.time() + RAMP_STEP_S, deadline)
            if await sleep_until(step_deadline, cancelled):
                return True
        return await sleep_until(deadline, cancelled)

    def stop(self, handle: _StreamHandle) -> None:
        if handle is not self._active:
            return
        self._active = None
        music = self.mixer.music
        try:
            music.stop()
            music.unload()
            music.set_volume(1.0)
        except pygame.error as exc:
            logger.warning("[audio] cleanup stream failed: %s", exc)


def supports_sound_backend(mixer: Any) -> bool:
    return _has_attr(mixer, "Sound") and _has_attr(mixer, "Channel")


def probe_backend(mixer: Any = None, preference: Optional[str] = None) -> PlaybackBackend:
    """
    Choose the playback backend by capability.

    Args:
        mixer: Mixer module to use (defaults to ``pygame.mixer``)
        preference: ``auto`` (default), ``sound`` or ``stream``; falls back to
            the ``BINGOBUZZ_AUDIO_BACKEND`` environment variable
    """
    target = mixer if mixer is not None else pygame.mixer
    choice = (preference or os.environ.get(BACKEND_ENV_VAR) or "auto").strip().lower()
    if choice == "stream":
        backend: PlaybackBackend = StreamBackend(mixer)
    elif supports_sound_backend(target):
        backend = SoundBackend(mixer)
    else:
        if choice == "sound":
            logger.warning("[audio] sound backend requested but unavailable; streaming instead")
        backend = StreamBackend(mixer)
    logger.info("[audio] selected %s backend", backend.name)
    return backend
