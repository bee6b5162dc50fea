"""
Session record, favorites and preference persistence.

Everything here sits on top of a :class:`~bingobuzz.session.store.KeyValueStore`
and inherits its contract: persistence failures are logged and absorbed, and
a malformed record is treated exactly like a missing one.

Storage keys (namespaced ``bbz:v1:``):

- ``playlist``      JSON list of clip ids (the persisted play order)
- ``index``         cursor into that order
- ``createdAt``     session start, ms since epoch
- ``manifestEtag``  fingerprint of the manifest the order was built from
- ``favorites``     JSON list of favorite clip ids
- ``prefs``         JSON object ``{favoritesFirst, autoFadeSeconds}``
"""

from __future__ import annotations

import json
import logging
import math
import os
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from ..constants import (
    FRESH_ENV_VAR,
    MAX_AUTO_FADE_SECONDS,
    SESSION_TTL_MS,
    STORAGE_KEYS,
    STORAGE_NAMESPACE,
    TRUTHY_FRESH_VALUES,
)
from .store import KeyValueStore, MemoryStore

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def detect_fresh_flag(explicit: Optional[bool] = None, environ: Optional[Mapping[str, str]] = None) -> bool:
    """True when the caller asked to discard any persisted session.

    An explicit argument wins; otherwise ``BINGOBUZZ_FRESH`` is consulted.
    """
    if explicit is not None:
        return bool(explicit)
    env = os.environ if environ is None else environ
    raw = env.get(FRESH_ENV_VAR)
    if raw is None:
        return False
    return raw.strip().lower() in TRUTHY_FRESH_VALUES


def _parse_json(value: str) -> Any:
    try:
        return json.loads(value)
    except (TypeError, ValueError) as exc:
        logger.warning("[storage] failed to parse JSON %r: %s", value, exc)
        return None


def _parse_int(value: str) -> Optional[int]:
    try:
        return int(str(value).strip(), 10)
    except (TypeError, ValueError):
        return None


def clamp_auto_fade(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(seconds):
        return 0
    return int(min(max(round(seconds), 0), MAX_AUTO_FADE_SECONDS))


@dataclass
class SessionRecord:
    """Persisted snapshot of a session's progress."""

    playlist_ids: list[str]
    index: int
    created_at: int
    manifest_fingerprint: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "playlist_ids": list(self.playlist_ids),
            "index": self.index,
            "created_at": self.created_at,
            "manifest_fingerprint": self.manifest_fingerprint,
        }


@dataclass(frozen=True)
class ResetDecision:
    reset: bool
    reason: str


@dataclass
class Prefs:
    favorites_first: bool = False
    auto_fade_seconds: int = 0

    def __post_init__(self) -> None:
        self.favorites_first = bool(self.favorites_first)
        self.auto_fade_seconds = clamp_auto_fade(self.auto_fade_seconds)


@dataclass(frozen=True)
class FavoritesResult:
    favorites: list[str]
    trimmed: bool
    persistent: bool


@dataclass(frozen=True)
class PrefsResult:
    prefs: Prefs = field(default_factory=Prefs)
    persistent: bool = False


class SessionStorage:
    """
    Session continuity persistence.

    Args:
        store: Backing key/value store (in-memory when omitted)
        ttl_ms: Session lifetime; None or non-positive disables expiry
        fresh: Force (or suppress) the fresh flag instead of reading the environment
    """

    namespace = STORAGE_NAMESPACE

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        *,
        ttl_ms: Optional[int] = SESSION_TTL_MS,
        fresh: Optional[bool] = None,
    ) -> None:
        self._store = store if store is not None else MemoryStore()
        self._ttl: Optional[int] = ttl_ms if isinstance(ttl_ms, (int, float)) and ttl_ms > 0 else None
        self.has_fresh_flag = detect_fresh_flag(fresh)
        if self.has_fresh_flag:
            logger.info("[storage] fresh flag set; any persisted session will be discarded")

    @property
    def store(self) -> KeyValueStore:
        return self._store

    @property
    def persistent(self) -> bool:
        return self._store.durable and self._store.available

    @property
    def ttl(self) -> Optional[int]:
        return self._ttl

    def set_ttl(self, ttl_ms: Any) -> None:
        """Replace the TTL; anything but a positive number is ignored."""
        if isinstance(ttl_ms, (int, float)) and not isinstance(ttl_ms, bool) and ttl_ms > 0:
            self._ttl = int(ttl_ms)

    # ------------------------------------------------------------------
    # Session record
    # ------------------------------------------------------------------

    def load_session(self) -> Optional[SessionRecord]:
        store = self._store
        playlist_raw = store.get(STORAGE_KEYS["playlist"])
        index_raw = store.get(STORAGE_KEYS["index"])
        created_raw = store.get(STORAGE_KEYS["created_at"])
        fingerprint = store.get(STORAGE_KEYS["manifest_etag"])

        if not playlist_raw or index_raw is None or created_raw is None:
            return None

        playlist_ids = _parse_json(playlist_raw)
        index = _parse_int(index_raw)
        created_at = _parse_int(created_raw)

        if (
            not isinstance(playlist_ids, list)
            or not all(isinstance(clip_id, str) for clip_id in playlist_ids)
            or index is None
            or created_at is None
        ):
            logger.warning("[storage] persisted session is malformed; clearing it")
            self.clear_session()
            return None

        return SessionRecord(
            playlist_ids=playlist_ids,
            index=index,
            created_at=created_at,
            manifest_fingerprint=fingerprint or None,
        )

    def save_session(self, record: SessionRecord) -> bool:
        if not isinstance(record.playlist_ids, list) or not isinstance(record.index, int):
            logger.warning("[storage] invalid session payload: %s", record)
            return False
        store = self._store
        created_at = record.created_at if record.created_at is not None else now_ms()
        ok = store.set(STORAGE_KEYS["playlist"], json.dumps(record.playlist_ids))
        ok = store.set(STORAGE_KEYS["index"], str(record.index)) and ok
        ok = store.set(STORAGE_KEYS["created_at"], str(created_at)) and ok
        if record.manifest_fingerprint:
            ok = store.set(STORAGE_KEYS["manifest_etag"], record.manifest_fingerprint) and ok
        else:
            store.remove(STORAGE_KEYS["manifest_etag"])
        if not ok:
            logger.warning("[storage] session save incomplete; continuing in memory")
        return ok

    def clear_session(self) -> None:
        for key in ("playlist", "index", "created_at", "manifest_etag"):
            self._store.remove(STORAGE_KEYS[key])

    def should_reset(
        self,
        session: Optional[SessionRecord],
        manifest_fingerprint: Optional[str] = None,
        now: Optional[int] = None,
    ) -> ResetDecision:
        """Decide whether a persisted session may be resumed; first match wins."""
        if self.has_fresh_flag:
            return ResetDecision(True, "fresh-flag")
        if session is None:
            return ResetDecision(True, "missing-session")
        if manifest_fingerprint:
            if not session.manifest_fingerprint:
                return ResetDecision(True, "manifest-unknown")
            if session.manifest_fingerprint != manifest_fingerprint:
                return ResetDecision(True, "manifest-mismatch")
        if self._ttl and session.created_at:
            current = now if now is not None else now_ms()
            if current - session.created_at >= self._ttl:
                return ResetDecision(True, "session-expired")
        return ResetDecision(False, "session-valid")

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    def load_favorites(self, valid_ids: Optional[Iterable[str]] = None) -> FavoritesResult:
        """
        Read favorites, dropping blanks, duplicates and ids not in ``valid_ids``.

        When anything was dropped the trimmed list is written back.
        """
        persistent = self.persistent
        raw_value = self._store.get(STORAGE_KEYS["favorites"])
        if raw_value is None:
            return FavoritesResult(favorites=[], trimmed=False, persistent=persistent)

        raw = _parse_json(raw_value)
        if not isinstance(raw, list):
            logger.warning("[storage] favorites record is malformed; clearing it")
            self._store.remove(STORAGE_KEYS["favorites"])
            return FavoritesResult(favorites=[], trimmed=True, persistent=persistent)

        allowed = set(valid_ids) if valid_ids is not None else None
        favorites: list[str] = []
        for entry in raw:
            if not isinstance(entry, str) or not entry.strip():
                continue
            if entry in favorites:
                continue
            if allowed is not None and entry not in allowed:
                continue
            favorites.append(entry)

        trimmed = favorites != raw
        if trimmed:
            logger.info("[storage] trimmed favorites %d -> %d", len(raw), len(favorites))
            self.save_favorites(favorites)
        return FavoritesResult(favorites=favorites, trimmed=trimmed, persistent=persistent)

    def save_favorites(self, favorites: Iterable[str]) -> bool:
        cleaned: list[str] = []
        for entry in favorites:
            if isinstance(entry, str) and entry.strip() and entry not in cleaned:
                cleaned.append(entry)
        return self._store.set(STORAGE_KEYS["favorites"], json.dumps(cleaned))

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def load_prefs(self) -> PrefsResult:
        persistent = self.persistent
        raw_value = self._store.get(STORAGE_KEYS["prefs"])
        if raw_value is None:
            return PrefsResult(prefs=Prefs(), persistent=persistent)
        raw = _parse_json(raw_value)
        if not isinstance(raw, dict):
            logger.warning("[storage] prefs record is malformed; using defaults")
            return PrefsResult(prefs=Prefs(), persistent=persistent)
        prefs = Prefs(
            favorites_first=raw.get("favoritesFirst") is True,
            auto_fade_seconds=raw.get("autoFadeSeconds", 0),
        )
        return PrefsResult(prefs=prefs, persistent=persistent)

    def save_prefs(self, prefs: Prefs) -> bool:
        payload = {
            "favoritesFirst": bool(prefs.favorites_first),
            "autoFadeSeconds": clamp_auto_fade(prefs.auto_fade_seconds),
        }
        return self._store.set(STORAGE_KEYS["prefs"], json.dumps(payload))
