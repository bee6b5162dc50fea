"""
Session continuity coordinator.

Decides at startup whether the persisted position may be resumed, seeds the
playlist accordingly, and keeps the persisted record in step with the
playlist afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from ..engine.playlist import Playlist, PlaylistSnapshot
from ..engine.shuffler import FavoritesOrder, build_favorites_first_order
from ..manifest import Manifest
from .storage import ResetDecision, SessionRecord, SessionStorage, now_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BootstrapResult:
    snapshot: PlaylistSnapshot
    decision: ResetDecision
    resumed: bool
    favorites_applied: bool = False


class SessionCoordinator:
    """
    Glue between :class:`Playlist` and :class:`SessionStorage`.

    Args:
        playlist: The sequencer to seed and observe
        storage: Persistence for the session record
        clock: Returns the current time in ms (tests pin it)
    """

    def __init__(
        self,
        playlist: Playlist,
        storage: SessionStorage,
        *,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.playlist = playlist
        self.storage = storage
        self._clock = clock or now_ms
        self._manifest: Optional[Manifest] = None
        self._session: Optional[SessionRecord] = None

    @property
    def session(self) -> Optional[SessionRecord]:
        return self._session

    @property
    def manifest(self) -> Optional[Manifest]:
        return self._manifest

    def bootstrap(
        self,
        manifest: Manifest,
        *,
        seed: Optional[int] = None,
        favorites: Optional[Iterable[str]] = None,
    ) -> BootstrapResult:
        """
        Resume or restart the session for ``manifest``.

        ``favorites`` only shapes a newly created order; a resumed session
        keeps its persisted order untouched.
        """
        self._manifest = manifest
        if manifest.ttl_ms:
            self.storage.set_ttl(manifest.ttl_ms)

        now = self._clock()
        session = self.storage.load_session()
        decision = self.storage.should_reset(session, manifest.fingerprint, now)
        logger.info("[session] bootstrap decision: %s", decision.reason)
        if decision.reset:
            self.storage.clear_session()

        clips = list(manifest.clips)
        favorites_applied = False
        if session is not None and not decision.reset:
            snapshot = self.playlist.init(clips, order=session.playlist_ids, index=session.index)
            created_at = session.created_at
            fingerprint = manifest.fingerprint or session.manifest_fingerprint
        else:
            snapshot = self.playlist.init(clips, seed=seed)
            fav_list = list(favorites or ())
            if fav_list:
                fav_order = build_favorites_first_order(clips, fav_list, self.playlist.seed)
                if fav_order.favorite_count:
                    snapshot = self.playlist.apply_order(fav_order.order, index=0)
                    favorites_applied = True
            created_at = now
            fingerprint = manifest.fingerprint

        self._session = SessionRecord(
            playlist_ids=list(snapshot.order),
            index=snapshot.index,
            created_at=created_at,
            manifest_fingerprint=fingerprint,
        )
        self.storage.save_session(self._session)
        return BootstrapResult(
            snapshot=snapshot,
            decision=decision,
            resumed=not decision.reset and session is not None,
            favorites_applied=favorites_applied,
        )

    def persist(self, *, index: Optional[int] = None, order: Optional[list[str]] = None) -> bool:
        """Overwrite the persisted record with the playlist's current progress."""
        if self._session is None:
            return False
        snapshot = self.playlist.snapshot()
        self._session = SessionRecord(
            playlist_ids=list(order if order is not None else snapshot.order),
            index=index if index is not None else snapshot.index,
            created_at=self._session.created_at,
            manifest_fingerprint=self._session.manifest_fingerprint,
        )
        return self.storage.save_session(self._session)

    def reset_session(
        self,
        *,
        seed: Optional[int] = None,
        favorites: Optional[Iterable[str]] = None,
    ) -> PlaylistSnapshot:
        """Start a new session: fresh order, cursor 0, new creation time."""
        snapshot = self.playlist.reset(seed=seed)
        fav_list = list(favorites or ())
        if fav_list:
            fav_order = build_favorites_first_order(self.playlist.clips, fav_list, self.playlist.seed)
            if fav_order.favorite_count:
                snapshot = self.playlist.apply_order(fav_order.order, index=0)
        fingerprint = self._manifest.fingerprint if self._manifest is not None else None
        self._session = SessionRecord(
            playlist_ids=list(snapshot.order),
            index=snapshot.index,
            created_at=self._clock(),
            manifest_fingerprint=fingerprint,
        )
        self.storage.save_session(self._session)
        logger.info("[session] reset (total=%d)", snapshot.total)
        return snapshot

    def apply_favorites_first(self, favorites: Iterable[str], *, seed: Optional[int] = None) -> FavoritesOrder:
        """Regenerate the order with favorites first and restart the cursor."""
        result = build_favorites_first_order(
            self.playlist.clips,
            favorites,
            seed if seed is not None else self.playlist.seed,
        )
        snapshot = self.playlist.apply_order(result.order, index=0)
        self.persist(index=snapshot.index, order=list(snapshot.order))
        logger.info(
            "[session] favorites-first order applied (favorites=%d rest=%d)",
            result.favorite_count, result.rest_count,
        )
        return result
