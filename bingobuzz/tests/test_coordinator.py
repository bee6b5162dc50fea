"""Tests for SessionCoordinator bootstrap and persistence."""

import pytest

from ..constants import STORAGE_KEYS
from ..engine.playlist import Playlist
from ..session.coordinator import SessionCoordinator
from ..session.storage import SessionRecord, SessionStorage
from ..session.store import MemoryStore
from .fakes import make_manifest

IDS = ["gong", "pling", "buzz", "cheer"]
NOW = 1_700_000_000_000


class Clock:
    def __init__(self, now: int = NOW) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def store():
    return MemoryStore()


def make_coordinator(store, *, fresh=False, clock=None):
    storage = SessionStorage(store, fresh=fresh)
    return SessionCoordinator(Playlist(), storage, clock=clock or Clock())


def seed_session(store, **overrides):
    values = dict(playlist_ids=["cheer", "buzz", "pling", "gong"], index=2, created_at=NOW - 60_000, manifest_fingerprint="etag-1")
    values.update(overrides)
    SessionStorage(store, fresh=False).save_session(SessionRecord(**values))


def test_first_bootstrap_creates_session(store):
    coordinator = make_coordinator(store)
    result = coordinator.bootstrap(make_manifest(IDS), seed=5)

    assert result.decision.reason == "missing-session"
    assert result.resumed is False
    assert sorted(result.snapshot.order) == sorted(IDS)
    assert coordinator.session.created_at == NOW
    assert coordinator.session.manifest_fingerprint == "etag-1"
    assert store.get(STORAGE_KEYS["index"]) == "0"


def test_valid_session_is_resumed(store):
    seed_session(store)
    coordinator = make_coordinator(store)
    result = coordinator.bootstrap(make_manifest(IDS))

    assert result.resumed is True
    assert result.decision.reason == "session-valid"
    assert result.snapshot.order == ["cheer", "buzz", "pling", "gong"]
    assert coordinator.playlist.cursor == 2
    assert coordinator.session.created_at == NOW - 60_000


def test_resume_completes_order_with_new_clips(store):
    seed_session(store, playlist_ids=["buzz", "gong"], index=1)
    coordinator = make_coordinator(store)
    result = coordinator.bootstrap(make_manifest(IDS))
    assert result.snapshot.order[:2] == ["buzz", "gong"]
    assert set(result.snapshot.order[2:]) == {"pling", "cheer"}


def test_manifest_change_resets(store):
    seed_session(store)
    coordinator = make_coordinator(store, clock=Clock(NOW + 5))
    result = coordinator.bootstrap(make_manifest(IDS, fingerprint="etag-2"))

    assert result.decision.reason == "manifest-mismatch"
    assert result.resumed is False
    assert coordinator.playlist.cursor == 0
    assert coordinator.session.created_at == NOW + 5
    assert coordinator.session.manifest_fingerprint == "etag-2"


def test_manifest_ttl_overrides_default(store):
    seed_session(store, created_at=NOW - 2 * 60 * 60 * 1000)
    coordinator = make_coordinator(store)
    result = coordinator.bootstrap(make_manifest(IDS, ttl_hours=1.0))
    assert result.decision.reason == "session-expired"
    assert coordinator.storage.ttl == 60 * 60 * 1000


def test_fresh_flag_resets_and_applies_favorites(store):
    seed_session(store)
    coordinator = make_coordinator(store, fresh=True)
    result = coordinator.bootstrap(make_manifest(IDS), seed=3, favorites=["pling", "cheer"])

    assert result.decision.reason == "fresh-flag"
    assert result.favorites_applied is True
    assert set(result.snapshot.order[:2]) == {"pling", "cheer"}


def test_favorites_do_not_reorder_resumed_session(store):
    seed_session(store)
    coordinator = make_coordinator(store)
    result = coordinator.bootstrap(make_manifest(IDS), favorites=["gong"])
    assert result.favorites_applied is False
    assert result.snapshot.order == ["cheer", "buzz", "pling", "gong"]


def test_persist_tracks_playlist_progress(store):
    coordinator = make_coordinator(store)
    coordinator.bootstrap(make_manifest(IDS), seed=1)
    coordinator.playlist.next()
    assert coordinator.persist(index=coordinator.playlist.cursor) is True

    reloaded = SessionStorage(store, fresh=False).load_session()
    assert reloaded.index == 1
    assert reloaded.created_at == NOW
    assert reloaded.playlist_ids == coordinator.playlist.snapshot().order


def test_persist_without_session_is_noop(store):
    coordinator = make_coordinator(store)
    assert coordinator.persist(index=0) is False


def test_reset_session_starts_over(store):
    clock = Clock()
    coordinator = make_coordinator(store, clock=clock)
    coordinator.bootstrap(make_manifest(IDS), seed=1)
    coordinator.playlist.next()

    clock.now = NOW + 1000
    snapshot = coordinator.reset_session(seed=2)

    assert snapshot.index == 0
    assert coordinator.session.created_at == NOW + 1000
    assert SessionStorage(store, fresh=False).load_session().index == 0


def test_apply_favorites_first_persists_new_order(store):
    coordinator = make_coordinator(store)
    coordinator.bootstrap(make_manifest(IDS), seed=1)
    coordinator.playlist.next()

    result = coordinator.apply_favorites_first(["buzz"], seed=9)

    assert result.favorite_count == 1
    assert coordinator.playlist.cursor == 0
    reloaded = SessionStorage(store, fresh=False).load_session()
    assert reloaded.playlist_ids[0] == "buzz"
    assert reloaded.index == 0
