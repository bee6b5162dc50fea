"""
Session continuity for BingoBuzz.

Persists the play order and cursor, decides whether a stored session may be
resumed, and runs the board's control loop on top of the engine.

Core Components:
- KeyValueStore / JsonFileStore / MemoryStore: best-effort persistence
- SessionStorage: session record, favorites and prefs
- SessionCoordinator: resume-or-reset decision and record upkeep
- BoardController: single-action play/fade loop with skip recovery
"""

from .controller import BoardController, BoardPhase, BoardStatus
from .coordinator import BootstrapResult, SessionCoordinator
from .storage import (
    FavoritesResult,
    Prefs,
    PrefsResult,
    ResetDecision,
    SessionRecord,
    SessionStorage,
    detect_fresh_flag,
)
from .store import JsonFileStore, KeyValueStore, MemoryStore

__all__ = [
    "BoardController", "BoardPhase", "BoardStatus",
    "BootstrapResult", "SessionCoordinator",
    "FavoritesResult", "Prefs", "PrefsResult", "ResetDecision",
    "SessionRecord", "SessionStorage", "detect_fresh_flag",
    "JsonFileStore", "KeyValueStore", "MemoryStore",
]
