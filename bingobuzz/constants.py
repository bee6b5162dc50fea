"""Shared defaults for the board, engine and session layers."""

SESSION_TTL_MS = 3 * 60 * 60 * 1000  # 3 hours
STOP_FADE_MS = 1200
PREFETCH_AHEAD = 1
MAX_CONSECUTIVE_SKIPS = 3
MAX_AUTO_FADE_SECONDS = 120

DEFAULT_BASE_PATH = "assets/sounds/bingobuzz"
DEFAULT_FORMATS = ("webm", "mp3")
MANIFEST_FILENAME = "manifest.json"

STORAGE_NAMESPACE = "bbz:v1"
STORAGE_KEYS = {
    "playlist": f"{STORAGE_NAMESPACE}:playlist",
    "index": f"{STORAGE_NAMESPACE}:index",
    "created_at": f"{STORAGE_NAMESPACE}:createdAt",
    "manifest_etag": f"{STORAGE_NAMESPACE}:manifestEtag",
    "favorites": f"{STORAGE_NAMESPACE}:favorites",
    "prefs": f"{STORAGE_NAMESPACE}:prefs",
}

FRESH_ENV_VAR = "BINGOBUZZ_FRESH"
TRUTHY_FRESH_VALUES = frozenset({"1", "true", "yes", "fresh"})
