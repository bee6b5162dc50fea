"""
Key/value persistence for board state.

Values are strings (JSON encoded by the caller). Stores never raise: a read
that fails returns None, a write that fails returns False and is logged,
and the board simply carries on with in-memory state.

:class:`JsonFileStore` keeps every key in one JSON object on disk and
rewrites it atomically (temporary file + rename) on each change, so a crash
mid-write leaves the previous state intact.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from ..platform_paths import get_state_path

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Best-effort string store.

    ``durable`` tells whether values survive a process restart.
    """

    durable = False

    @property
    def available(self) -> bool:
        return True

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> bool:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> list[str]:
        ...


class MemoryStore(KeyValueStore):
    """Process-local store; used when no state file is wanted and in tests."""

    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> bool:
        self._data[key] = str(value)
        return True

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileStore(KeyValueStore):
    """
    Durable store backed by a single JSON file.

    Args:
        path: State file location (defaults to the per-user data directory)
    """

    durable = True

    def __init__(self, path: Optional[str | Path] = None) -> None:
        self.path = Path(path) if path else get_state_path()
        self._data: Optional[dict[str, str]] = None
        self._writable = True
        logger.debug("[store] JsonFileStore initialized with path: %s", self.path)

    @property
    def available(self) -> bool:
        return self._writable

    def _load(self) -> dict[str, str]:
        if self._data is not None:
            return self._data
        self._data = {}
        if not self.path.exists():
            logger.debug("[store] no state file found at %s", self.path)
            return self._data
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("[store] failed to read %s: %s", self.path, exc)
            return self._data
        if not isinstance(raw, dict):
            logger.warning("[store] ignoring non-object state file %s", self.path)
            return self._data
        self._data = {str(k): v for k, v in raw.items() if isinstance(v, str)}
        return self._data

    def _flush(self) -> bool:
        data = self._load()
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
        except OSError as exc:
            logger.warning("[store] failed to write %s: %s", self.path, exc)
            self._writable = False
            try:
                if tmp.exists():
                    tmp.unlink()
            except OSError:
                pass
            return False
        self._writable = True
        return True

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> bool:
        self._load()[key] = str(value)
        return self._flush()

    def remove(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._flush()

    def keys(self) -> list[str]:
        return list(self._load())

    def reload(self) -> None:
        """Drop the in-memory copy so the next read hits the disk again."""
        self._data = None
