"""
Playlist sequencer.

Owns the single consumption order over every known clip id, serves clips one
at a time, and recovers from bad clips without replaying or losing any other
clip. The order and cursor are only ever mutated through the methods here.

Example:
    playlist = Playlist()
    playlist.init(manifest.clips, seed=123)
    result = playlist.next()
    while result.clip:
        ...
        result = playlist.next()
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from ..constants import MAX_CONSECUTIVE_SKIPS
from .shuffler import fisher_yates_shuffle

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _clamp(value: int, low: int, high: int) -> int:
    return min(max(value, low), high)


@dataclass(frozen=True)
class PlaylistSnapshot:
    order: list[str]
    index: int
    total: int
    remaining: int
    seed: Optional[int]

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": list(self.order),
            "index": self.index,
            "total": self.total,
            "remaining": self.remaining,
            "seed": self.seed,
        }


@dataclass(frozen=True)
class PlaylistResult:
    """
    Outcome of :meth:`Playlist.next` / :meth:`Playlist.skip_failed`.

    ``done`` is True once the cursor has reached the end of the order, which
    is already the case for the result carrying the last clip.
    """
    clip: Optional[Any]
    done: bool
    index: Optional[int] = None
    total: int = 0
    remaining: int = 0
    skipped: int = 0
    exhausted: bool = False


@dataclass
class _PlaylistState:
    track_map: dict[str, Any] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)
    cursor: int = 0
    seed: Optional[int] = None
    last_served_id: Optional[str] = None
    consecutive_skips: int = 0


class Playlist:
    """
    Gap-free, repeat-free play order with bounded skip recovery.

    Args:
        max_consecutive_skips: Failure streak after which :meth:`skip_failed`
            reports the session exhausted instead of trying further clips
    """

    def __init__(self, max_consecutive_skips: int = MAX_CONSECUTIVE_SKIPS) -> None:
        if max_consecutive_skips < 0:
            raise ValueError(f"max_consecutive_skips must be non-negative, got {max_consecutive_skips}")
        self.max_consecutive_skips = max_consecutive_skips
        self._state = _PlaylistState()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _hydrate_track_map(self, clips: Optional[Iterable[Any]]) -> None:
        self._state.track_map.clear()
        for clip in clips or ():
            clip_id = getattr(clip, "id", None)
            if clip_id:
                self._state.track_map[clip_id] = clip

    def _build_order(self, order: Optional[Sequence[str]], seed: Optional[int]) -> None:
        all_ids = list(self._state.track_map.keys())
        if not all_ids:
            self._state.order = []
            return

        if order:
            seen: set[str] = set()
            filtered: list[str] = []
            for clip_id in order:
                if clip_id in self._state.track_map and clip_id not in seen:
                    filtered.append(clip_id)
                    seen.add(clip_id)
            dropped = len(order) - len(filtered)
            appended = 0
            for clip_id in all_ids:
                if clip_id not in seen:
                    filtered.append(clip_id)
                    seen.add(clip_id)
                    appended += 1
            if dropped or appended:
                logger.info("[playlist] order repaired: dropped=%d appended=%d", dropped, appended)
            self._state.order = filtered
            return

        self._state.order = fisher_yates_shuffle(all_ids, seed)

    def _remaining(self) -> int:
        return max(len(self._state.order) - self._state.cursor, 0)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def snapshot(self) -> PlaylistSnapshot:
        return PlaylistSnapshot(
            order=list(self._state.order),
            index=self._state.cursor,
            total=len(self._state.order),
            remaining=self._remaining(),
            seed=self._state.seed,
        )

    def init(
        self,
        clips: Optional[Iterable[Any]],
        *,
        order: Optional[Sequence[str]] = None,
        index: Optional[int] = None,
        seed: Optional[int] = None,
    ) -> PlaylistSnapshot:
        """
        Load the clip set and establish the play order.

        Args:
            clips: Clip objects (anything with an ``id``)
            order: Previously persisted order to resume; validated and completed
            index: Cursor to resume from, clamped into ``[0, len(order)]``
            seed: Shuffle seed used when no order is supplied
        """
        self._hydrate_track_map(clips)
        if seed is not None:
            self._state.seed = seed
        elif self._state.seed is None:
            self._state.seed = _now_ms()
        self._build_order(order, self._state.seed)
        self._state.cursor = _clamp(index or 0, 0, len(self._state.order))
        self._state.last_served_id = None
        self._state.consecutive_skips = 0
        logger.debug(
            "[playlist] init total=%d index=%d seed=%s resumed=%s",
            len(self._state.order), self._state.cursor, self._state.seed, bool(order),
        )
        return self.snapshot()

    def next(self) -> PlaylistResult:
        """Serve the clip under the cursor and advance past it."""
        state = self._state
        if not state.order or state.cursor >= len(state.order):
            return PlaylistResult(clip=None, done=True, total=len(state.order))

        clip = None
        safety = len(state.order)
        while state.cursor < len(state.order) and safety > 0:
            clip_id = state.order[state.cursor]
            clip = state.track_map.get(clip_id)
            state.cursor += 1
            state.last_served_id = clip_id
            if clip is not None:
                break
            logger.warning("[playlist] skipping unknown id at cursor: %s", clip_id)
            safety -= 1

        if clip is None:
            return PlaylistResult(clip=None, done=True, total=len(state.order))

        return PlaylistResult(
            clip=clip,
            done=state.cursor >= len(state.order),
            index=state.cursor - 1,
            total=len(state.order),
            remaining=self._remaining(),
        )

    def peek(self) -> Optional[Any]:
        state = self._state
        if not state.order or state.cursor >= len(state.order):
            return None
        return state.track_map.get(state.order[state.cursor])

    def reset(self, *, seed: Optional[int] = None) -> PlaylistSnapshot:
        """Start over with a fresh full-length permutation."""
        self._state.seed = seed if seed is not None else _now_ms()
        self._build_order(None, self._state.seed)
        self._state.cursor = 0
        self._state.last_served_id = None
        self._state.consecutive_skips = 0
        logger.info("[playlist] reset total=%d seed=%s", len(self._state.order), self._state.seed)
        return self.snapshot()

    def apply_order(self, order: Optional[Sequence[str]] = None, *, index: int = 0) -> PlaylistSnapshot:
        """
        Install an externally computed order (e.g. favorites-first).

        Unknown ids are dropped, duplicates collapsed and missing clips
        appended, exactly as in :meth:`init`. Without an order the current
        clip set is reshuffled with the current seed.
        """
        self._build_order(order, self._state.seed)
        self._state.cursor = _clamp(index, 0, len(self._state.order))
        self._state.last_served_id = None
        self._state.consecutive_skips = 0
        return self.snapshot()

    def rewind(self, index: int) -> PlaylistSnapshot:
        """Move the cursor back to ``index``; the order and skip streak are untouched."""
        self._state.cursor = _clamp(index, 0, self._state.cursor)
        self._state.last_served_id = None
        return self.snapshot()

    def skip_failed(self, failed_id: Optional[str] = None) -> PlaylistResult:
        """
        Drop a clip that failed to play and serve its replacement.

        Removing an id that sits before the cursor pulls the cursor back by
        one so no other clip is passed over.
        """
        state = self._state
        target_id = failed_id if failed_id is not None else state.last_served_id
        if target_id:
            try:
                idx = state.order.index(target_id)
            except ValueError:
                idx = -1
            if idx != -1:
                del state.order[idx]
                if state.cursor > idx:
                    state.cursor -= 1

        state.consecutive_skips += 1
        logger.warning(
            "[playlist] skipped %s (streak=%d/%d)",
            target_id, state.consecutive_skips, self.max_consecutive_skips,
        )
        if state.consecutive_skips > self.max_consecutive_skips:
            return PlaylistResult(
                clip=None,
                done=True,
                total=len(state.order),
                skipped=state.consecutive_skips,
                exhausted=True,
            )

        if not state.order or state.cursor >= len(state.order):
            return PlaylistResult(
                clip=None,
                done=True,
                total=len(state.order),
                skipped=state.consecutive_skips,
                exhausted=True,
            )

        result = self.next()
        return PlaylistResult(
            clip=result.clip,
            done=result.done,
            index=result.index,
            total=result.total,
            remaining=result.remaining,
            skipped=state.consecutive_skips,
            exhausted=result.clip is None,
        )

    def mark_success(self) -> None:
        self._state.consecutive_skips = 0

    def is_complete(self) -> bool:
        return self._state.cursor >= len(self._state.order)

    @property
    def size(self) -> int:
        return len(self._state.order)

    @property
    def cursor(self) -> int:
        return self._state.cursor

    @property
    def seed(self) -> Optional[int]:
        return self._state.seed

    @property
    def consecutive_skips(self) -> int:
        return self._state.consecutive_skips

    @property
    def clips(self) -> list[Any]:
        """Known clips in track-map (manifest) order."""
        return list(self._state.track_map.values())

    def __repr__(self) -> str:
        return f"Playlist(size={self.size}, cursor={self.cursor}, seed={self.seed})"
