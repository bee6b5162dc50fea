"""
Seeded shuffling for play orders.

Provides a deterministic 32-bit PRNG (mulberry32) and a Fisher-Yates shuffle
driven by it, so that the same seed always yields the same permutation of the
same input. Also builds favorites-first orders for the sequencer.

Seeds:
    - integers (and finite floats) map to unsigned 32-bit
    - strings hash to unsigned 32-bit via a 31-multiplier rolling hash
    - anything else, including no seed at all, falls back to ``random.random``
      and is therefore not reproducible
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar

T = TypeVar("T")

_MASK_32 = 0xFFFFFFFF
_MULBERRY_INCREMENT = 0x6D2B79F5
FAVORITES_SEED_SALT = 0x9E3779B1


def to_seed(value: Any) -> Optional[int]:
    """
    Coerce an arbitrary seed value into an unsigned 32-bit integer.

    Returns:
        Seed in ``[0, 2**32)`` or None when the value cannot seed the PRNG
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value & _MASK_32
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return int(math.trunc(value)) & _MASK_32
    if isinstance(value, str):
        h = 0
        for ch in value:
            h = ((h << 5) - h + ord(ch)) & _MASK_32
        return h
    return None


def _imul(a: int, b: int) -> int:
    return (a * b) & _MASK_32


def create_seeded_random(seed_value: Any) -> Optional[Callable[[], float]]:
    """
    Build a mulberry32 generator returning floats in ``[0, 1)``.

    Returns:
        Generator function, or None when ``seed_value`` is not a usable seed
    """
    seed = to_seed(seed_value)
    if seed is None:
        return None
    state = seed or 1

    def rng() -> float:
        nonlocal state
        state = (state + _MULBERRY_INCREMENT) & _MASK_32
        t = state
        t = _imul(t ^ (t >> 15), t | 1)
        t ^= (t + _imul(t ^ (t >> 7), t | 61)) & _MASK_32
        return ((t ^ (t >> 14)) & _MASK_32) / 4294967296

    return rng


def fisher_yates_shuffle(items: Iterable[T], seed: Any = None) -> list[T]:
    """Return a shuffled copy of ``items``; reproducible when ``seed`` is usable."""
    result = list(items)
    rng = create_seeded_random(seed) or random.random
    for i in range(len(result) - 1, 0, -1):
        j = math.floor(rng() * (i + 1))
        result[i], result[j] = result[j], result[i]
    return result


@dataclass(frozen=True)
class FavoritesOrder:
    order: list[str]
    favorite_count: int
    rest_count: int


def _clip_id(entry: Any) -> Optional[str]:
    if isinstance(entry, str):
        return entry or None
    return getattr(entry, "id", None) or None


def build_favorites_first_order(
    clips: Sequence[Any],
    favorites: Iterable[str],
    seed: Any = None,
) -> FavoritesOrder:
    """
    Partition clip ids into favorites and the rest, shuffle each part, and
    put favorites first.

    The two partitions are shuffled with ``seed`` and ``seed ^ 0x9e3779b1``
    so they never receive correlated permutations. Favorites that are not in
    ``clips`` are ignored.

    Args:
        clips: Clip objects or bare ids, in manifest order
        favorites: Favorite clip ids
        seed: Base seed; None gives a non-reproducible order
    """
    favorite_set = set(favorites or ())
    favorite_ids: list[str] = []
    rest_ids: list[str] = []
    for entry in clips:
        clip_id = _clip_id(entry)
        if not clip_id:
            continue
        if clip_id in favorite_set:
            favorite_ids.append(clip_id)
        else:
            rest_ids.append(clip_id)

    base_seed = to_seed(seed)
    rest_seed = None if base_seed is None else base_seed ^ FAVORITES_SEED_SALT

    order = fisher_yates_shuffle(favorite_ids, base_seed) + fisher_yates_shuffle(rest_ids, rest_seed)
    return FavoritesOrder(order=order, favorite_count=len(favorite_ids), rest_count=len(rest_ids))
