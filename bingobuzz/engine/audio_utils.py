"""Audio utility helpers for source URL building and volume normalization."""

from __future__ import annotations

import math
from typing import Any, Optional, Sequence


def clamp(x: float, a: float, b: float) -> float:
    return max(a, min(b, x))


def normalize_volume(value: float) -> float:
    """Clamp and normalize arbitrary numeric volume inputs to 0..1."""
    try:
        return clamp(float(value), 0.0, 1.0)
    except (TypeError, ValueError):
        return 0.0


def db_to_volume(gain_db: Optional[float]) -> float:
    """Convert a clip's dB gain correction into a 0..1 mixer volume.

    Boosts above unity cannot be expressed by the mixer and are capped at 1.0.
    """
    if gain_db is None:
        return 1.0
    try:
        gain = float(gain_db)
    except (TypeError, ValueError):
        return 1.0
    if not math.isfinite(gain):
        return 1.0
    return normalize_volume(10 ** (gain / 20.0))


def build_source_urls(clip: Any, base_path: str, formats: Sequence[str]) -> list[str]:
    """Candidate URLs for a clip, one per format, most preferred first.

    The clip's ``source_name`` (falling back to its ``id``) is the file stem;
    a per-clip ``base_path`` overrides the engine default.
    """
    if clip is None:
        return []
    root = getattr(clip, "source_name", None) or getattr(clip, "id", None)
    if not root:
        return []
    prefix = (getattr(clip, "base_path", None) or base_path or "").rstrip("/")
    stem = f"{prefix}/{root}" if prefix else str(root)
    return [f"{stem}.{fmt}" for fmt in formats if fmt]
