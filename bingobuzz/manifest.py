"""
Clip catalog model.

A manifest lists every clip the board may play, the encodings the clips are
published in (most preferred first), and an optional fingerprint that changes
whenever the catalog content changes. Raw manifest JSON is normalized here
into immutable :class:`Clip`/:class:`Manifest` objects that the sequencer
and engine reference without copying.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlsplit

import httpx

from .constants import DEFAULT_FORMATS

logger = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 3.0


class ManifestError(ValueError):
    """Raised when a manifest cannot be fetched or holds no playable clips."""


@dataclass(frozen=True)
class Clip:
    """
    One playable sound.

    Attributes:
        id: Stable unique identifier (used in persisted play orders)
        source_name: File stem; candidate URLs are ``{base}/{source_name}.{fmt}``
        category: Free-form grouping label
        gain: Loudness correction in dB applied at playback
        display: Optional human-readable title
        duration_hint_ms: Optional length hint from the catalog
        base_path: Per-clip override of the manifest base path
    """
    id: str
    source_name: str = ""
    category: str = "misc"
    gain: float = 0.0
    display: Optional[str] = None
    duration_hint_ms: Optional[int] = None
    base_path: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display or self.id


@dataclass(frozen=True)
class Manifest:
    version: int
    clips: tuple[Clip, ...]
    formats: tuple[str, ...] = DEFAULT_FORMATS
    base_path: Optional[str] = None
    fingerprint: Optional[str] = None
    ttl_hours: Optional[float] = DEFAULT_TTL_HOURS
    normalization: dict[str, float] = field(default_factory=dict)

    @property
    def ttl_ms(self) -> Optional[int]:
        if self.ttl_hours and self.ttl_hours > 0:
            return round(self.ttl_hours * 60 * 60 * 1000)
        return None

    @property
    def ids(self) -> list[str]:
        return [clip.id for clip in self.clips]


def _to_number(value: Any, fallback: Optional[float] = None) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return fallback
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return fallback
    return parsed if math.isfinite(parsed) else fallback


def _clean_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _sanitize_clip(entry: Any) -> Optional[Clip]:
    if not isinstance(entry, dict):
        return None
    clip_id = _clean_str(entry.get("id"))
    src = _clean_str(entry.get("src"))
    if not clip_id or not src:
        return None
    duration = _to_number(entry.get("durationHintMs"))
    return Clip(
        id=clip_id,
        source_name=src,
        category=_clean_str(entry.get("category")) or "misc",
        gain=_to_number(entry.get("gain"), 0.0) or 0.0,
        display=_clean_str(entry.get("display")),
        duration_hint_ms=int(duration) if duration is not None else None,
        base_path=_clean_str(entry.get("basePath")),
    )


def normalize_manifest(raw: Any, *, default_base_path: Optional[str] = None) -> Manifest:
    """
    Turn a raw manifest payload into a :class:`Manifest`.

    Entries without ``id``/``src`` are dropped, duplicate ids keep their
    first occurrence.

    Raises:
        ManifestError: payload is not an object or contains no playable clips
    """
    if not isinstance(raw, dict):
        raise ManifestError("Manifest payload is not an object.")

    version = raw.get("version") if isinstance(raw.get("version"), int) else 1
    ttl_hours = _to_number(raw.get("ttlHours"), DEFAULT_TTL_HOURS)

    formats_raw = raw.get("formats")
    formats: tuple[str, ...] = DEFAULT_FORMATS
    if isinstance(formats_raw, list):
        cleaned = tuple(fmt.strip() for fmt in formats_raw if isinstance(fmt, str) and fmt.strip())
        if cleaned:
            formats = cleaned

    normalization = {"target_lufs": -14.0, "peak_dbtp": -1.0}
    if isinstance(raw.get("normalization"), dict):
        norm = raw["normalization"]
        normalization = {
            "target_lufs": _to_number(norm.get("targetLufs"), -14.0),
            "peak_dbtp": _to_number(norm.get("peakDbtp"), -1.0),
        }

    seen: set[str] = set()
    clips: list[Clip] = []
    for entry in raw.get("files") or []:
        clip = _sanitize_clip(entry)
        if clip is None:
            continue
        if clip.id in seen:
            logger.warning("[manifest] duplicate id skipped: %s", clip.id)
            continue
        seen.add(clip.id)
        clips.append(clip)

    if not clips:
        raise ManifestError("Manifest does not include any playable files.")

    return Manifest(
        version=version,
        clips=tuple(clips),
        formats=formats,
        base_path=_clean_str(raw.get("basePath")) or default_base_path,
        fingerprint=_clean_str(raw.get("manifestEtag")),
        ttl_hours=ttl_hours,
        normalization=normalization,
    )


def _is_url(source: str) -> bool:
    return urlsplit(source).scheme in ("http", "https")


async def load_manifest(
    source: str | Path,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> Manifest:
    """
    Load and normalize a manifest from a local path or an http(s) URL.

    When the manifest has no ``basePath`` the clips are assumed to sit next
    to the manifest itself.

    Raises:
        ManifestError: fetch, parse or validation failure
    """
    text_source = str(source)
    try:
        if _is_url(text_source):
            owns_client = client is None
            http = client or httpx.AsyncClient(timeout=10.0)
            try:
                response = await http.get(text_source, headers={"Cache-Control": "no-cache"})
                response.raise_for_status()
                raw = response.json()
            finally:
                if owns_client:
                    await http.aclose()
            default_base = text_source.rsplit("/", 1)[0]
        else:
            path = Path(text_source).expanduser()
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            default_base = str(path.resolve().parent)
    except (OSError, ValueError, httpx.HTTPError) as exc:
        logger.error("[manifest] failed to load %s: %s", text_source, exc)
        raise ManifestError(f"Manifest request failed: {exc}") from exc

    manifest = normalize_manifest(raw, default_base_path=default_base)
    logger.info(
        "[manifest] loaded %d clips (formats=%s fingerprint=%s)",
        len(manifest.clips),
        ",".join(manifest.formats),
        manifest.fingerprint,
    )
    return manifest
