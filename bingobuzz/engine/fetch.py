"""Clip byte fetching with a one-entry prefetch cache.

Remote sources (http/https) go through a shared ``httpx.AsyncClient``; any
other source is treated as a local file path (``file://`` URLs included).
Fetching never decodes; decoding is the playback backend's job.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlsplit

import httpx

from .errors import ClipSourceError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 15.0


class ClipFetcher:
    """
    Fetch audio bytes for candidate URLs.

    The cache holds at most one prefetched payload (the upcoming clip). A
    cached payload is handed out once and then forgotten.

    Args:
        client: Optional pre-built client (tests pass one with a mock transport)
        timeout: Request timeout in seconds when the fetcher builds its own client
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, *, timeout: float = DEFAULT_TIMEOUT_S) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._cache: dict[str, bytes] = {}
        self.fetch_count = 0

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def fetch(self, url: str) -> bytes:
        """
        Return the bytes behind ``url``, preferring a prefetched copy.

        Raises:
            ClipSourceError: network failure, non-2xx status, missing file
        """
        cached = self._cache.pop(url, None)
        if cached is not None:
            logger.debug("[fetch] cache hit %s", url)
            return cached

        self.fetch_count += 1
        parts = urlsplit(url)
        if parts.scheme in ("http", "https"):
            try:
                response = await self._http().get(url)
            except httpx.HTTPError as exc:
                raise ClipSourceError(f"audio: {url} request failed: {exc}", url=url) from exc
            if not response.is_success:
                raise ClipSourceError(f"audio: {url} responded with {response.status_code}", url=url)
            return response.content

        path = Path(unquote(parts.path)) if parts.scheme == "file" else Path(url)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise ClipSourceError(f"audio: {url} unreadable: {exc}", url=url) from exc
        if not data:
            raise ClipSourceError(f"audio: {url} is empty", url=url)
        return data

    async def prefetch(self, urls: list[str]) -> Optional[str]:
        """
        Warm the cache with the first candidate that fetches.

        Replaces any previously cached payload. Returns the cached URL, or
        None when every candidate failed.
        """
        last_error: Optional[BaseException] = None
        for url in urls:
            if url in self._cache:
                return url
            try:
                data = await self.fetch(url)
            except ClipSourceError as exc:
                last_error = exc
                continue
            self._cache.clear()
            self._cache[url] = data
            logger.debug("[fetch] prefetched %s (%d bytes)", url, len(data))
            return url
        if last_error is not None:
            raise last_error
        return None

    def discard_cache(self) -> None:
        self._cache.clear()

    def is_cached(self, url: str) -> bool:
        return url in self._cache

    async def aclose(self) -> None:
        self._cache.clear()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
