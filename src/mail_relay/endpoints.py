# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Endpoint list providers.

The relay reads the list of web app endpoint URLs from a remote text
document (one URL per line), typically a publicly shared Google Drive file.
The list is cached for a few minutes. When the remote document cannot be
read, the provider serves the last cached list if any, then a local file,
and finally raises :class:`~mail_relay.errors.ProviderUnavailable`.

The order of the returned list defines endpoint ordinals for the ledger.

Example:
    Loading endpoints from Drive with a local fallback::

        provider = RemoteEndpointProvider(file_id="1AbC...", fallback_path="smtp.txt")
        urls = await provider.get_endpoints()
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiohttp

from .errors import ProviderUnavailable
from .logger import get_logger

DRIVE_DOWNLOAD_URL = "https://drive.google.com/uc?export=download&id={file_id}"
DEFAULT_CACHE_TTL = 300
DEFAULT_FETCH_TIMEOUT = 10.0
DEFAULT_FALLBACK_PATH = "smtp.txt"

logger = get_logger("EndpointProvider")


def parse_remote_list(text: str) -> list[str]:
    """Return the ``https://`` lines of a remote endpoint document."""
    urls = (line.strip() for line in text.splitlines())
    return [url for url in urls if url and url.startswith("https://")]


class EndpointProviderBase:
    """Interface of endpoint list providers."""

    async def get_endpoints(self) -> list[str]:
        """Return the current ordered endpoint list.

        Raises:
            ProviderUnavailable: If no list can be produced.
        """
        raise NotImplementedError

    async def refresh(self) -> list[str]:
        """Drop any cached list and load it again."""
        return await self.get_endpoints()

    def cache_status(self) -> dict[str, Any]:
        return {"urls_cached": 0, "last_fetch": None}


class StaticEndpointProvider(EndpointProviderBase):
    """Serves a fixed endpoint list."""

    def __init__(self, urls: Sequence[str]):
        self._urls = [url.strip() for url in urls if url and url.strip()]

    async def get_endpoints(self) -> list[str]:
        if not self._urls:
            raise ProviderUnavailable("No WebApp URLs configured")
        return list(self._urls)

    def cache_status(self) -> dict[str, Any]:
        return {"urls_cached": len(self._urls), "last_fetch": None}


class RemoteEndpointProvider(EndpointProviderBase):
    """Endpoint list fetched over HTTP, cached, with local fallbacks.

    Attributes:
        source_url: URL of the endpoint document.
        fallback_path: Local file read when the remote fetch fails.
        cache_ttl: Seconds a fetched list stays fresh.
        timeout: Seconds allowed for one remote fetch.
    """

    def __init__(
        self,
        *,
        file_id: str | None = None,
        source_url: str | None = None,
        fallback_path: str | Path | None = DEFAULT_FALLBACK_PATH,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
    ):
        if source_url is None and file_id:
            source_url = DRIVE_DOWNLOAD_URL.format(file_id=file_id)
        self.source_url = source_url
        self.fallback_path = Path(fallback_path) if fallback_path else None
        self.cache_ttl = float(cache_ttl)
        self.timeout = float(timeout)
        self._cached: list[str] = []
        self._last_fetch: float = 0.0
        self._lock = asyncio.Lock()

    async def _fetch_remote(self) -> str:
        if not self.source_url:
            raise ValueError("No remote endpoint source configured")
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
            async with session.get(self.source_url) as resp:
                resp.raise_for_status()
                return await resp.text()

    def _load_fallback(self) -> list[str]:
        if self.fallback_path is None or not self.fallback_path.exists():
            return []
        try:
            lines = self.fallback_path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            logger.error("Local fallback %s also failed: %s", self.fallback_path, exc)
            return []
        return [line.strip() for line in lines if line.strip()]

    def _is_fresh(self) -> bool:
        return bool(self._cached) and (time.time() - self._last_fetch) < self.cache_ttl

    async def get_endpoints(self) -> list[str]:
        if self._is_fresh():
            return list(self._cached)

        async with self._lock:
            if self._is_fresh():
                return list(self._cached)
            try:
                urls = parse_remote_list(await self._fetch_remote())
                if not urls:
                    raise ValueError("No valid WebApp URLs found in endpoint document")
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
                logger.error("Error fetching WebApp URLs from %s: %s", self.source_url or "-", exc)
                return self._fallback(exc)

            self._cached = urls
            self._last_fetch = time.time()
            logger.info("Loaded %d WebApp URLs from %s", len(urls), self.source_url)
            return list(urls)

    def _fallback(self, exc: Exception) -> list[str]:
        if self._cached:
            logger.warning("Using %d stale cached WebApp URLs", len(self._cached))
            return list(self._cached)
        urls = self._load_fallback()
        if urls:
            logger.warning("Using local %s as fallback", self.fallback_path)
            return urls
        raise ProviderUnavailable(
            "Failed to load WebApp URLs from both the remote document and the local file",
            details=str(exc),
        ) from exc

    async def refresh(self) -> list[str]:
        self._cached = []
        self._last_fetch = 0.0
        return await self.get_endpoints()

    def cache_status(self) -> dict[str, Any]:
        last_fetch = (
            datetime.fromtimestamp(self._last_fetch, tz=timezone.utc).isoformat()
            if self._last_fetch
            else None
        )
        return {"urls_cached": len(self._cached), "last_fetch": last_fetch}
