from __future__ import annotations

from typing import Optional

import httpx
import trafilatura
from loguru import logger

from .config import (
    HTTP_CONNECT_TIMEOUT,
    HTTP_MAX_BYTES,
    HTTP_MAX_REDIRECTS,
    HTTP_READ_TIMEOUT,
    HTTP_USER_AGENT,
    JINA_READER_URL,
)
from .errors import FetchError
from .normalize import basic_clean, clamp


def extract_main_text(html: str) -> str:
    """trafilatura main-content extraction, falling back to the cleaned body."""
    text = None
    try:
        text = trafilatura.extract(html)
    except Exception as e:
        logger.warning("Trafilatura failed: {}", e)
    if not text:
        text = html
    return basic_clean(text, max_chars=HTTP_MAX_BYTES)


class ContentFetcher:
    """
    Readable plain text for a URL.

    Hardening:
      - Jina reader first (already plain text)
      - direct GET + trafilatura when the reader fails
      - timeouts, bounded redirects, 1 MB cap
    """

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, use_reader: bool = True):
        self._http = http_client
        self._use_reader = use_reader

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=True,
            timeout=httpx.Timeout(HTTP_READ_TIMEOUT, connect=HTTP_CONNECT_TIMEOUT),
            max_redirects=HTTP_MAX_REDIRECTS,
            headers={"User-Agent": HTTP_USER_AGENT},
        )

    async def _get(self, url: str, headers: Optional[dict] = None) -> httpx.Response:
        if self._http is not None:
            return await self._http.get(url, headers=headers)
        async with self._new_client() as client:
            return await client.get(url, headers=headers)

    async def _via_reader(self, url: str) -> Optional[str]:
        r = await self._get(f"{JINA_READER_URL}{url}", headers={"Accept": "text/plain"})
        self._check(r, url)
        return basic_clean(r.text, max_chars=HTTP_MAX_BYTES) or None

    async def _direct(self, url: str) -> Optional[str]:
        r = await self._get(url)
        self._check(r, url)
        return extract_main_text(r.text) or None

    @staticmethod
    def _check(r: httpx.Response, url: str) -> None:
        if r.status_code >= 400:
            raise FetchError(f"HTTP {r.status_code} for {url}")
        if len(r.content) > HTTP_MAX_BYTES:
            raise FetchError(f"{len(r.content)} bytes > {HTTP_MAX_BYTES} limit for {url}")

    async def fetch_readable(self, url: str, max_chars: int) -> Optional[str]:
        if not url or not url.startswith("http"):
            return None
        text: Optional[str] = None
        if self._use_reader:
            try:
                text = await self._via_reader(url)
            except (httpx.HTTPError, FetchError) as e:
                logger.debug("Reader failed for {}: {}", url, e)
        if not text:
            try:
                text = await self._direct(url)
            except httpx.TimeoutException:
                logger.warning("Fetch timeout for {}", url)
                return None
            except (httpx.HTTPError, FetchError) as e:
                logger.warning("Fetch failed for {}: {}", url, e)
                return None
        return clamp(text, max_chars) if text else None
