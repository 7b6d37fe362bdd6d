from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from .config import (
    DUCKDUCKGO_HTML_URL,
    DUCKDUCKGO_MAX_RESULTS,
    GOOGLE_CSE_URL,
    HTTP_CONNECT_TIMEOUT,
    HTTP_MAX_REDIRECTS,
    HTTP_READ_TIMEOUT,
    HTTP_USER_AGENT,
    WebSearchConfig,
)
from .errors import SearchProviderError
from .normalize import basic_clean
from .text_utils import strip_quotes, strip_search_operators
from .utils.urls import unwrap_redirect


@dataclass(frozen=True)
class SearchResult:
    title: str
    link: str
    snippet: str = ""


def parse_duckduckgo_html(html: str, max_results: int = DUCKDUCKGO_MAX_RESULTS) -> List[SearchResult]:
    """Results of the DuckDuckGo HTML endpoint, redirect links unwrapped."""
    soup = BeautifulSoup(html or "", "html.parser")
    out: List[SearchResult] = []
    for block in soup.select("div.result"):
        anchor = block.select_one("a.result__a")
        if anchor is None or not anchor.get("href"):
            continue
        link = unwrap_redirect(anchor["href"])
        if not link.startswith("http"):
            continue
        snippet_el = block.select_one(".result__snippet")
        out.append(
            SearchResult(
                title=basic_clean(anchor.get_text(" ")),
                link=link,
                snippet=basic_clean(snippet_el.get_text(" ")) if snippet_el else "",
            )
        )
        if len(out) >= max_results:
            break
    return out


class WebSearchClient:
    """
    Google Custom Search when configured; DuckDuckGo HTML otherwise, and also
    whenever the primary fails. Only a failing fallback raises.
    """

    def __init__(
        self,
        config: Optional[WebSearchConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._config = config or WebSearchConfig()
        self._http = http_client

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=True,
            timeout=httpx.Timeout(HTTP_READ_TIMEOUT, connect=HTTP_CONNECT_TIMEOUT),
            max_redirects=HTTP_MAX_REDIRECTS,
            headers={"User-Agent": HTTP_USER_AGENT},
        )

    async def _get(self, url: str, params: dict) -> httpx.Response:
        if self._http is not None:
            return await self._http.get(url, params=params)
        async with self._new_client() as client:
            return await client.get(url, params=params)

    async def _google(self, query: str) -> List[SearchResult]:
        r = await self._get(
            GOOGLE_CSE_URL,
            {"key": self._config.api_key, "cx": self._config.cx, "q": query, "num": 10},
        )
        if r.status_code >= 400:
            raise SearchProviderError(f"Google CSE HTTP {r.status_code}")
        items = r.json().get("items") or []
        return [
            SearchResult(
                title=str(it.get("title", "")),
                link=str(it.get("link", "")),
                snippet=str(it.get("snippet", "")),
            )
            for it in items
            if it.get("link")
        ]

    async def _duckduckgo(self, query: str) -> List[SearchResult]:
        clean = strip_quotes(strip_search_operators(query))
        logger.debug("DuckDuckGo search: {}", clean[:60])
        try:
            r = await self._get(DUCKDUCKGO_HTML_URL, {"q": clean})
        except httpx.HTTPError as exc:
            raise SearchProviderError(f"DuckDuckGo request failed: {exc}") from exc
        if r.status_code >= 400:
            raise SearchProviderError(f"DuckDuckGo HTTP {r.status_code}")
        return parse_duckduckgo_html(r.text)

    async def search(self, query: str) -> List[SearchResult]:
        if self._config.primary_configured:
            try:
                return await self._google(query)
            except (httpx.HTTPError, ValueError, SearchProviderError) as exc:
                logger.warning("Google search failed for {!r}, falling back: {}", query[:60], exc)
        return await self._duckduckgo(query)
