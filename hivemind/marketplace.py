"""
Marketplace scraping collaborator.

The pipeline never drives a browser itself. It receives a ``BrowserHandle``
shared by every item of a job and, per item, acquires an isolated session
through ``isolated_session()``; the session is released when the item's
pipeline finishes or fails.

Concrete scrapers live outside this package. They are expected to call
``raise_if_blocked`` on every page they load and to build ``MarketplaceHit``
prices with ``parse_brl_price``; both are part of the session contract.
"""

from __future__ import annotations

import asyncio
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncContextManager, AsyncIterator, List, Optional, Protocol, Tuple

from loguru import logger

from .errors import BlockedByPortalError


@dataclass(frozen=True)
class MarketplaceHit:
    """A result row of a marketplace search page."""

    title: str
    price: float
    link: str
    condition: str = ""


@dataclass(frozen=True)
class ListingDetails:
    shipping_cost: float = 0.0
    attributes: Tuple[str, ...] = ()
    description: str = ""
    seller_reputation: Optional[str] = None


class MarketplaceSession(Protocol):
    async def search(self, query: str) -> List[MarketplaceHit]: ...

    async def fetch_details(self, url: str, destination: Optional[str] = None) -> ListingDetails: ...


class BrowserHandle(Protocol):
    def isolated_session(self) -> AsyncContextManager[MarketplaceSession]: ...


class SharedBrowser:
    """
    Base for concrete browser handles.

    Subclasses implement ``_open_session`` / ``_close_session``; this class
    guarantees that every opened session is closed exactly once, also when
    the body raises (including ``BlockedByPortalError``).
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self.open_sessions = 0

    async def _open_session(self) -> MarketplaceSession:
        raise NotImplementedError

    async def _close_session(self, session: MarketplaceSession) -> None:
        raise NotImplementedError

    @asynccontextmanager
    async def isolated_session(self) -> AsyncIterator[MarketplaceSession]:
        async with self._lock:
            session = await self._open_session()
            self.open_sessions += 1
        try:
            yield session
        finally:
            try:
                await self._close_session(session)
            except Exception as exc:
                logger.warning("Closing marketplace session failed: {}", exc)
            async with self._lock:
                self.open_sessions -= 1


# ---------------------------------------------------------------------------
# Helpers for scraper implementations
# ---------------------------------------------------------------------------

_BLOCK_MARKERS = (
    "detectamos tráfego incomum",
    "suspicious traffic",
    "captcha",
    "acesso negado",
    "access denied",
)

_PRICE_RE = re.compile(r"(\d{1,3}(?:\.\d{3})+|\d+)(?:,(\d{1,2}))?")


def raise_if_blocked(page_text: str) -> None:
    """Scrapers call this on every page they load."""
    lower = (page_text or "").lower()
    for marker in _BLOCK_MARKERS:
        if marker in lower:
            raise BlockedByPortalError()


def parse_brl_price(raw: Optional[str]) -> float:
    """
    'R$ 1.234,56' -> 1234.56 ; 'R$ 99' -> 99.0 ; garbage -> 0.0
    """
    if not raw:
        return 0.0
    m = _PRICE_RE.search(raw.replace("\xa0", " "))
    if not m:
        return 0.0
    whole = m.group(1).replace(".", "")
    cents = (m.group(2) or "0").ljust(2, "0")
    return float(f"{whole}.{cents}")
