from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from loguru import logger

from .config import (
    MAX_ALTERNATIVE_QUERIES,
    MIN_PROMISING_CANDIDATES,
    PROMISING_MIN_TEXT_CHARS,
    PROMISING_PRICE_MAX_RATIO,
    PROMISING_PRICE_MIN_RATIO,
)
from .pipeline_types import RawListing
from .text_utils import dedupe_keep_order


@dataclass
class Assessment:
    promising: List[RawListing] = field(default_factory=list)
    needs_more: bool = False
    alternative_queries: List[str] = field(default_factory=list)

    @property
    def retry(self) -> bool:
        return self.needs_more and bool(self.alternative_queries)


def is_promising(listing: RawListing, budget: Optional[float]) -> bool:
    """
    Enough text to judge, price inside [10%, 150%] of the budget and no
    anomaly flag. Without a budget the price window is not applied.
    """
    if len(listing.full_text) <= PROMISING_MIN_TEXT_CHARS:
        return False
    if listing.price_anomaly:
        return False
    if budget and budget > 0:
        return budget * PROMISING_PRICE_MIN_RATIO <= listing.price <= budget * PROMISING_PRICE_MAX_RATIO
    return True


def generate_alternative_queries(
    previous_queries: List[str],
    search_anchor: Optional[str],
    kill_specs: List[str],
    marketplace_term: str,
    limit: int = MAX_ALTERNATIVE_QUERIES,
) -> List[str]:
    """
    Queries never tried before, in priority order: unused anchor, unused
    kill-specs, a two-word marketplace term.
    """
    tried = list(previous_queries)
    tried_lower = {q.lower() for q in tried}
    alternatives: List[str] = []

    anchor = (search_anchor or "").replace('"', "").strip()
    if len(anchor) > 3 and not any(anchor.lower() in q.lower() for q in tried):
        alternatives.append(anchor)

    for spec in kill_specs[:2]:
        spec = spec.strip()
        if len(spec) > 5 and spec.lower() not in tried_lower:
            alternatives.append(spec)

    simple = " ".join((marketplace_term or "").split()[:2])
    if len(simple) > 3 and simple.lower() not in tried_lower:
        alternatives.append(simple)

    fresh = [q for q in dedupe_keep_order(alternatives) if q.lower() not in tried_lower]
    return fresh[:limit]


def assess(
    listings: List[RawListing],
    budget: Optional[float],
    elastic_retries: int,
    max_elastic_retries: int,
    previous_queries: List[str],
    search_anchor: Optional[str],
    kill_specs: List[str],
    marketplace_term: str,
) -> Assessment:
    promising = [lst for lst in listings if is_promising(lst, budget)]
    needs_more = len(promising) < MIN_PROMISING_CANDIDATES and elastic_retries < max_elastic_retries
    alternatives: List[str] = []
    if needs_more:
        alternatives = generate_alternative_queries(previous_queries, search_anchor, kill_specs, marketplace_term)
    logger.info(
        "Assessment: {}/{} promising, elastic retries {}/{}, {} alternatives",
        len(promising),
        len(listings),
        elastic_retries,
        max_elastic_retries,
        len(alternatives),
    )
    return Assessment(promising=promising, needs_more=needs_more, alternative_queries=alternatives)
