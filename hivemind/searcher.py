"""
Marketplace searcher.

Strategies run in priority order until MIN_ACCEPTABLE_CANDIDATES unique
listings exist:

  identity          validated (or generic) identity search queries
  anchor            the quoted search anchor
  marketplace_term  the cleaned marketplace term

When every strategy comes back empty, a last-resort query made of the first
words of the identity name is tried. ``BlockedByPortalError`` is never caught.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from loguru import logger

from .config import (
    LAST_RESORT_WORDS,
    MAX_DETAILED_LISTINGS,
    MAX_QUERIES_PER_STRATEGY,
    MAX_QUERY_LENGTH,
    MIN_ACCEPTABLE_CANDIDATES,
    PRICE_ANOMALY_THRESHOLD,
)
from .errors import BlockedByPortalError
from .marketplace import MarketplaceHit, MarketplaceSession
from .pipeline_types import GoldIdentity, KitComponent, KitLine, KitPricing, RawListing
from .text_utils import dedupe_keep_order, sanitize_marketplace_query, truncate_words
from .utils.urls import canon_url

STRATEGY_IDENTITY = "identity"
STRATEGY_ANCHOR = "anchor"
STRATEGY_MARKETPLACE_TERM = "marketplace_term"
STRATEGY_LAST_RESORT = "last_resort"


@dataclass(frozen=True)
class SearchPlan:
    identity: GoldIdentity
    marketplace_term: str
    search_anchor: Optional[str] = None
    kit_components: Tuple[KitComponent, ...] = ()
    max_price: float = 0.0
    quantity: int = 1
    destination: Optional[str] = None


@dataclass
class SearchOutcome:
    listings: List[RawListing] = field(default_factory=list)
    kit_pricing: Optional[KitPricing] = None
    strategies_tried: List[str] = field(default_factory=list)
    queries_used: List[str] = field(default_factory=list)


def build_strategies(plan: SearchPlan) -> List[Tuple[str, List[str]]]:
    identity_queries = list(plan.identity.search_queries) or [plan.identity.name]
    strategies: List[Tuple[str, List[str]]] = [(STRATEGY_IDENTITY, identity_queries)]
    if plan.search_anchor:
        anchor = plan.search_anchor.strip('"')
        strategies.append((STRATEGY_ANCHOR, [f'"{anchor}"']))
    if plan.marketplace_term and plan.marketplace_term not in identity_queries:
        strategies.append((STRATEGY_MARKETPLACE_TERM, [plan.marketplace_term]))
    return strategies


def dedupe_listings(listings: List[RawListing]) -> List[RawListing]:
    """Priced listings only, first occurrence per canonical URL."""
    seen = set()
    out = []
    for lst in listings:
        if lst.price <= 0:
            continue
        key = canon_url(lst.link) or lst.link
        if key in seen:
            continue
        seen.add(key)
        out.append(lst)
    return out


def flag_price_anomalies(listings: List[RawListing]) -> List[RawListing]:
    """With 3+ listings, anything under 30% of the median price is flagged."""
    if len(listings) < 3:
        return list(listings)
    prices = sorted(lst.price for lst in listings)
    median = prices[len(prices) // 2]
    threshold = median * PRICE_ANOMALY_THRESHOLD
    out = []
    for lst in listings:
        if lst.price < threshold:
            pct = round(lst.price / median * 100)
            lst = replace(
                lst,
                price_anomaly=True,
                anomaly_reason=f"Preço {pct}% da mediana. Possível peça/sucata.",
            )
        out.append(lst)
    return out


def _to_listing(hit: MarketplaceHit, strategy: str) -> RawListing:
    return RawListing(
        title=hit.title,
        price=float(hit.price or 0.0),
        link=hit.link,
        condition=hit.condition,
        source_strategy=strategy,
    )


class MarketplaceSearcher:
    def __init__(self, session: MarketplaceSession):
        self.session = session

    async def _query(self, query: str, strategy: str, term: Optional[str]) -> List[RawListing]:
        sanitized = sanitize_marketplace_query(query, MAX_QUERY_LENGTH, fallback_term=term)
        if not sanitized:
            return []
        try:
            hits = await self.session.search(sanitized)
        except BlockedByPortalError:
            raise
        except Exception as exc:
            logger.warning("Marketplace search failed for {!r}: {}", sanitized, exc)
            return []
        logger.debug("[{}] {!r} -> {} hits", strategy, sanitized, len(hits))
        return [_to_listing(h, strategy) for h in hits]

    async def _detail(self, listing: RawListing, destination: Optional[str]) -> RawListing:
        try:
            details = await self.session.fetch_details(listing.link, destination)
        except BlockedByPortalError:
            raise
        except Exception as exc:
            logger.warning("Detail fetch failed for {}: {}", listing.link, exc)
            return listing
        return replace(
            listing,
            shipping_cost=max(0.0, float(details.shipping_cost or 0.0)),
            attributes=tuple(details.attributes),
            description=details.description or "",
            seller_reputation=details.seller_reputation,
        )

    async def price_kit(self, components: List[KitComponent]) -> Optional[KitPricing]:
        """Cheapest listing per component times its quantity."""
        if not components:
            return None
        lines: List[KitLine] = []
        for comp in components:
            results = dedupe_listings(await self._query(comp.search_query or comp.item, "kit", None))
            if not results:
                logger.info("No marketplace offer for kit item {!r}", comp.item)
                continue
            cheapest = min(results, key=lambda r: r.price)
            lines.append(
                KitLine(
                    name=comp.item,
                    quantity=comp.quantity,
                    unit_price=cheapest.price,
                    total_price=cheapest.price * comp.quantity,
                    link=cheapest.link,
                    title=cheapest.title,
                )
            )
        return KitPricing(items=tuple(lines), total=sum(line.total_price for line in lines))

    async def search(self, plan: SearchPlan) -> SearchOutcome:
        outcome = SearchOutcome()
        collected: List[RawListing] = []
        term = plan.marketplace_term or None

        for strategy, queries in build_strategies(plan):
            if len(dedupe_listings(collected)) >= MIN_ACCEPTABLE_CANDIDATES:
                break
            outcome.strategies_tried.append(strategy)
            for query in queries[:MAX_QUERIES_PER_STRATEGY]:
                outcome.queries_used.append(query)
                collected.extend(await self._query(query, strategy, term))

        unique = dedupe_listings(collected)
        if not unique:
            last = truncate_words(plan.identity.name, LAST_RESORT_WORDS)
            if last and last not in outcome.queries_used:
                logger.info("All strategies empty, last resort {!r}", last)
                outcome.strategies_tried.append(STRATEGY_LAST_RESORT)
                outcome.queries_used.append(last)
                unique = dedupe_listings(await self._query(last, STRATEGY_LAST_RESORT, term))
        outcome.queries_used = dedupe_keep_order(outcome.queries_used)

        if not unique:
            logger.info("Marketplace returned no priced listings")
            return outcome

        flagged = flag_price_anomalies(unique)
        detailed = [await self._detail(lst, plan.destination) for lst in flagged[:MAX_DETAILED_LISTINGS]]

        kit = await self.price_kit(list(plan.kit_components))
        if kit is not None and kit.total > 0:
            detailed = [replace(lst, kit_total=kit.total) for lst in detailed]
        outcome.kit_pricing = kit

        outcome.listings = sorted(detailed, key=lambda lst: lst.total_with_kit)
        logger.info(
            "Searcher kept {} listings via {}",
            len(outcome.listings),
            ", ".join(outcome.strategies_tried),
        )
        return outcome
