"""
Bounded concurrent runner for a whole tender job.

Items run through ``run_pipeline`` under an ``asyncio.Semaphore``; each one
gets its own isolated marketplace session from the shared browser. One failed
item never stops the others.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple, Union

import httpx
from loguru import logger

from .config import CONCURRENCY, IDENTITY_CACHE_PATH, ProviderConfig
from .errors import PipelineAborted
from .identity_cache import IdentityCache, JsonIdentityCache
from .marketplace import BrowserHandle
from .orchestrator import PipelineResult, run_pipeline
from .pipeline_types import TenderItem
from .tracing import FileTracer, Tracer


@dataclass
class ItemOutcome:
    item_id: str
    result: Optional[PipelineResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None


def item_sort_key(item_id: str) -> Tuple[int, Union[int, str]]:
    """Numeric ids in numeric order, then the rest alphabetically."""
    if item_id.isdigit():
        return 0, int(item_id)
    return 1, item_id


async def process_items(
    items: Sequence[TenderItem],
    provider_config: Optional[ProviderConfig],
    browser: BrowserHandle,
    is_aborted: Optional[Callable[[], bool]] = None,
    concurrency: int = CONCURRENCY,
    cache: Optional[IdentityCache] = None,
    task_id: Optional[str] = None,
    destination: Optional[str] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> List[ItemOutcome]:
    """
    Run every item, at most ``concurrency`` at a time.

    ``is_aborted`` is checked before an item starts and between its stages.
    With ``task_id`` set, each item writes a file trace under ``logs/hivemind``.
    """
    config = provider_config if provider_config is not None else ProviderConfig.from_env()
    if cache is None:
        cache = JsonIdentityCache(IDENTITY_CACHE_PATH, ttl_days=config.cache_ttl_days)
    aborted = is_aborted or (lambda: False)
    sem = asyncio.Semaphore(max(1, concurrency))

    async def run_one(item: TenderItem) -> ItemOutcome:
        async with sem:
            if aborted():
                logger.info("Job aborted, skipping item {}", item.id)
                return ItemOutcome(item_id=item.id, error="aborted")
            tracer: Optional[Tracer] = FileTracer(task_id, item.id) if task_id else None
            try:
                async with browser.isolated_session() as session:
                    result = await run_pipeline(
                        item,
                        config,
                        session,
                        cache=cache,
                        tracer=tracer,
                        destination=destination,
                        should_abort=aborted,
                        http_client=http_client,
                    )
            except PipelineAborted as exc:
                logger.info("Item {} aborted: {}", item.id, exc)
                return ItemOutcome(item_id=item.id, error="aborted")
            except Exception as exc:
                logger.exception("Item {} failed", item.id)
                return ItemOutcome(item_id=item.id, error=f"{type(exc).__name__}: {exc}")
            return ItemOutcome(item_id=item.id, result=result)

    logger.info("Processing {} items (concurrency {})", len(items), concurrency)
    outcomes = await asyncio.gather(*(run_one(item) for item in items))
    done = sum(1 for o in outcomes if o.ok)
    logger.info("Job finished: {}/{} items quoted", done, len(outcomes))
    return sorted(outcomes, key=lambda o: item_sort_key(o.item_id))
