"""
Scout: look for manufacturer/model identities on the open web.

One round = up to SCOUT_MAX_QUERIES web searches, ranking of the result
pages, readable-text fetch of the best SCOUT_MAX_PAGES, and one model call per
page asking whether it identifies a product satisfying the kill-specs.
An empty round at a level below the maximum returns a retry signal with the
specs and queries relaxed one level further.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx
from loguru import logger

from .config import (
    ENTITY_MIN_CONFIDENCE,
    MAX_RELAXATION_LEVEL,
    SCOUT_MAX_PAGES,
    SCOUT_MAX_QUERIES,
    SCOUT_MIN_PAGE_CHARS,
    SCOUT_PAGE_CHARS,
    SCOUT_PROMPT_CHARS,
)
from .constants import SCOUT_EXCLUDED_DOMAINS, SCOUT_PRIORITY_PATTERNS
from .errors import ProviderError, SearchProviderError
from .llm import CompletionClient, user_message
from .normalize import clamp
from .pipeline_types import DiscoveredIdentity, KillSpec, spec_texts
from .text_utils import dedupe_keep_order, strip_quotes, strip_search_operators
from .web_search import SearchResult

ENTITY_PROMPT = """Você identifica produtos e fabricantes a partir de páginas da web.

CONTEÚDO DA PÁGINA ({url}):
{content}

ESPECIFICAÇÕES BUSCADAS:
{specs}

A página identifica um FABRICANTE e MODELO que atenda às especificações acima?

Responda SOMENTE em JSON:
```json
{{
  "found": true,
  "entity_name": "Nome do modelo",
  "manufacturer": "Fabricante",
  "matched_specs": ["..."],
  "missing_specs": ["..."],
  "confidence": 0.0,
  "evidence": "trecho que comprova"
}}
```"""

_PRIORITY_RES = [re.compile(p, re.IGNORECASE) for p in SCOUT_PRIORITY_PATTERNS]
_EXCLUDED_RES = [re.compile(re.escape(d), re.IGNORECASE) for d in SCOUT_EXCLUDED_DOMAINS]


class WebSearch(Protocol):
    async def search(self, query: str) -> List[SearchResult]: ...


class ReadableFetcher(Protocol):
    async def fetch_readable(self, url: str, max_chars: int) -> Optional[str]: ...


@dataclass
class ScoutResult:
    entities: List[DiscoveredIdentity] = field(default_factory=list)
    retry: bool = False
    relaxed_specs: List[KillSpec] = field(default_factory=list)
    relaxed_queries: List[str] = field(default_factory=list)
    pages_fetched: int = 0

    @property
    def detected_model(self) -> Optional[str]:
        return self.entities[0].name if self.entities else None


# ---------------------------------------------------------------------------
# Relaxation ladder
# ---------------------------------------------------------------------------

def relax_kill_specs(specs: List[KillSpec], level: int) -> List[KillSpec]:
    """
    level 1: numbers removed ('72 músicas' -> 'músicas')
    level 2: first two words of each spec
    other levels leave the specs untouched. A level that would empty the
    list keeps the input.
    """
    if level == 1:
        relaxed = [KillSpec(re.sub(r"\s+", " ", re.sub(r"\d+", "", s.text)).strip(), s.weight) for s in specs]
    elif level == 2:
        relaxed = [KillSpec(" ".join(s.text.split()[:2]), s.weight) for s in specs]
    else:
        return list(specs)
    relaxed = [s for s in relaxed if len(s.text) > 2]
    seen = set()
    out = []
    for s in relaxed:
        if s.text in seen:
            continue
        seen.add(s.text)
        out.append(s)
    return out or list(specs)


def relax_queries(queries: List[str], level: int) -> List[str]:
    out = []
    for q in queries:
        relaxed = q
        if level >= 1:
            relaxed = strip_search_operators(relaxed)
        if level >= 2:
            relaxed = strip_quotes(relaxed)
        if relaxed:
            out.append(relaxed)
    return dedupe_keep_order(out)


# ---------------------------------------------------------------------------
# Result ranking
# ---------------------------------------------------------------------------

def _is_excluded(result: SearchResult) -> bool:
    return any(p.search(result.link) or p.search(result.title) for p in _EXCLUDED_RES)


def _priority(result: SearchResult) -> int:
    return sum(
        1
        for p in _PRIORITY_RES
        if p.search(result.link) or p.search(result.title) or p.search(result.snippet or "")
    )


def rank_results(results: List[SearchResult]) -> List[SearchResult]:
    """Drop marketplaces/social networks, then stable sort by priority signals."""
    kept = [r for r in results if not _is_excluded(r)]
    return sorted(kept, key=lambda r: -_priority(r))


def _parse_entity(data: Dict[str, Any], url: str) -> Optional[DiscoveredIdentity]:
    if not data.get("found") or not data.get("entity_name"):
        return None
    try:
        confidence = float(data.get("confidence", 0.5))
    except (TypeError, ValueError):
        confidence = 0.5
    return DiscoveredIdentity(
        name=str(data["entity_name"]).strip(),
        manufacturer=(str(data["manufacturer"]).strip() or None) if data.get("manufacturer") else None,
        matched_specs=[str(s) for s in data.get("matched_specs") or [] if s],
        missing_specs=[str(s) for s in data.get("missing_specs") or [] if s],
        confidence=min(1.0, max(0.0, confidence)),
        source_url=url,
        evidence=str(data["evidence"]) if data.get("evidence") else None,
    )


class Scout:
    def __init__(
        self,
        search: WebSearch,
        fetcher: ReadableFetcher,
        llm: CompletionClient,
        max_level: int = MAX_RELAXATION_LEVEL,
    ):
        self.search = search
        self.fetcher = fetcher
        self.llm = llm
        self.max_level = max_level

    async def _search_all(self, queries: List[str], level: int) -> List[SearchResult]:
        effective = [strip_search_operators(q) for q in queries] if level > 1 else list(queries)
        results: List[SearchResult] = []
        for query in [q for q in effective if q][:SCOUT_MAX_QUERIES]:
            try:
                results.extend(await self.search.search(query))
            except (SearchProviderError, httpx.HTTPError) as exc:
                logger.warning("Scout search failed for {!r}: {}", query[:60], exc)
        seen = set()
        unique = []
        for r in results:
            if not r.link or r.link in seen:
                continue
            seen.add(r.link)
            unique.append(r)
        return unique

    async def _identify(self, content: str, specs: List[str], url: str) -> Optional[DiscoveredIdentity]:
        prompt = ENTITY_PROMPT.format(
            url=url,
            content=clamp(content, SCOUT_PROMPT_CHARS),
            specs=", ".join(specs),
        )
        try:
            data, _ = await self.llm.complete_json(user_message(prompt), agent="scout")
        except ProviderError as exc:
            logger.debug("Scout entity extraction failed for {}: {}", url, exc)
            return None
        return _parse_entity(data, url)

    def _retry(self, kill_specs: List[KillSpec], queries: List[str], level: int, pages: int) -> ScoutResult:
        if level < self.max_level:
            nxt = level + 1
            return ScoutResult(
                retry=True,
                relaxed_specs=relax_kill_specs(kill_specs, nxt),
                relaxed_queries=relax_queries(queries, nxt),
                pages_fetched=pages,
            )
        return ScoutResult(pages_fetched=pages)

    async def investigate(self, kill_specs: List[KillSpec], queries: List[str], level: int) -> ScoutResult:
        specs = spec_texts(kill_specs)
        queries = list(queries) or specs
        logger.info("Scout round at relaxation level {} ({} queries)", level, len(queries))

        ranked = rank_results(await self._search_all(queries, level))
        pages = 0
        entities: List[DiscoveredIdentity] = []
        for result in ranked[:SCOUT_MAX_PAGES]:
            content = await self.fetcher.fetch_readable(result.link, SCOUT_PAGE_CHARS)
            if not content or len(content) < SCOUT_MIN_PAGE_CHARS:
                continue
            pages += 1
            entity = await self._identify(content, specs, result.link)
            if entity is not None and entity.confidence >= ENTITY_MIN_CONFIDENCE:
                entities.append(entity)

        if not entities:
            logger.info("Scout found nothing usable ({} pages) at level {}", pages, level)
            return self._retry(kill_specs, queries, level, pages)

        entities.sort(key=lambda e: -e.confidence)
        logger.info("Scout discovered {} identities, best: {}", len(entities), entities[0].name)
        return ScoutResult(entities=entities, pages_fetched=pages)
