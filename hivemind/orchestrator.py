"""
Per-item pipeline state machine.

    EXTRACT -> SCOUT -> VALIDATE -> SEARCH -> ASSESS -> ENRICH -> JUDGE -> COMPLETE
       ^         |         |          ^         |
       +---------+---------+          +---------+
        relaxation loop                elastic loop

- A cache hit on the description hash jumps from EXTRACT straight to SEARCH.
- LOW complexity items skip SCOUT / VALIDATE with a generic identity.
- Every loop is bounded by a counter in ``PipelineState``; the total number
  of stage transitions is therefore bounded by MAX_TRANSITIONS.
- ``BlockedByPortalError`` and ``PipelineAborted`` end the run (stage FAILED)
  and propagate to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Dict, List, Optional

import httpx
from loguru import logger

from .assessor import assess
from .config import (
    DEFAULT_CRITICAL_WEIGHT,
    IDENTITY_CACHE_PATH,
    MAX_ELASTIC_RETRIES,
    MAX_RELAXATION_LEVEL,
    MAX_VALIDATION_RETRIES,
    ProviderConfig,
)
from .content_fetch import ContentFetcher
from .enrichment import Enricher
from .errors import HivemindError, PipelineAborted
from .extractor import extract_specs
from .identity_cache import IdentityCache, JsonIdentityCache
from .judge import Judge, build_defense_report
from .llm import CompletionClient
from .marketplace import MarketplaceSession
from .normalize import description_cache_key
from .pipeline_types import (
    TERMINAL_STAGES,
    Complexity,
    DefenseReport,
    ExtractionResult,
    GoldIdentity,
    JudgedCandidate,
    KillSpec,
    MatchStatus,
    PipelineState,
    Stage,
    TenderItem,
    spec_texts,
)
from .scout import ReadableFetcher, Scout, WebSearch, relax_kill_specs, relax_queries
from .searcher import MarketplaceSearcher, SearchPlan, dedupe_listings, flag_price_anomalies
from .tracing import NullTracer, Tracer, guard, summarize_rows
from .validator import IdentityValidator, promote
from .web_search import WebSearchClient

# One EXTRACT/SCOUT/VALIDATE round per relaxation level, one SEARCH/ASSESS
# pair per elastic retry, then ENRICH and JUDGE.
MAX_TRANSITIONS = 3 * (MAX_RELAXATION_LEVEL + 1) + 2 * (MAX_ELASTIC_RETRIES + 1) + 2


@dataclass
class PipelineDeps:
    session: MarketplaceSession
    llm: CompletionClient
    knowledge: CompletionClient
    search: WebSearch
    fetcher: ReadableFetcher
    cache: Optional[IdentityCache] = None
    tracer: Optional[Tracer] = None
    destination: Optional[str] = None
    should_abort: Optional[Callable[[], bool]] = None

    @classmethod
    def from_config(
        cls,
        provider_config: ProviderConfig,
        session: MarketplaceSession,
        cache: Optional[IdentityCache] = None,
        tracer: Optional[Tracer] = None,
        destination: Optional[str] = None,
        should_abort: Optional[Callable[[], bool]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "PipelineDeps":
        return cls(
            session=session,
            llm=CompletionClient(provider_config.completion, http_client=http_client),
            knowledge=CompletionClient(provider_config.knowledge, http_client=http_client),
            search=WebSearchClient(provider_config.web_search, http_client=http_client),
            fetcher=ContentFetcher(http_client=http_client),
            cache=cache,
            tracer=tracer,
            destination=destination,
            should_abort=should_abort,
        )


@dataclass
class PipelineResult:
    winner_index: Optional[int]
    candidates: List[JudgedCandidate]
    gold_identity: Optional[GoldIdentity]
    defense_report: Optional[DefenseReport]
    state: PipelineState

    @property
    def winner(self) -> Optional[JudgedCandidate]:
        if self.winner_index is None:
            return None
        return self.candidates[self.winner_index]


def _extraction_from_identity(identity: GoldIdentity) -> ExtractionResult:
    specs = [KillSpec(s, DEFAULT_CRITICAL_WEIGHT) for s in identity.kill_specs]
    return ExtractionResult(
        kill_specs=specs,
        critical_specs=list(specs),
        marketplace_search_term=identity.marketplace_search_term or identity.name,
        search_anchor=identity.search_anchor,
        max_price_estimate=0.0,
        complexity=Complexity.HIGH,
        reasoning="Identidade recuperada do cache",
        served_by="cache",
    )


class Pipeline:
    """One item, one run. Not reusable across items."""

    def __init__(self, deps: PipelineDeps):
        self.deps = deps
        self.tracer = guard(deps.tracer if deps.tracer is not None else NullTracer())
        llm = deps.llm.with_tracer(self.tracer)
        self.scout = Scout(deps.search, deps.fetcher, llm)
        self.validator = IdentityValidator(deps.fetcher, llm, deps.search)
        self.searcher = MarketplaceSearcher(deps.session)
        self.enricher = Enricher(deps.knowledge.with_tracer(self.tracer))
        self.judge = Judge(llm)
        self.llm = llm
        self._handlers: Dict[Stage, Callable[[PipelineState], Awaitable[Stage]]] = {
            Stage.EXTRACT: self._extract,
            Stage.SCOUT: self._scout,
            Stage.VALIDATE: self._validate,
            Stage.SEARCH: self._search,
            Stage.ASSESS: self._assess,
            Stage.ENRICH: self._enrich,
            Stage.JUDGE: self._judge,
        }

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _aborted(self) -> bool:
        return bool(self.deps.should_abort and self.deps.should_abort())

    def _fallback_identity(self, state: PipelineState) -> GoldIdentity:
        assert state.extraction is not None
        term = state.extraction.marketplace_search_term
        logger.info("Falling back to generic identity {!r}", term)
        return GoldIdentity.generic(term)

    async def _cache_get(self, key: str) -> Optional[GoldIdentity]:
        if self.deps.cache is None:
            return None
        return await self.deps.cache.get(key)

    async def _cache_put(self, key: str, identity: GoldIdentity) -> None:
        if self.deps.cache is None:
            return
        try:
            await self.deps.cache.put(key, identity)
        except OSError as exc:
            logger.warning("Identity cache write failed for {}: {}", key, exc)

    # ------------------------------------------------------------------
    # stages
    # ------------------------------------------------------------------

    async def _extract(self, state: PipelineState) -> Stage:
        if state.pending_relaxation is not None:
            specs, queries = state.pending_relaxation
            state.pending_relaxation = None
            state.kill_specs = list(specs)
            state.web_queries = list(queries)
            state.log(f"Relaxamento nível {state.relaxation_level}: {', '.join(spec_texts(specs))}")
            return Stage.SCOUT

        cached = await self._cache_get(description_cache_key(state.item.description))
        if cached is not None:
            state.gold_identity = cached
            state.from_cache = True
            state.extraction = _extraction_from_identity(cached)
            state.kill_specs = list(state.extraction.kill_specs)
            state.log(f"Identidade em cache: {cached.name}")
            return Stage.SEARCH

        extraction = await extract_specs(state.item.description, self.llm)
        state.extraction = extraction
        state.kill_specs = list(extraction.kill_specs)
        state.web_queries = list(extraction.queries) or spec_texts(extraction.kill_specs)
        state.log(
            f"{len(extraction.kill_specs)} kill-specs, complexidade {extraction.complexity.value} "
            f"({extraction.served_by})"
        )
        if extraction.complexity is Complexity.LOW:
            state.gold_identity = self._fallback_identity(state)
            return Stage.SEARCH
        return Stage.SCOUT

    async def _scout(self, state: PipelineState) -> Stage:
        result = await self.scout.investigate(state.kill_specs, state.web_queries, state.relaxation_level)
        if result.entities:
            state.discovered = list(result.entities)
            state.log(f"{len(result.entities)} identidades, melhor: {result.detected_model}")
            return Stage.VALIDATE
        if result.retry and state.bump_relaxation(MAX_RELAXATION_LEVEL):
            state.pending_relaxation = (result.relaxed_specs, result.relaxed_queries)
            return Stage.EXTRACT
        state.gold_identity = self._fallback_identity(state)
        return Stage.SEARCH

    async def _validate(self, state: PipelineState) -> Stage:
        assert state.extraction is not None
        ext = state.extraction
        for identity in state.discovered:
            result = await self.validator.validate(identity, state.kill_specs)
            self.tracer.validation("validator", summarize_rows(result.specs) + [{"missing": result.missing_specs}])
            if not result.validated:
                state.log(f"{identity.name} reprovado: {result.reason}")
                continue
            gold = promote(result, ext.kill_specs, ext.marketplace_search_term, ext.search_anchor)
            state.gold_identity = gold
            state.log(f"{gold.name} validado")
            await self._cache_put(description_cache_key(state.item.description), gold)
            return Stage.SEARCH

        if state.validation_retries < MAX_VALIDATION_RETRIES and state.relaxation_level < MAX_RELAXATION_LEVEL:
            state.bump_validation_retry(MAX_VALIDATION_RETRIES)
            state.bump_relaxation(MAX_RELAXATION_LEVEL)
            level = state.relaxation_level
            state.pending_relaxation = (
                relax_kill_specs(state.kill_specs, level),
                relax_queries(state.web_queries, level),
            )
            return Stage.EXTRACT

        state.gold_identity = self._fallback_identity(state)
        return Stage.SEARCH

    async def _search(self, state: PipelineState) -> Stage:
        assert state.extraction is not None and state.gold_identity is not None
        ext = state.extraction
        gold = state.gold_identity
        identity = gold.with_queries(state.elastic_queries) if state.elastic_queries else gold
        # priced on the first pass that returns listings, then reused
        price_kit = state.kit_pricing is None
        plan = SearchPlan(
            identity=identity,
            marketplace_term=ext.marketplace_search_term,
            search_anchor=ext.search_anchor,
            kit_components=tuple(gold.kit_components) if price_kit else (),
            max_price=state.item.max_price,
            quantity=state.item.quantity,
            destination=self.deps.destination,
        )
        outcome = await self.searcher.search(plan)
        if price_kit:
            state.kit_pricing = outcome.kit_pricing
        fresh = outcome.listings
        if state.kit_pricing is not None and state.kit_pricing.total > 0:
            fresh = [replace(lst, kit_total=state.kit_pricing.total) for lst in fresh]

        # anomalies are relative to the median of the merged set
        merged = flag_price_anomalies(dedupe_listings(state.listings + fresh))
        state.listings = sorted(merged, key=lambda lst: lst.total_with_kit)
        state.previous_queries.extend(q for q in outcome.queries_used if q not in state.previous_queries)
        state.log(f"{len(state.listings)} anúncios ({', '.join(outcome.strategies_tried)})")
        return Stage.ASSESS

    async def _assess(self, state: PipelineState) -> Stage:
        assert state.extraction is not None
        ext = state.extraction
        budget = state.item.max_price or ext.max_price_estimate
        result = assess(
            state.listings,
            budget,
            state.elastic_retries,
            MAX_ELASTIC_RETRIES,
            state.previous_queries,
            ext.search_anchor,
            spec_texts(ext.kill_specs),
            ext.marketplace_search_term,
        )
        if result.retry and state.bump_elastic_retry(MAX_ELASTIC_RETRIES):
            state.elastic_queries = list(result.alternative_queries)
            state.log(f"Busca elástica {state.elastic_retries}: {', '.join(result.alternative_queries)}")
            return Stage.SEARCH
        return Stage.ENRICH

    async def _enrich(self, state: PipelineState) -> Stage:
        assert state.extraction is not None
        ext = state.extraction
        state.enriched = await self.enricher.enrich(
            state.listings, spec_texts(ext.kill_specs), ext.critical_specs, state.item.max_price
        )
        return Stage.JUDGE

    async def _judge(self, state: PipelineState) -> Stage:
        assert state.extraction is not None
        ext = state.extraction
        kill_specs = spec_texts(ext.kill_specs)
        candidates, winner, endorsed = await self.judge.judge(
            state.enriched, state.item, state.gold_identity, kill_specs, ext.negative_constraints
        )
        state.candidates = candidates
        state.winner_index = winner

        viable = [
            c.total_price
            for c in candidates
            if not c.price_floor_rejected and c.match_status is not MatchStatus.REJECTED
        ]
        if viable:
            self.tracer.stage(Stage.JUDGE.value, f"Preço mínimo viável: R$ {min(viable):.2f}")
        self.tracer.ranking([c.to_dict() for c in candidates], winner)

        state.defense_report = build_defense_report(
            state.item,
            state.gold_identity,
            kill_specs,
            ext.negative_constraints,
            candidates,
            winner,
            endorsed,
            state.kit_pricing,
        )
        return Stage.COMPLETE

    # ------------------------------------------------------------------
    # driver
    # ------------------------------------------------------------------

    async def run(self, item: TenderItem) -> PipelineResult:
        state = PipelineState(item=item)
        log = logger.bind(item_id=item.id)
        log.info("Pipeline start: {}", item.description[:80])
        try:
            while state.stage not in TERMINAL_STAGES:
                if self._aborted():
                    raise PipelineAborted(f"item {item.id} aborted before {state.stage.value}")
                state.transitions += 1
                if state.transitions > MAX_TRANSITIONS:
                    raise HivemindError(f"stage transition bound exceeded at {state.stage.value}")
                self.tracer.stage(state.stage.value, f"transição {state.transitions}")
                nxt = await self._handlers[state.stage](state)
                log.info("{} -> {}", state.stage.value, nxt.value)
                state.stage = nxt
        except Exception as exc:
            state.stage = Stage.FAILED
            state.log(str(exc))
            self.tracer.error("orchestrator", f"{type(exc).__name__}: {exc}")
            raise
        finally:
            self.tracer.finalize()

        log.info(
            "Pipeline complete: {} candidates, winner={} ({} transitions)",
            len(state.candidates),
            state.winner_index,
            state.transitions,
        )
        return PipelineResult(
            winner_index=state.winner_index,
            candidates=state.candidates,
            gold_identity=state.gold_identity,
            defense_report=state.defense_report,
            state=state,
        )


async def run_pipeline(
    item: TenderItem,
    provider_config: Optional[ProviderConfig],
    session: MarketplaceSession,
    cache: Optional[IdentityCache] = None,
    tracer: Optional[Tracer] = None,
    destination: Optional[str] = None,
    should_abort: Optional[Callable[[], bool]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> PipelineResult:
    """
    Quote one tender item against the marketplace.

    ``provider_config=None`` reads the default chains from the environment.
    Without an explicit ``cache`` the JSON identity cache under ``data/`` is
    used with the configured freshness window.
    """
    config = provider_config if provider_config is not None else ProviderConfig.from_env()
    if cache is None:
        cache = JsonIdentityCache(IDENTITY_CACHE_PATH, ttl_days=config.cache_ttl_days)
    deps = PipelineDeps.from_config(
        config,
        session,
        cache=cache,
        tracer=tracer,
        destination=destination,
        should_abort=should_abort,
        http_client=http_client,
    )
    return await Pipeline(deps).run(item)
