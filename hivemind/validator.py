from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

import httpx
from loguru import logger

from .config import (
    VALIDATOR_KIT_PROMPT_CHARS,
    VALIDATOR_LOOKUP_BELOW_CHARS,
    VALIDATOR_MIN_CONTENT_CHARS,
    VALIDATOR_OVERLAP_THRESHOLD,
    VALIDATOR_PAGE_CHARS,
    VALIDATOR_PROMPT_CHARS,
)
from .constants import SCOUT_EXCLUDED_DOMAINS
from .errors import ProviderError, SearchProviderError
from .llm import CompletionClient, user_message
from .normalize import clamp, fold
from .pipeline_types import DiscoveredIdentity, GoldIdentity, KillSpec, KitComponent, SpecEvidence, spec_texts
from .scout import ReadableFetcher, WebSearch
from .text_utils import dedupe_keep_order, word_overlap_ratio
from .utils.urls import matches_any_domain

SPEC_PROMPT = """Você é um auditor técnico validando especificações de produto.

PRODUTO: {name} ({manufacturer})

CONTEÚDO DA PÁGINA DO FABRICANTE:
{content}

ESPECIFICAÇÕES EXIGIDAS:
{specs}

Verifique CADA especificação contra o conteúdo. Responda SOMENTE em JSON:
```json
{{
  "all_match": true,
  "matched_specs": [{{"spec": "...", "evidence": "trecho", "match": true}}],
  "missing_specs": [],
  "confidence": 0.0
}}
```"""

KIT_PROMPT = """O produto abaixo é vendido COMPLETO ou exige acessórios comprados à parte
para atender ao edital?

PRODUTO: {name}

CONTEÚDO DO FABRICANTE:
{content}

ESPECIFICAÇÕES DO EDITAL:
{specs}

Responda SOMENTE em JSON:
```json
{{
  "kit_needed": false,
  "missing_items": [{{"item": "Corneta 35W", "quantity": 2, "search_query": "corneta 35w"}}],
  "reasoning": "..."
}}
```"""


@dataclass
class ValidationResult:
    validated: bool
    identity: DiscoveredIdentity
    specs: List[SpecEvidence] = field(default_factory=list)
    missing_specs: List[str] = field(default_factory=list)
    kit_needed: bool = False
    missing_items: List[KitComponent] = field(default_factory=list)
    source_url: Optional[str] = None
    reason: str = ""


def fallback_validation(specs: List[str], content: str) -> Tuple[List[SpecEvidence], List[str]]:
    """A spec passes when more than 60% of its words occur in the content."""
    matched: List[SpecEvidence] = []
    missing: List[str] = []
    for spec in specs:
        if word_overlap_ratio(spec, content) > VALIDATOR_OVERLAP_THRESHOLD:
            matched.append(SpecEvidence(spec=spec, evidence="Encontrado no texto", match=True))
        else:
            missing.append(spec)
    return matched, missing


def identity_search_queries(identity: DiscoveredIdentity) -> List[str]:
    """Full name, manufacturer + name, punctuation-free name."""
    queries = [identity.name]
    maker = fold(identity.manufacturer).split()
    if maker and fold(identity.name).split()[: len(maker)] != maker:
        queries.append(f"{identity.manufacturer} {identity.name}")
    clean = re.sub(r"\s+", " ", re.sub(r"[^\w\s]", "", identity.name)).strip()
    if clean and clean != identity.name:
        queries.append(clean)
    return dedupe_keep_order(queries)


def promote(result: ValidationResult, kill_specs: List[KillSpec], term: str, anchor: Optional[str]) -> GoldIdentity:
    """Build the GoldIdentity for a validated result."""
    base = result.identity.model_dump()
    base["source_url"] = result.source_url or result.identity.source_url
    return GoldIdentity(
        **base,
        validated_specs=list(result.specs),
        search_queries=identity_search_queries(result.identity),
        kit_components=list(result.missing_items) if result.kit_needed else [],
        is_generic=False,
        kill_specs=spec_texts(kill_specs),
        marketplace_search_term=term,
        search_anchor=anchor,
    )


def _evidence_rows(value: Any) -> List[SpecEvidence]:
    rows: List[SpecEvidence] = []
    for entry in value or []:
        if isinstance(entry, str):
            rows.append(SpecEvidence(spec=entry))
        elif isinstance(entry, dict) and entry.get("spec"):
            rows.append(
                SpecEvidence(
                    spec=str(entry["spec"]),
                    evidence=str(entry.get("evidence") or ""),
                    match=entry.get("match") is not False,
                )
            )
    return rows


def _kit_items(value: Any) -> List[KitComponent]:
    items: List[KitComponent] = []
    for entry in value or []:
        if not isinstance(entry, dict) or not entry.get("item"):
            continue
        try:
            qty = max(1, int(entry.get("quantity") or 1))
        except (TypeError, ValueError):
            qty = 1
        items.append(
            KitComponent(
                item=str(entry["item"]),
                quantity=qty,
                search_query=str(entry.get("search_query") or entry["item"]),
            )
        )
    return items


class IdentityValidator:
    def __init__(self, fetcher: ReadableFetcher, llm: CompletionClient, search: Optional[WebSearch] = None):
        self.fetcher = fetcher
        self.llm = llm
        self.search = search

    async def find_product_page(self, identity: DiscoveredIdentity) -> Optional[str]:
        """First non-marketplace hit for '<manufacturer> <name> ficha técnica'."""
        if self.search is None:
            return None
        query = " ".join(p for p in (identity.manufacturer, identity.name, "ficha técnica") if p)
        try:
            results = await self.search.search(query)
        except (SearchProviderError, httpx.HTTPError) as exc:
            logger.debug("Product page lookup failed for {}: {}", identity.name, exc)
            return None
        for r in results:
            if r.link and r.link != identity.source_url and not matches_any_domain(r.link, SCOUT_EXCLUDED_DOMAINS):
                return r.link
        return None

    async def _content(self, identity: DiscoveredIdentity) -> Tuple[Optional[str], Optional[str]]:
        content: Optional[str] = None
        source = identity.source_url
        if identity.source_url:
            content = await self.fetcher.fetch_readable(identity.source_url, VALIDATOR_PAGE_CHARS)
        if not content and identity.evidence:
            content = identity.evidence
        if not content or len(content) < VALIDATOR_LOOKUP_BELOW_CHARS:
            page = await self.find_product_page(identity)
            if page:
                fetched = await self.fetcher.fetch_readable(page, VALIDATOR_PAGE_CHARS)
                if fetched and len(fetched) > len(content or ""):
                    content, source = fetched, page
        return content, source

    async def _check_specs(
        self, identity: DiscoveredIdentity, specs: List[str], content: str
    ) -> Tuple[List[SpecEvidence], List[str]]:
        prompt = SPEC_PROMPT.format(
            name=identity.name,
            manufacturer=identity.manufacturer or "Fabricante desconhecido",
            content=clamp(content, VALIDATOR_PROMPT_CHARS),
            specs="\n".join(f"{i + 1}. {s}" for i, s in enumerate(specs)),
        )
        try:
            data, _ = await self.llm.complete_json(user_message(prompt), agent="validator")
        except ProviderError as exc:
            logger.warning("Spec validation model call failed, using word overlap: {}", exc)
            return fallback_validation(specs, content)

        rows = _evidence_rows(data.get("matched_specs"))
        missing = [str(s) for s in data.get("missing_specs") or [] if s]
        missing += [r.spec for r in rows if not r.match]
        matched = [r for r in rows if r.match]
        if data.get("all_match") is not True and not missing:
            confirmed = {r.spec for r in matched}
            missing = [s for s in specs if s not in confirmed] or ["all_match=false"]
        return matched, dedupe_keep_order(missing)

    async def _check_kit(self, identity: DiscoveredIdentity, specs: List[str], content: str) -> Tuple[bool, List[KitComponent]]:
        prompt = KIT_PROMPT.format(
            name=identity.name,
            content=clamp(content, VALIDATOR_KIT_PROMPT_CHARS),
            specs=", ".join(specs),
        )
        try:
            data, _ = await self.llm.complete_json(user_message(prompt), agent="validator-kit")
        except ProviderError as exc:
            logger.debug("Kit analysis unavailable: {}", exc)
            return False, []
        items = _kit_items(data.get("missing_items"))
        return bool(data.get("kit_needed")) and bool(items), items

    async def validate(self, identity: DiscoveredIdentity, kill_specs: List[KillSpec]) -> ValidationResult:
        specs = spec_texts(kill_specs)
        content, source = await self._content(identity)
        if not content or len(content) < VALIDATOR_MIN_CONTENT_CHARS:
            logger.info("No manufacturer content for {}", identity.name)
            return ValidationResult(
                validated=False,
                identity=identity,
                reason="Não foi possível acessar informações do fabricante",
            )

        matched, missing = await self._check_specs(identity, specs, content)
        if missing:
            logger.info("{} failed validation: {}", identity.name, ", ".join(missing))
            return ValidationResult(
                validated=False,
                identity=identity,
                specs=matched,
                missing_specs=missing,
                source_url=source,
                reason=f"Especificações não atendidas: {', '.join(missing)}",
            )

        kit_needed, items = await self._check_kit(identity, specs, content)
        logger.info("{} validated (kit needed: {})", identity.name, kit_needed)
        return ValidationResult(
            validated=True,
            identity=identity,
            specs=matched,
            kit_needed=kit_needed,
            missing_items=items if kit_needed else [],
            source_url=source,
        )
