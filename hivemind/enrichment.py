"""
Evidence enrichment for listings whose own text does not prove compliance.

A listing is sent to the knowledge chain only when its title, attributes and
description cover less than ENRICHMENT_COVERAGE_THRESHOLD of the kill-specs
or miss a high-weight critical spec. Calls are capped per item and every
failure is logged and skipped.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from loguru import logger

from .config import (
    ENRICHMENT_COVERAGE_THRESHOLD,
    HIGH_WEIGHT_THRESHOLD,
    MAX_ENRICHMENT_CALLS,
)
from .judge import below_price_floor
from .llm import CompletionClient, user_message
from .pipeline_types import EnrichedListing, EnrichmentEvidence, KillSpec, RawListing
from .text_utils import spec_present

KNOWLEDGE_PROMPT = """O produto "{title}" possui as seguintes características?

{specs}

Pesquise o modelo e responda SOMENTE em JSON, usando true, false ou null
(desconhecido) para cada característica:
```json
{{"specs": {{"característica": true}}, "confidence": 0.0, "source": "url ou referência"}}
```"""


def is_viable(listing: RawListing, max_price: float) -> bool:
    return not listing.price_anomaly and not below_price_floor(listing.price, max_price)


def coverage(listing: RawListing, specs: List[str]) -> float:
    if not specs:
        return 1.0
    text = listing.full_text
    return sum(1 for s in specs if spec_present(s, text)) / len(specs)


def needs_enrichment(listing: RawListing, kill_specs: List[str], critical_specs: List[KillSpec]) -> bool:
    if coverage(listing, kill_specs) < ENRICHMENT_COVERAGE_THRESHOLD:
        return True
    text = listing.full_text
    high = [c.text for c in critical_specs if (c.weight or 0) >= HIGH_WEIGHT_THRESHOLD]
    return not all(spec_present(s, text) for s in high)


def _spec_answers(value: Any, specs: List[str]) -> Dict[str, Optional[bool]]:
    answers: Dict[str, Optional[bool]] = {s: None for s in specs}
    if not isinstance(value, dict):
        return answers
    for key, val in value.items():
        answers[str(key)] = val if isinstance(val, bool) else None
    return answers


class Enricher:
    def __init__(self, knowledge: CompletionClient, max_calls: int = MAX_ENRICHMENT_CALLS):
        self.knowledge = knowledge
        self.max_calls = max_calls

    async def ask(self, listing: RawListing, specs: List[str]) -> EnrichmentEvidence:
        prompt = KNOWLEDGE_PROMPT.format(
            title=listing.title,
            specs="\n".join(f"- {s}" for s in specs),
        )
        data, result = await self.knowledge.complete_json(user_message(prompt), agent="enrichment")
        try:
            confidence = min(1.0, max(0.0, float(data.get("confidence", 0.0))))
        except (TypeError, ValueError):
            confidence = 0.0
        return EnrichmentEvidence(
            specs=_spec_answers(data.get("specs"), specs),
            confidence=confidence,
            source=str(data.get("source") or ""),
            answered_by=result.provider,
        )

    async def enrich(
        self,
        listings: List[RawListing],
        kill_specs: List[str],
        critical_specs: List[KillSpec],
        max_price: float,
    ) -> List[EnrichedListing]:
        out = [EnrichedListing.from_raw(lst) for lst in listings]
        if not self.knowledge.providers or not kill_specs:
            return out

        calls = 0
        for idx, lst in enumerate(listings):
            if calls >= self.max_calls:
                logger.info("Enrichment budget of {} calls used up", self.max_calls)
                break
            if not is_viable(lst, max_price) or not needs_enrichment(lst, kill_specs, critical_specs):
                continue
            calls += 1
            try:
                evidence = await self.ask(lst, kill_specs)
            except Exception as exc:
                logger.warning("Enrichment failed for {!r}: {}", lst.title[:50], exc)
                continue
            out[idx] = out[idx].with_evidence(evidence)
            logger.debug(
                "Enriched {!r}: +{} / -{} ({})",
                lst.title[:50],
                len(evidence.confirmed),
                len(evidence.refuted),
                evidence.answered_by,
            )
        return out
