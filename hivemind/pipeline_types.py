"""Typed containers shared across pipeline modules.

Listings move through three records, each stage only adding fields:
``RawListing`` (Searcher) -> ``EnrichedListing`` (Enrichment) ->
``JudgedCandidate`` (Judge).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Complexity(str, Enum):
    LOW = "LOW"
    HIGH = "HIGH"


class MatchStatus(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    UNCERTAIN = "UNCERTAIN"


class Stage(str, Enum):
    EXTRACT = "EXTRACT"
    SCOUT = "SCOUT"
    VALIDATE = "VALIDATE"
    SEARCH = "SEARCH"
    ASSESS = "ASSESS"
    ENRICH = "ENRICH"
    JUDGE = "JUDGE"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


TERMINAL_STAGES = frozenset({Stage.COMPLETE, Stage.FAILED})


@dataclass(frozen=True)
class TenderItem:
    """One line of a tender. Immutable input of a pipeline run."""

    id: str
    description: str
    max_price: float = 0.0
    quantity: int = 1


@dataclass(frozen=True)
class KillSpec:
    """A distinguishing requirement, optionally weighted."""

    text: str
    weight: Optional[float] = None

    def __str__(self) -> str:
        return self.text


def spec_texts(specs: List[KillSpec]) -> List[str]:
    return [s.text for s in specs]


# ---------------------------------------------------------------------------
# Identities (pydantic so the cache can round-trip them as JSON)
# ---------------------------------------------------------------------------

class SpecEvidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    spec: str
    evidence: str = ""
    match: bool = True


class KitComponent(BaseModel):
    model_config = ConfigDict(frozen=True)

    item: str
    quantity: int = Field(default=1, ge=1)
    search_query: str = ""


class DiscoveredIdentity(BaseModel):
    """A manufacturer/model candidate produced by the Scout."""

    model_config = ConfigDict(frozen=True)

    name: str
    manufacturer: Optional[str] = None
    matched_specs: List[str] = Field(default_factory=list)
    missing_specs: List[str] = Field(default_factory=list)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    source_url: Optional[str] = None
    evidence: Optional[str] = None


class GoldIdentity(DiscoveredIdentity):
    """
    A DiscoveredIdentity promoted after validation.

    ``is_generic=True`` marks the fallback identity built from the raw
    marketplace search term when nothing could be validated. The extraction
    context (kill-specs, term, anchor) travels with it so a cache hit can
    skip straight to the marketplace.
    """

    validated_specs: List[SpecEvidence] = Field(default_factory=list)
    search_queries: List[str] = Field(default_factory=list)
    kit_components: List[KitComponent] = Field(default_factory=list)
    is_generic: bool = False
    kill_specs: List[str] = Field(default_factory=list)
    marketplace_search_term: Optional[str] = None
    search_anchor: Optional[str] = None

    @classmethod
    def generic(cls, term: str) -> "GoldIdentity":
        return cls(name=term, search_queries=[term], is_generic=True, confidence=0.0)

    def with_queries(self, queries: List[str]) -> "GoldIdentity":
        return self.model_copy(update={"search_queries": list(queries)})


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RawListing:
    """A marketplace listing with its detail page merged in."""

    title: str
    price: float
    link: str
    source_strategy: str
    condition: str = ""
    shipping_cost: float = 0.0
    attributes: Tuple[str, ...] = ()
    description: str = ""
    seller_reputation: Optional[str] = None
    price_anomaly: bool = False
    anomaly_reason: str = ""
    kit_total: float = 0.0

    @property
    def total_price(self) -> float:
        return self.price + self.shipping_cost

    @property
    def total_with_kit(self) -> float:
        return self.total_price + self.kit_total

    @property
    def full_text(self) -> str:
        bits = [self.title, " ".join(self.attributes), self.description]
        return " ".join(b for b in bits if b).strip()


@dataclass(frozen=True)
class EnrichmentEvidence:
    """Answer of the external knowledge source for one listing."""

    specs: Dict[str, Optional[bool]]
    confidence: float
    source: str
    answered_by: str = ""

    @property
    def confirmed(self) -> List[str]:
        return [k for k, v in self.specs.items() if v is True]

    @property
    def refuted(self) -> List[str]:
        return [k for k, v in self.specs.items() if v is False]


@dataclass(frozen=True)
class EnrichedListing:
    listing: RawListing
    evidence: Optional[EnrichmentEvidence] = None

    @classmethod
    def from_raw(cls, listing: RawListing) -> "EnrichedListing":
        return cls(listing=listing)

    def with_evidence(self, evidence: EnrichmentEvidence) -> "EnrichedListing":
        return EnrichedListing(listing=self.listing, evidence=evidence)


@dataclass(frozen=True)
class JudgedCandidate:
    """Final, judged form of a listing."""

    listing: RawListing
    evidence: Optional[EnrichmentEvidence]
    match_status: MatchStatus
    risk_score: float
    reasoning: str
    price_floor_rejected: bool = False

    @classmethod
    def judge(
        cls,
        enriched: EnrichedListing,
        status: MatchStatus,
        risk_score: float,
        reasoning: str,
        price_floor_rejected: bool = False,
    ) -> "JudgedCandidate":
        risk = min(10.0, max(0.0, float(risk_score)))
        return cls(
            listing=enriched.listing,
            evidence=enriched.evidence,
            match_status=status,
            risk_score=risk,
            reasoning=reasoning,
            price_floor_rejected=price_floor_rejected,
        )

    @property
    def title(self) -> str:
        return self.listing.title

    @property
    def price(self) -> float:
        return self.listing.price

    @property
    def shipping_cost(self) -> float:
        return self.listing.shipping_cost

    @property
    def total_price(self) -> float:
        return self.listing.total_price

    @property
    def link(self) -> str:
        return self.listing.link

    @property
    def source_strategy(self) -> str:
        return self.listing.source_strategy

    def to_dict(self) -> Dict[str, Any]:
        lst = self.listing
        return {
            "title": lst.title,
            "price": lst.price,
            "shipping_cost": lst.shipping_cost,
            "total_price": lst.total_price,
            "total_with_kit": lst.total_with_kit,
            "link": lst.link,
            "condition": lst.condition,
            "attributes": list(lst.attributes),
            "seller_reputation": lst.seller_reputation,
            "risk_score": self.risk_score,
            "match_status": self.match_status.value,
            "reasoning": self.reasoning,
            "source_strategy": lst.source_strategy,
            "price_floor_rejected": self.price_floor_rejected,
            "enrichment": None
            if self.evidence is None
            else {
                "specs": dict(self.evidence.specs),
                "confidence": self.evidence.confidence,
                "source": self.evidence.source,
            },
        }


@dataclass(frozen=True)
class KitLine:
    name: str
    quantity: int
    unit_price: float
    total_price: float
    link: str
    title: str


@dataclass(frozen=True)
class KitPricing:
    items: Tuple[KitLine, ...]
    total: float


# ---------------------------------------------------------------------------
# Extraction output
# ---------------------------------------------------------------------------

@dataclass
class ExtractionResult:
    kill_specs: List[KillSpec]
    critical_specs: List[KillSpec]
    marketplace_search_term: str
    search_anchor: Optional[str]
    max_price_estimate: float
    complexity: Complexity
    queries: List[str] = field(default_factory=list)
    negative_constraints: List[str] = field(default_factory=list)
    reasoning: str = ""
    served_by: str = "fallback"

    @property
    def search_anchor_quoted(self) -> Optional[str]:
        if not self.search_anchor:
            return None
        return f'"{self.search_anchor}"'


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DefenseReport:
    """Write-once snapshot of the decision chain for one item."""

    item_id: str
    description: str
    max_price: float
    identity_name: Optional[str]
    identity_manufacturer: Optional[str]
    identity_source_url: Optional[str]
    identity_is_generic: bool
    kill_specs: Tuple[str, ...]
    negative_constraints: Tuple[str, ...]
    winner: Optional[Dict[str, Any]]
    endorsed: bool
    justification: str
    methodology: str
    kit_lines: Tuple[KitLine, ...] = ()
    kit_total: float = 0.0
    candidate_count: int = 0
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass(frozen=True)
class StageLogEntry:
    timestamp: str
    stage: Stage
    message: str


@dataclass
class PipelineState:
    """
    Evolving record of one item's run. Owned by exactly one orchestrator run.

    Loop counters only move forward through the ``bump_*`` helpers, which
    refuse to exceed their maxima.
    """

    item: TenderItem
    stage: Stage = Stage.EXTRACT
    extraction: Optional[ExtractionResult] = None
    kill_specs: List[KillSpec] = field(default_factory=list)
    web_queries: List[str] = field(default_factory=list)
    relaxation_level: int = 0
    validation_retries: int = 0
    elastic_retries: int = 0
    pending_relaxation: Optional[Tuple[List[KillSpec], List[str]]] = None
    previous_queries: List[str] = field(default_factory=list)
    elastic_queries: List[str] = field(default_factory=list)
    discovered: List[DiscoveredIdentity] = field(default_factory=list)
    gold_identity: Optional[GoldIdentity] = None
    from_cache: bool = False
    listings: List[RawListing] = field(default_factory=list)
    kit_pricing: Optional[KitPricing] = None
    enriched: List[EnrichedListing] = field(default_factory=list)
    candidates: List[JudgedCandidate] = field(default_factory=list)
    winner_index: Optional[int] = None
    defense_report: Optional[DefenseReport] = None
    transitions: int = 0
    logs: List[StageLogEntry] = field(default_factory=list)

    def bump_relaxation(self, maximum: int) -> bool:
        if self.relaxation_level >= maximum:
            return False
        self.relaxation_level += 1
        return True

    def bump_validation_retry(self, maximum: int) -> bool:
        if self.validation_retries >= maximum:
            return False
        self.validation_retries += 1
        return True

    def bump_elastic_retry(self, maximum: int) -> bool:
        if self.elastic_retries >= maximum:
            return False
        self.elastic_retries += 1
        return True

    def log(self, message: str) -> StageLogEntry:
        entry = StageLogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            stage=self.stage,
            message=message,
        )
        self.logs.append(entry)
        return entry
