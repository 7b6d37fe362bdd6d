from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


# ---------------------------
# Paths
# ---------------------------

PROJECT_ROOT = Path(__file__).resolve().parents[1]

DATA_DIR = PROJECT_ROOT / "data"
IDENTITY_CACHE_PATH = DATA_DIR / "identity_cache.json"

LOG_DIR = PROJECT_ROOT / "logs"
TRACE_DIR = LOG_DIR / "hivemind"


# ---------------------------
# Feedback loop maxima
# ---------------------------

MAX_RELAXATION_LEVEL = 3
MAX_VALIDATION_RETRIES = 2
MAX_ELASTIC_RETRIES = 3


# ---------------------------
# Spec extraction
# ---------------------------

MARKETPLACE_TERM_MAX_WORDS = 7
MARKETPLACE_TERM_FALLBACK_WORDS = 5
FALLBACK_SPEC_MAX_CHARS = 100
DEFAULT_CRITICAL_WEIGHT = 10.0
HIGH_WEIGHT_THRESHOLD = 8.0


# ---------------------------
# Scout / validator
# ---------------------------

SCOUT_MAX_QUERIES = 3
SCOUT_MAX_PAGES = 5
SCOUT_MIN_PAGE_CHARS = 100
SCOUT_PAGE_CHARS = 10_000
SCOUT_PROMPT_CHARS = 5_000
ENTITY_MIN_CONFIDENCE = 0.5

VALIDATOR_PAGE_CHARS = 15_000
VALIDATOR_PROMPT_CHARS = 8_000
VALIDATOR_KIT_PROMPT_CHARS = 5_000
VALIDATOR_MIN_CONTENT_CHARS = 100
VALIDATOR_LOOKUP_BELOW_CHARS = 200
VALIDATOR_OVERLAP_THRESHOLD = 0.6


# ---------------------------
# Marketplace search
# ---------------------------

MIN_ACCEPTABLE_CANDIDATES = 3
MAX_QUERIES_PER_STRATEGY = 2
MAX_QUERY_LENGTH = 60
MAX_DETAILED_LISTINGS = 10
PRICE_ANOMALY_THRESHOLD = 0.30   # fraction of the median price
LAST_RESORT_WORDS = 3


# ---------------------------
# Sufficiency assessment
# ---------------------------

PROMISING_MIN_TEXT_CHARS = 50
PROMISING_PRICE_MIN_RATIO = 0.10
PROMISING_PRICE_MAX_RATIO = 1.50
MIN_PROMISING_CANDIDATES = 2
MAX_ALTERNATIVE_QUERIES = 2


# ---------------------------
# Enrichment
# ---------------------------

ENRICHMENT_COVERAGE_THRESHOLD = 0.70
MAX_ENRICHMENT_CALLS = 5


# ---------------------------
# Judge
# ---------------------------

PRICE_FLOOR_RATIO = 0.15          # 15% of the tender max price
APPROVED_OVERLAP = 0.7
UNCERTAIN_OVERLAP = 0.4
ENDORSE_MAX_RISK = 3.0
ANOMALY_RISK = 8.0
GENERIC_RISK = 5.0
JUDGE_DESCRIPTION_CHARS = 500


# ---------------------------
# Identity cache
# ---------------------------

DEFAULT_CACHE_TTL_DAYS = 30
CACHE_TTL_DAYS = int(os.getenv("HIVEMIND_CACHE_TTL_DAYS", str(DEFAULT_CACHE_TTL_DAYS)))


# ---------------------------
# Worker pool
# ---------------------------

DEFAULT_CONCURRENCY = 12
CONCURRENCY = int(os.getenv("HIVEMIND_CONCURRENCY", str(DEFAULT_CONCURRENCY)))


# ---------------------------
# HTTP hardening
# ---------------------------

HTTP_CONNECT_TIMEOUT = 5.0
HTTP_READ_TIMEOUT = float(os.getenv("HIVEMIND_HTTP_READ_TIMEOUT", "15.0"))
HTTP_MAX_REDIRECTS = 3
HTTP_MAX_BYTES = 1_000_000  # 1 MB cap
LLM_TIMEOUT = float(os.getenv("HIVEMIND_LLM_TIMEOUT", "60.0"))

HTTP_USER_AGENT = (
    "hivemind-quoter/1.0 (+https://example.com; contact=compras@placeholder.com)"
)

JINA_READER_URL = "https://r.jina.ai/"
GOOGLE_CSE_URL = "https://www.googleapis.com/customsearch/v1"
DUCKDUCKGO_HTML_URL = "https://html.duckduckgo.com/html/"
DUCKDUCKGO_MAX_RESULTS = 5


# ---------------------------
# Completion providers
# ---------------------------

PROVIDER_DEEPSEEK = "deepseek"
PROVIDER_GEMINI = "gemini"
PROVIDER_QWEN = "qwen"
PROVIDER_PERPLEXITY = "perplexity"

# All of these speak the OpenAI chat-completions dialect.
PROVIDER_BASE_URLS: Dict[str, str] = {
    PROVIDER_DEEPSEEK: "https://api.deepseek.com/v1",
    PROVIDER_GEMINI: "https://generativelanguage.googleapis.com/v1beta/openai",
    PROVIDER_QWEN: "https://dashscope-intl.aliyuncs.com/compatible-mode/v1",
    PROVIDER_PERPLEXITY: "https://api.perplexity.ai",
}

PROVIDER_KEY_ENV: Dict[str, str] = {
    PROVIDER_DEEPSEEK: "DEEPSEEK_API_KEY",
    PROVIDER_GEMINI: "GEMINI_API_KEY",
    PROVIDER_QWEN: "QWEN_KEY",
    PROVIDER_PERPLEXITY: "PERPLEXITY_API_KEY",
}

DEFAULT_MODELS: Dict[str, str] = {
    PROVIDER_DEEPSEEK: "deepseek-chat",
    PROVIDER_GEMINI: "gemini-1.5-flash",
    PROVIDER_QWEN: "qwen-plus",
    PROVIDER_PERPLEXITY: "sonar-pro",
}

DEFAULT_COMPLETION_CHAIN: List[str] = [PROVIDER_DEEPSEEK, PROVIDER_GEMINI, PROVIDER_QWEN]


# ---------------------------
# Pydantic models shared around the app
# ---------------------------

class ProviderDescriptor(BaseModel):
    """
    One entry of a provider fallback chain.

    The credential is either given inline (``api_key``) or resolved from the
    environment variable named by ``api_key_env`` at call time.
    """

    name: str
    model: str
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    api_key_env: Optional[str] = None

    def resolve_api_key(self) -> Optional[str]:
        if self.api_key:
            return self.api_key
        env_name = self.api_key_env or PROVIDER_KEY_ENV.get(self.name)
        if not env_name:
            return None
        return os.getenv(env_name) or None

    def resolve_base_url(self) -> Optional[str]:
        return (self.base_url or PROVIDER_BASE_URLS.get(self.name) or "").rstrip("/") or None

    @classmethod
    def for_provider(cls, name: str, model: Optional[str] = None) -> "ProviderDescriptor":
        return cls(
            name=name,
            model=model or DEFAULT_MODELS.get(name, ""),
            api_key_env=PROVIDER_KEY_ENV.get(name),
        )


class WebSearchConfig(BaseModel):
    """Credentials for the primary web search provider (Google Custom Search)."""

    enabled: bool = False
    api_key: Optional[str] = None
    cx: Optional[str] = None

    @property
    def primary_configured(self) -> bool:
        return bool(self.enabled and self.api_key and self.cx)


class ProviderConfig(BaseModel):
    """
    Caller-supplied provider configuration for one pipeline run.

    ``completion`` is evaluated in order by every agent; ``knowledge`` feeds
    the enrichment stage. Empty chains are valid and force the deterministic
    fallbacks.
    """

    completion: List[ProviderDescriptor] = Field(default_factory=list)
    knowledge: List[ProviderDescriptor] = Field(default_factory=list)
    web_search: WebSearchConfig = Field(default_factory=WebSearchConfig)
    cache_ttl_days: int = Field(default=DEFAULT_CACHE_TTL_DAYS, ge=0)

    @classmethod
    def from_env(cls) -> "ProviderConfig":
        primary = os.getenv("HIVEMIND_PROVIDER")
        order = list(DEFAULT_COMPLETION_CHAIN)
        if primary and primary in PROVIDER_BASE_URLS:
            order = [primary] + [p for p in order if p != primary]
        completion = [
            ProviderDescriptor.for_provider(name, os.getenv("HIVEMIND_MODEL") if name == primary else None)
            for name in order
        ]
        web_search = WebSearchConfig(
            enabled=os.getenv("ENABLE_GOOGLE_SEARCH", "").lower() == "true",
            api_key=os.getenv("GOOGLE_SEARCH_API_KEY"),
            cx=os.getenv("GOOGLE_SEARCH_CX"),
        )
        return cls(
            completion=completion,
            knowledge=[ProviderDescriptor.for_provider(PROVIDER_PERPLEXITY)],
            web_search=web_search,
            cache_ttl_days=CACHE_TTL_DAYS,
        )
