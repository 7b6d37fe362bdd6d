"""
Spec extraction: free-text tender description -> kill-specs, marketplace
term, search anchor, price estimate and complexity.

The model answer is optional. Whatever the source, every spec goes through
``anchor_spec`` so that truncated unit fragments ("72 m") never leave this
module unless the description itself contains them.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from loguru import logger

from .config import (
    DEFAULT_CRITICAL_WEIGHT,
    FALLBACK_SPEC_MAX_CHARS,
    MARKETPLACE_TERM_FALLBACK_WORDS,
    MARKETPLACE_TERM_MAX_WORDS,
)
from .constants import GENERIC_SPEC_TERMS, HIGH_COMPLEXITY_KEYWORDS, LOW_COMPLEXITY_KEYWORDS
from .errors import ProviderError
from .llm import CompletionClient, user_message
from .normalize import basic_clean, fold
from .pipeline_types import Complexity, ExtractionResult, KillSpec
from .text_utils import (
    SHORT_UNIT_FRAGMENT_RE,
    com_phrases,
    dedupe_keep_order,
    meaningful_words,
    numeric_unit_phrases,
    quoted_phrases,
    truncate_words,
)

EXTRACTION_PROMPT = """Você é um especialista em análise de editais de licitação.
Extraia as especificações que DIFERENCIAM este produto de substitutos genéricos.

DESCRIÇÃO DO ITEM:
<<DESCRIPTION>>

REGRAS:
1. Ignore especificações genéricas (bivolt, 220V, plástico, metal, novo, garantia).
2. Prefira números exatos, capacidades e funcionalidades raras.
3. Copie números e unidades exatamente como aparecem na descrição, sem abreviar.
4. Gere consultas de busca na web para localizar fabricantes e fichas técnicas.

Responda SOMENTE em JSON:
```json
{
  "kill_specs": ["72 músicas pré-gravadas"],
  "critical_specs": [{"spec": "72 músicas", "weight": 10}],
  "marketplace_search_term": "sirene escolar musical",
  "search_anchor": "72 músicas",
  "max_price_estimate": 0,
  "complexity": "HIGH",
  "google_queries": ["sirene escolar \\"72 músicas\\" site:com.br"],
  "negative_constraints": ["peça de reposição"],
  "reasoning": "..."
}
```"""

_WORD_TAIL = r"[^\W\d_]*"


# ---------------------------------------------------------------------------
# Anti-hallucination
# ---------------------------------------------------------------------------

def _expand_fragment(number: str, letters: str, description: str) -> Optional[str]:
    """
    Full word following ``number`` in the description whose prefix is
    ``letters``. Returns ``letters`` itself when the description uses the
    short form verbatim, ``None`` when nothing anchors it.
    """
    pattern = re.compile(
        r"(?<![\d.,])" + re.escape(number) + r"\s*(" + re.escape(letters) + _WORD_TAIL + r")(?![^\W\d_])",
        re.IGNORECASE,
    )
    words = [m.group(1) for m in pattern.finditer(description)]
    if not words:
        return None
    for w in words:
        if w.lower() == letters.lower():
            return letters
    return words[0]


def anchor_spec(spec: str, description: str) -> Optional[str]:
    """
    Correct or drop a spec containing a number followed by one or two
    letters ("72 m") that the description does not literally contain.

      anchor_spec("72 m", "... com 72 músicas ...")  -> "72 músicas"
      anchor_spec("128 GB", "... 128GB ...")         -> "128 GB"
      anchor_spec("72 m", "sem números")             -> None
    """
    spec = basic_clean(spec)
    if not spec:
        return None
    out = spec
    for m in reversed(list(SHORT_UNIT_FRAGMENT_RE.finditer(spec))):
        number, letters = m.group(1), m.group(2)
        word = _expand_fragment(number, letters, description)
        if word is None:
            logger.debug("Dropping un-anchored spec {!r}", spec)
            return None
        if word != letters:
            out = out[: m.start()] + f"{number} {word}" + out[m.end() :]
    return out


def anchor_specs(specs: List[str], description: str) -> List[str]:
    out = []
    for spec in specs:
        fixed = anchor_spec(spec, description)
        if fixed:
            out.append(fixed)
    return dedupe_keep_order(out)


# ---------------------------------------------------------------------------
# Deterministic helpers
# ---------------------------------------------------------------------------

def classify_complexity(description: str) -> Complexity:
    """HIGH keywords win over LOW ones; unknown items default to HIGH."""
    desc = (description or "").lower()
    if any(kw in desc for kw in HIGH_COMPLEXITY_KEYWORDS):
        return Complexity.HIGH
    if any(kw in desc for kw in LOW_COMPLEXITY_KEYWORDS):
        return Complexity.LOW
    return Complexity.HIGH


def has_high_complexity_keyword(description: str) -> bool:
    desc = (description or "").lower()
    return any(kw in desc for kw in HIGH_COMPLEXITY_KEYWORDS)


def is_generic_spec(spec: str) -> bool:
    folded = fold(spec)
    for term in GENERIC_SPEC_TERMS:
        if re.search(r"(?<!\w)" + re.escape(fold(term)) + r"(?!\w)", folded):
            return True
    return False


def generate_marketplace_term(description: str) -> str:
    words = meaningful_words(description)[:MARKETPLACE_TERM_FALLBACK_WORDS]
    return " ".join(words) or basic_clean(description)[:50]


def generate_search_anchor(specs: List[str]) -> Optional[str]:
    """Most filterable spec, unquoted: numeric first, then short, then first."""
    if not specs:
        return None
    for spec in specs:
        if re.search(r"\d", spec):
            m = re.search(r"\d+\s*[^\W\d_]+", spec)
            return (m.group(0) if m else spec).strip()
    for spec in specs:
        if len(spec.split()) <= 3 and len(spec) > 3:
            return spec.strip()
    return specs[0].strip()


def google_hacking_queries(specs: List[str]) -> List[str]:
    return [f'"{spec}" site:com.br OR site:gov.br' for spec in specs]


def _str_list(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [basic_clean(v) for v in value if isinstance(v, (str, int, float)) and basic_clean(str(v))]


def _to_float(value: Any) -> float:
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return 0.0


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------

def fallback_extraction(description: str) -> ExtractionResult:
    """Regex-only extraction used whenever no model answer is usable."""
    description = basic_clean(description)
    raw = numeric_unit_phrases(description) + quoted_phrases(description) + com_phrases(description)
    specs = anchor_specs(raw, description)
    specs = [s for s in specs if len(s) > 2 and not is_generic_spec(s)]
    if not specs:
        specs = [description[:FALLBACK_SPEC_MAX_CHARS]]

    kill_specs = [KillSpec(s, DEFAULT_CRITICAL_WEIGHT) for s in specs]
    return ExtractionResult(
        kill_specs=kill_specs,
        critical_specs=list(kill_specs),
        marketplace_search_term=generate_marketplace_term(description),
        search_anchor=generate_search_anchor(specs),
        max_price_estimate=0.0,
        complexity=Complexity.HIGH,
        queries=google_hacking_queries(specs),
        negative_constraints=[],
        reasoning="Extração determinística (IA indisponível). Complexidade forçada: HIGH",
        served_by="fallback",
    )


# ---------------------------------------------------------------------------
# Model answer
# ---------------------------------------------------------------------------

def _critical_specs(value: Any, description: str) -> List[KillSpec]:
    out: List[KillSpec] = []
    if not isinstance(value, list):
        return out
    for entry in value:
        if isinstance(entry, str):
            text, weight = entry, DEFAULT_CRITICAL_WEIGHT
        elif isinstance(entry, dict) and isinstance(entry.get("spec"), str):
            text, weight = entry["spec"], _to_float(entry.get("weight", DEFAULT_CRITICAL_WEIGHT))
        else:
            continue
        fixed = anchor_spec(text, description)
        if fixed:
            out.append(KillSpec(fixed, weight))
    return out


def parse_extraction(data: Dict[str, Any], description: str, served_by: str) -> ExtractionResult:
    description = basic_clean(description)
    fallback = fallback_extraction(description)

    specs = anchor_specs(_str_list(data.get("kill_specs") or data.get("killSpecs")), description)
    specs = [s for s in specs if not is_generic_spec(s)]
    critical = _critical_specs(data.get("critical_specs") or data.get("criticalSpecs"), description)
    weights = {c.text: c.weight for c in critical}

    if specs:
        kill_specs = [KillSpec(s, weights.get(s)) for s in specs]
    else:
        logger.info("Model returned no usable kill-specs; using regex specs")
        kill_specs = list(fallback.kill_specs)
    if not critical:
        critical = [KillSpec(k.text, DEFAULT_CRITICAL_WEIGHT) for k in kill_specs]

    term = basic_clean(str(data.get("marketplace_search_term") or data.get("marketplaceSearchTerm") or ""))
    term = truncate_words(term, MARKETPLACE_TERM_MAX_WORDS) if term else fallback.marketplace_search_term

    raw_complexity = str(data.get("complexity") or "HIGH").upper()
    complexity = Complexity.LOW if raw_complexity == "LOW" else Complexity.HIGH
    if complexity is Complexity.LOW and has_high_complexity_keyword(description):
        logger.info("Overriding LOW complexity: description has a technical keyword")
        complexity = Complexity.HIGH

    texts = [k.text for k in kill_specs]
    anchor_raw = basic_clean(str(data.get("search_anchor") or data.get("searchAnchor") or "")).replace('"', "").strip()
    anchor = anchor_spec(anchor_raw, description) if anchor_raw else None
    if anchor is None and complexity is Complexity.HIGH:
        anchor = generate_search_anchor(texts)

    queries = _str_list(data.get("google_queries") or data.get("queries"))
    if not queries and complexity is Complexity.HIGH:
        queries = google_hacking_queries(texts)

    return ExtractionResult(
        kill_specs=kill_specs,
        critical_specs=critical,
        marketplace_search_term=term,
        search_anchor=anchor,
        max_price_estimate=_to_float(data.get("max_price_estimate") or data.get("maxPriceEstimate")),
        complexity=complexity,
        queries=queries,
        negative_constraints=_str_list(data.get("negative_constraints") or data.get("negativeConstraints")),
        reasoning=str(data.get("reasoning") or ""),
        served_by=served_by,
    )


async def extract_specs(description: str, llm: CompletionClient) -> ExtractionResult:
    prompt = EXTRACTION_PROMPT.replace("<<DESCRIPTION>>", basic_clean(description))
    try:
        data, result = await llm.complete_json(user_message(prompt), agent="extractor")
    except ProviderError as exc:
        logger.warning("Extractor falling back to regex extraction: {}", exc)
        return fallback_extraction(description)
    extraction = parse_extraction(data, description, served_by=result.provider)
    logger.info(
        "Extracted {} kill-specs ({}) via {}",
        len(extraction.kill_specs),
        extraction.complexity.value,
        extraction.served_by,
    )
    return extraction
