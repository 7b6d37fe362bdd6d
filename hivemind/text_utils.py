import re
from typing import Iterable, List, Optional

from .constants import MARKETPLACE_NOISE_WORDS, NUMERIC_UNIT_SUFFIXES
from .normalize import basic_clean, fold, significant_words

_UNIT_ALTERNATION = "|".join(re.escape(u) for u in NUMERIC_UNIT_SUFFIXES)
NUMERIC_UNIT_RE = re.compile(r"\d+\s*(?:" + _UNIT_ALTERNATION + r")", re.IGNORECASE)

QUOTED_RE = re.compile(r'"([^"]+)"')

# "com X" features need a terminator so trailing clauses are not swallowed.
COM_PHRASE_RE = re.compile(r"\bcom\s+([\w\s]+?)(?:,|\.|\s+e\s+)", re.IGNORECASE)

# A number followed by one or two letters that end the word: "72 m", "5 gb".
SHORT_UNIT_FRAGMENT_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*([^\W\d_]{1,2})(?![^\W\d_])")

_SEARCH_OPERATOR_RE = re.compile(r"\b(?:site|filetype|inurl|intitle):\S+", re.IGNORECASE)
_BOOLEAN_OR_RE = re.compile(r"(?:^|\s)OR(?=\s|$)")


def numeric_unit_phrases(text: str) -> List[str]:
    """
    Numbers followed by a unit, e.g. '128 gb', '35w'.
    Examples:
      'memória 8GB e tela 15 pol' -> ['8GB', '15 pol']
    """
    if not text:
        return []
    return [m.group(0).strip() for m in NUMERIC_UNIT_RE.finditer(text)]


def quoted_phrases(text: str) -> List[str]:
    if not text:
        return []
    return [m.group(1).strip() for m in QUOTED_RE.finditer(text) if m.group(1).strip()]


def com_phrases(text: str) -> List[str]:
    if not text:
        return []
    return [m.group(1).strip() for m in COM_PHRASE_RE.finditer(text) if m.group(1).strip()]


def word_overlap_ratio(needle: str, haystack: str) -> float:
    """
    Fraction of the significant words of ``needle`` that occur inside
    ``haystack`` (substring match on folded text). 0.0 when ``needle``
    has no significant words.
    """
    words = significant_words(needle)
    if not words:
        return 0.0
    hay = fold(haystack)
    hits = sum(1 for w in words if w in hay)
    return hits / len(words)


_DIGIT_LETTER_RE = re.compile(r"(\d)([^\W\d_])")


def _spec_view(text: str) -> str:
    # '72GB' and '72 gb' read the same
    return _DIGIT_LETTER_RE.sub(r"\1 \2", re.sub(r"[^\w\s]", " ", fold(text)))


def spec_tokens(spec: str) -> List[str]:
    """Folded words of a spec; numbers are kept whatever their length."""
    return [w for w in _spec_view(spec).split() if len(w) > 2 or w.isdigit()]


def spec_present(spec: str, text: str, threshold: float = 0.6) -> bool:
    tokens = spec_tokens(spec)
    if not tokens:
        return False
    hay = _spec_view(text)
    padded = " " + " ".join(hay.split()) + " "
    hits = 0
    for tok in tokens:
        # numbers must match a whole token: '72' is not in '1720'
        if tok.isdigit():
            hits += f" {tok} " in padded
        else:
            hits += tok in hay
    return hits / len(tokens) > threshold


def contains_phrase(haystack: str, phrase: str) -> bool:
    p = fold(phrase)
    return bool(p) and p in fold(haystack)


def strip_search_operators(query: str) -> str:
    """Drop site:/filetype:/inurl: operators and a dangling boolean OR."""
    out = _SEARCH_OPERATOR_RE.sub(" ", query or "")
    out = _BOOLEAN_OR_RE.sub(" ", out)
    return re.sub(r"\s+", " ", out).strip()


def strip_quotes(query: str) -> str:
    return re.sub(r"\s+", " ", (query or "").replace('"', " ").replace("'", " ")).strip()


def truncate_words(text: str, max_words: int) -> str:
    return " ".join((text or "").split()[:max_words])


def fit_to_length(query: str, max_chars: int) -> str:
    """Keep whole words while the result still fits in ``max_chars``."""
    query = (query or "").strip()
    if len(query) <= max_chars:
        return query
    out = ""
    for word in query.split():
        candidate = f"{out} {word}".strip()
        if len(candidate) > max_chars:
            break
        out = candidate
    return out or query[:max_chars]


def sanitize_marketplace_query(
    query: str, max_chars: int, fallback_term: Optional[str] = None
) -> str:
    """
    Oversized queries are replaced by the marketplace term when it fits,
    otherwise cut at a word boundary.
    """
    query = basic_clean(query)
    if len(query) <= max_chars:
        return query
    if fallback_term and len(fallback_term) <= max_chars:
        return fallback_term
    return fit_to_length(query, max_chars)


def meaningful_words(text: str, noise: Iterable[str] = MARKETPLACE_NOISE_WORDS) -> List[str]:
    """Lower-cased words longer than two chars, minus noise words. Accents kept."""
    noise_set = set(noise)
    cleaned = re.sub(r"[^\w\s]", " ", basic_clean(text).lower())
    return [w for w in cleaned.split() if len(w) > 2 and w not in noise_set]


def dedupe_keep_order(values: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for v in values:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out
