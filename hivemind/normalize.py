from __future__ import annotations

"""
Text normalisation helpers shared by every pipeline stage.

Tender descriptions, fetched pages and marketplace listings all pass
through here so that spec matching sees the same view of text everywhere.

Public helpers:

* basic_clean(text) -> str
    Strip HTML, normalise unicode and whitespace, truncate.

* fold(text) -> str
    basic_clean + lower-case + accent folding. Used for comparisons.

* significant_words(text) -> List[str]
    Folded words longer than two characters, punctuation removed.

* description_cache_key(text) -> str
    Stable identity-cache key for a tender description.
"""

import hashlib
import re
import unicodedata
from typing import List

from bs4 import BeautifulSoup

MAX_INPUT_CHARS: int = 50_000

CACHE_KEY_HEX_CHARS = 32

# ---------------------------------------------------------------------------
# Low-level helpers
# ---------------------------------------------------------------------------


def _strip_html(text: str) -> str:
    if not text:
        return ""
    if "<" not in text:
        return text
    soup = BeautifulSoup(text, "html.parser")
    return soup.get_text(" ", strip=True)


def _normalise_unicode(text: str) -> str:
    text = unicodedata.normalize("NFKC", text)
    text = text.replace("‘", "'").replace("’", "'")
    text = text.replace("“", '"').replace("”", '"')
    text = text.replace("–", "-").replace("—", "-")
    text = text.replace(" ", " ")
    return text


def _strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def basic_clean(text: str | None, max_chars: int = MAX_INPUT_CHARS) -> str:
    """Light-weight clean for descriptions, listings and page bodies.

    * strips HTML
    * normalises unicode and whitespace
    * truncates excessively long inputs
    """
    if text is None:
        return ""
    if not isinstance(text, str):
        text = str(text)

    if len(text) > max_chars:
        text = text[:max_chars]

    text = _strip_html(text)
    text = _normalise_unicode(text)

    text = text.replace("\r", " ").replace("\n", " ").replace("\t", " ")
    text = re.sub(r"\s+", " ", text).strip()
    return text


def fold(text: str | None) -> str:
    """Lower-cased, accent-free version of ``basic_clean``."""
    return _strip_accents(basic_clean(text).lower())


def significant_words(text: str | None) -> List[str]:
    folded = fold(text)
    if not folded:
        return []
    stripped = re.sub(r"[^\w\s]", " ", folded)
    return [w for w in stripped.split() if len(w) > 2]


def description_cache_key(text: str | None) -> str:
    """
    Hash of the sorted significant words of a description.

    Word order, punctuation, case and accents do not change the key, so two
    tenders describing the same product with reshuffled wording share one
    cache entry.
    """
    words = sorted(significant_words(text))
    digest = hashlib.sha256(" ".join(words).encode("utf-8")).hexdigest()
    return digest[:CACHE_KEY_HEX_CHARS]


def clamp(text: str | None, limit: int) -> str:
    """Trim to at most ``limit`` characters; ``None`` becomes ``""``."""
    if not text:
        return ""
    return text if len(text) <= limit else text[:limit]
