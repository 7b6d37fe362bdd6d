"""
Parse structured (JSON-object) answers out of free-form model output.

Grammar, tried in order:
  1. a fenced block (```json ... ``` or an unlabelled ``` fence)
  2. the substring from the first '{' to the last '}'
Each candidate is decoded as-is, then once more after removing trailing
commas before '}' / ']'. Only JSON objects are accepted.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Tuple

from .errors import MalformedOutputError

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)\s*```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


@dataclass(frozen=True)
class ParsedOutput:
    data: Optional[Dict[str, Any]]
    error: Optional[str] = None
    strategy: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.data is not None


def _candidates(text: str) -> Iterator[Tuple[str, str]]:
    for m in _FENCE_RE.finditer(text):
        body = m.group(1).strip()
        if body:
            yield "fenced", body
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        yield "braces", text[start : end + 1]


def _decode(blob: str) -> Tuple[Optional[Dict[str, Any]], bool]:
    """Returns (object, repaired)."""
    for repaired, body in ((False, blob), (True, _TRAILING_COMMA_RE.sub(r"\1", blob))):
        if repaired and body == blob:
            break
        try:
            value = json.loads(body)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value, repaired
        return None, repaired
    return None, False


def parse_structured_output(text: Optional[str]) -> ParsedOutput:
    if text is None or not str(text).strip():
        return ParsedOutput(data=None, error="empty response")

    saw_candidate = False
    for strategy, blob in _candidates(str(text)):
        saw_candidate = True
        data, repaired = _decode(blob)
        if data is not None:
            return ParsedOutput(data=data, strategy=f"{strategy}+repaired" if repaired else strategy)

    if not saw_candidate:
        return ParsedOutput(data=None, error="no JSON object found")
    return ParsedOutput(data=None, error="JSON object could not be decoded")


def require_structured_output(text: Optional[str]) -> Dict[str, Any]:
    parsed = parse_structured_output(text)
    if parsed.data is None:
        raise MalformedOutputError(parsed.error or "unparseable", raw=text or "")
    return parsed.data
