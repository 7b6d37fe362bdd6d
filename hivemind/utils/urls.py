# hivemind/utils/urls.py
from __future__ import annotations

from typing import Iterable, List
from urllib.parse import parse_qs, urljoin, urlparse, urlunparse

__all__ = ["canon_url", "canon_urls", "unwrap_redirect", "host_of", "matches_any_domain"]

# Tracking parameters marketplaces append to listing links.
_TRACKING_PREFIXES = ("utm_", "tracking_id", "searchvariation", "position", "type", "ref")


def canon_url(u: str) -> str:
    """
    Canonicalize a listing URL for equality checks.

    Strategy:
    - lower-case the host and drop a leading 'www.'
    - drop the fragment and tracking query parameters
    - drop a trailing slash on the path

    This makes the following equivalent:
    - https://www.loja.com.br/produto/abc-123?utm_source=x#reviews
    - https://loja.com.br/produto/abc-123/
    """
    if not u:
        return ""
    u = str(u).strip()
    if not u:
        return ""

    p = urlparse(u)
    host = (p.netloc or "").strip().lower()
    if host.startswith("www."):
        host = host[4:]

    path = p.path.rstrip("/") or "/"
    kept = [
        part
        for part in p.query.split("&")
        if part and not part.split("=", 1)[0].lower().startswith(_TRACKING_PREFIXES)
    ]
    return urlunparse((p.scheme.lower() or "https", host, path, "", "&".join(kept), ""))


def canon_urls(urls: Iterable[str]) -> List[str]:
    """Inputs deduplicated by canonical form, first-seen order kept."""
    seen = set()
    out: List[str] = []
    for u in urls or []:
        c = canon_url(u)
        if not c or c in seen:
            continue
        seen.add(c)
        out.append(u)
    return out


def unwrap_redirect(href: str, base: str = "https://duckduckgo.com") -> str:
    """
    Search engines wrap result links in their own redirector
    (``//duckduckgo.com/l/?uddg=<target>``). Return the target when present.
    """
    if not href:
        return ""
    absolute = urljoin(base, href)
    p = urlparse(absolute)
    target = parse_qs(p.query).get("uddg")
    if target and target[0]:
        return target[0]
    return absolute


def host_of(u: str) -> str:
    host = urlparse(u or "").netloc.lower()
    return host[4:] if host.startswith("www.") else host


def matches_any_domain(u: str, fragments: Iterable[str]) -> bool:
    host = host_of(u)
    return any(f and f.lower() in host for f in fragments)
