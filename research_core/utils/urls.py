# research_core/utils/urls.py
from __future__ import annotations
from urllib.parse import urlparse
from typing import Iterable, List
from .. import config

__all__ = ["normalize_identifier", "normalize_identifiers", "dedupe_identifiers"]


def _bare_key(u: str) -> str:
    key = u.lower()
    return key[:-1] if key.endswith("/") and len(key) > 1 else key


def normalize_identifier(u: str) -> str:
    """
    Normalise a result identifier (usually a URL) into a merge key.

    Strategy:
    - parse the URL and drop the scheme (and port)
    - lower-case the host and strip a leading ``www.``
    - strip one trailing slash from the path, keeping ``/`` for the root
    - keep the query string, drop the fragment
    - lower-case the whole key

    This makes the following equivalent:
    - https://www.Example.com/docs/
    - http://example.com/docs
    """
    if not u:
        return ""
    u = str(u).strip()
    if not u:
        return ""

    try:
        p = urlparse(u)
        host = (p.hostname or "").lower()
    except ValueError:
        # malformed netloc (e.g. an unclosed IPv6 bracket)
        return _bare_key(u)
    if not p.netloc:
        # not an absolute URL (bare id, relative path): best effort
        return _bare_key(u)

    if host.startswith(config.DEFAULT_HOST_PREFIX):
        host = host[len(config.DEFAULT_HOST_PREFIX):]

    path = p.path
    if path.endswith("/"):
        path = path[:-1]
    path = path or "/"

    query = f"?{p.query}" if p.query else ""
    return f"{host}{path}{query}".lower()


def normalize_identifiers(urls: Iterable[str]) -> List[str]:
    return [normalize_identifier(u) for u in (urls or [])]


def dedupe_identifiers(urls: Iterable[str]) -> List[str]:
    """
    - Collapse identifiers that normalise to the same key.
    - Preserve first-seen order and the first-seen raw form.
    """
    seen = set()
    out: List[str] = []
    for u in urls:
        key = normalize_identifier(u)
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(u)
    return out
