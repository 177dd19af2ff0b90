"""
Short-lived credential cache.

Entries are keyed by credential identity (e.g. an OAuth client id). A cached
value is served until ``expiry - margin``. When the entry is cold or stale,
the first caller starts a single fetch and every concurrent caller awaits
that same fetch, so N simultaneous requests cost one upstream call.

The cache is a plain object so tests and callers can inject their own and
clear it with :meth:`CredentialCache.reset`; ``default_cache`` is the
process-wide instance used when none is passed.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Tuple

from loguru import logger

from .config import CREDENTIAL_EXPIRY_MARGIN_S

# fetch() -> (credential, seconds until it expires)
FetchFn = Callable[[], Awaitable[Tuple[str, float]]]


@dataclass
class _Entry:
    value: Optional[str] = None
    expires_at: float = 0.0
    pending: Optional["asyncio.Future[str]"] = None


class CredentialCache:
    def __init__(
        self,
        margin: float = CREDENTIAL_EXPIRY_MARGIN_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.margin = margin
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}

    def peek(self, key: str) -> Optional[str]:
        """Return the cached credential if it is still inside its validity window."""
        entry = self._entries.get(key)
        if entry is None or entry.value is None:
            return None
        if self._clock() >= entry.expires_at - self.margin:
            return None
        return entry.value

    async def get(self, key: str, fetch: FetchFn) -> str:
        cached = self.peek(key)
        if cached is not None:
            return cached

        entry = self._entries.setdefault(key, _Entry())
        if entry.pending is None:
            logger.debug("Credential {} cold or expiring; fetching", key)
            entry.pending = asyncio.ensure_future(self._refresh(key, entry, fetch))
            # mark the failure retrieved even if every waiter went away
            entry.pending.add_done_callback(lambda f: f.cancelled() or f.exception())
        # shield: a cancelled waiter must not cancel the shared fetch
        return await asyncio.shield(entry.pending)

    async def _refresh(self, key: str, entry: _Entry, fetch: FetchFn) -> str:
        try:
            value, expires_in = await fetch()
        except Exception as exc:
            logger.warning("Credential fetch for {} failed: {}", key, exc)
            raise
        finally:
            entry.pending = None
        entry.value = value
        entry.expires_at = self._clock() + float(expires_in)
        logger.info("Credential {} refreshed; valid for {:.0f}s", key, float(expires_in))
        return value

    def invalidate(self, key: str) -> None:
        """Drop the cached value for ``key``; an in-flight fetch stays shared."""
        entry = self._entries.get(key)
        if entry is None:
            return
        if entry.pending is None:
            del self._entries[key]
        else:
            entry.value = None
            entry.expires_at = 0.0

    def reset(self) -> None:
        for key in list(self._entries):
            self.invalidate(key)


default_cache = CredentialCache()
