"""In-memory TTL cache for idempotent Mindbody reads.

Design decisions
────────────────
• **Composite key** ``METHOD:url:body`` so two requests share an entry only
  when they would produce the same upstream call.
• **GET only**.  Any other method always misses and is never stored.
• **TTL is the sole eviction mechanism** (5 minutes by default).  Expired
  entries are dropped lazily on access and by :meth:`ResponseCache.sweep`,
  which the server runs every 10 minutes.  There is no size bound.
• **No lock**.  The cache is only touched from the event loop; concurrent
  writers for one key store equivalent payloads, so last write wins.

Usage in MindbodyClient
───────────────────────
>>> cache = ResponseCache()
>>> cache.store("GET", url, None, payload)
>>> cache.lookup("GET", url, None)
payload
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60
SWEEP_INTERVAL_SECONDS = 10 * 60

_CACHEABLE_METHODS = frozenset({"GET"})


@dataclass(slots=True)
class CacheEntry:
    payload: Any
    expires_at: float


class ResponseCache:
    """Time-bounded memoization table for upstream JSON responses."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._store: dict[str, CacheEntry] = {}

    # ── Keys & policy ────────────────────────────────────────────────

    @staticmethod
    def make_key(method: str, url: str, body: Any = None) -> str:
        body_text = "" if body is None else json.dumps(body, sort_keys=True, default=str)
        return f"{method.upper()}:{url}:{body_text}"

    @staticmethod
    def is_cacheable(method: str) -> bool:
        return method.upper() in _CACHEABLE_METHODS

    def lookup(self, method: str, url: str, body: Any = None) -> Any | None:
        """Return the cached payload for a request, or ``None`` on a miss."""
        if not self.is_cacheable(method):
            return None
        return self.get(self.make_key(method, url, body))

    def store(
        self,
        method: str,
        url: str,
        body: Any,
        payload: Any,
        ttl: float = DEFAULT_TTL_SECONDS,
    ) -> bool:
        """Cache *payload* for a request.  Returns ``False`` for non-GET methods."""
        if not self.is_cacheable(method):
            return False
        self.put(self.make_key(method, url, body), payload, ttl)
        return True

    # ── Core operations ──────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the payload for *key*, purging it first if it has expired."""
        entry = self._store.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._store[key]
            return None
        return entry.payload

    def put(self, key: str, payload: Any, ttl: float = DEFAULT_TTL_SECONDS) -> None:
        self._store[key] = CacheEntry(payload=payload, expires_at=self._clock() + ttl)

    def invalidate(self, key: str) -> bool:
        """Remove a single key.  Returns ``True`` if the key existed."""
        return self._store.pop(key, None) is not None

    def clear(self) -> None:
        logger.info("Cache: clearing %d entries", len(self._store))
        self._store.clear()

    def sweep(self) -> int:
        """Purge every expired entry.  Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._store.items() if now > entry.expires_at]
        for key in expired:
            del self._store[key]
        if expired:
            logger.info("Cache: swept %d expired entries", len(expired))
        return len(expired)

    async def run_sweeper(self, interval: float = SWEEP_INTERVAL_SECONDS) -> None:
        """Sweep forever on a fixed interval.  Cancel the task to stop it."""
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    # ── Introspection ────────────────────────────────────────────────

    @property
    def entry_count(self) -> int:
        return len(self._store)

    def has(self, key: str) -> bool:
        """Check if a live entry exists for *key* without purging it."""
        entry = self._store.get(key)
        return entry is not None and self._clock() <= entry.expires_at
