"""TTL-based in-memory cache in front of a QuoteSource."""

from __future__ import annotations

import threading
import time
from typing import Any

import structlog

from ideatracker.data.quotes import QuoteSource

logger = structlog.get_logger()


class CacheEntry:
    """A cached value with expiration time."""

    __slots__ = ("value", "expires_at")

    def __init__(self, value: Any, ttl_seconds: float) -> None:
        self.value = value
        self.expires_at = time.monotonic() + ttl_seconds

    @property
    def is_expired(self) -> bool:
        return time.monotonic() >= self.expires_at


class CachedQuoteSource:
    """Wraps a QuoteSource so repeated lookups within the TTL hit memory.

    Only successful prices are cached; a miss or failure is retried on the
    next call.
    """

    def __init__(self, source: QuoteSource, ttl_seconds: float = 30.0) -> None:
        self._source = source
        self._ttl = ttl_seconds
        self._prices: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

        self._log = logger.bind(component="quote_cache")
        self._hits = 0
        self._misses = 0

    def get_price(self, symbol: str) -> float | None:
        with self._lock:
            entry = self._prices.get(symbol)
            if entry and not entry.is_expired:
                self._hits += 1
                return entry.value
            self._misses += 1

        price = self._source.get_price(symbol)
        if price is not None:
            with self._lock:
                self._prices[symbol] = CacheEntry(price, self._ttl)
        return price

    def clear(self) -> None:
        with self._lock:
            self._prices.clear()

    def evict_expired(self) -> int:
        """Remove expired entries. Returns number of entries evicted."""
        with self._lock:
            expired_keys = [k for k, v in self._prices.items() if v.is_expired]
            for key in expired_keys:
                del self._prices[key]
        if expired_keys:
            self._log.debug("quote_cache_evicted", count=len(expired_keys))
        return len(expired_keys)

    @property
    def stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total if total > 0 else 0.0,
            "prices_cached": len(self._prices),
        }
