"""
Short-lived memoization of price results.

The cache is never authoritative: pricing rules change through admin edits
at any time, so entries live for a bounded TTL and the engine treats every
cache error as a miss.
"""
import time
from abc import ABC, abstractmethod
from typing import Callable, NamedTuple, Optional

from .models import PriceCalculationRequest, PriceCalculationResult

ANONYMOUS = "anonymous"


class CacheKey(NamedTuple):
    product_id: str
    customer_id: str
    quantity: int
    base_price: float

    @classmethod
    def for_request(cls, request: PriceCalculationRequest) -> 'CacheKey':
        return cls(
            product_id=request.product_id,
            customer_id=request.customer_id or ANONYMOUS,
            quantity=request.quantity,
            base_price=float(request.base_price),
        )


class ResultCache(ABC):
    """Narrow get/put interface over any key-value backend."""

    @abstractmethod
    def get(self, key: CacheKey) -> Optional[PriceCalculationResult]:
        """Return the cached result, or None on a miss."""

    @abstractmethod
    def put(self, key: CacheKey, result: PriceCalculationResult, ttl: float) -> None:
        """Store a result for `ttl` seconds. Last write wins."""

    @abstractmethod
    def invalidate(self, predicate: Callable[[CacheKey], bool]) -> int:
        """Drop every entry whose key matches; returns the number dropped."""

    def clear(self) -> None:
        self.invalidate(lambda key: True)

    def stats(self) -> dict:
        return {}


class NullResultCache(ResultCache):
    """A cache that never hits. Results must be identical with or without it."""

    def get(self, key):
        return None

    def put(self, key, result, ttl):
        pass

    def invalidate(self, predicate):
        return 0


class InMemoryResultCache(ResultCache):
    """
    Process-local TTL cache with a bounded number of entries.

    No locking: concurrent puts for the same key carry identical results.
    When full, the oldest inserted entry is evicted.
    """

    def __init__(self, max_entries: int = 1000, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self._clock = clock
        # key -> (result, expires_at)
        self._entries: dict[CacheKey, tuple[PriceCalculationResult, float]] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: CacheKey) -> Optional[PriceCalculationResult]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        result, expires_at = entry
        if self._clock() >= expires_at:
            # expired
            self._entries.pop(key, None)
            self.misses += 1
            return None
        self.hits += 1
        return result

    def put(self, key: CacheKey, result: PriceCalculationResult, ttl: float) -> None:
        # Re-inserting moves the key to the back of the eviction order
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_entries > 0:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
        if self.max_entries > 0:
            self._entries[key] = (result, self._clock() + ttl)

    def invalidate(self, predicate: Callable[[CacheKey], bool]) -> int:
        doomed = [key for key in self._entries if predicate(key)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def __len__(self):
        return len(self._entries)

    def stats(self) -> dict:
        return {
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
        }
