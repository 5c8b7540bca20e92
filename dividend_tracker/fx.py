"""Currency conversion with a layered cache -> database -> provider lookup."""
from __future__ import annotations

import logging
import time
from datetime import timedelta
from typing import Callable, Dict, Iterable, Optional, Protocol, Tuple

from .errors import RateUnavailable
from .models import FxRate

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


class RateStore(Protocol):
    def get_latest_fx_rate(self, base: str, quote: str, max_age: Optional[timedelta] = None) -> Optional[float]:
        ...

    def upsert_fx_rates(self, rates: Iterable[FxRate]) -> None:
        ...


class RateProvider(Protocol):
    def fetch_fx_rate(self, base: str, quote: str) -> FxRate:
        ...


class RateCache:
    """Process-wide FX rate cache with a fixed time-to-live.

    Concurrent writers may race on the same key; the last write wins, which is
    harmless because refetching a rate is idempotent.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: Dict[Tuple[str, str], Tuple[float, float]] = {}
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    def get(self, base: str, quote: str) -> Optional[float]:
        entry = self._entries.get((base, quote))
        if entry is None:
            return None
        rate, stored_at = entry
        if self._clock() - stored_at > self._ttl_seconds:
            self._entries.pop((base, quote), None)
            logger.debug("FX cache expired: %s->%s", base, quote)
            return None
        logger.debug("FX cache hit: %s->%s", base, quote)
        return rate

    def set(self, base: str, quote: str, rate: float) -> None:
        self._entries[(base, quote)] = (rate, self._clock())

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class FxResolver:
    """Resolve directional conversion rates between two currency codes.

    Lookup order is in-process cache, persisted store, then the external
    provider.  A rate for ``(A, B)`` is never derived from ``(B, A)``.
    """

    def __init__(
        self,
        store: RateStore,
        provider: RateProvider,
        cache: Optional[RateCache] = None,
        max_age: Optional[timedelta] = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._cache = cache if cache is not None else RateCache()
        self._max_age = max_age

    @property
    def cache(self) -> RateCache:
        return self._cache

    def resolve(self, base: str, quote: str) -> float:
        base = base.upper()
        quote = quote.upper()
        if base == quote:
            return 1.0

        cached = self._cache.get(base, quote)
        if cached is not None:
            return cached

        persisted = self._store.get_latest_fx_rate(base, quote, self._max_age)
        if persisted is not None:
            self._cache.set(base, quote, persisted)
            return persisted

        logger.info("Fetching FX rate %s->%s from provider", base, quote)
        fetched = self._provider.fetch_fx_rate(base, quote)
        if fetched.rate is None or fetched.rate <= 0:
            raise RateUnavailable(base, quote, f"provider returned rate {fetched.rate!r}")
        self._store.upsert_fx_rates([fetched])
        self._cache.set(base, quote, fetched.rate)
        return fetched.rate

    def convert(self, amount: float, base: str, quote: str) -> float:
        return amount * self.resolve(base, quote)


__all__ = ["FxResolver", "RateCache", "RateProvider", "RateStore"]
