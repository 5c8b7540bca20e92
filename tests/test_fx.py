"""Tests for the layered FX resolver."""
from __future__ import annotations

import pytest
from hypothesis import given, strategies as st

from dividend_tracker.errors import RateUnavailable
from dividend_tracker.fx import FxResolver, RateCache

from factories import InMemoryRateStore, StaticRateProvider

currency_codes = st.text(alphabet="ABCDEFGHIJKLMNOPQRSTUVWXYZ", min_size=3, max_size=3)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@given(code=currency_codes)
def test_identical_currencies_resolve_to_one_without_lookups(code):
    store = InMemoryRateStore()
    provider = StaticRateProvider()
    resolver = FxResolver(store, provider)

    assert resolver.resolve(code, code) == 1.0
    assert resolver.resolve(code.lower(), code) == 1.0
    assert store.lookups == []
    assert provider.calls == []
    assert len(resolver.cache) == 0


def test_persisted_rate_is_cached(resolver, rate_store, rate_provider):
    assert resolver.resolve("EUR", "USD") == 1.1
    assert resolver.resolve("eur", "usd") == 1.1

    assert rate_store.lookups == [("EUR", "USD")]
    assert rate_provider.calls == []


def test_provider_result_is_persisted_and_cached(resolver, rate_store, rate_provider):
    assert resolver.resolve("USD", "EUR") == 0.9
    assert resolver.resolve("USD", "EUR") == 0.9

    assert rate_provider.calls == [("USD", "EUR")]
    assert rate_store.rates[("USD", "EUR")].rate == 0.9


def test_directions_are_resolved_independently(resolver, rate_provider):
    there = resolver.resolve("EUR", "USD")
    back = resolver.resolve("USD", "EUR")

    assert there == 1.1
    assert back == 0.9
    assert there * back != 1.0
    assert rate_provider.calls == [("USD", "EUR")]


def test_cache_entries_expire_after_ttl():
    clock = FakeClock()
    store = InMemoryRateStore({("EUR", "USD"): 1.1})
    resolver = FxResolver(store, StaticRateProvider(), RateCache(ttl_seconds=300, clock=clock))

    resolver.resolve("EUR", "USD")
    clock.now = 299
    resolver.resolve("EUR", "USD")
    assert len(store.lookups) == 1

    clock.now = 301
    resolver.resolve("EUR", "USD")
    assert len(store.lookups) == 2


def test_missing_rate_raises_instead_of_defaulting(resolver):
    with pytest.raises(RateUnavailable) as excinfo:
        resolver.resolve("JPY", "USD")

    assert excinfo.value.base == "JPY"
    assert excinfo.value.quote == "USD"
    assert resolver.cache.get("JPY", "USD") is None


def test_non_positive_provider_rate_is_rejected():
    resolver = FxResolver(InMemoryRateStore(), StaticRateProvider({("USD", "SEK"): 0.0}))

    with pytest.raises(RateUnavailable):
        resolver.resolve("USD", "SEK")


def test_convert_multiplies_by_rate(resolver):
    assert resolver.convert(100.0, "GBP", "USD") == pytest.approx(125.0)
    assert resolver.convert(100.0, "USD", "USD") == 100.0
