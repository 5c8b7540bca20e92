from __future__ import annotations

import pytest

from dividend_tracker.database import SQLiteRepository
from dividend_tracker.fx import FxResolver

from factories import InMemoryRateStore, StaticRateProvider


@pytest.fixture
def rate_store():
    return InMemoryRateStore({("EUR", "USD"): 1.1, ("GBP", "USD"): 1.25})


@pytest.fixture
def rate_provider():
    return StaticRateProvider({("USD", "EUR"): 0.9, ("CHF", "USD"): 1.12})


@pytest.fixture
def resolver(rate_store, rate_provider):
    return FxResolver(rate_store, rate_provider)


@pytest.fixture
def repository(tmp_path):
    repo = SQLiteRepository(tmp_path / "test.db")
    repo.initialise_schema()
    yield repo
    repo.close()
