"""Tests for the SQLite ledger, price and FX rate persistence."""
from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from dividend_tracker.models import DividendFilters, FxRate, Quote, TransactionType

from factories import AAPL, MSFT, at, buy, dividend, listing, sell


def _seed(repository):
    mine = repository.create_portfolio("alice", "Income", "usd")
    other = repository.create_portfolio("alice", "Growth", "EUR")
    foreign = repository.create_portfolio("bob", "Bob's", "USD")
    repository.upsert_listings([listing(AAPL, "AAPL", "Apple Inc."), listing(MSFT, "MSFT", "Microsoft Corp.")])
    repository.insert_transactions(
        [
            buy(AAPL, 10, 100, when=at(2022, 1), portfolio_id=mine.id),
            dividend(AAPL, 5, at(2022, 12, 31, hour=23), portfolio_id=mine.id),
            dividend(AAPL, 6, at(2023, 3), portfolio_id=mine.id),
            dividend(MSFT, 7, at(2023, 6), portfolio_id=other.id),
            dividend(MSFT, 99, at(2023, 6), portfolio_id=foreign.id),
        ]
    )
    return mine, other, foreign


def test_portfolios_are_owner_scoped(repository):
    mine, _, foreign = _seed(repository)

    assert repository.get_portfolio("alice", mine.id).currency_code == "USD"
    assert repository.get_portfolio("alice", foreign.id) is None
    assert sorted(portfolio.name for portfolio in repository.list_portfolios("alice")) == ["Growth", "Income"]


def test_transactions_round_trip(repository):
    mine, _, _ = _seed(repository)
    repository.insert_transactions([sell(AAPL, 2, 120, when=at(2023, 7), portfolio_id=mine.id)])

    ledger = repository.transactions_for(mine.id)

    assert [tx.type for tx in ledger] == [
        TransactionType.BUY,
        TransactionType.DIVIDEND,
        TransactionType.DIVIDEND,
        TransactionType.SELL,
    ]
    assert ledger[0].listing == AAPL
    assert ledger[0].occurred_at == at(2022, 1)
    assert ledger[0].occurred_at.tzinfo is not None


def test_dividend_query_never_returns_other_users_data(repository):
    _seed(repository)

    amounts = sorted(tx.amount for tx in repository.dividend_transactions_for("alice"))

    assert amounts == [5, 6, 7]


def test_dividend_filters_compose(repository):
    mine, _, _ = _seed(repository)

    by_portfolio = repository.dividend_transactions_for("alice", DividendFilters(portfolio_id=mine.id))
    by_ticker = repository.dividend_transactions_for("alice", DividendFilters(ticker_symbol="msft"))
    by_year = repository.dividend_transactions_for("alice", DividendFilters(start_year=2022, end_year=2022))
    combined = repository.dividend_transactions_for(
        "alice", DividendFilters(portfolio_id=mine.id, ticker_symbol="AAPL", start_year=2023)
    )

    assert sorted(tx.amount for tx in by_portfolio) == [5, 6]
    assert [tx.amount for tx in by_ticker] == [7]
    # Late on 31 December still belongs to the year.
    assert [tx.amount for tx in by_year] == [5]
    assert [tx.amount for tx in combined] == [6]


def test_buys_only_included_on_request(repository):
    mine, _, _ = _seed(repository)
    filters = DividendFilters(portfolio_id=mine.id)

    types = {tx.type for tx in repository.dividend_transactions_for("alice", filters, include_buys=True)}

    assert types == {TransactionType.BUY, TransactionType.DIVIDEND}


def test_latest_prices_come_from_listings(repository):
    repository.upsert_listings([listing(AAPL, "AAPL"), listing(MSFT, "MSFT")])
    stamp = datetime(2024, 1, 5, tzinfo=timezone.utc)
    repository.update_listing_price(Quote(AAPL, 190.5, "usd", stamp, "test"))

    prices = repository.latest_prices([AAPL, MSFT])

    assert list(prices) == [AAPL]
    assert prices[AAPL].price == 190.5
    assert prices[AAPL].currency == "USD"
    assert prices[AAPL].as_of == stamp


def test_upsert_listing_keeps_existing_price(repository):
    repository.upsert_listings([listing(AAPL, "AAPL")])
    repository.update_listing_price(Quote(AAPL, 190.5, "USD", at(2024), "test"))
    repository.upsert_listings([listing(AAPL, None, "Apple Inc.")])

    stored = repository.get_listing(AAPL)

    assert stored.current_price == 190.5
    assert stored.ticker_symbol == "AAPL"
    assert stored.company_name == "Apple Inc."


def test_fx_rates_latest_and_staleness(repository):
    now = datetime.now(timezone.utc)
    repository.upsert_fx_rates(
        [
            FxRate("EUR", "USD", now - timedelta(days=3), 1.05, "test"),
            FxRate("EUR", "USD", now - timedelta(hours=1), 1.08, "test"),
        ]
    )

    assert repository.get_latest_fx_rate("eur", "usd") == 1.08
    assert repository.get_latest_fx_rate("EUR", "USD", max_age=timedelta(hours=2)) == 1.08
    assert repository.get_latest_fx_rate("EUR", "USD", max_age=timedelta(minutes=30)) is None
    assert repository.get_latest_fx_rate("USD", "EUR") is None


def test_settings(repository):
    assert repository.get_setting("display_currency", "USD") == "USD"
    repository.set_setting("display_currency", "CHF")
    assert repository.get_setting("display_currency") == "CHF"


def test_failed_batch_is_rolled_back(repository):
    portfolio = repository.create_portfolio("alice", "Income", "USD")
    repository.upsert_listings([listing(AAPL, "AAPL")])
    duplicate = buy(AAPL, 1, 100, portfolio_id=portfolio.id)

    with pytest.raises(sqlite3.IntegrityError):
        repository.insert_transactions([buy(AAPL, 2, 100, portfolio_id=portfolio.id), duplicate, duplicate])
    # A later, unrelated write must not commit the aborted rows.
    repository.set_setting("display_currency", "EUR")

    assert repository.transactions_for(portfolio.id) == []


def test_update_portfolio_is_owner_scoped(repository):
    portfolio = repository.create_portfolio("alice", "Income", "USD")

    renamed = repository.update_portfolio("alice", portfolio.id, name="Dividends")
    rebased = repository.update_portfolio("alice", portfolio.id, currency_code="eur")

    assert renamed.name == "Dividends"
    assert renamed.currency_code == "USD"
    assert rebased.name == "Dividends"
    assert rebased.currency_code == "EUR"
    assert repository.update_portfolio("bob", portfolio.id, name="Mine") is None
    assert repository.get_portfolio("alice", portfolio.id).name == "Dividends"


def test_delete_portfolio_removes_its_ledger(repository):
    mine, other, _ = _seed(repository)

    assert repository.delete_portfolio("bob", mine.id) is False
    assert repository.delete_portfolio("alice", mine.id) is True

    assert repository.get_portfolio("alice", mine.id) is None
    assert repository.transactions_for(mine.id) == []
    assert len(repository.transactions_for(other.id)) == 1
