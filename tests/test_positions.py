"""Tests for folding the ledger into open positions."""
from __future__ import annotations

import pytest
from hypothesis import given, settings, strategies as st

from dividend_tracker.calculations import EPSILON
from dividend_tracker.models import Transaction, TransactionType
from dividend_tracker.positions import _Accumulator, aggregate_positions

from factories import AAPL, ASML, MSFT, at, buy, dividend, sell


def test_partial_sell_scales_cost_basis():
    positions = aggregate_positions([buy(AAPL, 10, 100), sell(AAPL, 4, 120)])

    assert len(positions) == 1
    position = positions[0]
    assert position.current_quantity == 6
    assert position.cost_basis == pytest.approx(600.0)
    assert position.total_buy_amount == 1000
    assert position.net_amount == pytest.approx(1000 - 480)


def test_average_cost_spans_multiple_buys():
    positions = aggregate_positions([buy(MSFT, 10, 100), buy(MSFT, 10, 200), sell(MSFT, 5, 300)])

    assert positions[0].current_quantity == 15
    assert positions[0].cost_basis == pytest.approx(150 * 15)


def test_fully_sold_position_is_dropped():
    positions = aggregate_positions([buy(AAPL, 5, 100), sell(AAPL, 5, 110), buy(MSFT, 1, 300)])

    assert [position.listing for position in positions] == [MSFT]


def test_floating_point_residue_counts_as_closed():
    transactions = [buy(AAPL, 0.1, 10), buy(AAPL, 0.2, 10), sell(AAPL, 0.3, 10)]

    assert aggregate_positions(transactions) == []


def test_negative_stored_quantities_use_type_for_direction():
    stored_signed = Transaction(
        portfolio_id="p1",
        listing=AAPL,
        type=TransactionType.SELL,
        occurred_at=at(2023, 3),
        quantity=-4,
        amount=-400,
    )

    positions = aggregate_positions([buy(AAPL, 10, 100), stored_signed])

    assert positions[0].current_quantity == 6


def test_non_trade_transactions_do_not_change_quantity_or_cost():
    tax = Transaction(portfolio_id="p1", listing=AAPL, type=TransactionType.TAX, occurred_at=at(2023, 9), amount=3)
    split = Transaction(portfolio_id="p1", listing=AAPL, type=TransactionType.SPLIT, occurred_at=at(2023, 10), quantity=10)
    transactions = [buy(AAPL, 10, 100, when=at(2023, 1)), dividend(AAPL, 50, at(2023, 11)), tax, split]

    position = aggregate_positions(transactions)[0]

    assert position.current_quantity == 10
    assert position.cost_basis == pytest.approx(1000)
    assert position.last_transaction_date == at(2023, 11)


def test_zero_quantity_buy_does_not_raise():
    anomaly = buy(AAPL, 0, 100, amount=500)

    assert aggregate_positions([anomaly]) == []


def test_zero_buy_quantity_yields_zero_cost_basis():
    accumulator = _Accumulator(AAPL, quantity=2, buy_amount=500, buy_quantity=0, last_transaction_date=at(2023))

    assert accumulator.to_position().cost_basis == 0


def test_positions_keep_first_appearance_order():
    transactions = [buy(ASML, 1, 600), buy(AAPL, 1, 100), buy(MSFT, 1, 300), buy(ASML, 1, 610)]

    assert [position.listing for position in aggregate_positions(transactions)] == [ASML, AAPL, MSFT]


trade_strategy = st.tuples(
    st.sampled_from([AAPL, MSFT, ASML]),
    st.sampled_from([TransactionType.BUY, TransactionType.SELL, TransactionType.DIVIDEND]),
    st.floats(min_value=0, max_value=1000, allow_nan=False, allow_infinity=False),
    st.floats(min_value=0, max_value=10000, allow_nan=False, allow_infinity=False),
    st.integers(min_value=1, max_value=28),
)


def _ledger(trades):
    return [
        Transaction(
            portfolio_id="p1",
            listing=key,
            type=tx_type,
            occurred_at=at(2023, 1, day),
            quantity=quantity,
            amount=amount,
        )
        for key, tx_type, quantity, amount, day in trades
    ]


@given(trades=st.lists(trade_strategy, max_size=30))
@settings(max_examples=100)
def test_aggregation_is_idempotent(trades):
    ledger = _ledger(trades)

    assert aggregate_positions(ledger) == aggregate_positions(ledger)


@given(trades=st.lists(trade_strategy, max_size=30))
@settings(max_examples=100)
def test_only_open_positions_are_returned(trades):
    for position in aggregate_positions(_ledger(trades)):
        assert position.current_quantity > EPSILON
        assert position.cost_basis >= 0
