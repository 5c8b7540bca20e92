"""Tests for dividend cadence inference and income projections."""
from __future__ import annotations

from datetime import date

import pytest

from dividend_tracker.models import DividendFrequency, ListingKey
from dividend_tracker.positions import aggregate_positions
from dividend_tracker.projections import (
    classify_frequency,
    infer_dividend_info,
    pays_in_month,
    project_dividends,
)

from factories import AAPL, MSFT, SHEL, at, buy, dividend, listing, quote


@pytest.mark.parametrize(
    "dates,expected",
    [
        ([date(2023, 1, 15), date(2023, 2, 15), date(2023, 3, 15)], DividendFrequency.MONTHLY),
        ([date(2023, 2, 10), date(2023, 5, 11), date(2023, 8, 10), date(2023, 11, 9)], DividendFrequency.QUARTERLY),
        ([date(2022, 6, 1), date(2022, 12, 1), date(2023, 6, 1)], DividendFrequency.SEMI_ANNUAL),
        ([date(2021, 5, 1), date(2022, 5, 3), date(2023, 4, 28)], DividendFrequency.ANNUAL),
        ([date(2019, 5, 1), date(2023, 5, 1)], DividendFrequency.IRREGULAR),
        ([date(2023, 5, 1)], DividendFrequency.IRREGULAR),
    ],
)
def test_classify_frequency(dates, expected):
    frequency, _ = classify_frequency(dates)

    assert frequency is expected


def test_infer_dividend_info_from_history():
    transactions = [
        buy(AAPL, 100, 150, when=at(2022, 1)),
        dividend(AAPL, 24, at(2023, 2, 15), quantity=100),
        dividend(AAPL, 24, at(2023, 5, 15), quantity=100),
        dividend(AAPL, 25, at(2023, 8, 15), quantity=100),
    ]

    info = infer_dividend_info(transactions)[AAPL]

    assert info.frequency is DividendFrequency.QUARTERLY
    assert info.average_amount == pytest.approx(0.24333, rel=1e-3)
    assert info.payment_count == 3
    assert info.last_payment_date == date(2023, 8, 15)
    assert info.next_payment_date.month == 11
    assert info.currency_code == "USD"


def test_payments_without_share_counts_have_no_average():
    info = infer_dividend_info([dividend(MSFT, 10, at(2023, 1)), dividend(MSFT, 10, at(2023, 4))])[MSFT]

    assert info.average_amount is None


def test_pays_in_month_anchored_and_default():
    anchor = date(2024, 2, 10)

    assert pays_in_month(DividendFrequency.QUARTERLY, date(2024, 5, 1), anchor)
    assert pays_in_month(DividendFrequency.QUARTERLY, date(2023, 11, 1), anchor)
    assert not pays_in_month(DividendFrequency.QUARTERLY, date(2024, 6, 1), anchor)
    assert pays_in_month(DividendFrequency.QUARTERLY, date(2024, 6, 1))
    assert pays_in_month(DividendFrequency.ANNUAL, date(2024, 12, 1))
    assert not pays_in_month(DividendFrequency.IRREGULAR, date(2024, 12, 1))


def test_projection_follows_historical_pattern(resolver):
    transactions = [
        buy(AAPL, 100, 150, when=at(2022, 1)),
        dividend(AAPL, 25, at(2023, 2, 15), quantity=100),
        dividend(AAPL, 25, at(2023, 5, 15), quantity=100),
        dividend(AAPL, 25, at(2023, 8, 15), quantity=100),
    ]
    positions = aggregate_positions(transactions)
    listings = {AAPL: listing(AAPL, "AAPL", "Apple Inc.")}

    result = project_dividends(
        positions, infer_dividend_info(transactions), listings, {}, date(2024, 1, 1), "USD", resolver
    )

    assert [projection.month for projection in result.projections][:2] == ["2024-01", "2024-02"]
    paying = [projection.month for projection in result.projections if projection.holdings]
    assert paying == ["2024-02", "2024-05", "2024-08", "2024-11"]
    assert result.projections[1].holdings[0].amount == pytest.approx(25)
    assert result.projections[1].holdings[0].source == "HISTORICAL_PATTERN"
    assert result.total_12_month_projection == pytest.approx(100)
    assert result.avg_monthly_projection == pytest.approx(100 / 12)


def test_projection_falls_back_to_official_yield(resolver):
    transactions = [buy(SHEL, 100, 20, currency="GBP", when=at(2023, 1))]
    listings = {SHEL: listing(SHEL, "SHEL", "Shell plc", currency="GBP", dividend_yield=4.0)}
    quotes = {SHEL: quote(SHEL, 25, currency="GBP")}

    result = project_dividends(
        aggregate_positions(transactions), {}, listings, quotes, date(2024, 1, 1), "USD", resolver
    )

    paying = {projection.month: projection for projection in result.projections if projection.holdings}
    assert list(paying) == ["2024-03", "2024-06", "2024-09", "2024-12"]
    # 4% of 25 GBP = 1 GBP a year, 0.25 a quarter on 100 shares, at 1.25 USD.
    assert paying["2024-03"].total_projected == pytest.approx(31.25)
    assert paying["2024-03"].holdings[0].source == "YIELD_ESTIMATE"


def test_projection_without_any_data_is_empty(resolver):
    transactions = [buy(MSFT, 1, 300)]

    result = project_dividends(aggregate_positions(transactions), {}, {}, {}, date(2024, 1, 1), "USD", resolver)

    assert result.total_12_month_projection == 0
    assert all(projection.holdings == [] for projection in result.projections)


def test_small_projected_amounts_are_not_rounded_away(resolver):
    keys = [ListingKey(f"US00000000{index:02d}", "XNAS") for index in range(12)]
    transactions = []
    for key in keys:
        transactions.append(buy(key, 1, 10, when=at(2022, 12)))
        for month in (1, 2, 3):
            transactions.append(dividend(key, 0.004, at(2023, month, 15), quantity=1))

    result = project_dividends(
        aggregate_positions(transactions),
        infer_dividend_info(transactions),
        {},
        {},
        date(2024, 1, 1),
        "USD",
        resolver,
    )

    february = result.projections[1]
    assert len(february.holdings) == 12
    assert february.total_projected == pytest.approx(0.048)
    assert result.total_12_month_projection == pytest.approx(0.576)
