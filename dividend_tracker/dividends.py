"""Dividend aggregates: yearly summaries, monthly chart grids and yield comparisons.

Every function here is pure.  Callers pass transactions that were already
scoped to the requesting user (and filtered) by the ledger.  When a display
currency and an :class:`~dividend_tracker.fx.FxResolver` are supplied the
amounts are converted before aggregation; otherwise they are summed as
recorded.
"""
from __future__ import annotations

import calendar
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Iterable, Mapping, Optional, Sequence

from .calculations import is_open_quantity, safe_divide
from .fx import FxResolver
from .models import (
    HoldingYield,
    HoldingsYieldComparison,
    Listing,
    ListingKey,
    MonthlyChartEntry,
    MonthlyDataPoint,
    MonthlyDividendChart,
    Position,
    Quote,
    Transaction,
    TransactionType,
    YearlyDividendSummary,
    ensure_utc,
    utcnow,
)

MONTH_NAMES = [calendar.month_name[month] for month in range(1, 13)]
TRAILING_WINDOW = timedelta(days=365)

Converter = Callable[[float, str], float]


def _converter(display_currency: Optional[str], resolver: Optional[FxResolver]) -> Converter:
    if display_currency is None or resolver is None:
        return lambda amount, currency: amount
    return lambda amount, currency: resolver.convert(amount, currency, display_currency)


def _ticker(listings: Mapping[ListingKey, Listing], key: ListingKey) -> str:
    listing = listings.get(key)
    return listing.display_symbol if listing else key.isin


def _dividends(transactions: Iterable[Transaction]) -> list[Transaction]:
    return [tx for tx in transactions if tx.type is TransactionType.DIVIDEND]


def dividend_totals_by_listing(
    transactions: Iterable[Transaction],
    display_currency: Optional[str] = None,
    resolver: Optional[FxResolver] = None,
) -> dict[ListingKey, float]:
    """Return the all-time dividend sum per listing."""

    convert = _converter(display_currency, resolver)
    totals: dict[ListingKey, float] = defaultdict(float)
    for tx in _dividends(transactions):
        totals[tx.listing] += convert(abs(tx.amount), tx.currency_code)
    return dict(totals)


def total_dividends(
    transactions: Iterable[Transaction],
    display_currency: Optional[str] = None,
    resolver: Optional[FxResolver] = None,
) -> float:
    return sum(dividend_totals_by_listing(transactions, display_currency, resolver).values())


def yearly_dividend_summaries(
    transactions: Iterable[Transaction],
    listings: Mapping[ListingKey, Listing],
    display_currency: Optional[str] = None,
    resolver: Optional[FxResolver] = None,
) -> list[YearlyDividendSummary]:
    """Summarise dividends and purchases per (ticker, calendar year).

    Only groups with at least one dividend are reported.  Results are sorted
    by ticker ascending, then year descending.
    """

    convert = _converter(display_currency, resolver)
    dividends: dict[tuple[str, int], float] = defaultdict(float)
    counts: dict[tuple[str, int], int] = defaultdict(int)
    costs: dict[tuple[str, int], float] = defaultdict(float)
    companies: dict[str, str] = {}

    for tx in transactions:
        ticker = _ticker(listings, tx.listing)
        group = (ticker, tx.occurred_at.year)
        listing = listings.get(tx.listing)
        if listing is not None and listing.company_name:
            companies.setdefault(ticker, listing.company_name)
        if tx.type is TransactionType.DIVIDEND:
            dividends[group] += convert(abs(tx.amount), tx.currency_code)
            counts[group] += 1
        elif tx.type is TransactionType.BUY:
            costs[group] += convert(abs(tx.amount), tx.currency_code)

    summaries = []
    for (ticker, year), count in counts.items():
        total = dividends[(ticker, year)]
        cost = costs.get((ticker, year), 0.0)
        summaries.append(
            YearlyDividendSummary(
                ticker_symbol=ticker,
                company_name=companies.get(ticker, ticker),
                year=year,
                total_dividends=total,
                dividend_count=count,
                total_cost=cost,
                yield_on_cost=safe_divide(total, cost) * 100,
                average_dividend_per_payment=safe_divide(total, count),
            )
        )
    return sorted(summaries, key=lambda summary: (summary.ticker_symbol, -summary.year))


def monthly_dividend_chart(
    transactions: Iterable[Transaction],
    listings: Mapping[ListingKey, Listing],
    display_currency: Optional[str] = None,
    resolver: Optional[FxResolver] = None,
) -> MonthlyDividendChart:
    """Build a dense month x year grid of dividend totals.

    Every month 1-12 gets a data point for every year present in the data,
    so clients can chart the result without filling gaps themselves.
    """

    convert = _converter(display_currency, resolver)
    cells: dict[tuple[int, int], MonthlyDataPoint] = {}
    for tx in _dividends(transactions):
        year, month = tx.occurred_at.year, tx.occurred_at.month
        cell = cells.get((year, month))
        if cell is None:
            cell = cells[(year, month)] = MonthlyDataPoint(year=str(year))
        cell.total_dividends += convert(abs(tx.amount), tx.currency_code)
        cell.dividend_count += 1
        ticker = _ticker(listings, tx.listing)
        if ticker not in cell.companies:
            cell.companies.append(ticker)

    years = sorted({year for year, _ in cells})
    data = []
    for month in range(1, 13):
        yearly_data = []
        for year in years:
            cell = cells.get((year, month)) or MonthlyDataPoint(year=str(year))
            cell.companies.sort()
            yearly_data.append(cell)
        data.append(
            MonthlyChartEntry(
                month=f"{month:02d}",
                month_name=MONTH_NAMES[month - 1],
                yearly_data=yearly_data,
            )
        )
    return MonthlyDividendChart(months=list(MONTH_NAMES), years=[str(year) for year in years], data=data)


def holdings_yield_comparison(
    positions: Sequence[Position],
    transactions: Iterable[Transaction],
    listings: Mapping[ListingKey, Listing],
    quotes: Mapping[ListingKey, Quote],
    resolver: FxResolver,
    as_of: Optional[datetime] = None,
) -> HoldingsYieldComparison:
    """Compare yield on cost with trailing-12-month yield per open holding.

    Figures are expressed in each position's own currency.  Holdings that
    never paid a dividend are left out.
    """

    as_of = ensure_utc(as_of) if as_of is not None else utcnow()
    window_start = as_of - TRAILING_WINDOW
    by_listing: dict[ListingKey, list[Transaction]] = defaultdict(list)
    for tx in _dividends(transactions):
        by_listing[tx.listing].append(tx)

    holdings = []
    price_updates = []
    for position in positions:
        history = by_listing.get(position.listing)
        if not history or not is_open_quantity(position.current_quantity):
            continue
        currency = position.currency_code
        all_time = sum(resolver.convert(abs(tx.amount), tx.currency_code, currency) for tx in history)
        trailing = sum(
            resolver.convert(abs(tx.amount), tx.currency_code, currency)
            for tx in history
            if window_start <= tx.occurred_at <= as_of
        )

        quote = quotes.get(position.listing)
        current_price = None
        if quote is not None:
            current_price = resolver.convert(quote.price, quote.currency, currency)
            price_updates.append(quote.as_of)
        market_value = position.current_quantity * current_price if current_price else 0.0

        listing = listings.get(position.listing)
        ticker = _ticker(listings, position.listing)
        holdings.append(
            HoldingYield(
                listing=position.listing,
                ticker_symbol=ticker,
                company_name=(listing.company_name if listing else None) or ticker,
                current_quantity=position.current_quantity,
                current_price=current_price,
                currency_code=currency,
                yield_on_cost=safe_divide(trailing, position.cost_basis) * 100,
                trailing_12_month_yield=safe_divide(trailing, market_value) * 100,
                trailing_12_month_dividends=trailing,
                total_cost=position.cost_basis,
                total_dividends=all_time,
                official_dividend_yield=listing.dividend_yield if listing else None,
            )
        )

    return HoldingsYieldComparison(
        holdings=holdings,
        last_price_update=max(price_updates) if price_updates else None,
    )


__all__ = [
    "MONTH_NAMES",
    "TRAILING_WINDOW",
    "dividend_totals_by_listing",
    "holdings_yield_comparison",
    "monthly_dividend_chart",
    "total_dividends",
    "yearly_dividend_summaries",
]
