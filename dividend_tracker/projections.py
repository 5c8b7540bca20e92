"""Infer dividend cadence from history and project the next twelve months."""
from __future__ import annotations

import statistics
from collections import defaultdict
from datetime import date, timedelta
from typing import Iterable, Mapping, Optional, Sequence

from .calculations import EPSILON, is_open_quantity
from .fx import FxResolver
from .models import (
    DividendFrequency,
    DividendInfo,
    DividendProjections,
    Listing,
    ListingKey,
    MonthlyProjection,
    Position,
    ProjectedDividend,
    Quote,
    Transaction,
    TransactionType,
)

HISTORICAL_PATTERN = "HISTORICAL_PATTERN"
YIELD_ESTIMATE = "YIELD_ESTIMATE"

# Upper bound (in days) of the median gap between payments for each cadence.
FREQUENCY_THRESHOLDS = (
    (45, DividendFrequency.MONTHLY),
    (135, DividendFrequency.QUARTERLY),
    (270, DividendFrequency.SEMI_ANNUAL),
    (450, DividendFrequency.ANNUAL),
)

PAYMENTS_PER_YEAR = {
    DividendFrequency.MONTHLY: 12,
    DividendFrequency.QUARTERLY: 4,
    DividendFrequency.SEMI_ANNUAL: 2,
    DividendFrequency.ANNUAL: 1,
}

# Payment months assumed when no payment date anchors the schedule.
DEFAULT_PAYMENT_MONTHS = {
    DividendFrequency.MONTHLY: set(range(1, 13)),
    DividendFrequency.QUARTERLY: {3, 6, 9, 12},
    DividendFrequency.SEMI_ANNUAL: {6, 12},
    DividendFrequency.ANNUAL: {12},
}


def classify_frequency(payment_dates: Sequence[date]) -> tuple[DividendFrequency, Optional[int]]:
    """Return the cadence implied by ``payment_dates`` and its median gap in days."""

    distinct = sorted(set(payment_dates))
    if len(distinct) < 2:
        return DividendFrequency.IRREGULAR, None
    gaps = [(later - earlier).days for earlier, later in zip(distinct, distinct[1:])]
    median_gap = int(statistics.median(gaps))
    for upper_bound, frequency in FREQUENCY_THRESHOLDS:
        if median_gap <= upper_bound:
            return frequency, median_gap
    return DividendFrequency.IRREGULAR, median_gap


def infer_dividend_info(transactions: Iterable[Transaction]) -> dict[ListingKey, DividendInfo]:
    """Derive per-listing :class:`DividendInfo` from DIVIDEND transactions.

    The per-share amount uses ``amount / quantity`` when the payment records
    the number of shares it was paid on, falling back to ``price``.
    """

    history: dict[ListingKey, list[Transaction]] = defaultdict(list)
    for tx in transactions:
        if tx.type is TransactionType.DIVIDEND:
            history[tx.listing].append(tx)

    infos = {}
    for key, payments in history.items():
        payments.sort(key=lambda tx: tx.occurred_at)
        dates = [tx.occurred_at.date() for tx in payments]
        frequency, median_gap = classify_frequency(dates)

        per_share = []
        for tx in payments:
            if abs(tx.quantity) > EPSILON:
                per_share.append(abs(tx.amount) / abs(tx.quantity))
            elif tx.price > EPSILON:
                per_share.append(tx.price)

        next_payment = None
        if frequency is not DividendFrequency.IRREGULAR and median_gap:
            next_payment = dates[-1] + timedelta(days=median_gap)

        infos[key] = DividendInfo(
            listing=key,
            frequency=frequency,
            currency_code=payments[-1].currency_code,
            average_amount=statistics.fmean(per_share) if per_share else None,
            payment_count=len(payments),
            last_payment_date=dates[-1],
            next_payment_date=next_payment,
        )
    return infos


def _month_index(value: date) -> int:
    return value.year * 12 + value.month - 1


def pays_in_month(frequency: DividendFrequency, target: date, anchor: Optional[date] = None) -> bool:
    """Return whether a ``frequency`` payer is expected to pay in ``target``'s month.

    When ``anchor`` (a known or estimated payment date) is given the schedule
    repeats from it; otherwise common payment months are assumed.
    """

    if frequency not in PAYMENTS_PER_YEAR:
        return False
    if anchor is not None:
        interval = 12 // PAYMENTS_PER_YEAR[frequency]
        return (_month_index(target) - _month_index(anchor)) % interval == 0
    return target.month in DEFAULT_PAYMENT_MONTHS[frequency]


def _project_holding(
    position: Position,
    info: Optional[DividendInfo],
    listing: Optional[Listing],
    quote: Optional[Quote],
    target: date,
    convert,
) -> Optional[ProjectedDividend]:
    ticker = listing.display_symbol if listing else position.listing.isin
    company = listing.company_name if listing else None

    if info is not None and info.average_amount and info.frequency in PAYMENTS_PER_YEAR:
        if pays_in_month(info.frequency, target, info.next_payment_date):
            amount = convert(info.average_amount * position.current_quantity, info.currency_code)
            return ProjectedDividend(ticker, company, amount, HISTORICAL_PATTERN)
        return None

    # No usable history: estimate from the official yield and current price.
    if listing is not None and listing.dividend_yield and quote is not None and quote.price:
        frequency = info.frequency if info is not None and info.frequency in PAYMENTS_PER_YEAR else DividendFrequency.QUARTERLY
        if pays_in_month(frequency, target):
            annual_per_share = listing.dividend_yield / 100 * quote.price
            per_payment = annual_per_share / PAYMENTS_PER_YEAR[frequency]
            amount = convert(per_payment * position.current_quantity, quote.currency)
            return ProjectedDividend(ticker, company, amount, YIELD_ESTIMATE)
    return None


def project_dividends(
    positions: Sequence[Position],
    dividend_info: Mapping[ListingKey, DividendInfo],
    listings: Mapping[ListingKey, Listing],
    quotes: Mapping[ListingKey, Quote],
    start: date,
    display_currency: str,
    resolver: FxResolver,
    months: int = 12,
) -> DividendProjections:
    """Project dividend income per month for ``months`` months from ``start``."""

    def convert(amount: float, currency: str) -> float:
        return resolver.convert(amount, currency, display_currency)

    projections = []
    first_month = _month_index(start)
    for offset in range(months):
        year, month_zero = divmod(first_month + offset, 12)
        target = date(year, month_zero + 1, 1)
        holdings = []
        for position in positions:
            if not is_open_quantity(position.current_quantity):
                continue
            projected = _project_holding(
                position,
                dividend_info.get(position.listing),
                listings.get(position.listing),
                quotes.get(position.listing),
                target,
                convert,
            )
            if projected is not None:
                holdings.append(projected)
        projections.append(
            MonthlyProjection(
                month=f"{target.year}-{target.month:02d}",
                total_projected=sum(holding.amount for holding in holdings),
                holdings=holdings,
            )
        )

    total = sum(projection.total_projected for projection in projections)
    return DividendProjections(
        projections=projections,
        total_12_month_projection=total,
        avg_monthly_projection=total / months if months else 0.0,
    )


__all__ = [
    "classify_frequency",
    "infer_dividend_info",
    "pays_in_month",
    "project_dividends",
]
