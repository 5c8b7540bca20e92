"""Domain models used by the dividend_tracker backend.

The classes defined here are intentionally lightweight data containers that do
not know anything about persistence or transport concerns.  Keeping the domain
model pure makes it possible to test the analytics without a database and
enables reuse by different adapters (the HTTP API, the importer, scripts).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as a timezone-aware UTC datetime.

    Naive datetimes are assumed to already be expressed in UTC.
    """

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransactionType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    DIVIDEND = "DIVIDEND"
    TAX = "TAX"
    SPLIT = "SPLIT"


class DividendFrequency(str, Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    SEMI_ANNUAL = "SEMI_ANNUAL"
    ANNUAL = "ANNUAL"
    IRREGULAR = "IRREGULAR"


@dataclass(frozen=True, slots=True)
class ListingKey:
    """Identifies an instrument on a specific exchange."""

    isin: str
    exchange_code: str

    def __str__(self) -> str:
        return f"{self.isin}:{self.exchange_code}"


@dataclass(slots=True)
class Listing:
    """A tradable instrument together with its latest known price."""

    key: ListingKey
    ticker_symbol: Optional[str] = None
    company_name: Optional[str] = None
    currency_code: str = "USD"
    current_price: Optional[float] = None
    price_updated_at: Optional[datetime] = None
    price_source: Optional[str] = None
    dividend_yield: Optional[float] = None

    @property
    def display_symbol(self) -> str:
        return self.ticker_symbol or self.key.isin


@dataclass(frozen=True, slots=True)
class Transaction:
    """Immutable ledger entry.

    ``quantity`` and ``amount`` may be stored signed or unsigned depending on
    the source of the record; the analytics derive the direction from
    :attr:`type` and only ever use absolute values.
    """

    portfolio_id: str
    listing: ListingKey
    type: TransactionType
    occurred_at: datetime
    quantity: float = 0.0
    price: float = 0.0
    commission: float = 0.0
    currency_code: str = "USD"
    amount: float = 0.0
    total_amount: float = 0.0
    tax: float = 0.0
    tax_percentage: float = 0.0
    notes: Optional[str] = None
    reference: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid4()))

    def __post_init__(self) -> None:
        object.__setattr__(self, "occurred_at", ensure_utc(self.occurred_at))
        object.__setattr__(self, "type", TransactionType(self.type))


@dataclass(slots=True)
class Portfolio:
    id: str
    user_id: str
    name: str
    currency_code: str
    created_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class Quote:
    """Latest market price for a listing."""

    listing: ListingKey
    price: float
    currency: str
    as_of: datetime
    source: str


@dataclass(slots=True)
class FxRate:
    """Directional FX rate as persisted in the local database."""

    base: str
    quote: str
    as_of: datetime
    rate: float
    source: str


@dataclass(slots=True)
class Position:
    """Derived per-listing holding for one portfolio, in listing currency."""

    listing: ListingKey
    current_quantity: float
    cost_basis: float
    currency_code: str
    last_transaction_date: datetime
    total_buy_amount: float
    total_buy_quantity: float
    net_amount: float


@dataclass(slots=True)
class ValuedPosition:
    """A :class:`Position` expressed in the portfolio's display currency."""

    listing: ListingKey
    ticker_symbol: str
    company_name: str
    current_quantity: float
    currency_code: str
    cost_basis: float
    market_value: float
    current_price: Optional[float]
    price_currency: Optional[str]
    unrealized_gain: float
    unrealized_gain_percent: float
    total_dividends: float
    last_transaction_date: datetime
    portfolio_percentage: float = 0.0

    @property
    def is_priced(self) -> bool:
        return self.current_price is not None


@dataclass(slots=True)
class PortfolioSummary:
    total_value: float
    total_cost: float
    total_gain: float
    total_gain_percent: float
    position_count: int
    total_dividends: float


@dataclass(slots=True)
class Page:
    """One page of an ordered result set plus pagination metadata."""

    items: list
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.limit) if self.total else 0

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self.page > 1


@dataclass(slots=True)
class DividendFilters:
    """Optional, AND-composed predicates for dividend analytics queries."""

    portfolio_id: Optional[str] = None
    ticker_symbol: Optional[str] = None
    start_year: Optional[int] = None
    end_year: Optional[int] = None

    def window(self) -> tuple[Optional[datetime], Optional[datetime]]:
        """Translate the year filters into an inclusive UTC timestamp window."""

        start = None
        end = None
        if self.start_year is not None:
            start = datetime(self.start_year, 1, 1, tzinfo=timezone.utc)
        if self.end_year is not None:
            end = datetime(self.end_year, 12, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)
        return start, end


@dataclass(slots=True)
class YearlyDividendSummary:
    ticker_symbol: str
    company_name: str
    year: int
    total_dividends: float
    dividend_count: int
    total_cost: float
    yield_on_cost: float
    average_dividend_per_payment: float


@dataclass(slots=True)
class MonthlyDataPoint:
    year: str
    total_dividends: float = 0.0
    dividend_count: int = 0
    companies: list[str] = field(default_factory=list)


@dataclass(slots=True)
class MonthlyChartEntry:
    month: str
    month_name: str
    yearly_data: list[MonthlyDataPoint]


@dataclass(slots=True)
class MonthlyDividendChart:
    months: list[str]
    years: list[str]
    data: list[MonthlyChartEntry]


@dataclass(slots=True)
class HoldingYield:
    listing: ListingKey
    ticker_symbol: str
    company_name: str
    current_quantity: float
    current_price: Optional[float]
    currency_code: str
    yield_on_cost: float
    trailing_12_month_yield: float
    trailing_12_month_dividends: float
    total_cost: float
    total_dividends: float
    official_dividend_yield: Optional[float]


@dataclass(slots=True)
class HoldingsYieldComparison:
    holdings: list[HoldingYield]
    last_price_update: Optional[datetime]


@dataclass(slots=True)
class DividendInfo:
    """Payment cadence inferred from a listing's dividend history."""

    listing: ListingKey
    frequency: DividendFrequency
    currency_code: str
    average_amount: Optional[float]
    payment_count: int
    last_payment_date: Optional[date]
    next_payment_date: Optional[date]


@dataclass(slots=True)
class ProjectedDividend:
    ticker_symbol: str
    company_name: Optional[str]
    amount: float
    source: str


@dataclass(slots=True)
class MonthlyProjection:
    month: str
    total_projected: float
    holdings: list[ProjectedDividend]


@dataclass(slots=True)
class DividendProjections:
    projections: list[MonthlyProjection]
    total_12_month_projection: float
    avg_monthly_projection: float


__all__ = [
    "DividendFilters",
    "DividendFrequency",
    "DividendInfo",
    "DividendProjections",
    "FxRate",
    "HoldingYield",
    "HoldingsYieldComparison",
    "Listing",
    "ListingKey",
    "MonthlyChartEntry",
    "MonthlyDataPoint",
    "MonthlyDividendChart",
    "MonthlyProjection",
    "Page",
    "Portfolio",
    "PortfolioSummary",
    "Position",
    "ProjectedDividend",
    "Quote",
    "Transaction",
    "TransactionType",
    "ValuedPosition",
    "YearlyDividendSummary",
    "ensure_utc",
    "utcnow",
]
