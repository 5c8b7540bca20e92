"""Value open positions in a portfolio's display currency."""
from __future__ import annotations

import logging
from typing import Callable, Mapping, Optional, Sequence

from .calculations import is_open_quantity, percentage
from .fx import FxResolver
from .models import Listing, ListingKey, Page, Position, Quote, ValuedPosition

logger = logging.getLogger(__name__)

DEFAULT_SORT_FIELD = "portfolioPercentage"

SORT_KEYS: dict[str, Callable[[ValuedPosition], object]] = {
    "portfolioPercentage": lambda position: position.portfolio_percentage,
    "totalCost": lambda position: position.cost_basis,
    "marketValue": lambda position: position.market_value,
    "totalDividends": lambda position: position.total_dividends,
    "currentQuantity": lambda position: position.current_quantity,
    "tickerSymbol": lambda position: position.ticker_symbol,
    "stockSymbol": lambda position: position.ticker_symbol,
    "companyName": lambda position: position.company_name or "",
    "lastTransactionDate": lambda position: position.last_transaction_date,
}


def value_positions(
    positions: Sequence[Position],
    listings: Mapping[ListingKey, Listing],
    quotes: Mapping[ListingKey, Quote],
    display_currency: str,
    resolver: FxResolver,
    dividend_totals: Optional[Mapping[ListingKey, float]] = None,
) -> list[ValuedPosition]:
    """Convert positions into display-currency valuations.

    A position without a quote is valued at its cost basis, never at zero.
    Percentages of the portfolio are computed over the open positions only
    and after currency conversion.

    Raises:
        RateUnavailable: if a required conversion rate cannot be resolved.
    """

    dividend_totals = dividend_totals or {}
    valued: list[ValuedPosition] = []
    for position in positions:
        if not is_open_quantity(position.current_quantity):
            continue
        listing = listings.get(position.listing)
        quote = quotes.get(position.listing)

        cost_basis = resolver.convert(position.cost_basis, position.currency_code, display_currency)
        if quote is not None:
            market_value = resolver.convert(
                position.current_quantity * quote.price, quote.currency, display_currency
            )
        else:
            logger.warning("No price for %s, valuing at cost", position.listing)
            market_value = cost_basis

        gain = market_value - cost_basis
        ticker = listing.display_symbol if listing else position.listing.isin
        valued.append(
            ValuedPosition(
                listing=position.listing,
                ticker_symbol=ticker,
                company_name=(listing.company_name if listing else None) or ticker,
                current_quantity=position.current_quantity,
                currency_code=display_currency,
                cost_basis=cost_basis,
                market_value=market_value,
                current_price=quote.price if quote else None,
                price_currency=quote.currency if quote else None,
                unrealized_gain=gain,
                unrealized_gain_percent=percentage(gain, cost_basis),
                total_dividends=dividend_totals.get(position.listing, 0.0),
                last_transaction_date=position.last_transaction_date,
            )
        )

    apply_portfolio_percentages(valued)
    return valued


def apply_portfolio_percentages(positions: Sequence[ValuedPosition]) -> None:
    total_value = sum(position.market_value for position in positions)
    for position in positions:
        position.portfolio_percentage = percentage(position.market_value, total_value)


def sort_positions(
    positions: Sequence[ValuedPosition],
    sort_by: Optional[str] = DEFAULT_SORT_FIELD,
    sort_order: str = "desc",
) -> list[ValuedPosition]:
    """Return ``positions`` ordered by ``sort_by``.

    Unknown fields fall back to ``portfolioPercentage``. The sort is stable in
    both directions, so ties keep their aggregation order.
    """

    key = SORT_KEYS.get(sort_by or DEFAULT_SORT_FIELD, SORT_KEYS[DEFAULT_SORT_FIELD])
    return sorted(positions, key=key, reverse=sort_order.lower() == "desc")


def paginate(items: Sequence, page: int = 1, limit: int = 50) -> Page:
    """Slice ``items`` into a 1-based page."""

    if page < 1:
        raise ValueError("page must be >= 1")
    if limit < 1:
        raise ValueError("limit must be >= 1")
    start = (page - 1) * limit
    return Page(items=list(items[start:start + limit]), page=page, limit=limit, total=len(items))


__all__ = [
    "DEFAULT_SORT_FIELD",
    "SORT_KEYS",
    "apply_portfolio_percentages",
    "paginate",
    "sort_positions",
    "value_positions",
]
