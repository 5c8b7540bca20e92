"""High-level application services orchestrating the dividend_tracker backend.

:class:`PortfolioService` is the only place where the ledger, price lookups
and the FX resolver meet the pure analytics functions.  Every query is scoped
to the authenticated user id passed in by the caller.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Optional

from .config import AppConfig
from .database import SQLiteRepository
from .dividends import (
    dividend_totals_by_listing,
    holdings_yield_comparison,
    monthly_dividend_chart,
    yearly_dividend_summaries,
)
from .errors import PortfolioNotFound
from .fx import FxResolver
from .importers import TransactionImporter, derive_amounts
from .models import (
    DividendFilters,
    DividendInfo,
    DividendProjections,
    FxRate,
    HoldingsYieldComparison,
    Listing,
    ListingKey,
    MonthlyDividendChart,
    Page,
    Portfolio,
    PortfolioSummary,
    Quote,
    Transaction,
    TransactionType,
    ValuedPosition,
    YearlyDividendSummary,
    utcnow,
)
from .positions import aggregate_positions
from .price_service import PriceService
from .projections import infer_dividend_info, project_dividends
from .summary import summarize_portfolio
from .valuation import DEFAULT_SORT_FIELD, paginate, sort_positions, value_positions

logger = logging.getLogger(__name__)

DISPLAY_CURRENCY_SETTING = "display_currency"


class PortfolioService:
    """Coordinates persistence, market data and portfolio analytics."""

    def __init__(
        self,
        config: AppConfig,
        repository: SQLiteRepository,
        price_service: PriceService,
        fx_resolver: FxResolver,
    ) -> None:
        self._config = config
        self._repository = repository
        self._price_service = price_service
        self._fx = fx_resolver

    # ------------------------------------------------------------------
    # Portfolios
    # ------------------------------------------------------------------
    def create_portfolio(self, user_id: str, name: str, currency_code: str) -> Portfolio:
        return self._repository.create_portfolio(user_id, name, currency_code)

    def list_portfolios(self, user_id: str) -> list[Portfolio]:
        return self._repository.list_portfolios(user_id)

    def get_portfolio(self, user_id: str, portfolio_id: str) -> Portfolio:
        portfolio = self._repository.get_portfolio(user_id, portfolio_id)
        if portfolio is None:
            raise PortfolioNotFound(portfolio_id)
        return portfolio

    def update_portfolio(
        self,
        user_id: str,
        portfolio_id: str,
        name: Optional[str] = None,
        currency_code: Optional[str] = None,
    ) -> Portfolio:
        portfolio = self._repository.update_portfolio(user_id, portfolio_id, name, currency_code)
        if portfolio is None:
            raise PortfolioNotFound(portfolio_id)
        return portfolio

    def delete_portfolio(self, user_id: str, portfolio_id: str) -> None:
        if not self._repository.delete_portfolio(user_id, portfolio_id):
            raise PortfolioNotFound(portfolio_id)
        logger.info("Deleted portfolio %s of user %s", portfolio_id, user_id)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    def record_transaction(
        self,
        user_id: str,
        portfolio_id: str,
        listing: ListingKey,
        tx_type: TransactionType,
        occurred_at: datetime,
        quantity: float = 0.0,
        price: float = 0.0,
        *,
        ticker_symbol: Optional[str] = None,
        company_name: Optional[str] = None,
        commission: float = 0.0,
        currency_code: Optional[str] = None,
        amount: Optional[float] = None,
        total_amount: Optional[float] = None,
        tax: float = 0.0,
        tax_percentage: float = 0.0,
        notes: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> Transaction:
        """Append one transaction, registering its listing on first use.

        The currency defaults to the portfolio currency and missing gross / net
        amounts are derived the same way the ledger importer derives them.
        """

        portfolio = self.get_portfolio(user_id, portfolio_id)
        currency = (currency_code or portfolio.currency_code).upper()
        gross, net = derive_amounts(tx_type, abs(quantity), price, commission, tax, amount, total_amount)
        if reference is None:
            reference = f"{occurred_at.date().isoformat()} {ticker_symbol or listing.isin} {abs(quantity):g}"

        transaction = Transaction(
            portfolio_id=portfolio.id,
            listing=listing,
            type=tx_type,
            occurred_at=occurred_at,
            quantity=abs(quantity),
            price=price,
            commission=commission,
            currency_code=currency,
            amount=gross,
            total_amount=net,
            tax=tax,
            tax_percentage=tax_percentage,
            notes=notes,
            reference=reference,
        )
        self._repository.upsert_listings(
            [
                Listing(
                    key=listing,
                    ticker_symbol=ticker_symbol,
                    company_name=company_name or ticker_symbol,
                    currency_code=currency,
                )
            ]
        )
        self._repository.insert_transactions([transaction])
        return transaction

    def list_transactions(self, user_id: str, portfolio_id: str, page: int = 1, limit: int = 50) -> Page:
        """Return one page of the portfolio ledger, newest first."""

        portfolio = self.get_portfolio(user_id, portfolio_id)
        ledger = self._repository.transactions_for(portfolio.id)
        return paginate(ledger[::-1], page, limit)

    # ------------------------------------------------------------------
    # Import workflows
    # ------------------------------------------------------------------
    def import_transactions(self, user_id: str, portfolio_id: str, path: str | Path) -> dict[str, int]:
        """Append the transactions of a CSV / Excel ledger to a portfolio."""

        portfolio = self.get_portfolio(user_id, portfolio_id)
        result = TransactionImporter(path).load(portfolio.id, portfolio.currency_code)
        self._repository.upsert_listings(result.listings.values())
        imported = self._repository.insert_transactions(result.transactions)
        return {"imported": imported, "skipped": len(result.skipped_rows)}

    # ------------------------------------------------------------------
    # Positions and summary
    # ------------------------------------------------------------------
    def valued_positions(self, user_id: str, portfolio_id: str) -> list[ValuedPosition]:
        return self._valued_positions(self.get_portfolio(user_id, portfolio_id))

    def _valued_positions(self, portfolio: Portfolio) -> list[ValuedPosition]:
        transactions = self._repository.transactions_for(portfolio.id)
        positions = aggregate_positions(transactions)
        keys = [position.listing for position in positions]
        # Only dividends of open positions are reported per position.
        open_keys = set(keys)
        held_dividends = [tx for tx in transactions if tx.listing in open_keys]
        return value_positions(
            positions,
            self._repository.get_listings(keys),
            self._repository.latest_prices(keys),
            portfolio.currency_code,
            self._fx,
            dividend_totals_by_listing(held_dividends, portfolio.currency_code, self._fx),
        )

    def positions(
        self,
        user_id: str,
        portfolio_id: str,
        page: int = 1,
        limit: int = 50,
        sort_by: str = DEFAULT_SORT_FIELD,
        sort_order: str = "desc",
    ) -> Page:
        valued = self.valued_positions(user_id, portfolio_id)
        return paginate(sort_positions(valued, sort_by, sort_order), page, limit)

    def summary(self, user_id: str, portfolio_id: str) -> PortfolioSummary:
        portfolio = self.get_portfolio(user_id, portfolio_id)
        valued = self._valued_positions(portfolio)
        dividends = self._repository.dividend_transactions_for(user_id, DividendFilters(portfolio_id=portfolio.id))
        totals = dividend_totals_by_listing(dividends, portfolio.currency_code, self._fx)
        return summarize_portfolio(valued, sum(totals.values()))

    # ------------------------------------------------------------------
    # Dividend analytics
    # ------------------------------------------------------------------
    def _analytics_currency(self, user_id: str, filters: DividendFilters) -> str:
        if filters.portfolio_id:
            return self.get_portfolio(user_id, filters.portfolio_id).currency_code
        return self.display_currency()

    def company_dividend_summaries(self, user_id: str, filters: DividendFilters) -> list[YearlyDividendSummary]:
        currency = self._analytics_currency(user_id, filters)
        transactions = self._repository.dividend_transactions_for(user_id, filters, include_buys=True)
        listings = self._repository.get_listings({tx.listing for tx in transactions})
        return yearly_dividend_summaries(transactions, listings, currency, self._fx)

    def monthly_dividend_overview(self, user_id: str, filters: DividendFilters) -> MonthlyDividendChart:
        currency = self._analytics_currency(user_id, filters)
        transactions = self._repository.dividend_transactions_for(user_id, filters)
        listings = self._repository.get_listings({tx.listing for tx in transactions})
        return monthly_dividend_chart(transactions, listings, currency, self._fx)

    def holdings_yield_comparison(
        self,
        user_id: str,
        portfolio_id: str,
        as_of: Optional[datetime] = None,
    ) -> HoldingsYieldComparison:
        portfolio = self.get_portfolio(user_id, portfolio_id)
        transactions = self._repository.transactions_for(portfolio.id)
        positions = aggregate_positions(transactions)
        keys = [position.listing for position in positions]
        return holdings_yield_comparison(
            positions,
            transactions,
            self._repository.get_listings(keys),
            self._repository.latest_prices(keys),
            self._fx,
            as_of,
        )

    def dividend_info(self, user_id: str, portfolio_id: str) -> list[DividendInfo]:
        portfolio = self.get_portfolio(user_id, portfolio_id)
        dividends = self._repository.dividend_transactions_for(user_id, DividendFilters(portfolio_id=portfolio.id))
        return list(infer_dividend_info(dividends).values())

    def dividend_projections(
        self,
        user_id: str,
        portfolio_id: str,
        start: Optional[date] = None,
    ) -> DividendProjections:
        portfolio = self.get_portfolio(user_id, portfolio_id)
        transactions = self._repository.transactions_for(portfolio.id)
        positions = aggregate_positions(transactions)
        keys = [position.listing for position in positions]
        return project_dividends(
            positions,
            infer_dividend_info(transactions),
            self._repository.get_listings(keys),
            self._repository.latest_prices(keys),
            start or utcnow().date(),
            portfolio.currency_code,
            self._fx,
        )

    # ------------------------------------------------------------------
    # Market data utilities
    # ------------------------------------------------------------------
    def refresh_fx_rate(self, base: str, quote: str) -> FxRate:
        rate = self._price_service.fetch_fx_rate(base, quote)
        self._repository.upsert_fx_rates([rate])
        self._fx.cache.set(rate.base, rate.quote, rate.rate)
        return rate

    def refresh_listing_price(self, key: ListingKey) -> Optional[Quote]:
        """Fetch and store the price of a known listing; ``None`` if unknown."""

        listing = self._repository.get_listing(key)
        if listing is None:
            return None
        quote = self._price_service.fetch_equity_quote(key, listing.display_symbol)
        self._repository.update_listing_price(quote)
        return quote

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def display_currency(self) -> str:
        return self._repository.get_setting(DISPLAY_CURRENCY_SETTING, self._config.display_currency)

    def set_display_currency(self, currency: str) -> str:
        currency = currency.upper()
        self._repository.set_setting(DISPLAY_CURRENCY_SETTING, currency)
        return currency
