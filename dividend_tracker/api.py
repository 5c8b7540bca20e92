"""FastAPI application exposing the dividend_tracker backend.

Routes are thin: they read the caller's user id from the ``X-User-Id``
header (authentication happens upstream), delegate to
:class:`~dividend_tracker.services.PortfolioService` and round monetary
figures to two decimals on the way out.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import fields, is_dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import load_config
from .database import SQLiteRepository
from .errors import PortfolioNotFound, PriceUnavailable, RateUnavailable
from .fx import FxResolver, RateCache
from .models import DividendFilters, ListingKey, Page, TransactionType
from .price_service import PriceService
from .services import PortfolioService
from .valuation import DEFAULT_SORT_FIELD

logger = logging.getLogger(__name__)

CURRENCY_PATTERN = "^[A-Za-z]{3}$"

# Share counts are reported as stored; everything else numeric is rounded.
UNROUNDED_FIELDS = {"current_quantity", "quantity", "payment_count", "dividend_count", "position_count"}


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Initialise shared services once and reuse them across requests."""

    config = load_config()
    repository = SQLiteRepository(config.database_file)
    repository.initialise_schema()
    price_service = PriceService(config)
    fx_resolver = FxResolver(
        repository,
        price_service,
        RateCache(config.fx_cache_ttl_seconds),
        max_age=timedelta(hours=config.fx_max_age_hours),
    )
    portfolio_service = PortfolioService(config, repository, price_service, fx_resolver)

    app.state.config = config
    app.state.repository = repository
    app.state.portfolio = portfolio_service

    yield

    repository.close()


app = FastAPI(lifespan=lifespan, title="dividend_tracker backend", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error mapping ---------------------------------------------------------------


@app.exception_handler(PortfolioNotFound)
async def portfolio_not_found_handler(_: Request, exc: PortfolioNotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(RateUnavailable)
@app.exception_handler(PriceUnavailable)
async def market_data_unavailable_handler(_: Request, exc: Exception) -> JSONResponse:
    logger.warning("Market data unavailable: %s", exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


# Dependency injection ------------------------------------------------------

def get_portfolio_service() -> PortfolioService:
    service: PortfolioService = app.state.portfolio
    return service


def get_user_id(x_user_id: Annotated[Optional[str], Header()] = None) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header.")
    return x_user_id


ServiceDep = Annotated[PortfolioService, Depends(get_portfolio_service)]
UserDep = Annotated[str, Depends(get_user_id)]


# Request bodies ----------------------------------------------------------------

class PortfolioUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    currency: Optional[str] = Field(default=None, pattern=CURRENCY_PATTERN)


class TransactionCreate(BaseModel):
    isin: str = Field(min_length=1, max_length=12)
    exchange_code: str = Field(min_length=1, max_length=10)
    type: TransactionType
    date: datetime
    quantity: float = Field(default=0.0, ge=0)
    price: float = Field(default=0.0, ge=0)
    ticker_symbol: Optional[str] = Field(default=None, max_length=10)
    company_name: Optional[str] = None
    commission: float = Field(default=0.0, ge=0)
    currency: Optional[str] = Field(default=None, pattern=CURRENCY_PATTERN)
    amount: Optional[float] = Field(default=None, ge=0)
    total_amount: Optional[float] = None
    tax: float = Field(default=0.0, ge=0)
    tax_percentage: float = Field(default=0.0, ge=0)
    notes: Optional[str] = None
    reference: Optional[str] = Field(default=None, max_length=255)


# Serialisation ---------------------------------------------------------------

def serialise(value: object, field_name: str | None = None) -> object:
    """Convert domain objects into JSON-ready values, rounding money to 2 dp."""

    if isinstance(value, ListingKey):
        return {"isin": value.isin, "exchange_code": value.exchange_code}
    if isinstance(value, Page):
        return {
            "data": serialise(value.items),
            "meta": {
                "page": value.page,
                "limit": value.limit,
                "total": value.total,
                "total_pages": value.total_pages,
                "has_next_page": value.has_next_page,
                "has_prev_page": value.has_prev_page,
            },
        }
    if is_dataclass(value) and not isinstance(value, type):
        return {
            item.name: serialise(getattr(value, item.name), item.name)
            for item in fields(value)
        }
    if isinstance(value, dict):
        return {key: serialise(item, key) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialise(item, field_name) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, float) and field_name not in UNROUNDED_FIELDS:
        return round(value, 2)
    return value


# Routes --------------------------------------------------------------------


@app.get("/health")
def health_check() -> dict[str, str]:
    """Return a basic heartbeat payload for monitoring purposes."""

    return {"status": "ok"}


@app.post("/portfolios")
def create_portfolio(
    name: Annotated[str, Query(min_length=1, max_length=100)],
    user_id: UserDep,
    portfolio_service: ServiceDep,
    currency: Annotated[str, Query(pattern=CURRENCY_PATTERN)] = "USD",
) -> dict[str, object]:
    portfolio = portfolio_service.create_portfolio(user_id, name, currency.upper())
    return serialise(portfolio)


@app.get("/portfolios")
def list_portfolios(user_id: UserDep, portfolio_service: ServiceDep) -> dict[str, object]:
    portfolios = portfolio_service.list_portfolios(user_id)
    return {"portfolios": serialise(portfolios), "count": len(portfolios)}


@app.get("/portfolios/{portfolio_id}")
def get_portfolio(portfolio_id: str, user_id: UserDep, portfolio_service: ServiceDep) -> dict[str, object]:
    return serialise(portfolio_service.get_portfolio(user_id, portfolio_id))


@app.patch("/portfolios/{portfolio_id}")
def update_portfolio(
    portfolio_id: str,
    body: PortfolioUpdate,
    user_id: UserDep,
    portfolio_service: ServiceDep,
) -> dict[str, object]:
    portfolio = portfolio_service.update_portfolio(user_id, portfolio_id, body.name, body.currency)
    return serialise(portfolio)


@app.delete("/portfolios/{portfolio_id}")
def delete_portfolio(portfolio_id: str, user_id: UserDep, portfolio_service: ServiceDep) -> dict[str, object]:
    portfolio_service.delete_portfolio(user_id, portfolio_id)
    return {"portfolio_id": portfolio_id, "deleted": True}


@app.post("/portfolios/{portfolio_id}/transactions", status_code=201)
def record_transaction(
    portfolio_id: str,
    body: TransactionCreate,
    user_id: UserDep,
    portfolio_service: ServiceDep,
) -> dict[str, object]:
    transaction = portfolio_service.record_transaction(
        user_id,
        portfolio_id,
        ListingKey(body.isin.upper(), body.exchange_code.upper()),
        body.type,
        body.date,
        body.quantity,
        body.price,
        ticker_symbol=body.ticker_symbol.upper() if body.ticker_symbol else None,
        company_name=body.company_name,
        commission=body.commission,
        currency_code=body.currency,
        amount=body.amount,
        total_amount=body.total_amount,
        tax=body.tax,
        tax_percentage=body.tax_percentage,
        notes=body.notes,
        reference=body.reference,
    )
    return serialise(transaction)


@app.get("/portfolios/{portfolio_id}/transactions")
def list_transactions(
    portfolio_id: str,
    user_id: UserDep,
    portfolio_service: ServiceDep,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
) -> dict[str, object]:
    return serialise(portfolio_service.list_transactions(user_id, portfolio_id, page, limit))


@app.post("/portfolios/{portfolio_id}/import")
def import_transactions(
    portfolio_id: str,
    path: Annotated[str, Query(description="Path to a CSV or Excel ledger on the server")],
    user_id: UserDep,
    portfolio_service: ServiceDep,
) -> dict[str, object]:
    """Import a ledger file and append its transactions to the portfolio."""

    try:
        result = portfolio_service.import_transactions(user_id, portfolio_id, path)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=400, detail=f"Ledger file not found: {exc.filename}") from exc
    return {"portfolio_id": portfolio_id, **result}


@app.get("/portfolios/{portfolio_id}/positions")
def list_positions(
    portfolio_id: str,
    user_id: UserDep,
    portfolio_service: ServiceDep,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    sort_by: Annotated[str, Query(alias="sortBy")] = DEFAULT_SORT_FIELD,
    sort_order: Annotated[str, Query(alias="sortOrder", pattern="^(asc|desc)$")] = "desc",
) -> dict[str, object]:
    result = portfolio_service.positions(user_id, portfolio_id, page, limit, sort_by, sort_order)
    return serialise(result)


@app.get("/portfolios/{portfolio_id}/summary")
def portfolio_summary(portfolio_id: str, user_id: UserDep, portfolio_service: ServiceDep) -> dict[str, object]:
    return serialise(portfolio_service.summary(user_id, portfolio_id))


def get_dividend_filters(
    portfolio_id: Annotated[Optional[str], Query(alias="portfolioId")] = None,
    ticker_symbol: Annotated[Optional[str], Query(alias="stockSymbol")] = None,
    start_year: Annotated[Optional[int], Query(alias="startYear", ge=1900, le=2100)] = None,
    end_year: Annotated[Optional[int], Query(alias="endYear", ge=1900, le=2100)] = None,
) -> DividendFilters:
    if start_year is not None and end_year is not None and end_year < start_year:
        raise HTTPException(status_code=422, detail="End year must be greater than or equal to start year")
    return DividendFilters(portfolio_id, ticker_symbol, start_year, end_year)


FiltersDep = Annotated[DividendFilters, Depends(get_dividend_filters)]


@app.get("/dividends/summary")
def company_dividend_summaries(
    filters: FiltersDep,
    user_id: UserDep,
    portfolio_service: ServiceDep,
) -> dict[str, object]:
    summaries = portfolio_service.company_dividend_summaries(user_id, filters)
    return {"summaries": serialise(summaries), "count": len(summaries)}


@app.get("/dividends/monthly")
def monthly_dividend_overview(
    filters: FiltersDep,
    user_id: UserDep,
    portfolio_service: ServiceDep,
) -> dict[str, object]:
    return serialise(portfolio_service.monthly_dividend_overview(user_id, filters))


@app.get("/portfolios/{portfolio_id}/dividends/yield-comparison")
def holdings_yield_comparison(portfolio_id: str, user_id: UserDep, portfolio_service: ServiceDep) -> dict[str, object]:
    return serialise(portfolio_service.holdings_yield_comparison(user_id, portfolio_id))


@app.get("/portfolios/{portfolio_id}/dividends/info")
def dividend_info(portfolio_id: str, user_id: UserDep, portfolio_service: ServiceDep) -> dict[str, object]:
    return {"dividend_info": serialise(portfolio_service.dividend_info(user_id, portfolio_id))}


@app.get("/portfolios/{portfolio_id}/dividends/projections")
def dividend_projections(portfolio_id: str, user_id: UserDep, portfolio_service: ServiceDep) -> dict[str, object]:
    return serialise(portfolio_service.dividend_projections(user_id, portfolio_id))


@app.post("/fx/refresh")
def refresh_fx_rate(
    base: Annotated[str, Query(pattern=CURRENCY_PATTERN)],
    quote: Annotated[str, Query(pattern=CURRENCY_PATTERN)],
    portfolio_service: ServiceDep,
) -> dict[str, object]:
    rate = portfolio_service.refresh_fx_rate(base.upper(), quote.upper())
    return {
        "base": rate.base,
        "quote": rate.quote,
        "as_of": rate.as_of.isoformat(),
        "rate": rate.rate,
        "source": rate.source,
    }


@app.post("/listings/{isin}/{exchange_code}/price")
def refresh_listing_price(isin: str, exchange_code: str, portfolio_service: ServiceDep) -> dict[str, object]:
    quote = portfolio_service.refresh_listing_price(ListingKey(isin.upper(), exchange_code.upper()))
    if quote is None:
        raise HTTPException(status_code=404, detail="Listing not found.")
    return {
        "listing": serialise(quote.listing),
        "as_of": quote.as_of.isoformat(),
        "price": quote.price,
        "currency": quote.currency,
        "source": quote.source,
    }


@app.get("/settings/display-currency")
def get_display_currency(portfolio_service: ServiceDep) -> dict[str, str]:
    return {"display_currency": portfolio_service.display_currency()}


@app.put("/settings/display-currency")
def set_display_currency(
    currency: Annotated[str, Query(pattern=CURRENCY_PATTERN)],
    portfolio_service: ServiceDep,
) -> dict[str, str]:
    return {"display_currency": portfolio_service.set_display_currency(currency)}
