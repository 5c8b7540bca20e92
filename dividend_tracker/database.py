"""SQLite persistence layer for the dividend_tracker backend.

The repository provides a small, well-typed API that hides SQL details from the
rest of the code.  It plays three roles for the analytics core: the
transaction ledger reader, the latest-price lookup and the persisted FX rate
store.  It relies on the standard library :mod:`sqlite3` module.
"""
from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, Optional, Sequence
from uuid import uuid4

from .models import (
    DividendFilters,
    FxRate,
    Listing,
    ListingKey,
    Portfolio,
    Quote,
    Transaction,
    TransactionType,
    ensure_utc,
    utcnow,
)


class SQLiteRepository:
    """Encapsulates all SQLite access for the application."""

    def __init__(self, database_path: Path | str) -> None:
        self._database_path = database_path
        # FastAPI runs sync routes in a thread pool, so the connection is
        # shared across threads.
        self._connection = sqlite3.connect(database_path, check_same_thread=False)
        self._connection.execute("PRAGMA foreign_keys = ON;")
        self._connection.row_factory = sqlite3.Row

    def close(self) -> None:
        """Close the underlying SQLite connection."""

        self._connection.close()

    # ------------------------------------------------------------------
    # Schema management
    # ------------------------------------------------------------------
    def initialise_schema(self) -> None:
        """Create all tables required by the application if they do not exist."""

        cursor = self._connection.cursor()
        cursor.executescript(
            """
            CREATE TABLE IF NOT EXISTS portfolios (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                currency_code TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS listings (
                isin TEXT NOT NULL,
                exchange_code TEXT NOT NULL,
                ticker_symbol TEXT,
                company_name TEXT,
                currency_code TEXT NOT NULL,
                current_price REAL,
                price_updated_at TEXT,
                price_source TEXT,
                dividend_yield REAL,
                PRIMARY KEY (isin, exchange_code)
            );

            CREATE TABLE IF NOT EXISTS transactions (
                id TEXT PRIMARY KEY,
                portfolio_id TEXT NOT NULL REFERENCES portfolios(id) ON DELETE CASCADE,
                listing_isin TEXT NOT NULL,
                listing_exchange_code TEXT NOT NULL,
                type TEXT NOT NULL,
                quantity REAL NOT NULL DEFAULT 0,
                price REAL NOT NULL DEFAULT 0,
                commission REAL NOT NULL DEFAULT 0,
                currency_code TEXT NOT NULL,
                amount REAL NOT NULL DEFAULT 0,
                total_amount REAL NOT NULL DEFAULT 0,
                tax REAL NOT NULL DEFAULT 0,
                tax_percentage REAL NOT NULL DEFAULT 0,
                occurred_at TEXT NOT NULL,
                notes TEXT,
                reference TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_transactions_portfolio
                ON transactions (portfolio_id, occurred_at);

            CREATE TABLE IF NOT EXISTS fx_rates (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                base TEXT NOT NULL,
                quote TEXT NOT NULL,
                as_of TEXT NOT NULL,
                rate REAL NOT NULL,
                source TEXT NOT NULL,
                UNIQUE(base, quote, as_of, source)
            );

            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
            """
        )
        self._connection.commit()

    # ------------------------------------------------------------------
    # Portfolios
    # ------------------------------------------------------------------
    def create_portfolio(self, user_id: str, name: str, currency_code: str, portfolio_id: Optional[str] = None) -> Portfolio:
        portfolio = Portfolio(
            id=portfolio_id or str(uuid4()),
            user_id=user_id,
            name=name,
            currency_code=currency_code.upper(),
        )
        with self._connection:
            self._connection.execute(
                """
                INSERT INTO portfolios (id, user_id, name, currency_code, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (portfolio.id, portfolio.user_id, portfolio.name, portfolio.currency_code, _to_iso(portfolio.created_at)),
            )
        return portfolio

    def get_portfolio(self, user_id: str, portfolio_id: str) -> Optional[Portfolio]:
        """Return the portfolio only when it is owned by ``user_id``."""

        row = self._connection.execute(
            "SELECT * FROM portfolios WHERE id = ? AND user_id = ?",
            (portfolio_id, user_id),
        ).fetchone()
        if row is None:
            return None
        return _row_to_portfolio(row)

    def list_portfolios(self, user_id: str) -> list[Portfolio]:
        rows = self._connection.execute(
            "SELECT * FROM portfolios WHERE user_id = ? ORDER BY created_at",
            (user_id,),
        ).fetchall()
        return [_row_to_portfolio(row) for row in rows]

    def update_portfolio(
        self,
        user_id: str,
        portfolio_id: str,
        name: Optional[str] = None,
        currency_code: Optional[str] = None,
    ) -> Optional[Portfolio]:
        """Rename or re-denominate an owned portfolio; ``None`` if not owned."""

        with self._connection:
            cursor = self._connection.execute(
                """
                UPDATE portfolios
                SET name = COALESCE(?, name), currency_code = COALESCE(?, currency_code)
                WHERE id = ? AND user_id = ?
                """,
                (name, currency_code.upper() if currency_code else None, portfolio_id, user_id),
            )
        if cursor.rowcount == 0:
            return None
        return self.get_portfolio(user_id, portfolio_id)

    def delete_portfolio(self, user_id: str, portfolio_id: str) -> bool:
        """Delete an owned portfolio together with its ledger."""

        with self._connection:
            cursor = self._connection.execute(
                "DELETE FROM portfolios WHERE id = ? AND user_id = ?",
                (portfolio_id, user_id),
            )
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Listings and prices
    # ------------------------------------------------------------------
    def upsert_listings(self, listings: Iterable[Listing]) -> None:
        """Insert listings, filling in descriptive fields on existing rows.

        Prices are left untouched for existing rows; they are owned by
        :meth:`update_listing_price`.
        """

        rows = [
            {
                "isin": listing.key.isin,
                "exchange_code": listing.key.exchange_code,
                "ticker_symbol": listing.ticker_symbol,
                "company_name": listing.company_name,
                "currency_code": listing.currency_code.upper(),
                "current_price": listing.current_price,
                "price_updated_at": _to_iso(listing.price_updated_at),
                "price_source": listing.price_source,
                "dividend_yield": listing.dividend_yield,
            }
            for listing in listings
        ]
        with self._connection:
            self._connection.executemany(
                """
                INSERT INTO listings (
                    isin, exchange_code, ticker_symbol, company_name, currency_code,
                    current_price, price_updated_at, price_source, dividend_yield
                ) VALUES (
                    :isin, :exchange_code, :ticker_symbol, :company_name, :currency_code,
                    :current_price, :price_updated_at, :price_source, :dividend_yield
                )
                ON CONFLICT(isin, exchange_code) DO UPDATE SET
                    ticker_symbol=COALESCE(excluded.ticker_symbol, listings.ticker_symbol),
                    company_name=COALESCE(excluded.company_name, listings.company_name),
                    dividend_yield=COALESCE(excluded.dividend_yield, listings.dividend_yield)
                """,
                rows,
            )

    def get_listing(self, key: ListingKey) -> Optional[Listing]:
        return self.get_listings([key]).get(key)

    def get_listings(self, keys: Optional[Iterable[ListingKey]] = None) -> dict[ListingKey, Listing]:
        """Return listings by key; all listings when ``keys`` is ``None``."""

        rows = self._connection.execute("SELECT * FROM listings").fetchall()
        listings = {_listing_key(row): _row_to_listing(row) for row in rows}
        if keys is None:
            return listings
        return {key: listings[key] for key in keys if key in listings}

    def latest_prices(self, keys: Iterable[ListingKey]) -> dict[ListingKey, Quote]:
        """Return the latest known price for each listing that has one."""

        quotes = {}
        for key, listing in self.get_listings(keys).items():
            if listing.current_price is None:
                continue
            quotes[key] = Quote(
                listing=key,
                price=listing.current_price,
                currency=listing.currency_code,
                as_of=listing.price_updated_at or utcnow(),
                source=listing.price_source or "unknown",
            )
        return quotes

    def latest_price(self, key: ListingKey) -> Optional[Quote]:
        return self.latest_prices([key]).get(key)

    def update_listing_price(self, quote: Quote) -> None:
        with self._connection:
            self._connection.execute(
                """
                UPDATE listings
                SET current_price = ?, currency_code = ?, price_updated_at = ?, price_source = ?
                WHERE isin = ? AND exchange_code = ?
                """,
                (
                    quote.price,
                    quote.currency.upper(),
                    _to_iso(quote.as_of),
                    quote.source,
                    quote.listing.isin,
                    quote.listing.exchange_code,
                ),
            )

    # ------------------------------------------------------------------
    # Transaction ledger
    # ------------------------------------------------------------------
    def insert_transactions(self, transactions: Iterable[Transaction]) -> int:
        """Append transactions to the ledger; returns the number written.

        The batch is atomic: if any row fails nothing is written.
        """

        rows = [
            {
                "id": tx.id,
                "portfolio_id": tx.portfolio_id,
                "listing_isin": tx.listing.isin,
                "listing_exchange_code": tx.listing.exchange_code,
                "type": tx.type.value,
                "quantity": tx.quantity,
                "price": tx.price,
                "commission": tx.commission,
                "currency_code": tx.currency_code.upper(),
                "amount": tx.amount,
                "total_amount": tx.total_amount,
                "tax": tx.tax,
                "tax_percentage": tx.tax_percentage,
                "occurred_at": _to_iso(tx.occurred_at),
                "notes": tx.notes,
                "reference": tx.reference,
            }
            for tx in transactions
        ]
        with self._connection:
            self._connection.executemany(
                """
                INSERT INTO transactions (
                    id, portfolio_id, listing_isin, listing_exchange_code, type,
                    quantity, price, commission, currency_code, amount, total_amount,
                    tax, tax_percentage, occurred_at, notes, reference
                ) VALUES (
                    :id, :portfolio_id, :listing_isin, :listing_exchange_code, :type,
                    :quantity, :price, :commission, :currency_code, :amount, :total_amount,
                    :tax, :tax_percentage, :occurred_at, :notes, :reference
                )
                """,
                rows,
            )
        return len(rows)

    def transactions_for(self, portfolio_id: str) -> list[Transaction]:
        """Return the full ledger of a portfolio in chronological order."""

        rows = self._connection.execute(
            """
            SELECT * FROM transactions
            WHERE portfolio_id = ?
            ORDER BY occurred_at, rowid
            """,
            (portfolio_id,),
        ).fetchall()
        return [_row_to_transaction(row) for row in rows]

    def dividend_transactions_for(
        self,
        user_id: str,
        filters: Optional[DividendFilters] = None,
        include_buys: bool = False,
    ) -> list[Transaction]:
        """Return DIVIDEND (and optionally BUY) transactions of ``user_id``.

        Only transactions belonging to portfolios owned by the user are ever
        returned; the optional filters narrow the result further.
        """

        filters = filters or DividendFilters()
        types: Sequence[str] = [TransactionType.DIVIDEND.value]
        if include_buys:
            types = [TransactionType.DIVIDEND.value, TransactionType.BUY.value]

        conditions = [
            "t.portfolio_id IN (SELECT id FROM portfolios WHERE user_id = ?)",
            f"t.type IN ({', '.join('?' for _ in types)})",
        ]
        params: list[object] = [user_id, *types]

        if filters.portfolio_id:
            conditions.append("t.portfolio_id = ?")
            params.append(filters.portfolio_id)
        if filters.ticker_symbol:
            conditions.append("UPPER(l.ticker_symbol) = ?")
            params.append(filters.ticker_symbol.upper())
        start, end = filters.window()
        if start is not None:
            conditions.append("t.occurred_at >= ?")
            params.append(_to_iso(start))
        if end is not None:
            conditions.append("t.occurred_at <= ?")
            params.append(_to_iso(end))

        rows = self._connection.execute(
            f"""
            SELECT t.* FROM transactions t
            LEFT JOIN listings l
                ON l.isin = t.listing_isin AND l.exchange_code = t.listing_exchange_code
            WHERE {' AND '.join(conditions)}
            ORDER BY t.occurred_at, t.rowid
            """,
            params,
        ).fetchall()
        return [_row_to_transaction(row) for row in rows]

    # ------------------------------------------------------------------
    # FX rates
    # ------------------------------------------------------------------
    def upsert_fx_rates(self, rates: Iterable[FxRate]) -> None:
        rows = [
            {
                "base": rate.base.upper(),
                "quote": rate.quote.upper(),
                "as_of": _to_iso(rate.as_of),
                "rate": rate.rate,
                "source": rate.source,
            }
            for rate in rates
        ]
        with self._connection:
            self._connection.executemany(
                """
                INSERT OR REPLACE INTO fx_rates (base, quote, as_of, rate, source)
                VALUES (:base, :quote, :as_of, :rate, :source)
                """,
                rows,
            )

    def get_latest_fx_rate(self, base: str, quote: str, max_age: Optional[timedelta] = None) -> Optional[float]:
        """Return the most recent stored rate, ignoring rates older than ``max_age``."""

        row = self._connection.execute(
            """
            SELECT rate, as_of
            FROM fx_rates
            WHERE base = ? AND quote = ?
            ORDER BY as_of DESC
            LIMIT 1
            """,
            (base.upper(), quote.upper()),
        ).fetchone()
        if row is None:
            return None
        if max_age is not None and utcnow() - _from_iso(row["as_of"]) > max_age:
            return None
        return float(row["rate"])

    # ------------------------------------------------------------------
    # Settings helpers
    # ------------------------------------------------------------------
    def set_setting(self, key: str, value: str) -> None:
        with self._connection:
            self._connection.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (key, value),
            )

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        row = self._connection.execute(
            "SELECT value FROM settings WHERE key = ?",
            (key,),
        ).fetchone()
        if row is None:
            return default
        return str(row["value"])


# Timestamps are stored as UTC ISO-8601 strings so they sort lexically.
def _to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="microseconds")


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def _listing_key(row: sqlite3.Row) -> ListingKey:
    return ListingKey(row["isin"], row["exchange_code"])


def _row_to_listing(row: sqlite3.Row) -> Listing:
    return Listing(
        key=_listing_key(row),
        ticker_symbol=row["ticker_symbol"],
        company_name=row["company_name"],
        currency_code=row["currency_code"],
        current_price=row["current_price"],
        price_updated_at=_from_iso(row["price_updated_at"]),
        price_source=row["price_source"],
        dividend_yield=row["dividend_yield"],
    )


def _row_to_portfolio(row: sqlite3.Row) -> Portfolio:
    return Portfolio(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        currency_code=row["currency_code"],
        created_at=_from_iso(row["created_at"]),
    )


def _row_to_transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        portfolio_id=row["portfolio_id"],
        listing=ListingKey(row["listing_isin"], row["listing_exchange_code"]),
        type=TransactionType(row["type"]),
        quantity=row["quantity"],
        price=row["price"],
        commission=row["commission"],
        currency_code=row["currency_code"],
        amount=row["amount"],
        total_amount=row["total_amount"],
        tax=row["tax"],
        tax_percentage=row["tax_percentage"],
        occurred_at=_from_iso(row["occurred_at"]),
        notes=row["notes"],
        reference=row["reference"],
    )
