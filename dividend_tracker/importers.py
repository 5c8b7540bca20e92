"""CSV / Excel importers for brokerage transaction ledgers."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Iterator

import pandas as pd
from dateutil import parser as date_parser

from .models import Listing, ListingKey, Transaction, TransactionType

logger = logging.getLogger(__name__)

# Aliases accepted for the transaction type column.
TYPE_ALIASES = {
    "BUY": TransactionType.BUY,
    "PURCHASE": TransactionType.BUY,
    "SELL": TransactionType.SELL,
    "SALE": TransactionType.SELL,
    "DIVIDEND": TransactionType.DIVIDEND,
    "DIV": TransactionType.DIVIDEND,
    "TAX": TransactionType.TAX,
    "WITHHOLDING": TransactionType.TAX,
    "SPLIT": TransactionType.SPLIT,
}


@dataclass(slots=True)
class ImportResult:
    """Transactions and listings read from a ledger file."""

    transactions: list[Transaction] = field(default_factory=list)
    listings: dict[ListingKey, Listing] = field(default_factory=dict)
    skipped_rows: list[int] = field(default_factory=list)


class TransactionImporter:
    """Load a ledger exported as CSV or Excel.

    Expected columns (case-insensitive): ``isin``, ``exchange_code``,
    ``type``, ``date`` and ``quantity``; optionally ``ticker``,
    ``company_name``, ``price``, ``commission``, ``currency``, ``amount``,
    ``total_amount``, ``tax``, ``tax_percentage``, ``notes`` and
    ``reference``.  Missing gross amounts are derived from quantity and price.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self, portfolio_id: str, default_currency: str = "USD") -> ImportResult:
        result = ImportResult()
        for index, row in self._iter_rows(self._load_frame()):
            transaction = self._parse_row(row, portfolio_id, default_currency)
            if transaction is None:
                logger.warning("Skipping unreadable ledger row %s in %s", index, self.path.name)
                result.skipped_rows.append(index)
                continue
            result.transactions.append(transaction)
            if transaction.listing not in result.listings:
                result.listings[transaction.listing] = Listing(
                    key=transaction.listing,
                    ticker_symbol=_clean_string(row.get("ticker")) or None,
                    company_name=_clean_string(row.get("company_name")) or None,
                    currency_code=transaction.currency_code,
                )
        logger.info(
            "Loaded %d transactions (%d skipped) from %s",
            len(result.transactions),
            len(result.skipped_rows),
            self.path.name,
        )
        return result

    def _load_frame(self) -> pd.DataFrame:
        """Read the file into a :class:`~pandas.DataFrame` of strings."""

        if self.path.suffix.lower() in {".xlsx", ".xls"}:
            dataframe = pd.read_excel(self.path, dtype=str)
        else:
            dataframe = pd.read_csv(self.path, dtype=str)
        dataframe.columns = [str(column).strip().lower() for column in dataframe.columns]
        return dataframe

    @staticmethod
    def _iter_rows(dataframe: pd.DataFrame) -> Iterator[tuple[int, dict[str, object]]]:
        for index, row in dataframe.iterrows():
            yield int(index), row.fillna("").to_dict()

    @staticmethod
    def _parse_row(row: dict[str, object], portfolio_id: str, default_currency: str) -> Transaction | None:
        isin = _clean_string(row.get("isin")).upper()
        exchange_code = _clean_string(row.get("exchange_code")).upper()
        tx_type = TYPE_ALIASES.get(_clean_string(row.get("type")).upper())
        occurred_at = _parse_datetime(row.get("date"))
        if not isin or not exchange_code or tx_type is None or occurred_at is None:
            return None

        quantity = abs(_parse_decimal(row.get("quantity")) or 0.0)
        price = _parse_decimal(row.get("price")) or 0.0
        commission = _parse_decimal(row.get("commission")) or 0.0
        tax = _parse_decimal(row.get("tax")) or 0.0
        amount, total_amount = derive_amounts(
            tx_type,
            quantity,
            price,
            commission,
            tax,
            _parse_decimal(row.get("amount")),
            _parse_decimal(row.get("total_amount")),
        )

        return Transaction(
            portfolio_id=portfolio_id,
            listing=ListingKey(isin, exchange_code),
            type=tx_type,
            occurred_at=occurred_at,
            quantity=quantity,
            price=price,
            commission=commission,
            currency_code=(_clean_string(row.get("currency")) or default_currency).upper(),
            amount=amount,
            total_amount=total_amount,
            tax=tax,
            tax_percentage=_parse_decimal(row.get("tax_percentage")) or 0.0,
            notes=_clean_string(row.get("notes")) or None,
            reference=_clean_string(row.get("reference")) or None,
        )


# ---------------------------------------------------------------------------
# Helper utilities
# ---------------------------------------------------------------------------

def derive_amounts(
    tx_type: TransactionType,
    quantity: float,
    price: float,
    commission: float = 0.0,
    tax: float = 0.0,
    amount: float | None = None,
    total_amount: float | None = None,
) -> tuple[float, float]:
    """Return (gross, net) amounts, deriving whichever one is missing.

    The gross amount defaults to ``quantity * price``. The net amount adds the
    commission for purchases and subtracts commission and tax otherwise.
    """

    gross = abs(quantity * price if amount is None else amount)
    if total_amount is not None:
        return gross, total_amount
    if tx_type is TransactionType.BUY:
        return gross, gross + commission
    return gross, gross - commission - tax


def _clean_string(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _parse_decimal(value: object) -> float | None:
    if value is None:
        return None
    stringified = str(value).strip()
    if not stringified:
        return None
    normalised = stringified.replace("'", "").replace(" ", "").replace(",", ".")
    try:
        return float(Decimal(normalised))
    except (InvalidOperation, ValueError):
        return None


def _parse_datetime(value: object) -> datetime | None:
    if value is None:
        return None
    stringified = str(value).strip()
    if not stringified or stringified in {"NaT", "nan"}:
        return None
    try:
        return date_parser.parse(stringified)
    except (ValueError, OverflowError):
        return None
