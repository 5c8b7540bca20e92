"""Fold a portfolio's transaction ledger into open positions."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from .calculations import is_open_quantity, safe_divide
from .models import ListingKey, Position, Transaction, TransactionType


@dataclass(slots=True)
class _Accumulator:
    listing: ListingKey
    quantity: float = 0.0
    net_amount: float = 0.0
    buy_amount: float = 0.0
    buy_quantity: float = 0.0
    currency_code: Optional[str] = None
    last_transaction_date: Optional[datetime] = None

    def add(self, transaction: Transaction) -> None:
        if self.last_transaction_date is None or transaction.occurred_at > self.last_transaction_date:
            self.last_transaction_date = transaction.occurred_at

        quantity = abs(transaction.quantity or 0.0)
        amount = abs(transaction.amount or 0.0)
        if transaction.type is TransactionType.BUY:
            self.quantity += quantity
            self.net_amount += amount
            self.buy_quantity += quantity
            self.buy_amount += amount
            self.currency_code = transaction.currency_code
        elif transaction.type is TransactionType.SELL:
            self.quantity -= quantity
            self.net_amount -= amount
            if self.currency_code is None:
                self.currency_code = transaction.currency_code

    def to_position(self) -> Position:
        # Average cost scaled to what is still held, so partial sells reduce
        # the basis proportionally.
        average_cost = safe_divide(self.buy_amount, self.buy_quantity)
        return Position(
            listing=self.listing,
            current_quantity=self.quantity,
            cost_basis=average_cost * self.quantity,
            currency_code=self.currency_code or "USD",
            last_transaction_date=self.last_transaction_date,
            total_buy_amount=self.buy_amount,
            total_buy_quantity=self.buy_quantity,
            net_amount=self.net_amount,
        )


def aggregate_positions(transactions: Iterable[Transaction]) -> list[Position]:
    """Return the open positions implied by ``transactions``.

    Positions come back in the order their listing first appears in the
    input.  Listings whose net quantity is at or below
    :data:`~dividend_tracker.calculations.EPSILON` are closed and omitted.
    """

    groups: dict[ListingKey, _Accumulator] = {}
    for transaction in transactions:
        accumulator = groups.get(transaction.listing)
        if accumulator is None:
            accumulator = groups[transaction.listing] = _Accumulator(transaction.listing)
        accumulator.add(transaction)

    return [
        accumulator.to_position()
        for accumulator in groups.values()
        if is_open_quantity(accumulator.quantity)
    ]


__all__ = ["aggregate_positions"]
