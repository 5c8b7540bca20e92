"""Domain errors raised by the dividend_tracker core and its adapters."""
from __future__ import annotations


class DividendTrackerError(Exception):
    """Base class for every error raised by the application."""


class PortfolioNotFound(DividendTrackerError):
    """The portfolio does not exist or is not owned by the caller."""

    def __init__(self, portfolio_id: str) -> None:
        super().__init__(f"Portfolio {portfolio_id} not found or access denied.")
        self.portfolio_id = portfolio_id


class RateUnavailable(DividendTrackerError):
    """No FX rate could be obtained for a currency pair."""

    def __init__(self, base: str, quote: str, reason: str | None = None) -> None:
        message = f"FX rate {base}->{quote} unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.base = base
        self.quote = quote


class PriceUnavailable(DividendTrackerError):
    """No market price could be obtained for a symbol."""

    def __init__(self, symbol: str, reason: str | None = None) -> None:
        message = f"Price for {symbol} unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.symbol = symbol


__all__ = [
    "DividendTrackerError",
    "PortfolioNotFound",
    "RateUnavailable",
    "PriceUnavailable",
]
