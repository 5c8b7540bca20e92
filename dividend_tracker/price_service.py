"""Market data helpers for the dividend_tracker backend."""
from __future__ import annotations

import logging

import requests

from .config import AppConfig
from .errors import PriceUnavailable, RateUnavailable
from .models import FxRate, ListingKey, Quote, utcnow

logger = logging.getLogger(__name__)


class PriceService:
    """Fetch live FX rates and quotes from Alpha Vantage.

    Every call is bounded by :attr:`AppConfig.http_timeout_seconds`.  Failures
    are raised as :class:`RateUnavailable` / :class:`PriceUnavailable` so the
    callers never mistake a missing value for a real one.
    """

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    def _query(self, params: dict[str, str]) -> dict:
        params = {**params, "apikey": self._config.alpha_vantage_key}
        response = requests.get(
            self._config.alpha_vantage_endpoint,
            params=params,
            timeout=self._config.http_timeout_seconds,
        )
        response.raise_for_status()
        return response.json()

    # ------------------------------------------------------------------
    # FX utilities
    # ------------------------------------------------------------------
    def fetch_fx_rate(self, base: str, quote: str) -> FxRate:
        """Return the latest FX rate between two currencies.

        Raises:
            RateUnavailable: when the API key is missing, the request fails or
                times out, or the payload does not contain a usable rate.
        """

        base, quote = base.upper(), quote.upper()
        if not self._config.alpha_vantage_key:
            raise RateUnavailable(base, quote, "Alpha Vantage API key is not configured")

        try:
            payload = self._query(
                {
                    "function": "CURRENCY_EXCHANGE_RATE",
                    "from_currency": base,
                    "to_currency": quote,
                }
            )
        except (requests.RequestException, ValueError) as exc:
            logger.error("FX request %s->%s failed: %s", base, quote, exc)
            raise RateUnavailable(base, quote, str(exc)) from exc

        body = payload.get("Realtime Currency Exchange Rate")
        if not body or body.get("5. Exchange Rate") is None:
            raise RateUnavailable(base, quote, _api_message(payload))
        try:
            rate = float(body["5. Exchange Rate"])
        except ValueError as exc:
            raise RateUnavailable(base, quote, "malformed exchange rate") from exc
        if rate <= 0:
            raise RateUnavailable(base, quote, f"non-positive rate {rate}")

        logger.info("Fetched FX rate %s->%s: %s", base, quote, rate)
        return FxRate(base=base, quote=quote, as_of=utcnow(), rate=rate, source="alpha_vantage")

    # ------------------------------------------------------------------
    # Equity quotes
    # ------------------------------------------------------------------
    def fetch_equity_quote(self, listing: ListingKey, symbol: str) -> Quote:
        """Return the current price for ``symbol`` attributed to ``listing``.

        Prices quoted in British pence (``GBp`` / ``GBX``) are normalised to
        pounds.
        """

        if not self._config.alpha_vantage_key:
            raise PriceUnavailable(symbol, "Alpha Vantage API key is not configured")

        try:
            payload = self._query({"function": "GLOBAL_QUOTE", "symbol": symbol})
        except (requests.RequestException, ValueError) as exc:
            logger.error("Quote request for %s failed: %s", symbol, exc)
            raise PriceUnavailable(symbol, str(exc)) from exc

        quote_section = payload.get("Global Quote")
        if not quote_section or quote_section.get("05. price") is None:
            raise PriceUnavailable(symbol, _api_message(payload))
        try:
            price = float(quote_section["05. price"])
        except ValueError as exc:
            raise PriceUnavailable(symbol, "malformed price") from exc

        currency = quote_section.get("08. currency", "USD")
        if currency in {"GBp", "GBX"}:
            currency = "GBP"
            price = price / 100
        logger.info("Fetched price for %s: %s %s", symbol, price, currency)
        return Quote(
            listing=listing,
            price=price,
            currency=currency.upper(),
            as_of=utcnow(),
            source="alpha_vantage",
        )


def _api_message(payload: dict) -> str:
    # Alpha Vantage reports throttling and bad symbols in these keys.
    return payload.get("Information") or payload.get("Note") or payload.get("Error Message") or "unexpected payload"
