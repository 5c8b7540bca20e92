"""Runtime settings for the dividend tracker.

Everything environment-dependent is read here, once, by :func:`load_config`
and passed around as an immutable :class:`AppConfig`.  Values may also come
from a ``.env`` file in the working directory.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_ALPHA_VANTAGE_ENDPOINT = "https://www.alphavantage.co/query"
DEFAULT_DISPLAY_CURRENCY = "USD"


@dataclass(frozen=True)
class AppConfig:
    """Settings shared by the repository, market data client and API.

    Attributes:
        project_root: Checkout directory; default file locations hang off it.
        database_file: SQLite file holding portfolios, listings, the
            transaction ledger, FX rates and user settings.
        alpha_vantage_key: Alpha Vantage API key. Without it live FX rates and
            quotes cannot be fetched and lookups fail with a 503.
        alpha_vantage_endpoint: Base URL of the Alpha Vantage REST API.
        display_currency: Fallback currency for user-wide dividend analytics
            until the user stores a preference.
        fx_cache_ttl_seconds: How long a resolved rate stays in memory.
        fx_max_age_hours: Stored rates older than this are refetched.
        http_timeout_seconds: Timeout applied to every outbound request.
        log_level: Root logging level name, e.g. ``INFO``.
    """

    project_root: Path
    database_file: Path
    alpha_vantage_key: Optional[str]
    alpha_vantage_endpoint: str
    display_currency: str
    fx_cache_ttl_seconds: float
    fx_max_age_hours: float
    http_timeout_seconds: float
    log_level: str


def load_config() -> AppConfig:
    """Build an :class:`AppConfig` from ``DIVIDEND_TRACKER_*`` variables.

    Raises:
        ValueError: if a numeric setting is not a positive number.
    """

    project_root = Path(__file__).resolve().parent.parent
    database_file = Path(getenv_with_default("DIVIDEND_TRACKER_DB_FILE", project_root / "dividend_tracker.db"))
    database_file.parent.mkdir(parents=True, exist_ok=True)

    return AppConfig(
        project_root=project_root,
        database_file=database_file,
        alpha_vantage_key=getenv_with_default("ALPHAVANTAGE_API_KEY") or None,
        alpha_vantage_endpoint=getenv_with_default("ALPHAVANTAGE_ENDPOINT", DEFAULT_ALPHA_VANTAGE_ENDPOINT),
        display_currency=getenv_with_default("DIVIDEND_TRACKER_DISPLAY_CURRENCY", DEFAULT_DISPLAY_CURRENCY).upper(),
        fx_cache_ttl_seconds=_positive_float("DIVIDEND_TRACKER_FX_CACHE_TTL", 300),
        fx_max_age_hours=_positive_float("DIVIDEND_TRACKER_FX_MAX_AGE", 24),
        http_timeout_seconds=_positive_float("DIVIDEND_TRACKER_HTTP_TIMEOUT", 10),
        log_level=getenv_with_default("DIVIDEND_TRACKER_LOG_LEVEL", "INFO").upper(),
    )


def getenv_with_default(name: str, default: Optional[Path | str] = None) -> Optional[str]:
    """Return ``$name`` if set, else ``default`` as a string (or ``None``)."""

    value = os.getenv(name)
    if value is not None:
        return value
    if default is None:
        return None
    return str(default)


def _positive_float(name: str, default: float) -> float:
    raw = getenv_with_default(name, str(default))
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value
