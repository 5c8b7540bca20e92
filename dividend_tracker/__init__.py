"""Dividend portfolio tracker: position, valuation and dividend analytics."""

__version__ = "0.1.0"
