"""Roll valued positions up into whole-portfolio totals."""
from __future__ import annotations

from typing import Sequence

from .calculations import is_open_quantity, percentage
from .models import PortfolioSummary, ValuedPosition


def summarize_portfolio(positions: Sequence[ValuedPosition], total_dividends: float = 0.0) -> PortfolioSummary:
    """Sum display-currency figures across open positions.

    ``total_dividends`` is the all-time dividend sum of the portfolio, already
    converted into the display currency by the caller.
    """

    open_positions = [position for position in positions if is_open_quantity(position.current_quantity)]
    total_value = sum(position.market_value for position in open_positions)
    total_cost = sum(position.cost_basis for position in open_positions)
    total_gain = total_value - total_cost
    return PortfolioSummary(
        total_value=total_value,
        total_cost=total_cost,
        total_gain=total_gain,
        total_gain_percent=percentage(total_gain, total_cost),
        position_count=len(open_positions),
        total_dividends=total_dividends,
    )


__all__ = ["summarize_portfolio"]
