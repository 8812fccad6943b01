"""Valuation of a portfolio in its reporting currency.

Current weights are derived from market values here. They are kept apart from
the target weights declared on positions; the allocator compares the two.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List

from src.fx.amount import Amount, normalize_currency
from src.fx.rates import RateTable
from src.portfolio.base import Portfolio
from src.utils.logging import get_logger, log_with_context

logger = get_logger(__name__)


@dataclass(frozen=True)
class PositionValue:
    """One position's holding and its value in the reporting currency."""

    position_id: str
    amount: Amount
    value: Decimal


@dataclass(frozen=True)
class Valuation:
    """Per-position values and their total, in ``currency``.

    Attributes:
        currency: Reporting currency of every ``value``
        positions: Values in portfolio declaration order
        total: Sum of all values
    """

    currency: str
    positions: List[PositionValue]
    total: Decimal

    def value_of(self, position_id: str) -> Decimal:
        for entry in self.positions:
            if entry.position_id == position_id:
                return entry.value
        raise KeyError(position_id)

    def current_weight(self, position_id: str) -> Decimal:
        """Value / total, or 0 when the portfolio is worth nothing."""
        if self.total == 0:
            return Decimal(0)
        return self.value_of(position_id) / self.total

    def current_weights(self) -> Dict[str, Decimal]:
        """{position_id: current weight}; empty when the total is zero."""
        if self.total == 0:
            return {}
        return {e.position_id: e.value / self.total for e in self.positions}

    @property
    def is_empty(self) -> bool:
        return self.total == 0


def value_portfolio(
    portfolio: Portfolio,
    reporting_currency: str,
    rate_table: RateTable,
) -> Valuation:
    """Value every position in ``reporting_currency``.

    Args:
        portfolio: Portfolio to value
        reporting_currency: Currency of the result
        rate_table: Rates snapshot

    Returns:
        Valuation with one entry per position, in declaration order

    Raises:
        RateUnavailableError: If any position cannot be converted. No position
            is ever left out of a valuation.
    """
    reporting_currency = normalize_currency(reporting_currency)

    entries = []
    total = Decimal(0)
    for position in portfolio.positions:
        value = rate_table.convert(
            position.amount.value, position.currency, reporting_currency
        )
        entries.append(PositionValue(position.id, position.amount, value))
        total += value

    log_with_context(
        logger,
        "debug",
        "Portfolio valued",
        currency=reporting_currency,
        positions=len(entries),
        total=total,
    )
    return Valuation(currency=reporting_currency, positions=entries, total=total)
