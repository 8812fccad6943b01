"""Group-level totals of an allocation.

Groups are reported in declaration order. A group with a settlement currency
gets a single total in that currency. A group without one gets a total per
currency its positions use, so no lossy conversion is forced on it.
"""

from decimal import Decimal
from typing import Dict, List, Sequence

from src.fx.amount import Amount
from src.fx.rates import RateTable
from src.portfolio.base import GroupTotal, Portfolio, PositionDelta
from src.utils.exceptions import MalformedPortfolioError
from src.utils.logging import get_logger

logger = get_logger(__name__)


def aggregate_by_group(
    deltas: Sequence[PositionDelta],
    portfolio: Portfolio,
    rate_table: RateTable,
) -> List[GroupTotal]:
    """Sum position deltas per group.

    Args:
        deltas: Allocator output, deltas in native position currency
        portfolio: Supplies groups and their order
        rate_table: Rates for conversion into settlement currencies

    Returns:
        GroupTotals ordered by group, then by first currency appearance

    Raises:
        MalformedPortfolioError: If a grouped position has no delta
        RateUnavailableError: If a settlement conversion is impossible
    """
    by_position = {d.position_id: d for d in deltas}
    totals: List[GroupTotal] = []

    for group in portfolio.groups:
        missing = [pid for pid in group.position_ids if pid not in by_position]
        if missing:
            raise MalformedPortfolioError(
                f"No allocation for positions of group {group.id}: {', '.join(missing)}"
            )

        if group.currency is not None:
            total = Decimal(0)
            for pid in group.position_ids:
                delta = by_position[pid].delta
                total += rate_table.convert(delta.value, delta.currency, group.currency)
            totals.append(GroupTotal(group.id, Amount(group.currency, total)))
            continue

        per_currency: Dict[str, Decimal] = {}
        for pid in group.position_ids:
            delta = by_position[pid].delta
            per_currency[delta.currency] = (
                per_currency.get(delta.currency, Decimal(0)) + delta.value
            )
        for currency, total in per_currency.items():
            totals.append(GroupTotal(group.id, Amount(currency, total)))

    logger.debug("Aggregated %d group totals", len(totals))
    return totals
