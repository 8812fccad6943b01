"""Rebalancing allocator: where should new money go.

The allocator only ever recommends additions. It moves the portfolio as close
to its target weights as the new money allows, without suggesting any sale.

Algorithm (all amounts in the reporting currency):
1. Normalize target weights so they sum to 1
2. new_total = current total + investment
3. raw delta = weight * new_total - current value
4. Clamp negative raw deltas to zero (over-target positions get nothing)
5. The positive raw deltas add up to more than the investment; remove the
   surplus from the unclamped positions in proportion to their target weights.
   A position pushed below zero by the removal is clamped too and the removal
   is repeated over the remaining positions.
6. Convert each delta into the position's own currency

An empty portfolio (total value 0) is allocated purely by target weight. If
no position is under target, the investment is also split by target weight.
"""

from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence

from src.fx.amount import Amount, Number, normalize_currency, to_decimal
from src.fx.rates import RateTable
from src.portfolio.base import PositionDelta
from src.portfolio.valuation import Valuation
from src.utils.exceptions import InvalidInvestmentAmountError, MalformedPortfolioError
from src.utils.logging import get_logger, log_with_context

logger = get_logger(__name__)


class RebalancingAllocator:
    """Additions-only allocator against target weights.

    Example:
        >>> allocator = RebalancingAllocator()
        >>> deltas = allocator.allocate(
        ...     valuation,
        ...     {"a": Decimal("0.5"), "b": Decimal("0.3"), "c": Decimal("0.2")},
        ...     Decimal("100"), "USD", rates,
        ... )
        >>> [d.delta.value for d in deltas]
        [Decimal('100'), Decimal('0'), Decimal('0')]
    """

    def allocate(
        self,
        valuation: Valuation,
        target_weights: Mapping[str, Number],
        investment_amount: Number,
        investment_currency: str,
        rate_table: RateTable,
        reporting_currency: Optional[str] = None,
    ) -> List[PositionDelta]:
        """Compute the addition to every position.

        Args:
            valuation: Current values in the reporting currency
            target_weights: {position_id: weight}; need not sum to 1.
                Positions missing from the mapping have weight 0.
            investment_amount: New money to invest, must be positive
            investment_currency: Currency of ``investment_amount``
            rate_table: Rates snapshot
            reporting_currency: Currency of the computation; defaults to the
                valuation currency and must match it if given

        Returns:
            One PositionDelta per valued position, in valuation order, with
            the delta in the position's native currency

        Raises:
            InvalidInvestmentAmountError: If the amount is zero or negative
            MalformedPortfolioError: If weights are negative, sum to zero or
                name unknown positions
            RateUnavailableError: If a needed rate is missing
        """
        investment_amount = to_decimal(investment_amount)
        if investment_amount <= 0:
            raise InvalidInvestmentAmountError(investment_amount)

        reporting_currency = normalize_currency(reporting_currency or valuation.currency)
        if reporting_currency != valuation.currency:
            raise ValueError(
                f"Valuation is in {valuation.currency}, not {reporting_currency}"
            )

        position_ids = [entry.position_id for entry in valuation.positions]
        weights = self.normalize_weights(target_weights, position_ids)
        investment = rate_table.convert(
            investment_amount, investment_currency, reporting_currency
        )

        values = {entry.position_id: entry.value for entry in valuation.positions}
        deltas = self.distribute(values, weights, investment, valuation.total)

        log_with_context(
            logger,
            "info",
            "Allocation computed",
            investment=f"{investment_amount} {normalize_currency(investment_currency)}",
            reporting=f"{investment} {reporting_currency}",
            positions=len(deltas),
        )

        result = []
        for entry in valuation.positions:
            native_currency = entry.amount.currency
            native_delta = rate_table.convert(
                deltas[entry.position_id], reporting_currency, native_currency
            )
            delta = Amount(native_currency, native_delta)
            result.append(
                PositionDelta(
                    position_id=entry.position_id,
                    delta=delta,
                    resulting=entry.amount + delta,
                )
            )
        return result

    def normalize_weights(
        self,
        target_weights: Mapping[str, Number],
        position_ids: Sequence[str],
    ) -> Dict[str, Decimal]:
        """Scale weights so they sum to 1 over ``position_ids``.

        Raises:
            MalformedPortfolioError: On unknown ids, negative weights or a
                non-positive sum
        """
        unknown = sorted(set(target_weights) - set(position_ids))
        if unknown:
            raise MalformedPortfolioError(
                f"Target weights reference undefined positions: {', '.join(unknown)}"
            )

        weights = {pid: to_decimal(target_weights.get(pid, 0)) for pid in position_ids}
        negative = [pid for pid, w in weights.items() if w < 0]
        if negative:
            raise MalformedPortfolioError(
                f"Negative target weights for: {', '.join(negative)}"
            )

        weight_sum = sum(weights.values(), Decimal(0))
        if weight_sum <= 0:
            raise MalformedPortfolioError("Target weights sum to zero")

        if weight_sum != 1:
            logger.debug("Normalizing target weights (sum=%s)", weight_sum)
        return {pid: w / weight_sum for pid, w in weights.items()}

    def distribute(
        self,
        values: Mapping[str, Decimal],
        weights: Mapping[str, Decimal],
        investment: Decimal,
        total: Decimal,
    ) -> Dict[str, Decimal]:
        """Split ``investment`` over positions; all inputs in one currency.

        Args:
            values: Current value per position
            weights: Normalized target weights per position
            investment: Amount to split, positive
            total: Current total value

        Returns:
            {position_id: delta}, every delta >= 0, summing to ``investment``
        """
        if total == 0:
            logger.debug("Empty portfolio; allocating by target weight")
            return self._by_weight(weights, investment)

        new_total = total + investment
        raw = {pid: weights[pid] * new_total - values[pid] for pid in weights}
        active = [pid for pid in weights if raw[pid] > 0]

        if not active:
            logger.warning(
                "Every position is at or above target; allocating by target weight"
            )
            return self._by_weight(weights, investment)

        while True:
            active_weight = sum((weights[pid] for pid in active), Decimal(0))
            surplus = sum((raw[pid] for pid in active), Decimal(0)) - investment

            deltas = {pid: Decimal(0) for pid in weights}
            for pid in active:
                deltas[pid] = raw[pid] - surplus * weights[pid] / active_weight

            clamped = [pid for pid in active if deltas[pid] < 0]
            if not clamped:
                break
            logger.debug("Clamping after redistribution: %s", ", ".join(clamped))
            active = [pid for pid in active if deltas[pid] >= 0]

        return self._settle(deltas, investment)

    def _by_weight(
        self, weights: Mapping[str, Decimal], investment: Decimal
    ) -> Dict[str, Decimal]:
        deltas = {pid: weight * investment for pid, weight in weights.items()}
        return self._settle(deltas, investment)

    @staticmethod
    def _settle(deltas: Dict[str, Decimal], investment: Decimal) -> Dict[str, Decimal]:
        """Give any division residue to the largest delta."""
        residue = investment - sum(deltas.values(), Decimal(0))
        if residue and deltas:
            largest = max(deltas, key=lambda pid: deltas[pid])
            deltas[largest] += residue
        return deltas


def allocate(
    valuation: Valuation,
    target_weights: Mapping[str, Number],
    investment_amount: Number,
    investment_currency: str,
    rate_table: RateTable,
    reporting_currency: Optional[str] = None,
) -> List[PositionDelta]:
    """Compute per-position additions; see RebalancingAllocator.allocate."""
    return RebalancingAllocator().allocate(
        valuation,
        target_weights,
        investment_amount,
        investment_currency,
        rate_table,
        reporting_currency,
    )
