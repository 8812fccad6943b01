"""Currency conversion against a snapshot rate table.

A RateTable is built once per command and never updated while a computation
runs. Lookups try the direct pair first, then the inverse pair; there is no
silent fallback when neither is present.
"""

from decimal import Decimal
from typing import Dict, Iterable, Mapping, Optional, Tuple

from src.fx.amount import Number, normalize_currency, to_decimal
from src.utils.exceptions import RateUnavailableError
from src.utils.logging import get_logger

logger = get_logger(__name__)

Pair = Tuple[str, str]


class RateTable:
    """Mapping of currency pair to conversion factor.

    ``rates[("EUR", "PLN")] = Decimal("4.30")`` means one EUR buys 4.30 PLN.

    Example:
        >>> table = RateTable({("EUR", "PLN"): "4.30"})
        >>> table.convert(Decimal("10"), "EUR", "PLN")
        Decimal('43.00')
        >>> table.convert(Decimal("43.00"), "PLN", "EUR")
        Decimal('10')
    """

    def __init__(self, rates: Optional[Mapping[Pair, Number]] = None):
        self._rates: Dict[Pair, Decimal] = {}
        for (from_currency, to_currency), rate in (rates or {}).items():
            self.add(from_currency, to_currency, rate)

    def add(self, from_currency: str, to_currency: str, rate: Number) -> None:
        """Register a direct rate.

        Raises:
            ValueError: If the rate is not positive
        """
        rate = to_decimal(rate)
        if rate <= 0:
            raise ValueError(
                f"Rate {from_currency}->{to_currency} must be positive, got {rate}"
            )
        pair = (normalize_currency(from_currency), normalize_currency(to_currency))
        self._rates[pair] = rate

    @classmethod
    def from_base_rates(cls, base: str, mids: Mapping[str, Number]) -> "RateTable":
        """Build a table from quotes against a single base currency.

        Each quote says how many units of ``base`` one unit of the currency
        costs (e.g. NBP mid rates against PLN). Every currency gets a pair with
        the base and a cross pair with every other quoted currency.

        Args:
            base: The quote currency (e.g. "PLN")
            mids: {currency: price in base}

        Returns:
            RateTable covering all quoted currencies and the base
        """
        base = normalize_currency(base)
        quotes = {normalize_currency(c): to_decimal(m) for c, m in mids.items()}
        quotes.pop(base, None)

        table = cls()
        for currency, mid in quotes.items():
            table.add(currency, base, mid)
        for from_currency, from_mid in quotes.items():
            for to_currency, to_mid in quotes.items():
                if from_currency != to_currency:
                    table.add(from_currency, to_currency, from_mid / to_mid)
        return table

    def rate(self, from_currency: str, to_currency: str) -> Decimal:
        """Return the factor converting ``from_currency`` into ``to_currency``.

        Raises:
            RateUnavailableError: If neither direction is known
        """
        from_currency = normalize_currency(from_currency)
        to_currency = normalize_currency(to_currency)

        if from_currency == to_currency:
            return Decimal(1)

        direct = self._rates.get((from_currency, to_currency))
        if direct is not None:
            return direct

        inverse = self._rates.get((to_currency, from_currency))
        if inverse is not None:
            return Decimal(1) / inverse

        raise RateUnavailableError(from_currency, to_currency)

    def convert(self, amount: Number, from_currency: str, to_currency: str) -> Decimal:
        """Convert ``amount`` between currencies.

        Same-currency conversion returns the input unchanged.

        Raises:
            RateUnavailableError: If neither direction is known
        """
        amount = to_decimal(amount)
        from_currency = normalize_currency(from_currency)
        to_currency = normalize_currency(to_currency)

        if from_currency == to_currency:
            return amount

        direct = self._rates.get((from_currency, to_currency))
        if direct is not None:
            return amount * direct

        # Divide by the stored inverse rather than multiply by its reciprocal
        inverse = self._rates.get((to_currency, from_currency))
        if inverse is not None:
            return amount / inverse

        raise RateUnavailableError(from_currency, to_currency)

    def currencies(self) -> set[str]:
        """All currencies appearing in any pair."""
        return {c for pair in self._rates for c in pair}

    def pairs(self) -> Iterable[Pair]:
        return self._rates.keys()

    def __contains__(self, pair: Pair) -> bool:
        try:
            self.rate(*pair)
        except RateUnavailableError:
            return False
        return True

    def __len__(self) -> int:
        return len(self._rates)

    def __repr__(self) -> str:
        return f"RateTable({len(self._rates)} pairs)"


def convert(
    amount: Number,
    from_currency: str,
    to_currency: str,
    rate_table: RateTable,
) -> Decimal:
    """Convert ``amount`` using ``rate_table``; see RateTable.convert."""
    return rate_table.convert(amount, from_currency, to_currency)
