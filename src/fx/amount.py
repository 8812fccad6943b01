"""Monetary amount value type.

Amounts carry full Decimal precision through the whole pipeline. Rounding to
minor units happens only when a value is presented (see Amount.rounded).
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

MINOR_UNIT = Decimal("0.01")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """Convert a number to Decimal.

    Floats go through ``str`` so that ``0.1`` becomes ``Decimal("0.1")`` rather
    than its binary expansion.

    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValueError(f"Not a monetary value: {value!r}")
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as e:
            raise ValueError(f"Not a monetary value: {value!r}") from e
    else:
        raise ValueError(f"Not a monetary value: {value!r}")

    if not result.is_finite():
        raise ValueError(f"Monetary value must be finite, got {value!r}")
    return result


def normalize_currency(code: str) -> str:
    """Return an upper-case currency code.

    Raises:
        ValueError: If the code is empty or not alphabetic
    """
    if not isinstance(code, str):
        raise ValueError(f"Currency code must be a string, got {code!r}")
    normalized = code.strip().upper()
    if not normalized or not normalized.isalpha():
        raise ValueError(f"Invalid currency code: {code!r}")
    return normalized


@dataclass(frozen=True)
class Amount:
    """A value in a single currency.

    Attributes:
        currency: Upper-case currency code (e.g. "USD")
        value: Decimal value, never rounded by arithmetic
    """

    currency: str
    value: Decimal

    def __post_init__(self):
        object.__setattr__(self, "currency", normalize_currency(self.currency))
        object.__setattr__(self, "value", to_decimal(self.value))

    @classmethod
    def zero(cls, currency: str) -> "Amount":
        return cls(currency, Decimal(0))

    def __add__(self, other: "Amount") -> "Amount":
        self._check_same_currency(other)
        return Amount(self.currency, self.value + other.value)

    def __sub__(self, other: "Amount") -> "Amount":
        self._check_same_currency(other)
        return Amount(self.currency, self.value - other.value)

    def _check_same_currency(self, other: "Amount") -> None:
        if not isinstance(other, Amount):
            raise TypeError(f"Cannot combine Amount with {type(other).__name__}")
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot combine amounts with different currencies: "
                f"{self.currency} != {other.currency}"
            )

    def rounded(self) -> Decimal:
        """Value rounded half-up to minor units, for display."""
        return self.value.quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)

    def __str__(self) -> str:
        return f"{self.rounded():,.2f} {self.currency}"
