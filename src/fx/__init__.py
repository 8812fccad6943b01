"""Currency layer.

Components:
- Amount: Decimal value tagged with a currency code
- RateTable: Snapshot of pair rates with direct/inverse lookup
- RateSource: Abstract supplier of RateTables (static config, NBP)
"""

from src.fx.amount import Amount, normalize_currency, to_decimal
from src.fx.rates import RateTable, convert
from src.fx.sources import NbpRateSource, RateSource, StaticRateSource

__all__ = [
    "Amount",
    "RateTable",
    "RateSource",
    "StaticRateSource",
    "NbpRateSource",
    "convert",
    "normalize_currency",
    "to_decimal",
]
