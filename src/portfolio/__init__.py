"""Portfolio Layer.

Turns a declared portfolio and a sum of new money into per-position and
per-group additions.

Components:
- Portfolio / Group / Position: Frozen data model
- value_portfolio: Values in the reporting currency and current weights
- RebalancingAllocator: Additions-only allocation against target weights
- aggregate_by_group: Group totals in settlement currencies
- load_portfolio: YAML portfolio store
"""

from src.portfolio.allocator import RebalancingAllocator, allocate
from src.portfolio.base import (
    AllocationResult,
    BrokerLink,
    Group,
    GroupTotal,
    Portfolio,
    Position,
    PositionDelta,
)
from src.portfolio.grouping import aggregate_by_group
from src.portfolio.loader import load_portfolio, save_credential
from src.portfolio.valuation import PositionValue, Valuation, value_portfolio

__all__ = [
    "AllocationResult",
    "BrokerLink",
    "Group",
    "GroupTotal",
    "Portfolio",
    "Position",
    "PositionDelta",
    "PositionValue",
    "RebalancingAllocator",
    "Valuation",
    "aggregate_by_group",
    "allocate",
    "load_portfolio",
    "save_credential",
    "value_portfolio",
]
