"""User-facing API for the portfolio rebalancer.

Components:
- RebalanceAPI: Load, refresh, value and plan an investment
"""

from src.api.rebalance_api import RebalanceAPI

__all__ = [
    "RebalanceAPI",
]
