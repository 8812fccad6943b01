"""Broker data sources.

Components:
- BrokerDataSource: Abstract live-holdings provider
- XtbBroker: XTB xAPI implementation
- fetch_holdings / refresh_portfolio: Substitute live amounts into a portfolio
"""

from src.broker.base import BrokerDataSource, PositionMarketValue
from src.broker.refresh import (
    broker_from_config,
    fetch_holdings,
    linked_groups,
    refresh_portfolio,
)
from src.broker.xtb import XtbBroker

__all__ = [
    "BrokerDataSource",
    "PositionMarketValue",
    "XtbBroker",
    "broker_from_config",
    "fetch_holdings",
    "linked_groups",
    "refresh_portfolio",
]
