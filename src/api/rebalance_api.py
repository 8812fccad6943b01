"""High-level API for valuing a portfolio and planning an investment.

Wires the pipeline together:
portfolio file -> (broker refresh) -> valuation -> allocator -> group totals.
Nothing here writes to the portfolio file.
"""

from pathlib import Path
from typing import Iterable, Optional

from src.broker.refresh import (
    BrokerFactory,
    broker_from_config,
    fetch_holdings,
    linked_groups,
    refresh_portfolio,
)
from src.fx.amount import Amount, Number, normalize_currency
from src.fx.rates import RateTable
from src.fx.sources import RateSource, rate_source_from_config
from src.portfolio.allocator import RebalancingAllocator
from src.portfolio.base import AllocationResult, Portfolio
from src.portfolio.grouping import aggregate_by_group
from src.portfolio.loader import load_portfolio
from src.portfolio.valuation import Valuation, value_portfolio
from src.utils.config import Config, load_config
from src.utils.logging import get_logger

logger = get_logger(__name__)


class RebalanceAPI:
    """Entry point used by the command line.

    Example:
        >>> api = RebalanceAPI(config)
        >>> portfolio = api.load("portfolio.yaml")
        >>> result = api.invest(portfolio, "6000", "USD")
        >>> for delta in result.positions:
        ...     print(delta.position_id, delta.delta)
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        rate_source: Optional[RateSource] = None,
        broker_factory: Optional[BrokerFactory] = None,
        allocator: Optional[RebalancingAllocator] = None,
    ):
        """Initialize RebalanceAPI.

        Args:
            config: Configuration (defaults to config/default.yaml)
            rate_source: Rate source (defaults to the one named in config)
            broker_factory: Creates broker clients by kind (defaults to config)
            allocator: Allocator instance (defaults to RebalancingAllocator)
        """
        self.config = config or load_config()
        self.rate_source = rate_source or rate_source_from_config(self.config)
        self.broker_factory = broker_factory or (
            lambda kind: broker_from_config(kind, self.config)
        )
        self.allocator = allocator or RebalancingAllocator()

        logger.debug(
            "RebalanceAPI initialized with %s", type(self.rate_source).__name__
        )

    def load(self, path: str | Path) -> Portfolio:
        return load_portfolio(path)

    def get_rates(
        self, portfolio: Portfolio, extra_currencies: Iterable[str] = ()
    ) -> RateTable:
        """Fetch one rate snapshot covering the portfolio's currencies."""
        currencies = portfolio.currencies() | {
            normalize_currency(c) for c in extra_currencies
        }
        return self.rate_source.get_rates(currencies)

    def refresh(
        self, portfolio: Portfolio, secret: str, rate_table: RateTable
    ) -> Portfolio:
        """Substitute live broker holdings into broker-linked positions.

        Raises:
            CredentialMissingError, DecryptionFailedError,
            BrokerUnavailableError, AuthenticationFailedError
        """
        holdings = fetch_holdings(portfolio, secret, self.broker_factory)
        return refresh_portfolio(portfolio, holdings, rate_table)

    def needs_secret(self, portfolio: Portfolio) -> bool:
        """True when a refresh would have to decrypt the stored credential."""
        return bool(linked_groups(portfolio))

    def value(
        self,
        portfolio: Portfolio,
        rate_table: RateTable,
        reporting_currency: Optional[str] = None,
    ) -> Valuation:
        return value_portfolio(
            portfolio, reporting_currency or portfolio.reporting_currency, rate_table
        )

    def invest(
        self,
        portfolio: Portfolio,
        amount: Number,
        currency: str,
        rate_table: Optional[RateTable] = None,
    ) -> AllocationResult:
        """Plan how to invest ``amount`` of ``currency``.

        Args:
            portfolio: Portfolio (already refreshed, if wanted)
            amount: New money, positive
            currency: Currency of the new money
            rate_table: Rates snapshot; fetched from the rate source if None

        Returns:
            AllocationResult with per-position and per-group additions

        Raises:
            InvalidInvestmentAmountError, MalformedPortfolioError,
            RateUnavailableError, RateSourceError
        """
        investment = Amount(currency, amount)
        if rate_table is None:
            rate_table = self.get_rates(portfolio, [investment.currency])

        valuation = self.value(portfolio, rate_table)
        deltas = self.allocator.allocate(
            valuation,
            portfolio.target_weights(),
            investment.value,
            investment.currency,
            rate_table,
            portfolio.reporting_currency,
        )
        groups = aggregate_by_group(deltas, portfolio, rate_table)

        return AllocationResult(
            investment=investment,
            reporting_currency=portfolio.reporting_currency,
            positions=deltas,
            groups=groups,
        )
