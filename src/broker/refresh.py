"""Replace stored amounts of broker-linked positions with live holdings.

Fetching (fetch_holdings) does the I/O; applying (refresh_portfolio) is pure
and returns a new Portfolio, leaving the loaded one untouched.
"""

from dataclasses import replace
from decimal import Decimal
from typing import Callable, Dict, List, Mapping

from src.broker.base import BrokerDataSource, PositionMarketValue
from src.broker.xtb import XtbBroker
from src.fx.amount import Amount
from src.fx.rates import RateTable
from src.portfolio.base import Group, Portfolio
from src.security.cipher import revealed_password
from src.utils.config import Config
from src.utils.exceptions import ConfigurationError, CredentialMissingError
from src.utils.logging import get_logger

logger = get_logger(__name__)

BrokerFactory = Callable[[str], BrokerDataSource]


def broker_from_config(kind: str, config: Config) -> BrokerDataSource:
    """Create an unconnected broker client of ``kind``.

    Raises:
        ConfigurationError: If the broker kind is unknown
    """
    if kind == "xtb":
        return XtbBroker(
            host=config.get("brokers.xtb.host", XtbBroker.DEFAULT_HOST),
            port=int(config.get("brokers.xtb.port", XtbBroker.DEFAULT_PORT)),
            timeout=float(config.get("brokers.xtb.timeout", 10.0)),
        )
    raise ConfigurationError(f"Unknown broker: {kind}. Available: xtb")


def linked_groups(portfolio: Portfolio) -> List[Group]:
    """Broker-backed groups that contain at least one broker-linked position."""
    return [
        group
        for group in portfolio.groups
        if group.broker is not None
        and any(p.is_broker_linked for p in portfolio.group_positions(group))
    ]


def fetch_holdings(
    portfolio: Portfolio,
    secret: str,
    broker_factory: BrokerFactory,
) -> Dict[str, List[PositionMarketValue]]:
    """Fetch live holdings for every broker-linked group.

    The stored password is decrypted once and wiped when fetching ends.

    Args:
        portfolio: Portfolio with a stored credential
        secret: User secret protecting the credential
        broker_factory: Creates a broker client for a broker kind

    Returns:
        {group_id: holdings}

    Raises:
        CredentialMissingError: If linked groups exist but no credential is stored
        DecryptionFailedError: If the secret is wrong
        BrokerUnavailableError / AuthenticationFailedError: From the broker
    """
    groups = linked_groups(portfolio)
    if not groups:
        return {}
    if portfolio.credential is None:
        raise CredentialMissingError(
            "Portfolio has broker-linked positions but no stored credential; "
            "run set-password first"
        )

    holdings: Dict[str, List[PositionMarketValue]] = {}
    with revealed_password(portfolio.credential, secret) as password:
        for group in groups:
            with broker_factory(group.broker.kind) as broker:
                broker.login(group.broker.account_id, password.reveal())
                holdings[group.id] = broker.get_position_market_values()
            logger.info(
                "Fetched %d holdings for group %s", len(holdings[group.id]), group.id
            )
    return holdings


def refresh_portfolio(
    portfolio: Portfolio,
    holdings: Mapping[str, List[PositionMarketValue]],
    rate_table: RateTable,
) -> Portfolio:
    """Return a copy of ``portfolio`` with live amounts substituted.

    A linked position in a fetched group gets the sum of the market values of
    its broker symbol, converted into the position's currency. A symbol the
    broker no longer holds yields a zero amount.

    Raises:
        RateUnavailableError: If a market value cannot be converted
    """
    replacements = {}
    for group in portfolio.groups:
        if group.id not in holdings:
            continue
        for position in portfolio.group_positions(group):
            if not position.is_broker_linked:
                continue
            total = Decimal(0)
            for holding in holdings[group.id]:
                if holding.symbol == position.broker_symbol:
                    total += rate_table.convert(
                        holding.market_value.value,
                        holding.market_value.currency,
                        position.currency,
                    )
            logger.debug(
                "Refreshed %s: %s -> %s %s",
                position.id,
                position.amount.value,
                total,
                position.currency,
            )
            replacements[position.id] = replace(
                position, amount=Amount(position.currency, total)
            )

    if not replacements:
        return portfolio

    return replace(
        portfolio,
        positions=tuple(replacements.get(p.id, p) for p in portfolio.positions),
    )
