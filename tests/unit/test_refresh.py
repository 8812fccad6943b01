"""Unit tests for refreshing positions from broker holdings."""

from decimal import Decimal
from typing import List
from unittest.mock import MagicMock

import pytest

from src.broker.base import BrokerDataSource, PositionMarketValue
from src.broker.refresh import (
    broker_from_config,
    fetch_holdings,
    linked_groups,
    refresh_portfolio,
)
from src.broker.xtb import XtbBroker
from src.fx.amount import Amount
from src.fx.rates import RateTable
from src.portfolio.base import BrokerLink, Group, Portfolio, Position
from src.security.cipher import CredentialBlob
from src.utils.config import Config
from src.utils.exceptions import (
    AuthenticationFailedError,
    ConfigurationError,
    CredentialMissingError,
    DecryptionFailedError,
)

SECRET = "my secret"


def holding(symbol: str, value: str, currency: str = "EUR") -> PositionMarketValue:
    return PositionMarketValue(
        symbol=symbol,
        volume=Decimal("1"),
        bid_price=Amount(currency, value),
        market_value=Amount(currency, value),
    )


class FakeBroker(BrokerDataSource):
    """In-memory broker returning fixed holdings."""

    def __init__(self, holdings: List[PositionMarketValue], password: str = "broker-pw"):
        self.holdings = holdings
        self.password = password
        self.calls: List[str] = []

    def connect(self) -> None:
        self.calls.append("connect")

    def login(self, account_id: str, password: str) -> None:
        self.calls.append(f"login {account_id}")
        if password != self.password:
            raise AuthenticationFailedError("bad password")

    def get_position_market_values(self) -> List[PositionMarketValue]:
        self.calls.append("fetch")
        return self.holdings

    def close(self) -> None:
        self.calls.append("close")


def make_portfolio(credential=None) -> Portfolio:
    return Portfolio(
        positions=[
            Position("vwce", "VWCE", Amount("EUR", "1000"), "0.5", broker_symbol="VWCE.DE_9"),
            Position("cspx", "CSPX", Amount("USD", "500"), "0.3", broker_symbol="CSPX.UK"),
            Position("cash", "Cash", Amount("EUR", "50"), "0.1"),
            Position("bonds", "Bonds", Amount("PLN", "2000"), "0.1"),
        ],
        groups=[
            Group(
                "xtb",
                "XTB",
                ["vwce", "cspx", "cash"],
                currency="EUR",
                broker=BrokerLink("xtb", "1234567"),
            ),
            Group("bank", "Bank", ["bonds"]),
        ],
        reporting_currency="PLN",
        credential=credential,
    )


@pytest.fixture(scope="module")
def credential() -> CredentialBlob:
    return CredentialBlob.seal("broker-pw", SECRET, iterations=1_000)


@pytest.fixture
def rates() -> RateTable:
    return RateTable.from_base_rates("PLN", {"EUR": "4", "USD": "3.6"})


class TestRefreshPortfolio:
    """Test cases for applying holdings."""

    def test_linked_amounts_replaced(self, rates: RateTable) -> None:
        portfolio = make_portfolio()
        holdings = {
            "xtb": [
                holding("VWCE.DE_9", "1200"),
                holding("CSPX.UK", "700", "USD"),
                holding("VWCE.DE_9", "30"),
            ]
        }

        refreshed = refresh_portfolio(portfolio, holdings, rates)

        assert refreshed.position("vwce").amount == Amount("EUR", "1230")
        assert refreshed.position("cspx").amount == Amount("USD", "700")
        assert refreshed.position("cash").amount == Amount("EUR", "50")
        assert refreshed.position("bonds").amount == Amount("PLN", "2000")

    def test_original_untouched(self, rates: RateTable) -> None:
        portfolio = make_portfolio()

        refreshed = refresh_portfolio(portfolio, {"xtb": [holding("VWCE.DE_9", "1")]}, rates)

        assert refreshed is not portfolio
        assert portfolio.position("vwce").amount == Amount("EUR", "1000")

    def test_holding_converted_to_position_currency(self, rates: RateTable) -> None:
        """Test a market value in another currency is converted."""
        portfolio = make_portfolio()
        holdings = {"xtb": [holding("CSPX.UK", "360", "PLN")]}

        refreshed = refresh_portfolio(portfolio, holdings, rates)

        assert refreshed.position("cspx").amount == Amount("USD", "100")

    def test_absent_symbol_is_zero(self, rates: RateTable) -> None:
        """Test a position the broker no longer holds becomes zero."""
        portfolio = make_portfolio()

        refreshed = refresh_portfolio(portfolio, {"xtb": [holding("VWCE.DE_9", "10")]}, rates)

        assert refreshed.position("cspx").amount == Amount("USD", "0")

    def test_nothing_fetched(self, rates: RateTable) -> None:
        portfolio = make_portfolio()

        assert refresh_portfolio(portfolio, {}, rates) is portfolio


class TestFetchHoldings:
    """Test cases for fetching live holdings."""

    def test_fetch(self, credential: CredentialBlob) -> None:
        broker = FakeBroker([holding("VWCE.DE_9", "10")])
        factory = MagicMock(return_value=broker)

        holdings = fetch_holdings(make_portfolio(credential), SECRET, factory)

        factory.assert_called_once_with("xtb")
        assert holdings == {"xtb": broker.holdings}
        assert broker.calls == ["connect", "login 1234567", "fetch", "close"]

    def test_no_linked_groups(self) -> None:
        """Test nothing is decrypted or fetched without linked groups."""
        portfolio = Portfolio(
            positions=[Position("a", "A", Amount("PLN", "1"), "1")],
            groups=[Group("g", "G", ["a"], broker=BrokerLink("xtb", "1"))],
            reporting_currency="PLN",
        )
        factory = MagicMock()

        assert linked_groups(portfolio) == []
        assert fetch_holdings(portfolio, SECRET, factory) == {}
        factory.assert_not_called()

    def test_missing_credential(self) -> None:
        with pytest.raises(CredentialMissingError, match="set-password"):
            fetch_holdings(make_portfolio(), SECRET, MagicMock())

    def test_wrong_secret(self, credential: CredentialBlob) -> None:
        factory = MagicMock()

        with pytest.raises(DecryptionFailedError):
            fetch_holdings(make_portfolio(credential), "not it", factory)

        factory.assert_not_called()

    def test_connection_closed_on_login_failure(self, credential: CredentialBlob) -> None:
        broker = FakeBroker([], password="something else")

        with pytest.raises(AuthenticationFailedError):
            fetch_holdings(make_portfolio(credential), SECRET, lambda kind: broker)

        assert broker.calls[-1] == "close"


class TestBrokerFromConfig:
    """Test cases for broker_from_config."""

    def test_xtb(self) -> None:
        config = Config({"brokers": {"xtb": {"host": "demo.example", "port": 5124}}})

        broker = broker_from_config("xtb", config)

        assert isinstance(broker, XtbBroker)
        assert broker.host == "demo.example"
        assert broker.port == 5124

    def test_unknown(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown broker: ib"):
            broker_from_config("ib", Config({}))
