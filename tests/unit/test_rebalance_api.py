"""Unit tests for RebalanceAPI."""

from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from src.api.rebalance_api import RebalanceAPI
from src.fx.amount import Amount
from src.fx.rates import RateTable
from src.fx.sources import StaticRateSource
from src.portfolio.base import BrokerLink, Group, Portfolio, Position
from src.portfolio.valuation import Valuation
from src.utils.config import Config
from src.utils.exceptions import InvalidInvestmentAmountError


@pytest.fixture
def config() -> Config:
    return Config(
        {
            "rates": {
                "source": "static",
                "static": {"base": "PLN", "quotes": {"USD": "4", "EUR": "4.5"}},
            }
        }
    )


@pytest.fixture
def api(config: Config) -> RebalanceAPI:
    return RebalanceAPI(config)


@pytest.fixture
def portfolio() -> Portfolio:
    return Portfolio(
        positions=[
            Position("a", "A", Amount("USD", "400"), "0.5"),
            Position("b", "B", Amount("USD", "300"), "0.3"),
            Position("c", "C", Amount("USD", "300"), "0.2"),
        ],
        groups=[
            Group("broker", "Broker", ["a", "b"], currency="PLN"),
            Group("bank", "Bank", ["c"]),
        ],
        reporting_currency="USD",
    )


class TestRebalanceAPIInit:
    """Test cases for RebalanceAPI initialization."""

    def test_rate_source_from_config(self, api: RebalanceAPI) -> None:
        assert isinstance(api.rate_source, StaticRateSource)

    def test_default_config(self) -> None:
        """Test the shipped default configuration is used when none is given."""
        api = RebalanceAPI()

        assert api.config.get("rates.source") == "static"

    def test_custom_rate_source(self, config: Config) -> None:
        source = MagicMock()

        assert RebalanceAPI(config, rate_source=source).rate_source is source


class TestInvest:
    """Test cases for RebalanceAPI.invest."""

    def test_invest(self, api: RebalanceAPI, portfolio: Portfolio) -> None:
        """Test deltas and group totals for a single-currency portfolio."""
        result = api.invest(portfolio, "100", "USD")

        assert result.investment == Amount("USD", "100")
        assert result.reporting_currency == "USD"
        assert [d.delta for d in result.positions] == [
            Amount("USD", "100"),
            Amount("USD", "0"),
            Amount("USD", "0"),
        ]
        assert [(t.group_id, t.total) for t in result.groups] == [
            ("broker", Amount("PLN", "400")),
            ("bank", Amount("USD", "0")),
        ]

    def test_invest_other_currency(self, api: RebalanceAPI, portfolio: Portfolio) -> None:
        """Test the investment is converted into the reporting currency."""
        result = api.invest(portfolio, "400", "PLN")

        assert result.investment == Amount("PLN", "400")
        assert result.delta_for("a").delta == Amount("USD", "100")

    def test_rates_fetched_once(self, config: Config, portfolio: Portfolio) -> None:
        source = MagicMock()
        source.get_rates.return_value = RateTable.from_base_rates("PLN", {"USD": "4"})
        api = RebalanceAPI(config, rate_source=source)

        api.invest(portfolio, "100", "USD")

        source.get_rates.assert_called_once()
        requested = set(source.get_rates.call_args.args[0])
        assert requested == {"USD", "PLN"}

    def test_explicit_rate_table(self, config: Config, portfolio: Portfolio) -> None:
        source = MagicMock()
        api = RebalanceAPI(config, rate_source=source)

        api.invest(portfolio, "100", "USD", RateTable.from_base_rates("PLN", {"USD": "4"}))

        source.get_rates.assert_not_called()

    def test_invalid_amount(self, api: RebalanceAPI, portfolio: Portfolio) -> None:
        with pytest.raises(InvalidInvestmentAmountError):
            api.invest(portfolio, "0", "USD")


class TestValueAndRefresh:
    """Test cases for value, refresh and load."""

    def test_value(self, api: RebalanceAPI, portfolio: Portfolio) -> None:
        rates = api.get_rates(portfolio)

        valuation = api.value(portfolio, rates)

        assert isinstance(valuation, Valuation)
        assert valuation.total == Decimal("1000")
        assert api.value(portfolio, rates, "PLN").total == Decimal("4000")

    def test_needs_secret(self, api: RebalanceAPI, portfolio: Portfolio) -> None:
        linked = Portfolio(
            positions=[Position("x", "X", Amount("EUR", "1"), "1", broker_symbol="X.DE")],
            groups=[Group("xtb", "XTB", ["x"], broker=BrokerLink("xtb", "1"))],
            reporting_currency="EUR",
        )

        assert not api.needs_secret(portfolio)
        assert api.needs_secret(linked)

    def test_refresh_without_links_is_identity(
        self, api: RebalanceAPI, portfolio: Portfolio
    ) -> None:
        factory = MagicMock()
        api.broker_factory = factory

        assert api.refresh(portfolio, "secret", RateTable()) is portfolio
        factory.assert_not_called()

    def test_load_example(self, api: RebalanceAPI) -> None:
        example = Path(__file__).parents[2] / "portfolio.example.yaml"

        portfolio = api.load(example)

        assert portfolio.reporting_currency == "PLN"
        result = api.invest(portfolio, "6000", "USD")
        total = sum(
            api.get_rates(portfolio, ["USD"]).convert(
                d.delta.value, d.delta.currency, "USD"
            )
            for d in result.positions
        )
        assert abs(total - Decimal("6000")) < Decimal("0.000001")
