"""Unit tests for the portfolio file loader."""

import base64
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from src.fx.amount import Amount
from src.portfolio.loader import (
    load_portfolio,
    portfolio_from_dict,
    portfolio_to_dict,
    save_credential,
)
from src.security.cipher import CredentialBlob
from src.utils.exceptions import MalformedPortfolioError, PortfolioReadError

PORTFOLIO_YAML = """\
reporting_currency: pln
positions:
  - id: vwce
    name: Vanguard FTSE All-World
    ticker: VWCE.DE
    amount: {currency: EUR, value: 1200.50}
    target: 0.6
    broker_symbol: VWCE.DE_9
  - id: bonds
    name: Treasury bonds
    amount: {currency: PLN, value: 5000}
    target: 0.4
groups:
  - id: xtb
    name: XTB account
    currency: EUR
    broker: {kind: xtb, account_id: 1234567}
    positions: [vwce]
  - id: bank
    name: Bank
    positions: [bonds]
"""


@pytest.fixture
def portfolio_file(tmp_path: Path) -> Path:
    path = tmp_path / "portfolio.yaml"
    path.write_text(PORTFOLIO_YAML, encoding="utf-8")
    return path


class TestLoadPortfolio:
    """Test cases for load_portfolio."""

    def test_load(self, portfolio_file: Path) -> None:
        portfolio = load_portfolio(portfolio_file)

        assert portfolio.reporting_currency == "PLN"
        vwce = portfolio.position("vwce")
        assert vwce.amount == Amount("EUR", Decimal("1200.5"))
        assert vwce.target == Decimal("0.6")
        assert vwce.ticker == "VWCE.DE"
        assert vwce.broker_symbol == "VWCE.DE_9"

        xtb, bank = portfolio.groups
        assert xtb.currency == "EUR"
        assert xtb.broker.kind == "xtb"
        assert xtb.broker.account_id == "1234567"
        assert bank.currency is None
        assert bank.broker is None
        assert portfolio.credential is None

    def test_example_file_loads(self) -> None:
        """Test the shipped example portfolio is valid."""
        example = Path(__file__).parents[2] / "portfolio.example.yaml"

        portfolio = load_portfolio(example)

        assert [g.id for g in portfolio.groups] == ["xtb", "pko"]
        assert portfolio.target_sum() == Decimal("1.0")

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(PortfolioReadError, match="Cannot read"):
            load_portfolio(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("positions: [unclosed", encoding="utf-8")

        with pytest.raises(PortfolioReadError, match="Invalid YAML"):
            load_portfolio(path)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(MalformedPortfolioError, match="must contain a mapping"):
            load_portfolio(path)


class TestPortfolioFromDict:
    """Test cases for structural errors in parsed data."""

    @pytest.fixture
    def data(self) -> dict:
        return yaml.safe_load(PORTFOLIO_YAML)

    def test_missing_reporting_currency(self, data: dict) -> None:
        del data["reporting_currency"]

        with pytest.raises(MalformedPortfolioError, match="Missing required field: reporting_currency"):
            portfolio_from_dict(data)

    def test_missing_amount(self, data: dict) -> None:
        del data["positions"][1]["amount"]

        with pytest.raises(MalformedPortfolioError, match="Missing required field: amount"):
            portfolio_from_dict(data)

    def test_bad_value(self, data: dict) -> None:
        data["positions"][0]["amount"]["value"] = "lots"

        with pytest.raises(MalformedPortfolioError, match="Invalid portfolio entry"):
            portfolio_from_dict(data)

    def test_undefined_group_member(self, data: dict) -> None:
        data["groups"][1]["positions"].append("ghost")

        with pytest.raises(MalformedPortfolioError, match="undefined position ghost"):
            portfolio_from_dict(data)

    @pytest.mark.parametrize(
        "field,value,message",
        [
            ("salt", base64.b64encode(b"12345678").decode("ascii"), "salt must be at least 16 bytes"),
            ("nonce", base64.b64encode(b"short").decode("ascii"), "nonce must be 12 bytes"),
            ("iterations", 0, "iterations must be >= 1"),
        ],
    )
    def test_unusable_credential(self, data: dict, field: str, value, message: str) -> None:
        """Test a damaged credential is rejected when the file is loaded."""
        credential = CredentialBlob.seal("broker-password", "my secret", iterations=1_000)
        data["credential"] = credential.to_dict()
        data["credential"][field] = value

        with pytest.raises(MalformedPortfolioError, match=message):
            portfolio_from_dict(data)

    def test_to_dict_round_trip(self, data: dict) -> None:
        """Test the written layout reloads to an equal portfolio."""
        portfolio = portfolio_from_dict(data)

        reloaded = portfolio_from_dict(portfolio_to_dict(portfolio))

        assert reloaded == portfolio


class TestSaveCredential:
    """Test cases for save_credential."""

    def test_writes_credential(self, portfolio_file: Path) -> None:
        """Test the credential is stored and everything else survives."""
        blob = CredentialBlob.seal("broker-password", "my secret", iterations=1_000)

        save_credential(portfolio_file, blob)

        portfolio = load_portfolio(portfolio_file)
        assert portfolio.credential == blob
        assert portfolio.credential.reveal("my secret") == "broker-password"
        assert portfolio.position("vwce").amount == Amount("EUR", "1200.5")
        assert "broker-password" not in portfolio_file.read_text(encoding="utf-8")

    def test_replaces_existing_credential(self, portfolio_file: Path) -> None:
        save_credential(portfolio_file, CredentialBlob.seal("old", "s", iterations=1_000))
        new_blob = CredentialBlob.seal("new", "s", iterations=1_000)

        save_credential(portfolio_file, new_blob)

        assert load_portfolio(portfolio_file).credential.reveal("s") == "new"

    def test_invalid_file_not_rewritten(self, tmp_path: Path) -> None:
        """Test a malformed portfolio is left untouched."""
        path = tmp_path / "bad.yaml"
        original = "reporting_currency: PLN\ngroups:\n  - id: g\n    positions: [ghost]\n"
        path.write_text(original, encoding="utf-8")

        with pytest.raises(MalformedPortfolioError):
            save_credential(path, CredentialBlob.seal("pw", "s", iterations=1_000))

        assert path.read_text(encoding="utf-8") == original

    def test_failed_write_keeps_original(self, portfolio_file: Path) -> None:
        """Test a write error leaves the existing file intact and no temp file behind."""
        original = portfolio_file.read_text(encoding="utf-8")

        def failing_dump(data, stream, **kwargs):
            stream.write("reporting_currency: PL")
            raise OSError("No space left on device")

        with patch("src.portfolio.loader.yaml.safe_dump", side_effect=failing_dump):
            with pytest.raises(PortfolioReadError, match="Cannot write portfolio file"):
                save_credential(portfolio_file, CredentialBlob.seal("pw", "s", iterations=1_000))

        assert portfolio_file.read_text(encoding="utf-8") == original
        assert [p.name for p in portfolio_file.parent.iterdir()] == [portfolio_file.name]
