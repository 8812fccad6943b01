"""YAML portfolio file reader and credential writer.

File layout:

    reporting_currency: PLN
    positions:
      - id: vwce
        name: Vanguard FTSE All-World
        ticker: VWCE.DE
        amount: {currency: EUR, value: 1200}
        target: 0.6
        broker_symbol: VWCE.DE_9      # optional
    groups:
      - id: xtb
        name: XTB account
        currency: EUR                 # optional settlement currency
        broker: {kind: xtb, account_id: "1234567"}   # optional
        positions: [vwce]
    credential:                       # optional, written by set-password
      salt: ...
      nonce: ...
      ciphertext: ...
      iterations: 600000

The ``invest`` and ``show`` commands only read this file. The only writer is
save_credential, which replaces the ``credential`` entry and keeps everything
else as loaded.
"""

import os
import tempfile
from pathlib import Path
from typing import Any, Dict

import yaml

from src.fx.amount import Amount
from src.portfolio.base import BrokerLink, Group, Portfolio, Position
from src.security.cipher import CredentialBlob
from src.utils.exceptions import MalformedPortfolioError, PortfolioReadError
from src.utils.logging import get_logger

logger = get_logger(__name__)


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise PortfolioReadError(f"Cannot read portfolio file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise PortfolioReadError(f"Invalid YAML in portfolio file {path}: {e}") from e

    if not isinstance(data, dict):
        raise MalformedPortfolioError(f"Portfolio file {path} must contain a mapping")
    return data


def load_portfolio(path: str | Path) -> Portfolio:
    """Read and validate a portfolio file.

    Raises:
        PortfolioReadError: If the file cannot be read or parsed as YAML
        MalformedPortfolioError: If its content is structurally invalid
    """
    path = Path(path)
    portfolio = portfolio_from_dict(_read_yaml(path))
    logger.info(
        "Loaded portfolio %s (%d positions, %d groups)",
        path,
        len(portfolio.positions),
        len(portfolio.groups),
    )
    return portfolio


def _position_from_dict(data: Dict[str, Any]) -> Position:
    amount = data["amount"]
    return Position(
        id=str(data["id"]),
        name=str(data.get("name", data["id"])),
        amount=Amount(amount["currency"], amount.get("value", 0)),
        target=data.get("target", 0),
        ticker=data.get("ticker"),
        broker_symbol=data.get("broker_symbol"),
    )


def _group_from_dict(data: Dict[str, Any]) -> Group:
    broker = data.get("broker")
    return Group(
        id=str(data["id"]),
        name=str(data.get("name", data["id"])),
        position_ids=tuple(str(pid) for pid in data.get("positions") or ()),
        currency=data.get("currency"),
        broker=BrokerLink(str(broker["kind"]), str(broker["account_id"]))
        if broker
        else None,
    )


def portfolio_from_dict(data: Dict[str, Any]) -> Portfolio:
    """Build a Portfolio from the parsed file layout.

    Raises:
        MalformedPortfolioError: On missing keys, bad values or invalid structure
    """
    try:
        positions = [_position_from_dict(p) for p in data.get("positions") or []]
        groups = [_group_from_dict(g) for g in data.get("groups") or []]
        credential = data.get("credential")
        return Portfolio(
            positions=positions,
            groups=groups,
            reporting_currency=data["reporting_currency"],
            credential=CredentialBlob.from_dict(credential) if credential else None,
        )
    except KeyError as e:
        raise MalformedPortfolioError(f"Missing required field: {e.args[0]}") from e
    except (TypeError, ValueError) as e:
        raise MalformedPortfolioError(f"Invalid portfolio entry: {e}") from e


def portfolio_to_dict(portfolio: Portfolio) -> Dict[str, Any]:
    """Inverse of portfolio_from_dict; Decimals are written as strings."""
    positions = []
    for p in portfolio.positions:
        entry: Dict[str, Any] = {
            "id": p.id,
            "name": p.name,
            "amount": {"currency": p.currency, "value": str(p.amount.value)},
            "target": str(p.target),
        }
        if p.ticker:
            entry["ticker"] = p.ticker
        if p.broker_symbol:
            entry["broker_symbol"] = p.broker_symbol
        positions.append(entry)

    groups = []
    for g in portfolio.groups:
        entry = {"id": g.id, "name": g.name, "positions": list(g.position_ids)}
        if g.currency:
            entry["currency"] = g.currency
        if g.broker:
            entry["broker"] = {"kind": g.broker.kind, "account_id": g.broker.account_id}
        groups.append(entry)

    data: Dict[str, Any] = {
        "reporting_currency": portfolio.reporting_currency,
        "positions": positions,
        "groups": groups,
    }
    if portfolio.credential is not None:
        data["credential"] = portfolio.credential.to_dict()
    return data


def save_credential(path: str | Path, blob: CredentialBlob) -> None:
    """Store ``blob`` as the portfolio's credential.

    The file is validated before writing, so a broken portfolio is never
    rewritten.

    Raises:
        PortfolioReadError: If the file cannot be read or written
        MalformedPortfolioError: If the current content is invalid
    """
    path = Path(path)
    data = _read_yaml(path)
    portfolio_from_dict(data)

    data["credential"] = blob.to_dict()
    tmp_path = None
    try:
        # Replace the file only once the new content is fully written
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=path.parent, prefix=f".{path.name}.", delete=False
        ) as f:
            tmp_path = f.name
            yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
        os.replace(tmp_path, path)
    except OSError as e:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise PortfolioReadError(f"Cannot write portfolio file {path}: {e}") from e

    logger.info("Stored encrypted credential in %s", path)
