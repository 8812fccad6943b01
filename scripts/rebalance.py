#!/usr/bin/env python3
"""Portfolio rebalancing CLI.

Examples:
    # Current value and weights
    python scripts/rebalance.py show

    # Where should 6000 USD of new money go
    python scripts/rebalance.py invest 6000 USD

    # Same, with broker-linked positions refreshed from the broker first
    python scripts/rebalance.py invest --refresh 6000 USD

    # Store the broker password encrypted in the portfolio file
    python scripts/rebalance.py set-password
"""

import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.api.rebalance_api import RebalanceAPI
from src.fx.amount import Amount
from src.portfolio.base import AllocationResult, Portfolio
from src.portfolio.loader import save_credential
from src.portfolio.valuation import Valuation
from src.security.cipher import DEFAULT_ITERATIONS, CredentialBlob
from src.utils.config import load_config, load_secret_from_env
from src.utils.exceptions import DecryptionFailedError, RebalancerError
from src.utils.logging import setup_logging

console = Console()


def _percent(value) -> str:
    return f"{float(value) * 100:.2f}%"


def _secret(prompt: str = "Portfolio secret", confirm: bool = False) -> str:
    secret = load_secret_from_env()
    if secret:
        return secret
    return click.prompt(prompt, hide_input=True, confirmation_prompt=confirm)


def render_valuation(portfolio: Portfolio, valuation: Valuation) -> None:
    table = Table(title=f"Portfolio value: {Amount(valuation.currency, valuation.total)}")
    table.add_column("Position", style="cyan")
    table.add_column("Amount", justify="right")
    table.add_column(f"Value ({valuation.currency})", justify="right", style="green")
    table.add_column("Current", justify="right", style="yellow")
    table.add_column("Target", justify="right", style="magenta")

    target_sum = portfolio.target_sum()
    for entry in valuation.positions:
        position = portfolio.position(entry.position_id)
        target = position.target / target_sum if target_sum else 0
        table.add_row(
            position.name,
            str(entry.amount),
            f"{Amount(valuation.currency, entry.value).rounded():,.2f}",
            _percent(valuation.current_weight(entry.position_id)),
            _percent(target),
        )

    console.print(table)


def render_allocation(portfolio: Portfolio, result: AllocationResult) -> None:
    table = Table(title=f"Investing {result.investment}")
    table.add_column("Position", style="cyan")
    table.add_column("Add", justify="right", style="green")
    table.add_column("Resulting", justify="right")

    for delta in result.positions:
        table.add_row(
            portfolio.position(delta.position_id).name,
            str(delta.delta),
            str(delta.resulting),
        )
    console.print(table)

    groups = Table(title="Transfers per group")
    groups.add_column("Group", style="cyan")
    groups.add_column("Total", justify="right", style="green")
    names = {g.id: g.name for g in portfolio.groups}
    for total in result.groups:
        groups.add_row(names[total.group_id], str(total.total))
    console.print(groups)


@click.group()
@click.option(
    "--portfolio",
    "portfolio_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Portfolio file (default: portfolio.path from config)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (default: config/default.yaml)",
)
@click.option("--log-level", default=None, help="DEBUG/INFO/WARNING/ERROR")
@click.pass_context
def cli(
    ctx: click.Context,
    portfolio_path: Optional[Path],
    config_path: Optional[Path],
    log_level: Optional[str],
):
    """Portfolio rebalancing tool"""
    try:
        config = load_config(config_path)
    except (FileNotFoundError, RebalancerError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    setup_logging(level=log_level or config.get("logging.level", "WARNING"))

    ctx.obj = {
        "config": config,
        "portfolio_path": portfolio_path or Path(config.get("portfolio.path", "portfolio.yaml")),
    }


def _load(ctx: click.Context):
    api = RebalanceAPI(ctx.obj["config"])
    portfolio = api.load(ctx.obj["portfolio_path"])
    return api, portfolio


def _refreshed(api: RebalanceAPI, portfolio: Portfolio, rates, refresh: bool) -> Portfolio:
    if not refresh or not api.needs_secret(portfolio):
        return portfolio
    return api.refresh(portfolio, _secret(), rates)


@cli.command()
@click.option("--refresh", is_flag=True, help="Fetch live holdings from brokers first")
@click.pass_context
def show(ctx: click.Context, refresh: bool):
    """Show portfolio value and current vs target weights."""
    try:
        api, portfolio = _load(ctx)
        rates = api.get_rates(portfolio)
        portfolio = _refreshed(api, portfolio, rates, refresh)
        render_valuation(portfolio, api.value(portfolio, rates))
    except RebalancerError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("amount", type=str)
@click.argument("currency", type=str)
@click.option("--refresh", is_flag=True, help="Fetch live holdings from brokers first")
@click.pass_context
def invest(ctx: click.Context, amount: str, currency: str, refresh: bool):
    """Plan where AMOUNT of CURRENCY should go. Nothing is saved.

    \b
    Example:
        python scripts/rebalance.py invest 6000 USD
    """
    try:
        investment = Amount(currency, amount)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    try:
        api, portfolio = _load(ctx)
        rates = api.get_rates(portfolio, [investment.currency])
        portfolio = _refreshed(api, portfolio, rates, refresh)
        result = api.invest(portfolio, investment.value, investment.currency, rates)
        render_allocation(portfolio, result)
    except DecryptionFailedError as e:
        console.print(f"[red]Error: {e}[/red]")
        console.print("[yellow]Check the secret, or run set-password again[/yellow]")
        sys.exit(1)
    except RebalancerError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command("set-password")
@click.pass_context
def set_password(ctx: click.Context):
    """Encrypt the broker password into the portfolio file."""
    config = ctx.obj["config"]
    path = ctx.obj["portfolio_path"]

    password = click.prompt("Broker password", hide_input=True, confirmation_prompt=True)
    secret = _secret("New portfolio secret", confirm=True)
    iterations = int(config.get("security.kdf_iterations", DEFAULT_ITERATIONS))

    try:
        blob = CredentialBlob.seal(password, secret, iterations)
        save_credential(path, blob)
    except (ValueError, RebalancerError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    console.print(f"[green]Credential stored in {path}[/green]")


if __name__ == "__main__":
    cli()
