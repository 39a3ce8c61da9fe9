"""capman command line tool.

Examples:
    # Invest 1000 USD into the portfolio described by ./portfolio.json
    capman invest 1000USD

    # Use market orders and allow at most 3 orders of at least 800 EUR each
    capman invest "5000 EUR" --order-type market --max-orders 3 \\
        --min-order-amount 800EUR

    # Show current positions, orders, trades or exchange rates
    capman show portfolio

    # Look up the contracts for a ticker
    capman lookup VT

    # Sell the second quarter of a position
    capman close VT --step 2/4
"""

import sys
from typing import Optional

import click

from capman.api.close_api import CloseAPI
from capman.api.invest_api import InvestAPI
from capman.broker.ib_broker import IBBroker
from capman.broker.ib_client import IBClient
from capman.execution.approval import console_approval
from capman.money import Money
from capman.money.forex import ExchangeRatesProvider
from capman.portfolio.closing import parse_step
from capman.portfolio.specification import load_portfolio_spec
from capman.reporting import (
    allocation_table,
    asset_table,
    exchange_rate_table,
    order_table,
    position_table,
    print_table,
    purchase_table,
    trade_table,
)
from capman.utils.config import (
    Config,
    InvestConfig,
    exchange_rates_access_key,
    load_broker_settings,
    load_config,
)
from capman.utils.exceptions import CapmanError
from capman.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


class MoneyParamType(click.ParamType):
    """Click parameter accepting "1000USD" or "1000 USD"."""

    name = "money"

    def convert(self, value, param, ctx):
        if isinstance(value, Money):
            return value
        try:
            return Money.parse(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


MONEY = MoneyParamType()


def _connect(config: Config) -> IBBroker:
    settings = load_broker_settings(config)
    logger.info("Connecting to brokerage gateway at %s", settings.api_url)
    return IBBroker(IBClient.from_settings(settings))


def _exchange_rates_provider(config: Config) -> ExchangeRatesProvider:
    return ExchangeRatesProvider(
        api_url=config.get("forex.url", ExchangeRatesProvider.API_URL),
        access_key=exchange_rates_access_key(),
    )


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to YAML configuration file.",
)
@click.option("--log-level", default=None, help="Logging level (DEBUG, INFO, ...).")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], log_level: Optional[str]):
    """Invest periodically into a target portfolio."""
    try:
        config = load_config(config_path)
    except FileNotFoundError as e:
        raise click.UsageError(str(e)) from e
    setup_logging(level=log_level or config.get("logging.level", "INFO"))
    ctx.obj = config


@cli.command()
@click.argument("amount", type=MONEY)
@click.option(
    "--order-type",
    type=click.Choice(["market", "limit"]),
    default=None,
    help="Order type. For limit orders, the last price is used as limit price.",
)
@click.option("--max-orders", type=int, default=None, help="Maximum number of orders to submit.")
@click.option(
    "--min-order-amount", type=MONEY, default=None, help="Minimum value of an order, e.g. 500USD."
)
@click.option(
    "--max-weight-adjustment",
    type=float,
    default=None,
    help="A position's weight is adjusted by at most this factor (1.0 - 2.0 is reasonable).",
)
@click.option(
    "--tolerance",
    type=float,
    default=None,
    help="Allowed overshoot per position when rounding to whole shares, e.g. 0.05.",
)
@click.option("--portfolio-path", default=None, help="Path to the portfolio specification file.")
@click.pass_obj
def invest(
    config: Config,
    amount: Money,
    order_type: Optional[str],
    max_orders: Optional[int],
    min_order_amount: Optional[Money],
    max_weight_adjustment: Optional[float],
    tolerance: Optional[float],
    portfolio_path: Optional[str],
):
    """Invest AMOUNT, e.g. 1000USD, into the target portfolio."""
    try:
        options = InvestConfig.from_config(
            config,
            amount,
            order_type=order_type,
            max_orders=max_orders,
            min_order_amount=min_order_amount,
            max_weight_adjustment=max_weight_adjustment,
            tolerance=tolerance,
            portfolio_path=portfolio_path,
        )
        # Everything below the network boundary is checked first
        options.validate()
        specs = load_portfolio_spec(options.portfolio_path)

        forex = _exchange_rates_provider(config).fetch()
        broker = _connect(config)
        api = InvestAPI(broker, forex, console_approval)

        result = api.plan(options, specs)
        print_table(allocation_table(result.candidates))
        if not result.selected:
            click.echo(
                f"No position can receive at least the minimum order amount "
                f"({options.min_order_amount}); nothing to invest."
            )
            return
        print_table(purchase_table(result))

        orders = api.execute(result, options.order_type)
        for order in orders:
            click.echo(str(order))
    except CapmanError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument(
    "what", type=click.Choice(["exchangerates", "portfolio", "orders", "trades"])
)
@click.pass_obj
def show(config: Config, what: str):
    """Fetch and display exchange rates, portfolio, orders or trades."""
    try:
        if what == "exchangerates":
            print_table(exchange_rate_table(_exchange_rates_provider(config).fetch()))
            return

        broker = _connect(config)
        if what == "portfolio":
            print_table(position_table(broker.fetch_portfolio().positions))
        elif what == "orders":
            print_table(order_table(broker.fetch_orders()))
        else:
            print_table(trade_table(broker.fetch_trades()))
    except CapmanError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("ticker")
@click.pass_obj
def lookup(config: Config, ticker: str):
    """Look up an asset by its TICKER symbol."""
    try:
        broker = _connect(config)
        print_table(asset_table(broker.lookup_stock(ticker.upper())))
    except CapmanError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("ticker")
@click.option("--step", default="1/1", help="The current step, for example 2/5.")
@click.pass_obj
def close(config: Config, ticker: str, step: str):
    """Close (part of) the position in TICKER."""
    try:
        # Check the step before connecting
        parse_step(step)
        broker = _connect(config)
        outcome = CloseAPI(broker, console_approval).close(ticker, step)
        if not outcome.matches:
            click.echo(f"Could not find {ticker} in portfolio. Current positions:")
            print_table(position_table(broker.fetch_portfolio().positions))
        elif len(outcome.matches) > 1:
            click.echo(f"Ambiguous ticker {ticker}. Candidates:")
            print_table(position_table(outcome.matches))
        elif outcome.order is None:
            click.echo("Nothing to sell at this step.")
        else:
            click.echo(str(outcome.order))
    except CapmanError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
