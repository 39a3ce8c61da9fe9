"""Console tables for the command line tool."""

from typing import Iterable, Sequence

from rich.console import Console
from rich.table import Table

from capman.broker.base import Asset, Order, Position, Trade
from capman.money import Money
from capman.money.forex import ExchangeRates
from capman.portfolio.base import AllocationResult, WeightedCandidate

TRADE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _table(title: str, headers: Sequence[str]) -> Table:
    table = Table(title=title, show_lines=False)
    for header in headers:
        table.add_column(header)
    return table


def allocation_table(candidates: Iterable[WeightedCandidate]) -> Table:
    """Current allocation, most underweight first.

    Weights are printed as percentages. The deviation is shown as
    actual/target - 1, the inverse of the factor the engine uses.
    """
    table = _table(
        "Current portfolio allocation",
        ["Ticker", "Target Weight", "Current Weight", "Deviation", "Adjusted Weight"],
    )
    for c in candidates:
        table.add_row(
            c.asset.ticker,
            f"{c.target_weight * 100:.2f}",
            f"{c.actual_weight * 100:.2f}",
            f"{c.relative_deviation * 100:+.2f}%",
            f"{c.adjusted_weight * 100:.2f}",
        )
    return table


def purchase_table(result: AllocationResult) -> Table:
    table = _table(
        f"Investing roughly {result.total_spend} in {len(result.selected)} assets",
        ["Ticker", "Description", "Currency", "Shares", "Share Price", "Amount"],
    )
    for c in result.selected:
        table.add_row(
            c.asset.ticker,
            c.asset.description,
            str(c.asset.currency),
            str(c.shares_to_purchase),
            str(c.share_price),
            str(c.cost),
        )
    return table


def asset_table(assets: Iterable[Asset]) -> Table:
    table = _table(
        "Assets",
        ["Ticker", "Primary Exchange", "Description", "Conid", "Currency", "Listed Exchanges"],
    )
    for a in assets:
        table.add_row(
            a.ticker,
            a.primary_exchange,
            a.description,
            str(a.conid),
            str(a.currency),
            ",".join(a.exchanges),
        )
    return table


def position_table(positions: Iterable[Position]) -> Table:
    table = _table("Positions", ["Asset", "Quantity", "Share Price", "Market Value"])
    for p in positions:
        table.add_row(p.asset.name, str(p.quantity), str(p.share_price), str(p.market_value))
    return table


def order_table(orders: Iterable[Order]) -> Table:
    table = _table(
        "Orders",
        ["Id", "Side", "Quantity", "Asset", "Type", "TiF", "Status", "Price", "Aux. Price"],
    )
    for o in orders:
        table.add_row(
            o.id,
            o.side.value,
            str(o.total_quantity),
            o.asset.name,
            o.order_type.value,
            o.time_in_force.value,
            o.status.value,
            str(o.price) if o.price is not None else "-",
            str(o.aux_price) if o.aux_price is not None else "-",
        )
    return table


def trade_table(trades: Iterable[Trade]) -> Table:
    table = _table(
        "Trades", ["OrderId", "Date", "Side", "Quantity", "Asset", "Price", "Exchange"]
    )
    for t in trades:
        table.add_row(
            t.order_id,
            t.date.strftime(TRADE_DATE_FORMAT),
            t.side.value,
            str(t.quantity),
            t.asset.name,
            str(t.price),
            t.exchange,
        )
    return table


def exchange_rate_table(forex: ExchangeRates) -> Table:
    table = _table(
        f"As of {forex.date}, {Money(1, forex.base)} equals", ["Currency", "Amount"]
    )
    for currency, rate in sorted(forex.rates.items(), key=lambda item: item[0].value):
        table.add_row(currency.value, str(Money(rate, currency)))
    return table


def print_table(table: Table, console: Console | None = None) -> None:
    (console or Console()).print(table)
