"""Interactive Brokers implementation of the Broker interface.

Payloads from the Client Portal Web API are validated while they are
turned into domain objects. Malformed numeric, date or enum fields raise
BrokerDataError: continuing with corrupt data risks mis-sized orders.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from capman.broker.base import (
    Asset,
    Broker,
    MarketDataSnapshot,
    Order,
    OrderConfirmation,
    OrderQuestion,
    OrderReply,
    OrderSide,
    OrderStatus,
    OrderType,
    Portfolio,
    Position,
    TimeInForce,
    Trade,
)
from capman.broker.ib_client import (
    FIELD_ASK,
    FIELD_BID,
    FIELD_LAST_PRICE,
    IBClient,
)
from capman.money import Currency, Money
from capman.utils.exceptions import BrokerConnectionError, BrokerDataError
from capman.utils.logging import get_logger, warn_once

logger = get_logger(__name__)

# Wire names accepted for each order type, side and time in force
_ORDER_TYPES = {
    "LMT": OrderType.LMT,
    "Limit": OrderType.LMT,
    "limit": OrderType.LMT,
    "MKT": OrderType.MKT,
    "Market": OrderType.MKT,
    "market": OrderType.MKT,
    "MIT": OrderType.MIT,
    "mit": OrderType.MIT,
    "LIT": OrderType.LIT,
    "lit": OrderType.LIT,
    "STP": OrderType.STP,
    "Stop": OrderType.STP,
    "stop": OrderType.STP,
    "STPLMT": OrderType.STPLMT,
    "StopLimit": OrderType.STPLMT,
    "stop_limit": OrderType.STPLMT,
    "trailing_stop": OrderType.TRLSTP,
    "marketonclose": OrderType.MOC,
    "limitonclose": OrderType.LOC,
    "relative": OrderType.REL,
    "midprice": OrderType.MID,
}

_ORDER_TYPE_WIRE = {
    OrderType.MKT: "MKT",
    OrderType.LMT: "LMT",
    OrderType.STP: "STP",
    OrderType.STPLMT: "STP_LIMIT",
}

_SIDES = {"BUY": OrderSide.BUY, "B": OrderSide.BUY, "SELL": OrderSide.SELL, "S": OrderSide.SELL}

_TIFS = {"DAY": TimeInForce.DAY, "CLOSE": TimeInForce.DAY, "GTC": TimeInForce.GTC}

TRADE_TIME_FORMAT = "%Y%m%d-%H:%M:%S"


def _parse_enum(mapping: Dict[str, Any], value: Any, what: str):
    try:
        return mapping[value]
    except (KeyError, TypeError):
        raise BrokerDataError(f"Unknown {what} received from broker: {value!r}") from None


def parse_order_status(value: Any) -> OrderStatus:
    """Parse a broker-reported order status.

    Raises:
        BrokerDataError: For unknown or not-yet-submitted statuses
    """
    try:
        status = OrderStatus(value)
    except ValueError:
        raise BrokerDataError(f"Unknown order status received from broker: {value!r}") from None
    if status == OrderStatus.NONE:
        raise BrokerDataError("Broker reported order status 'None'")
    return status


def parse_currency(value: Any) -> Currency:
    try:
        return Currency(value)
    except ValueError:
        raise BrokerDataError(f"Unknown currency received from broker: {value!r}") from None


def parse_amount(value: Any, currency: Currency, what: str) -> Money:
    """Parse a numeric or string amount into Money.

    Raises:
        BrokerDataError: If the value is not a number
    """
    try:
        return Money(float(value), currency)
    except (TypeError, ValueError):
        raise BrokerDataError(f"Invalid {what} received from broker: {value!r}") from None


def parse_quantity(value: Any, what: str) -> int:
    """Parse a whole, non-negative number of shares.

    Raises:
        BrokerDataError: If the value is not a whole number >= 0
    """
    try:
        quantity = float(value)
    except (TypeError, ValueError):
        raise BrokerDataError(f"Invalid {what} received from broker: {value!r}") from None
    if quantity < 0 or quantity != int(quantity):
        raise BrokerDataError(f"Invalid {what} received from broker: {value!r}")
    return int(quantity)


def parse_reply(payload: Dict[str, Any]) -> OrderReply:
    """Turn one element of an order placement reply into a question or confirmation."""
    try:
        if "order_id" in payload:
            return OrderConfirmation(
                order_id=str(payload["order_id"]),
                status=parse_order_status(payload["order_status"]),
                local_order_id=str(payload.get("local_order_id", "")),
            )
        messages = payload["message"]
        if isinstance(messages, str):
            messages = [messages]
        return OrderQuestion(id=str(payload["id"]), messages=tuple(messages))
    except (KeyError, TypeError) as e:
        raise BrokerDataError(f"Malformed order reply from broker: {payload!r}") from e


class IBBroker(Broker):
    """Broker backed by the Interactive Brokers Client Portal Web API.

    Example:
        >>> broker = IBBroker(IBClient("https://localhost:5000"))
        >>> broker.fetch_portfolio().positions
    """

    def __init__(self, client: IBClient):
        """Open a brokerage session.

        Checks that the gateway is connected and authenticated and that the
        selected account is a portfolio account. The orders and trades
        endpoints are called once, as other endpoints depend on it.

        Args:
            client: IBClient for the gateway

        Raises:
            BrokerConnectionError: If the gateway is not ready
            BrokerDataError: If account information is inconsistent
        """
        self.client = client

        status = client.auth_status()
        if not status.get("connected"):
            raise BrokerConnectionError("Brokerage gateway not connected")
        if not status.get("authenticated"):
            raise BrokerConnectionError("Brokerage gateway not authenticated")

        accounts = client.accounts()
        selected = accounts.get("selectedAccount")
        portfolio_accounts = client.portfolio_accounts()
        account = next(
            (a for a in portfolio_accounts if a.get("accountId") == selected), None
        )
        if account is None:
            raise BrokerDataError(
                f"Gateway returned inconsistent account information for {selected!r}"
            )
        logger.info(
            "Brokerage session active for %s (%s), %s",
            account.get("accountTitle"),
            account.get("accountId"),
            str(account.get("type", "")).lower(),
        )

        client.orders()
        client.trades()

    def lookup_stock(self, ticker: str) -> List[Asset]:
        reply = self.client.trsrv_stocks([ticker])
        results = []
        for reply_ticker, securities in reply.items():
            if reply_ticker != ticker:
                raise BrokerDataError(
                    f"Stock lookup for {ticker} returned {reply_ticker}"
                )
            for security in securities:
                if security.get("assetClass") != "STK":
                    continue
                for contract in security.get("contracts", []):
                    results.append(
                        self._make_asset(
                            contract["conid"],
                            ticker=reply_ticker,
                            primary_exchange=contract.get("exchange"),
                        )
                    )
        logger.debug("Lookup %s returned %d assets", ticker, len(results))
        return results

    def fetch_market_data_snapshot(self, asset: Asset) -> Optional[MarketDataSnapshot]:
        reply = self.client.market_data(
            [asset.conid], [FIELD_LAST_PRICE, FIELD_BID, FIELD_ASK]
        )
        if len(reply) != 1:
            raise BrokerDataError(
                f"Expected one market data entry for {asset.name}, got {len(reply)}"
            )
        data = reply[0]
        try:
            last_price, bid, ask = (
                Money(float(data[f]), asset.currency)
                for f in (FIELD_LAST_PRICE, FIELD_BID, FIELD_ASK)
            )
        except (KeyError, TypeError, ValueError):
            # Snapshots without subscription or outside trading hours lack fields
            logger.warning("No usable market data for %s: %s", asset.name, data)
            return None
        return MarketDataSnapshot(last_price=last_price, bid=bid, ask=ask)

    def fetch_portfolio(self) -> Portfolio:
        portfolio = Portfolio()
        for p in self.client.portfolio_positions():
            # Ignore cash positions
            if p.get("assetClass") != "STK":
                continue

            currency = parse_currency(p.get("currency"))
            asset = self._make_asset(
                p["conid"],
                ticker=p.get("ticker") or p.get("contractDesc"),
                primary_exchange=p.get("listingExchange"),
                currency=currency,
            )
            share_price = parse_amount(p.get("mktPrice"), currency, "market price")
            quantity = p.get("position")
            if not isinstance(quantity, (int, float)) or quantity != int(quantity):
                raise BrokerDataError(
                    f"Fractional shares are not supported: {quantity!r} x {asset.name}"
                )
            portfolio.add(Position(asset=asset, quantity=int(quantity), share_price=share_price))

        logger.info("Fetched %d positions", len(portfolio.positions))
        return portfolio

    def fetch_orders(self) -> List[Order]:
        reply = self.client.orders()
        orders = []
        for o in reply.get("orders", []):
            currency = parse_currency(o.get("cashCcy"))
            asset = self._make_asset(
                o["conid"],
                ticker=o.get("ticker"),
                primary_exchange=o.get("listingExchange"),
                currency=currency,
            )
            price = aux_price = None
            if o.get("price") is not None:
                price = parse_amount(o["price"], currency, "price")
            if o.get("auxPrice") is not None:
                aux_price = parse_amount(o["auxPrice"], currency, "auxPrice")

            filled = parse_quantity(o.get("filledQuantity", 0), "filled quantity")
            remaining = parse_quantity(o.get("remainingQuantity", 0), "remaining quantity")
            orders.append(
                Order(
                    id=o.get("order_ref") or f"ib_{o['orderId']}",
                    side=_parse_enum(_SIDES, o.get("side"), "order side"),
                    total_quantity=filled + remaining,
                    filled_quantity=filled,
                    asset=asset,
                    order_type=_parse_enum(_ORDER_TYPES, o.get("orderType"), "order type"),
                    time_in_force=_parse_enum(_TIFS, o.get("timeInForce"), "time in force"),
                    status=parse_order_status(o.get("status")),
                    price=price,
                    aux_price=aux_price,
                )
            )
        return orders

    def fetch_trades(self) -> List[Trade]:
        trades = []
        for t in self.client.trades():
            try:
                date = datetime.strptime(t["trade_time"], TRADE_TIME_FORMAT)
            except (KeyError, TypeError, ValueError):
                raise BrokerDataError(
                    f"Invalid trade time received from broker: {t.get('trade_time')!r}"
                ) from None
            asset = self._make_asset(t["conid"], ticker=t.get("symbol"))
            trades.append(
                Trade(
                    order_id=t.get("order_ref") or "N/A",
                    date=date,
                    asset=asset,
                    side=_parse_enum(_SIDES, t.get("side"), "order side"),
                    quantity=parse_quantity(t.get("size", 0), "trade size"),
                    price=parse_amount(t.get("price"), asset.currency, "trade price"),
                    exchange=t.get("exchange", ""),
                )
            )
        return trades

    def place_order(self, order: Order) -> List[OrderReply]:
        try:
            order_type = _ORDER_TYPE_WIRE[order.order_type]
        except KeyError:
            raise ValueError(f"Unsupported order type {order.order_type.value}") from None
        if (order.order_type == OrderType.MKT) != (order.price is None):
            raise ValueError("Market orders take no price, other orders require one")

        payload = {
            "conid": order.asset.conid,
            "orderType": order_type,
            "side": order.side.value,
            "cOID": order.id,
            "tif": order.time_in_force.value,
            "quantity": float(order.total_quantity),
        }
        if order.price is not None:
            payload["price"] = float(order.price.amount)

        reply = self.client.place_order(payload)
        return [parse_reply(r) for r in reply]

    def confirm_reply(self, reply_id: str) -> List[OrderReply]:
        return [parse_reply(r) for r in self.client.reply(reply_id)]

    def _make_asset(
        self,
        conid: int,
        ticker: Optional[str] = None,
        primary_exchange: Optional[str] = None,
        currency: Optional[Currency] = None,
    ) -> Asset:
        """Build an asset from contract info, cross-checking known fields."""
        info = self.client.contract_info(conid)
        try:
            local_symbol = info["local_symbol"]
            info_currency = parse_currency(info["currency"])
            exchange = info["exchange"]
            exchanges = [
                e for e in info.get("valid_exchanges", "").split(",") if e and e != "SMART"
            ]
        except (KeyError, AttributeError) as e:
            raise BrokerDataError(f"Malformed contract info for {conid}: {info!r}") from e

        if ticker is not None and ticker != local_symbol:
            warn_once(
                logger,
                f"Ticker mismatch: {ticker} vs {local_symbol} for contract {conid}. "
                f"Using {local_symbol}",
            )

        if primary_exchange is None:
            primary_exchange = exchange if exchange != "SMART" else (exchanges or [exchange])[0]
        if primary_exchange not in exchanges:
            # e.g. NMS is reported as primary exchange but is not a venue
            exchanges = [primary_exchange] + exchanges

        if currency is not None and currency != info_currency:
            raise BrokerDataError(
                f"Currency mismatch for contract {conid}: {currency} vs {info_currency}"
            )

        return Asset(
            ticker=local_symbol,
            primary_exchange=primary_exchange,
            exchanges=tuple(exchanges),
            description=info.get("company_name", ""),
            conid=int(info.get("con_id", conid)),
            currency=info_currency,
        )
