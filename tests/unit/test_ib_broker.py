"""Unit tests for IBBroker."""

from datetime import datetime
from decimal import Decimal
from unittest.mock import Mock

import pytest

from capman.broker.base import (
    Order,
    OrderConfirmation,
    OrderQuestion,
    OrderSide,
    OrderStatus,
    OrderType,
    TimeInForce,
)
from capman.broker.ib_broker import IBBroker, parse_order_status, parse_reply
from capman.broker.ib_client import IBClient
from capman.money import EUR, USD, Currency
from capman.utils import logging as capman_logging
from capman.utils.exceptions import (
    AmbiguousAssetError,
    BrokerConnectionError,
    BrokerDataError,
)

CONTRACTS = {
    52197301: {
        "con_id": 52197301,
        "local_symbol": "VT",
        "currency": "USD",
        "exchange": "ARCA",
        "valid_exchanges": "SMART,ARCA,NYSE,BATS",
        "company_name": "VANGUARD TOT WORLD STK ETF",
    },
    75776072: {
        "con_id": 75776072,
        "local_symbol": "CSPX",
        "currency": "USD",
        "exchange": "SMART",
        "valid_exchanges": "SMART,LSEETF",
        "company_name": "ISHARES CORE S&P 500",
    },
    1001: {
        "con_id": 1001,
        "local_symbol": "IWDA",
        "currency": "EUR",
        "exchange": "AEB",
        "valid_exchanges": "SMART,AEB",
        "company_name": "ISHARES CORE MSCI WORLD",
    },
}


@pytest.fixture
def client() -> Mock:
    client = Mock(spec=IBClient)
    client.auth_status.return_value = {"connected": True, "authenticated": True}
    client.accounts.return_value = {"selectedAccount": "U1"}
    client.portfolio_accounts.return_value = [
        {"accountId": "U1", "accountTitle": "Jane Doe", "type": "INDIVIDUAL"}
    ]
    client.contract_info.side_effect = lambda conid: CONTRACTS[conid]
    return client


@pytest.fixture
def broker(client: Mock) -> IBBroker:
    return IBBroker(client)


@pytest.fixture
def vt(make_asset):
    return make_asset("VT", conid=52197301)


class TestIBBrokerSession:
    """Test cases for session checks."""

    def test_session_opened(self, client: Mock, broker: IBBroker) -> None:
        """Test the orders and trades endpoints are primed once."""
        client.orders.assert_called_once()
        client.trades.assert_called_once()

    @pytest.mark.parametrize(
        "status,message",
        [
            ({"connected": False, "authenticated": True}, "not connected"),
            ({"connected": True, "authenticated": False}, "not authenticated"),
        ],
    )
    def test_gateway_not_ready(self, client: Mock, status, message) -> None:
        client.auth_status.return_value = status

        with pytest.raises(BrokerConnectionError, match=message):
            IBBroker(client)

    def test_inconsistent_account(self, client: Mock) -> None:
        """Test the selected account must be a portfolio account."""
        client.accounts.return_value = {"selectedAccount": "U9"}

        with pytest.raises(BrokerDataError, match="inconsistent account"):
            IBBroker(client)


class TestLookup:
    """Test cases for stock lookup."""

    def test_lookup_stock(self, client: Mock, broker: IBBroker) -> None:
        """Test only stock contracts are returned."""
        client.trsrv_stocks.return_value = {
            "VT": [
                {"assetClass": "STK", "contracts": [{"conid": 52197301, "exchange": "ARCA"}]},
                {"assetClass": "OPT", "contracts": [{"conid": 99, "exchange": "CBOE"}]},
            ]
        }

        (asset,) = broker.lookup_stock("VT")

        assert asset.ticker == "VT"
        assert asset.conid == 52197301
        assert asset.primary_exchange == "ARCA"
        assert asset.exchanges == ("ARCA", "NYSE", "BATS")
        assert asset.currency == Currency.USD
        assert asset.description == "VANGUARD TOT WORLD STK ETF"

    def test_lookup_stock_at_filters(self, client: Mock, broker: IBBroker) -> None:
        """Test filtering by exchange and currency."""
        client.trsrv_stocks.return_value = {
            "X": [
                {
                    "assetClass": "STK",
                    "contracts": [
                        {"conid": 52197301, "exchange": "ARCA"},
                        {"conid": 1001, "exchange": "AEB"},
                    ],
                }
            ]
        }

        assert broker.lookup_stock_at("X", "aeb", Currency.EUR).conid == 1001
        assert broker.lookup_stock_at("X", "AEB", Currency.USD) is None

    def test_lookup_stock_at_ambiguous(self, client: Mock, broker: IBBroker) -> None:
        """Test two contracts at the same exchange and currency are rejected."""
        client.trsrv_stocks.return_value = {
            "X": [
                {
                    "assetClass": "STK",
                    "contracts": [
                        {"conid": 52197301, "exchange": "ARCA"},
                        {"conid": 75776072, "exchange": "ARCA"},
                    ],
                }
            ]
        }

        with pytest.raises(AmbiguousAssetError, match="Ambiguous stock lookup X @ ARCA"):
            broker.lookup_stock_at("X", "arca", Currency.USD)

    def test_primary_exchange_prepended(self, client: Mock, broker: IBBroker) -> None:
        """Test a primary exchange that is not a venue is still listed."""
        client.trsrv_stocks.return_value = {
            "VT": [{"assetClass": "STK", "contracts": [{"conid": 52197301, "exchange": "NMS"}]}]
        }

        (asset,) = broker.lookup_stock("VT")

        assert asset.exchanges[0] == "NMS"
        assert asset.name == "VT.NMS"

    def test_lookup_wrong_ticker(self, client: Mock, broker: IBBroker) -> None:
        client.trsrv_stocks.return_value = {"BND": []}

        with pytest.raises(BrokerDataError, match="returned BND"):
            broker.lookup_stock("VT")


class TestMarketData:
    """Test cases for market data snapshots."""

    def test_snapshot(self, client: Mock, broker: IBBroker, vt) -> None:
        client.market_data.return_value = [{"31": "101.5", "84": "101.4", "86": "101.6"}]

        snapshot = broker.fetch_market_data_snapshot(vt)

        assert snapshot.last_price == USD(Decimal("101.5"))
        assert snapshot.bid == USD(Decimal("101.4"))
        assert snapshot.ask == USD(Decimal("101.6"))

    def test_incomplete_snapshot(self, client: Mock, broker: IBBroker, vt) -> None:
        """Test a snapshot without prices yields None."""
        client.market_data.return_value = [{"conid": 52197301}]

        assert broker.fetch_market_data_snapshot(vt) is None

    def test_unexpected_entry_count(self, client: Mock, broker: IBBroker, vt) -> None:
        client.market_data.return_value = []

        with pytest.raises(BrokerDataError, match="Expected one market data entry"):
            broker.fetch_market_data_snapshot(vt)


@pytest.fixture
def reset_warnings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(capman_logging, "_emitted_warnings", set())


class TestPortfolio:
    """Test cases for portfolio positions."""

    def test_fetch_portfolio(self, client: Mock, broker: IBBroker) -> None:
        """Test stock positions are converted and cash is skipped."""
        client.portfolio_positions.return_value = [
            {
                "conid": 52197301,
                "assetClass": "STK",
                "ticker": "VT",
                "listingExchange": "ARCA",
                "currency": "USD",
                "mktPrice": 101.5,
                "position": 12.0,
            },
            {"conid": 0, "assetClass": "CASH", "currency": "USD", "position": 1000},
        ]

        (position,) = broker.fetch_portfolio().positions

        assert position.asset.conid == 52197301
        assert position.quantity == 12
        assert position.share_price == USD(Decimal("101.5"))
        assert position.market_value == USD(1218)

    def test_fractional_shares(self, client: Mock, broker: IBBroker) -> None:
        client.portfolio_positions.return_value = [
            {
                "conid": 52197301,
                "assetClass": "STK",
                "ticker": "VT",
                "listingExchange": "ARCA",
                "currency": "USD",
                "mktPrice": 101.5,
                "position": 1.5,
            }
        ]

        with pytest.raises(BrokerDataError, match="Fractional shares"):
            broker.fetch_portfolio()

    def test_unparseable_price(self, client: Mock, broker: IBBroker) -> None:
        """Test corrupt numeric data is fatal."""
        client.portfolio_positions.return_value = [
            {
                "conid": 52197301,
                "assetClass": "STK",
                "ticker": "VT",
                "listingExchange": "ARCA",
                "currency": "USD",
                "mktPrice": "n/a",
                "position": 1,
            }
        ]

        with pytest.raises(BrokerDataError, match="Invalid market price"):
            broker.fetch_portfolio()

    def test_currency_mismatch(self, client: Mock, broker: IBBroker) -> None:
        client.portfolio_positions.return_value = [
            {
                "conid": 1001,
                "assetClass": "STK",
                "ticker": "IWDA",
                "listingExchange": "AEB",
                "currency": "USD",
                "mktPrice": 80,
                "position": 1,
            }
        ]

        with pytest.raises(BrokerDataError, match="Currency mismatch"):
            broker.fetch_portfolio()

    @pytest.mark.usefixtures("reset_warnings")
    def test_ticker_mismatch_warns_once(self, client: Mock, broker: IBBroker, caplog) -> None:
        """Test a differing ticker is logged once and the contract symbol wins."""
        client.portfolio_positions.return_value = [
            {
                "conid": 75776072,
                "assetClass": "STK",
                "contractDesc": "CSPXl",
                "listingExchange": "LSEETF",
                "currency": "USD",
                "mktPrice": 450,
                "position": 2,
            }
        ]

        with caplog.at_level("WARNING", logger="capman.broker.ib_broker"):
            first = broker.fetch_portfolio()
            broker.fetch_portfolio()

        assert first.positions[0].asset.ticker == "CSPX"
        assert [r.message for r in caplog.records].count(
            "Ticker mismatch: CSPXl vs CSPX for contract 75776072. Using CSPX"
        ) == 1


class TestOrdersAndTrades:
    """Test cases for order and trade listings."""

    def test_fetch_orders(self, client: Mock, broker: IBBroker) -> None:
        client.orders.return_value = {
            "orders": [
                {
                    "orderId": 1234,
                    "order_ref": "cpm_AB12CD34_0",
                    "conid": 1001,
                    "ticker": "IWDA",
                    "listingExchange": "AEB",
                    "cashCcy": "EUR",
                    "side": "BUY",
                    "orderType": "Limit",
                    "timeInForce": "CLOSE",
                    "status": "PreSubmitted",
                    "filledQuantity": 0,
                    "remainingQuantity": 10,
                    "price": "80.5",
                }
            ]
        }

        (order,) = broker.fetch_orders()

        assert order.id == "cpm_AB12CD34_0"
        assert order.side == OrderSide.BUY
        assert order.total_quantity == 10
        assert order.order_type == OrderType.LMT
        assert order.time_in_force == TimeInForce.DAY
        assert order.status == OrderStatus.PRE_SUBMITTED
        assert order.price == EUR(Decimal("80.5"))
        assert order.aux_price is None

    def test_fetch_cancelled_order_without_fills(self, client: Mock, broker: IBBroker) -> None:
        """Test a cancelled order with nothing filled or remaining is listed."""
        client.orders.return_value = {
            "orders": [
                {
                    "orderId": 77,
                    "conid": 52197301,
                    "ticker": "VT",
                    "cashCcy": "USD",
                    "side": "SELL",
                    "orderType": "LMT",
                    "timeInForce": "DAY",
                    "status": "Cancelled",
                    "filledQuantity": 0.0,
                    "remainingQuantity": 0.0,
                    "price": 101.5,
                }
            ]
        }

        (order,) = broker.fetch_orders()

        assert order.id == "ib_77"
        assert order.status == OrderStatus.CANCELLED
        assert order.total_quantity == 0
        assert order.filled_quantity == 0

    @pytest.mark.parametrize("value", ["ten", None, -1, 2.5])
    def test_invalid_order_quantity(self, client: Mock, broker: IBBroker, value) -> None:
        client.orders.return_value = {
            "orders": [
                {
                    "orderId": 78,
                    "conid": 52197301,
                    "cashCcy": "USD",
                    "side": "BUY",
                    "orderType": "MKT",
                    "timeInForce": "DAY",
                    "status": "Submitted",
                    "filledQuantity": 0,
                    "remainingQuantity": value,
                }
            ]
        }

        with pytest.raises(BrokerDataError, match="Invalid remaining quantity"):
            broker.fetch_orders()

    def test_unknown_order_status(self, client: Mock, broker: IBBroker) -> None:
        client.orders.return_value = {
            "orders": [
                {
                    "orderId": 1,
                    "conid": 1001,
                    "cashCcy": "EUR",
                    "side": "SELL",
                    "orderType": "MKT",
                    "timeInForce": "GTC",
                    "status": "Exploded",
                    "remainingQuantity": 1,
                }
            ]
        }

        with pytest.raises(BrokerDataError, match="Unknown order status"):
            broker.fetch_orders()

    def test_fetch_trades(self, client: Mock, broker: IBBroker) -> None:
        client.trades.return_value = [
            {
                "order_ref": "cpm_AB12CD34_0",
                "trade_time": "20240102-15:30:00",
                "conid": 52197301,
                "symbol": "VT",
                "side": "B",
                "size": 12,
                "price": "101.5",
                "exchange": "ARCA",
            }
        ]

        (trade,) = broker.fetch_trades()

        assert trade.order_id == "cpm_AB12CD34_0"
        assert trade.date == datetime(2024, 1, 2, 15, 30)
        assert trade.side == OrderSide.BUY
        assert trade.quantity == 12
        assert trade.price == USD(Decimal("101.5"))

    def test_invalid_trade_time(self, client: Mock, broker: IBBroker) -> None:
        client.trades.return_value = [{"trade_time": "yesterday", "conid": 52197301}]

        with pytest.raises(BrokerDataError, match="Invalid trade time"):
            broker.fetch_trades()


class TestPlaceOrder:
    """Test cases for order placement."""

    def _order(self, asset, order_type=OrderType.LMT, price=USD(Decimal("101.5"))) -> Order:
        return Order(
            id="cpm_T_0",
            side=OrderSide.BUY,
            total_quantity=10,
            asset=asset,
            order_type=order_type,
            time_in_force=TimeInForce.DAY,
            price=price,
        )

    def test_payload(self, client: Mock, broker: IBBroker, vt) -> None:
        """Test the wire payload of a limit order."""
        client.place_order.return_value = [
            {"order_id": "987", "order_status": "Submitted", "local_order_id": "cpm_T_0"}
        ]

        replies = broker.place_order(self._order(vt))

        client.place_order.assert_called_once_with(
            {
                "conid": 52197301,
                "orderType": "LMT",
                "side": "BUY",
                "cOID": "cpm_T_0",
                "tif": "DAY",
                "quantity": 10.0,
                "price": 101.5,
            }
        )
        assert replies == [
            OrderConfirmation(
                order_id="987", status=OrderStatus.SUBMITTED, local_order_id="cpm_T_0"
            )
        ]

    def test_market_order_has_no_price(self, client: Mock, broker: IBBroker, vt) -> None:
        client.place_order.return_value = [{"id": "q1", "message": ["Are you sure?"]}]

        replies = broker.place_order(self._order(vt, OrderType.MKT, None))

        payload = client.place_order.call_args.args[0]
        assert "price" not in payload
        assert payload["orderType"] == "MKT"
        assert replies == [OrderQuestion(id="q1", messages=("Are you sure?",))]

    def test_price_rules(self, broker: IBBroker, vt) -> None:
        with pytest.raises(ValueError, match="Market orders take no price"):
            broker.place_order(self._order(vt, OrderType.MKT, USD(1)))
        with pytest.raises(ValueError, match="Market orders take no price"):
            broker.place_order(self._order(vt, OrderType.LMT, None))

    def test_unsupported_order_type(self, broker: IBBroker, vt) -> None:
        with pytest.raises(ValueError, match="Unsupported order type MOC"):
            broker.place_order(self._order(vt, OrderType.MOC))

    def test_confirm_reply(self, client: Mock, broker: IBBroker) -> None:
        client.reply.return_value = [{"id": "q2", "message": "Second warning"}]

        replies = broker.confirm_reply("q1")

        client.reply.assert_called_once_with("q1")
        assert replies == [OrderQuestion(id="q2", messages=("Second warning",))]


class TestParsing:
    """Test cases for reply and status parsing."""

    @pytest.mark.parametrize("value", ["None", "Unknown", None])
    def test_invalid_status(self, value) -> None:
        with pytest.raises(BrokerDataError):
            parse_order_status(value)

    def test_malformed_reply(self) -> None:
        with pytest.raises(BrokerDataError, match="Malformed order reply"):
            parse_reply({"unexpected": True})
