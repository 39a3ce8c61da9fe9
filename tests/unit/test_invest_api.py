"""Unit tests for InvestAPI."""

from decimal import Decimal
from unittest.mock import Mock

import pytest

from capman.api.invest_api import InvestAPI
from capman.broker.base import (
    Broker,
    MarketDataSnapshot,
    OrderConfirmation,
    OrderSide,
    OrderStatus,
    OrderType,
    Portfolio,
    Position,
    TimeInForce,
)
from capman.execution.session import OrderSession
from capman.money import EUR, USD, Currency
from capman.money.forex import ExchangeRates
from capman.portfolio.specification import PositionSpec
from capman.utils.config import InvestConfig
from capman.utils.exceptions import (
    AmbiguousAssetError,
    AssetNotFoundError,
    BrokerDataError,
    ConfigurationError,
    ContractMismatchError,
)

from conftest import ScriptedApproval


@pytest.fixture
def forex() -> ExchangeRates:
    return ExchangeRates(
        base=Currency.USD, rates={Currency.USD: 1.0, Currency.EUR: 0.5}, date="2024-01-02"
    )


@pytest.fixture
def assets(make_asset) -> dict:
    return {
        "VT": make_asset("VT", Currency.USD, "ARCA", conid=52197301),
        "IWDA": make_asset("IWDA", Currency.EUR, "AEB", conid=1001),
        "OLD": make_asset("OLD", Currency.USD, "NYSE", conid=7),
    }


@pytest.fixture
def specs() -> list:
    return [
        PositionSpec("VT", "ARCA", Currency.USD, 60, conid=52197301),
        PositionSpec("IWDA", "AEB", Currency.EUR, 40),
    ]


@pytest.fixture
def broker(assets: dict) -> Mock:
    broker = Mock(spec=Broker)
    broker.lookup_stock_at.side_effect = lambda ticker, exchange, currency: assets.get(ticker)
    broker.fetch_portfolio.return_value = Portfolio(
        [
            Position(assets["VT"], 10, USD(100)),
            Position(assets["OLD"], 5, USD(20)),
        ]
    )
    broker.fetch_market_data_snapshot.return_value = MarketDataSnapshot(
        last_price=EUR(40), bid=EUR(Decimal("39.9")), ask=EUR(Decimal("40.1"))
    )
    broker.place_order.return_value = [
        OrderConfirmation(order_id="1", status=OrderStatus.SUBMITTED, local_order_id="")
    ]
    return broker


def make_api(broker, forex, answers=None) -> InvestAPI:
    approve = ScriptedApproval(answers if answers is not None else [True] * 10)
    return InvestAPI(
        broker, forex, approve, session=OrderSession(token="T"), shuffle=lambda seq: None
    )


def options(**kwargs) -> InvestConfig:
    values = {"amount": USD(1000), "min_order_amount": USD(100), "tolerance": 0.0}
    values.update(kwargs)
    return InvestConfig(**values)


class TestPlan:
    """Test cases for planning an investment."""

    def test_plan(self, broker: Mock, forex: ExchangeRates, specs: list) -> None:
        """Test an underweight new position is bought first and priced in base currency."""
        result = make_api(broker, forex).plan(options(), specs)

        assert [c.asset.ticker for c in result.selected] == ["IWDA", "VT"]
        iwda, vt = result.selected
        # 40 EUR at 0.5 EUR per USD
        assert iwda.share_price == USD(80)
        assert iwda.current_value == USD(0)
        assert vt.current_value == USD(1000)
        assert vt.actual_weight == 1.0
        assert iwda.shares_to_purchase == 8
        assert vt.shares_to_purchase == 3
        assert result.total_spend == USD(940)
        broker.fetch_market_data_snapshot.assert_called_once()

    def test_unmanaged_position_warned(
        self, broker: Mock, forex: ExchangeRates, specs: list, caplog
    ) -> None:
        with caplog.at_level("WARNING", logger="capman.api.invest_api"):
            make_api(broker, forex).plan(options(), specs)

        assert any("OLD.NYSE" in r.message for r in caplog.records)

    def test_invalid_options_before_network(
        self, broker: Mock, forex: ExchangeRates, specs: list
    ) -> None:
        """Test configuration errors are raised before any broker call."""
        with pytest.raises(ConfigurationError, match="max_orders"):
            make_api(broker, forex).plan(options(max_orders=0), specs)

        broker.lookup_stock_at.assert_not_called()
        broker.fetch_portfolio.assert_not_called()

    def test_amount_below_min_order(
        self, broker: Mock, forex: ExchangeRates, specs: list
    ) -> None:
        """Test the minimum order amount is converted into the base currency."""
        # 100 EUR is 200 USD
        with pytest.raises(ConfigurationError, match="less than the minimum order"):
            make_api(broker, forex).plan(
                options(amount=USD(150), min_order_amount=EUR(100)), specs
            )
        broker.fetch_portfolio.assert_not_called()

    def test_asset_not_found(self, broker: Mock, forex: ExchangeRates) -> None:
        """Test an unresolvable ticker aborts the run."""
        specs = [PositionSpec("NOPE", "ARCA", Currency.USD, 1)]

        with pytest.raises(AssetNotFoundError, match="NOPE @ ARCA in USD"):
            make_api(broker, forex).plan(options(), specs)
        broker.fetch_portfolio.assert_not_called()

    def test_ambiguous_asset(
        self, broker: Mock, forex: ExchangeRates, specs: list, make_asset
    ) -> None:
        """Test two contracts at the same exchange and currency abort the run."""
        listings = {
            "VT": [make_asset("VT", Currency.USD, "ARCA", conid=52197301)],
            "IWDA": [
                make_asset("IWDA", Currency.EUR, "AEB", conid=1001),
                make_asset("IWDA", Currency.EUR, "AEB", conid=1002),
            ],
        }
        broker.lookup_stock.side_effect = listings.get
        broker.lookup_stock_at.side_effect = (
            lambda ticker, exchange, currency: Broker.lookup_stock_at(
                broker, ticker, exchange, currency
            )
        )

        with pytest.raises(AmbiguousAssetError, match="IWDA @ AEB in EUR"):
            make_api(broker, forex).plan(options(), specs)
        broker.fetch_portfolio.assert_not_called()
        broker.fetch_market_data_snapshot.assert_not_called()
        broker.place_order.assert_not_called()

    def test_contract_mismatch(self, broker: Mock, forex: ExchangeRates) -> None:
        specs = [PositionSpec("VT", "ARCA", Currency.USD, 1, conid=12345)]

        with pytest.raises(ContractMismatchError, match="expected 12345, got 52197301"):
            make_api(broker, forex).plan(options(), specs)

    def test_missing_market_data(
        self, broker: Mock, forex: ExchangeRates, specs: list
    ) -> None:
        broker.fetch_market_data_snapshot.return_value = None

        with pytest.raises(BrokerDataError, match="Could not fetch market data for IWDA"):
            make_api(broker, forex).plan(options(), specs)

    def test_weights_normalized(self, broker: Mock, forex: ExchangeRates) -> None:
        api = make_api(broker, forex)
        raw = api.resolve_candidates(
            [
                PositionSpec("VT", "ARCA", Currency.USD, 3),
                PositionSpec("IWDA", "AEB", Currency.EUR, 1),
            ]
        )
        assert [c.target_weight for c in raw] == [0.75, 0.25]


class TestExecute:
    """Test cases for submitting the planned orders."""

    def test_limit_orders(self, broker: Mock, forex: ExchangeRates, specs: list) -> None:
        """Test one limit order per candidate, priced in the asset's currency."""
        api = make_api(broker, forex)
        result = api.plan(options(), specs)

        orders = api.execute(result, "limit")

        assert [o.id for o in orders] == ["cpm_T_0", "cpm_T_1"]
        iwda, vt = orders
        assert iwda.side == OrderSide.BUY
        assert iwda.order_type == OrderType.LMT
        assert iwda.time_in_force == TimeInForce.DAY
        assert iwda.total_quantity == 8
        assert iwda.price == EUR(40)
        assert vt.price == USD(100)
        assert all(o.status == OrderStatus.SUBMITTED for o in orders)

    def test_market_orders(self, broker: Mock, forex: ExchangeRates, specs: list) -> None:
        api = make_api(broker, forex)
        result = api.plan(options(order_type="market"), specs)

        orders = api.execute(result, "market")

        assert all(o.order_type == OrderType.MKT and o.price is None for o in orders)

    def test_declined_order_does_not_stop_others(
        self, broker: Mock, forex: ExchangeRates, specs: list
    ) -> None:
        api = make_api(broker, forex, answers=[False, True])
        result = api.plan(options(), specs)

        iwda, vt = api.execute(result)

        assert iwda.status == OrderStatus.CANCELLED
        assert vt.status == OrderStatus.SUBMITTED
        assert broker.place_order.call_count == 1

    def test_zero_share_candidates_skipped(
        self, broker: Mock, forex: ExchangeRates, specs: list
    ) -> None:
        """Test a candidate without a whole share is not ordered."""
        broker.fetch_market_data_snapshot.return_value = MarketDataSnapshot(
            last_price=EUR(1000), bid=EUR(999), ask=EUR(1001)
        )
        api = make_api(broker, forex)
        result = api.plan(options(), specs)

        orders = api.execute(result)

        assert [o.asset.ticker for o in orders] == ["VT"]

    def test_unknown_order_type(self, broker: Mock, forex: ExchangeRates, specs: list) -> None:
        api = make_api(broker, forex)
        result = api.plan(options(), specs)

        with pytest.raises(ConfigurationError, match="Unknown order type"):
            api.execute(result, "stop")
