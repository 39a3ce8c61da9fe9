"""High-level API for investing an amount into the target portfolio.

This module wires the portfolio specification, broker state and exchange
rates into the allocation engine, then submits one order per purchase
decision.
"""

from typing import Callable, List, MutableSequence, Optional, Sequence

from capman.broker.base import Asset, Broker, Order, OrderSide, Portfolio, TimeInForce
from capman.execution.approval import Approval
from capman.execution.order_submitter import OrderSubmitter
from capman.execution.session import OrderSession
from capman.money import Currency, Money
from capman.money.forex import ExchangeRates
from capman.portfolio.base import (
    AllocationConfig,
    AllocationResult,
    PricedCandidate,
    RawCandidate,
)
from capman.portfolio.deviation_allocator import DeviationAllocator, normalize_weights
from capman.portfolio.specification import PositionSpec
from capman.utils.config import InvestConfig
from capman.utils.exceptions import (
    AssetNotFoundError,
    BrokerDataError,
    ConfigurationError,
    ContractMismatchError,
)
from capman.utils.logging import get_logger

logger = get_logger(__name__)


class InvestAPI:
    """High-level API for one investment run.

    Example:
        >>> api = InvestAPI(broker, forex, console_approval)
        >>> config = InvestConfig(amount=USD(1000))
        >>> result = api.plan(config, load_portfolio_spec(config.portfolio_path))
        >>> orders = api.execute(result, config.order_type)
    """

    def __init__(
        self,
        broker: Broker,
        exchange_rates: ExchangeRates,
        approve: Approval,
        session: Optional[OrderSession] = None,
        shuffle: Optional[Callable[[MutableSequence], None]] = None,
    ):
        """Initialize InvestAPI.

        Args:
            broker: Broker for lookups, prices and orders
            exchange_rates: Rates used to normalize values into the base currency
            approve: Approval capability for order submission
            session: Source of client order ids (defaults to a new session)
            shuffle: Shuffle for the allocator's leftover pass
        """
        self.broker = broker
        self.exchange_rates = exchange_rates
        self.approve = approve
        self.session = session or OrderSession()
        self.shuffle = shuffle

    def plan(
        self, config: InvestConfig, specs: Sequence[PositionSpec]
    ) -> AllocationResult:
        """Compute the purchase decisions without placing any order.

        Args:
            config: Run options
            specs: Target portfolio

        Returns:
            AllocationResult in the amount's currency

        Raises:
            ConfigurationError: If options are invalid or the amount is
                below the minimum order amount
            ResolutionError: If any asset cannot be resolved exactly
            BrokerDataError: If a price is unavailable
        """
        config.validate()
        base = config.amount.currency
        min_order_amount = self.exchange_rates.convert(config.min_order_amount, base)
        if config.amount < min_order_amount:
            raise ConfigurationError(
                f"Cannot invest less than the minimum order amount ({min_order_amount})"
            )

        logger.info(
            "Preparing to invest %s (tolerance %.1f%%, max orders %d, "
            "min order %s, max weight adjustment %.2fx)",
            config.amount,
            config.tolerance * 100,
            config.max_orders,
            min_order_amount,
            config.max_weight_adjustment,
        )

        raw = self.resolve_candidates(specs, config.portfolio_path)
        portfolio = self.broker.fetch_portfolio()
        self._warn_unmanaged(portfolio, raw)
        priced = self.price_candidates(raw, portfolio, base)

        allocator = DeviationAllocator(
            AllocationConfig(
                min_order_amount=min_order_amount,
                max_orders=config.max_orders,
                max_weight_adjustment=config.max_weight_adjustment,
                tolerance=config.tolerance,
            ),
            shuffle=self.shuffle,
        )
        return allocator.allocate(priced, config.amount)

    def execute(self, result: AllocationResult, order_type: str = "limit") -> List[Order]:
        """Submit one buy order per selected candidate, in selection order.

        Limit orders use the candidate's share price converted back into the
        asset's currency. A declined order does not stop the remaining ones.

        Args:
            result: Output of plan()
            order_type: "limit" or "market"

        Returns:
            Submitted (or cancelled) orders
        """
        submitter = OrderSubmitter(self.broker, self.session, self.approve)
        orders = []
        for candidate in result.selected:
            asset = candidate.asset
            if candidate.shares_to_purchase == 0:
                logger.warning("Skipping %s: no whole share fits its budget", asset.name)
                continue

            if order_type == "limit":
                price = self.exchange_rates.convert(candidate.share_price, asset.currency)
                order = submitter.submit_limit_order(
                    asset,
                    OrderSide.BUY,
                    candidate.shares_to_purchase,
                    price,
                    TimeInForce.DAY,
                )
            elif order_type == "market":
                order = submitter.submit_market_order(
                    asset, OrderSide.BUY, candidate.shares_to_purchase, TimeInForce.DAY
                )
            else:
                raise ConfigurationError(f"Unknown order type {order_type!r}")
            orders.append(order)
        return orders

    def resolve_candidates(
        self, specs: Sequence[PositionSpec], source: str = "portfolio specification"
    ) -> List[RawCandidate]:
        """Resolve every specified position to a tradable asset.

        Raises:
            AssetNotFoundError: If a ticker has no matching contract
            AmbiguousAssetError: If a ticker matches several contracts
            ContractMismatchError: If a declared conid does not match
        """
        weights = normalize_weights([s.weight for s in specs])
        candidates = []
        for spec, weight in zip(specs, weights):
            asset = self.broker.lookup_stock_at(spec.ticker, spec.exchange, spec.currency)
            if asset is None:
                raise AssetNotFoundError(
                    f"Could not find asset {spec.ticker} @ {spec.exchange} in {spec.currency}"
                )
            if spec.conid is not None and asset.conid != spec.conid:
                raise ContractMismatchError(
                    f"Contract id mismatch for {asset.ticker}: expected {spec.conid}, "
                    f"got {asset.conid}. Please check {source}"
                )
            candidates.append(RawCandidate(asset=asset, target_weight=weight))
        return candidates

    def price_candidates(
        self,
        candidates: Sequence[RawCandidate],
        portfolio: Portfolio,
        base: Currency,
    ) -> List[PricedCandidate]:
        """Attach share price and position value in the base currency.

        Held assets use the position's market price, others the last price
        of a market data snapshot.

        Raises:
            BrokerDataError: If no market data is available for an unheld asset
        """
        priced = []
        for candidate in candidates:
            position = portfolio.find(candidate.asset)
            if position is not None:
                share_price = self.exchange_rates.convert(position.share_price, base)
                current_value = share_price * position.quantity
            else:
                snapshot = self.broker.fetch_market_data_snapshot(candidate.asset)
                if snapshot is None:
                    raise BrokerDataError(
                        f"Could not fetch market data for {candidate.asset.ticker}"
                    )
                share_price = self.exchange_rates.convert(snapshot.last_price, base)
                current_value = Money.zero(base)
            priced.append(candidate.priced(share_price, current_value))
        return priced

    def _warn_unmanaged(self, portfolio: Portfolio, candidates: Sequence[RawCandidate]) -> None:
        managed: set[Asset] = {c.asset for c in candidates}
        for position in portfolio.positions:
            if position.asset not in managed:
                logger.warning(
                    "Ignoring position %s as it is not part of the specified portfolio",
                    position.asset.name,
                )
