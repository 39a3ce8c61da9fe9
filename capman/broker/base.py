"""Abstract base class for brokerage access.

This module defines the brokerage domain model (assets, positions, orders,
trades) and the contract every broker adapter implements. The order
submission protocol and the invest workflow depend only on this contract.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

from capman.money import Currency, Money
from capman.utils.exceptions import AmbiguousAssetError


class OrderSide(Enum):
    """Order side."""

    BUY = "BUY"
    SELL = "SELL"


class OrderType(Enum):
    """Order types known to the broker."""

    MKT = "MKT"  # Market
    LMT = "LMT"  # Limit
    MIT = "MIT"  # Market-if-touched
    LIT = "LIT"  # Limit-if-touched
    STP = "STP"  # Stop-loss
    STPLMT = "STPLMT"  # Stop-loss-limit
    TRLSTP = "TRLSTP"  # Trailing stop
    MOC = "MOC"  # Market-on-close
    LOC = "LOC"  # Limit-on-close
    REL = "REL"  # Relative
    MID = "MID"  # Midprice


class OrderStatus(Enum):
    """Order lifecycle states as reported by the broker."""

    NONE = "None"  # Not yet submitted
    PENDING_SUBMIT = "PendingSubmit"  # Received, not yet sent to an exchange
    PRE_SUBMITTED = "PreSubmitted"  # Held until e.g. market open or trigger price
    SUBMITTED = "Submitted"  # Working at an exchange
    FILLED = "Filled"
    PENDING_CANCEL = "PendingCancel"
    CANCELLED = "Cancelled"


class TimeInForce(Enum):
    """Order duration/validity."""

    DAY = "DAY"  # Valid for current trading day only
    GTC = "GTC"  # Good-til-cancelled
    GTD = "GTD"  # Good-til-date


@dataclass(frozen=True, eq=False)
class Asset:
    """An investable asset, uniquely identified by its contract id.

    The (ticker, exchange) pair should also identify an asset, but an ISIN
    does not: the same ETF may trade in different currencies on different
    exchanges.

    Attributes:
        ticker: Exchange ticker symbol
        primary_exchange: Primary listing exchange or trading system
        exchanges: All exchanges the asset trades on, including the primary one
        description: Company or fund name
        conid: Broker contract id
        currency: Trading currency
    """

    ticker: str
    primary_exchange: str
    exchanges: tuple[str, ...]
    description: str
    conid: int
    currency: Currency

    def __post_init__(self):
        """Validate exchange list."""
        if not self.exchanges:
            raise ValueError(f"asset {self.ticker} must trade on at least one exchange")
        if self.primary_exchange not in self.exchanges:
            raise ValueError(
                f"primary exchange {self.primary_exchange} of {self.ticker} "
                f"not in {self.exchanges}"
            )

    @property
    def name(self) -> str:
        return f"{self.ticker}.{self.primary_exchange}"

    def __eq__(self, other) -> bool:
        if not isinstance(other, Asset):
            return NotImplemented
        return self.conid == other.conid

    def __hash__(self) -> int:
        return hash(self.conid)

    def __str__(self) -> str:
        return f"{self.name} (contract {self.conid}): {self.description}"


@dataclass(frozen=True)
class Position:
    """A number of shares of an asset together with the current share price."""

    asset: Asset
    quantity: int
    share_price: Money

    def __post_init__(self):
        """Validate position fields."""
        if self.share_price.currency != self.asset.currency:
            raise ValueError(
                f"share price of {self.asset.name} must be in {self.asset.currency}, "
                f"got {self.share_price.currency}"
            )
        if self.quantity < 0:
            raise ValueError(f"quantity must be non-negative, got {self.quantity}")

    @property
    def market_value(self) -> Money:
        return self.share_price * self.quantity

    def __str__(self) -> str:
        return f"{self.asset.name}: {self.quantity} @ {self.share_price}"


@dataclass
class Portfolio:
    """Positions currently held in the account."""

    positions: List[Position] = field(default_factory=list)

    def add(self, position: Position) -> None:
        self.positions.append(position)

    def find(self, asset: Asset) -> Optional[Position]:
        for position in self.positions:
            if position.asset == asset:
                return position
        return None


@dataclass(frozen=True)
class MarketDataSnapshot:
    """Latest quote for an asset."""

    last_price: Money
    bid: Money
    ask: Money


@dataclass
class Order:
    """An order as tracked by capman.

    Attributes:
        id: Client-generated order id, never reused
        side: BUY or SELL
        total_quantity: Total number of shares
        asset: Asset to trade
        order_type: Market, limit, etc.
        time_in_force: Order duration
        status: Current order status
        filled_quantity: Shares already filled
        price: Limit price, for limit orders and similar
        aux_price: Auxiliary price, e.g. for market-if-touched orders
    """

    id: str
    side: OrderSide
    total_quantity: int
    asset: Asset
    order_type: OrderType
    time_in_force: TimeInForce
    status: OrderStatus = OrderStatus.NONE
    filled_quantity: int = 0
    price: Optional[Money] = None
    aux_price: Optional[Money] = None

    def __post_init__(self):
        """Validate order fields."""
        if self.total_quantity < 0:
            raise ValueError(
                f"total_quantity must be >= 0, got {self.total_quantity}"
            )
        if self.filled_quantity < 0 or self.filled_quantity > self.total_quantity:
            raise ValueError(
                f"filled_quantity must be in [0, {self.total_quantity}], "
                f"got {self.filled_quantity}"
            )

    @property
    def remaining_quantity(self) -> int:
        return self.total_quantity - self.filled_quantity

    def __str__(self) -> str:
        return (
            f"Order {self.id} {self.side.value} {self.total_quantity} x "
            f"{self.asset.name} {self.order_type.value}: {self.status.value}"
        )


@dataclass(frozen=True)
class Trade:
    """A single execution reported by the broker."""

    order_id: str
    date: datetime
    asset: Asset
    side: OrderSide
    quantity: int
    price: Money
    exchange: str

    def __str__(self) -> str:
        return (
            f"Trade {self.order_id} {self.side.value} {self.quantity} x "
            f"{self.asset.name} @ {self.price}"
        )


@dataclass(frozen=True)
class OrderQuestion:
    """A disclosure the broker requires to be acknowledged before an order proceeds.

    Attributes:
        id: Reply id used to acknowledge the question
        messages: Free-text messages, each approved individually
    """

    id: str
    messages: tuple[str, ...]


@dataclass(frozen=True)
class OrderConfirmation:
    """Final answer of the broker to an order placement."""

    order_id: str
    status: OrderStatus
    local_order_id: str


OrderReply = Union[OrderQuestion, OrderConfirmation]


class Broker(ABC):
    """Abstract interface for brokerage access.

    Example:
        >>> broker = IBBroker(IBClient("https://localhost:5000"))
        >>> asset = broker.lookup_stock_at("VT", "ARCA", Currency.USD)
        >>> snapshot = broker.fetch_market_data_snapshot(asset)
    """

    @abstractmethod
    def lookup_stock(self, ticker: str) -> List[Asset]:
        """Find all stock contracts for a ticker."""
        pass

    @abstractmethod
    def fetch_market_data_snapshot(self, asset: Asset) -> Optional[MarketDataSnapshot]:
        """Fetch the latest quote, or None if the broker has no usable data."""
        pass

    @abstractmethod
    def fetch_portfolio(self) -> Portfolio:
        """Fetch the current stock positions of the account."""
        pass

    @abstractmethod
    def fetch_orders(self) -> List[Order]:
        """Fetch the orders of the current session."""
        pass

    @abstractmethod
    def fetch_trades(self) -> List[Trade]:
        """Fetch recent executions."""
        pass

    @abstractmethod
    def place_order(self, order: Order) -> List[OrderReply]:
        """Send an order to the broker.

        Returns:
            Either a confirmation or one or more questions
        """
        pass

    @abstractmethod
    def confirm_reply(self, reply_id: str) -> List[OrderReply]:
        """Acknowledge a question, returning the broker's follow-up replies."""
        pass

    def lookup_stock_at(
        self, ticker: str, exchange: str, currency: Currency
    ) -> Optional[Asset]:
        """Find the stock contract listed at an exchange in a currency.

        Args:
            ticker: Ticker symbol
            exchange: Exchange the asset must be listed at
            currency: Trading currency

        Returns:
            Matching asset, or None if there is none

        Raises:
            AmbiguousAssetError: If more than one contract matches
        """
        exchange = exchange.upper()
        matches = [
            asset
            for asset in self.lookup_stock(ticker)
            if exchange in asset.exchanges and asset.currency == currency
        ]
        if len(matches) > 1:
            raise AmbiguousAssetError(
                f"Ambiguous stock lookup {ticker} @ {exchange} in {currency}: "
                + ", ".join(str(a) for a in matches)
            )
        return matches[0] if matches else None
