"""Broker Layer - brokerage domain model and adapters.

Components:
- Broker: Abstract brokerage interface
- IBClient: Client Portal Web API transport
- IBBroker: Interactive Brokers implementation of Broker
- Asset, Position, Portfolio, Order, Trade: Domain objects
- OrderQuestion, OrderConfirmation: Replies to an order placement
"""

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
from capman.broker.ib_broker import IBBroker
from capman.broker.ib_client import IBClient

__all__ = [
    # Abstract interface
    "Broker",
    # Concrete implementations
    "IBBroker",
    "IBClient",
    # Data classes
    "Asset",
    "Position",
    "Portfolio",
    "MarketDataSnapshot",
    "Order",
    "Trade",
    "OrderQuestion",
    "OrderConfirmation",
    "OrderReply",
    # Enums
    "OrderSide",
    "OrderType",
    "OrderStatus",
    "TimeInForce",
]
