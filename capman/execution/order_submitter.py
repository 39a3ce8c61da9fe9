"""Order submission with interactive confirmation.

Placing an order at the broker may not succeed in one call: the broker can
answer with questions (risk warnings, disclosures) that must be
acknowledged before it returns a confirmation. Every step needs operator
approval:

    None --approve--> placed --(question --approve--> acknowledged)*--> confirmed

Declining at any point leaves the order Cancelled and makes no further
broker calls. Broker errors propagate and are never retried, since a
retried placement can create a duplicate order.
"""

from typing import List

from capman.broker.base import (
    Asset,
    Broker,
    Order,
    OrderConfirmation,
    OrderReply,
    OrderSide,
    OrderStatus,
    OrderType,
    TimeInForce,
)
from capman.execution.approval import Approval
from capman.execution.session import OrderSession
from capman.money import Money
from capman.utils.exceptions import OrderExecutionError
from capman.utils.logging import get_logger, log_with_context

logger = get_logger(__name__)

# Limit prices are rounded to one hundredth of the currency. The per-contract
# increment reported by the broker does not always match what the order
# endpoint enforces.
MIN_PRICE_INCREMENT = "0.01"


class OrderSubmitter:
    """Drive orders through approval, placement and broker questions.

    Example:
        >>> submitter = OrderSubmitter(broker, OrderSession(), console_approval)
        >>> order = submitter.submit_limit_order(
        ...     asset, OrderSide.BUY, 10, USD(101.5), TimeInForce.DAY
        ... )
        >>> order.status
        <OrderStatus.SUBMITTED: 'Submitted'>
    """

    def __init__(self, broker: Broker, session: OrderSession, approve: Approval):
        """Initialize submitter.

        Args:
            broker: Broker to place orders with
            session: Source of client order ids
            approve: Approval capability asked before every broker step
        """
        self.broker = broker
        self.session = session
        self.approve = approve

    def submit_market_order(
        self,
        asset: Asset,
        side: OrderSide,
        quantity: int,
        time_in_force: TimeInForce = TimeInForce.DAY,
    ) -> Order:
        order = Order(
            id=self.session.next_order_id(),
            side=side,
            total_quantity=quantity,
            asset=asset,
            order_type=OrderType.MKT,
            time_in_force=time_in_force,
        )
        return self.submit(order)

    def submit_limit_order(
        self,
        asset: Asset,
        side: OrderSide,
        quantity: int,
        price: Money,
        time_in_force: TimeInForce = TimeInForce.DAY,
    ) -> Order:
        """Submit a limit order.

        Raises:
            ValueError: If the price is not in the asset's currency
        """
        if price.currency != asset.currency:
            raise ValueError(
                f"limit price for {asset.name} must be in {asset.currency}, got {price}"
            )
        order = Order(
            id=self.session.next_order_id(),
            side=side,
            total_quantity=quantity,
            asset=asset,
            order_type=OrderType.LMT,
            time_in_force=time_in_force,
            price=price.rounded(MIN_PRICE_INCREMENT),
        )
        return self.submit(order)

    def submit(self, order: Order) -> Order:
        """Submit a fresh order, updating it in place.

        Args:
            order: Order in status None without fills

        Returns:
            The same order, in its terminal status

        Raises:
            ValueError: If the order quantity is not positive
            OrderExecutionError: If the order was already submitted or
                cancelled, or the broker never confirmed it
        """
        if order.total_quantity <= 0:
            raise ValueError(
                f"total_quantity must be positive, got {order.total_quantity}"
            )
        if order.status != OrderStatus.NONE or order.filled_quantity != 0:
            raise OrderExecutionError(
                f"Order {order.id} is {order.status.value} and cannot be submitted again"
            )

        if not self.approve(f"About to submit order: {describe_order(order)}"):
            order.status = OrderStatus.CANCELLED
            log_with_context(logger, "info", "Order declined", order_id=order.id)
            return order

        replies = self.broker.place_order(order)
        order.status = self._resolve_questions(order, replies)
        if order.status == OrderStatus.FILLED:
            order.filled_quantity = order.total_quantity

        log_with_context(
            logger,
            "info",
            "Order resolved",
            order_id=order.id,
            ticker=order.asset.ticker,
            quantity=order.total_quantity,
            status=order.status.value,
        )
        return order

    def _resolve_questions(self, order: Order, replies: List[OrderReply]) -> OrderStatus:
        """Answer broker questions until a confirmation arrives.

        Replies form one pool processed last-received-first; the replies to
        an acknowledgment are appended to the pool.
        """
        pending = list(replies)
        while pending:
            reply = pending.pop()
            if isinstance(reply, OrderConfirmation):
                if pending:
                    logger.warning(
                        "Order %s confirmed with %d replies unprocessed",
                        order.id,
                        len(pending),
                    )
                log_with_context(
                    logger,
                    "debug",
                    "Order confirmed",
                    order_id=order.id,
                    broker_order_id=reply.order_id,
                )
                return reply.status

            for message in reply.messages:
                if not self.approve(f"Broker question:\n{message}"):
                    log_with_context(
                        logger, "info", "Broker question declined", order_id=order.id
                    )
                    return OrderStatus.CANCELLED

            pending.extend(self.broker.confirm_reply(reply.id))

        raise OrderExecutionError(
            f"Broker ended the exchange for order {order.id} without a confirmation"
        )


def describe_order(order: Order) -> str:
    """Human-readable one-line summary used in approval prompts."""
    text = (
        f"{order.side.value} {order.order_type.value} "
        f"{order.total_quantity} x {order.asset.ticker}"
    )
    if order.price is not None:
        text += f" @ {order.price}"
    return text
