"""High-level API for closing a position in steps."""

from dataclasses import dataclass
from typing import List, Optional

from capman.broker.base import Broker, Order, OrderSide, Position, TimeInForce
from capman.execution.approval import Approval
from capman.execution.order_submitter import OrderSubmitter
from capman.execution.session import OrderSession
from capman.portfolio.closing import parse_step, shares_to_sell
from capman.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class CloseOutcome:
    """Result of a close request.

    Attributes:
        matches: Positions matching the ticker
        order: Submitted order, None if nothing was submitted
        shares: Shares to sell at this step
    """

    matches: List[Position]
    order: Optional[Order] = None
    shares: int = 0


class CloseAPI:
    """Sell a fraction of a position at the current share price.

    Example:
        >>> api = CloseAPI(broker, console_approval)
        >>> outcome = api.close("VT", "2/4")
    """

    def __init__(
        self,
        broker: Broker,
        approve: Approval,
        session: Optional[OrderSession] = None,
    ):
        self.broker = broker
        self.approve = approve
        self.session = session or OrderSession()

    def close(self, ticker: str, step: str = "1/1") -> CloseOutcome:
        """Submit the sell order for one step of closing a position.

        Nothing is submitted unless exactly one position matches the
        ticker.

        Args:
            ticker: Ticker of the held position (case-insensitive)
            step: Current step as "X/Y"

        Returns:
            CloseOutcome with the matching positions and the order, if any

        Raises:
            ConfigurationError: If the step is malformed
        """
        current_step, total_steps = parse_step(step)
        portfolio = self.broker.fetch_portfolio()
        matches = [
            p for p in portfolio.positions if p.asset.ticker == ticker.upper()
        ]
        if len(matches) != 1:
            logger.warning("%d positions match %s, not closing", len(matches), ticker)
            return CloseOutcome(matches=matches)

        position = matches[0]
        shares = shares_to_sell(position.quantity, current_step, total_steps)
        logger.info(
            "Closing position %d x %s (worth approximately %s) at step %d of %d "
            "by selling %d shares @ %s",
            position.quantity,
            position.asset.name,
            position.market_value,
            current_step,
            total_steps,
            shares,
            position.share_price,
        )
        if shares == 0:
            return CloseOutcome(matches=matches)

        submitter = OrderSubmitter(self.broker, self.session, self.approve)
        order = submitter.submit_limit_order(
            position.asset,
            OrderSide.SELL,
            shares,
            position.share_price,
            TimeInForce.DAY,
        )
        return CloseOutcome(matches=matches, order=order, shares=shares)
