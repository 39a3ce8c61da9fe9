"""Execution Layer - order submission against the broker.

Components:
- OrderSubmitter: Approval, placement and broker question handling
- OrderSession: Unique client order ids
- console_approval: Approval on the console
"""

from capman.execution.approval import Approval, console_approval
from capman.execution.order_submitter import OrderSubmitter, describe_order
from capman.execution.session import OrderSession

__all__ = [
    "OrderSubmitter",
    "OrderSession",
    "Approval",
    "console_approval",
    "describe_order",
]
