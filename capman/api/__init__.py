"""User-friendly APIs for capman.

This package provides high-level interfaces for the command line tool.

Components:
- InvestAPI: Allocate an amount and submit the purchase orders
- CloseAPI: Close a position in steps
"""

from capman.api.close_api import CloseAPI, CloseOutcome
from capman.api.invest_api import InvestAPI

__all__ = [
    "InvestAPI",
    "CloseAPI",
    "CloseOutcome",
]
