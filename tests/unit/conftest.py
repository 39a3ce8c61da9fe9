"""Shared fixtures and test doubles for unit tests."""

import itertools
from typing import Iterable, List

import pytest

from capman.broker.base import Asset
from capman.money import Currency

_conids = itertools.count(1000)


def build_asset(
    ticker: str,
    currency: Currency = Currency.USD,
    exchange: str = "ARCA",
    conid: int = None,
    exchanges: tuple = None,
) -> Asset:
    return Asset(
        ticker=ticker,
        primary_exchange=exchange,
        exchanges=exchanges or (exchange,),
        description=f"{ticker} Fund",
        conid=conid if conid is not None else next(_conids),
        currency=currency,
    )


class ScriptedApproval:
    """Approval capability answering from a fixed script.

    Records every prompt it is asked. Running out of answers counts as
    a refusal.
    """

    def __init__(self, answers: Iterable[bool]):
        self._answers = list(answers)
        self.prompts: List[str] = []

    def __call__(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        if not self._answers:
            return False
        return self._answers.pop(0)


@pytest.fixture
def make_asset():
    """Factory for assets with unique contract ids."""
    return build_asset
