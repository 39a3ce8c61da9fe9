"""Portfolio specification file.

The specification is a JSON list of target positions, for example::

    [
        {"ticker": "VT", "exchange": "ARCA", "currency": "USD", "weight": 60},
        {"ticker": "CSPX", "exchange": "LSEETF", "conid": 75776072,
         "currency": "USD", "weight": 40}
    ]

Weights are relative and need not sum to 1. ``conid`` is optional and,
when present, is checked against the resolved contract.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from capman.money import Currency
from capman.utils.exceptions import PortfolioSpecError
from capman.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PositionSpec:
    """One user-declared target position.

    Attributes:
        ticker: Ticker symbol
        exchange: Exchange the asset must be listed at
        currency: Trading currency
        weight: Relative target weight
        conid: Expected contract id, if declared
    """

    ticker: str
    exchange: str
    currency: Currency
    weight: float
    conid: Optional[int] = None


def parse_portfolio_spec(entries) -> List[PositionSpec]:
    """Validate decoded JSON and build position specs.

    Raises:
        PortfolioSpecError: If the data is not a non-empty list of valid entries
    """
    if not isinstance(entries, list) or not entries:
        raise PortfolioSpecError("Portfolio specification must be a non-empty list")

    specs = []
    for i, entry in enumerate(entries):
        try:
            ticker = str(entry["ticker"])
            exchange = str(entry["exchange"])
            currency = Currency(entry["currency"])
            weight = float(entry["weight"])
            conid = entry.get("conid")
            if conid is not None:
                conid = int(conid)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise PortfolioSpecError(f"Invalid portfolio entry #{i + 1}: {entry!r} ({e})") from e

        if weight < 0:
            raise PortfolioSpecError(
                f"Weight of {ticker} must be non-negative, got {weight}"
            )
        specs.append(
            PositionSpec(
                ticker=ticker,
                exchange=exchange,
                currency=currency,
                weight=weight,
                conid=conid,
            )
        )

    if sum(s.weight for s in specs) <= 0:
        raise PortfolioSpecError("Portfolio weights must have a positive sum")
    return specs


def load_portfolio_spec(path: str | Path) -> List[PositionSpec]:
    """Load a portfolio specification from a JSON file.

    Args:
        path: Path to the specification file

    Returns:
        Position specs in file order

    Raises:
        PortfolioSpecError: If the file is missing, unparseable or invalid
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            entries = json.load(f)
    except FileNotFoundError:
        raise PortfolioSpecError(f"Portfolio specification not found: {path}") from None
    except json.JSONDecodeError as e:
        raise PortfolioSpecError(f"Failed to parse {path}: {e}") from e

    specs = parse_portfolio_spec(entries)
    logger.info("Loaded %d positions from %s", len(specs), path)
    return specs
