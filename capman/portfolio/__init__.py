"""Portfolio Management Layer.

This layer turns target weights, current holdings and a cash budget into
whole-share purchase decisions.

Components:
- DeviationAllocator: Deviation-weighted allocation engine
- RawCandidate, PricedCandidate, WeightedCandidate, SizedCandidate:
  Immutable stages of a candidate
- AllocationConfig, AllocationResult: Engine constraints and output
- PositionSpec: One entry of the portfolio specification file
"""

from capman.portfolio.base import (
    AllocationConfig,
    AllocationResult,
    PricedCandidate,
    RawCandidate,
    SizedCandidate,
    WeightedCandidate,
)
from capman.portfolio.deviation_allocator import DeviationAllocator, normalize_weights
from capman.portfolio.specification import PositionSpec, load_portfolio_spec

__all__ = [
    "DeviationAllocator",
    "normalize_weights",
    "AllocationConfig",
    "AllocationResult",
    "RawCandidate",
    "PricedCandidate",
    "WeightedCandidate",
    "SizedCandidate",
    "PositionSpec",
    "load_portfolio_spec",
]
