"""Data structures of the allocation pipeline.

An allocation run moves every candidate through a fixed sequence of
immutable record shapes, each stage adding the fields it computes:

    RawCandidate -> PricedCandidate -> WeightedCandidate -> SizedCandidate

No record is modified after construction, so each stage of the
DeviationAllocator can be tested in isolation.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List

from capman.broker.base import Asset
from capman.money import Money


@dataclass(frozen=True)
class RawCandidate:
    """An asset considered for purchase in one run.

    Attributes:
        asset: The asset to invest in
        target_weight: Desired fraction of the managed portfolio (normalized)
    """

    asset: Asset
    target_weight: float

    def __post_init__(self):
        """Validate target weight."""
        if not 0 <= self.target_weight <= 1:
            raise ValueError(
                f"target_weight must be in [0, 1], got {self.target_weight}"
            )

    def priced(self, share_price: Money, current_value: Money) -> "PricedCandidate":
        return PricedCandidate(
            asset=self.asset,
            target_weight=self.target_weight,
            share_price=share_price,
            current_value=current_value,
        )


@dataclass(frozen=True)
class PricedCandidate(RawCandidate):
    """Candidate with market data, both amounts in the base currency.

    Attributes:
        share_price: Current price of one share
        current_value: Value of the existing position (zero if not held)
    """

    share_price: Money
    current_value: Money

    def __post_init__(self):
        """Validate prices."""
        super().__post_init__()
        if self.share_price.amount <= 0:
            raise ValueError(
                f"share_price of {self.asset.name} must be positive, got {self.share_price}"
            )
        if self.current_value.amount < 0:
            raise ValueError(
                f"current_value of {self.asset.name} must be non-negative, "
                f"got {self.current_value}"
            )
        if self.share_price.currency != self.current_value.currency:
            raise ValueError(
                f"share_price and current_value of {self.asset.name} "
                "must share a currency"
            )

    def weighted(
        self, actual_weight: float, deviation: float, adjusted_weight: float
    ) -> "WeightedCandidate":
        return WeightedCandidate(
            asset=self.asset,
            target_weight=self.target_weight,
            share_price=self.share_price,
            current_value=self.current_value,
            actual_weight=actual_weight,
            deviation=deviation,
            adjusted_weight=adjusted_weight,
        )


@dataclass(frozen=True)
class WeightedCandidate(PricedCandidate):
    """Candidate with its portfolio weights.

    Attributes:
        actual_weight: Current fraction of the managed portfolio value
        deviation: target_weight / actual_weight, infinite if not held.
            Above 1 means underweight, below 1 overweight.
        adjusted_weight: target_weight scaled by the clamped deviation
            (unnormalized purchase weight)
    """

    actual_weight: float
    deviation: float
    adjusted_weight: float

    @property
    def relative_deviation(self) -> float:
        """Deviation as actual/target - 1, the more intuitive form for display."""
        if self.target_weight == 0:
            return math.inf
        return self.actual_weight / self.target_weight - 1.0

    def sized(self, shares_to_purchase: int, adjusted_weight: float) -> "SizedCandidate":
        return SizedCandidate(
            asset=self.asset,
            target_weight=self.target_weight,
            share_price=self.share_price,
            current_value=self.current_value,
            actual_weight=self.actual_weight,
            deviation=self.deviation,
            adjusted_weight=adjusted_weight,
            shares_to_purchase=shares_to_purchase,
        )


@dataclass(frozen=True)
class SizedCandidate(WeightedCandidate):
    """Candidate with the number of whole shares to buy.

    Attributes:
        shares_to_purchase: Whole shares to buy
    """

    shares_to_purchase: int

    def __post_init__(self):
        """Validate share count."""
        super().__post_init__()
        if self.shares_to_purchase < 0:
            raise ValueError(
                f"shares_to_purchase must be non-negative, got {self.shares_to_purchase}"
            )

    @property
    def cost(self) -> Money:
        return self.share_price * self.shares_to_purchase


@dataclass(frozen=True)
class AllocationConfig:
    """Constraints of an allocation run.

    Attributes:
        min_order_amount: Minimum value of one order, in the budget's currency
        max_orders: Maximum number of candidates to buy
        max_weight_adjustment: Deviations are clamped to
            [1 / max_weight_adjustment, max_weight_adjustment]
        tolerance: Allowed fractional overshoot of a candidate's target
            amount when rounding to whole shares
    """

    min_order_amount: Money
    max_orders: int = 5
    max_weight_adjustment: float = 2.0
    tolerance: float = 0.05

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.max_orders < 1:
            raise ValueError(f"max_orders must be >= 1, got {self.max_orders}")
        if self.min_order_amount.amount <= 0:
            raise ValueError(
                f"min_order_amount must be > 0, got {self.min_order_amount}"
            )
        if self.max_weight_adjustment < 1.0:
            raise ValueError(
                f"max_weight_adjustment must be >= 1.0, got {self.max_weight_adjustment}"
            )
        if self.tolerance < 0:
            raise ValueError(f"tolerance must be >= 0, got {self.tolerance}")


@dataclass
class AllocationResult:
    """Result of an allocation run.

    Attributes:
        amount: Budget of the run
        candidates: All weighted candidates, most underweight first
        selected: Candidates to buy, in selection order
        metrics: Summary figures for logging and reporting
    """

    amount: Money
    candidates: List[WeightedCandidate]
    selected: List[SizedCandidate]
    metrics: Dict[str, float] = field(default_factory=dict)

    @property
    def total_spend(self) -> Money:
        total = Money.zero(self.amount.currency)
        for candidate in self.selected:
            total += candidate.cost
        return total

    @property
    def leftover(self) -> Money:
        return self.amount - self.total_spend
