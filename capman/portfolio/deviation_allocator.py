"""Deviation-weighted allocation of an investment amount.

This module implements the savings-plan algorithm: a position that should
be X% of the managed portfolio but currently is only X/2% receives roughly
twice its normal share of the new money.

Algorithm:
1. Actual weight of each candidate in the managed portfolio
2. Deviation = target / actual (infinite for positions not yet held)
3. Adjusted weight = target weight scaled by the deviation, clamped to
   [1 / max_weight_adjustment, max_weight_adjustment]
4. Select candidates, most underweight first, while every order stays
   above min_order_amount and at most max_orders are selected
5. Normalize and round to whole shares, allowing a small overshoot
6. Spend the leftover on additional shares in random order
"""

import math
import random
from typing import Callable, List, MutableSequence, Optional, Sequence

from capman.money import Money
from capman.portfolio.base import (
    AllocationConfig,
    AllocationResult,
    PricedCandidate,
    SizedCandidate,
    WeightedCandidate,
)
from capman.utils.exceptions import AllocationError
from capman.utils.logging import get_logger, log_with_context

logger = get_logger(__name__)

WEIGHT_SUM_TOLERANCE = 1e-6


def normalize_weights(weights: Sequence[float]) -> List[float]:
    """Scale weights so that they sum to 1.

    Args:
        weights: Relative weights

    Returns:
        Normalized weights in the same order

    Raises:
        AllocationError: If the weights do not have a positive sum
    """
    total = sum(weights)
    if not weights or total <= 0:
        raise AllocationError(f"weights must have a positive sum, got {list(weights)}")
    return [w / total for w in weights]


class DeviationAllocator:
    """Allocate an amount across candidates towards their target weights.

    Example:
        >>> allocator = DeviationAllocator(AllocationConfig(min_order_amount=USD(100)))
        >>> result = allocator.allocate(candidates, USD(1000))
        >>> for c in result.selected:
        ...     print(c.asset.ticker, c.shares_to_purchase)
    """

    def __init__(
        self,
        config: AllocationConfig,
        shuffle: Optional[Callable[[MutableSequence], None]] = None,
    ):
        """Initialize allocator.

        Args:
            config: Allocation constraints
            shuffle: In-place shuffle used to order the leftover pass.
                Defaults to random.shuffle.
        """
        self.config = config
        self._shuffle = shuffle or random.shuffle

    def allocate(
        self, candidates: Sequence[PricedCandidate], amount: Money
    ) -> AllocationResult:
        """Run all stages and return the purchase decisions.

        Args:
            candidates: Priced candidates with normalized target weights,
                amounts in the currency of ``amount``
            amount: Budget to invest

        Returns:
            AllocationResult. ``selected`` is empty if no candidate can
            receive at least min_order_amount.

        Raises:
            AllocationError: On currency mismatches or unnormalized weights
        """
        self._check_inputs(candidates, amount)

        weighted = self.compute_weights(candidates)
        # Stable sort, so ties keep their specification order
        ranked = sorted(weighted, key=lambda c: c.deviation, reverse=True)

        selected = self.select_candidates(weighted, amount)
        sized = self.size_candidates(selected, amount)
        sized = self.squeeze(sized, amount)

        result = AllocationResult(amount=amount, candidates=ranked, selected=sized)
        result.metrics = {
            "candidate_count": float(len(weighted)),
            "selected_count": float(len(sized)),
            "total_spend": float(result.total_spend.amount),
            "leftover": float(result.leftover.amount),
        }
        log_with_context(
            logger,
            "info",
            "Allocation calculated",
            amount=amount,
            selected=len(sized),
            spend=result.total_spend,
        )
        return result

    def compute_weights(
        self, candidates: Sequence[PricedCandidate]
    ) -> List[WeightedCandidate]:
        """Compute actual weight, deviation and adjusted weight.

        Candidates with a target weight of zero are dropped here: zero
        intent means zero allocation. Their holdings still count towards
        the managed portfolio value.
        """
        if not candidates:
            return []

        currency = candidates[0].current_value.currency
        total_value = Money.zero(currency)
        for candidate in candidates:
            total_value += candidate.current_value

        low = 1.0 / self.config.max_weight_adjustment
        high = self.config.max_weight_adjustment

        weighted = []
        for candidate in candidates:
            if candidate.target_weight == 0:
                logger.debug("Skipping %s with zero target weight", candidate.asset.name)
                continue

            if total_value.amount > 0:
                actual_weight = candidate.current_value / total_value
            else:
                actual_weight = 0.0

            if actual_weight > 0:
                deviation = candidate.target_weight / actual_weight
            else:
                deviation = math.inf

            boost = min(high, max(low, deviation))
            weighted.append(
                candidate.weighted(
                    actual_weight=actual_weight,
                    deviation=deviation,
                    adjusted_weight=boost * candidate.target_weight,
                )
            )
        return weighted

    def select_candidates(
        self, candidates: Sequence[WeightedCandidate], amount: Money
    ) -> List[WeightedCandidate]:
        """Pick candidates, most underweight first.

        A candidate is accepted while the smallest accepted adjusted weight
        still yields at least min_order_amount when the amount is split by
        adjusted weight. If it would not, the candidate is shrunk so that
        the smallest order lands exactly on min_order_amount, or dropped if
        even that does not fit. Either way selection stops there.

        Returns:
            Accepted candidates in selection order; the last one may carry
            a reduced adjusted weight.
        """
        min_order_amount = self.config.min_order_amount

        # Ascending by deviation, popped from the end: most deviated first
        stack = sorted(candidates, key=lambda c: c.deviation)

        selected: List[WeightedCandidate] = []
        total_weight = 0.0
        min_weight = math.inf
        while stack:
            candidate = stack.pop()
            new_total_weight = total_weight + candidate.adjusted_weight
            min_weight = min(min_weight, candidate.adjusted_weight)
            min_amount = amount * (min_weight / new_total_weight)

            if min_amount < min_order_amount:
                # Largest total weight for which the smallest order is still
                # min_order_amount
                max_weight = (amount / min_order_amount) * min_weight
                if max_weight >= total_weight + min_weight:
                    shrunk = candidate.weighted(
                        actual_weight=candidate.actual_weight,
                        deviation=candidate.deviation,
                        adjusted_weight=max_weight - total_weight,
                    )
                    logger.debug(
                        "Shrinking %s from weight %.4f to %.4f",
                        candidate.asset.name,
                        candidate.adjusted_weight,
                        shrunk.adjusted_weight,
                    )
                    selected.append(shrunk)
                else:
                    logger.debug(
                        "Dropping %s: order would be below %s",
                        candidate.asset.name,
                        min_order_amount,
                    )
                break

            total_weight = new_total_weight
            selected.append(candidate)
            if len(selected) >= self.config.max_orders:
                break

        return selected

    def size_candidates(
        self, candidates: Sequence[WeightedCandidate], amount: Money
    ) -> List[SizedCandidate]:
        """Normalize adjusted weights and convert them to whole shares.

        Rounds down, then buys one more share if that stays within
        target amount * (1 + tolerance).
        """
        if not candidates:
            return []

        weights = normalize_weights([c.adjusted_weight for c in candidates])
        overshoot = 1.0 + self.config.tolerance

        sized = []
        for candidate, weight in zip(candidates, weights):
            target_amount = amount * weight
            shares = math.floor(target_amount / candidate.share_price)
            if candidate.share_price * (shares + 1) <= target_amount * overshoot:
                shares += 1
            sized.append(candidate.sized(shares_to_purchase=shares, adjusted_weight=weight))
        return sized

    def squeeze(
        self, candidates: Sequence[SizedCandidate], amount: Money
    ) -> List[SizedCandidate]:
        """Spend leftover budget on additional whole shares.

        Passes over the candidates in shuffled order, buying one share of
        every candidate whose price fits in the leftover, until a full pass
        buys nothing. Never spends beyond ``amount``.
        """
        if not candidates:
            return []

        shares = [c.shares_to_purchase for c in candidates]
        leftover = amount
        for candidate in candidates:
            leftover -= candidate.cost

        order = list(range(len(candidates)))
        changed = True
        while changed:
            changed = False
            self._shuffle(order)
            for i in order:
                price = candidates[i].share_price
                if price <= leftover:
                    shares[i] += 1
                    leftover -= price
                    changed = True

        return [
            c.sized(shares_to_purchase=n, adjusted_weight=c.adjusted_weight)
            for c, n in zip(candidates, shares)
        ]

    def _check_inputs(self, candidates: Sequence[PricedCandidate], amount: Money) -> None:
        if self.config.min_order_amount.currency != amount.currency:
            raise AllocationError(
                f"min_order_amount must be in {amount.currency}, "
                f"got {self.config.min_order_amount.currency}"
            )
        for candidate in candidates:
            if candidate.share_price.currency != amount.currency:
                raise AllocationError(
                    f"{candidate.asset.name} is priced in {candidate.share_price.currency}, "
                    f"expected {amount.currency}"
                )
        if candidates:
            total = sum(c.target_weight for c in candidates)
            if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
                raise AllocationError(f"target weights must sum to 1, got {total}")
