"""Staged closing of a position.

A position is closed over Y steps by selling 1/Y of the original share
count at each step. Only the current quantity is known, so the original
count is reconstructed from the fraction already sold:

    current = original * (1 - (step - 1) / total)
"""

import math
import re
from typing import Tuple

from capman.utils.exceptions import ConfigurationError

_STEP_PATTERN = re.compile(r"^\s*(\d+)\s*/\s*(\d+)\s*$")


def parse_step(text: str) -> Tuple[int, int]:
    """Parse a step of the form "X/Y" with 1 <= X <= Y.

    Raises:
        ConfigurationError: If the text is not a valid step
    """
    match = _STEP_PATTERN.match(text)
    if match is not None:
        current, total = (int(g) for g in match.groups())
        if 1 <= current <= total:
            return current, total
    raise ConfigurationError(
        f'Invalid step {text!r}. Must be in format "X/Y", with 1 <= X <= Y'
    )


def shares_to_sell(quantity: int, current_step: int, total_steps: int) -> int:
    """Number of shares to sell at one step of a staged close.

    Args:
        quantity: Shares currently held
        current_step: Step being executed, starting at 1
        total_steps: Number of steps

    Returns:
        Whole shares to sell
    """
    if not 1 <= current_step <= total_steps:
        raise ValueError(
            f"current_step must be in [1, {total_steps}], got {current_step}"
        )
    previous = (current_step - 1) / total_steps
    original = quantity / (1.0 - previous)
    # Tiny epsilon so that e.g. 10 / 0.5 * 0.5 does not floor to 4
    return min(quantity, math.floor(original / total_steps + 1e-9))
