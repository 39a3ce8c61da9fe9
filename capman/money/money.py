"""Currency-tagged decimal amounts.

Binary operations between two Money values (+, -, comparisons, division)
require the same currency. Mixing currencies is a programming error and
raises CurrencyMismatchError instead of converting implicitly.
"""

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from functools import total_ordering
from numbers import Number
from typing import Union

from capman.money.currency import Currency

_MONEY_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([A-Za-z]{3})\s*$")

Scalar = Union[int, float, Decimal]


class CurrencyMismatchError(ValueError):
    """Raised when two Money values with different currencies are combined."""

    pass


def _to_decimal(value: Scalar) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # repr round-trip keeps 0.1 as Decimal("0.1") rather than its binary expansion
        return Decimal(repr(value))
    return Decimal(value)


@total_ordering
@dataclass(frozen=True)
class Money:
    """Immutable amount of money in a single currency.

    Attributes:
        amount: Decimal amount
        currency: Currency of the amount

    Example:
        >>> USD(20) + USD(10)
        Money(amount=Decimal('30'), currency=<Currency.USD: 'USD'>)
        >>> USD(20) / USD(10)
        2.0
    """

    amount: Decimal
    currency: Currency

    def __post_init__(self):
        """Coerce numeric amounts to Decimal."""
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, "amount", _to_decimal(self.amount))

    @classmethod
    def zero(cls, currency: Currency) -> "Money":
        return cls(Decimal(0), currency)

    @classmethod
    def parse(cls, text: str) -> "Money":
        """Parse "500USD" or "500 USD".

        Raises:
            ValueError: If the text is not an amount followed by a known currency
        """
        match = _MONEY_PATTERN.match(text)
        if match is None:
            raise ValueError(f"Invalid money value: {text!r}")
        amount, code = match.groups()
        try:
            currency = Currency(code.upper())
        except ValueError:
            raise ValueError(f"Unknown currency in {text!r}: {code}") from None
        return cls(Decimal(amount), currency)

    def _check_currency(self, other: "Money") -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(
                f"Currency mismatch: {self.currency} vs {other.currency}"
            )

    def rounded(self, increment: Scalar) -> "Money":
        """Snap the amount to the nearest multiple of ``increment``."""
        step = _to_decimal(increment)
        units = (self.amount / step).to_integral_value(rounding=ROUND_HALF_UP)
        return Money(units * step, self.currency)

    def __add__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, factor: Scalar) -> "Money":
        if isinstance(factor, Money) or not isinstance(factor, Number):
            return NotImplemented
        return Money(self.amount * _to_decimal(factor), self.currency)

    __rmul__ = __mul__

    def __truediv__(self, other):
        if isinstance(other, Money):
            self._check_currency(other)
            return float(self.amount / other.amount)
        if not isinstance(other, Number):
            return NotImplemented
        return Money(self.amount / _to_decimal(other), self.currency)

    def __lt__(self, other: "Money") -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.amount < other.amount

    def __str__(self) -> str:
        return f"{self.amount:.2f} {self.currency.value}"


# Convenience constructors
def USD(amount: Scalar) -> Money:
    return Money(amount, Currency.USD)


def EUR(amount: Scalar) -> Money:
    return Money(amount, Currency.EUR)


def CHF(amount: Scalar) -> Money:
    return Money(amount, Currency.CHF)
