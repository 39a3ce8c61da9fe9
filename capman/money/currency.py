"""Currencies known to capman."""

from enum import Enum


class Currency(Enum):
    """ISO 4217 currency codes supported by the broker and rate service."""

    AUD = "AUD"
    CAD = "CAD"
    CHF = "CHF"
    EUR = "EUR"
    GBP = "GBP"
    HKD = "HKD"
    JPY = "JPY"
    MXN = "MXN"
    NOK = "NOK"
    PLN = "PLN"
    RUB = "RUB"
    SEK = "SEK"
    USD = "USD"

    def __str__(self) -> str:
        return self.value
