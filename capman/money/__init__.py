"""Money and currency layer.

Components:
- Currency: Supported currency codes
- Money: Currency-tagged decimal amount with currency-checked arithmetic
- ExchangeRates: Rate snapshot used to normalize amounts into one currency
- ExchangeRatesProvider: HTTP source of exchange rates
"""

from capman.money.currency import Currency
from capman.money.money import CHF, EUR, USD, CurrencyMismatchError, Money

__all__ = [
    "Currency",
    "Money",
    "CurrencyMismatchError",
    "USD",
    "EUR",
    "CHF",
]
