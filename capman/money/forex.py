"""Exchange rates and currency conversion.

Rates are quoted against a base currency as multipliers: one unit of the
base currency equals ``rates[c]`` units of currency ``c``.
"""

from dataclasses import dataclass
from typing import Optional

import requests

from capman.money.currency import Currency
from capman.money.money import Money
from capman.utils.exceptions import ExchangeRateError
from capman.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ExchangeRates:
    """Snapshot of exchange rates relative to a base currency.

    Attributes:
        base: Base currency, its rate is always 1.0
        rates: Multiplier per currency
        date: Date the rates refer to, as reported by the service
    """

    base: Currency
    rates: dict[Currency, float]
    date: str

    def __post_init__(self):
        """Validate the base rate."""
        if self.rates.get(self.base) != 1.0:
            raise ValueError(
                f"rate of base currency {self.base} must be 1.0, "
                f"got {self.rates.get(self.base)}"
            )

    def convert(self, money: Money, to: Currency) -> Money:
        """Convert an amount into another currency.

        Args:
            money: Amount to convert
            to: Target currency

        Returns:
            Converted amount

        Raises:
            ExchangeRateError: If a rate is missing for either currency
        """
        if money.currency == to:
            return money

        from_rate = self.rates.get(money.currency)
        if from_rate is None:
            raise ExchangeRateError(f"Missing exchange rate for {money.currency}")
        to_rate = self.rates.get(to)
        if to_rate is None:
            raise ExchangeRateError(f"Missing exchange rate for {to}")

        converted = money * to_rate / from_rate
        return Money(converted.amount, to)


class ExchangeRatesProvider:
    """Fetch current exchange rates from exchangerate.host.

    Example:
        >>> provider = ExchangeRatesProvider()
        >>> forex = provider.fetch()
        >>> forex.convert(USD(100), Currency.EUR)
    """

    API_URL = "https://api.exchangerate.host/latest"

    def __init__(
        self,
        api_url: str = API_URL,
        access_key: Optional[str] = None,
        timeout: float = 10.0,
    ):
        """Initialize provider.

        Args:
            api_url: Endpoint returning ``{success, date, rates}``
            access_key: Optional access key sent as ``access_key`` parameter
            timeout: Request timeout in seconds
        """
        self.api_url = api_url
        self.access_key = access_key
        self.timeout = timeout

    def fetch(self, base: Currency = Currency.USD) -> ExchangeRates:
        """Fetch the latest rates.

        Currencies not known to capman are skipped.

        Args:
            base: Base currency to request

        Returns:
            ExchangeRates snapshot

        Raises:
            ExchangeRateError: If the request or the response is invalid
        """
        params = {"base": base.value}
        if self.access_key:
            params["access_key"] = self.access_key

        logger.info("Fetching exchange rates from %s", self.api_url)
        try:
            response = requests.get(self.api_url, params=params, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            raise ExchangeRateError(f"Failed to fetch exchange rates: {e}") from e
        except ValueError as e:
            raise ExchangeRateError(f"Invalid exchange rate response: {e}") from e

        if not payload.get("success"):
            raise ExchangeRateError(
                f"Request to {self.api_url} did not succeed: {payload}"
            )

        try:
            raw_rates = payload["rates"]
            date = str(payload["date"])
            rates = {}
            for code, value in raw_rates.items():
                try:
                    currency = Currency(code)
                except ValueError:
                    continue
                rates[currency] = float(value)
        except (KeyError, AttributeError, TypeError, ValueError) as e:
            raise ExchangeRateError(f"Malformed exchange rate response: {e}") from e

        # The service reports the base either as 1 or omits it
        rates[base] = 1.0

        logger.info("Fetched %d exchange rates as of %s", len(rates), date)
        return ExchangeRates(base=base, rates=rates, date=date)
