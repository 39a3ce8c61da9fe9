"""Custom exceptions for capman.

This module defines the exception hierarchy for the application.
"""


class CapmanError(Exception):
    """Base exception for all capman errors.

    All custom exceptions in the application should inherit from this class.
    """

    pass


class ConfigurationError(CapmanError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Non-positive investment amount or max_orders
        - max_weight_adjustment below 1.0
        - Configuration file not found
    """

    pass


class PortfolioSpecError(ConfigurationError):
    """Raised when the portfolio specification file cannot be used.

    Examples:
        - File missing or not valid JSON
        - Empty position list
        - Negative weights or unknown currency
    """

    pass


class ResolutionError(CapmanError):
    """Base exception for asset resolution errors.

    Any resolution error aborts the whole run. Allocation is never
    attempted against a partially resolved universe.
    """

    pass


class AssetNotFoundError(ResolutionError):
    """Raised when no tradable contract matches a ticker."""

    pass


class AmbiguousAssetError(ResolutionError):
    """Raised when more than one contract matches a ticker/exchange/currency."""

    pass


class ContractMismatchError(ResolutionError):
    """Raised when a resolved contract id differs from the declared one."""

    pass


class BrokerError(CapmanError):
    """Base exception for broker layer errors.

    Parent class for all broker-related exceptions.
    """

    pass


class BrokerConnectionError(BrokerError):
    """Raised when the broker cannot be reached.

    Examples:
        - Network connection failed or timed out
        - Gateway not connected or not authenticated
    """

    pass


class BrokerAPIError(BrokerError):
    """Raised when the broker answers with a non-success HTTP status."""

    pass


class BrokerDataError(BrokerError):
    """Raised when a broker response violates its data contract.

    Examples:
        - Unparseable price or date fields
        - Unknown order status or side
        - Fractional share positions
    """

    pass


class ExchangeRateError(CapmanError):
    """Raised when exchange rates cannot be fetched or applied.

    Examples:
        - Rate service reported failure
        - Missing rate for a currency
    """

    pass


class AllocationError(CapmanError):
    """Raised when the allocation engine cannot work with its inputs.

    Examples:
        - Target weights summing to zero
        - Candidates priced in a currency other than the budget's
    """

    pass


class OrderExecutionError(CapmanError):
    """Raised when an order cannot be driven through submission.

    Examples:
        - Attempt to resubmit an already submitted or cancelled order
        - Broker ended the question exchange without a confirmation
    """

    pass
