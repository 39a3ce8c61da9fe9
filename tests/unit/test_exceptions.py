"""Unit tests for custom exceptions."""

import pytest

from capman.utils.exceptions import (
    AllocationError,
    AmbiguousAssetError,
    AssetNotFoundError,
    BrokerAPIError,
    BrokerConnectionError,
    BrokerDataError,
    BrokerError,
    CapmanError,
    ConfigurationError,
    ContractMismatchError,
    ExchangeRateError,
    OrderExecutionError,
    PortfolioSpecError,
    ResolutionError,
)


class TestExceptionHierarchy:
    """Test exception inheritance hierarchy."""

    @pytest.mark.parametrize(
        "exc",
        [
            ConfigurationError,
            ResolutionError,
            BrokerError,
            ExchangeRateError,
            AllocationError,
            OrderExecutionError,
        ],
    )
    def test_top_level_errors_inherit_from_capman_error(self, exc) -> None:
        """Test every error family is a CapmanError."""
        assert issubclass(exc, CapmanError)

    def test_portfolio_spec_error_is_configuration_error(self) -> None:
        """Test PortfolioSpecError is a subclass of ConfigurationError."""
        assert issubclass(PortfolioSpecError, ConfigurationError)

    @pytest.mark.parametrize(
        "exc", [AssetNotFoundError, AmbiguousAssetError, ContractMismatchError]
    )
    def test_resolution_errors(self, exc) -> None:
        """Test resolution failures share a common parent."""
        assert issubclass(exc, ResolutionError)
        assert issubclass(exc, CapmanError)

    @pytest.mark.parametrize(
        "exc", [BrokerConnectionError, BrokerAPIError, BrokerDataError]
    )
    def test_broker_errors(self, exc) -> None:
        """Test broker failures share a common parent."""
        assert issubclass(exc, BrokerError)


class TestExceptionRaising:
    """Test raising and catching exceptions."""

    def test_catch_specific_as_base(self) -> None:
        """Test catching a specific error as CapmanError."""
        with pytest.raises(CapmanError, match="No contract"):
            raise AssetNotFoundError("No contract")

    def test_exception_chaining(self) -> None:
        """Test exceptions keep their cause."""
        with pytest.raises(BrokerConnectionError) as exc_info:
            try:
                raise ConnectionError("refused")
            except ConnectionError as e:
                raise BrokerConnectionError("Gateway unreachable") from e

        assert isinstance(exc_info.value.__cause__, ConnectionError)
