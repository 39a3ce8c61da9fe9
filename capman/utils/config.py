"""Configuration management for capman.

This module provides YAML configuration loading and access, environment
overrides for the broker connection, and the validated options of an
investment run.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from capman.money import USD, Money
from capman.utils.exceptions import ConfigurationError

ORDER_TYPES = ("market", "limit")

DEFAULT_API_URL = "https://localhost:5000"


class Config:
    """Simple configuration loader and accessor.

    Loads YAML configuration files and provides dict-like access to settings.

    Example:
        >>> config = Config.from_file("config/default.yaml")
        >>> api_url = config.get("broker.api_url", "https://localhost:5000")
    """

    def __init__(self, config_dict: dict[str, Any]) -> None:
        """Initialize with configuration dictionary.

        Args:
            config_dict: Configuration data as nested dictionary
        """
        self._config = config_dict

    @classmethod
    def from_file(cls, filepath: str | Path) -> "Config":
        """Load configuration from YAML file.

        Args:
            filepath: Path to YAML configuration file

        Returns:
            Config instance with loaded configuration

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
        """
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {filepath}")

        with open(path, "r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f)

        if config_dict is None:
            config_dict = {}

        return cls(config_dict)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation.

        Supports nested keys using dot notation (e.g., "broker.api_url").

        Args:
            key: Configuration key (supports dot notation for nested keys)
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key.split(".")
        value = self._config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value

    def __getitem__(self, key: str) -> Any:
        """Get configuration value using bracket notation.

        Raises:
            KeyError: If key not found
        """
        value = self.get(key)
        if value is None:
            raise KeyError(f"Configuration key not found: {key}")
        return value

    def to_dict(self) -> dict[str, Any]:
        """Get the full configuration as dictionary."""
        return self._config.copy()


def load_config(filepath: str | Path = None) -> Config:
    """Helper function to load configuration.

    Args:
        filepath: Path to YAML configuration file. If None, uses the
            bundled config/default.yaml when present, else an empty config.

    Returns:
        Config instance
    """
    if filepath is None:
        root_dir = Path(__file__).parent.parent.parent
        filepath = root_dir / "config" / "default.yaml"
        if not filepath.exists():
            return Config({})
    return Config.from_file(filepath)


@dataclass
class BrokerSettings:
    """Connection settings for the brokerage gateway.

    Attributes:
        api_url: Base URL of the Client Portal Web API gateway
        verify_ssl: Verify the gateway's TLS certificate
        timeout: Request timeout in seconds
    """

    api_url: str = DEFAULT_API_URL
    verify_ssl: bool = False
    timeout: float = 10.0


def load_broker_settings(
    config: Config, env_file: str | Path = ".env"
) -> BrokerSettings:
    """Build broker settings from YAML config and environment.

    ``CAPMAN_API_URL`` (from the environment or the .env file) takes
    precedence over ``broker.api_url``.

    Args:
        config: Loaded configuration
        env_file: Path to an optional .env file

    Returns:
        BrokerSettings instance
    """
    load_dotenv(env_file)

    api_url = os.getenv("CAPMAN_API_URL") or config.get(
        "broker.api_url", DEFAULT_API_URL
    )
    return BrokerSettings(
        api_url=api_url.rstrip("/"),
        verify_ssl=bool(config.get("broker.verify_ssl", False)),
        timeout=float(config.get("broker.timeout", 10.0)),
    )


@dataclass
class InvestConfig:
    """Options of a single investment run.

    Attributes:
        amount: Cash amount to invest, in the base currency of the run
        order_type: "limit" (last price as limit) or "market"
        max_orders: Maximum number of orders to submit
        min_order_amount: Minimum value of a single order
        max_weight_adjustment: Bound for how far a deviation may skew a weight
        tolerance: Allowed fractional overshoot when rounding to whole shares
        portfolio_path: Path to the portfolio specification file
    """

    amount: Money
    order_type: str = "limit"
    max_orders: int = 5
    min_order_amount: Money = field(default_factory=lambda: USD(500))
    max_weight_adjustment: float = 2.0
    tolerance: float = 0.05
    portfolio_path: str = "./portfolio.json"

    @classmethod
    def from_config(
        cls, config: Config, amount: Money, **overrides: Any
    ) -> "InvestConfig":
        """Create run options from the ``invest`` config section.

        Keyword overrides that are None are ignored, so CLI options
        left unset fall back to the config file and then to defaults.

        Args:
            config: Loaded configuration
            amount: Amount to invest
            **overrides: Explicit option values

        Returns:
            InvestConfig instance (not yet validated)

        Raises:
            ConfigurationError: If invest.min_order_amount is not an amount
        """
        section = config.get("invest", {}) or {}
        values: dict[str, Any] = {}
        for name in (
            "order_type",
            "max_orders",
            "max_weight_adjustment",
            "tolerance",
            "portfolio_path",
        ):
            if name in section:
                values[name] = section[name]
        if "min_order_amount" in section:
            try:
                values["min_order_amount"] = Money.parse(str(section["min_order_amount"]))
            except ValueError as e:
                raise ConfigurationError(f"Invalid invest.min_order_amount: {e}") from e

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(amount=amount, **values)

    def validate(self) -> None:
        """Validate run options before any network activity.

        Raises:
            ConfigurationError: If any option is out of range
        """
        if self.amount.amount <= 0:
            raise ConfigurationError(f"amount must be > 0, got {self.amount}")
        if self.order_type not in ORDER_TYPES:
            raise ConfigurationError(
                f"order_type must be one of {', '.join(ORDER_TYPES)}, "
                f"got {self.order_type!r}"
            )
        if self.max_orders < 1:
            raise ConfigurationError(
                f"max_orders must be > 0, got {self.max_orders}"
            )
        if self.min_order_amount.amount <= 0:
            raise ConfigurationError(
                f"min_order_amount must be > 0, got {self.min_order_amount}"
            )
        if self.max_weight_adjustment < 1.0:
            raise ConfigurationError(
                "max_weight_adjustment must be >= 1.0, "
                f"got {self.max_weight_adjustment}"
            )
        if self.tolerance < 0:
            raise ConfigurationError(
                f"tolerance must be >= 0, got {self.tolerance}"
            )


def exchange_rates_access_key(env_file: str | Path = ".env") -> Optional[str]:
    """Return the exchange-rate service access key, if configured."""
    load_dotenv(env_file)
    return os.getenv("EXCHANGE_RATES_ACCESS_KEY")
