"""Configuration management for the portfolio rebalancer.

Settings live in a YAML file (``config/default.yaml`` unless another path is
given). The portfolio secret can be supplied through the environment, loaded
from a ``.env`` file, so the command line can run without prompting.
"""

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from src.utils.exceptions import ConfigurationError

SECRET_ENV_VAR = "REBALANCER_SECRET"

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "default.yaml"


class Config:
    """YAML configuration with dot-notation access.

    Example:
        >>> config = Config.from_file("config/default.yaml")
        >>> config.get("rates.source", "static")
        'static'
    """

    def __init__(self, config_dict: dict[str, Any]) -> None:
        self._config = config_dict

    @classmethod
    def from_file(cls, filepath: str | Path) -> "Config":
        """Load configuration from a YAML file.

        Args:
            filepath: Path to YAML configuration file

        Returns:
            Config instance with loaded configuration

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigurationError: If the YAML cannot be parsed or is not a mapping
        """
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {filepath}")

        with open(path, "r", encoding="utf-8") as f:
            try:
                config_dict = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {filepath}: {e}") from e

        if config_dict is None:
            config_dict = {}
        if not isinstance(config_dict, dict):
            raise ConfigurationError(
                f"Configuration root must be a mapping, got {type(config_dict).__name__}"
            )

        return cls(config_dict)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value using dot notation (e.g. ``"brokers.xtb.port"``).

        Returns ``default`` when any part of the path is missing.
        """
        value = self._config

        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value

    def __getitem__(self, key: str) -> Any:
        value = self.get(key)
        if value is None:
            raise KeyError(f"Configuration key not found: {key}")
        return value

    def to_dict(self) -> dict[str, Any]:
        """Return a shallow copy of the configuration mapping."""
        return self._config.copy()


def load_config(filepath: str | Path | None = None) -> Config:
    """Load configuration, defaulting to ``config/default.yaml``.

    Args:
        filepath: Path to YAML configuration file. If None, uses default path.

    Returns:
        Config instance
    """
    if filepath is None:
        filepath = DEFAULT_CONFIG_PATH
    return Config.from_file(filepath)


def load_secret_from_env(env_file: str | Path = ".env") -> Optional[str]:
    """Read the portfolio secret from the environment.

    Variables from ``env_file`` are loaded first (without overriding variables
    already set). A missing file is not an error.

    Returns:
        The value of REBALANCER_SECRET, or None if unset or empty
    """
    if Path(env_file).exists():
        load_dotenv(env_file)

    return os.getenv(SECRET_ENV_VAR) or None
