"""Configuration management for the trade agent.

Settings live in YAML (config/default.yaml); secrets live in environment
variables, optionally loaded from a .env file.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from trade_agent.utils.exceptions import ConfigurationError

ROOT_DIR = Path(__file__).parent.parent.parent
DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"


class Config:
    """YAML configuration loader with dot-path access.

    Example:
        >>> config = Config.from_file("config/default.yaml")
        >>> slippage = config.get("quotes.slippage_bps", 50)
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

        Args:
            key: Configuration key (e.g. "execution.call_timeout")
            default: Default value if key not found

        Returns:
            Configuration value or default
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

    def section(self, key: str) -> dict[str, Any]:
        """Get a nested section as a plain dict (empty if missing)."""
        value = self.get(key, {})
        if not isinstance(value, dict):
            raise ConfigurationError(f"Configuration key '{key}' is not a section")
        return dict(value)

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
    """Load configuration, defaulting to config/default.yaml at the repo root."""
    if filepath is None:
        filepath = ROOT_DIR / "config" / "default.yaml"
    return Config.from_file(filepath)


@dataclass(frozen=True)
class Credentials:
    """Secrets and endpoints read from the environment.

    Attributes:
        rpc_url: Solana JSON-RPC endpoint
        jupiter_api_key: Optional Jupiter API key (x-api-key header)
        birdeye_api_key: Birdeye API key for price history
        keypair_path: Path to a Solana CLI keypair JSON file
    """

    rpc_url: str
    jupiter_api_key: Optional[str] = None
    birdeye_api_key: Optional[str] = None
    keypair_path: Optional[str] = None


def load_credentials(env_file: str | Path | None = None) -> Credentials:
    """Load credentials from environment variables.

    Environment variables:
        - SOLANA_RPC_URL (optional, defaults to public mainnet RPC)
        - JUPITER_API_KEY (optional)
        - BIRDEYE_API_KEY (optional, price history is unavailable without it)
        - WALLET_KEYPAIR_PATH (required only for execution)

    Args:
        env_file: Path to .env file. If None, uses .env at the repo root
            when present.

    Returns:
        Credentials instance
    """
    env_path = Path(env_file) if env_file is not None else ROOT_DIR / ".env"
    if env_path.exists():
        load_dotenv(env_path)
    elif env_file is not None:
        raise ConfigurationError(f".env file not found at {env_path}")

    return Credentials(
        rpc_url=os.getenv("SOLANA_RPC_URL", DEFAULT_RPC_URL),
        jupiter_api_key=os.getenv("JUPITER_API_KEY") or None,
        birdeye_api_key=os.getenv("BIRDEYE_API_KEY") or None,
        keypair_path=os.getenv("WALLET_KEYPAIR_PATH") or None,
    )
