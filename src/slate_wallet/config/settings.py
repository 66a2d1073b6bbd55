"""Application settings loaded from environment variables and config files.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``SLATEWALLET_``, nested via ``__``)
2. YAML config file (``config_path`` or ``SLATEWALLET_CONFIG_PATH`` env var)
3. Defaults defined here

The mobile bridge hands over a flat JSON object instead; see
:meth:`WalletConfig.from_json`.
"""

from __future__ import annotations

import enum
import json
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from slate_wallet.errors.definitions import ConfigError

# Default minimum confirmation count for spendable outputs
MINIMUM_CONFIRMATIONS = 10

# ---------------------------------------------------------------------------
# Enums for validated choices
# ---------------------------------------------------------------------------


class ChainType(enum.StrEnum):
    """Supported chains."""

    MAINNET = "mainnet"
    FLOONET = "floonet"


class DatabaseEngine(enum.StrEnum):
    """Supported database engines."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class RelayCoordinator(enum.StrEnum):
    """Relay network backend."""

    MEMORY = "memory"
    REDIS = "redis"


# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class WalletConfig(BaseSettings):
    """Per-wallet settings (the mobile configuration object)."""

    model_config = SettingsConfigDict(
        env_prefix="SLATEWALLET_WALLET__",
        case_sensitive=False,
    )

    account: str = "default"
    chain_type: str = ChainType.FLOONET.value
    data_dir: str = "./wallet"
    node_api_addr: str = "http://127.0.0.1:13413"
    password: str = ""
    minimum_confirmations: int = MINIMUM_CONFIRMATIONS
    max_outputs: int = 500
    num_change_outputs: int = 1

    @property
    def chain(self) -> ChainType:
        """Validated chain selector.

        Raises:
            ConfigError: If the chain type is not supported.
        """
        try:
            return ChainType(self.chain_type)
        except ValueError:
            msg = f"unsupported chain type: {self.chain_type}"
            raise ConfigError(msg) from None

    @property
    def wallet_data_dir(self) -> Path:
        """Directory holding the seed file and wallet database."""
        return Path(self.data_dir) / "wallet_data"

    @property
    def node_api_secret_path(self) -> Path:
        """File whose first line is the node API secret."""
        return Path(self.data_dir) / ".api_secret"

    @classmethod
    def from_json(cls, text: str) -> Self:
        """Decode the JSON configuration object used by the mobile bridge.

        Raises:
            ConfigError: If the JSON is malformed or a field has the wrong type.
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            msg = f"malformed wallet configuration: {exc}"
            raise ConfigError(msg) from exc
        if not isinstance(data, dict):
            msg = "wallet configuration must be a JSON object"
            raise ConfigError(msg)
        try:
            config = cls(**data)
        except ValidationError as exc:
            msg = f"invalid wallet configuration: {exc.errors()[0]['msg']}"
            raise ConfigError(msg) from exc
        config.chain  # noqa: B018 - validates the chain selector eagerly
        return config


class DatabaseConfig(BaseSettings):
    """Database settings."""

    model_config = SettingsConfigDict(
        env_prefix="SLATEWALLET_DB__",
        case_sensitive=False,
    )

    engine: DatabaseEngine = Field(
        default=DatabaseEngine.SQLITE,
        description="Database backend: sqlite or postgresql",
    )
    dsn: str = Field(
        default="",
        description="Async database connection string (derived from data_dir when empty)",
    )
    max_idle_connections: int = 5
    max_open_connections: int = 10
    debug_sql: bool = False


class RelayConfig(BaseSettings):
    """Asynchronous relay transport settings."""

    model_config = SettingsConfigDict(
        env_prefix="SLATEWALLET_RELAY__",
        case_sensitive=False,
    )

    enabled: bool = True
    coordinator: RelayCoordinator = RelayCoordinator.MEMORY
    redis_url: str = "redis://localhost:6379/2"
    prefix: str = "slate_"
    address: str = ""
    settle_delay: float = Field(default=0.5, ge=0)
    send_timeout: float = Field(default=120.0, gt=0)


class TransportConfig(BaseSettings):
    """Synchronous transport settings."""

    model_config = SettingsConfigDict(
        env_prefix="SLATEWALLET_TRANSPORT__",
        case_sensitive=False,
    )

    http_timeout: float = Field(default=30.0, gt=0)


class ServerConfig(BaseSettings):
    """Foreign (receiver) HTTP listener settings."""

    model_config = SettingsConfigDict(
        env_prefix="SLATEWALLET_SERVER__",
        case_sensitive=False,
    )

    host: str = "127.0.0.1"
    port: int = 3415


class MetricsConfig(BaseSettings):
    """Prometheus metrics settings."""

    model_config = SettingsConfigDict(
        env_prefix="SLATEWALLET_METRICS__",
        case_sensitive=False,
    )

    enabled: bool = True


class TaskConfig(BaseSettings):
    """Background job settings."""

    model_config = SettingsConfigDict(
        env_prefix="SLATEWALLET_TASK__",
        case_sensitive=False,
    )

    enabled: bool = False
    expired_tx_period: float = 60.0


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file and return its contents as a dict.

    Returns an empty dict if the file doesn't exist or is empty.
    """
    p = Path(path)
    if not p.exists():
        return {}
    text = p.read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return data if isinstance(data, dict) else {}


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Loads settings from environment variables (``SLATEWALLET_`` prefix),
    an optional YAML file, and built-in defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="SLATEWALLET_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    debug: bool = False
    config_path: str = ""

    wallet: WalletConfig = Field(default_factory=WalletConfig)
    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    task: TaskConfig = Field(default_factory=TaskConfig)

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Merge YAML config file contents under the env var overrides."""
        config_path = values.get("config_path", "")
        if not config_path:
            return values
        yaml_data = _load_yaml(config_path)
        # YAML values serve as defaults; env vars (already in *values*) win.
        for key, val in yaml_data.items():
            if key not in values or values[key] is None:
                values[key] = val
            elif isinstance(val, dict) and isinstance(values.get(key), dict):
                merged = {**val, **values[key]}
                values[key] = merged
        return values

    @property
    def database_dsn(self) -> str:
        """Explicit DSN, or a SQLite file under the wallet data directory."""
        if self.db.dsn:
            return self.db.dsn
        return f"sqlite+aiosqlite:///{self.wallet.wallet_data_dir / 'wallet.db'}"

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Construct ``AppConfig`` loading defaults from a YAML file.

        Environment variables still override YAML values.
        """
        return cls(config_path=str(path))

    @classmethod
    def from_wallet_json(cls, text: str, **overrides: Any) -> Self:
        """Build a full config around a mobile-bridge wallet JSON object."""
        return cls(wallet=WalletConfig.from_json(text), **overrides)
