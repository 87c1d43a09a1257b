"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Whale Observer application, loading and validating environment
variables at startup.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from web3 import Web3

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

# Uniswap V3 USDC/WETH 0.05% pool on Ethereum mainnet.
DEFAULT_POOL_ADDRESS = "0x88e6A0c2dDD26FEEb64F039a2c41296FcB3f5640"


class ConfigurationError(ValueError):
    """Raised when the configuration cannot support the requested command."""


class StreamSettings(BaseSettings):
    """Ethereum WebSocket log stream settings."""

    model_config = SettingsConfigDict(env_prefix="STREAM_", extra="ignore")

    ws_url: str = Field(
        alias="ETH_WS_URL",
        description="Ethereum JSON-RPC WebSocket endpoint",
    )
    reconnect_delay_seconds: float = Field(
        default=5.0,
        alias="STREAM_RECONNECT_DELAY_SECONDS",
        gt=0.0,
        description="Baseline delay before reconnecting",
    )
    max_reconnect_delay_seconds: float = Field(
        default=60.0,
        alias="STREAM_MAX_RECONNECT_DELAY_SECONDS",
        gt=0.0,
        description="Cap for the exponential reconnect delay",
    )
    subscribe_timeout_seconds: float = Field(
        default=10.0,
        alias="STREAM_SUBSCRIBE_TIMEOUT_SECONDS",
        gt=0.0,
        description="How long to wait for the eth_subscribe reply",
    )
    idle_timeout_seconds: float = Field(
        default=120.0,
        alias="STREAM_IDLE_TIMEOUT_SECONDS",
        gt=0.0,
        description="Reconnect when no message arrives for this long",
    )

    @field_validator("ws_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate WebSocket URL format."""
        if not v.startswith(("ws://", "wss://")):
            raise ValueError("ETH_WS_URL must be a ws:// or wss:// endpoint")
        return v

    @model_validator(mode="after")
    def validate_delays(self) -> StreamSettings:
        if self.max_reconnect_delay_seconds < self.reconnect_delay_seconds:
            raise ValueError(
                "STREAM_MAX_RECONNECT_DELAY_SECONDS must be >= STREAM_RECONNECT_DELAY_SECONDS"
            )
        return self


class PoolSettings(BaseSettings):
    """Watched pool and token display settings."""

    model_config = SettingsConfigDict(env_prefix="POOL_", extra="ignore")

    address: str = Field(
        default=DEFAULT_POOL_ADDRESS,
        alias="POOL_ADDRESS",
        description="Uniswap V3 pool contract address",
    )
    token0_symbol: str = Field(default="USDC", alias="POOL_TOKEN0_SYMBOL")
    token0_decimals: int = Field(default=6, alias="POOL_TOKEN0_DECIMALS", ge=0, le=36)
    token1_symbol: str = Field(default="WETH", alias="POOL_TOKEN1_SYMBOL")
    token1_decimals: int = Field(default=18, alias="POOL_TOKEN1_DECIMALS", ge=0, le=36)
    explorer_tx_url: str = Field(
        default="https://etherscan.io/tx/{tx_hash}",
        alias="POOL_EXPLORER_TX_URL",
        description="Block explorer URL template with a {tx_hash} field",
    )

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Checksum the pool address."""
        if not Web3.is_address(v):
            raise ValueError("POOL_ADDRESS must be a 20-byte hex address")
        return Web3.to_checksum_address(v)

    @field_validator("explorer_tx_url")
    @classmethod
    def validate_explorer_url(cls, v: str) -> str:
        if "{tx_hash}" not in v:
            raise ValueError("POOL_EXPLORER_TX_URL must contain a {tx_hash} placeholder")
        return v


class WhaleSettings(BaseSettings):
    """Whale classification settings."""

    model_config = SettingsConfigDict(env_prefix="WHALE_", extra="ignore")

    threshold: Decimal = Field(
        default=Decimal("20"),
        alias="WHALE_THRESHOLD",
        ge=Decimal("0"),
        description="Whale threshold in display units of the reference token",
    )
    reference_token: Literal["token0", "token1"] = Field(
        default="token1",
        alias="WHALE_REFERENCE_TOKEN",
        description="Pool leg used for sizing (token0 = stablecoin notional)",
    )


class TelegramSettings(BaseSettings):
    """Telegram notification settings."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_", extra="ignore")

    bot_token: SecretStr | None = Field(
        default=None,
        alias="TELEGRAM_BOT_TOKEN",
        description="Telegram bot token",
    )
    chat_id: str | None = Field(
        default=None,
        alias="TELEGRAM_CHAT_ID",
        description="Telegram chat ID for alerts",
    )

    @property
    def enabled(self) -> bool:
        """Check if Telegram notifications are enabled."""
        return self.bot_token is not None and self.chat_id is not None


class DispatchSettings(BaseSettings):
    """Alert dispatcher settings."""

    model_config = SettingsConfigDict(env_prefix="DISPATCH_", extra="ignore")

    min_interval_seconds: float = Field(
        default=1.0,
        alias="DISPATCH_MIN_INTERVAL_SECONDS",
        gt=0.0,
        description="Minimum time between successful sends",
    )
    max_backlog: int = Field(
        default=100,
        alias="DISPATCH_MAX_BACKLOG",
        ge=1,
        description="Maximum queued alerts before the oldest is dropped",
    )
    max_retries: int = Field(
        default=3,
        alias="DISPATCH_MAX_RETRIES",
        ge=0,
        description="Retries per alert after a failed send",
    )
    retry_base_delay_seconds: float = Field(
        default=1.0,
        alias="DISPATCH_RETRY_BASE_DELAY_SECONDS",
        gt=0.0,
    )
    alert_ttl_seconds: float = Field(
        default=300.0,
        alias="DISPATCH_ALERT_TTL_SECONDS",
        gt=0.0,
        description="Alerts older than this are dropped instead of sent",
    )
    critical_multiplier: int = Field(
        default=5,
        alias="DISPATCH_CRITICAL_MULTIPLIER",
        ge=1,
        description="Trades this many times the threshold are queued as critical",
    )
    shutdown_grace_seconds: float = Field(
        default=5.0,
        alias="DISPATCH_SHUTDOWN_GRACE_SECONDS",
        ge=0.0,
    )


class LedgerSettings(BaseSettings):
    """Alert ledger (cross-restart deduplication) settings."""

    model_config = SettingsConfigDict(env_prefix="ALERT_LEDGER_", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="ALERT_LEDGER_URL",
        description="redis://, postgresql:// or sqlite:// URL; unset keeps the ledger in memory",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        if not v:
            return None
        if not v.startswith(("redis://", "rediss://", "postgresql", "sqlite")):
            raise ValueError("ALERT_LEDGER_URL must be a redis, postgresql or sqlite URL")
        return v


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from whale_observer.config import get_settings

        settings = get_settings()
        print(settings.pool.address)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # Nested configuration groups
    #
    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    stream: StreamSettings = Field(
        default_factory=lambda: StreamSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    pool: PoolSettings = Field(
        default_factory=lambda: PoolSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    whale: WhaleSettings = Field(
        default_factory=lambda: WhaleSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    telegram: TelegramSettings = Field(
        default_factory=lambda: TelegramSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    dispatch: DispatchSettings = Field(
        default_factory=lambda: DispatchSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    ledger: LedgerSettings = Field(
        default_factory=lambda: LedgerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    log_json: bool = Field(
        default=False,
        alias="LOG_JSON",
        description="Emit one JSON object per log line",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Run without sending actual alerts",
    )

    @model_validator(mode="after")
    def validate_threshold_precision(self) -> Settings:
        """Reject a threshold finer than the reference token's smallest unit."""
        decimals = self.reference_decimals()
        scaled = self.whale.threshold.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(
                f"WHALE_THRESHOLD {self.whale.threshold} has more than {decimals} decimal places "
                f"for the {self.whale.reference_token} reference token"
            )
        return self

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def reference_decimals(self) -> int:
        """Decimals of the token the whale threshold is expressed in."""
        if self.whale.reference_token == "token0":
            return self.pool.token0_decimals
        return self.pool.token1_decimals

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "stream": {
                "ws_url": self._redact_endpoint(self.stream.ws_url),
                "reconnect_delay_seconds": str(self.stream.reconnect_delay_seconds),
                "max_reconnect_delay_seconds": str(self.stream.max_reconnect_delay_seconds),
                "idle_timeout_seconds": str(self.stream.idle_timeout_seconds),
            },
            "pool": {
                "address": self.pool.address,
                "token0": f"{self.pool.token0_symbol} ({self.pool.token0_decimals})",
                "token1": f"{self.pool.token1_symbol} ({self.pool.token1_decimals})",
            },
            "whale": {
                "threshold": str(self.whale.threshold),
                "reference_token": self.whale.reference_token,
            },
            "dispatch": {
                "min_interval_seconds": str(self.dispatch.min_interval_seconds),
                "max_backlog": str(self.dispatch.max_backlog),
                "max_retries": str(self.dispatch.max_retries),
                "alert_ttl_seconds": str(self.dispatch.alert_ttl_seconds),
            },
            "ledger_url": self._redact_url(self.ledger.url) if self.ledger.url else "(in memory)",
            "telegram_enabled": str(self.telegram.enabled),
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(self, *, command: Literal["run", "check-config"] = "run") -> None:
        """Validate command-specific requirements.

        Raises:
            ConfigurationError: If a capability the command needs is not configured.
        """
        if command == "run" and not self.dry_run and not self.telegram.enabled:
            raise ConfigurationError(
                "TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID are required unless DRY_RUN is enabled"
            )

    @classmethod
    def _redact_endpoint(cls, url: str) -> str:
        """Hide the path of an RPC endpoint; providers embed API keys there."""
        url = cls._redact_url(url)
        if "://" not in url:
            return url
        scheme, rest = url.split("://", 1)
        host, sep, path = rest.partition("/")
        return f"{scheme}://{host}/***" if sep and path else url

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            # URL has credentials - redact the password
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
