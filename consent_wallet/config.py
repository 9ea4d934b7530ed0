"""Application configuration via pydantic-settings.

Settings are organized into logical groups and composed into a single Settings object.
Values come from environment variables or a .env file.

These are *deployment* settings. The user-facing toggles (autoDetection,
notifications, expiryReminders) live in the durable store: see
``consent_wallet.schemas.consent.WalletSettings``.
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Durable store (Redis) connection settings."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection string",
    )
    store_key_prefix: str = Field(
        default="consent_wallet:",
        description="Namespace prepended to every durable store key",
    )
    use_memory_store: bool = Field(
        default=False,
        description="Keep the store in process memory instead of Redis (dev/test)",
    )


class LedgerSettings(BaseSettings):
    """On-chain consent contract and wallet settings."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", env_prefix="LEDGER_")

    rpc_url: str = Field(
        default="https://data-seed-prebsc-1-s1.binance.org:8545",
        description="JSON-RPC endpoint of the chain node",
    )
    contract_address: str = Field(default="", description="Deployed consent contract address")
    expected_chain_id: int = Field(default=97, description="BNB Smart Chain Testnet")
    network_name: str = Field(default="BNB Smart Chain Testnet")
    account: str = Field(default="", description="Wallet account used for reads and writes")
    private_key: str = Field(default="", description="Optional local signer key (hex)")
    receipt_timeout: float = Field(default=120.0, description="Seconds to wait for a tx receipt")


class TimerSettings(BaseSettings):
    """Alarm delays for abandonment, expiry reminders and page scans."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    abandon_after_minutes: int = Field(default=10)
    expiry_reminder_hours: int = Field(default=24)
    scan_delay_seconds: float = Field(default=3.0)


class ScanSettings(BaseSettings):
    """URL allow-list for automatic consent scanning."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    skip_url_prefixes: str = Field(
        default="chrome://,chrome-extension://,moz-extension://,about:",
        description="Comma-separated URL prefixes never scanned",
    )
    app_origin: str = Field(
        default="localhost:5173",
        description="Our own application origin: never scanned",
    )


class Settings(BaseSettings):
    """Root settings composing all sub-settings.

    Usage:
        settings = Settings()
        settings.ledger.contract_address
        settings.timers.abandon_after_minutes
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    environment: str = Field(default="development")
    log_level: str = Field(default="DEBUG")

    # Composed settings (loaded from same .env)
    store: StoreSettings = Field(default_factory=StoreSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    timers: TimerSettings = Field(default_factory=TimerSettings)
    scan: ScanSettings = Field(default_factory=ScanSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            msg = f"Invalid log level: {v}. Must be one of {valid}"
            raise ValueError(msg)
        return upper

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


# Module-level singleton: import this wherever settings are needed.
settings = Settings()
