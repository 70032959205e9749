"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ExchangeSettings(BaseSettings):
    """Exchange trade-history access settings.

    ``mode="gateway"`` posts the ``getMyTrades`` action envelope to a backend
    gateway; ``mode="direct"`` talks to Binance through ccxt.
    """

    model_config = SettingsConfigDict(env_prefix="EXCHANGE_")

    mode: Literal["gateway", "direct"] = "gateway"
    gateway_url: str = "http://localhost:54321/functions/v1/binance-assets"
    gateway_token: SecretStr = SecretStr("")
    api_key: SecretStr = SecretStr("")
    api_secret: SecretStr = SecretStr("")
    symbols: list[str] = ["BTCUSDT", "USDTINR"]  # direct mode only
    request_timeout: float = 15.0


class StoreSettings(BaseSettings):
    """Ledger database location."""

    model_config = SettingsConfigDict(env_prefix="STORE_")

    db_path: str = "data/ledger.db"


class SyncSettings(BaseSettings):
    """Trade sync worker parameters."""

    model_config = SettingsConfigDict(env_prefix="SYNC_")

    enabled: bool = True
    interval_seconds: int = 300
    batch_size: int = 50


class ScanSettings(BaseSettings):
    """Reconciliation scanner parameters.

    Thresholds mirror the audit rules of the reconciliation scan. The
    ``reconciliation_enabled`` key in the settings table overrides ``enabled``.
    """

    model_config = SettingsConfigDict(env_prefix="SCAN_")

    enabled: bool = True
    schedule_enabled: bool = False
    interval_seconds: int = 3600
    timezone_offset_minutes: int = 330  # IST business day
    amount_tolerance: Decimal = Decimal("0.50")
    amount_critical_variance: Decimal = Decimal("100")
    fee_tolerance: Decimal = Decimal("0.01")
    fee_warning_variance: Decimal = Decimal("10")
    small_sale_min: Decimal = Decimal("200")
    small_sale_max: Decimal = Decimal("4000")
    stale_pending_hours: int = 24
    payment_drift_min_occurrences: int = 3
    client_prefix_length: int = 6


class AlertSettings(BaseSettings):
    """Order alert dispatcher parameters."""

    model_config = SettingsConfigDict(env_prefix="ALERT_")

    enabled: bool = True
    poll_interval_seconds: int = 30
    user_id: str = "default"
    order_lookback_hours: int = 24
    payment_timer_thresholds: list[int] = [300, 120]  # seconds remaining
    order_timer_thresholds: list[int] = [300, 120]
    terminal_grace_seconds: int = 10


class ApiSettings(BaseSettings):
    """Trigger API server configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    host: str = "0.0.0.0"
    port: int = 8080
    enabled: bool = True


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: str = "console"
    exchange: ExchangeSettings = ExchangeSettings()
    store: StoreSettings = StoreSettings()
    sync: SyncSettings = SyncSettings()
    scan: ScanSettings = ScanSettings()
    alerts: AlertSettings = AlertSettings()
    api: ApiSettings = ApiSettings()
