"""
Configuration Management for Cashbook

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The ledger itself only needs a data directory; the rate proxy, the
alert job and the cloud sync each get their own prefix so they can be
deployed separately.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets cloud sync configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet used for sync"
    )
    sync_sheet_name: str = Field(
        default="Sync",
        description="Worksheet holding one row per synced key"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Worksheet for audit events"
    )
    user_id: str = Field(
        default="default_user",
        description="Single-user identifier written with every row"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Cloud sync will fail until it exists."
            )
        return v


class RateProxySettings(BaseSettings):
    """P2P rate proxy service configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RATE_PROXY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3001, ge=1, le=65535)

    fx_api_url: str = Field(
        default="https://open.er-api.com/v6/latest/USD",
        description="USD based FX table, must expose rates.VND"
    )
    coingecko_api_url: str = Field(
        default="https://api.coingecko.com/api/v3/simple/price?ids=tether&vs_currencies=usd"
    )
    binance_p2p_api_url: str = Field(
        default="https://p2p.binance.com/bapi/c2c/v2/friendly/c2c/adv/search"
    )
    request_timeout_seconds: float = Field(default=10.0, gt=0)

    # Estimation knobs used when Binance P2P is unavailable
    p2p_adjustment: float = Field(
        default=1.0,
        gt=0,
        description="Multiplier applied to the spot USDT/VND rate"
    )
    p2p_spread_percent: float = Field(
        default=0.3,
        ge=0,
        description="Spread between sell and buy price, in percent"
    )
    binance_top_n: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Number of best adverts averaged into one price"
    )

    data_dir: Path = Field(
        default=Path("scripts"),
        description="Directory holding manual-rate.json and rate-snapshot.json"
    )
    manual_rate_max_age_days: int = Field(default=7, ge=1)

    cors_origins: str = Field(
        default=(
            r"http://localhost:8080,http://127.0.0.1:8080,"
            r"^https://.*\.netlify\.app$,^https://.*\.ngrok-free\.app$"
        ),
        description="Comma-separated origins; entries starting with ^ are regexes"
    )

    @property
    def manual_rate_file(self) -> Path:
        return self.data_dir / "manual-rate.json"

    @property
    def state_file(self) -> Path:
        return self.data_dir / "rate-snapshot.json"

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


class RateAlertSettings(BaseSettings):
    """Rate change alert job configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RATE_ALERT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    proxy_url: str = Field(
        default="http://localhost:3001/api/p2p-rate",
        description="Rate proxy endpoint polled by the job"
    )
    threshold_percent: float = Field(default=0.5, ge=0)

    email_to: Optional[str] = None
    email_from: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: int = Field(default=587)
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    webhook_url: Optional[str] = None

    @property
    def email_configured(self) -> bool:
        return bool(self.email_to and self.email_from and self.smtp_host)


class AppSettings(BaseSettings):
    """
    Main ledger settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="CASHBOOK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    data_dir: Path = Field(
        default=Path("data"),
        description="Directory backing the key/value store"
    )
    timezone: str = Field(
        default="Asia/Ho_Chi_Minh",
        description="Time zone used to auto-fill today's date"
    )

    # Sheet sizing
    ae_initial_rows: int = Field(default=50, ge=1)
    dashboard_initial_rows: int = Field(default=50, ge=1)
    dashboard_max_rows: int = Field(default=200, ge=1)

    # Payout shares used by the balance report
    ae_share: float = Field(default=0.5, ge=0.0, le=1.0)
    aeqt_share: float = Field(default=0.8, ge=0.0, le=1.0)

    # Expense book
    default_usd_rate: float = Field(
        default=25400.0,
        gt=0,
        description="USD to VND rate used when none is stored"
    )
    max_expense_amount: float = Field(default=999_999_999_999)

    # Dashboard widget
    rate_proxy_url: str = Field(
        default="http://localhost:3001/api/p2p-rate",
        description="Where the dashboard fetches the P2P quote"
    )
    binance_ticker_url: str = Field(
        default="https://api.binance.com/api/v3/ticker/price?symbol=BUSDUSDT"
    )
    fx_api_url: str = Field(default="https://open.er-api.com/v6/latest/USD")

    cloud_sync_enabled: bool = Field(
        default=False,
        description="Push every save to Google Sheets"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily so the proxy can run without
    # Google credentials and the ledger without SMTP settings.

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def rate_proxy(self) -> RateProxySettings:
        return RateProxySettings()

    @property
    def rate_alert(self) -> RateAlertSettings:
        return RateAlertSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid} plus
    `<name>_error` entries for the failures.
    """
    results = {}
    settings = get_settings()

    for name in ("google_sheets", "rate_proxy", "rate_alert", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
