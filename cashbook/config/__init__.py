"""Configuration package."""

from cashbook.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    RateAlertSettings,
    RateProxySettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "RateAlertSettings",
    "RateProxySettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
