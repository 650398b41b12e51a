"""Configuration package."""

from splitledger.config.settings import (
    AppSettings,
    CacheSettings,
    GoogleWorkspaceSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "CacheSettings",
    "GoogleWorkspaceSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
