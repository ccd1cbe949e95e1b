"""Settings package exports."""

from .loader import (
    HISTORY_LIMIT,
    AppConfig,
    GeminiSettings,
    HttpSettings,
    LoggingSettings,
    WeChatSettings,
    load_config,
    project_path,
)
from .store import (
    CREDENTIAL_KEYS,
    SanitizedSettings,
    Settings,
    SettingsOrigin,
    SettingsStore,
    changed_keys,
)

__all__ = [
    "AppConfig",
    "CREDENTIAL_KEYS",
    "GeminiSettings",
    "HISTORY_LIMIT",
    "HttpSettings",
    "LoggingSettings",
    "SanitizedSettings",
    "Settings",
    "SettingsOrigin",
    "SettingsStore",
    "WeChatSettings",
    "changed_keys",
    "load_config",
    "project_path",
]
