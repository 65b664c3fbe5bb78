"""Configuration module for the CoreService client."""
from .settings import (
    CoreServiceSettings,
    ConnectionType,
    SUPPORTED_VERSIONS,
    load_settings,
    save_settings,
    reset_settings,
    update_settings,
    settings_file_path,
    parse_timeout,
)

__all__ = [
    "CoreServiceSettings",
    "ConnectionType",
    "SUPPORTED_VERSIONS",
    "load_settings",
    "save_settings",
    "reset_settings",
    "update_settings",
    "settings_file_path",
    "parse_timeout",
]
