from .models import (
    DEFAULT_CANARY,
    DEFAULT_DENIAL_PATTERNS,
    DEFAULT_SENTINEL_TOKEN,
    LoggingSettings,
    LogLevel,
    ProcessEnvSettings,
    Settings,
    ShellProgram,
)
from .loader import load_settings, load_settings_or_default

__all__ = [
    "DEFAULT_CANARY",
    "DEFAULT_DENIAL_PATTERNS",
    "DEFAULT_SENTINEL_TOKEN",
    "LoggingSettings",
    "LogLevel",
    "ProcessEnvSettings",
    "Settings",
    "ShellProgram",
    "load_settings",
    "load_settings_or_default",
]
