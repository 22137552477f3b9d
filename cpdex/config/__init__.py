"""
CPDEX Configuration

Loads all sections of config.toml at startup.
Environment variables override TOML values.
"""

from .loader import (
    DexConfig,
    ExchangeSectionConfig,
    LoggingSectionConfig,
    StorageSectionConfig,
    load_config,
)

__all__ = [
    "DexConfig",
    "ExchangeSectionConfig",
    "LoggingSectionConfig",
    "StorageSectionConfig",
    "load_config",
]
