"""
CPDEX TOML Configuration Loader

Loads every section of config.toml at startup with environment variable
overrides (dataclass + from_dict + from_file).

Environment variable mapping:
    [exchange] admin          -> CPDEX_ADMIN
    [exchange] fee_collector  -> CPDEX_FEE_COLLECTOR
    [logging]  level          -> CPDEX_LOG_LEVEL
    [logging]  file           -> CPDEX_LOG_FILE
    [storage]  state_file     -> CPDEX_STATE_FILE
    config path               -> CPDEX_CONFIG
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import tomllib as tomli  # Python 3.11+
except ImportError:
    import tomli  # type: ignore[no-redef]

from ..constants import (
    DEFAULT_FEE_DENOMINATOR,
    DEFAULT_FEE_NUMERATOR,
    DEFAULT_PROTOCOL_FEE_PERCENTAGE,
    parse_bool,
)
from ..exceptions import ConfigurationError
from ..exchange.registry import validate_fee_schedule

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# ---------------------------------------------------------------------------
# Section dataclasses, one per [section] of config.example.toml
# ---------------------------------------------------------------------------


@dataclass
class ExchangeSectionConfig:
    """[exchange] section."""
    admin: str = "admin"
    fee_numerator: int = DEFAULT_FEE_NUMERATOR
    fee_denominator: int = DEFAULT_FEE_DENOMINATOR
    protocol_fee_percentage: int = DEFAULT_PROTOCOL_FEE_PERCENTAGE
    fee_collector: str = "treasury"
    allow_reinitialize: bool = True
    strict_fee_collection: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExchangeSectionConfig":
        return cls(
            admin=data.get("admin", "admin"),
            fee_numerator=data.get("fee_numerator", DEFAULT_FEE_NUMERATOR),
            fee_denominator=data.get("fee_denominator", DEFAULT_FEE_DENOMINATOR),
            protocol_fee_percentage=data.get(
                "protocol_fee_percentage", DEFAULT_PROTOCOL_FEE_PERCENTAGE
            ),
            fee_collector=data.get("fee_collector", "treasury"),
            allow_reinitialize=data.get("allow_reinitialize", True),
            strict_fee_collection=data.get("strict_fee_collection", False),
        )

    def apply_env(self) -> None:
        """Override from environment variables."""
        if v := os.environ.get("CPDEX_ADMIN"):
            self.admin = v
        if v := os.environ.get("CPDEX_FEE_COLLECTOR"):
            self.fee_collector = v
        if v := os.environ.get("CPDEX_ALLOW_REINITIALIZE"):
            self.allow_reinitialize = bool(parse_bool(v))
        if v := os.environ.get("CPDEX_STRICT_FEE_COLLECTION"):
            self.strict_fee_collection = bool(parse_bool(v))

    def validate(self) -> None:
        if not self.admin:
            raise ConfigurationError("exchange.admin must be set")
        if not self.fee_collector:
            raise ConfigurationError("exchange.fee_collector must be set")
        validate_fee_schedule(
            self.fee_numerator, self.fee_denominator, self.protocol_fee_percentage,
        )


@dataclass
class LoggingSectionConfig:
    """[logging] section."""
    level: str = "INFO"
    file: str = ""
    console_output: bool = True
    file_output: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingSectionConfig":
        return cls(
            level=str(data.get("level", "INFO")).upper(),
            file=data.get("file", ""),
            console_output=data.get("console_output", True),
            file_output=data.get("file_output", False),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("CPDEX_LOG_LEVEL"):
            self.level = v.upper()
        if v := os.environ.get("CPDEX_LOG_FILE"):
            self.file = v
            self.file_output = True

    def validate(self) -> None:
        if self.level not in LOG_LEVELS:
            raise ConfigurationError(f"Invalid logging.level: {self.level}")


@dataclass
class StorageSectionConfig:
    """[storage] section."""
    state_file: str = "./data/cpdex-state.json"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StorageSectionConfig":
        return cls(state_file=data.get("state_file", "./data/cpdex-state.json"))

    def apply_env(self) -> None:
        if v := os.environ.get("CPDEX_STATE_FILE"):
            self.state_file = v


# -----------------------------------------------------------------------
# Top-level config
# -----------------------------------------------------------------------

@dataclass
class DexConfig:
    """
    Unified exchange configuration.

    Loads every section of config.toml and applies environment variable
    overrides. This is the single source of truth at runtime.
    """
    exchange: ExchangeSectionConfig = field(default_factory=ExchangeSectionConfig)
    logging: LoggingSectionConfig = field(default_factory=LoggingSectionConfig)
    storage: StorageSectionConfig = field(default_factory=StorageSectionConfig)

    # --- factories --------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DexConfig":
        """Create DexConfig from a parsed TOML dict."""
        return cls(
            exchange=ExchangeSectionConfig.from_dict(data.get("exchange", {})),
            logging=LoggingSectionConfig.from_dict(data.get("logging", {})),
            storage=StorageSectionConfig.from_dict(data.get("storage", {})),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "DexConfig":
        """
        Load configuration from a TOML file.

        A missing file is not an error: defaults are used, with env overrides.
        """
        path = Path(config_path)
        if not path.exists():
            logger.debug("Config file not found: %s, using defaults", config_path)
            cfg = cls()
            cfg.apply_env()
            return cfg

        with open(path, "rb") as f:
            try:
                raw = tomli.load(f)
            except tomli.TOMLDecodeError as e:
                raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e

        cfg = cls.from_dict(raw)
        cfg.apply_env()
        return cfg

    # --- env overrides ----------------------------------------------------

    def apply_env(self) -> None:
        """Apply environment variable overrides to all sections."""
        self.exchange.apply_env()
        self.logging.apply_env()
        self.storage.apply_env()

    # --- validation -------------------------------------------------------

    def validate(self) -> bool:
        """
        Validate all configuration sections.

        Raises:
            ConfigurationError: on invalid config
        """
        self.exchange.validate()
        self.logging.validate()
        if not self.storage.state_file:
            raise ConfigurationError("storage.state_file must be set")
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for diagnostics, NOT for re-creating TOML)."""
        return {
            "exchange": {
                "admin": self.exchange.admin,
                "fee_numerator": self.exchange.fee_numerator,
                "fee_denominator": self.exchange.fee_denominator,
                "protocol_fee_percentage": self.exchange.protocol_fee_percentage,
                "fee_collector": self.exchange.fee_collector,
                "allow_reinitialize": self.exchange.allow_reinitialize,
                "strict_fee_collection": self.exchange.strict_fee_collection,
            },
            "logging": {
                "level": self.logging.level,
                "file": self.logging.file,
                "console_output": self.logging.console_output,
                "file_output": self.logging.file_output,
            },
            "storage": {
                "state_file": self.storage.state_file,
            },
        }


# -----------------------------------------------------------------------
# Convenience function
# -----------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> DexConfig:
    """
    Load exchange configuration.

    Resolution order:
        1. Explicit *path* argument
        2. CPDEX_CONFIG env var
        3. ./config.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("CPDEX_CONFIG", "config.toml")

    cfg = DexConfig.from_file(path)
    cfg.validate()
    return cfg
