"""
Settings management for key manager tools.

Settings come from (highest priority first):
1. Constructor / CLI arguments
2. Environment variables with the ``KM_`` prefix (KM_NETWORK, KM_SCHEME, ...)
3. TOML configuration file (``$KM_CONFIG_FILE`` or ~/.km-wallet/config.toml)
4. Default values

Usage:
    from kmwallet.settings import get_settings

    settings = get_settings()
    print(settings.network, settings.gap_limit)
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from kmwallet.config import DEFAULT_GAP_LIMIT, KeyManagerConfig
from kmwallet.errors import ConfigError
from kmwallet.models import DerivationScheme

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


def get_config_path() -> Path:
    """Get the path to the config file."""
    env_path = os.environ.get("KM_CONFIG_FILE")
    if env_path:
        return Path(env_path)
    return Path.home() / ".km-wallet" / "config.toml"


class KeyManagerSettings(BaseSettings):
    """Defaults for key managers created by the command line tools."""

    model_config = SettingsConfigDict(
        env_prefix="KM_",
        case_sensitive=False,
        extra="ignore",
    )

    network: str = Field(default="mainnet", description="Registered network name")
    scheme: DerivationScheme = Field(default=DerivationScheme.BIP44)
    account: int = Field(default=0, ge=0)
    gap_limit: int = Field(default=DEFAULT_GAP_LIMIT, ge=1)
    log_level: str = Field(default="INFO", description="Log level: TRACE, DEBUG, INFO, ...")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls),
        )

    def to_config(self) -> KeyManagerConfig:
        return KeyManagerConfig(
            network=self.network,
            scheme=self.scheme,
            account=self.account,
            gap_limit=self.gap_limit,
        )


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """Settings source reading a flat TOML table from :func:`get_config_path`."""

    def __init__(self, settings_cls: type[BaseSettings]) -> None:
        super().__init__(settings_cls)
        self._config: dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        config_path = get_config_path()
        if not config_path.exists():
            logger.debug(f"Config file not found at {config_path}, using defaults")
            return

        try:
            with open(config_path, "rb") as f:
                self._config = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Invalid TOML syntax in config file {config_path}")
            raise ConfigError(f"Invalid config file {config_path}: {e}") from e
        logger.info(f"Loaded config from {config_path}")

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        value = self._config.get(field_name)
        return value, field_name, value is not None

    def __call__(self) -> dict[str, Any]:
        return self._config


# Global settings instance (lazy-loaded)
_settings: KeyManagerSettings | None = None


def get_settings(**overrides: Any) -> KeyManagerSettings:
    """
    Get the settings instance.

    On first call, loads settings from all sources. Subsequent calls
    return the cached instance unless reset_settings() is called.
    """
    global _settings
    if _settings is None or overrides:
        _settings = KeyManagerSettings(**overrides)
    return _settings


def reset_settings() -> None:
    """Reset the global settings instance (useful for testing)."""
    global _settings
    _settings = None
