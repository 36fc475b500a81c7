#!/usr/bin/env python3
"""
Spotlight Downloader - Configuration Loader

Loads configuration from config.yaml with environment variable overrides.
Provides type-safe access to configuration values.
"""

import os
import re
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from spotlight_request import (
    DEFAULT_API_VERSION,
    V3_HOST,
    V3_PID,
    V4_BATCH_COUNT,
    V4_HOST,
    V4_PLACEMENT,
    ApiVersion,
)

logger = logging.getLogger("spotlight_downloader")


def _as_code(value: Any) -> Optional[str]:
    """Read a locale or region value. YAML 1.1 loads a bare NO as False."""
    if value is False:
        return "no"
    if value is None or value is True or value == "":
        return None
    return str(value)


@dataclass
class ApiConfig:
    """Spotlight API request configuration."""
    version: ApiVersion = DEFAULT_API_VERSION
    locale: Optional[str] = None      # None = system locale
    region: Optional[str] = None      # None = derived from system locale
    portrait: Optional[bool] = None   # None = detect from primary display
    v4_host: str = V4_HOST
    v4_placement: str = V4_PLACEMENT
    batch_count: int = V4_BATCH_COUNT
    v3_host: str = V3_HOST
    v3_pid: str = V3_PID


@dataclass
class RetryConfig:
    """Retry configuration. The delay is fixed, not exponential."""
    max_attempts: int = 1
    delay_sec: float = 10.0


@dataclass
class TimeoutConfig:
    """Timeout configuration."""
    api_call_sec: int = 30


class ConfigLoader:
    """
    Load configuration from YAML with environment variable overrides.

    Environment variables use the format: SPOTLIGHT_<SECTION>_<KEY>
    Examples:
        SPOTLIGHT_API_VERSION=v3
        SPOTLIGHT_API_LOCALE=fr-CA
        SPOTLIGHT_RETRY_MAX_ATTEMPTS=3
    """

    ENV_PREFIX = "SPOTLIGHT_"

    # Language and region codes such as NO (Norway) must stay strings
    STRING_KEYS = {"api.locale", "api.region"}

    def __init__(self, config_path: Path = None):
        """
        Initialize configuration loader.

        Args:
            config_path: Path to config.yaml file. Defaults to ./config.yaml
        """
        self.config_path = Path(config_path) if config_path else Path("./config.yaml")
        self.raw_config: dict = {}
        self._load()

    def _load(self) -> None:
        """Load configuration from YAML file."""
        if self.config_path.exists():
            with open(self.config_path) as f:
                self.raw_config = yaml.safe_load(f) or {}
            logger.info(f"Loaded configuration from {self.config_path}")
        else:
            logger.warning(f"Config file not found: {self.config_path}, using defaults")
            self.raw_config = {}

        self._apply_env_overrides()
        self.raw_config = self._expand_env_vars(self.raw_config)

    def _apply_env_overrides(self) -> None:
        """Override configuration values from SPOTLIGHT_* environment variables."""
        for key, value in os.environ.items():
            if not key.startswith(self.ENV_PREFIX):
                continue

            # SPOTLIGHT_SECTION_KEY -> section.key
            parts = key[len(self.ENV_PREFIX):].lower().split("_")

            if len(parts) >= 2:
                section = parts[0]
                config_key = "_".join(parts[1:])
                if f"{section}.{config_key}" in self.STRING_KEYS:
                    typed_value = value
                else:
                    typed_value = self._parse_value(value)

                if section not in self.raw_config or self.raw_config[section] is None:
                    self.raw_config[section] = {}

                if isinstance(self.raw_config[section], dict):
                    self.raw_config[section][config_key] = typed_value
                    logger.debug(f"Config override: {section}.{config_key} = {typed_value}")

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate Python type."""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        return value

    def _expand_env_vars(self, obj: Any) -> Any:
        """Expand ${VAR} references in configuration values."""
        if isinstance(obj, str):
            for var_name in re.findall(r'\$\{([^}]+)\}', obj):
                obj = obj.replace(f"${{{var_name}}}", os.environ.get(var_name, ""))
            return obj
        elif isinstance(obj, dict):
            return {k: self._expand_env_vars(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._expand_env_vars(item) for item in obj]
        return obj

    def get(self, path: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation path.

        Examples:
            config.get('api.version')         # 'v4'
            config.get('retry.max_attempts')  # 1
        """
        value = self.raw_config

        for part in path.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default

        return value

    def _section(self, name: str) -> dict:
        section = self.raw_config.get(name)
        return section if isinstance(section, dict) else {}

    def get_api_config(self) -> ApiConfig:
        """Get API configuration as dataclass."""
        api = self._section("api")
        portrait = api.get("portrait")
        locale = _as_code(api.get("locale"))
        region = _as_code(api.get("region"))

        return ApiConfig(
            version=ApiVersion.parse(api.get("version", DEFAULT_API_VERSION.value)),
            locale=locale,
            region=region.upper() if region else None,
            portrait=portrait if isinstance(portrait, bool) else None,
            v4_host=api.get("v4_host", V4_HOST),
            v4_placement=str(api.get("v4_placement", V4_PLACEMENT)),
            batch_count=int(api.get("batch_count", V4_BATCH_COUNT)),
            v3_host=api.get("v3_host", V3_HOST),
            v3_pid=str(api.get("v3_pid", V3_PID)),
        )

    def get_retry_config(self) -> RetryConfig:
        """Get retry configuration as dataclass."""
        retry = self._section("retry")

        return RetryConfig(
            max_attempts=int(retry.get("max_attempts", 1)),
            delay_sec=float(retry.get("delay_sec", 10.0)),
        )

    def get_timeout_config(self) -> TimeoutConfig:
        """Get timeout configuration as dataclass."""
        timeouts = self._section("timeouts")

        return TimeoutConfig(
            api_call_sec=int(timeouts.get("api_call_sec", 30)),
        )


# Global config instance (lazy loaded)
_config: Optional[ConfigLoader] = None


def get_config() -> ConfigLoader:
    """Get global configuration instance."""
    global _config
    if _config is None:
        _config = ConfigLoader()
    return _config


def reload_config(config_path: Path = None) -> ConfigLoader:
    """Reload configuration from file."""
    global _config
    _config = ConfigLoader(config_path)
    return _config
