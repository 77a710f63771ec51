#!/usr/bin/env python3
"""Hierarchical configuration manager for LayerStore.

This module provides configuration management with:
- 6-level precedence hierarchy
- YAML configuration files
- Environment variable overrides
- Thread-safe operations
- Deep merge of nested sections
- Typed StoreSettings derived from the merged configuration

Example:
    >>> config = ConfigManager()
    >>> config.load_file("layerstore.yaml")
    >>> config.get("layerstore.index.backend", default="sqlite")
    >>> settings = StoreSettings.from_config(config)
"""

import copy
import os
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from layerstore.core.constants import DEFAULT_CONFIG, ConfigKey, ErrorCode, Layout
from layerstore.core.errors import LayerStoreError
from layerstore.core.validators import ValidationError, validate_store_config

ENV_PREFIX = "LAYERSTORE_"
ENV_SEPARATOR = "__"
SECTION = "layerstore"


class ConfigSource(Enum):
    """Configuration source precedence levels."""

    COMPILED_DEFAULTS = 1  # Lowest precedence
    SYSTEM_CONFIG = 2
    USER_CONFIG = 3
    ENVIRONMENT = 4
    CLI_ARGS = 5
    RUNTIME = 6  # Highest precedence


class ConfigError(LayerStoreError):
    """Configuration error."""

    default_code = ErrorCode.INVALID_INPUT


class ConfigManager:
    """Thread-safe hierarchical configuration manager.

    Manages configuration from multiple sources with precedence:
    1. Compiled defaults (lowest)
    2. System config (/etc/layerstore/config.yaml)
    3. User config (~/.config/layerstore/config.yaml or --config)
    4. Environment variables (LAYERSTORE_*)
    5. CLI arguments
    6. Runtime updates (highest)

    The system and user files are read by load_default_files(); a file
    passed to the constructor takes the user config level.

    Environment variables map onto the ``layerstore`` section with ``__``
    separating nesting levels: ``LAYERSTORE_INDEX__BACKEND=memory`` sets
    ``layerstore.index.backend``.
    """

    DEFAULT_CONFIG = {SECTION: DEFAULT_CONFIG}
    SYSTEM_CONFIG_FILE = Path("/etc/layerstore/config.yaml")
    USER_CONFIG_FILE = Path("~/.config/layerstore/config.yaml")

    def __init__(self, config_file: Optional[str] = None, load_environment: bool = True):
        """Initialize configuration manager.

        Args:
            config_file: Optional config file to load
            load_environment: Whether to read LAYERSTORE_* variables
        """
        self._config: Dict[ConfigSource, Dict[str, Any]] = {}
        self._lock = threading.RLock()

        self._config[ConfigSource.COMPILED_DEFAULTS] = copy.deepcopy(self.DEFAULT_CONFIG)

        if config_file:
            self.load_file(config_file)

        if load_environment:
            self._load_environment()

    def load_file(self, file_path: str, source: ConfigSource = ConfigSource.USER_CONFIG) -> None:
        """Load configuration from YAML file.

        Args:
            file_path: Path to YAML config file
            source: Configuration source level

        Raises:
            ConfigError: If file cannot be loaded or parsed
        """
        path = Path(file_path).expanduser().resolve()

        if not path.exists():
            raise ConfigError("Config file not found", path=file_path, error_code=ErrorCode.NOT_FOUND)

        try:
            with open(path, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"YAML parse error: {e}", path=file_path) from e
        except OSError as e:
            raise ConfigError(
                f"Error reading config: {e}", path=file_path, error_code=ErrorCode.IO_ERROR
            ) from e

        if not isinstance(config_data, dict):
            raise ConfigError("Config file must contain a YAML mapping", path=file_path)

        with self._lock:
            self._config[source] = config_data

    def load_default_files(self) -> None:
        """Load the system and user config files that exist.

        The user file is skipped when a file was already loaded at the
        USER_CONFIG level, such as one given with ``--config``.

        Raises:
            ConfigError: If an existing file cannot be loaded or parsed
        """
        if self.SYSTEM_CONFIG_FILE.expanduser().is_file():
            self.load_file(str(self.SYSTEM_CONFIG_FILE), source=ConfigSource.SYSTEM_CONFIG)

        with self._lock:
            user_loaded = ConfigSource.USER_CONFIG in self._config
        if not user_loaded and self.USER_CONFIG_FILE.expanduser().is_file():
            self.load_file(str(self.USER_CONFIG_FILE), source=ConfigSource.USER_CONFIG)

    def load_dict(self, config_data: Dict[str, Any], source: ConfigSource = ConfigSource.RUNTIME) -> None:
        """Load configuration from dictionary.

        Args:
            config_data: Configuration dictionary
            source: Configuration source level
        """
        with self._lock:
            self._config[source] = copy.deepcopy(config_data)

    def _load_environment(self) -> None:
        """Load configuration from LAYERSTORE_* environment variables."""
        env_config: Dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue

            parts = [part for part in key[len(ENV_PREFIX):].lower().split(ENV_SEPARATOR) if part]
            if not parts:
                continue

            current = env_config
            for part in parts[:-1]:
                current = current.setdefault(part, {})
                if not isinstance(current, dict):
                    break
            else:
                current[parts[-1]] = self._parse_env_value(value)

        if env_config:
            with self._lock:
                self._config[ConfigSource.ENVIRONMENT] = {SECTION: env_config}

    def _parse_env_value(self, value: str) -> Any:
        """Parse environment variable value into int, float, bool, None or str."""
        lowered = value.lower()
        if lowered in ("true", "yes"):
            return True
        if lowered in ("false", "no"):
            return False
        if lowered in ("null", "none"):
            return None

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key.

        Args:
            key: Dot-separated key path (e.g., "layerstore.index.backend")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        with self._lock:
            for source in sorted(self._config.keys(), key=lambda s: s.value, reverse=True):
                value = self._get_nested(self._config[source], key)
                if value is not None:
                    return value

            return default

    def _get_nested(self, config: Dict[str, Any], key: str) -> Optional[Any]:
        current: Any = config
        for part in key.split("."):
            if not isinstance(current, dict) or part not in current:
                return None
            current = current[part]
        return current

    def set(self, key: str, value: Any, source: ConfigSource = ConfigSource.RUNTIME) -> None:
        """Set configuration value.

        Args:
            key: Dot-separated key path
            value: Value to set
            source: Configuration source level
        """
        with self._lock:
            current = self._config.setdefault(source, {})

            parts = key.split(".")
            for part in parts[:-1]:
                current = current.setdefault(part, {})

            current[parts[-1]] = value

    def get_all(self) -> Dict[str, Any]:
        """Get merged configuration from all sources, lowest precedence first."""
        with self._lock:
            merged: Dict[str, Any] = {}
            for source in sorted(self._config.keys(), key=lambda s: s.value):
                merged = self._deep_merge(merged, self._config[source])
            return merged

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        result = copy.deepcopy(base)

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = copy.deepcopy(value)

        return result

    def clear(self, source: Optional[ConfigSource] = None) -> None:
        """Clear configuration.

        Args:
            source: Specific source to clear, or None for all except defaults
        """
        with self._lock:
            if source:
                if source in self._config and source != ConfigSource.COMPILED_DEFAULTS:
                    del self._config[source]
            else:
                for s in [s for s in self._config if s != ConfigSource.COMPILED_DEFAULTS]:
                    del self._config[s]


@dataclass(frozen=True)
class StoreSettings:
    """Typed store settings resolved from a ConfigManager."""

    root: Path
    origin: int
    compression: str
    index_backend: str
    index_path: Path
    log_level: str
    log_file: Optional[str]

    @classmethod
    def from_config(cls, config: ConfigManager) -> "StoreSettings":
        """Build settings from the merged ``layerstore`` section.

        Raises:
            ConfigError: If the section fails validation
        """
        section = config.get_all().get(SECTION, {})
        try:
            validate_store_config(section)
        except ValidationError as e:
            raise ConfigError(e.message) from e

        root = Path(section[ConfigKey.ROOT]).expanduser()
        index = section.get(ConfigKey.INDEX, {})
        index_path = index.get(ConfigKey.INDEX_PATH)
        logging_config = section.get(ConfigKey.LOGGING, {})

        return cls(
            root=root,
            origin=section.get(ConfigKey.ORIGIN, DEFAULT_CONFIG[ConfigKey.ORIGIN]),
            compression=section.get(ConfigKey.ARCHIVE, {}).get(
                ConfigKey.ARCHIVE_COMPRESSION, "deflated"
            ),
            index_backend=index.get(ConfigKey.INDEX_BACKEND, "sqlite"),
            index_path=Path(index_path).expanduser() if index_path else root / Layout.INDEX_FILE,
            log_level=str(logging_config.get(ConfigKey.LOG_LEVEL, "INFO")).upper(),
            log_file=logging_config.get(ConfigKey.LOG_FILE),
        )

