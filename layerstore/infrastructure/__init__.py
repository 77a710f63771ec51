"""LayerStore Infrastructure.

Services used by the archive, index and layer packages:
- ConfigManager: Hierarchical YAML/environment configuration
- StoreSettings: Typed settings resolved from configuration
- Logger: Structured logging system
- ReadWriteLock: Shared/exclusive lock guarding the staging layer
"""

from .config_manager import ConfigError, ConfigManager, ConfigSource, StoreSettings
from .locks import ReadWriteLock
from .logger import Logger, LogLevel, configure_logging, get_logger, set_global_logger

__all__ = [
    # Logger exports
    "Logger",
    "LogLevel",
    "configure_logging",
    "get_logger",
    "set_global_logger",
    # ConfigManager exports
    "ConfigSource",
    "ConfigError",
    "ConfigManager",
    "StoreSettings",
    # Locks
    "ReadWriteLock",
]
