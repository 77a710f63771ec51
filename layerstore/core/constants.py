"""
LayerStore Core: Constants

This module provides system-wide constants, error codes, and the small
enumerations shared by the archive, index and layer packages.
"""
from enum import Enum, IntEnum

# Version information
LAYERSTORE_VERSION = "1.0.0"


# Error codes (0-9 range)
class ErrorCode(IntEnum):
    """Standardized error codes for LayerStore operations."""

    INVALID_INPUT = 1  # Bad path, invalid configuration
    NOT_FOUND = 2  # File or layer doesn't exist
    PERMISSION_DENIED = 3  # Write against immutable data
    CONFLICT = 4  # File/directory clash
    IO_ERROR = 5  # Disk or container I/O failure
    CORRUPT = 6  # Container cannot be parsed
    INCONSISTENT = 7  # Index and containers disagree
    INTERNAL_ERROR = 8  # Bug in LayerStore


class ItemType(Enum):
    """Type of a path record in one layer."""

    FILE = "file"
    DIRECTORY = "directory"
    TOMBSTONE = "tombstone"


class LayerState(Enum):
    """Lifecycle state of a layer."""

    STAGING = "staging"
    SEALED = "sealed"


class ArchiveState(Enum):
    """Where the authoritative content of an archive lives."""

    LOOSE = "loose"  # Only as a directory tree
    PACKED = "packed"  # Only inside the container


class Limits:
    """System limits and default values."""

    # Path limits
    MAX_PATH_LENGTH = 4096
    MAX_FILENAME_LENGTH = 255

    # I/O
    COPY_BUFFER_SIZE = 1024 * 1024

    # Layer ids
    DEFAULT_ORIGIN = 1
    LAYER_ID_WIDTH = 8


# On-disk layout under the store root
class Layout:
    """File and directory names inside a store root."""

    LAYERS_DIR = "layers"
    STAGING_DIR = "staging"
    INDEX_FILE = "index.db"
    CONTAINER_SUFFIX = ".zip"
    TOMBSTONES_SUFFIX = ".tombstones"
    TEMP_SUFFIX = ".tmp"


# Configuration keys
class ConfigKey:
    """Configuration key constants."""

    ROOT = "root"
    ORIGIN = "origin"
    ARCHIVE = "archive"
    INDEX = "index"
    LOGGING = "logging"

    ARCHIVE_COMPRESSION = "compression"
    INDEX_BACKEND = "backend"
    INDEX_PATH = "path"
    LOG_LEVEL = "level"
    LOG_FILE = "file"


COMPRESSION_METHODS = ("deflated", "stored")
INDEX_BACKENDS = ("sqlite", "memory")

# Default configuration values
DEFAULT_CONFIG = {
    ConfigKey.ROOT: "./layerstore-data",
    ConfigKey.ORIGIN: Limits.DEFAULT_ORIGIN,
    ConfigKey.ARCHIVE: {
        ConfigKey.ARCHIVE_COMPRESSION: "deflated",
    },
    ConfigKey.INDEX: {
        ConfigKey.INDEX_BACKEND: "sqlite",
        ConfigKey.INDEX_PATH: None,
    },
    ConfigKey.LOGGING: {
        ConfigKey.LOG_LEVEL: "INFO",
        ConfigKey.LOG_FILE: None,
    },
}
