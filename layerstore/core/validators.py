"""
LayerStore Core: Input Validators.

This module provides validation for store paths, layer ids and the store
configuration mapping. Store paths are always relative, forward-slash
separated and free of traversal components; every public store operation
passes its path through normalize_path() first.
"""
from typing import Any, Dict, Iterator

from layerstore.core.constants import (
    COMPRESSION_METHODS,
    INDEX_BACKENDS,
    ConfigKey,
    ErrorCode,
    Limits,
)
from layerstore.core.errors import InvalidPathError, LayerStoreError


class ValidationError(LayerStoreError):
    """Base exception for validation errors."""

    default_code = ErrorCode.INVALID_INPUT


def normalize_path(path: str) -> str:
    """Normalize a store path to its canonical relative POSIX form.

    Duplicate and trailing slashes and "." components are dropped, so
    "a//b/./c/" becomes "a/b/c".

    Args:
        path: Path as given by the caller

    Returns:
        Canonical store path

    Raises:
        InvalidPathError: If the path is empty, absolute, escapes the store
            root or contains forbidden characters
    """
    if not isinstance(path, str):
        raise InvalidPathError(f"Path must be string, got {type(path).__name__}")

    if not path:
        raise InvalidPathError("Path cannot be empty")

    if len(path) > Limits.MAX_PATH_LENGTH:
        raise InvalidPathError(
            f"Path exceeds maximum length ({Limits.MAX_PATH_LENGTH})", path=path[:64]
        )

    if "\0" in path:
        raise InvalidPathError("Path contains null bytes", path=path)

    if any(ord(c) < 32 for c in path):
        raise InvalidPathError("Path contains control characters", path=path)

    if "\\" in path:
        raise InvalidPathError("Path must use forward slashes", path=path)

    if path.startswith("/"):
        raise InvalidPathError("Path must be relative", path=path)

    parts = [part for part in path.split("/") if part not in ("", ".")]

    if ".." in parts:
        raise InvalidPathError("Path traversal not allowed", path=path)

    if not parts:
        raise InvalidPathError("Path does not name anything below the root", path=path)

    for part in parts:
        if len(part) > Limits.MAX_FILENAME_LENGTH:
            raise InvalidPathError(
                f"Path component exceeds maximum length ({Limits.MAX_FILENAME_LENGTH})",
                path=path,
            )

    return "/".join(parts)


def normalize_directory_path(path: str) -> str:
    """Normalize a directory path, allowing the store root.

    Args:
        path: Directory path; "" or "." name the root

    Returns:
        Canonical path, "" for the root
    """
    if path in ("", "."):
        return ""
    return normalize_path(path)


def parent_paths(path: str) -> Iterator[str]:
    """Yield the ancestors of a normalized path, outermost first.

    Example:
        >>> list(parent_paths("a/b/c"))
        ['a', 'a/b']
    """
    parts = path.split("/")
    for i in range(1, len(parts)):
        yield "/".join(parts[:i])


def is_within(path: str, directory: str) -> bool:
    """Check whether a normalized path equals or lies below a directory.

    The empty directory is the store root and contains everything.
    """
    if not directory:
        return True
    return path == directory or path.startswith(directory + "/")


def validate_layer_id(layer_id: Any) -> bool:
    """Validate a layer id.

    Args:
        layer_id: Candidate layer id

    Returns:
        True if valid

    Raises:
        ValidationError: If the id is not a non-negative integer
    """
    if isinstance(layer_id, bool) or not isinstance(layer_id, int):
        raise ValidationError(f"Layer id must be integer, got {type(layer_id).__name__}")

    if layer_id < 0:
        raise ValidationError(f"Layer id must be non-negative: {layer_id}")

    return True


def validate_store_config(config: Dict[str, Any]) -> bool:
    """Validate the ``layerstore`` configuration section.

    Args:
        config: Configuration dictionary (contents of the ``layerstore`` key)

    Returns:
        True if valid

    Raises:
        ValidationError: If configuration is invalid
    """
    if not isinstance(config, dict):
        raise ValidationError("Configuration must be a dictionary")

    root = config.get(ConfigKey.ROOT)
    if not isinstance(root, str) or not root:
        raise ValidationError(f"Store root must be a non-empty string: {root!r}")

    if ConfigKey.ORIGIN in config:
        try:
            validate_layer_id(config[ConfigKey.ORIGIN])
        except ValidationError as e:
            raise ValidationError(f"Invalid origin: {e.message}")

    archive = config.get(ConfigKey.ARCHIVE, {})
    if not isinstance(archive, dict):
        raise ValidationError("Archive configuration must be a dictionary")

    compression = archive.get(ConfigKey.ARCHIVE_COMPRESSION, "deflated")
    if compression not in COMPRESSION_METHODS:
        raise ValidationError(
            f"Invalid compression: {compression}. Must be one of {list(COMPRESSION_METHODS)}"
        )

    index = config.get(ConfigKey.INDEX, {})
    if not isinstance(index, dict):
        raise ValidationError("Index configuration must be a dictionary")

    backend = index.get(ConfigKey.INDEX_BACKEND, "sqlite")
    if backend not in INDEX_BACKENDS:
        raise ValidationError(
            f"Invalid index backend: {backend}. Must be one of {list(INDEX_BACKENDS)}"
        )

    index_path = index.get(ConfigKey.INDEX_PATH)
    if index_path is not None and not isinstance(index_path, str):
        raise ValidationError(f"Index path must be a string: {index_path!r}")

    logging_config = config.get(ConfigKey.LOGGING, {})
    if not isinstance(logging_config, dict):
        raise ValidationError("Logging configuration must be a dictionary")

    level = logging_config.get(ConfigKey.LOG_LEVEL, "INFO")
    if not isinstance(level, str) or level.upper() not in (
        "DEBUG",
        "INFO",
        "WARNING",
        "ERROR",
        "CRITICAL",
    ):
        raise ValidationError(f"Invalid log level: {level}")

    return True
