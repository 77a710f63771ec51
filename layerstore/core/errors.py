"""
LayerStore Core: Exception hierarchy.

Every error carries an ErrorCode and, where one applies, the store path and
the operation that failed. Low-level OSErrors are wrapped into IOFailure and
chained so the original cause stays visible.
"""
from typing import Optional

from layerstore.core.constants import ErrorCode


class LayerStoreError(Exception):
    """Base exception for all LayerStore failures."""

    default_code = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        operation: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
    ):
        """Initialize error.

        Args:
            message: Human readable message
            path: Store path or filesystem path involved
            operation: Operation that failed (e.g. "pack", "read_file")
            error_code: Override for the class default error code
        """
        self.message = message
        self.path = path
        self.operation = operation
        self.error_code = error_code if error_code is not None else self.default_code
        super().__init__(self._render())

    def _render(self) -> str:
        parts = []
        if self.operation:
            parts.append(self.operation)
        if self.path is not None:
            parts.append(f"'{self.path}'")
        if parts:
            return f"{' '.join(parts)}: {self.message}"
        return self.message


class NotFoundError(LayerStoreError):
    """Path, entry or layer is absent at the queried scope."""

    default_code = ErrorCode.NOT_FOUND


class IOFailure(LayerStoreError):
    """Disk or container I/O error."""

    default_code = ErrorCode.IO_ERROR


class CorruptArchiveError(LayerStoreError):
    """Container is malformed, truncated or fails its checksums."""

    default_code = ErrorCode.CORRUPT


class ImmutableLayerError(LayerStoreError):
    """Write attempted against a sealed layer or a packed archive."""

    default_code = ErrorCode.PERMISSION_DENIED


class IndexInconsistencyError(LayerStoreError):
    """Index and containers disagree; a prior seal did not complete."""

    default_code = ErrorCode.INCONSISTENT


class PathConflictError(LayerStoreError):
    """A file and a directory compete for the same path."""

    default_code = ErrorCode.CONFLICT


class InvalidPathError(LayerStoreError):
    """Path fails validation."""

    default_code = ErrorCode.INVALID_INPUT
