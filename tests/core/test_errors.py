#!/usr/bin/env python3
"""Tests for the LayerStore exception hierarchy."""

import pytest

from layerstore.core.constants import ErrorCode
from layerstore.core.errors import (
    CorruptArchiveError,
    ImmutableLayerError,
    IndexInconsistencyError,
    InvalidPathError,
    IOFailure,
    LayerStoreError,
    NotFoundError,
    PathConflictError,
)


class TestLayerStoreError:
    """Tests for the base exception."""

    def test_message_only(self):
        error = LayerStoreError("Something broke")
        assert str(error) == "Something broke"
        assert error.message == "Something broke"
        assert error.path is None
        assert error.operation is None
        assert error.error_code == ErrorCode.INTERNAL_ERROR

    def test_context_rendered(self):
        """Test operation and path prefix the message."""
        error = NotFoundError("No such entry", path="file1", operation="read_entry")
        assert str(error) == "read_entry 'file1': No such entry"

    def test_error_code_override(self):
        error = IOFailure("Denied", error_code=ErrorCode.PERMISSION_DENIED)
        assert error.error_code == ErrorCode.PERMISSION_DENIED

    def test_chaining(self):
        """Test wrapped OSErrors stay reachable as the cause."""
        cause = OSError(28, "No space left on device")
        try:
            try:
                raise cause
            except OSError as e:
                raise IOFailure("Packing failed", operation="pack") from e
        except IOFailure as error:
            assert error.__cause__ is cause


class TestErrorCodes:
    """Tests for per-class default error codes."""

    @pytest.mark.parametrize(
        "cls, code",
        [
            (NotFoundError, ErrorCode.NOT_FOUND),
            (IOFailure, ErrorCode.IO_ERROR),
            (CorruptArchiveError, ErrorCode.CORRUPT),
            (ImmutableLayerError, ErrorCode.PERMISSION_DENIED),
            (IndexInconsistencyError, ErrorCode.INCONSISTENT),
            (PathConflictError, ErrorCode.CONFLICT),
            (InvalidPathError, ErrorCode.INVALID_INPUT),
        ],
    )
    def test_default_codes(self, cls, code):
        error = cls("message")
        assert isinstance(error, LayerStoreError)
        assert error.error_code == code

    def test_codes_are_failures(self):
        """Test every code is non-zero so it never reads as success."""
        assert all(code > 0 for code in ErrorCode)
        assert "SUCCESS" not in ErrorCode.__members__
