"""Tests for mcp/tools/errors.py -- error response builders.

Covers:
- build_error_response() structure and format
- translate_reconcile_error() mapping from each error type
"""

import mcp.types as types
import pytest

from dotsync_mcp.mcp.tools.errors import (
    build_error_response,
    translate_reconcile_error,
)
from dotsync_mcp.reconcile.errors import (
    BinaryFileError,
    HashMismatchError,
    IdenticalFilesError,
    InvalidHunkIndexError,
    NoSuchSessionError,
    NotFullyResolvedError,
    ReconcileError,
    StaleSessionError,
)


def _get_error_text(result: types.CallToolResult) -> str:
    content = result.content[0]
    assert isinstance(content, types.TextContent)
    return content.text


class TestBuildErrorResponse:
    """Tests for build_error_response()."""

    def test_is_error_result(self):
        result = build_error_response("not_found", "Not found", "Try again")
        assert isinstance(result, types.CallToolResult)
        assert result.isError is True
        assert len(result.content) == 1

    def test_error_format(self):
        """Text format is 'Error ({type}): {message}\\n\\nAction: {action}'."""
        result = build_error_response("binary_file", "Cannot merge", "Overwrite instead")
        assert _get_error_text(result) == (
            "Error (binary_file): Cannot merge\n\nAction: Overwrite instead"
        )


class TestTranslateReconcileError:
    """Tests for translate_reconcile_error()."""

    @pytest.mark.parametrize(
        "error, error_type, hint",
        [
            (InvalidHunkIndexError(5, 3), "validation_error", "0-2"),
            (NotFullyResolvedError(1, 3), "not_resolved", "merge_resolve"),
            (NoSuchSessionError("zsh/.zshrc"), "not_found", "merge_open"),
            (IdenticalFilesError("zsh/.zshrc"), "no_changes", "dotsync_scan"),
            (BinaryFileError("/h/.zsh_history"), "binary_file", "dotsync_sync"),
            (StaleSessionError("/h/.zshrc"), "stale_session", "merge_cancel"),
            (
                HashMismatchError("/h/.zshrc", "a" * 64, "b" * 64),
                "hash_mismatch",
                "merge_commit",
            ),
            (ReconcileError("other"), "reconcile_error", "dotsync_scan"),
        ],
    )
    def test_mapping(self, error, error_type, hint):
        result = translate_reconcile_error(error)
        text = _get_error_text(result)
        assert result.isError is True
        assert text.startswith(f"Error ({error_type}): {error}")
        assert hint in text.split("Action:")[1]

    def test_empty_session_index_hint(self):
        text = _get_error_text(translate_reconcile_error(InvalidHunkIndexError(0, 0)))
        assert "0-0" in text
