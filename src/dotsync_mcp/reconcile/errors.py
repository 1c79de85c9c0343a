"""Typed exception hierarchy for reconciliation errors.

Logic errors (bad hunk index, committing an unresolved session) and
filesystem integrity failures are surfaced to callers as subclasses of
``ReconcileError``.  Transient I/O problems during scanning are not raised;
the scanner logs and skips the affected file.
"""


class ReconcileError(Exception):
    """Base class for all reconciliation errors."""


class InvalidHunkIndexError(ReconcileError):
    """Raised when a hunk index is outside the session's range.

    Attributes:
        index: The requested index.
        total: Number of hunks in the session.
    """

    def __init__(self, index: int, total: int):
        super().__init__(
            f"Hunk index {index} out of range (session has {total} hunks)"
        )
        self.index = index
        self.total = total


class NotFullyResolvedError(ReconcileError):
    """Raised when committing a session that still has pending hunks."""

    def __init__(self, resolved: int, total: int):
        super().__init__(
            f"Not all hunks are resolved ({resolved}/{total})"
        )
        self.resolved = resolved
        self.total = total


class NoSuchSessionError(ReconcileError):
    """Raised when no merge session is open for a key."""

    def __init__(self, key: str):
        super().__init__(f"No merge session open for '{key}'")
        self.key = key


class IdenticalFilesError(ReconcileError):
    """Raised when a merge is requested for files with no divergence."""

    def __init__(self, key: str):
        super().__init__(f"'{key}' is identical on both sides; nothing to merge")
        self.key = key


class BinaryFileError(ReconcileError):
    """Raised when hunk merging is requested for binary or oversized files.

    Such files are atomic units: only whole-file overwrite decisions apply.
    """

    def __init__(self, path: str, reason: str = "binary"):
        super().__init__(
            f"Cannot merge {path} line by line ({reason}); choose a whole-file overwrite instead"
        )
        self.path = path
        self.reason = reason


class StaleSessionError(ReconcileError):
    """Raised when the local file changed on disk after the session opened."""

    def __init__(self, path: str):
        super().__init__(
            f"Local file {path} changed since the merge session was opened"
        )
        self.path = path


class HashMismatchError(ReconcileError):
    """Raised when a written file does not hash to the expected digest.

    Indicates a filesystem-level problem such as a racing external writer.
    """

    def __init__(self, path: str, expected: str, actual: str | None):
        super().__init__(
            f"Hash mismatch after writing {path}: expected {expected[:8]}, got {(actual or 'nothing')[:8]}"
        )
        self.path = path
        self.expected = expected
        self.actual = actual
