"""Content fingerprinting for tracked files.

Fingerprints are hex digests of the raw file bytes (no normalisation), so
a fingerprint match means the bytes on disk match.  Files larger than the
configured limit are not read at all; they get the ``SKIPPED`` sentinel and
are excluded from automatic resolution.

``HashCache`` memoises digests keyed on ``(mtime_ns, size)`` so repeated
scans only re-read files that changed.  It is the one piece of hasher
state shared across scanner workers and is guarded by a lock.
"""

from __future__ import annotations

import hashlib
import logging
import os
import threading
from pathlib import Path

logger = logging.getLogger(__name__)

SKIPPED = "skipped"
"""Sentinel fingerprint for files too large to hash."""

DEFAULT_ALGORITHM = "sha256"
_CHUNK_SIZE = 65536


def fingerprint_bytes(data: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Return the hex digest of *data*."""
    return hashlib.new(algorithm, data).hexdigest()


def fingerprint_file(path: Path, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Stream *path* through the digest and return its hex form.

    Raises:
        OSError: If the file cannot be opened or read.
    """
    hasher = hashlib.new(algorithm)
    with open(path, "rb") as fh:
        while chunk := fh.read(_CHUNK_SIZE):
            hasher.update(chunk)
    return hasher.hexdigest()


def quick_hash(fingerprint: str | None) -> str:
    """Return the first 8 characters of a fingerprint for display."""
    if not fingerprint:
        return "-"
    return fingerprint[:8]


class HashCache:
    """Thread-safe digest cache keyed on path, mtime and size."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[int, int, str]] = {}

    def get(self, path: str, mtime_ns: int, size: int) -> str | None:
        with self._lock:
            entry = self._entries.get(path)
        if entry is None:
            return None
        cached_mtime, cached_size, digest = entry
        if cached_mtime == mtime_ns and cached_size == size:
            return digest
        return None

    def put(self, path: str, mtime_ns: int, size: int, digest: str) -> None:
        with self._lock:
            self._entries[path] = (mtime_ns, size, digest)

    def invalidate(self, path: str) -> None:
        """Drop *path* from the cache.  No-op if absent."""
        with self._lock:
            self._entries.pop(path, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class Hasher:
    """Compute fingerprints for tracked files.

    Args:
        algorithm: ``hashlib`` algorithm name.
        max_file_size: Files larger than this many bytes are reported with
            the ``SKIPPED`` sentinel instead of a digest.  ``None`` or 0
            disables the limit.
        cache: Optional shared ``HashCache``.
    """

    def __init__(
        self,
        algorithm: str = DEFAULT_ALGORITHM,
        max_file_size: int | None = None,
        cache: HashCache | None = None,
    ) -> None:
        # Fail early on unknown algorithm names.
        hashlib.new(algorithm)
        self.algorithm = algorithm
        self.max_file_size = max_file_size
        self.cache = cache if cache is not None else HashCache()

    def fingerprint(self, path: Path) -> str | None:
        """Return the fingerprint of *path*.

        Returns:
            The hex digest; ``None`` if the file does not exist or vanished
            mid-read; ``SKIPPED`` if it exceeds ``max_file_size``.

        Raises:
            IsADirectoryError: If *path* is a directory.
            PermissionError: If the file cannot be read.
        """
        try:
            st = os.stat(path)
        except FileNotFoundError:
            return None
        if os.path.isdir(path):
            raise IsADirectoryError(f"Directories are not hashed: {path}")

        if self.max_file_size and st.st_size > self.max_file_size:
            logger.debug(
                "Skipping hash of %s (%d bytes > %d)",
                path,
                st.st_size,
                self.max_file_size,
            )
            return SKIPPED

        key = str(path)
        cached = self.cache.get(key, st.st_mtime_ns, st.st_size)
        if cached is not None:
            return cached

        try:
            digest = fingerprint_file(path, self.algorithm)
        except FileNotFoundError:
            return None
        self.cache.put(key, st.st_mtime_ns, st.st_size, digest)
        return digest

    def fingerprint_bytes(self, data: bytes) -> str:
        """Digest in-memory content with this hasher's algorithm."""
        return fingerprint_bytes(data, self.algorithm)

    def fingerprint_uncached(self, path: Path) -> str | None:
        """Re-read *path* from disk, bypassing and refreshing the cache."""
        self.cache.invalidate(str(path))
        try:
            return fingerprint_file(path, self.algorithm)
        except FileNotFoundError:
            return None
