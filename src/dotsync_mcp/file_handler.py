"""File handler module: path validation, encoding-aware read/write, copies.

Provides the file I/O infrastructure shared by the merge resolver and the
sync engine.  All functions are synchronous; MCP handlers wrap them with
``run_sync()``.
"""

import shutil
from datetime import datetime
from pathlib import Path

from charset_normalizer import from_bytes

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# =============================================================================
# Path Validation
# =============================================================================


def validate_file_path(path_str: str) -> Path:
    """Validate and resolve an input file path.

    Args:
        path_str: Absolute path string to an existing file.

    Returns:
        Resolved Path object pointing to the real file.

    Raises:
        ValueError: If path is relative, doesn't exist, or is not a file.
    """
    path = Path(path_str)
    if not path.is_absolute():
        raise ValueError(f"Path must be absolute: {path_str}")
    resolved = path.resolve()
    if not resolved.exists():
        raise ValueError(f"File not found: {path_str}")
    if not resolved.is_file():
        raise ValueError(f"Path is not a file: {path_str}")
    return resolved


def validate_rel_path(rel_path: str) -> str:
    """Reject relative paths that would escape their item directory.

    Raises:
        ValueError: If *rel_path* is absolute, empty, or contains ``..``.
    """
    if not rel_path or rel_path.startswith(("/", "\\")):
        raise ValueError(f"Invalid relative path: {rel_path!r}")
    if ".." in Path(rel_path).parts:
        raise ValueError(f"Relative path may not contain '..': {rel_path}")
    return rel_path


# =============================================================================
# File Read/Write
# =============================================================================


def decode_bytes(raw: bytes) -> tuple[str, str]:
    """Decode *raw* with automatic encoding detection.

    Uses charset-normalizer to detect the encoding.  Defaults to UTF-8 for
    empty input or when detection fails.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    if not raw:
        return ("", "utf-8")

    result = from_bytes(raw).best()
    if result is None:
        # Detection failed, fall back to utf-8
        encoding = "utf-8"
        content = raw.decode(encoding, errors="replace")
    else:
        encoding = result.encoding
        # Normalize ascii to utf-8 (ascii is a strict subset of utf-8)
        if encoding == "ascii":
            encoding = "utf-8"
        content = str(result)
    return (content, encoding)


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file with automatic encoding detection.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    return decode_bytes(path.read_bytes())


def write_file(
    path: Path, content: str, encoding: str = "utf-8"
) -> int:
    """Write content to a file, creating parent directories as needed.

    Args:
        path: Path to the output file.
        content: String content to write.
        encoding: Encoding to use (default: utf-8).

    Returns:
        Number of bytes written.
    """
    return write_bytes(path, content.encode(encoding))


def write_bytes(path: Path, data: bytes) -> int:
    """Write raw bytes, creating parent directories as needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return len(data)


def copy_file(src: Path, dst: Path) -> None:
    """Copy *src* to *dst* with metadata, creating parent directories."""
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(src, dst)


# =============================================================================
# Backups
# =============================================================================


def backup_file(
    path: Path, backup_dir: Path, rel_path: str | None = None
) -> Path | None:
    """Copy *path* into a timestamped folder under *backup_dir*.

    Layout: ``<backup_dir>/<YYYYMMDD_HHMMSS>/<rel_path>``, where
    *rel_path* defaults to the file name.  A second backup of the same
    path within one second goes to ``<YYYYMMDD_HHMMSS>_<n>``.

    Returns:
        The backup path, or ``None`` if *path* does not exist.
    """
    if not path.exists():
        return None

    timestamp = datetime.now().strftime(BACKUP_TIMESTAMP_FORMAT)
    relative = Path(validate_rel_path(rel_path) if rel_path else path.name)
    target = backup_dir / timestamp / relative
    counter = 1
    while target.exists():
        target = backup_dir / f"{timestamp}_{counter}" / relative
        counter += 1

    if path.is_dir():
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(path, target)
    else:
        copy_file(path, target)
    return target


def list_backup_files(backup_dir: Path) -> list[tuple[str, str, Path]]:
    """List ``(snapshot, rel_path, path)`` for every backed-up file.

    *snapshot* is the timestamped folder name.  Newest snapshots come
    first; files within a snapshot are sorted by relative path.
    """
    if not backup_dir.is_dir():
        return []

    found = []
    snapshots = sorted(
        (p for p in backup_dir.iterdir() if p.is_dir()),
        key=lambda p: p.name,
        reverse=True,
    )
    for snapshot in snapshots:
        for path in sorted(p for p in snapshot.rglob("*") if p.is_file()):
            found.append(
                (snapshot.name, path.relative_to(snapshot).as_posix(), path)
            )
    return found
