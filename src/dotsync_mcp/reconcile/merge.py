"""Hunk-level merge sessions and their resolver.

A ``MergeSession`` holds the hunk set for one conflicting file together
with a snapshot of the local lines it was built from.  The
``MergeResolver`` owns the open sessions (one per ``item_id/rel_path``),
drives per-hunk resolution, and commits the merged result to the local
copy.

Reconstruction walks hunks in index order with a cursor into the local
snapshot: unchanged local lines are copied verbatim, each hunk's divergent
region is replaced by its chosen block, and context lines already emitted
for the previous hunk are not emitted again.
"""

from __future__ import annotations

import logging
from pathlib import Path

from ..file_handler import decode_bytes, write_bytes
from .differ import diff_lines, is_binary, split_lines
from .errors import (
    BinaryFileError,
    HashMismatchError,
    IdenticalFilesError,
    InvalidHunkIndexError,
    NoSuchSessionError,
    NotFullyResolvedError,
    StaleSessionError,
)
from .hasher import Hasher
from .hunks import DEFAULT_CONTEXT_LINES, build_hunks
from .models import Hunk, HunkResolution
from .state import StateStore, state_key

logger = logging.getLogger(__name__)


class MergeSession:
    """In-progress hunk resolution for one file.

    Attributes:
        item_id: Logical item the file belongs to.
        rel_path: Path relative to the item.
        local_path: Local working copy; the commit target.
        repository_path: Repository copy the hunks were diffed against.
        hunks: Hunks in file order, indexed 0..n-1.
        encoding: Encoding detected for the local copy, reused on write.
        local_fingerprint: Digest of the local bytes when the session opened.
        written_fingerprints: Digests this session left on disk after a
            failed post-write check; a retried commit accepts them.
        current_hunk: UI cursor; index of the hunk to present next.
    """

    def __init__(
        self,
        item_id: str,
        rel_path: str,
        local_path: Path,
        repository_path: Path,
        hunks: list[Hunk],
        local_lines: list[str],
        encoding: str,
        local_fingerprint: str | None,
    ) -> None:
        self.item_id = item_id
        self.rel_path = rel_path
        self.local_path = Path(local_path)
        self.repository_path = Path(repository_path)
        self.hunks = hunks
        self.encoding = encoding
        self.local_fingerprint = local_fingerprint
        self.written_fingerprints: set[str] = set()
        self.current_hunk = 0
        self._local_lines = local_lines

    @property
    def key(self) -> str:
        return state_key(self.item_id, self.rel_path)

    @property
    def file_path(self) -> str:
        """Display path of the file being merged."""
        return str(self.local_path)

    @property
    def total_hunks(self) -> int:
        return len(self.hunks)

    @property
    def resolved_hunks(self) -> int:
        return sum(1 for h in self.hunks if h.is_resolved)

    @property
    def is_fully_resolved(self) -> bool:
        return self.resolved_hunks == self.total_hunks

    def resolve_hunk(
        self,
        index: int,
        resolution: HunkResolution,
        manual_lines: list[str] | None = None,
    ) -> Hunk:
        """Set the resolution of hunk *index* and advance the cursor.

        Resolving an already resolved hunk overwrites its resolution.

        Raises:
            InvalidHunkIndexError: If *index* is out of range.
            ValueError: If *resolution* is ``PENDING``, or ``MANUAL``
                without *manual_lines*.
        """
        if index < 0 or index >= self.total_hunks:
            raise InvalidHunkIndexError(index, self.total_hunks)
        if resolution == HunkResolution.PENDING:
            raise ValueError("Cannot resolve a hunk to 'pending'")
        if resolution == HunkResolution.MANUAL and manual_lines is None:
            raise ValueError("Manual resolution requires content")

        hunk = self.hunks[index]
        hunk.resolution = resolution
        hunk.manual_lines = (
            self._normalise_manual(hunk, manual_lines)
            if resolution == HunkResolution.MANUAL
            else None
        )
        self._advance_cursor(index)
        return hunk

    def resolve_all(self, resolution: HunkResolution) -> None:
        """Apply *resolution* to every hunk (keep-all / use-all)."""
        for hunk in self.hunks:
            self.resolve_hunk(hunk.index, resolution)

    def merged_lines(self) -> list[str]:
        """Rebuild the file from the local snapshot and resolved hunks.

        Raises:
            NotFullyResolvedError: If any hunk is still pending.
        """
        if not self.is_fully_resolved:
            raise NotFullyResolvedError(self.resolved_hunks, self.total_hunks)

        local = self._local_lines
        out: list[str] = []
        cursor = 0
        for hunk in self.hunks:
            context_start = hunk.local_start - len(hunk.context_before)
            if cursor < context_start:
                out.extend(local[cursor:context_start])
                cursor = context_start
            # Skip context lines the previous hunk already emitted.
            out.extend(hunk.context_before[cursor - context_start :])
            out.extend(hunk.resolved_lines())
            out.extend(hunk.context_after)
            cursor = hunk.local_end + len(hunk.context_after)
        out.extend(local[cursor:])
        return out

    def merged_content(self) -> str:
        return "".join(self.merged_lines())

    def _advance_cursor(self, index: int) -> None:
        total = self.total_hunks
        for step in range(1, total + 1):
            candidate = (index + step) % total
            if not self.hunks[candidate].is_resolved:
                self.current_hunk = candidate
                return
        self.current_hunk = index

    def _normalise_manual(self, hunk: Hunk, lines: list[str]) -> list[str]:
        # Joined lines must not run into the following local line.
        lines = list(lines)
        at_eof = hunk.local_end >= len(self._local_lines)
        if lines and not at_eof and not lines[-1].endswith(("\n", "\r")):
            lines[-1] += "\n"
        return lines


class MergeResolver:
    """Open, resolve, commit and cancel merge sessions.

    Single-owner object: not safe for concurrent use.

    Args:
        state: State store updated on successful commit.
        hasher: Hasher used for staleness and post-write checks.
        max_file_size: Files above this size cannot be merged by hunk.
        context_lines: Context lines carried by each hunk.
    """

    def __init__(
        self,
        state: StateStore,
        hasher: Hasher,
        max_file_size: int | None = None,
        context_lines: int = DEFAULT_CONTEXT_LINES,
    ) -> None:
        self.state = state
        self.hasher = hasher
        self.max_file_size = max_file_size
        self.context_lines = context_lines
        self._sessions: dict[str, MergeSession] = {}

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def open(
        self,
        item_id: str,
        rel_path: str,
        local_path: Path,
        repository_path: Path,
    ) -> MergeSession:
        """Diff both copies and open a session for the resulting hunks.

        A side that does not exist is treated as empty.  Opening a file
        that already has a session replaces it.

        Raises:
            BinaryFileError: If either side is binary or oversized.
            IdenticalFilesError: If the diff yields no hunks.
        """
        local_path = Path(local_path)
        repository_path = Path(repository_path)
        local_raw = self._read_side(local_path)
        repository_raw = self._read_side(repository_path)

        local_text, encoding = decode_bytes(local_raw)
        repository_text, _ = decode_bytes(repository_raw)
        local_lines = split_lines(local_text)

        spans = diff_lines(local_lines, split_lines(repository_text))
        hunks = build_hunks(spans, context_lines=self.context_lines)
        key = state_key(item_id, rel_path)
        if not hunks:
            raise IdenticalFilesError(key)

        session = MergeSession(
            item_id=item_id,
            rel_path=rel_path,
            local_path=local_path,
            repository_path=repository_path,
            hunks=hunks,
            local_lines=local_lines,
            encoding=encoding,
            local_fingerprint=(
                self.hasher.fingerprint_bytes(local_raw)
                if local_path.exists()
                else None
            ),
        )
        self._sessions[key] = session
        logger.info("Opened merge session %s with %d hunks", key, len(hunks))
        return session

    def get(self, key: str) -> MergeSession:
        """Return the open session for *key*.

        Raises:
            NoSuchSessionError: If no session is open.
        """
        session = self._sessions.get(key)
        if session is None:
            raise NoSuchSessionError(key)
        return session

    def sessions(self) -> list[MergeSession]:
        return list(self._sessions.values())

    def cancel(self, key: str) -> None:
        """Discard the session for *key* without writing anything."""
        if self._sessions.pop(key, None) is None:
            raise NoSuchSessionError(key)
        logger.info("Cancelled merge session %s", key)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_hunk(
        self,
        key: str,
        index: int,
        resolution: HunkResolution,
        manual_lines: list[str] | None = None,
    ) -> Hunk:
        return self.get(key).resolve_hunk(index, resolution, manual_lines)

    def keep_all_local(self, key: str) -> MergeSession:
        session = self.get(key)
        session.resolve_all(HunkResolution.KEEP_LOCAL)
        return session

    def use_all_repository(self, key: str) -> MergeSession:
        session = self.get(key)
        session.resolve_all(HunkResolution.USE_REPOSITORY)
        return session

    def merged_content(self, key: str) -> str:
        return self.get(key).merged_content()

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def commit(self, key: str) -> str:
        """Write the merged content to the local copy and record the baseline.

        Both baseline fingerprints are set to the digest of the written
        content.  The caller is responsible for ``state.save()``.  The
        session is removed only when every step succeeds.

        Returns:
            The fingerprint of the written file.

        Raises:
            NoSuchSessionError: If no session is open for *key*.
            NotFullyResolvedError: If any hunk is pending.
            StaleSessionError: If the local file changed since open.
            HashMismatchError: If the written file does not hash as
                expected.  The session stays open and ``commit`` may be
                retried.
        """
        session = self.get(key)
        content = session.merged_content()

        current = self.hasher.fingerprint_uncached(session.local_path)
        if (
            current != session.local_fingerprint
            and current not in session.written_fingerprints
        ):
            raise StaleSessionError(session.file_path)

        try:
            data = content.encode(session.encoding)
        except UnicodeEncodeError:
            logger.warning(
                "Merged %s does not fit %s, writing UTF-8",
                key,
                session.encoding,
            )
            data = content.encode("utf-8")
        expected = self.hasher.fingerprint_bytes(data)
        write_bytes(session.local_path, data)

        actual = self.hasher.fingerprint_uncached(session.local_path)
        if actual != expected:
            # Whatever landed on disk came from this session.
            session.written_fingerprints.update((expected, actual))
            raise HashMismatchError(session.file_path, expected, actual)

        self.state.set(session.item_id, session.rel_path, actual, actual)
        del self._sessions[key]
        logger.info(
            "Committed merge %s (%d hunks) -> %s",
            key,
            session.total_hunks,
            actual[:8],
        )
        return actual

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_side(self, path: Path) -> bytes:
        if not path.exists():
            return b""
        if path.is_dir():
            raise BinaryFileError(str(path), reason="directory")
        size = path.stat().st_size
        if self.max_file_size and size > self.max_file_size:
            raise BinaryFileError(str(path), reason="too large")
        raw = path.read_bytes()
        if is_binary(raw):
            raise BinaryFileError(str(path))
        return raw


def format_hunk_preview(hunk: Hunk, max_lines: int = 10) -> str:
    """Render a hunk with conflict markers for display.

    Each side shows at most *max_lines* lines followed by an elision note.
    """

    def _side(lines: list[str], prefix: str) -> list[str]:
        shown = [prefix + line.rstrip("\r\n") for line in lines[:max_lines]]
        if len(lines) > max_lines:
            shown.append(f"  ... ({len(lines) - max_lines} more lines)")
        return shown

    out = [f"@@ hunk {hunk.index} (line {hunk.local_start + 1}) "
           f"[{hunk.resolution.value}] @@"]
    out.extend(_side(hunk.context_before, "  "))
    out.append("<<<<<<< LOCAL")
    out.extend(_side(hunk.local_lines, "- "))
    out.append("=======")
    out.extend(_side(hunk.repository_lines, "+ "))
    out.append(">>>>>>> REPOSITORY")
    out.extend(_side(hunk.context_after, "  "))
    return "\n".join(out)
