"""Tests for merge sessions: hunk resolution, reconstruction, and commit.

Covers:
- Opening sessions (identical, binary, oversized, missing side)
- Per-hunk resolution, cursor movement, and resolve-all
- Reconstruction from mixed resolutions, including shared context
- Commit: NotFullyResolved, staleness, post-write hash check and retry,
  state update, session removal
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from dotsync_mcp.reconcile.errors import (
    BinaryFileError,
    HashMismatchError,
    IdenticalFilesError,
    InvalidHunkIndexError,
    NoSuchSessionError,
    NotFullyResolvedError,
    StaleSessionError,
)
from dotsync_mcp.reconcile.hasher import Hasher, fingerprint_file
from dotsync_mcp.reconcile.merge import MergeResolver, format_hunk_preview
from dotsync_mcp.reconcile.models import HunkResolution
from dotsync_mcp.reconcile.state import StateStore

KEY = "zsh/.zshrc"


def _base() -> list[str]:
    return [f"line {i}\n" for i in range(1, 21)]


@pytest.fixture
def resolver(tmp_path: Path) -> MergeResolver:
    state = StateStore(tmp_path / "state" / "sync_state.json")
    return MergeResolver(state, Hasher())


@pytest.fixture
def two_hunk_files(tmp_path: Path) -> tuple[Path, Path]:
    """Local adds three lines after line 2; repository deletes lines 15-16."""
    base = _base()
    local = base[:2] + ["local a\n", "local b\n", "local c\n"] + base[2:]
    repository = base[:14] + base[16:]

    local_path = tmp_path / "home" / ".zshrc"
    repository_path = tmp_path / "dotfiles" / "zsh" / ".zshrc"
    for path, lines in ((local_path, local), (repository_path, repository)):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("".join(lines))
    return local_path, repository_path


def _open(resolver, files):
    local_path, repository_path = files
    return resolver.open("zsh", ".zshrc", local_path, repository_path)


# ---------------------------------------------------------------------------
# Opening
# ---------------------------------------------------------------------------


class TestOpen:
    def test_two_distant_edits_give_two_hunks(self, resolver, two_hunk_files):
        session = _open(resolver, two_hunk_files)

        assert session.key == KEY
        assert session.total_hunks == 2
        assert session.resolved_hunks == 0
        assert session.current_hunk == 0
        assert session.hunks[0].local_lines == [
            "local a\n",
            "local b\n",
            "local c\n",
        ]
        assert session.hunks[0].repository_lines == []
        assert session.hunks[1].local_lines == ["line 15\n", "line 16\n"]
        assert session.hunks[1].repository_lines == []

    def test_identical_files_raise(self, resolver, tmp_path):
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.write_text("same\n")
        b.write_text("same\n")

        with pytest.raises(IdenticalFilesError):
            resolver.open("zsh", ".zshrc", a, b)
        assert resolver.sessions() == []

    def test_binary_file_raises(self, resolver, tmp_path):
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.write_bytes(b"\x00\x01binary")
        b.write_text("text\n")

        with pytest.raises(BinaryFileError):
            resolver.open("zsh", ".zshrc", a, b)

    def test_oversized_file_raises(self, tmp_path):
        resolver = MergeResolver(
            StateStore(tmp_path / "s.json"), Hasher(), max_file_size=4
        )
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.write_text("long enough\n")
        b.write_text("x\n")

        with pytest.raises(BinaryFileError, match="too large"):
            resolver.open("zsh", ".zshrc", a, b)

    def test_missing_side_is_empty(self, resolver, tmp_path):
        local = tmp_path / "missing"
        repository = tmp_path / "repo"
        repository.write_text("only here\n")

        session = resolver.open("zsh", ".zshrc", local, repository)
        assert session.total_hunks == 1
        assert session.local_fingerprint is None
        assert session.hunks[0].repository_lines == ["only here\n"]

    def test_reopen_replaces_session(self, resolver, two_hunk_files):
        first = _open(resolver, two_hunk_files)
        first.resolve_hunk(0, HunkResolution.KEEP_LOCAL)
        second = _open(resolver, two_hunk_files)

        assert resolver.get(KEY) is second
        assert second.resolved_hunks == 0

    def test_get_unknown_raises(self, resolver):
        with pytest.raises(NoSuchSessionError):
            resolver.get("vim/.vimrc")


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class TestResolve:
    def test_mixed_resolution_keeps_both_changes(self, resolver, two_hunk_files):
        """Keep the local insertion, accept the repository deletion."""
        session = _open(resolver, two_hunk_files)
        resolver.resolve_hunk(KEY, 0, HunkResolution.KEEP_LOCAL)
        resolver.resolve_hunk(KEY, 1, HunkResolution.USE_REPOSITORY)

        base = _base()
        expected = (
            base[:2]
            + ["local a\n", "local b\n", "local c\n"]
            + base[2:14]
            + base[16:]
        )
        assert session.merged_lines() == expected
        assert resolver.merged_content(KEY) == "".join(expected)

    def test_keep_all_local_reproduces_local(self, resolver, two_hunk_files):
        local_path, _ = two_hunk_files
        resolver_session = _open(resolver, two_hunk_files)
        resolver.keep_all_local(KEY)
        assert resolver_session.merged_content() == local_path.read_text()

    def test_use_all_repository_reproduces_repository(
        self, resolver, two_hunk_files
    ):
        _, repository_path = two_hunk_files
        _open(resolver, two_hunk_files)
        session = resolver.use_all_repository(KEY)
        assert session.merged_content() == repository_path.read_text()

    def test_shared_context_emitted_once(self, resolver, tmp_path):
        base = _base()
        repo = list(base)
        repo[4] = "five\n"
        repo[8] = "nine\n"
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.write_text("".join(base))
        b.write_text("".join(repo))

        resolver.context_lines = 3
        session = resolver.open("zsh", ".zshrc", a, b)
        session.resolve_all(HunkResolution.USE_REPOSITORY)
        assert session.merged_lines() == repo

    def test_manual_resolution_gets_newline(self, resolver, two_hunk_files):
        session = _open(resolver, two_hunk_files)
        session.resolve_hunk(0, HunkResolution.MANUAL, ["merged by hand"])
        session.resolve_hunk(1, HunkResolution.KEEP_LOCAL)

        merged = session.merged_lines()
        assert merged[2] == "merged by hand\n"
        assert merged[3] == "line 3\n"

    def test_manual_requires_content(self, resolver, two_hunk_files):
        session = _open(resolver, two_hunk_files)
        with pytest.raises(ValueError, match="requires content"):
            session.resolve_hunk(0, HunkResolution.MANUAL)

    def test_pending_is_not_a_resolution(self, resolver, two_hunk_files):
        session = _open(resolver, two_hunk_files)
        with pytest.raises(ValueError):
            session.resolve_hunk(0, HunkResolution.PENDING)

    @pytest.mark.parametrize("index", [-1, 2, 99])
    def test_invalid_index(self, resolver, two_hunk_files, index):
        _open(resolver, two_hunk_files)
        with pytest.raises(InvalidHunkIndexError) as excinfo:
            resolver.resolve_hunk(KEY, index, HunkResolution.KEEP_LOCAL)
        assert excinfo.value.total == 2

    def test_cursor_advances_and_wraps(self, resolver, two_hunk_files):
        session = _open(resolver, two_hunk_files)
        session.resolve_hunk(1, HunkResolution.KEEP_LOCAL)
        assert session.current_hunk == 0
        session.resolve_hunk(0, HunkResolution.KEEP_LOCAL)
        assert session.is_fully_resolved

    def test_re_resolving_overwrites(self, resolver, two_hunk_files):
        session = _open(resolver, two_hunk_files)
        session.resolve_hunk(0, HunkResolution.KEEP_LOCAL)
        session.resolve_hunk(0, HunkResolution.USE_REPOSITORY)
        assert session.hunks[0].resolution == HunkResolution.USE_REPOSITORY
        assert session.resolved_hunks == 1

    def test_merged_lines_requires_full_resolution(
        self, resolver, two_hunk_files
    ):
        session = _open(resolver, two_hunk_files)
        session.resolve_hunk(0, HunkResolution.KEEP_LOCAL)
        with pytest.raises(NotFullyResolvedError):
            session.merged_lines()


# ---------------------------------------------------------------------------
# Commit / cancel
# ---------------------------------------------------------------------------


class TestCommit:
    def test_commit_with_pending_hunk_raises(self, resolver, two_hunk_files):
        local_path, _ = two_hunk_files
        before = local_path.read_bytes()
        _open(resolver, two_hunk_files)
        resolver.resolve_hunk(KEY, 0, HunkResolution.KEEP_LOCAL)

        with pytest.raises(NotFullyResolvedError):
            resolver.commit(KEY)
        assert local_path.read_bytes() == before
        assert resolver.get(KEY) is not None

    def test_commit_writes_and_records_baseline(self, resolver, two_hunk_files):
        local_path, _ = two_hunk_files
        _open(resolver, two_hunk_files)
        resolver.resolve_hunk(KEY, 0, HunkResolution.KEEP_LOCAL)
        resolver.resolve_hunk(KEY, 1, HunkResolution.USE_REPOSITORY)
        expected = resolver.merged_content(KEY)

        fingerprint = resolver.commit(KEY)

        assert local_path.read_text() == expected
        assert fingerprint == fingerprint_file(local_path)
        entry = resolver.state.get("zsh", ".zshrc")
        assert entry.last_local_fingerprint == fingerprint
        assert entry.last_repository_fingerprint == fingerprint
        assert resolver.sessions() == []

    def test_commit_detects_external_edit(self, resolver, two_hunk_files):
        local_path, _ = two_hunk_files
        _open(resolver, two_hunk_files)
        resolver.keep_all_local(KEY)
        local_path.write_text("edited elsewhere\n")

        with pytest.raises(StaleSessionError):
            resolver.commit(KEY)
        assert local_path.read_text() == "edited elsewhere\n"
        assert resolver.state.get("zsh", ".zshrc") is None

    def test_hash_mismatch_keeps_session_and_allows_retry(
        self, resolver, two_hunk_files
    ):
        local_path, _ = two_hunk_files
        _open(resolver, two_hunk_files)
        resolver.keep_all_local(KEY)
        resolver.resolve_hunk(KEY, 1, HunkResolution.USE_REPOSITORY)
        expected = resolver.merged_content(KEY)

        real = resolver.hasher.fingerprint_uncached
        calls = []

        def corrupt_after_write(path):
            calls.append(path)
            digest = real(path)
            # First call is the staleness check, second the post-write check
            return "0" * 64 if len(calls) == 2 else digest

        with patch.object(
            resolver.hasher, "fingerprint_uncached", side_effect=corrupt_after_write
        ):
            with pytest.raises(HashMismatchError):
                resolver.commit(KEY)

        assert resolver.get(KEY).is_fully_resolved
        assert resolver.state.get("zsh", ".zshrc") is None

        fingerprint = resolver.commit(KEY)

        assert local_path.read_text() == expected
        assert resolver.state.get("zsh", ".zshrc").last_local_fingerprint == fingerprint
        assert resolver.sessions() == []

    def test_commit_preserves_crlf(self, resolver, tmp_path):
        local = tmp_path / "local.ini"
        repository = tmp_path / "repo.ini"
        local.write_bytes(b"a=1\r\nb=2\r\n")
        repository.write_bytes(b"a=1\r\nb=3\r\n")

        resolver.open("git", ".gitconfig", local, repository)
        resolver.use_all_repository("git/.gitconfig")
        resolver.commit("git/.gitconfig")
        assert local.read_bytes() == b"a=1\r\nb=3\r\n"

    def test_cancel_discards_without_writing(self, resolver, two_hunk_files):
        local_path, _ = two_hunk_files
        before = local_path.read_bytes()
        _open(resolver, two_hunk_files)
        resolver.keep_all_local(KEY)

        resolver.cancel(KEY)
        assert resolver.sessions() == []
        assert local_path.read_bytes() == before
        with pytest.raises(NoSuchSessionError):
            resolver.cancel(KEY)


class TestFormatHunkPreview:
    def test_markers_and_truncation(self, resolver, tmp_path):
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.write_text("".join(f"l{i}\n" for i in range(15)))
        b.write_text("")
        hunk = resolver.open("zsh", ".zshrc", a, b).hunks[0]

        text = format_hunk_preview(hunk, max_lines=5)
        assert text.startswith("@@ hunk 0 (line 1) [pending] @@")
        assert "<<<<<<< LOCAL" in text
        assert "=======" in text
        assert ">>>>>>> REPOSITORY" in text
        assert "... (10 more lines)" in text
