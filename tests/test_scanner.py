"""Tests for parallel discovery and the installed-package cache."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from dotsync_mcp.config_schema import ItemDefinition
from dotsync_mcp.reconcile.hasher import SKIPPED, Hasher, fingerprint_bytes
from dotsync_mcp.reconcile.scanner import (
    InstalledPackageCache,
    Scanner,
    builtin_items,
    default_worker_count,
    expand_path,
)


@pytest.fixture
def scanner(home: Path, repository: Path) -> Scanner:
    return Scanner(repository, Hasher(), max_workers=4, home=home)


def _by_rel(discovery_or_unit):
    return {f.rel_path: f for f in discovery_or_unit.files}


class TestHelpers:
    def test_expand_path(self, tmp_path):
        assert expand_path("~", tmp_path) == tmp_path
        assert expand_path("~/.zshrc", tmp_path) == tmp_path / ".zshrc"
        assert expand_path("/etc/hosts", tmp_path) == Path("/etc/hosts")

    def test_default_worker_count_is_bounded(self):
        assert 1 <= default_worker_count() <= 16

    def test_builtin_items_have_paths(self):
        items = builtin_items()
        ids = [item.id for item in items]
        assert "zsh" in ids and "nvim" in ids
        assert all(item.config_paths for item in items)


class TestScanUnit:
    """Tests for Scanner.scan_unit() path layout."""

    def test_single_file_layout(self, scanner, home, repository, write):
        write(home / ".zshrc", "export A=1\n")
        write(repository / "zsh" / ".zshrc", "export A=2\n")

        unit = scanner.scan_unit("zsh", "~/.zshrc")

        assert unit.local_exists
        found = _by_rel(unit)[".zshrc"]
        assert found.local_path == home / ".zshrc"
        assert found.repository_path == repository / "zsh" / ".zshrc"
        assert found.local_fingerprint == fingerprint_bytes(b"export A=1\n")
        assert found.repository_fingerprint == fingerprint_bytes(b"export A=2\n")

    def test_directory_layout(self, scanner, home, repository, write):
        write(home / ".config" / "kitty" / "kitty.conf", "font_size 12\n")
        write(repository / "kitty" / "kitty" / "themes" / "dark.conf", "bg #000\n")

        files = _by_rel(scanner.scan_unit("kitty", "~/.config/kitty"))

        assert files["kitty"].is_dir
        assert files["kitty"].local_exists and files["kitty"].repository_exists
        assert files["kitty/kitty.conf"].local_exists
        assert not files["kitty/kitty.conf"].repository_exists
        assert files["kitty/themes"].is_dir
        assert not files["kitty/themes"].local_exists
        dark = files["kitty/themes/dark.conf"]
        assert dark.repository_path == (
            repository / "kitty" / "kitty" / "themes" / "dark.conf"
        )
        assert dark.local_path == home / ".config" / "kitty" / "themes" / "dark.conf"

    def test_missing_on_both_sides(self, scanner):
        unit = scanner.scan_unit("vim", "~/.vimrc")
        assert not unit.local_exists
        assert unit.files == []

    def test_excluded_and_hidden_dirs_skipped(self, scanner, home, write):
        root = home / ".config" / "nvim"
        write(root / "init.lua", "-- init\n")
        write(root / ".DS_Store", "junk")
        write(root / "node_modules" / "pkg.js", "x")
        write(root / ".hidden" / "secret.lua", "x")
        write(root / ".luarc.json", "{}")

        files = _by_rel(scanner.scan_unit("nvim", "~/.config/nvim"))

        assert "nvim/init.lua" in files
        assert "nvim/.luarc.json" in files
        assert "nvim/.DS_Store" not in files
        assert "nvim/node_modules" not in files
        assert not any(rel.startswith("nvim/.hidden") for rel in files)

    def test_depth_limit(self, home, repository, write):
        scanner = Scanner(repository, Hasher(), max_depth=2, home=home)
        root = home / ".config" / "fish"
        write(root / "a" / "one.fish", "1")
        write(root / "a" / "b" / "two.fish", "2")

        files = _by_rel(scanner.scan_unit("fish", "~/.config/fish"))
        assert "fish/a/one.fish" in files
        assert "fish/a/b" not in files
        assert "fish/a/b/two.fish" not in files

    def test_file_limit(self, home, repository, write):
        scanner = Scanner(repository, Hasher(), max_files_per_dir=3, home=home)
        for i in range(10):
            write(home / ".config" / "git" / f"f{i}", str(i))

        unit = scanner.scan_unit("git", "~/.config/git")
        # The configured directory itself plus three entries
        assert len(_by_rel(unit)) == 4
        assert not unit.complete
        assert "more than 3 entries" in unit.errors[0][1]

    def test_file_limit_is_per_directory(self, home, repository, write):
        scanner = Scanner(repository, Hasher(), max_files_per_dir=3, home=home)
        root = home / ".config" / "git"
        for sub in ("a", "b"):
            for i in range(3):
                write(root / sub / f"f{i}", str(i))

        unit = scanner.scan_unit("git", "~/.config/git")

        # git, git/a, git/b and three files in each subdirectory
        assert len(_by_rel(unit)) == 9
        assert unit.complete
        assert unit.errors == []

    def test_unreadable_file_marks_unit_incomplete(
        self, home, repository, write
    ):
        hasher = Hasher()
        scanner = Scanner(repository, hasher, home=home)
        write(home / ".zshrc", "a\n")

        with patch.object(
            hasher, "fingerprint", side_effect=PermissionError("Permission denied")
        ):
            unit = scanner.scan_unit("zsh", "~/.zshrc")

        assert unit.files == []
        assert not unit.complete
        assert "Permission denied" in unit.errors[0][1]

    def test_unreadable_directory_marks_unit_incomplete(
        self, home, repository, write
    ):
        scanner = Scanner(repository, Hasher(), home=home)
        write(home / ".config" / "nvim" / "init.lua", "x")

        def walk(root, onerror=None):
            onerror(PermissionError(13, "Permission denied", str(root / "lua")))
            yield str(root), [], ["init.lua"]

        with patch("dotsync_mcp.reconcile.scanner.os.walk", side_effect=walk):
            unit = scanner.scan_unit("nvim", "~/.config/nvim")

        assert "nvim/init.lua" in _by_rel(unit)
        assert not unit.complete
        assert unit.errors[0][0].endswith("lua")

    def test_oversized_file_gets_sentinel(self, home, repository, write):
        scanner = Scanner(repository, Hasher(max_file_size=4), home=home)
        write(home / ".zshrc", "much longer than four bytes\n")

        found = _by_rel(scanner.scan_unit("zsh", "~/.zshrc"))[".zshrc"]
        assert found.local_fingerprint == SKIPPED
        assert found.local_exists


class TestScan:
    """Tests for Scanner.scan() fan-out and aggregation."""

    def test_scans_all_units(self, scanner, items, home, repository, write):
        write(home / ".zshrc", "a\n")
        write(repository / "kitty" / "kitty" / "kitty.conf", "b\n")

        discovery = scanner.scan(items)

        rels = {(f.item_id, f.rel_path) for f in discovery.files}
        assert ("zsh", ".zshrc") in rels
        assert ("kitty", "kitty/kitty.conf") in rels
        assert discovery.complete
        assert discovery.installed["zsh"] is True
        assert discovery.installed["kitty"] is False

    def test_duplicate_paths_are_ignored(self, scanner, home, write, caplog):
        write(home / ".zshrc", "a\n")
        item = ItemDefinition(id="zsh", name="Zsh", config_paths=["~/.zshrc", "~/.zshrc"])

        with caplog.at_level("WARNING"):
            discovery = scanner.scan([item])
        assert len(discovery.files) == 1
        assert "Duplicate path" in caplog.text

    def test_unit_failure_marks_incomplete(self, scanner, items, home, write):
        write(home / ".zshrc", "a\n")
        original = scanner.scan_unit

        def flaky(item_id, config_path):
            if item_id == "kitty":
                raise RuntimeError("boom")
            return original(item_id, config_path)

        with patch.object(scanner, "scan_unit", side_effect=flaky):
            discovery = scanner.scan(items)

        assert not discovery.complete
        assert [f.item_id for f in discovery.files] == ["zsh"]
        assert discovery.errors == [("~/.config/kitty", "boom")]

    def test_installed_from_package_cache(self, home, repository, items):
        cache = MagicMock(spec=InstalledPackageCache)
        cache.lookup.return_value = None
        scanner = Scanner(repository, Hasher(), package_cache=cache, home=home)

        discovery = scanner.scan(items)
        assert discovery.installed == {"zsh": None, "kitty": None}


class TestInstalledPackageCache:
    def _completed(self, stdout: str, returncode: int = 0):
        return subprocess.CompletedProcess(
            args=[], returncode=returncode, stdout=stdout, stderr=""
        )

    def test_unknown_until_ready(self):
        cache = InstalledPackageCache()
        assert not cache.ready
        assert cache.lookup("kitty") is None

    @patch("dotsync_mcp.reconcile.scanner.subprocess.run")
    def test_populate(self, mock_run):
        mock_run.side_effect = [
            self._completed("git\nNeovim\n"),
            self._completed("kitty\n"),
        ]
        cache = InstalledPackageCache()
        cache.populate()

        assert cache.ready
        assert cache.lookup("kitty") is True
        assert cache.lookup("neovim") is True
        assert cache.lookup("fish") is False

    @patch("dotsync_mcp.reconcile.scanner.subprocess.run")
    def test_no_package_manager_stays_unknown(self, mock_run):
        mock_run.side_effect = FileNotFoundError("brew")
        cache = InstalledPackageCache()
        cache.populate()

        assert cache.ready
        assert cache.lookup("kitty") is None

    @patch("dotsync_mcp.reconcile.scanner.subprocess.run")
    def test_failing_command_ignored(self, mock_run):
        mock_run.side_effect = [
            self._completed("", returncode=1),
            self._completed("ghostty\n"),
        ]
        cache = InstalledPackageCache()
        cache.populate()
        assert cache.lookup("ghostty") is True

    @patch("dotsync_mcp.reconcile.scanner.subprocess.run")
    def test_start_runs_in_background(self, mock_run):
        mock_run.return_value = self._completed("tmux\n")
        cache = InstalledPackageCache()
        thread = cache.start()
        assert cache.start() is thread
        assert cache.wait(timeout=5)
        assert cache.lookup("tmux") is True
