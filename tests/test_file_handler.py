"""Tests for file_handler: path validation, encoding detection, copies, backups."""

from datetime import datetime
from pathlib import Path
from unittest.mock import patch

import pytest

from dotsync_mcp.file_handler import (
    backup_file,
    list_backup_files,
    copy_file,
    decode_bytes,
    read_file_with_encoding,
    validate_file_path,
    validate_rel_path,
    write_bytes,
    write_file,
)


class TestValidateFilePath:
    def test_relative_path_rejected(self):
        with pytest.raises(ValueError, match="absolute"):
            validate_file_path("relative/.zshrc")

    def test_missing_file_rejected(self, tmp_path):
        with pytest.raises(ValueError, match="not found"):
            validate_file_path(str(tmp_path / "missing"))

    def test_directory_rejected(self, tmp_path):
        with pytest.raises(ValueError, match="not a file"):
            validate_file_path(str(tmp_path))

    def test_existing_file_resolved(self, tmp_path):
        target = tmp_path / "init.lua"
        target.write_text("-- nvim\n")
        assert validate_file_path(str(target)) == target.resolve()


class TestValidateRelPath:
    @pytest.mark.parametrize("bad", ["", "/etc/passwd", "../outside", "kitty/../../x"])
    def test_escaping_paths_rejected(self, bad):
        with pytest.raises(ValueError):
            validate_rel_path(bad)

    @pytest.mark.parametrize("good", [".zshrc", "kitty/kitty.conf", "nvim/lua/init.lua"])
    def test_plain_paths_accepted(self, good):
        assert validate_rel_path(good) == good


class TestEncoding:
    """charset-normalizer detection round trips."""

    def test_empty_bytes_default_utf8(self):
        assert decode_bytes(b"") == ("", "utf-8")

    def test_ascii_normalised_to_utf8(self):
        content, encoding = decode_bytes(b"export PATH=$HOME/bin:$PATH\n")
        assert content == "export PATH=$HOME/bin:$PATH\n"
        assert encoding == "utf-8"

    def test_utf8_content_decoded(self, tmp_path):
        path = tmp_path / "greeting.conf"
        path.write_bytes("greeting = \"héllo wörld\"\n".encode("utf-8"))
        content, _ = read_file_with_encoding(path)
        assert "héllo wörld" in content

    def test_write_file_creates_parents(self, tmp_path):
        target = tmp_path / "a" / "b" / "c.conf"
        written = write_file(target, "x = 1\n")
        assert written == 6
        assert target.read_text() == "x = 1\n"

    def test_write_bytes_is_exact(self, tmp_path):
        target = tmp_path / "crlf.ini"
        write_bytes(target, b"a=1\r\nb=2")
        assert target.read_bytes() == b"a=1\r\nb=2"


class TestCopyAndBackup:
    def test_copy_creates_parents_and_preserves_bytes(self, tmp_path):
        src = tmp_path / "src" / ".vimrc"
        src.parent.mkdir()
        src.write_bytes(b"set number\n")
        dst = tmp_path / "repo" / "vim" / ".vimrc"

        copy_file(src, dst)
        assert dst.read_bytes() == b"set number\n"

    def test_backup_missing_returns_none(self, tmp_path):
        assert backup_file(tmp_path / "missing", tmp_path / "backups") is None

    def test_backup_file_layout(self, tmp_path):
        src = tmp_path / ".zshrc"
        src.write_text("alias ll='ls -l'\n")

        backup = backup_file(src, tmp_path / "backups")

        assert backup is not None
        assert backup.name == ".zshrc"
        assert backup.parent.parent == tmp_path / "backups"
        assert backup.read_text() == "alias ll='ls -l'\n"

    def test_backup_collision_gets_suffix(self, tmp_path):
        src = tmp_path / ".zshrc"
        src.write_text("one\n")
        first = backup_file(src, tmp_path / "backups")
        src.write_text("two\n")
        second = backup_file(src, tmp_path / "backups")

        assert first != second
        assert first.read_text() == "one\n"
        assert second.read_text() == "two\n"

    def test_backup_directory_copies_tree(self, tmp_path):
        src = tmp_path / "kitty"
        (src / "themes").mkdir(parents=True)
        (src / "kitty.conf").write_text("font_size 12\n")
        (src / "themes" / "dark.conf").write_text("background #000\n")

        backup = backup_file(src, tmp_path / "backups")

        assert (backup / "kitty.conf").read_text() == "font_size 12\n"
        assert (backup / "themes" / "dark.conf").exists()
        assert isinstance(backup, Path)

    def test_backup_under_relative_path(self, tmp_path):
        src = tmp_path / "kitty.conf"
        src.write_text("font_size 12\n")

        backup = backup_file(src, tmp_path / "backups", "kitty/kitty/kitty.conf")

        root = tmp_path / "backups"
        snapshot = backup.relative_to(root).parts[0]
        assert backup == root / snapshot / "kitty" / "kitty" / "kitty.conf"

    def test_backup_rejects_escaping_relative_path(self, tmp_path):
        src = tmp_path / ".zshrc"
        src.write_text("x\n")
        with pytest.raises(ValueError):
            backup_file(src, tmp_path / "backups", "../outside")

    def test_backup_collision_uses_numbered_snapshot(self, tmp_path):
        src = tmp_path / ".zshrc"
        src.write_text("one\n")
        fixed = datetime(2026, 10, 19, 12, 0, 0)

        with patch("dotsync_mcp.file_handler.datetime") as mock_datetime:
            mock_datetime.now.return_value = fixed
            first = backup_file(src, tmp_path / "backups", "zsh/.zshrc")
            second = backup_file(src, tmp_path / "backups", "zsh/.zshrc")
            third = backup_file(src, tmp_path / "backups", "zsh/.zshrc")

        root = tmp_path / "backups"
        assert first == root / "20261019_120000" / "zsh" / ".zshrc"
        assert second == root / "20261019_120000_1" / "zsh" / ".zshrc"
        assert third == root / "20261019_120000_2" / "zsh" / ".zshrc"


class TestListBackupFiles:
    def test_missing_dir(self, tmp_path):
        assert list_backup_files(tmp_path / "backups") == []

    def test_newest_snapshot_first(self, tmp_path):
        root = tmp_path / "backups"
        for snapshot, rel in (
            ("20260101_120000", "zsh/.zshrc"),
            ("20260102_090000", "kitty/kitty/kitty.conf"),
            ("20260102_090000", "git/.gitconfig"),
        ):
            path = root / snapshot / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(rel)

        found = list_backup_files(root)

        assert [(s, r) for s, r, _ in found] == [
            ("20260102_090000", "git/.gitconfig"),
            ("20260102_090000", "kitty/kitty/kitty.conf"),
            ("20260101_120000", "zsh/.zshrc"),
        ]
        assert found[0][2] == root / "20260102_090000" / "git" / ".gitconfig"

