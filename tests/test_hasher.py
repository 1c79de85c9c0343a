"""Tests for content fingerprinting and the mtime/size hash cache."""

import hashlib
import os

import pytest

from dotsync_mcp.reconcile.hasher import (
    SKIPPED,
    HashCache,
    Hasher,
    fingerprint_bytes,
    fingerprint_file,
    quick_hash,
)


class TestFingerprintFunctions:
    def test_fingerprint_is_raw_sha256(self, tmp_path):
        path = tmp_path / "f"
        path.write_bytes(b"set -o vi\r\n")
        assert fingerprint_file(path) == hashlib.sha256(b"set -o vi\r\n").hexdigest()

    def test_no_normalisation(self):
        """Line endings and trailing whitespace are significant."""
        assert fingerprint_bytes(b"a\n") != fingerprint_bytes(b"a\r\n")
        assert fingerprint_bytes(b"a") != fingerprint_bytes(b"a ")

    def test_quick_hash(self):
        assert quick_hash("0123456789abcdef") == "01234567"
        assert quick_hash(None) == "-"


class TestHasher:
    """Tests for Hasher.fingerprint()."""

    def test_missing_file_is_none(self, tmp_path):
        assert Hasher().fingerprint(tmp_path / "absent") is None

    def test_directory_raises(self, tmp_path):
        with pytest.raises(IsADirectoryError):
            Hasher().fingerprint(tmp_path)

    def test_oversized_file_is_skipped(self, tmp_path):
        path = tmp_path / "big.db"
        path.write_bytes(b"x" * 100)
        assert Hasher(max_file_size=10).fingerprint(path) == SKIPPED

    def test_zero_limit_disables_skipping(self, tmp_path):
        path = tmp_path / "big.db"
        path.write_bytes(b"x" * 100)
        assert Hasher(max_file_size=0).fingerprint(path) != SKIPPED

    def test_unknown_algorithm_fails_early(self):
        with pytest.raises(ValueError):
            Hasher(algorithm="not-a-digest")

    def test_cached_until_mtime_or_size_changes(self, tmp_path):
        path = tmp_path / ".gitconfig"
        path.write_text("[user]\n")
        hasher = Hasher()
        first = hasher.fingerprint(path)
        assert len(hasher.cache) == 1

        path.write_text("[user]\n  name = me\n")
        st = path.stat()
        os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000))
        assert hasher.fingerprint(path) != first

    def test_uncached_bypasses_stale_entry(self, tmp_path):
        path = tmp_path / ".tmux.conf"
        path.write_text("set -g mouse on\n")
        hasher = Hasher()
        st = path.stat()
        # Poison the cache with a wrong digest for the current stat
        hasher.cache.put(str(path), st.st_mtime_ns, st.st_size, "bogus")

        assert hasher.fingerprint(path) == "bogus"
        assert hasher.fingerprint_uncached(path) == fingerprint_file(path)

    def test_fingerprint_bytes_matches_file(self, tmp_path):
        path = tmp_path / "f"
        path.write_bytes(b"abc")
        hasher = Hasher()
        assert hasher.fingerprint_bytes(b"abc") == hasher.fingerprint(path)


class TestHashCache:
    def test_get_requires_matching_stat(self):
        cache = HashCache()
        cache.put("/p", 1, 10, "d")
        assert cache.get("/p", 1, 10) == "d"
        assert cache.get("/p", 2, 10) is None
        assert cache.get("/p", 1, 11) is None

    def test_invalidate_and_clear(self):
        cache = HashCache()
        cache.put("/a", 1, 1, "x")
        cache.put("/b", 1, 1, "y")
        cache.invalidate("/a")
        cache.invalidate("/missing")
        assert len(cache) == 1
        cache.clear()
        assert len(cache) == 0
