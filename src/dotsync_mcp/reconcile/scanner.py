"""Parallel discovery and fingerprinting of tracked files.

One discovery unit is one configured path of one item.  Units are fanned
out to a bounded ``ThreadPoolExecutor``; each worker expands the path,
walks the local and repository sides, and fingerprints every file it finds.
Results are drained by the calling thread with ``as_completed``.  Workers
share no mutable state apart from the hash cache and the installed-package
cache, both of which are lock-guarded.

Workers do not classify: the scanner hands back ``DiscoveredFile``
candidates and the engine classifies them against the state store on the
calling thread.

Path layout: a configured file ``~/.zshrc`` of item ``zsh`` has rel_path
``.zshrc`` and lives at ``<repository>/zsh/.zshrc``; a configured directory
``~/.config/kitty`` contributes rel_paths prefixed with ``kitty/``.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import subprocess
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from ..config_schema import DEFAULT_EXCLUDE, ItemDefinition
from .hasher import Hasher

logger = logging.getLogger(__name__)

MAX_SCAN_DEPTH = 5
MAX_FILES_PER_DIR = 200
_WORKER_CEILING = 16


def default_worker_count() -> int:
    """Twice the CPU count, capped: the workload is I/O bound."""
    return min((os.cpu_count() or 1) * 2, _WORKER_CEILING)


def expand_path(path: str, home: Path | None = None) -> Path:
    """Expand a leading ``~`` against *home* (default: the user's home)."""
    home = home or Path.home()
    if path == "~":
        return home
    if path.startswith("~/"):
        return home / path[2:]
    return Path(path)


# ---------------------------------------------------------------------------
# Installed-package cache
# ---------------------------------------------------------------------------


class InstalledPackageCache:
    """Names of packages installed through Homebrew.

    Populated once, normally in a background thread started at server
    startup.  Until population finishes the cache is *not ready* and
    ``lookup()`` answers ``None`` ("unknown"), never ``False``.  When no
    package manager is available the answer stays ``None``.

    Args:
        commands: Listing commands; each prints one package per line.
        timeout: Seconds allowed per command.
    """

    DEFAULT_COMMANDS = (
        ("brew", "list", "--formula", "-1"),
        ("brew", "list", "--cask", "-1"),
    )

    def __init__(
        self,
        commands: tuple[tuple[str, ...], ...] = DEFAULT_COMMANDS,
        timeout: float = 30.0,
    ) -> None:
        self.commands = commands
        self.timeout = timeout
        self._lock = threading.Lock()
        self._packages: set[str] = set()
        self._available = False
        self._ready = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    def start(self) -> threading.Thread:
        """Populate in a daemon thread.  Idempotent."""
        if self._thread is None:
            self._thread = threading.Thread(
                target=self.populate,
                name="installed-package-cache",
                daemon=True,
            )
            self._thread.start()
        return self._thread

    def wait(self, timeout: float | None = None) -> bool:
        """Block until ready; returns readiness."""
        return self._ready.wait(timeout)

    def populate(self) -> None:
        """Run the listing commands and record their output."""
        found: set[str] = set()
        available = False
        for command in self.commands:
            try:
                result = subprocess.run(
                    list(command),
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                )
            except (subprocess.TimeoutExpired, OSError) as exc:
                logger.debug("Package listing %s failed: %s", command, exc)
                continue
            if result.returncode != 0:
                logger.debug(
                    "Package listing %s exited %d",
                    command,
                    result.returncode,
                )
                continue
            available = True
            found.update(
                line.strip().lower()
                for line in result.stdout.splitlines()
                if line.strip()
            )

        with self._lock:
            self._packages = found
            self._available = available
        self._ready.set()
        logger.debug("Installed-package cache ready (%d packages)", len(found))

    def lookup(self, name: str) -> bool | None:
        """Return whether *name* is installed, or ``None`` if unknown."""
        if not self._ready.is_set():
            return None
        with self._lock:
            if not self._available:
                return None
            return name.lower() in self._packages


# ---------------------------------------------------------------------------
# Built-in item definitions
# ---------------------------------------------------------------------------

_BUILTIN_ITEMS: tuple[tuple[str, str, str, tuple[str, ...]], ...] = (
    ("zsh", "Zsh", "shell", ("~/.zshrc", "~/.zprofile", "~/.zshenv", "~/.zlogin")),
    ("bash", "Bash", "shell", ("~/.bashrc", "~/.bash_profile", "~/.bash_aliases")),
    ("fish", "Fish", "shell", ("~/.config/fish",)),
    ("starship", "Starship", "shell", ("~/.config/starship.toml",)),
    ("ghostty", "Ghostty", "terminal", ("~/.config/ghostty",)),
    ("kitty", "Kitty", "terminal", ("~/.config/kitty",)),
    ("alacritty", "Alacritty", "terminal", ("~/.config/alacritty",)),
    ("wezterm", "WezTerm", "terminal", ("~/.config/wezterm", "~/.wezterm.lua")),
    ("nvim", "Neovim", "editor", ("~/.config/nvim",)),
    ("vim", "Vim", "editor", ("~/.vimrc",)),
    ("git", "Git", "git", ("~/.gitconfig", "~/.config/git")),
    ("tmux", "tmux", "cli", ("~/.tmux.conf", "~/.config/tmux")),
)


def builtin_items() -> list[ItemDefinition]:
    """Definitions used when the configuration lists no items."""
    return [
        ItemDefinition(
            id=item_id, name=name, category=category, config_paths=list(paths)
        )
        for item_id, name, category, paths in _BUILTIN_ITEMS
    ]


# ---------------------------------------------------------------------------
# Discovery results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DiscoveredFile:
    """A tracked path with both sides fingerprinted, not yet classified.

    Directories carry no fingerprints; ``local_exists`` and
    ``repository_exists`` record their presence instead.
    """

    item_id: str
    rel_path: str
    local_path: Path
    repository_path: Path
    is_dir: bool
    local_exists: bool
    repository_exists: bool
    local_fingerprint: str | None = None
    repository_fingerprint: str | None = None


@dataclass
class UnitResult:
    """Output of one discovery unit.

    ``complete`` is False when any path of the unit was not scanned.
    """

    item_id: str
    config_path: str
    local_exists: bool = False
    files: list[DiscoveredFile] = field(default_factory=list)
    errors: list[tuple[str, str]] = field(default_factory=list)
    complete: bool = True


@dataclass
class Discovery:
    """Aggregated output of a scan pass, before classification."""

    files: list[DiscoveredFile] = field(default_factory=list)
    installed: dict[str, bool | None] = field(default_factory=dict)
    errors: list[tuple[str, str]] = field(default_factory=list)
    complete: bool = True


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


class Scanner:
    """Discover and fingerprint the files of configured items.

    Args:
        repository_root: Root of the dotfiles repository.
        hasher: Shared hasher (its cache is thread-safe).
        max_workers: Pool size; defaults to ``default_worker_count()``.
        max_depth: Directories this deep below a configured root are
            not entered.
        max_files_per_dir: Entries collected from any single directory.
        exclude: fnmatch patterns for names to skip.
        package_cache: Optional installed-package cache.
        home: Home directory used for ``~`` expansion.
    """

    def __init__(
        self,
        repository_root: Path,
        hasher: Hasher,
        max_workers: int | None = None,
        max_depth: int = MAX_SCAN_DEPTH,
        max_files_per_dir: int = MAX_FILES_PER_DIR,
        exclude: list[str] | None = None,
        package_cache: InstalledPackageCache | None = None,
        home: Path | None = None,
    ) -> None:
        self.repository_root = Path(repository_root)
        self.hasher = hasher
        self.max_workers = max_workers or default_worker_count()
        self.max_depth = max_depth
        self.max_files_per_dir = max_files_per_dir
        self.exclude = list(DEFAULT_EXCLUDE if exclude is None else exclude)
        self.package_cache = package_cache
        self.home = home or Path.home()

    def scan(self, items: list[ItemDefinition]) -> Discovery:
        """Scan every configured path of *items* in parallel.

        Failures are logged and recorded.  Any path that was not scanned
        (unreadable file or directory, entry limit, failed unit) marks the
        discovery incomplete.  No ordering is guaranteed on the returned
        files.
        """
        units = [
            (item, config_path)
            for item in items
            for config_path in item.config_paths
        ]
        discovery = Discovery()
        seen: dict[tuple[str, str], str] = {}
        local_found: dict[str, bool] = {item.id: False for item in items}

        logger.info(
            "Scanning %d paths of %d items with %d workers",
            len(units),
            len(items),
            self.max_workers,
        )

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self.scan_unit, item.id, config_path): (
                    item.id,
                    config_path,
                )
                for item, config_path in units
            }
            for future in as_completed(futures):
                item_id, config_path = futures[future]
                try:
                    unit = future.result()
                except Exception as exc:
                    logger.warning(
                        "Discovery of %s for %s failed: %s",
                        config_path,
                        item_id,
                        exc,
                    )
                    discovery.errors.append((config_path, str(exc)))
                    discovery.complete = False
                    continue

                local_found[item_id] = local_found[item_id] or unit.local_exists
                discovery.errors.extend(unit.errors)
                discovery.complete = discovery.complete and unit.complete
                for found in unit.files:
                    key = (found.item_id, found.rel_path)
                    if key in seen:
                        logger.warning(
                            "Duplicate path %s/%s from %s (already from %s), ignored",
                            found.item_id,
                            found.rel_path,
                            config_path,
                            seen[key],
                        )
                        continue
                    seen[key] = config_path
                    discovery.files.append(found)

        for item_id, exists in local_found.items():
            discovery.installed[item_id] = self._installed(item_id, exists)

        logger.info(
            "Discovered %d paths (%d errors)",
            len(discovery.files),
            len(discovery.errors),
        )
        return discovery

    def scan_unit(self, item_id: str, config_path: str) -> UnitResult:
        """Discover and fingerprint one configured path of one item."""
        local_root = expand_path(config_path, self.home)
        name = local_root.name
        local_base = local_root.parent
        repository_base = self.repository_root / item_id
        unit = UnitResult(
            item_id=item_id,
            config_path=config_path,
            local_exists=local_root.exists(),
        )

        entries: dict[str, bool] = {}
        entries.update(self._collect(local_root, local_base, name, unit))
        for rel_path, is_dir in self._collect(
            repository_base / name, repository_base, name, unit
        ).items():
            entries.setdefault(rel_path, is_dir)

        for rel_path, is_dir in entries.items():
            local_path = local_base / rel_path
            repository_path = repository_base / rel_path
            try:
                unit.files.append(
                    self._discover(
                        item_id, rel_path, local_path, repository_path, is_dir
                    )
                )
            except OSError as exc:
                logger.warning("Skipping %s: %s", local_path, exc)
                unit.errors.append((str(local_path), str(exc)))
                unit.complete = False
        return unit

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _discover(
        self,
        item_id: str,
        rel_path: str,
        local_path: Path,
        repository_path: Path,
        is_dir: bool,
    ) -> DiscoveredFile:
        if is_dir:
            return DiscoveredFile(
                item_id=item_id,
                rel_path=rel_path,
                local_path=local_path,
                repository_path=repository_path,
                is_dir=True,
                local_exists=local_path.is_dir(),
                repository_exists=repository_path.is_dir(),
            )
        local_fp = self.hasher.fingerprint(local_path)
        repository_fp = self.hasher.fingerprint(repository_path)
        return DiscoveredFile(
            item_id=item_id,
            rel_path=rel_path,
            local_path=local_path,
            repository_path=repository_path,
            is_dir=False,
            local_exists=local_fp is not None,
            repository_exists=repository_fp is not None,
            local_fingerprint=local_fp,
            repository_fingerprint=repository_fp,
        )

    def _collect(
        self, root: Path, base: Path, name: str, unit: UnitResult
    ) -> dict[str, bool]:
        """Map rel_path -> is_dir for *root*, relative to *base*.

        Unreadable directories and directories with more than
        ``max_files_per_dir`` entries are recorded on *unit*, which is
        then incomplete.
        """
        if root.is_file():
            return {name: False}
        if not root.is_dir():
            return {}

        def walk_error(exc: OSError) -> None:
            logger.warning("Cannot read directory %s: %s", exc.filename, exc)
            unit.errors.append((str(exc.filename), str(exc)))
            unit.complete = False

        entries: dict[str, bool] = {name: True}
        for dirpath, dirnames, filenames in os.walk(root, onerror=walk_error):
            current = Path(dirpath)
            depth = len(current.relative_to(root).parts)

            kept = []
            for dirname in sorted(dirnames):
                if (
                    depth + 1 >= self.max_depth
                    or dirname.startswith(".")
                    or self._excluded(dirname)
                ):
                    continue
                kept.append(dirname)

            listed = [(d, True) for d in kept] + [
                (f, False) for f in sorted(filenames) if not self._excluded(f)
            ]
            if len(listed) > self.max_files_per_dir:
                logger.warning(
                    "Entry limit %d reached in %s, %d entries not scanned",
                    self.max_files_per_dir,
                    current,
                    len(listed) - self.max_files_per_dir,
                )
                unit.errors.append(
                    (dirpath, f"more than {self.max_files_per_dir} entries")
                )
                unit.complete = False
                listed = listed[: self.max_files_per_dir]
            dirnames[:] = [entry for entry, is_dir in listed if is_dir]

            for entry, is_dir in listed:
                entries[(current / entry).relative_to(base).as_posix()] = is_dir
        return entries

    def _excluded(self, name: str) -> bool:
        return any(fnmatch.fnmatchcase(name, pattern) for pattern in self.exclude)

    def _installed(self, item_id: str, local_exists: bool) -> bool | None:
        if local_exists:
            return True
        if self.package_cache is None:
            return False
        return self.package_cache.lookup(item_id)
