"""Shared pytest fixtures for dotsync-mcp tests."""

from pathlib import Path

import pytest

from dotsync_mcp.config import Config
from dotsync_mcp.config_schema import ItemDefinition
from dotsync_mcp.reconcile.engine import ReconcileEngine


def _write(path: Path, content: str | bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep DOTSYNC_* variables from the developer's shell out of tests."""
    for key in (
        "DOTSYNC_CONFIG",
        "DOTSYNC_REPOSITORY",
        "DOTSYNC_STATE_DIR",
        "DOTSYNC_BACKUP_DIR",
        "DOTSYNC_MAX_WORKERS",
        "DOTSYNC_MAX_FILE_SIZE",
        "DOTSYNC_DEBUG",
        "LOG_LEVEL",
        "LOG_FILE",
    ):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def home(tmp_path: Path) -> Path:
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def repository(tmp_path: Path) -> Path:
    path = tmp_path / "dotfiles"
    path.mkdir()
    return path


@pytest.fixture
def items() -> list[ItemDefinition]:
    """Two items: a single-file shell config and a directory-based terminal."""
    return [
        ItemDefinition(id="zsh", name="Zsh", category="shell", config_paths=["~/.zshrc"]),
        ItemDefinition(
            id="kitty",
            name="Kitty",
            category="terminal",
            config_paths=["~/.config/kitty"],
        ),
    ]


@pytest.fixture
def config(tmp_path: Path, repository: Path, items) -> Config:
    return Config(
        repository=repository,
        state_dir=tmp_path / "state",
        backup_dir=tmp_path / "backups",
        max_workers=4,
        detect_packages=False,
        items=items,
    )


@pytest.fixture
def engine(config: Config, home: Path) -> ReconcileEngine:
    """A loaded engine over an empty home and repository."""
    eng = ReconcileEngine.from_config(config, home=home)
    eng.load()
    return eng


@pytest.fixture
def write():
    """Factory: ``write(path, content)`` creates a file and its parents."""
    return _write
