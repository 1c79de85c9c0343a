"""Runtime configuration for the dotsync MCP server.

Reads repository location and scan limits from CLI args, environment
variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    DOTSYNC_REPOSITORY: Dotfiles repository root (default: ~/dotfiles)
    DOTSYNC_STATE_DIR: Directory for sync_state.json (default: ~/.config/dotsync)
    DOTSYNC_BACKUP_DIR: Backup directory used before pulls (default: ~/.dotfiles-backup)
    DOTSYNC_MAX_WORKERS: Scanner worker threads (optional, 1-64)
    DOTSYNC_MAX_FILE_SIZE: Largest file hashed, in bytes (optional, 0 = no limit)
    DOTSYNC_DEBUG: Enable debug logging (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .config_schema import (
    DEFAULT_BACKUP_DIR,
    DEFAULT_EXCLUDE,
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_REPOSITORY,
    DEFAULT_STATE_DIR,
    ItemDefinition,
)
from .reconcile.state import STATE_FILENAME

logger = logging.getLogger(__name__)


@dataclass
class Config:
    repository: Path
    state_dir: Path
    backup_dir: Path
    max_workers: int | None = None
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    max_depth: int = 5
    max_files_per_dir: int = 200
    exclude: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE))
    detect_packages: bool = True
    items: list[ItemDefinition] = field(default_factory=list)
    debug: bool = False

    @property
    def state_path(self) -> Path:
        return self.state_dir / STATE_FILENAME


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If a path is unusable or a limit is out of range.
    """
    if config.repository.exists() and not config.repository.is_dir():
        raise ValueError(
            f"Repository path '{config.repository}' is not a directory"
        )

    if config.state_dir.exists() and not config.state_dir.is_dir():
        raise ValueError(
            f"State directory '{config.state_dir}' is not a directory"
        )

    if config.max_workers is not None and not (1 <= config.max_workers <= 64):
        raise ValueError(
            f"Invalid max_workers {config.max_workers}: must be between 1 and 64"
        )

    if config.max_file_size < 0:
        raise ValueError(
            f"Invalid max_file_size {config.max_file_size}: must be >= 0"
        )

    if config.backup_dir.resolve() == config.repository.resolve():
        raise ValueError(
            "Backup directory must differ from the repository path"
        )

    if not config.repository.exists():
        logger.warning(
            "Repository %s does not exist yet; it will be created on first push",
            config.repository,
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_int_env(key: str, minimum: int, maximum: int | None) -> int | None:
    raw = os.getenv(key)
    if raw is None:
        return None
    bounds = (
        f"between {minimum} and {maximum}"
        if maximum is not None
        else f">= {minimum}"
    )
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number {bounds}"
        ) from None
    if value < minimum or (maximum is not None and value > maximum):
        raise ValueError(f"Invalid {key} '{raw}': must be a number {bounds}")
    return value


def load_config(
    repository: str | None = None,
    state_dir: str | None = None,
    backup_dir: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        repository: Override repository root.
        state_dir: Override state directory.
        backup_dir: Override backup directory.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flattened values from the YAML config.  Keys:
            repository, state_dir, backup_dir, max_workers, max_file_size,
            max_depth, max_files_per_dir, exclude, detect_packages, items.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If an env var or path is invalid.
    """
    fb = yaml_fallbacks or {}

    # --- Path fields: CLI > env > YAML > default ---

    def _path(cli: str | None, env_key: str, fb_key: str, default: str) -> Path:
        raw = cli or os.getenv(env_key) or fb.get(fb_key) or default
        return Path(raw.strip()).expanduser()

    final_repository = _path(
        repository, "DOTSYNC_REPOSITORY", "repository", DEFAULT_REPOSITORY
    )
    final_state_dir = _path(
        state_dir, "DOTSYNC_STATE_DIR", "state_dir", DEFAULT_STATE_DIR
    )
    final_backup_dir = _path(
        backup_dir, "DOTSYNC_BACKUP_DIR", "backup_dir", DEFAULT_BACKUP_DIR
    )

    # --- Boolean fields: CLI > env > YAML > default ---

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("DOTSYNC_DEBUG")
        final_debug = (
            env_debug if env_debug is not None else bool(fb.get("debug", False))
        )

    # --- Numeric fields: env > YAML > default ---

    final_max_workers = _get_int_env("DOTSYNC_MAX_WORKERS", 1, 64)
    if final_max_workers is None and fb.get("max_workers") is not None:
        final_max_workers = int(fb["max_workers"])

    final_max_file_size = _get_int_env("DOTSYNC_MAX_FILE_SIZE", 0, None)
    if final_max_file_size is None:
        final_max_file_size = int(
            fb.get("max_file_size", DEFAULT_MAX_FILE_SIZE)
        )

    config = Config(
        repository=final_repository,
        state_dir=final_state_dir,
        backup_dir=final_backup_dir,
        max_workers=final_max_workers,
        max_file_size=final_max_file_size,
        max_depth=int(fb.get("max_depth", 5)),
        max_files_per_dir=int(fb.get("max_files_per_dir", 200)),
        exclude=list(fb.get("exclude", DEFAULT_EXCLUDE)),
        detect_packages=bool(fb.get("detect_packages", True)),
        items=list(fb.get("items", [])),
        debug=final_debug,
    )

    validate_config(config)

    return config
