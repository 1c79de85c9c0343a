"""Unified configuration schema for dotsync_mcp.

Defines Pydantic models for the YAML config structure: the repository
location, scan limits, tracked item definitions, and logging.  Includes an
adapter that folds a ``UnifiedConfig`` into the runtime ``Config``
dataclass.

Usage:
    from dotsync_mcp.config_schema import build_config, to_runtime_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = to_runtime_config(unified, cli_overrides={"repository": "~/dots"})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, field_validator

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

DEFAULT_REPOSITORY = "~/dotfiles"
DEFAULT_BACKUP_DIR = "~/.dotfiles-backup"
DEFAULT_STATE_DIR = "~/.config/dotsync"
DEFAULT_MAX_FILE_SIZE = 5 * 1024 * 1024

DEFAULT_EXCLUDE = [
    ".DS_Store",
    ".git",
    "node_modules",
    "__pycache__",
    ".cache",
    "Cache",
    "CachedData",
    ".tmp",
    "lock.mdb",
    "data.mdb",
    "*.log",
    "*.bak",
    "*.backup",
    "*.swp",
    "*.swo",
]


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class RepositoryConfig(BaseModel):
    """Location of the dotfiles repository and its companions."""

    path: str | None = Field(
        default=None, description="Dotfiles repository root"
    )
    backup_path: str | None = Field(
        default=None,
        description="Directory for timestamped backups made before a pull",
    )
    state_dir: str | None = Field(
        default=None, description="Directory holding sync_state.json"
    )

    model_config = {"frozen": True}


class ScanConfig(BaseModel):
    """Scanner limits and behaviour."""

    max_workers: int | None = Field(
        default=None,
        ge=1,
        le=64,
        description="Scanner worker threads (default: min(2 x CPU, 16))",
    )
    max_file_size: int = Field(
        default=DEFAULT_MAX_FILE_SIZE,
        ge=0,
        description="Files above this many bytes are not hashed (0 = no limit)",
    )
    max_depth: int = Field(
        default=5, ge=1, le=32, description="Directory depth limit"
    )
    max_files_per_dir: int = Field(
        default=200,
        ge=1,
        description="Entries collected from any single directory",
    )
    exclude: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDE),
        description="fnmatch patterns for names skipped during traversal",
    )
    detect_packages: bool = Field(
        default=True,
        description="Consult Homebrew to decide whether an item is installed",
    )

    model_config = {"frozen": True}


class ItemDefinition(BaseModel):
    """One tracked application and the paths holding its configuration.

    Attributes:
        id: Stable identifier; also the item's directory in the repository.
        name: Display name.
        category: Grouping for reports (shell, editor, terminal, ...).
        config_paths: Files or directories, ``~`` expanded at scan time.
    """

    id: str = Field(description="Item identifier")
    name: str = Field(default="", description="Display name")
    category: str = Field(default="other", description="Item category")
    config_paths: list[str] = Field(
        default_factory=list, description="Configuration files/directories"
    )

    model_config = {"frozen": True}

    @field_validator("id")
    @classmethod
    def _validate_id(cls, value: str) -> str:
        value = value.strip()
        if not value or "/" in value or value in (".", ".."):
            raise ValueError(f"Invalid item id: {value!r}")
        return value

    @property
    def display_name(self) -> str:
        return self.name or self.id


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` (zero-config) is
    always valid.
    """

    repository: RepositoryConfig = Field(default_factory=RepositoryConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    items: list[ItemDefinition] = Field(default_factory=list)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}

    @field_validator("items")
    @classmethod
    def _unique_ids(cls, items: list[ItemDefinition]) -> list[ItemDefinition]:
        seen: set[str] = set()
        for item in items:
            if item.id in seen:
                raise ValueError(f"Duplicate item id: {item.id}")
            seen.add(item.id)
        return items


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Missing sections get defaults.

    Raises:
        pydantic.ValidationError: If a section is malformed.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> runtime Config dataclass
# ---------------------------------------------------------------------------


def to_runtime_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Fold a ``UnifiedConfig`` into the runtime ``Config``, with CLI
    overrides and environment variables applied on top.

    Precedence: CLI override > env var > unified config value > default.
    """
    # Import here to avoid circular imports (config.py imports config_schema)
    from .config import load_config

    overrides = cli_overrides or {}
    fallbacks = {
        "repository": unified.repository.path,
        "backup_dir": unified.repository.backup_path,
        "state_dir": unified.repository.state_dir,
        "max_workers": unified.scan.max_workers,
        "max_file_size": unified.scan.max_file_size,
        "max_depth": unified.scan.max_depth,
        "max_files_per_dir": unified.scan.max_files_per_dir,
        "exclude": list(unified.scan.exclude),
        "detect_packages": unified.scan.detect_packages,
        "items": list(unified.items),
    }
    return load_config(
        repository=overrides.get("repository"),
        state_dir=overrides.get("state_dir"),
        backup_dir=overrides.get("backup_dir"),
        debug=overrides.get("debug", False),
        yaml_fallbacks={k: v for k, v in fallbacks.items() if v is not None},
    )
