"""Three-way reconciliation of a local file tree and a dotfiles repository.

Architecture
------------
Each tracked file has a *baseline*: the fingerprint pair recorded at its
last successful synchronisation.  Each side is compared against its own
baseline fingerprint, so a file is a true conflict only when both sides
moved away from the baseline to different content.  Conflicts are
resolved hunk by hunk and committed to the local copy.

Modules:

- ``hasher``     -- ``Hasher``: SHA-256 fingerprints with an mtime/size cache.
- ``state``      -- ``StateStore``: atomic JSON persistence of baselines.
- ``classifier`` -- ``classify``: per-file divergence outcome.
- ``differ``     -- ``diff_lines``: typed line spans via ``difflib``.
- ``hunks``      -- ``build_hunks``: spans grouped into resolvable hunks.
- ``merge``      -- ``MergeResolver`` / ``MergeSession``: hunk resolution
  and commit.
- ``scanner``    -- ``Scanner``: parallel discovery and hashing.
- ``engine``     -- ``ReconcileEngine``: scan, sync and merge orchestration.
- ``reporter``   -- Human-readable and JSON report formatting.
- ``models``     -- Data contracts.
- ``errors``     -- ``ReconcileError`` hierarchy.

Usage example
-------------
::

    from dotsync_mcp.config import load_config
    from dotsync_mcp.reconcile import (
        HunkResolution,
        ReconcileEngine,
        format_sync_report,
    )

    engine = ReconcileEngine.from_config(load_config())
    engine.load()

    preview = engine.sync(dry_run=True)
    print(format_sync_report(preview))

    session = engine.open_merge("zsh", ".zshrc")
    engine.resolve_all(session.key, HunkResolution.KEEP_LOCAL)
    engine.commit_merge(session.key)
"""

from .classifier import classify, classify_without_history
from .engine import ReconcileEngine
from .errors import (
    BinaryFileError,
    HashMismatchError,
    IdenticalFilesError,
    InvalidHunkIndexError,
    NoSuchSessionError,
    NotFullyResolvedError,
    ReconcileError,
    StaleSessionError,
)
from .hasher import SKIPPED, Hasher
from .merge import MergeResolver, MergeSession, format_hunk_preview
from .models import (
    ConflictOutcome,
    FileRecord,
    Hunk,
    HunkResolution,
    ScanInventory,
    SyncAction,
    SyncReport,
    SyncResult,
    SyncStateEntry,
)
from .reporter import (
    describe_outcome,
    format_dry_run_preview,
    format_inventory_report,
    format_sync_report,
    report_to_json,
)
from .scanner import InstalledPackageCache, Scanner
from .state import StateStore

__all__ = [
    "BinaryFileError",
    "ConflictOutcome",
    "FileRecord",
    "HashMismatchError",
    "Hasher",
    "Hunk",
    "HunkResolution",
    "IdenticalFilesError",
    "InstalledPackageCache",
    "InvalidHunkIndexError",
    "MergeResolver",
    "MergeSession",
    "NoSuchSessionError",
    "NotFullyResolvedError",
    "ReconcileEngine",
    "ReconcileError",
    "SKIPPED",
    "ScanInventory",
    "Scanner",
    "StaleSessionError",
    "StateStore",
    "SyncAction",
    "SyncReport",
    "SyncResult",
    "SyncStateEntry",
    "classify",
    "classify_without_history",
    "describe_outcome",
    "format_dry_run_preview",
    "format_hunk_preview",
    "format_inventory_report",
    "format_sync_report",
    "report_to_json",
]
