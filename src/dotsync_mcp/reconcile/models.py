"""Pydantic models for the reconciliation engine.

Defines the core data contracts used across all reconcile modules:

- ``ConflictOutcome``: Closed enum of per-file divergence states.
- ``SyncAction``: Operations the engine may apply during a sync run.
- ``FileRecord``: One tracked file as seen by a single scan pass.
- ``SyncStateEntry``: Last-synchronised fingerprint pair for one file.
- ``Span``: One typed run of lines produced by the span differ.
- ``Hunk``: One independently resolvable region of divergence.
- ``ScanInventory``: Aggregate output of a scan pass.
- ``SyncResult`` / ``SyncReport``: Outcome of a sync run.
- ``BackupEntry`` / ``BackupComparison`` / ``RestoreResult``: Local
  backups taken before pulls, and restoring them.

Records produced by scanning are frozen.  ``Hunk`` is mutable because the
merge resolver updates its resolution in place.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class ConflictOutcome(str, Enum):
    """Divergence state of one file relative to its baseline."""

    UNCHANGED = "unchanged"
    LOCAL_MODIFIED = "local_modified"
    LOCAL_NEW = "local_new"
    REPOSITORY_MODIFIED = "repository_modified"
    REPOSITORY_NEW = "repository_new"
    BOTH_MODIFIED = "both_modified"
    LOCAL_DELETED = "local_deleted"
    REPOSITORY_DELETED = "repository_deleted"


class SyncAction(str, Enum):
    """Possible sync operations for a local/repository file pair."""

    SKIP = "skip"
    PUSH = "push"
    PULL = "pull"
    CONFLICT = "conflict"
    DELETE_REMOTE = "delete_remote"
    DELETE_LOCAL = "delete_local"


class HunkResolution(str, Enum):
    """Resolution state of a single hunk."""

    PENDING = "pending"
    KEEP_LOCAL = "keep_local"
    USE_REPOSITORY = "use_repository"
    MANUAL = "manual"


class SpanKind(str, Enum):
    EQUAL = "equal"
    INSERT = "insert"
    DELETE = "delete"


class FileRecord(BaseModel):
    """State of a single tracked file for one scan pass.

    Attributes:
        item_id: Logical item (application) the file belongs to.
        path: Absolute local path.
        rel_path: Key within the item, stable across machines.
        repository_path: Absolute path of the repository copy.
        is_dir: Directories are structural nodes and are never hashed.
        local_fingerprint: Digest of the local copy, ``None`` if absent.
        repository_fingerprint: Digest of the repository copy, ``None``
            if absent.
        outcome: Divergence classification.
        skipped: True when either side was too large to fingerprint.
    """

    item_id: str
    path: str
    rel_path: str
    repository_path: str
    is_dir: bool = False
    local_fingerprint: str | None = None
    repository_fingerprint: str | None = None
    outcome: ConflictOutcome
    skipped: bool = False

    model_config = {"frozen": True}

    @property
    def key(self) -> str:
        """State-store key for this record."""
        return f"{self.item_id}/{self.rel_path}"


class SyncStateEntry(BaseModel):
    """Fingerprints recorded at the most recent successful sync.

    Attributes:
        last_local_fingerprint: Local digest at last sync.
        last_repository_fingerprint: Repository digest at last sync.
        algorithm: Digest algorithm that produced both fingerprints.
        synced_at: ISO 8601 timestamp of the sync.
    """

    last_local_fingerprint: str | None = None
    last_repository_fingerprint: str | None = None
    algorithm: str = "sha256"
    synced_at: str | None = None

    model_config = {"frozen": True}


class Span(BaseModel):
    """A run of lines with one diff type.

    ``old_start`` indexes the local ("before") line list and ``new_start``
    the repository ("after") list, both 0-based.
    """

    kind: SpanKind
    lines: list[str]
    old_start: int
    new_start: int

    model_config = {"frozen": True}


class Hunk(BaseModel):
    """One contiguous region of divergence within a merge session.

    Attributes:
        index: Position within the session, stable for its lifetime.
        local_start: 0-based offset of ``local_lines`` in the local file.
        context_before: Unmodified lines immediately before the region.
        context_after: Unmodified lines immediately after the region.
        local_lines: Divergent lines from the local copy.
        repository_lines: Divergent lines from the repository copy.
        resolution: Current resolution state.
        manual_lines: Literal block used when resolution is ``MANUAL``.
    """

    index: int
    local_start: int
    context_before: list[str] = Field(default_factory=list)
    context_after: list[str] = Field(default_factory=list)
    local_lines: list[str] = Field(default_factory=list)
    repository_lines: list[str] = Field(default_factory=list)
    resolution: HunkResolution = HunkResolution.PENDING
    manual_lines: list[str] | None = None

    @property
    def local_end(self) -> int:
        """Offset one past the last divergent local line."""
        return self.local_start + len(self.local_lines)

    @property
    def is_resolved(self) -> bool:
        return self.resolution != HunkResolution.PENDING

    def resolved_lines(self) -> list[str]:
        """Return the block chosen by the current resolution.

        Raises:
            ValueError: If the hunk is still pending.
        """
        if self.resolution == HunkResolution.KEEP_LOCAL:
            return list(self.local_lines)
        if self.resolution == HunkResolution.USE_REPOSITORY:
            return list(self.repository_lines)
        if self.resolution == HunkResolution.MANUAL:
            return list(self.manual_lines or [])
        raise ValueError(f"Hunk {self.index} is not resolved")


class ScanInventory(BaseModel):
    """Aggregate output of one scan pass.

    Attributes:
        records: Classified file records.  Treat as a set; order carries
            no meaning.
        installed: Per-item installed flag (``None`` means unknown).
        errors: ``(location, message)`` pairs for skipped units.
        complete: False if any discovery unit failed outright.
        started_at: ISO 8601 timestamp when the scan started.
        completed_at: ISO 8601 timestamp when the scan completed.
    """

    records: list[FileRecord] = []
    installed: dict[str, bool | None] = {}
    errors: list[tuple[str, str]] = []
    complete: bool = True
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    def by_outcome(self, outcome: ConflictOutcome) -> list[FileRecord]:
        """Records with the given outcome."""
        return [r for r in self.records if r.outcome == outcome]

    @property
    def conflicts(self) -> list[FileRecord]:
        return self.by_outcome(ConflictOutcome.BOTH_MODIFIED)

    def find(self, item_id: str, rel_path: str) -> FileRecord | None:
        """Return the record for *item_id*/*rel_path*, or ``None``."""
        for record in self.records:
            if record.item_id == item_id and record.rel_path == rel_path:
                return record
        return None


class SyncResult(BaseModel):
    """Result of syncing one file.

    Attributes:
        item_id: Logical item the file belongs to.
        rel_path: Path relative to the item.
        outcome: Classification that drove the action.
        action: Sync action that was performed.
        success: Whether the sync operation succeeded.
        error: Error or informational message.
        backup_path: Backup of the overwritten local file, if any.
    """

    item_id: str
    rel_path: str
    outcome: ConflictOutcome | None = None
    action: SyncAction
    success: bool
    error: str | None = None
    backup_path: str | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for a full sync run.

    Attributes:
        direction: ``push``, ``pull`` or ``bidirectional``.
        dry_run: Whether this was a dry-run (no changes applied).
        results: List of individual sync results.
        started_at: ISO 8601 timestamp when sync started.
        completed_at: ISO 8601 timestamp when sync completed.
    """

    direction: str = "bidirectional"
    dry_run: bool = False
    results: list[SyncResult] = []
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    def _with_action(self, action: SyncAction) -> list[SyncResult]:
        return [r for r in self.results if r.action == action]

    @property
    def pushed(self) -> list[SyncResult]:
        """Results where action is PUSH."""
        return self._with_action(SyncAction.PUSH)

    @property
    def pulled(self) -> list[SyncResult]:
        """Results where action is PULL."""
        return self._with_action(SyncAction.PULL)

    @property
    def skipped(self) -> list[SyncResult]:
        """Results where action is SKIP."""
        return self._with_action(SyncAction.SKIP)

    @property
    def conflicts(self) -> list[SyncResult]:
        """Results where action is CONFLICT."""
        return self._with_action(SyncAction.CONFLICT)

    @property
    def deletions(self) -> list[SyncResult]:
        """Results with a (non-propagated) delete action."""
        return [
            r
            for r in self.results
            if r.action
            in (SyncAction.DELETE_LOCAL, SyncAction.DELETE_REMOTE)
        ]

    @property
    def errors(self) -> list[SyncResult]:
        """Results where success is False."""
        return [r for r in self.results if not r.success]

    def summary(self) -> str:
        """Format a human-readable summary of the sync run.

        Returns:
            Multi-line summary string with counts by action.
        """
        lines = [
            f"Sync report ({self.direction})"
            + (" (dry run)" if self.dry_run else ""),
            f"  Pushed:     {len(self.pushed)}",
            f"  Pulled:     {len(self.pulled)}",
            f"  Skipped:    {len(self.skipped)}",
            f"  Conflicts:  {len(self.conflicts)}",
            f"  Deletions:  {len(self.deletions)}",
            f"  Errors:     {len(self.errors)}",
            f"  Total:      {len(self.results)}",
        ]
        return "\n".join(lines)


class BackupEntry(BaseModel):
    """One backed-up local file.

    Attributes:
        item_id: Item the file belongs to.
        rel_path: Path relative to the item.
        snapshot: Timestamped backup folder name (``YYYYMMDD_HHMMSS``).
        backup_path: Absolute path of the backup copy.
        size: Size of the backup in bytes.
    """

    item_id: str
    rel_path: str
    snapshot: str
    backup_path: str
    size: int

    model_config = {"frozen": True}


class BackupComparison(BaseModel):
    """Difference between a backup and the current local file.

    ``lines_added`` and ``lines_removed`` count what restoring the backup
    would change in the local file.  Binary files are compared by
    content only and carry no diff.
    """

    item_id: str
    rel_path: str
    backup_path: str
    local_path: str
    local_exists: bool
    identical: bool
    binary: bool = False
    lines_added: int = 0
    lines_removed: int = 0
    diff: str = ""

    model_config = {"frozen": True}


class RestoreResult(BaseModel):
    """Outcome of restoring one backup over the local file.

    Attributes:
        item_id: Item the file belongs to.
        rel_path: Path relative to the item.
        backup_path: Backup that was restored.
        local_path: Local file that was overwritten.
        fingerprint: Digest of the restored local file.
        previous_backup: Backup of the local file taken before the
            restore, if one existed.
    """

    item_id: str
    rel_path: str
    backup_path: str
    local_path: str
    fingerprint: str
    previous_backup: str | None = None

    model_config = {"frozen": True}
