"""Reconciliation engine: scan, classify, sync and merge.

The ``ReconcileEngine`` ties together the scanner, hasher, state store,
classifier and merge resolver.  It:

1. Scans the configured items (parallel discovery and hashing).
2. Classifies every discovered path against its stored baseline.
3. Applies the outcomes that are safe to apply silently (``sync``).
4. Opens, resolves and commits hunk-level merges for conflicts.
5. Lists, compares and restores the local backups taken before pulls.

Every state mutation is batched: the state file is written once at the
end of a sync run or after a merge commit.  Error handling is per file: a
single failure does not abort a sync run.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from ..config_schema import ItemDefinition
from ..file_handler import (
    backup_file,
    copy_file,
    list_backup_files,
    read_file_with_encoding,
    validate_rel_path,
)
from .classifier import classify, classify_without_history
from .differ import diff_stats, diff_texts, generate_diff, has_changes, is_binary
from .errors import HashMismatchError
from .hasher import SKIPPED, Hasher
from .merge import MergeResolver, MergeSession
from .models import (
    BackupComparison,
    BackupEntry,
    ConflictOutcome,
    FileRecord,
    HunkResolution,
    RestoreResult,
    ScanInventory,
    SyncAction,
    SyncReport,
    SyncResult,
)
from .scanner import (
    DiscoveredFile,
    InstalledPackageCache,
    Scanner,
    builtin_items,
    expand_path,
)
from .state import StateStore

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

DIRECTIONS = ("push", "pull", "bidirectional")

# Existence marker for classifying directories and unhashed files.
_PRESENT = "present"

_ACTION_FOR_OUTCOME = {
    ConflictOutcome.UNCHANGED: SyncAction.SKIP,
    ConflictOutcome.LOCAL_NEW: SyncAction.PUSH,
    ConflictOutcome.LOCAL_MODIFIED: SyncAction.PUSH,
    ConflictOutcome.REPOSITORY_NEW: SyncAction.PULL,
    ConflictOutcome.REPOSITORY_MODIFIED: SyncAction.PULL,
    ConflictOutcome.BOTH_MODIFIED: SyncAction.CONFLICT,
    ConflictOutcome.LOCAL_DELETED: SyncAction.DELETE_REMOTE,
    ConflictOutcome.REPOSITORY_DELETED: SyncAction.DELETE_LOCAL,
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ReconcileEngine:
    """Orchestrate scanning, synchronisation and merging.

    Args:
        repository_root: Root of the dotfiles repository.
        items: Tracked item definitions.
        state: Baseline store (loaded by ``load()``).
        hasher: Shared hasher.
        scanner: Discovery component.
        resolver: Merge session owner.
        backup_dir: Where local files are copied before a pull.
        home: Home directory used for ``~`` expansion.
    """

    def __init__(
        self,
        repository_root: Path,
        items: list[ItemDefinition],
        state: StateStore,
        hasher: Hasher,
        scanner: Scanner,
        resolver: MergeResolver,
        backup_dir: Path,
        home: Path | None = None,
    ) -> None:
        self.repository_root = Path(repository_root)
        self.items = list(items)
        self.state = state
        self.hasher = hasher
        self.scanner = scanner
        self.resolver = resolver
        self.backup_dir = Path(backup_dir)
        self.home = home or Path.home()

    @classmethod
    def from_config(
        cls,
        config: Config,
        package_cache: InstalledPackageCache | None = None,
        home: Path | None = None,
    ) -> ReconcileEngine:
        """Build an engine from a runtime ``Config``."""
        hasher = Hasher(max_file_size=config.max_file_size or None)
        state = StateStore(config.state_path, algorithm=hasher.algorithm)
        scanner = Scanner(
            repository_root=config.repository,
            hasher=hasher,
            max_workers=config.max_workers,
            max_depth=config.max_depth,
            max_files_per_dir=config.max_files_per_dir,
            exclude=config.exclude,
            package_cache=package_cache,
            home=home,
        )
        resolver = MergeResolver(
            state, hasher, max_file_size=config.max_file_size or None
        )
        return cls(
            repository_root=config.repository,
            items=config.items or builtin_items(),
            state=state,
            hasher=hasher,
            scanner=scanner,
            resolver=resolver,
            backup_dir=config.backup_dir,
            home=home,
        )

    def load(self) -> None:
        """Load persisted baselines."""
        self.state.load()
        logger.info(
            "Loaded %d state entries from %s",
            len(self.state),
            self.state.state_path,
        )

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def get_item(self, item_id: str) -> ItemDefinition:
        """Return the definition for *item_id*.

        Raises:
            ValueError: If the item is not configured.
        """
        for item in self.items:
            if item.id == item_id:
                return item
        known = ", ".join(sorted(i.id for i in self.items))
        raise ValueError(f"Unknown item '{item_id}'. Configured items: {known}")

    def select_items(self, item_ids: list[str] | None) -> list[ItemDefinition]:
        if not item_ids:
            return list(self.items)
        return [self.get_item(item_id) for item_id in item_ids]

    def resolve_paths(self, item_id: str, rel_path: str) -> tuple[Path, Path]:
        """Map *item_id*/*rel_path* to ``(local_path, repository_path)``.

        Raises:
            ValueError: If the item is unknown or no configured path of the
                item covers *rel_path*.
        """
        validate_rel_path(rel_path)
        item = self.get_item(item_id)
        for config_path in item.config_paths:
            local_root = expand_path(config_path, self.home)
            name = local_root.name
            if rel_path == name or rel_path.startswith(name + "/"):
                return (
                    local_root.parent / rel_path,
                    self.repository_root / item_id / rel_path,
                )
        raise ValueError(
            f"'{rel_path}' is not under any configured path of '{item_id}'"
        )

    def locate(self, path: Path) -> tuple[str, str]:
        """Map an absolute local or repository path to ``(item_id, rel_path)``.

        Raises:
            ValueError: If no configured item covers *path*.
        """
        path = Path(path)
        if path.is_relative_to(self.repository_root):
            parts = path.relative_to(self.repository_root).parts
            if len(parts) >= 2:
                self.get_item(parts[0])
                return parts[0], "/".join(parts[1:])

        for item in self.items:
            for config_path in item.config_paths:
                local_root = expand_path(config_path, self.home)
                if path == local_root or path.is_relative_to(local_root):
                    rel = Path(local_root.name) / path.relative_to(local_root)
                    return item.id, rel.as_posix()
        raise ValueError(f"{path} is not covered by any configured item")

    # ------------------------------------------------------------------
    # Scan + classify
    # ------------------------------------------------------------------

    def scan(self, item_ids: list[str] | None = None) -> ScanInventory:
        """Discover, fingerprint and classify the selected items."""
        started_at = _now()
        discovery = self.scanner.scan(self.select_items(item_ids))

        records = []
        for found in discovery.files:
            record = self.classify(found)
            if record is not None:
                records.append(record)

        return ScanInventory(
            records=records,
            installed=discovery.installed,
            errors=discovery.errors,
            complete=discovery.complete,
            started_at=started_at,
            completed_at=_now(),
        )

    def classify(self, found: DiscoveredFile) -> FileRecord | None:
        """Classify one discovered path against its baseline.

        Directories and files too large to hash are classified by
        existence only.
        """
        skipped = SKIPPED in (
            found.local_fingerprint,
            found.repository_fingerprint,
        )
        if found.is_dir or skipped:
            outcome = classify_without_history(
                _PRESENT if found.local_exists else None,
                _PRESENT if found.repository_exists else None,
            )
        else:
            outcome = classify(
                found.local_fingerprint,
                found.repository_fingerprint,
                self.state.get(found.item_id, found.rel_path),
            )
        if outcome is None:
            return None

        return FileRecord(
            item_id=found.item_id,
            path=str(found.local_path),
            rel_path=found.rel_path,
            repository_path=str(found.repository_path),
            is_dir=found.is_dir,
            local_fingerprint=found.local_fingerprint,
            repository_fingerprint=found.repository_fingerprint,
            outcome=outcome,
            skipped=skipped,
        )

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def sync(
        self,
        direction: str = "bidirectional",
        dry_run: bool = False,
        item_ids: list[str] | None = None,
        inventory: ScanInventory | None = None,
    ) -> SyncReport:
        """Apply the outcomes that are safe to apply without a prompt.

        LocalNew/LocalModified are pushed, RepositoryNew/RepositoryModified
        are pulled (after a backup of the local copy).  Conflicts are left
        for merge resolution and deletions are reported, not propagated.

        Args:
            direction: ``push``, ``pull`` or ``bidirectional``.
            dry_run: Report what would happen without touching disk.
            item_ids: Restrict to these items (default: all).
            inventory: Reuse a previous scan instead of scanning again.

        Raises:
            ValueError: If *direction* is unknown.
        """
        if direction not in DIRECTIONS:
            raise ValueError(
                f"Invalid direction '{direction}': must be one of {', '.join(DIRECTIONS)}"
            )

        started_at = _now()
        if inventory is None:
            inventory = self.scan(item_ids)
        elif item_ids:
            selected = set(item_ids)
            inventory = inventory.model_copy(
                update={
                    "records": [
                        r for r in inventory.records if r.item_id in selected
                    ]
                }
            )

        results: list[SyncResult] = []
        changed = False
        for record in inventory.records:
            if record.is_dir or record.outcome == ConflictOutcome.UNCHANGED:
                continue
            try:
                result = self._sync_record(record, direction, dry_run)
            except Exception as exc:
                logger.error("Error syncing %s: %s", record.key, exc)
                result = SyncResult(
                    item_id=record.item_id,
                    rel_path=record.rel_path,
                    outcome=record.outcome,
                    action=_ACTION_FOR_OUTCOME[record.outcome],
                    success=False,
                    error=str(exc),
                )
            if (
                result.success
                and not dry_run
                and result.action in (SyncAction.PUSH, SyncAction.PULL)
            ):
                changed = True
            results.append(result)

        if changed:
            self.state.save()

        report = SyncReport(
            direction=direction,
            dry_run=dry_run,
            results=results,
            started_at=started_at,
            completed_at=_now(),
        )
        logger.info(
            "Sync finished: %d pushed, %d pulled, %d conflicts, %d errors",
            len(report.pushed),
            len(report.pulled),
            len(report.conflicts),
            len(report.errors),
        )
        return report

    def _sync_record(
        self, record: FileRecord, direction: str, dry_run: bool
    ) -> SyncResult:
        action = self._filter_by_direction(
            _ACTION_FOR_OUTCOME[record.outcome], direction
        )

        def result(**kwargs) -> SyncResult:
            return SyncResult(
                item_id=record.item_id,
                rel_path=record.rel_path,
                outcome=record.outcome,
                **kwargs,
            )

        if action == SyncAction.SKIP:
            return result(
                action=action,
                success=True,
                error=f"not allowed by direction={direction}",
            )

        if record.skipped and action in (SyncAction.PUSH, SyncAction.PULL):
            logger.info("Not syncing %s: too large to verify", record.key)
            return result(
                action=SyncAction.SKIP,
                success=True,
                error="file too large to sync automatically",
            )

        if action == SyncAction.CONFLICT:
            return result(
                action=action,
                success=True,
                error="both sides changed; open a merge to resolve",
            )

        if action in (SyncAction.DELETE_REMOTE, SyncAction.DELETE_LOCAL):
            logger.info(
                "Delete propagation disabled for %s (action=%s)",
                record.key,
                action.value,
            )
            return result(
                action=action,
                success=True,
                error="delete propagation disabled",
            )

        if dry_run:
            return result(action=action, success=True)

        if action == SyncAction.PUSH:
            self._copy_verified(
                Path(record.path),
                Path(record.repository_path),
                record.local_fingerprint,
            )
            self.state.set(
                record.item_id,
                record.rel_path,
                record.local_fingerprint,
                record.local_fingerprint,
            )
            logger.info("Pushed %s", record.key)
            return result(action=action, success=True)

        local_path = Path(record.path)
        backup = backup_file(local_path, self.backup_dir, record.key)
        if backup is not None:
            logger.debug("Backed up %s to %s", local_path, backup)
        self._copy_verified(
            Path(record.repository_path),
            local_path,
            record.repository_fingerprint,
        )
        self.state.set(
            record.item_id,
            record.rel_path,
            record.repository_fingerprint,
            record.repository_fingerprint,
        )
        logger.info("Pulled %s", record.key)
        return result(
            action=action,
            success=True,
            backup_path=str(backup) if backup else None,
        )

    def _copy_verified(
        self, src: Path, dst: Path, expected: str | None
    ) -> None:
        """Copy *src* to *dst* and check the copy hashes to *expected*.

        A mismatch means *src* changed after the scan.
        """
        copy_file(src, dst)
        actual = self.hasher.fingerprint_uncached(dst)
        if expected is None or actual != expected:
            raise HashMismatchError(str(dst), expected or "", actual)

    @staticmethod
    def _filter_by_direction(action: SyncAction, direction: str) -> SyncAction:
        """Downgrade actions that are not allowed by *direction*."""
        if direction == "bidirectional":
            return action

        push_only = {SyncAction.PUSH, SyncAction.DELETE_REMOTE}
        pull_only = {SyncAction.PULL, SyncAction.DELETE_LOCAL}

        if (direction == "push" and action in pull_only) or (
            direction == "pull" and action in push_only
        ):
            logger.info(
                "Downgrading %s to SKIP (direction=%s)", action.value, direction
            )
            return SyncAction.SKIP
        return action

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def open_merge(self, item_id: str, rel_path: str) -> MergeSession:
        """Open a hunk-level merge for one file."""
        local_path, repository_path = self.resolve_paths(item_id, rel_path)
        return self.resolver.open(item_id, rel_path, local_path, repository_path)

    def get_merge(self, key: str) -> MergeSession:
        return self.resolver.get(key)

    def resolve_hunk(
        self,
        key: str,
        index: int,
        resolution: HunkResolution,
        content: str | None = None,
    ) -> MergeSession:
        """Resolve one hunk; *content* supplies a manual block."""
        manual_lines = (
            content.splitlines(True) if content is not None else None
        )
        self.resolver.resolve_hunk(key, index, resolution, manual_lines)
        return self.resolver.get(key)

    def resolve_all(self, key: str, resolution: HunkResolution) -> MergeSession:
        if resolution == HunkResolution.KEEP_LOCAL:
            return self.resolver.keep_all_local(key)
        if resolution == HunkResolution.USE_REPOSITORY:
            return self.resolver.use_all_repository(key)
        raise ValueError(f"Cannot apply '{resolution.value}' to all hunks")

    def commit_merge(self, key: str, push: bool = True) -> str:
        """Commit a merge session and persist the new baseline.

        With *push* the merged file is copied to the repository and both
        baseline fingerprints equal the merged digest, so the next scan
        classifies the file Unchanged.  Without it (or when the push
        fails) the repository baseline is kept, so the next scan reports
        the merge as LocalModified and ``sync`` pushes it instead of
        pulling the old repository copy over it.

        Args:
            key: Session key (``item_id/rel_path``).
            push: Also copy the merged file to the repository.

        Returns:
            Fingerprint of the merged content.
        """
        session = self.resolver.get(key)
        repository_fingerprint = self.hasher.fingerprint_uncached(
            session.repository_path
        )
        fingerprint = self.resolver.commit(key)

        if not push:
            self._keep_repository_baseline(
                session.item_id, session.rel_path, repository_fingerprint
            )
            self.state.save()
            return fingerprint

        try:
            self._copy_verified(
                session.local_path, session.repository_path, fingerprint
            )
        except (OSError, HashMismatchError):
            self._keep_repository_baseline(
                session.item_id, session.rel_path, repository_fingerprint
            )
            self.state.save()
            raise
        self.state.save()
        logger.info("Pushed merged %s to repository", key)
        return fingerprint

    def _keep_repository_baseline(
        self, item_id: str, rel_path: str, repository_fingerprint: str | None
    ) -> None:
        """Record a local-only change so the next sync pushes it.

        Both baseline fingerprints are set to the repository digest; with
        no repository copy the entry is dropped and the file reads as
        LocalNew.
        """
        if repository_fingerprint is None:
            self.state.remove(item_id, rel_path)
        else:
            self.state.set(
                item_id, rel_path, repository_fingerprint, repository_fingerprint
            )

    def cancel_merge(self, key: str) -> None:
        self.resolver.cancel(key)

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    def list_backups(self, item_ids: list[str] | None = None) -> list[BackupEntry]:
        """List local backups taken before pulls, newest first."""
        selected = set(item_ids) if item_ids else None
        entries = []
        for snapshot, relative, path in list_backup_files(self.backup_dir):
            item_id, _, rel_path = relative.partition("/")
            if not rel_path or (selected is not None and item_id not in selected):
                continue
            entries.append(
                BackupEntry(
                    item_id=item_id,
                    rel_path=rel_path,
                    snapshot=snapshot,
                    backup_path=str(path),
                    size=path.stat().st_size,
                )
            )
        return entries

    def compare_backup(self, backup_path: str | Path) -> BackupComparison:
        """Diff a backup against the current local file.

        The diff reads from the local file to the backup, i.e. it shows
        what ``restore_backup`` would change.
        """
        backup, item_id, rel_path = self._backup_target(backup_path)
        local_path, _ = self.resolve_paths(item_id, rel_path)
        common = {
            "item_id": item_id,
            "rel_path": rel_path,
            "backup_path": str(backup),
            "local_path": str(local_path),
            "local_exists": local_path.is_file(),
        }

        backup_raw = backup.read_bytes()
        local_raw = local_path.read_bytes() if local_path.is_file() else b""
        if is_binary(backup_raw) or is_binary(local_raw):
            return BackupComparison(
                identical=common["local_exists"] and backup_raw == local_raw,
                binary=True,
                **common,
            )

        backup_text, _ = read_file_with_encoding(backup)
        local_text = (
            read_file_with_encoding(local_path)[0] if local_path.is_file() else ""
        )
        spans = diff_texts(local_text, backup_text)
        added, removed = diff_stats(spans)
        return BackupComparison(
            identical=common["local_exists"] and not has_changes(spans),
            lines_added=added,
            lines_removed=removed,
            diff=generate_diff(
                local_text,
                backup_text,
                label_old=str(local_path),
                label_new=str(backup),
            ),
            **common,
        )

    def restore_backup(
        self, backup_path: str | Path, backup_current: bool = True
    ) -> RestoreResult:
        """Copy a backup over its local file.

        The current local file is backed up first (unless
        *backup_current* is false).  The restored content is treated as a
        local edit: the repository baseline is kept, so the next scan
        reports LocalModified (or Unchanged when the backup matches the
        repository) and ``sync`` pushes it.

        Raises:
            ValueError: If *backup_path* is not a file under the backup
                directory, or its item is not configured.
        """
        backup, item_id, rel_path = self._backup_target(backup_path)
        local_path, repository_path = self.resolve_paths(item_id, rel_path)

        previous = None
        if backup_current and local_path.is_file():
            previous = backup_file(
                local_path, self.backup_dir, f"{item_id}/{rel_path}"
            )

        copy_file(backup, local_path)
        fingerprint = self.hasher.fingerprint_uncached(local_path)
        expected = self.hasher.fingerprint_uncached(backup)
        if fingerprint is None or fingerprint != expected:
            raise HashMismatchError(str(local_path), expected or "", fingerprint)

        self._keep_repository_baseline(
            item_id,
            rel_path,
            self.hasher.fingerprint_uncached(repository_path),
        )
        self.state.save()
        logger.info("Restored %s/%s from %s", item_id, rel_path, backup)

        return RestoreResult(
            item_id=item_id,
            rel_path=rel_path,
            backup_path=str(backup),
            local_path=str(local_path),
            fingerprint=fingerprint,
            previous_backup=str(previous) if previous else None,
        )

    def _backup_target(self, backup_path: str | Path) -> tuple[Path, str, str]:
        """Validate *backup_path* and return ``(path, item_id, rel_path)``."""
        backup = Path(backup_path)
        if not backup.is_absolute():
            backup = self.backup_dir / backup
        if (
            ".." in backup.parts
            or not backup.is_relative_to(self.backup_dir)
            or not backup.is_file()
        ):
            raise ValueError(f"Not a backup file under {self.backup_dir}: {backup_path}")
        parts = backup.relative_to(self.backup_dir).parts
        if len(parts) < 3:
            raise ValueError(
                f"Backup {backup_path} is not in <snapshot>/<item>/<path> layout"
            )
        return backup, parts[1], "/".join(parts[2:])

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def prune_state(self, inventory: ScanInventory) -> int:
        """Drop baselines for paths absent from a complete inventory.

        Returns:
            Number of entries removed (0 when the inventory is partial).
        """
        if not inventory.complete:
            logger.warning("Not pruning state from an incomplete scan")
            return 0
        removed = self.state.prune(r.key for r in inventory.records)
        if removed:
            self.state.save()
        return removed

    def status(self) -> dict:
        """Summarise the engine's persistent and in-memory state."""
        return {
            "repository": str(self.repository_root),
            "state_path": str(self.state.state_path),
            "algorithm": self.state.algorithm,
            "tracked_entries": len(self.state),
            "last_sync": self.state.last_sync,
            "items": [item.id for item in self.items],
            "open_sessions": [s.key for s in self.resolver.sessions()],
        }
