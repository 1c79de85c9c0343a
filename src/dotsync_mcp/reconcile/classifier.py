"""Divergence classification using per-side baselines.

Each side is compared against its *own* fingerprint from the last
successful synchronisation; local and repository fingerprints are only
compared with each other to break ties (first sight, or both sides
changed).  A conflict is a true conflict only when both sides moved away
from the baseline to different content.
"""

from __future__ import annotations

from .models import ConflictOutcome, SyncStateEntry


def classify(
    local_fingerprint: str | None,
    repository_fingerprint: str | None,
    baseline: SyncStateEntry | None,
) -> ConflictOutcome | None:
    """Classify one file's divergence state.

    Args:
        local_fingerprint: Current local digest, ``None`` if absent.
        repository_fingerprint: Current repository digest, ``None`` if
            absent.
        baseline: Last-synchronised pair, ``None`` if never synced.

    Returns:
        The outcome, or ``None`` when the file exists on neither side.
    """
    local_exists = local_fingerprint is not None
    repository_exists = repository_fingerprint is not None

    if not local_exists and not repository_exists:
        return None

    if baseline is None:
        return classify_without_history(
            local_fingerprint, repository_fingerprint
        )

    last_local = baseline.last_local_fingerprint
    last_repository = baseline.last_repository_fingerprint

    # Deletions: absent now, present at last sync
    if not local_exists and last_local is not None:
        return ConflictOutcome.LOCAL_DELETED
    if not repository_exists and last_repository is not None:
        return ConflictOutcome.REPOSITORY_DELETED

    local_changed = local_fingerprint != last_local
    repository_changed = repository_fingerprint != last_repository

    if local_changed and repository_changed:
        if local_fingerprint == repository_fingerprint:
            # Independently converged on identical content.
            return ConflictOutcome.UNCHANGED
        return ConflictOutcome.BOTH_MODIFIED

    if local_changed:
        return ConflictOutcome.LOCAL_MODIFIED

    if repository_changed:
        return ConflictOutcome.REPOSITORY_MODIFIED

    return ConflictOutcome.UNCHANGED


def classify_without_history(
    local_fingerprint: str | None,
    repository_fingerprint: str | None,
) -> ConflictOutcome | None:
    """Classify a file that has no recorded baseline.

    Both present and different is a first-sight conflict: with no common
    ancestor there is nothing to say which side moved.
    """
    if local_fingerprint is None and repository_fingerprint is None:
        return None
    if repository_fingerprint is None:
        return ConflictOutcome.LOCAL_NEW
    if local_fingerprint is None:
        return ConflictOutcome.REPOSITORY_NEW
    if local_fingerprint == repository_fingerprint:
        return ConflictOutcome.UNCHANGED
    return ConflictOutcome.BOTH_MODIFIED
