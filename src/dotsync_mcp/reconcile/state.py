"""Sync state persistence layer.

Manages the JSON state file that records, per ``(item_id, rel_path)``, the
fingerprint pair written at the most recent successful synchronisation.
These baselines are what the classifier compares each side against.

Key design choices:

* **In-memory until save** -- ``get``/``set`` never touch disk; callers
  call ``save()`` once after a batch of synchronisations.
* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Corruption tolerant** -- an unreadable or malformed state file loads
  as empty state ("everything looks new") with a warning, never an error.
* **Algorithm tagged** -- each entry records the digest algorithm; entries
  from another algorithm are invisible to ``get()``.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

from .hasher import DEFAULT_ALGORITHM
from .models import SyncStateEntry

logger = logging.getLogger(__name__)

STATE_VERSION = 1
STATE_FILENAME = "sync_state.json"


def state_key(item_id: str, rel_path: str) -> str:
    """Return the persisted key for an item/path pair."""
    return f"{item_id}/{rel_path}"


class StateStore:
    """Load, query, update and save the last-synchronised fingerprints.

    Single-owner object: not safe for concurrent use.

    Args:
        state_path: Path of the JSON state file.
        algorithm: Digest algorithm that new entries are tagged with.
    """

    def __init__(
        self, state_path: Path, algorithm: str = DEFAULT_ALGORITHM
    ) -> None:
        self.state_path = Path(state_path)
        self.algorithm = algorithm
        self._state: dict = self._empty_state()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Read the state file into memory.

        A missing file yields empty state.  A malformed file (invalid JSON,
        wrong shape, undecodable) also yields empty state and is logged.
        """
        if not self.state_path.exists():
            self._state = self._empty_state()
            return

        try:
            with open(self.state_path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning(
                "Ignoring unreadable sync state %s: %s",
                self.state_path,
                exc,
            )
            self._state = self._empty_state()
            return

        if not isinstance(data, dict) or not isinstance(
            data.get("entries"), dict
        ):
            logger.warning(
                "Ignoring malformed sync state %s", self.state_path
            )
            self._state = self._empty_state()
            return

        entries: dict[str, dict] = {}
        for key, raw in data["entries"].items():
            if isinstance(raw, dict):
                entries[key] = raw
            else:
                logger.warning(
                    "Dropping malformed state entry %r in %s",
                    key,
                    self.state_path,
                )
        self._state = {
            "version": data.get("version", STATE_VERSION),
            "algorithm": data.get("algorithm", self.algorithm),
            "last_sync": data.get("last_sync"),
            "entries": entries,
        }

    def save(self) -> None:
        """Persist state to disk atomically.

        Writes to a temporary file in the same directory then atomically
        replaces the target.  Creates the parent directory if needed.
        """
        directory = self.state_path.parent
        directory.mkdir(parents=True, exist_ok=True)
        self._state["algorithm"] = self.algorithm

        fd, tmp_path = tempfile.mkstemp(dir=str(directory), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._state, fh, indent=2, sort_keys=True)
            os.replace(tmp_path, self.state_path)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        logger.debug(
            "Saved %d state entries to %s", len(self), self.state_path
        )

    # ------------------------------------------------------------------
    # Entry helpers
    # ------------------------------------------------------------------

    def get(self, item_id: str, rel_path: str) -> SyncStateEntry | None:
        """Return the baseline for *item_id*/*rel_path*, or ``None``.

        Entries produced by a different digest algorithm are treated as
        absent.
        """
        raw = self._state["entries"].get(state_key(item_id, rel_path))
        if raw is None:
            return None
        if raw.get("algorithm", self.algorithm) != self.algorithm:
            return None
        return SyncStateEntry(
            last_local_fingerprint=raw.get("last_local_fingerprint"),
            last_repository_fingerprint=raw.get(
                "last_repository_fingerprint"
            ),
            algorithm=raw.get("algorithm", self.algorithm),
            synced_at=raw.get("synced_at"),
        )

    def set(
        self,
        item_id: str,
        rel_path: str,
        local_fingerprint: str | None,
        repository_fingerprint: str | None,
    ) -> None:
        """Upsert the baseline for *item_id*/*rel_path* (in memory)."""
        now = datetime.now(timezone.utc).isoformat()
        self._state["entries"][state_key(item_id, rel_path)] = {
            "item_id": item_id,
            "rel_path": rel_path,
            "last_local_fingerprint": local_fingerprint,
            "last_repository_fingerprint": repository_fingerprint,
            "algorithm": self.algorithm,
            "synced_at": now,
        }
        self._state["last_sync"] = now

    def remove(self, item_id: str, rel_path: str) -> None:
        """Remove the entry for *item_id*/*rel_path*.  No-op if absent."""
        self._state["entries"].pop(state_key(item_id, rel_path), None)

    def prune(self, live_keys: Iterable[str]) -> int:
        """Drop entries whose key is not in *live_keys*.

        Returns:
            Number of entries removed.
        """
        live = set(live_keys)
        stale = [k for k in self._state["entries"] if k not in live]
        for key in stale:
            del self._state["entries"][key]
        if stale:
            logger.info("Pruned %d stale state entries", len(stale))
        return len(stale)

    def clear(self) -> None:
        """Forget all entries (in memory)."""
        self._state = self._empty_state()

    def keys(self) -> list[str]:
        return list(self._state["entries"])

    @property
    def last_sync(self) -> str | None:
        """ISO 8601 timestamp of the most recent ``set()``."""
        return self._state.get("last_sync")

    def __len__(self) -> int:
        return len(self._state["entries"])

    def __contains__(self, key: object) -> bool:
        return key in self._state["entries"]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _empty_state(self) -> dict:
        return {
            "version": STATE_VERSION,
            "algorithm": self.algorithm,
            "last_sync": None,
            "entries": {},
        }
