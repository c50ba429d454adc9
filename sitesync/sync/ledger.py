"""History ledger — bounded, newest-first record of deployments and rollbacks.

Lookups are linear scans. The ledger is capped (100 entries by default), so
the list stays small enough that an index would buy nothing.
"""

from __future__ import annotations

import uuid

from sitesync.models.deployment import DeploymentRecord, Outcome, RunKind
from sitesync.store.kv import KeyValueStore

DEFAULT_HISTORY_KEY = "deployment_history"
DEFAULT_MAX_ENTRIES = 100
MIN_COMMIT_PREFIX = 7


def new_deployment_id() -> str:
    return f"deploy-{uuid.uuid4().hex[:13]}"


class HistoryLedger:
    """Append-only deployment history stored under one key."""

    def __init__(
        self,
        store: KeyValueStore,
        key: str = DEFAULT_HISTORY_KEY,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        self.store = store
        self.key = key
        self.max_entries = max_entries

    def _load(self) -> list[DeploymentRecord]:
        records = []
        for item in self.store.get(self.key, []) or []:
            try:
                records.append(DeploymentRecord.from_dict(item))
            except (KeyError, TypeError, ValueError):
                continue
        return records

    def append(self, record: DeploymentRecord) -> DeploymentRecord:
        """Add a record at the head of the history, dropping the oldest past the bound.

        The write is a compare-and-set on the whole list, retried until no
        other writer got in between the read and the swap.
        """
        entry = record.to_dict()
        while True:
            current = self.store.get(self.key)
            raw = [entry] + list(current or [])
            if self.max_entries > 0:
                raw = raw[: self.max_entries]
            if self.store.compare_and_set(self.key, current, raw):
                return record

    def list(self, limit: int = 0) -> list[DeploymentRecord]:
        """Records newest first; ``limit <= 0`` returns everything."""
        records = self._load()
        return records[:limit] if limit > 0 else records

    def find_by_id(self, deployment_id: str) -> DeploymentRecord | None:
        for record in self._load():
            if record.id == deployment_id:
                return record
        return None

    def find_by_commit(self, commit: str) -> DeploymentRecord | None:
        """Newest record for ``commit``; abbreviated SHAs of 7+ characters match too."""
        commit = commit.strip().lower()
        if not commit:
            return None
        for record in self._load():
            recorded = record.commit.lower()
            if recorded == commit:
                return record
            if len(commit) >= MIN_COMMIT_PREFIX and recorded.startswith(commit):
                return record
        return None

    def successful_deployments(self) -> list[DeploymentRecord]:
        """Successful deployments from the repository, newest first.

        Rollbacks and uploads of the site into the repository are left out.
        """
        return [
            r for r in self._load()
            if r.outcome is Outcome.SUCCESS and not r.is_rollback and r.kind is RunKind.DEPLOY
        ]

    def latest_success(self) -> DeploymentRecord | None:
        successes = self.successful_deployments()
        return successes[0] if successes else None
