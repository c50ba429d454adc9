"""Persistence for the progress of a suspended, multi-invocation deployment."""

from __future__ import annotations

from datetime import datetime, timezone

from sitesync.models.deployment import SyncProgress
from sitesync.store.kv import KeyValueStore

DEFAULT_PROGRESS_KEY = "sync_progress"


class ProgressStore:
    """Loads and saves the single in-flight ``SyncProgress``."""

    def __init__(self, store: KeyValueStore, key: str = DEFAULT_PROGRESS_KEY):
        self.store = store
        self.key = key

    def load(self) -> SyncProgress | None:
        data = self.store.get(self.key)
        if not data:
            return None
        try:
            return SyncProgress.from_dict(data)
        except (TypeError, ValueError):
            return None

    def save(self, progress: SyncProgress) -> SyncProgress:
        progress.updated_at = datetime.now(timezone.utc).isoformat()
        self.store.set(self.key, progress.to_dict())
        return progress

    def clear(self) -> None:
        self.store.delete(self.key)
