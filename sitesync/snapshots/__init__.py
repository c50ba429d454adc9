"""Snapshot storage."""

from sitesync.snapshots.store import SnapshotStore, new_snapshot_id

__all__ = ["SnapshotStore", "new_snapshot_id"]
