"""Data models shared across the deployment engine."""

from sitesync.models.changeset import ActionKind, ChangeSet, FileAction
from sitesync.models.deployment import (
    DeploymentRecord,
    OrchestratorState,
    Outcome,
    ProgressStatus,
    RunKind,
    SyncProgress,
)
from sitesync.models.lock import LockHandle, LockInfo
from sitesync.models.snapshot import Snapshot

__all__ = [
    "ActionKind",
    "ChangeSet",
    "FileAction",
    "DeploymentRecord",
    "OrchestratorState",
    "Outcome",
    "ProgressStatus",
    "RunKind",
    "SyncProgress",
    "LockHandle",
    "LockInfo",
    "Snapshot",
]
