"""Deployment records and progress state.

A ``DeploymentRecord`` is the single tagged record type written to the history
ledger for deployments, rollbacks, restores and uploads alike; ``is_rollback``
and ``kind`` distinguish them. ``SyncProgress`` is the transient state that lets one
logical deployment span several invocations.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class Outcome(Enum):
    """Terminal outcome of a deployment or rollback."""

    SUCCESS = "success"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"  # Failed, then restored from the pre-deploy snapshot


class RunKind(Enum):
    """What a run moves: repository to site, or site to repository."""

    DEPLOY = "deploy"
    UPLOAD = "upload"  # Initial or full sync of the site into the repository


class ProgressStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


class OrchestratorState(Enum):
    """States of the deployment state machine."""

    IDLE = "idle"
    LOCKED = "locked"
    SNAPSHOTTING = "snapshotting"
    APPLYING = "applying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class DeploymentRecord:
    """One entry in the deployment history."""

    id: str
    timestamp: str  # ISO 8601, UTC
    actor: str
    commit: str
    branch: str
    outcome: Outcome
    message: str = ""
    snapshot_id: str | None = None
    is_rollback: bool = False
    ref: str = ""  # The ref as requested (branch, tag or SHA)
    changes: dict[str, int] = field(default_factory=dict)
    kind: RunKind = RunKind.DEPLOY

    @property
    def short_commit(self) -> str:
        return self.commit[:8]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        data["kind"] = self.kind.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeploymentRecord:
        return cls(
            id=data["id"],
            timestamp=data.get("timestamp", ""),
            actor=data.get("actor", ""),
            commit=data.get("commit", ""),
            branch=data.get("branch", ""),
            outcome=Outcome(data.get("outcome", Outcome.SUCCESS.value)),
            message=data.get("message", ""),
            snapshot_id=data.get("snapshot_id"),
            is_rollback=bool(data.get("is_rollback", False)),
            ref=data.get("ref", ""),
            changes=dict(data.get("changes", {})),
            kind=RunKind(data.get("kind", RunKind.DEPLOY.value)),
        )


@dataclass
class SyncProgress:
    """Progress of a resumable, multi-step deploy or upload.

    The first four fields are what gets reported back to triggers; the rest
    is the context a later invocation needs to pick the run up again.
    """

    current_step: int = 0
    total_steps: int = 0
    status: ProgressStatus = ProgressStatus.PENDING
    detail: str = ""

    run_id: str = ""
    state: OrchestratorState = OrchestratorState.IDLE
    ref: str = ""
    commit: str = ""
    branch: str = ""
    actor: str = ""
    holder: str = ""  # Lock holder id of the run
    snapshot_id: str | None = None
    staging_dir: str = ""
    created_paths: list[str] = field(default_factory=list)  # Top-level paths absent before the run
    change_counts: dict[str, int] = field(default_factory=dict)  # Diff of the first invocation
    is_rollback: bool = False
    rollback_target: str = ""
    started_at: str = ""
    updated_at: str = ""
    invocations: int = 0
    kind: RunKind = RunKind.DEPLOY
    uploaded: list[str] = field(default_factory=list)  # Blob SHAs already in the repository
    commit_message: str = ""

    @property
    def percent(self) -> int:
        if self.total_steps <= 0:
            return 0
        return min(100, int(self.current_step * 100 / self.total_steps))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["state"] = self.state.value
        data["kind"] = self.kind.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncProgress:
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        known["status"] = ProgressStatus(known.get("status", ProgressStatus.PENDING.value))
        known["state"] = OrchestratorState(known.get("state", OrchestratorState.IDLE.value))
        known["created_paths"] = list(known.get("created_paths", []))
        known["change_counts"] = dict(known.get("change_counts", {}))
        known["kind"] = RunKind(known.get("kind", RunKind.DEPLOY.value))
        known["uploaded"] = list(known.get("uploaded", []))
        return cls(**known)
