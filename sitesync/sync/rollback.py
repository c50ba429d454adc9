"""Rollback resolver — turn a rollback target into a concrete plan.

A target is a deployment id, a commit SHA (full or abbreviated), or one of the
keywords ``previous``/``last``. The resolver only decides *how* to roll back;
the orchestrator executes the plan under the deployment lock.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from sitesync.models.deployment import DeploymentRecord
from sitesync.result import ErrorKind, Result
from sitesync.sync.ledger import HistoryLedger

KEYWORDS = ("previous", "last")
_SHA_RE = re.compile(r"^[0-9a-fA-F]{7,40}$")


class RollbackStrategy(Enum):
    RESTORE_SNAPSHOT = "restore_snapshot"  # Falls back to re-deploying the commit
    REDEPLOY_COMMIT = "redeploy_commit"


@dataclass
class RollbackPlan:
    """How to get back to a previous state."""

    strategy: RollbackStrategy
    target: str
    commit: str = ""
    branch: str = ""
    snapshot_id: str | None = None
    deployment_id: str | None = None
    description: str = ""

    @property
    def can_fall_back_to_commit(self) -> bool:
        return self.strategy is RollbackStrategy.RESTORE_SNAPSHOT and bool(self.commit)


def looks_like_commit(value: str) -> bool:
    return bool(_SHA_RE.match(value))


class RollbackResolver:
    """Resolves rollback targets against the history ledger."""

    def __init__(self, ledger: HistoryLedger):
        self.ledger = ledger

    def resolve(self, target: str) -> Result:
        """Return a ``Result`` carrying a ``RollbackPlan``."""
        target = (target or "").strip()
        if not target:
            return Result.failure(ErrorKind.NOT_FOUND, "No rollback target given")

        if target.lower() in KEYWORDS:
            successes = self.ledger.successful_deployments()
            if len(successes) < 2:
                return Result.failure(
                    ErrorKind.NO_PREVIOUS_DEPLOYMENT, "No previous successful deployment found"
                )
            return self._plan_for_record(target, successes[1])

        record = self.ledger.find_by_id(target)
        if record is not None:
            return self._plan_for_record(target, record)

        record = self.ledger.find_by_commit(target)
        if record is not None:
            return self._plan_for_record(target, record)

        if looks_like_commit(target):
            return Result.success(
                RollbackPlan(
                    strategy=RollbackStrategy.REDEPLOY_COMMIT,
                    target=target,
                    commit=target,
                    description=f"Re-deploy commit {target[:8]} (not in deployment history)",
                )
            )

        return Result.failure(
            ErrorKind.NOT_FOUND, f"No deployment or commit matches {target!r}"
        )

    def _plan_for_record(self, target: str, record: DeploymentRecord) -> Result:
        if record.snapshot_id:
            plan = RollbackPlan(
                strategy=RollbackStrategy.RESTORE_SNAPSHOT,
                target=target,
                commit=record.commit,
                branch=record.branch,
                snapshot_id=record.snapshot_id,
                deployment_id=record.id,
                description=(
                    f"Restore snapshot {record.snapshot_id} taken before deployment {record.id}"
                    + (f", falling back to commit {record.short_commit}" if record.commit else "")
                ),
            )
            return Result.success(plan)

        if record.commit:
            return Result.success(
                RollbackPlan(
                    strategy=RollbackStrategy.REDEPLOY_COMMIT,
                    target=target,
                    commit=record.commit,
                    branch=record.branch,
                    deployment_id=record.id,
                    description=f"Re-deploy commit {record.short_commit} from deployment {record.id}",
                )
            )

        return Result.failure(
            ErrorKind.NOT_FOUND,
            f"Deployment {record.id} has neither a snapshot nor a commit to roll back to",
        )
