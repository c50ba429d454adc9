"""Scheduled check — the periodic tick that resumes runs and looks for updates.

Meant to be driven by cron (``sitesync check``) or any external scheduler.
"""

from __future__ import annotations

import logging

from sitesync.config import Settings
from sitesync.remote.base import Repository
from sitesync.result import ErrorKind, RemoteError
from sitesync.store.kv import KeyValueStore
from sitesync.sync.orchestrator import (
    LAST_DEPLOYED_KEY,
    LATEST_COMMIT_KEY,
    UPDATE_AVAILABLE_KEY,
    DeploymentOrchestrator,
    OperationResult,
    OperationStatus,
)

logger = logging.getLogger(__name__)

SCHEDULER_ACTOR = "scheduler"


class ScheduledCheck:
    def __init__(
        self,
        settings: Settings,
        orchestrator: DeploymentOrchestrator,
        repository: Repository | None = None,
        store: KeyValueStore | None = None,
    ):
        self.settings = settings
        self.orchestrator = orchestrator
        self.repository = repository or orchestrator.repository
        self.store = store or orchestrator.store

    def tick(self) -> OperationResult:
        """Run one check.

        A suspended run gets its next chunk; otherwise the branch head is
        compared with the last deployed commit and either deployed
        (``auto_deploy``) or flagged as an available update.
        """
        if self.orchestrator.progress_store.load() is not None:
            return self.orchestrator.resume(actor=SCHEDULER_ACTOR)
        if self.orchestrator.lock.is_held():
            return OperationResult(OperationStatus.BUSY, "Deployment in progress, skipping check", error=ErrorKind.BUSY)

        branch = self.settings.branch
        try:
            head = self.repository.get_commit(branch)
        except RemoteError as exc:
            logger.error("Update check for %s failed: %s", branch, exc.message)
            return OperationResult(
                OperationStatus.SKIPPED, f"Could not check {branch}: {exc.message}", error=ErrorKind.REMOTE_ERROR
            )

        self.store.set(LATEST_COMMIT_KEY, head.sha)
        if head.sha == self.store.get(LAST_DEPLOYED_KEY, ""):
            self.store.delete(UPDATE_AVAILABLE_KEY)
            return OperationResult(OperationStatus.IDLE, f"Up to date with {branch} ({head.short_sha})")

        if self.settings.auto_deploy:
            logger.info("New commit %s on %s, deploying", head.short_sha, branch)
            return self.orchestrator.deploy(head.sha, actor=SCHEDULER_ACTOR)

        self.store.set(UPDATE_AVAILABLE_KEY, True)
        logger.info("New commit %s on %s; auto-deploy is off", head.short_sha, branch)
        return OperationResult(
            OperationStatus.SUCCEEDED,
            f"Update available on {branch}: {head.short_sha} {head.summary}".rstrip(),
            details={LATEST_COMMIT_KEY: head.sha},
        )
