"""Deployment orchestrator: the state machine behind deploy, rollback, restore and upload.

One logical deployment runs as::

    IDLE -> LOCKED -> SNAPSHOTTING -> APPLYING -> SUCCEEDED | FAILED

``APPLYING`` is split into chunks of at most ``chunk_size`` file actions. A
run that does not finish in one invocation persists its ``SyncProgress`` and
keeps the lock, maintenance mode and staging directory; ``resume()`` picks it
up again. Every resumed chunk re-diffs staging against the live site, so
the persisted step counter is informational only.

Failures before the first write (remote errors, snapshot errors) release the
lock and leave the site untouched. Failures while applying restore the
pre-deploy snapshot and record the true outcome.

An upload runs the other way. It pushes the site's files into the repository
in chunks of blobs through the same progress and lock machinery, then
commits them as one tree.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from sitesync.config import Settings
from sitesync.diff.engine import CompareMode, DiffEngine
from sitesync.diff.tree import FileTree
from sitesync.models.changeset import ActionKind, ChangeSet, FileAction
from sitesync.models.deployment import (
    DeploymentRecord,
    OrchestratorState,
    Outcome,
    ProgressStatus,
    RunKind,
    SyncProgress,
)
from sitesync.models.lock import LockHandle
from sitesync.remote.archive import extract_archive
from sitesync.remote.base import Repository, TreeItem
from sitesync.result import ErrorKind, RemoteError
from sitesync.snapshots.store import SnapshotStore
from sitesync.store.kv import KeyValueStore
from sitesync.sync.ledger import HistoryLedger, new_deployment_id
from sitesync.sync.lock import DeploymentLock
from sitesync.sync.maintenance import FileMaintenanceMode, MaintenanceMode
from sitesync.sync.progress import ProgressStore
from sitesync.sync.rollback import RollbackPlan, RollbackResolver, RollbackStrategy
from sitesync.utils.fs import copy_path, exists, remove_path

logger = logging.getLogger(__name__)

LAST_DEPLOYED_KEY = "last_deployed_commit"
LATEST_COMMIT_KEY = "latest_commit"
UPDATE_AVAILABLE_KEY = "update_available"

# Refresh the lock TTL every this many applied actions
LOCK_REFRESH_INTERVAL = 100


class OperationStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"  # Failed while applying, site restored
    IN_PROGRESS = "in_progress"  # Suspended at a chunk boundary
    BUSY = "busy"
    SKIPPED = "skipped"  # Failed before touching the site
    NOT_FOUND = "not_found"
    IDLE = "idle"


@dataclass
class OperationResult:
    """What an orchestrator operation reports back to its trigger."""

    status: OperationStatus
    message: str
    record: DeploymentRecord | None = None
    progress: SyncProgress | None = None
    changes: ChangeSet | None = None
    error: ErrorKind | None = None
    warnings: list[str] = field(default_factory=list)
    items: list[Any] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status in (
            OperationStatus.SUCCEEDED,
            OperationStatus.IN_PROGRESS,
            OperationStatus.IDLE,
        )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DeploymentOrchestrator:
    """Coordinates lock, diff, snapshot, apply and history for one site.

    Every collaborator can be injected; defaults are built from ``settings``.
    """

    def __init__(
        self,
        settings: Settings,
        store: KeyValueStore,
        repository: Repository,
        snapshots: SnapshotStore | None = None,
        maintenance: MaintenanceMode | None = None,
        lock: DeploymentLock | None = None,
        ledger: HistoryLedger | None = None,
        progress_store: ProgressStore | None = None,
        diff_engine: DiffEngine | None = None,
    ):
        self.settings = settings
        self.store = store
        self.repository = repository
        self.site_root = settings.site_path
        self.snapshots = snapshots or SnapshotStore(
            settings.snapshot_dir,
            self.site_root,
            max_keep=settings.max_snapshots,
            platform_version=settings.platform_version,
        )
        self.maintenance = maintenance or FileMaintenanceMode(self.site_root)
        self.lock = lock or DeploymentLock(store)
        self.ledger = ledger or HistoryLedger(store, max_entries=settings.history_limit)
        self.progress_store = progress_store or ProgressStore(store)
        self.diff_engine = diff_engine or DiffEngine(
            settings.compare_mode, delete_removed=settings.delete_removed
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def deploy(self, ref: str = "", actor: str = "") -> OperationResult:
        """Deploy ``ref`` (branch, tag or SHA; default: the configured branch)."""
        ref = ref or self.settings.branch
        acquired = self.lock.try_acquire(self.settings.lock_ttl)
        if not acquired.ok:
            return self._busy(acquired.message)
        warnings = list(acquired.warnings)
        self._discard_leftover(warnings)
        return self._start(acquired.value, ref, actor, warnings=warnings)

    def rollback(self, target: str, actor: str = "") -> OperationResult:
        """Roll back to a deployment id, a commit SHA, or ``previous``/``last``."""
        resolved = RollbackResolver(self.ledger).resolve(target)
        if not resolved.ok:
            return OperationResult(OperationStatus.NOT_FOUND, resolved.message, error=resolved.error)
        plan: RollbackPlan = resolved.value

        acquired = self.lock.try_acquire(self.settings.lock_ttl)
        if not acquired.ok:
            return self._busy(acquired.message)
        warnings = list(acquired.warnings)
        self._discard_leftover(warnings)
        logger.info("Rolling back to %s: %s", target, plan.description)

        if plan.strategy is RollbackStrategy.RESTORE_SNAPSHOT:
            return self._restore(
                acquired.value,
                plan.snapshot_id,
                actor,
                target=target,
                commit=plan.commit,
                branch=plan.branch,
                fallback_to_commit=plan.can_fall_back_to_commit,
                warnings=warnings,
            )
        return self._start(
            acquired.value,
            plan.commit,
            actor,
            is_rollback=True,
            rollback_target=target,
            branch=plan.branch,
            warnings=warnings,
        )

    def resume(self, actor: str = "") -> OperationResult:
        """Continue a suspended run with its next chunk."""
        progress = self.progress_store.load()
        if progress is None:
            return OperationResult(OperationStatus.NOT_FOUND, "No suspended deployment to resume")

        reattached = self.lock.reattach(progress.holder, self.settings.lock_ttl)
        if not reattached.ok:
            return self._busy(reattached.message)
        handle: LockHandle = reattached.value
        warnings = list(reattached.warnings)
        logger.info(
            "Resuming run %s at step %d/%d (invocation %d)",
            progress.run_id, progress.current_step, progress.total_steps, progress.invocations + 1,
        )
        if progress.kind is RunKind.UPLOAD:
            return self._run_upload_chunk(handle, progress, warnings)
        if self.settings.maintenance_mode:
            self.maintenance.enable()
        return self._run_chunk(handle, progress, None, warnings)

    def restore_snapshot(self, snapshot_id: str, actor: str = "") -> OperationResult:
        """Put a stored snapshot back, protected by a pre-restore snapshot."""
        acquired = self.lock.try_acquire(self.settings.lock_ttl)
        if not acquired.ok:
            return self._busy(acquired.message)
        warnings = list(acquired.warnings)
        self._discard_leftover(warnings)
        return self._restore(acquired.value, snapshot_id, actor, target=snapshot_id, warnings=warnings)

    def upload(self, message: str = "", branch: str = "", actor: str = "") -> OperationResult:
        """Commit the live site's files to ``branch`` (initial or full sync).

        Blobs go up at most ``chunk_size`` per invocation. A run that does not
        finish keeps the lock and its progress like a chunked deployment, and
        ``resume()`` continues it. The last invocation writes one commit whose
        tree is exactly the site's non-ignored files. The site itself is never
        written, so there is no snapshot and no maintenance mode.
        """
        branch = branch or self.settings.branch
        acquired = self.lock.try_acquire(self.settings.lock_ttl)
        if not acquired.ok:
            return self._busy(acquired.message)
        warnings = list(acquired.warnings)
        self._discard_leftover(warnings)
        handle: LockHandle = acquired.value
        progress = SyncProgress(
            run_id=new_deployment_id(),
            state=OrchestratorState.APPLYING,
            status=ProgressStatus.RUNNING,
            ref=branch,
            branch=branch,
            actor=actor,
            holder=handle.holder,
            started_at=_now(),
            kind=RunKind.UPLOAD,
            commit_message=message or f"Sync site files ({self.site_root.name or 'site'})",
        )
        logger.info("Uploading %s to %s of %s", self.site_root, branch, self.repository.display_name)
        return self._run_upload_chunk(handle, progress, warnings)

    def preview(self, ref: str = "") -> OperationResult:
        """Compare the remote tree at ``ref`` with the live site. Writes nothing."""
        ref = ref or self.settings.branch
        try:
            commit = self.repository.get_commit(ref)
            remote_tree = self.repository.get_tree(commit.sha)
        except RemoteError as exc:
            return OperationResult(
                OperationStatus.SKIPPED, f"Could not read {ref}: {exc.message}", error=ErrorKind.REMOTE_ERROR
            )
        patterns = self._ignore_patterns()
        local_tree = FileTree.from_directory(self.site_root, patterns)
        engine = DiffEngine(CompareMode.STRICT, delete_removed=self.settings.delete_removed)
        changes = engine.compute(remote_tree, local_tree, patterns)
        if changes.is_empty:
            message = f"The site matches {ref} ({commit.short_sha})"
        else:
            message = f"{ref} ({commit.short_sha}) differs from the site: {changes.summary()}"
        return OperationResult(
            OperationStatus.SUCCEEDED,
            message,
            changes=changes,
            details={"commit": commit.sha, "ref": ref},
        )

    def status(self) -> OperationResult:
        """Current lock, progress and update state."""
        progress = self.progress_store.load()
        lock_info = self.lock.current()
        latest = self.ledger.list(limit=1)
        details = {
            "lock": lock_info.to_dict() if lock_info else None,
            "lock_held": self.lock.is_held(),
            LAST_DEPLOYED_KEY: self.store.get(LAST_DEPLOYED_KEY, ""),
            LATEST_COMMIT_KEY: self.store.get(LATEST_COMMIT_KEY, ""),
            UPDATE_AVAILABLE_KEY: bool(self.store.get(UPDATE_AVAILABLE_KEY, False)),
            "maintenance": self.maintenance.is_enabled(),
        }
        record = latest[0] if latest else None

        if progress is not None:
            return OperationResult(
                OperationStatus.IN_PROGRESS,
                f"Run {progress.run_id} suspended at step {progress.current_step}/{progress.total_steps}",
                record=record,
                progress=progress,
                details=details,
            )
        if details["lock_held"]:
            return OperationResult(
                OperationStatus.BUSY, f"Deployment in progress (lock held by {lock_info.holder})",
                record=record, details=details,
            )
        message = "Idle"
        if details[LAST_DEPLOYED_KEY]:
            message += f", last deployed commit {details[LAST_DEPLOYED_KEY][:8]}"
        if details[UPDATE_AVAILABLE_KEY]:
            message += f", update available ({str(details[LATEST_COMMIT_KEY])[:8]})"
        return OperationResult(OperationStatus.IDLE, message, record=record, details=details)

    def list_deployments(self, limit: int = 0) -> OperationResult:
        records = self.ledger.list(limit)
        return OperationResult(OperationStatus.SUCCEEDED, f"{len(records)} deployment(s)", items=records)

    def list_snapshots(self) -> OperationResult:
        snapshots = self.snapshots.list()
        return OperationResult(OperationStatus.SUCCEEDED, f"{len(snapshots)} snapshot(s)", items=snapshots)

    def force_unlock(self, abandon: bool = False, actor: str = "") -> OperationResult:
        """Clear the lock. With ``abandon`` the suspended run is discarded too."""
        info = self.lock.force_clear(actor)
        abandoned = None
        if abandon:
            abandoned = self.progress_store.load()
            if abandoned is not None:
                self._abandon(abandoned, f"Abandoned by {actor or 'operator'}")
            if self.settings.maintenance_mode:
                self.maintenance.disable()

        if info is None and abandoned is None:
            return OperationResult(OperationStatus.NOT_FOUND, "No deployment lock was held")
        parts = []
        if info is not None:
            parts.append(f"Cleared deployment lock held by {info.holder}")
        if abandoned is not None:
            parts.append(f"abandoned run {abandoned.run_id}")
        elif not abandon and self.progress_store.load() is not None:
            parts.append("the suspended run can still be resumed")
        return OperationResult(OperationStatus.SUCCEEDED, "; ".join(parts))

    # ------------------------------------------------------------------
    # Deploy state machine
    # ------------------------------------------------------------------

    def _start(
        self,
        handle: LockHandle,
        ref: str,
        actor: str,
        *,
        is_rollback: bool = False,
        rollback_target: str = "",
        branch: str = "",
        warnings: list[str] | None = None,
    ) -> OperationResult:
        warnings = warnings if warnings is not None else []
        run_id = new_deployment_id()
        staging = self.settings.staging_dir / run_id
        progress = SyncProgress(
            run_id=run_id,
            state=OrchestratorState.LOCKED,
            ref=ref,
            branch=branch or self.settings.branch,
            actor=actor,
            holder=handle.holder,
            staging_dir=str(staging),
            is_rollback=is_rollback,
            rollback_target=rollback_target,
            started_at=_now(),
        )

        try:
            commit = self.repository.get_commit(ref)
            progress.commit = commit.sha
            logger.info("Fetching %s (%s) from %s", ref, commit.short_sha, self.repository.display_name)
            remove_path(staging)
            extract_archive(self.repository.download_archive(commit.sha), staging)
            self.site_root.mkdir(parents=True, exist_ok=True)
            changes = self._diff(staging)
        except RemoteError as exc:
            return self._abort(handle, progress, f"Could not fetch {ref}: {exc.message}", ErrorKind.REMOTE_ERROR, warnings)
        except OSError as exc:
            return self._abort(handle, progress, f"Could not stage {ref}: {exc}", ErrorKind.APPLY_FAILED, warnings)

        progress.change_counts = changes.counts()
        if changes.is_empty:
            logger.info("Site already matches %s", progress.commit[:8])
            record = self._append_record(progress, Outcome.SUCCESS, f"Already up to date with {ref}")
            self._mark_deployed(progress)
            self._cleanup(handle, progress, maintenance=False)
            return OperationResult(
                OperationStatus.SUCCEEDED,
                f"Nothing to deploy: the site already matches {ref} ({commit.short_sha})",
                record=record,
                changes=changes,
                warnings=warnings,
            )

        # Snapshot everything the change set can touch
        progress.state = OrchestratorState.SNAPSHOTTING
        touched = changes.top_level_paths()
        progress.created_paths = [p for p in touched if not exists(self.site_root / p)]
        if self.settings.create_snapshot:
            candidates = self.settings.snapshot_paths or touched
            if any(exists(self.site_root / p) for p in candidates):
                created = self.snapshots.create(candidates, actor=actor or "sitesync")
                warnings.extend(created.warnings)
                if not created.ok:
                    return self._abort(
                        handle, progress, f"Pre-deploy snapshot failed: {created.message}",
                        ErrorKind.SNAPSHOT_FAILED, warnings,
                    )
                progress.snapshot_id = created.value.id
                logger.info("Created snapshot %s of %d path(s)", created.value.id, len(created.value.paths))
            else:
                logger.info("Nothing on the site to snapshot; fresh paths will be removed on failure")

        progress.state = OrchestratorState.APPLYING
        progress.status = ProgressStatus.RUNNING
        progress.total_steps = len(changes)
        if self.settings.maintenance_mode:
            self.maintenance.enable()
        return self._run_chunk(handle, progress, changes, warnings)

    def _run_chunk(
        self,
        handle: LockHandle,
        progress: SyncProgress,
        changes: ChangeSet | None,
        warnings: list[str],
    ) -> OperationResult:
        """Apply at most one chunk of actions, then finish or suspend.

        The lock, progress and maintenance mode outlive the call only when
        the run is suspended; every other exit goes through the cleanup in
        ``finally``.
        """
        progress.invocations += 1
        staging = Path(progress.staging_dir)
        finished = True
        current: FileAction | None = None
        try:
            if changes is None:
                if not staging.is_dir():
                    raise FileNotFoundError(f"Staging directory {staging} is missing")
                changes = self._diff(staging)
                progress.total_steps = progress.current_step + len(changes)

            chunk = changes.actions[: self.settings.chunk_size]
            for index, action in enumerate(chunk, start=1):
                current = action
                self._apply(action, staging)
                progress.current_step += 1
                if index % LOCK_REFRESH_INTERVAL == 0:
                    refreshed = self.lock.refresh(handle)
                    if refreshed is None:
                        return self._lost_lock(progress, warnings)
                    handle = refreshed
            current = None

            remaining = len(changes) - len(chunk)
            if remaining > 0:
                refreshed = self.lock.refresh(handle)
                if refreshed is None:
                    return self._lost_lock(progress, warnings)
                progress.detail = f"{remaining} action(s) remaining"
                self.progress_store.save(progress)
                finished = False
                logger.info(
                    "Run %s suspended after step %d/%d",
                    progress.run_id, progress.current_step, progress.total_steps,
                )
                return OperationResult(
                    OperationStatus.IN_PROGRESS,
                    f"Deployment in progress: {progress.current_step}/{progress.total_steps} "
                    f"actions applied, resume to continue",
                    progress=progress,
                    changes=changes,
                    warnings=warnings,
                )

            return self._succeed(progress, changes, warnings)
        except Exception as exc:
            where = f" while applying {current.describe()}" if current else ""
            logger.exception("Run %s failed%s", progress.run_id, where)
            return self._recover(progress, f"Deployment failed{where}: {exc}", warnings)
        finally:
            if finished:
                self._cleanup(handle, progress)

    def _succeed(self, progress: SyncProgress, changes: ChangeSet, warnings: list[str]) -> OperationResult:
        progress.state = OrchestratorState.SUCCEEDED
        progress.status = ProgressStatus.COMPLETE
        verb = "Rolled back to" if progress.is_rollback else "Deployed"
        message = f"{verb} {progress.ref} ({progress.commit[:8]}): {_summary(progress.change_counts)}"
        record = self._append_record(progress, Outcome.SUCCESS, message)
        self._mark_deployed(progress)
        logger.info(message)
        return OperationResult(
            OperationStatus.SUCCEEDED, message, record=record, progress=progress,
            changes=changes, warnings=warnings,
        )

    def _recover(self, progress: SyncProgress, error: str, warnings: list[str]) -> OperationResult:
        """Put the site back after a failure while applying."""
        progress.state = OrchestratorState.FAILED
        progress.status = ProgressStatus.FAILED
        outcome = Outcome.FAILED
        notes: list[str] = []

        if progress.snapshot_id:
            restored = self.snapshots.restore(progress.snapshot_id)
            warnings.extend(restored.warnings)
            if restored.ok:
                outcome = Outcome.ROLLED_BACK
                notes.append(f"site restored from snapshot {progress.snapshot_id}")
            else:
                logger.error("Restore of snapshot %s failed: %s", progress.snapshot_id, restored.message)
                notes.append(f"restore failed: {restored.message}")

        removed_all = True
        for path in progress.created_paths:
            try:
                remove_path(self.site_root / path)
            except OSError as exc:
                removed_all = False
                logger.error("Could not remove %s after failed deployment: %s", path, exc)
                notes.append(f"could not remove {path}: {exc}")
        if not progress.snapshot_id and self.settings.create_snapshot and removed_all:
            # Every touched path was new, so deleting them is a full restore
            outcome = Outcome.ROLLED_BACK
            if progress.created_paths:
                notes.append("newly created paths removed")

        message = error + (f" ({'; '.join(notes)})" if notes else "")
        record = self._append_record(progress, outcome, message)
        status = OperationStatus.ROLLED_BACK if outcome is Outcome.ROLLED_BACK else OperationStatus.FAILED
        return OperationResult(
            status, message, record=record, progress=progress, error=ErrorKind.APPLY_FAILED, warnings=warnings,
        )

    def _abort(
        self,
        handle: LockHandle,
        progress: SyncProgress,
        message: str,
        error: ErrorKind,
        warnings: list[str],
    ) -> OperationResult:
        """Give up before the first write: nothing changed on the site."""
        logger.error(message)
        record = None
        if progress.is_rollback:
            record = self._append_record(progress, Outcome.FAILED, message)
        self._cleanup(handle, progress, maintenance=False)
        return OperationResult(OperationStatus.SKIPPED, message, record=record, error=error, warnings=warnings)

    def _lost_lock(self, progress: SyncProgress, warnings: list[str]) -> OperationResult:
        """Stop a run whose lock was taken over mid-chunk.

        The new holder may already be writing to the site, so nothing is put
        back; the record says so and names the snapshot to restore by hand.
        Maintenance mode and staging are torn down by the caller's cleanup,
        which leaves the new holder's lock alone.
        """
        progress.state = OrchestratorState.FAILED
        progress.status = ProgressStatus.FAILED
        consequence = (
            f"{progress.branch} was not changed" if progress.kind is RunKind.UPLOAD
            else "the site was not restored"
        )
        message = (
            f"Run {progress.run_id} stopped at step {progress.current_step}/{progress.total_steps}: "
            f"the deployment lock was taken over and {consequence}"
        )
        if progress.snapshot_id:
            message += f" (snapshot {progress.snapshot_id} holds the pre-deploy state)"
        logger.error(message)
        # A run that superseded this one may already have recorded it
        record = self.ledger.find_by_id(progress.run_id)
        if record is None:
            record = self._append_record(progress, Outcome.FAILED, message)
        return OperationResult(
            OperationStatus.FAILED, message, record=record, progress=progress,
            error=ErrorKind.BUSY, warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Upload flow (site -> repository)
    # ------------------------------------------------------------------

    def _run_upload_chunk(
        self, handle: LockHandle, progress: SyncProgress, warnings: list[str]
    ) -> OperationResult:
        """Upload at most one chunk of blobs, then commit or suspend.

        Every invocation rescans the site; blobs whose SHA was uploaded by an
        earlier invocation are not sent again.
        """
        progress.invocations += 1
        finished = True
        try:
            items = self._site_items()
            if not items:
                return self._upload_failed(
                    progress, f"Nothing to upload: {self.site_root} has no files to commit",
                    ErrorKind.NOT_FOUND, warnings,
                )

            uploaded = set(progress.uploaded)
            pending: list[int] = []
            for index, item in enumerate(items):
                if item.sha not in uploaded:
                    uploaded.add(item.sha)
                    pending.append(index)
            progress.total_steps = progress.current_step + len(pending)

            chunk = pending[: self.settings.chunk_size]
            for count, index in enumerate(chunk, start=1):
                item = items[index]
                sha = self.repository.upload_blob((self.site_root / item.path).read_bytes())
                if sha != item.sha:
                    # Changed after it was hashed; commit the content that went up
                    items[index] = TreeItem(item.path, sha, item.mode)
                progress.uploaded.append(sha)
                progress.current_step += 1
                if count % LOCK_REFRESH_INTERVAL == 0:
                    refreshed = self.lock.refresh(handle)
                    if refreshed is None:
                        return self._lost_lock(progress, warnings)
                    handle = refreshed

            remaining = len(pending) - len(chunk)
            if remaining > 0:
                refreshed = self.lock.refresh(handle)
                if refreshed is None:
                    return self._lost_lock(progress, warnings)
                progress.detail = f"{remaining} file(s) left to upload"
                self.progress_store.save(progress)
                finished = False
                logger.info(
                    "Upload %s suspended after %d/%d blob(s)",
                    progress.run_id, progress.current_step, progress.total_steps,
                )
                return OperationResult(
                    OperationStatus.IN_PROGRESS,
                    f"Upload in progress: {progress.current_step}/{progress.total_steps} "
                    f"files uploaded, resume to continue",
                    progress=progress,
                    warnings=warnings,
                )

            commit = self.repository.commit_tree(items, progress.commit_message, progress.branch)
            return self._upload_succeeded(progress, items, commit.sha, warnings)
        except RemoteError as exc:
            return self._upload_failed(
                progress, f"Upload to {progress.branch} failed: {exc.message}", ErrorKind.REMOTE_ERROR, warnings
            )
        except OSError as exc:
            return self._upload_failed(
                progress, f"Could not read the site for upload: {exc}", ErrorKind.APPLY_FAILED, warnings
            )
        finally:
            if finished:
                self._cleanup(handle, progress, maintenance=False)

    def _upload_succeeded(
        self, progress: SyncProgress, items: list[TreeItem], commit: str, warnings: list[str]
    ) -> OperationResult:
        progress.state = OrchestratorState.SUCCEEDED
        progress.status = ProgressStatus.COMPLETE
        progress.commit = commit
        progress.change_counts = {"upload": len(items)}
        message = f"Uploaded {len(items)} file(s) to {progress.branch} ({commit[:8]})"
        record = self._append_record(progress, Outcome.SUCCESS, message)
        # The branch now holds exactly what the site serves
        self._mark_deployed(progress)
        logger.info(message)
        return OperationResult(
            OperationStatus.SUCCEEDED, message, record=record, progress=progress, warnings=warnings,
            details={"commit": commit, "branch": progress.branch, "files": len(items)},
        )

    def _upload_failed(
        self, progress: SyncProgress, message: str, error: ErrorKind, warnings: list[str]
    ) -> OperationResult:
        progress.state = OrchestratorState.FAILED
        progress.status = ProgressStatus.FAILED
        logger.error(message)
        record = None
        if progress.uploaded:
            record = self._append_record(progress, Outcome.FAILED, f"{message} ({progress.branch} was not changed)")
        status = OperationStatus.FAILED if record is not None else OperationStatus.SKIPPED
        return OperationResult(status, message, record=record, progress=progress, error=error, warnings=warnings)

    def _site_items(self) -> list[TreeItem]:
        """Every non-ignored file on the site, hashed the way git hashes blobs."""
        tree = FileTree.from_directory(self.site_root, self._ignore_patterns())
        items = []
        for entry in tree.files():
            mode = (self.site_root / entry.path).stat().st_mode
            items.append(TreeItem(
                entry.path,
                tree.content_hash(entry.path),
                "100755" if mode & 0o111 else "100644",
            ))
        return items

    # ------------------------------------------------------------------
    # Restore flow (rollback by snapshot, explicit snapshot restore)
    # ------------------------------------------------------------------

    def _restore(
        self,
        handle: LockHandle,
        snapshot_id: str | None,
        actor: str,
        *,
        target: str,
        commit: str = "",
        branch: str = "",
        fallback_to_commit: bool = False,
        warnings: list[str],
    ) -> OperationResult:
        branch = branch or self.settings.branch
        loaded = self.snapshots.get(snapshot_id or "")
        if not loaded.ok:
            if fallback_to_commit:
                logger.warning("%s; re-deploying commit %s instead", loaded.message, commit[:8])
                warnings.append(f"{loaded.message}; re-deployed commit {commit[:8]} instead")
                return self._start(
                    handle, commit, actor, is_rollback=True, rollback_target=target,
                    branch=branch, warnings=warnings,
                )
            record = self._rollback_record(actor, target, commit, branch, Outcome.FAILED, loaded.message)
            self.lock.release(handle)
            status = OperationStatus.NOT_FOUND if loaded.error is ErrorKind.NOT_FOUND else OperationStatus.FAILED
            return OperationResult(status, loaded.message, record=record, error=loaded.error, warnings=warnings)

        snapshot = loaded.value
        paths = list(snapshot.paths) + list(snapshot.absent_paths)
        pre_restore_id = None
        if any(exists(self.site_root / p) for p in paths):
            # The target must survive the rotation this snapshot triggers
            pre = self.snapshots.create(paths, actor=actor or "sitesync", protect=[snapshot.id])
            warnings.extend(pre.warnings)
            if not pre.ok:
                message = f"Pre-restore snapshot failed, nothing was restored: {pre.message}"
                logger.error(message)
                record = self._rollback_record(actor, target, commit, branch, Outcome.FAILED, message)
                self.lock.release(handle)
                return OperationResult(
                    OperationStatus.SKIPPED, message, record=record, error=ErrorKind.SNAPSHOT_FAILED, warnings=warnings,
                )
            pre_restore_id = pre.value.id

        handed_over = False
        if self.settings.maintenance_mode:
            self.maintenance.enable()
        try:
            restored = self.snapshots.restore(snapshot.id)
            warnings.extend(restored.warnings)
            if restored.ok:
                message = f"Restored snapshot {snapshot.id}"
                if commit:
                    message += f" (commit {commit[:8]})"
                record = self._rollback_record(
                    actor, target, commit, branch, Outcome.SUCCESS, message, snapshot_id=pre_restore_id
                )
                if commit:
                    self.store.set(LAST_DEPLOYED_KEY, commit)
                logger.info(message)
                return OperationResult(OperationStatus.SUCCEEDED, message, record=record, warnings=warnings)

            logger.error(restored.message)
            reverted = pre_restore_id is not None and self.snapshots.restore(pre_restore_id).ok
            if fallback_to_commit and (reverted or pre_restore_id is None):
                warnings.append(f"{restored.message}; re-deployed commit {commit[:8]} instead")
                handed_over = True
                if self.settings.maintenance_mode:
                    self.maintenance.disable()
                return self._start(
                    handle, commit, actor, is_rollback=True, rollback_target=target,
                    branch=branch, warnings=warnings,
                )
            outcome = Outcome.ROLLED_BACK if reverted else Outcome.FAILED
            note = "site reverted to its pre-restore state" if reverted else "site may be partially restored"
            message = f"{restored.message} ({note})"
            record = self._rollback_record(
                actor, target, commit, branch, outcome, message, snapshot_id=pre_restore_id
            )
            status = OperationStatus.ROLLED_BACK if reverted else OperationStatus.FAILED
            return OperationResult(status, message, record=record, error=ErrorKind.RESTORE_FAILED, warnings=warnings)
        finally:
            if not handed_over:
                if self.settings.maintenance_mode:
                    self.maintenance.disable()
                self.lock.release(handle)

    def _rollback_record(
        self,
        actor: str,
        target: str,
        commit: str,
        branch: str,
        outcome: Outcome,
        message: str,
        snapshot_id: str | None = None,
    ) -> DeploymentRecord:
        record = DeploymentRecord(
            id=new_deployment_id(),
            timestamp=_now(),
            actor=actor,
            commit=commit,
            branch=branch,
            outcome=outcome,
            message=message,
            snapshot_id=snapshot_id,
            is_rollback=True,
            ref=target,
        )
        return self.ledger.append(record)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ignore_patterns(self) -> list[str]:
        patterns = self.settings.effective_ignore_patterns()
        for path in self.maintenance.reserved_paths():
            if path not in patterns:
                patterns.append(path)
        return patterns

    def _diff(self, staging: Path) -> ChangeSet:
        patterns = self._ignore_patterns()
        source = FileTree.from_directory(staging, patterns)
        target = FileTree.from_directory(self.site_root, patterns)
        return self.diff_engine.compute(source, target, patterns)

    def _apply(self, action: FileAction, staging: Path) -> None:
        destination = self.site_root / action.path
        if action.kind is ActionKind.DELETE:
            if action.is_dir and destination.is_dir() and not destination.is_symlink():
                # Ignored content may remain; such a directory stays
                if not any(destination.iterdir()):
                    destination.rmdir()
                return
            remove_path(destination)
            return

        is_real_dir = destination.is_dir() and not destination.is_symlink()
        if action.is_dir:
            if exists(destination) and not is_real_dir:
                remove_path(destination)
            destination.mkdir(parents=True, exist_ok=True)
            return
        if is_real_dir or destination.is_symlink():
            remove_path(destination)
        copy_path(staging / action.path, destination)

    def _append_record(self, progress: SyncProgress, outcome: Outcome, message: str) -> DeploymentRecord:
        record = DeploymentRecord(
            id=progress.run_id,
            timestamp=_now(),
            actor=progress.actor,
            commit=progress.commit,
            branch=progress.branch,
            outcome=outcome,
            message=message,
            snapshot_id=progress.snapshot_id,
            is_rollback=progress.is_rollback,
            ref=progress.rollback_target if progress.is_rollback else progress.ref,
            changes=dict(progress.change_counts),
            kind=progress.kind,
        )
        return self.ledger.append(record)

    def _mark_deployed(self, progress: SyncProgress) -> None:
        self.store.set(LAST_DEPLOYED_KEY, progress.commit)
        if not progress.is_rollback:
            self.store.delete(UPDATE_AVAILABLE_KEY)

    def _cleanup(self, handle: LockHandle, progress: SyncProgress, maintenance: bool = True) -> None:
        """Tear down a finished run. Each step runs even if an earlier one fails."""
        if maintenance and self.settings.maintenance_mode:
            try:
                self.maintenance.disable()
            except OSError as exc:
                logger.error("Could not disable maintenance mode: %s", exc)
        self._remove_staging(progress)
        stored = self.progress_store.load()
        if stored is not None and stored.run_id == progress.run_id:
            self.progress_store.clear()
        self.lock.release(handle)

    def _discard_leftover(self, warnings: list[str]) -> None:
        """Drop progress left behind by a run whose lock expired or was cleared."""
        leftover = self.progress_store.load()
        if leftover is None:
            return
        message = (
            f"Discarding suspended run {leftover.run_id} "
            f"(step {leftover.current_step}/{leftover.total_steps}); its lock was lost"
        )
        logger.warning(message)
        warnings.append(message)
        self._abandon(leftover, "Superseded: the run's lock expired before it finished")
        if self.settings.maintenance_mode:
            self.maintenance.disable()

    def _abandon(self, progress: SyncProgress, reason: str) -> None:
        progress.state = OrchestratorState.FAILED
        progress.status = ProgressStatus.FAILED
        self._append_record(progress, Outcome.FAILED, f"{reason} at step {progress.current_step}/{progress.total_steps}")
        self._remove_staging(progress)
        self.progress_store.clear()

    def _remove_staging(self, progress: SyncProgress) -> None:
        if not progress.staging_dir:
            return
        try:
            remove_path(progress.staging_dir)
        except OSError as exc:
            logger.error("Could not remove staging directory %s: %s", progress.staging_dir, exc)

    def _busy(self, message: str) -> OperationResult:
        logger.info("Deployment skipped: %s", message)
        return OperationResult(OperationStatus.BUSY, message, error=ErrorKind.BUSY)


def _summary(counts: dict[str, int]) -> str:
    if not any(counts.values()):
        return "no changes"
    return (
        f"{counts.get('add', 0)} added, {counts.get('modify', 0)} modified, "
        f"{counts.get('delete', 0)} deleted"
    )
