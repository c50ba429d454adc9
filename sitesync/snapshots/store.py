"""Snapshot store — point-in-time copies of site paths for safe deploy and rollback.

Storage layout::

    <snapshot_dir>/
        .htaccess                     # "Deny from all", in case it sits in a web root
        index.html
        snapshot-<timestamp>-<hex>/
            metadata.json
            files/<relative paths>    # the copied site paths

Failures are reported as ``Result`` values; the store never logs. Missing
paths and per-path copy errors during ``create`` come back as warnings.
"""

from __future__ import annotations

import json
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from sitesync import __version__
from sitesync.models.snapshot import Snapshot
from sitesync.result import ErrorKind, Result
from sitesync.utils.fs import copy_path, exists, remove_path
from sitesync.utils.paths import normalize_relative

SNAPSHOT_PREFIX = "snapshot-"
METADATA_FILE = "metadata.json"
FILES_DIR = "files"


def new_snapshot_id(now: datetime | None = None) -> str:
    """Time-ordered id with a random suffix, e.g. ``snapshot-20240101120000123456-1a2b3c4d``."""
    now = now or datetime.now(timezone.utc)
    return f"{SNAPSHOT_PREFIX}{now.strftime('%Y%m%d%H%M%S%f')}-{secrets.token_hex(4)}"


class SnapshotStore:
    """Creates, lists, rotates and restores snapshots of paths under ``site_root``."""

    def __init__(
        self,
        snapshot_dir: str | Path,
        site_root: str | Path,
        max_keep: int = 10,
        platform_version: str = "",
    ):
        self.snapshot_dir = Path(snapshot_dir)
        self.site_root = Path(site_root)
        self.max_keep = max_keep
        self.platform_version = platform_version
        self._ensure_directory()

    def _ensure_directory(self) -> None:
        self.snapshot_dir.mkdir(parents=True, exist_ok=True)
        htaccess = self.snapshot_dir / ".htaccess"
        if not htaccess.exists():
            htaccess.write_text("Deny from all\n", encoding="utf-8")
        index = self.snapshot_dir / "index.html"
        if not index.exists():
            index.write_text("", encoding="utf-8")

    def _path_for(self, snapshot_id: str) -> Path:
        if not snapshot_id.startswith(SNAPSHOT_PREFIX) or "/" in snapshot_id or "\\" in snapshot_id:
            raise ValueError(f"Invalid snapshot id: {snapshot_id!r}")
        return self.snapshot_dir / snapshot_id

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, paths: Iterable[str], actor: str = "", protect: Iterable[str] = ()) -> Result:
        """Copy ``paths`` (relative to the site root) into a new snapshot.

        Returns a ``Result`` whose value is the new ``Snapshot``. Paths that do
        not exist are skipped with a warning; if nothing at all could be
        copied the partial snapshot is removed and ``SNAPSHOT_FAILED`` returned.
        Rotation afterwards never deletes the new snapshot or any id in
        ``protect``.
        """
        warnings: list[str] = []
        requested: list[str] = []
        for raw in paths:
            try:
                path = normalize_relative(raw)
            except ValueError as exc:
                warnings.append(str(exc))
                continue
            if path not in requested:
                requested.append(path)

        if not requested:
            return Result.failure(ErrorKind.SNAPSHOT_FAILED, "No paths to snapshot", warnings)

        now = datetime.now(timezone.utc)
        snapshot_id = new_snapshot_id(now)
        snapshot_path = self.snapshot_dir / snapshot_id
        files_root = snapshot_path / FILES_DIR

        try:
            files_root.mkdir(parents=True)
        except OSError as exc:
            return Result.failure(
                ErrorKind.SNAPSHOT_FAILED, f"Could not create snapshot directory: {exc}", warnings
            )

        copied: list[str] = []
        absent: list[str] = []
        for path in requested:
            source = self.site_root / path
            if not exists(source):
                warnings.append(f"Path does not exist, skipping: {path}")
                absent.append(path)
                continue
            destination = files_root / path
            try:
                copy_path(source, destination)
            except OSError as exc:
                warnings.append(f"Failed to snapshot {path}: {exc}")
                try:
                    remove_path(destination)
                except OSError as cleanup_exc:
                    warnings.append(f"Could not remove partial copy of {path}: {cleanup_exc}")
                    self._discard(snapshot_path)
                    return Result.failure(
                        ErrorKind.SNAPSHOT_FAILED,
                        f"Snapshot of {path} failed and could not be cleaned up",
                        warnings,
                    )
                continue
            copied.append(path)

        if not copied:
            self._discard(snapshot_path)
            return Result.failure(
                ErrorKind.SNAPSHOT_FAILED, "None of the requested paths could be copied", warnings
            )

        snapshot = Snapshot(
            id=snapshot_id,
            created_at=now.isoformat(),
            paths=tuple(copied),
            actor=actor,
            site_metadata={
                "platform_version": self.platform_version,
                "plugin_version": __version__,
            },
            absent_paths=tuple(absent),
        )
        try:
            (snapshot_path / METADATA_FILE).write_text(
                json.dumps(snapshot.to_dict(), indent=2), encoding="utf-8"
            )
        except OSError as exc:
            self._discard(snapshot_path)
            return Result.failure(
                ErrorKind.SNAPSHOT_FAILED, f"Could not write snapshot metadata: {exc}", warnings
            )

        if self.max_keep > 0:
            rotated = self.rotate(self.max_keep, keep={snapshot_id, *protect})
            warnings.extend(f"Rotated old snapshot: {sid}" for sid in rotated)

        return Result.success(snapshot, f"Snapshot {snapshot_id} created", warnings)

    def _discard(self, snapshot_path: Path) -> None:
        try:
            remove_path(snapshot_path)
        except OSError:
            pass

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, snapshot_id: str) -> Result:
        """Load one snapshot's metadata."""
        try:
            path = self._path_for(snapshot_id)
        except ValueError as exc:
            return Result.failure(ErrorKind.NOT_FOUND, str(exc))

        metadata_file = path / METADATA_FILE
        if not path.is_dir() or not metadata_file.exists():
            return Result.failure(ErrorKind.NOT_FOUND, f"Snapshot not found: {snapshot_id}")

        try:
            snapshot = Snapshot.from_dict(json.loads(metadata_file.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            return Result.failure(
                ErrorKind.INVALID_METADATA, f"Invalid metadata for snapshot {snapshot_id}: {exc}"
            )
        if not snapshot.paths:
            return Result.failure(
                ErrorKind.INVALID_METADATA, f"Snapshot {snapshot_id} records no paths"
            )
        return Result.success(snapshot)

    def list(self) -> list[Snapshot]:
        """All readable snapshots, newest first."""
        snapshots = []
        for path in self.snapshot_dir.glob(f"{SNAPSHOT_PREFIX}*"):
            if not path.is_dir():
                continue
            result = self.get(path.name)
            if result.ok:
                snapshots.append(result.value)
        snapshots.sort(key=lambda s: (s.created_at, s.id), reverse=True)
        return snapshots

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore(self, snapshot_id: str, paths: Iterable[str] | None = None) -> Result:
        """Put the snapshot's copy of each path back in the site root.

        Each current target is deleted before the copy. This is not atomic:
        a failure part-way leaves a mix of restored and unrestored paths.
        Callers that need safety snapshot first.
        """
        loaded = self.get(snapshot_id)
        if not loaded.ok:
            return loaded
        snapshot: Snapshot = loaded.value
        warnings: list[str] = []

        if paths is None:
            to_restore = list(snapshot.paths)
            to_remove = list(snapshot.absent_paths)
        else:
            to_restore, to_remove = [], []
            for raw in paths:
                try:
                    path = normalize_relative(raw)
                except ValueError as exc:
                    warnings.append(str(exc))
                    continue
                if path in snapshot.paths:
                    to_restore.append(path)
                elif path in snapshot.absent_paths:
                    to_remove.append(path)
                else:
                    warnings.append(f"Path is not part of snapshot {snapshot_id}: {path}")

        files_root = self._path_for(snapshot_id) / FILES_DIR
        restored: list[str] = []
        try:
            for path in to_restore:
                source = files_root / path
                if not exists(source):
                    warnings.append(f"Path missing from snapshot contents: {path}")
                    continue
                destination = self.site_root / path
                remove_path(destination)
                copy_path(source, destination)
                restored.append(path)
            for path in to_remove:
                if remove_path(self.site_root / path):
                    restored.append(path)
        except OSError as exc:
            return Result.failure(
                ErrorKind.RESTORE_FAILED,
                f"Restore of snapshot {snapshot_id} failed after {len(restored)} path(s): {exc}",
                warnings,
            )

        return Result.success(snapshot, f"Snapshot {snapshot_id} restored", warnings)

    # ------------------------------------------------------------------
    # Delete / rotate
    # ------------------------------------------------------------------

    def delete(self, snapshot_id: str) -> bool:
        """Delete a snapshot directory entirely. Returns False if it did not exist."""
        try:
            path = self._path_for(snapshot_id)
        except ValueError:
            return False
        if not path.is_dir():
            return False
        remove_path(path)
        return True

    def rotate(self, max_keep: int, keep: str | Iterable[str] | None = None) -> list[str]:
        """Delete the oldest snapshots beyond ``max_keep``; returns deleted ids.

        Ids in ``keep`` are never deleted but still count towards ``max_keep``,
        so the next oldest unprotected snapshots go in their place.
        """
        if max_keep <= 0:
            return []
        protected = {keep} if isinstance(keep, str) else set(keep or ())
        snapshots = self.list()  # newest first
        excess = len(snapshots) - max_keep
        deleted = []
        for snapshot in reversed(snapshots):
            if excess <= 0:
                break
            if snapshot.id in protected:
                continue
            if self.delete(snapshot.id):
                deleted.append(snapshot.id)
                excess -= 1
        return deleted
