"""Deployment lock — cross-invocation mutual exclusion with expiry.

The lock is a single record in the shared key/value store, taken and
released with ``compare_and_set``. A lock older than its TTL is stale: the
next ``try_acquire`` reclaims it so a crashed worker cannot block deployments
forever. Reclaims and operator force-clears are logged and appended to a
bounded anomaly list in the store.

Acquisition fails closed when the store cannot guarantee an atomic
compare-and-set.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from sitesync.models.lock import LockHandle, LockInfo
from sitesync.result import ErrorKind, Result
from sitesync.store.kv import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_LOCK_KEY = "deployment_lock"
MAX_ANOMALIES = 50


class DeploymentLock:
    """TTL-based lock over a ``KeyValueStore``."""

    def __init__(
        self,
        store: KeyValueStore,
        key: str = DEFAULT_LOCK_KEY,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.key = key
        self.anomaly_key = f"{key}_anomalies"
        self.clock = clock

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def _read(self) -> tuple[Any, LockInfo | None]:
        raw = self.store.get(self.key)
        if raw is None:
            return None, None
        try:
            return raw, LockInfo.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            # Unreadable lock records are treated as already expired
            return raw, LockInfo(holder=str(raw), acquired_at=0.0, ttl=0.0)

    def current(self) -> LockInfo | None:
        return self._read()[1]

    def is_held(self) -> bool:
        info = self.current()
        return info is not None and not info.is_expired(self.clock())

    def anomalies(self) -> list[dict[str, Any]]:
        return list(self.store.get(self.anomaly_key, []))

    # ------------------------------------------------------------------
    # Acquire / refresh / release
    # ------------------------------------------------------------------

    def try_acquire(self, ttl: float, holder: str | None = None) -> Result:
        """Take the lock for ``ttl`` seconds.

        Returns a ``Result`` carrying a ``LockHandle``, or ``BUSY`` when a live
        lock exists or another caller won the race.
        """
        if not self.store.supports_atomic_cas:
            return Result.failure(
                ErrorKind.BUSY,
                "Deployment lock unavailable: the configuration store cannot "
                "guarantee an atomic compare-and-set",
            )

        holder = holder or uuid.uuid4().hex
        now = self.clock()
        handle = LockHandle(holder=holder, acquired_at=now, ttl=float(ttl))
        raw, info = self._read()

        if info is None:
            if self.store.compare_and_set(self.key, None, handle.as_info().to_dict()):
                return Result.success(handle)
            return self._busy(self.current())

        if not info.is_expired(now):
            return self._busy(info)

        if self.store.compare_and_set(self.key, raw, handle.as_info().to_dict()):
            message = (
                f"Reclaimed stale deployment lock held by {info.holder} "
                f"(expired {now - info.expires_at:.0f}s ago)"
            )
            logger.warning(message)
            self._record_anomaly("stale_lock_reclaimed", info, new_holder=holder)
            return Result.success(handle, warnings=[message])
        return self._busy(self.current())

    def refresh(self, handle: LockHandle) -> LockHandle | None:
        """Restart the TTL of a lock we hold. Returns None if we no longer hold it."""
        raw, info = self._read()
        if info is None or info.holder != handle.holder:
            return None
        refreshed = LockHandle(holder=handle.holder, acquired_at=self.clock(), ttl=handle.ttl)
        if self.store.compare_and_set(self.key, raw, refreshed.as_info().to_dict()):
            return refreshed
        return None

    def reattach(self, holder: str, ttl: float) -> Result:
        """Resume ownership of the lock from a new invocation.

        Succeeds when the lock is still ours, was cleared, or went stale;
        a live lock held by someone else is ``BUSY``.
        """
        raw, info = self._read()
        if info is not None and info.holder == holder:
            refreshed = self.refresh(LockHandle(holder, info.acquired_at, float(ttl)))
            if refreshed is not None:
                return Result.success(refreshed)
            return self._busy(self.current())

        result = self.try_acquire(ttl, holder=holder)
        if result.ok and info is None:
            result.warnings.append(
                "Deployment lock was cleared while the run was suspended; re-acquired"
            )
        return result

    def release(self, handle: LockHandle | None) -> bool:
        """Release the lock if ``handle`` still holds it. Releasing twice is a no-op."""
        if handle is None:
            return False
        raw, info = self._read()
        if info is None or info.holder != handle.holder:
            return False
        return self.store.compare_and_set(self.key, raw, None)

    def force_clear(self, actor: str = "") -> LockInfo | None:
        """Operator override: drop whatever lock exists, abandoning its operation."""
        raw, info = self._read()
        if info is None:
            return None
        if not self.store.compare_and_set(self.key, raw, None):
            return None
        logger.warning("Deployment lock held by %s was force-cleared by %s", info.holder, actor or "operator")
        self._record_anomaly("forced_clear", info, actor=actor)
        return info

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _busy(self, info: LockInfo | None) -> Result:
        if info is None:
            return Result.failure(ErrorKind.BUSY, "A deployment is already in progress")
        since = datetime.fromtimestamp(info.acquired_at, tz=timezone.utc).isoformat()
        return Result.failure(
            ErrorKind.BUSY,
            f"A deployment is already in progress (lock held by {info.holder} since {since})",
        )

    def _record_anomaly(self, kind: str, info: LockInfo, **extra: Any) -> None:
        entry = {
            "kind": kind,
            "at": datetime.now(timezone.utc).isoformat(),
            "previous_holder": info.holder,
            "previous_acquired_at": info.acquired_at,
            "ttl": info.ttl,
        }
        entry.update(extra)
        anomalies = self.anomalies()
        anomalies.append(entry)
        self.store.set(self.anomaly_key, anomalies[-MAX_ANOMALIES:])
