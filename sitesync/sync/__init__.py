"""Lock, progress, history, rollback and the orchestrator."""

from sitesync.sync.ledger import HistoryLedger, new_deployment_id
from sitesync.sync.lock import DeploymentLock
from sitesync.sync.maintenance import FileMaintenanceMode, MaintenanceMode, NullMaintenanceMode
from sitesync.sync.orchestrator import (
    LAST_DEPLOYED_KEY,
    LATEST_COMMIT_KEY,
    UPDATE_AVAILABLE_KEY,
    DeploymentOrchestrator,
    OperationResult,
    OperationStatus,
)
from sitesync.sync.progress import ProgressStore
from sitesync.sync.rollback import RollbackPlan, RollbackResolver, RollbackStrategy

__all__ = [
    "DeploymentLock",
    "DeploymentOrchestrator",
    "FileMaintenanceMode",
    "HistoryLedger",
    "LAST_DEPLOYED_KEY",
    "LATEST_COMMIT_KEY",
    "MaintenanceMode",
    "NullMaintenanceMode",
    "OperationResult",
    "OperationStatus",
    "ProgressStore",
    "RollbackPlan",
    "RollbackResolver",
    "RollbackStrategy",
    "UPDATE_AVAILABLE_KEY",
    "new_deployment_id",
]
