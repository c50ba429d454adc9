"""Pydantic models for API request/response serialization.

These models mirror the sitesync dataclasses and provide proper JSON
serialization for the FastAPI endpoints.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class DeployRequest(BaseModel):
    """Deploy a branch, tag or commit; empty ``ref`` means the configured branch."""

    ref: str = ""
    actor: str = "api"


class RollbackRequest(BaseModel):
    target: str = "previous"
    actor: str = "api"


class ResumeRequest(BaseModel):
    actor: str = "api"


class UploadRequest(BaseModel):
    """Commit the site files to a branch; empty values fall back to defaults."""

    message: str = ""
    branch: str = ""
    actor: str = "api"


# ---------------------------------------------------------------------------
# Deployment models
# ---------------------------------------------------------------------------


class DeploymentRecordResponse(BaseModel):
    """Mirrors sitesync.models.deployment.DeploymentRecord."""

    id: str
    timestamp: str
    actor: str = ""
    commit: str = ""
    branch: str = ""
    outcome: str
    message: str = ""
    snapshot_id: Optional[str] = None
    is_rollback: bool = False
    ref: str = ""
    changes: dict[str, int] = Field(default_factory=dict)
    kind: str = "deploy"


class ProgressResponse(BaseModel):
    """The externally visible part of sitesync.models.deployment.SyncProgress."""

    run_id: str
    current_step: int = 0
    total_steps: int = 0
    percent: int = 0
    status: str
    state: str
    detail: str = ""
    ref: str = ""
    is_rollback: bool = False
    kind: str = "deploy"


class OperationResponse(BaseModel):
    """Mirrors sitesync.sync.orchestrator.OperationResult."""

    status: str
    message: str
    error: Optional[str] = None
    record: Optional[DeploymentRecordResponse] = None
    progress: Optional[ProgressResponse] = None
    changes: dict[str, int] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)


class StatusResponse(BaseModel):
    status: str
    message: str
    last_deployed_commit: str = ""
    latest_commit: str = ""
    update_available: bool = False
    lock_held: bool = False
    maintenance: bool = False
    last_record: Optional[DeploymentRecordResponse] = None
    progress: Optional[ProgressResponse] = None


class DeploymentListResponse(BaseModel):
    deployments: list[DeploymentRecordResponse] = Field(default_factory=list)
    total_count: int = 0


# ---------------------------------------------------------------------------
# Snapshot models
# ---------------------------------------------------------------------------


class SnapshotResponse(BaseModel):
    """Mirrors sitesync.models.snapshot.Snapshot."""

    id: str
    created_at: str
    paths: list[str] = Field(default_factory=list)
    absent_paths: list[str] = Field(default_factory=list)
    actor: str = ""
    site_metadata: dict[str, Any] = Field(default_factory=dict)


class SnapshotListResponse(BaseModel):
    snapshots: list[SnapshotResponse] = Field(default_factory=list)
    total_count: int = 0


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


class WebhookAck(BaseModel):
    message: str
