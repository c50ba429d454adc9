"""Deployments router -- deploy, roll back, resume, upload, status, history and snapshots."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from sitesync.sync.orchestrator import OperationResult, OperationStatus

from web.backend.app.dependencies import Services, get_services
from web.backend.app.models.api import (
    DeployRequest,
    DeploymentListResponse,
    DeploymentRecordResponse,
    OperationResponse,
    ProgressResponse,
    ResumeRequest,
    RollbackRequest,
    SnapshotListResponse,
    SnapshotResponse,
    StatusResponse,
    UploadRequest,
)

router = APIRouter(prefix="/api", tags=["deployments"])

HTTP_STATUS = {
    OperationStatus.SUCCEEDED: 200,
    OperationStatus.IDLE: 200,
    OperationStatus.IN_PROGRESS: 202,
    OperationStatus.BUSY: 409,
    OperationStatus.NOT_FOUND: 404,
}


def _record_to_response(record) -> DeploymentRecordResponse | None:
    """Convert a DeploymentRecord dataclass to a Pydantic response."""
    if record is None:
        return None
    return DeploymentRecordResponse(**record.to_dict())


def _progress_to_response(progress) -> ProgressResponse | None:
    if progress is None:
        return None
    return ProgressResponse(
        run_id=progress.run_id,
        current_step=progress.current_step,
        total_steps=progress.total_steps,
        percent=progress.percent,
        status=progress.status.value,
        state=progress.state.value,
        detail=progress.detail,
        ref=progress.ref,
        is_rollback=progress.is_rollback,
        kind=progress.kind.value,
    )


def _operation_response(result: OperationResult) -> JSONResponse:
    body = OperationResponse(
        status=result.status.value,
        message=result.message,
        error=result.error.value if result.error else None,
        record=_record_to_response(result.record),
        progress=_progress_to_response(result.progress),
        changes=result.changes.counts() if result.changes is not None else {},
        warnings=result.warnings,
    )
    return JSONResponse(status_code=HTTP_STATUS.get(result.status, 500), content=body.model_dump())


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


@router.post("/deploy", response_model=OperationResponse)
def deploy(request: DeployRequest, services: Services = Depends(get_services)):
    """Deploy a ref to the site (one chunk; resume to continue large runs)."""
    return _operation_response(services.orchestrator.deploy(request.ref, actor=request.actor))


@router.post("/rollback", response_model=OperationResponse)
def rollback(request: RollbackRequest, services: Services = Depends(get_services)):
    """Roll back to a deployment id, commit SHA, or ``previous``."""
    return _operation_response(services.orchestrator.rollback(request.target, actor=request.actor))


@router.post("/resume", response_model=OperationResponse)
def resume(request: ResumeRequest, services: Services = Depends(get_services)):
    return _operation_response(services.orchestrator.resume(actor=request.actor))


@router.post("/upload", response_model=OperationResponse)
def upload(request: UploadRequest, services: Services = Depends(get_services)):
    """Commit the current site files to the repository branch."""
    return _operation_response(
        services.orchestrator.upload(request.message, branch=request.branch, actor=request.actor)
    )


# ---------------------------------------------------------------------------
# Read-only views
# ---------------------------------------------------------------------------


@router.get("/status", response_model=StatusResponse)
def status(services: Services = Depends(get_services)):
    result = services.orchestrator.status()
    details = result.details
    return StatusResponse(
        status=result.status.value,
        message=result.message,
        last_deployed_commit=details.get("last_deployed_commit") or "",
        latest_commit=details.get("latest_commit") or "",
        update_available=bool(details.get("update_available")),
        lock_held=bool(details.get("lock_held")),
        maintenance=bool(details.get("maintenance")),
        last_record=_record_to_response(result.record),
        progress=_progress_to_response(result.progress),
    )


@router.get("/deployments", response_model=DeploymentListResponse)
def list_deployments(
    limit: int = Query(20, ge=0, le=1000),
    services: Services = Depends(get_services),
):
    """Deployment history, newest first."""
    records = services.orchestrator.list_deployments(limit).items
    return DeploymentListResponse(
        deployments=[_record_to_response(r) for r in records],
        total_count=len(records),
    )


@router.get("/snapshots", response_model=SnapshotListResponse)
def list_snapshots(services: Services = Depends(get_services)):
    snapshots = services.orchestrator.list_snapshots().items
    return SnapshotListResponse(
        snapshots=[SnapshotResponse(**s.to_dict()) for s in snapshots],
        total_count=len(snapshots),
    )
