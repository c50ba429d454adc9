"""Webhook router -- GitHub push events."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from web.backend.app.dependencies import Services, get_services
from web.backend.app.models.api import WebhookAck

router = APIRouter(prefix="/api", tags=["webhook"])


@router.post("/webhook", response_model=WebhookAck)
async def webhook(
    request: Request,
    x_github_event: Optional[str] = Header(None, alias="X-GitHub-Event"),
    x_hub_signature_256: Optional[str] = Header(None, alias="X-Hub-Signature-256"),
    x_hub_signature: Optional[str] = Header(None, alias="X-Hub-Signature"),
    services: Services = Depends(get_services),
):
    """Verify and dispatch a webhook delivery.

    The SHA-256 signature header is preferred; the legacy SHA-1 header is
    accepted when it is the only one sent.
    """
    body = await request.body()
    signature = x_hub_signature_256 or x_hub_signature or ""
    response = await run_in_threadpool(
        services.webhook.handle, x_github_event or "", body, signature
    )
    return JSONResponse(
        status_code=response.status_code,
        content=WebhookAck(message=response.message).model_dump(),
    )
