"""Push webhooks — signature verification and routing to the orchestrator.

The handler is transport-agnostic: the HTTP layer hands it the event name,
the raw body and the signature header, and turns the returned
``WebhookResponse`` into an HTTP response.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass

from sitesync.config import Settings
from sitesync.store.kv import KeyValueStore
from sitesync.sync.orchestrator import (
    LATEST_COMMIT_KEY,
    UPDATE_AVAILABLE_KEY,
    DeploymentOrchestrator,
    OperationStatus,
)

logger = logging.getLogger(__name__)

BRANCH_REF_PREFIX = "refs/heads/"
WEBHOOK_ACTOR = "webhook"


def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Check a ``sha256=<hex>`` (or legacy ``sha1=<hex>``) HMAC of ``payload``."""
    if not payload or not signature or not secret:
        return False
    algorithm, _, received = signature.partition("=")
    digestmod = {"sha256": hashlib.sha256, "sha1": hashlib.sha1}.get(algorithm.strip().lower())
    if digestmod is None or not received:
        return False
    expected = hmac.new(secret.encode("utf-8"), payload, digestmod).hexdigest()
    return hmac.compare_digest(expected, received.strip().lower())


@dataclass
class WebhookResponse:
    status_code: int
    message: str


class WebhookHandler:
    """Turns verified push events for the configured branch into deployments."""

    def __init__(self, settings: Settings, orchestrator: DeploymentOrchestrator, store: KeyValueStore):
        self.settings = settings
        self.orchestrator = orchestrator
        self.store = store

    def handle(self, event: str, body: bytes, signature: str) -> WebhookResponse:
        if not self.settings.webhook_secret:
            logger.error("Webhook received but no webhook secret is configured")
            return WebhookResponse(500, "Webhook secret is not configured")
        if not signature:
            return WebhookResponse(401, "Missing signature")
        if not verify_signature(body, signature, self.settings.webhook_secret):
            logger.warning("Webhook signature verification failed")
            return WebhookResponse(401, "Invalid signature")

        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            return WebhookResponse(400, "Invalid JSON payload")
        if not isinstance(payload, dict):
            return WebhookResponse(400, "Invalid JSON payload")

        event = (event or "").strip().lower()
        if event == "ping":
            logger.info("Webhook ping (hook %s)", payload.get("hook_id", "unknown"))
            return WebhookResponse(200, "pong")
        if event != "push":
            return WebhookResponse(200, f"Ignored {event or 'unnamed'} event")

        configured = self.settings.repository.full_name
        repository = (payload.get("repository") or {}).get("full_name", "")
        if configured and repository.lower() != configured.lower():
            logger.info("Ignoring push to %s", repository or "an unknown repository")
            return WebhookResponse(200, f"Ignored push to {repository or 'an unknown repository'}")

        ref = payload.get("ref", "")
        if not ref.startswith(BRANCH_REF_PREFIX):
            return WebhookResponse(200, f"Ignored push to {ref or 'an unknown ref'}")
        branch = ref[len(BRANCH_REF_PREFIX):]
        if branch != self.settings.branch:
            return WebhookResponse(200, f"Ignored push to branch {branch}")
        if payload.get("deleted"):
            return WebhookResponse(200, f"Ignored deletion of branch {branch}")

        commit = payload.get("after", "") or branch
        if not self.settings.webhook_deploy:
            self.store.set(LATEST_COMMIT_KEY, commit)
            self.store.set(UPDATE_AVAILABLE_KEY, True)
            logger.info("Push to %s (%s) recorded; webhook deployments are disabled", branch, commit[:8])
            return WebhookResponse(200, f"Update available: {commit[:8]}")

        logger.info("Deploying %s from push to %s", commit[:8], branch)
        result = self.orchestrator.deploy(commit, actor=WEBHOOK_ACTOR)
        if result.status is OperationStatus.BUSY:
            return WebhookResponse(429, result.message)
        if result.status is OperationStatus.IN_PROGRESS:
            return WebhookResponse(202, result.message)
        if result.status is OperationStatus.SUCCEEDED:
            return WebhookResponse(200, result.message)
        return WebhookResponse(500, result.message)
