"""Access to the services built by ``create_app``."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from sitesync.config import Settings
from sitesync.store.kv import KeyValueStore
from sitesync.sync.orchestrator import DeploymentOrchestrator
from sitesync.triggers.webhook import WebhookHandler


@dataclass
class Services:
    """Everything a request handler needs, shared across requests."""

    settings: Settings
    store: KeyValueStore
    orchestrator: DeploymentOrchestrator
    webhook: WebhookHandler


def get_services(request: Request) -> Services:
    """Return the services attached to the running application."""
    return request.app.state.services
