"""FastAPI application for the sitesync HTTP surface.

Provides REST API endpoints wrapping the sitesync package for:
- Deploy, rollback and resume operations
- Status, deployment history and snapshot listings
- GitHub push webhooks

Serve it with ``uvicorn --factory web.backend.app.main:create_app``; settings
come from ``sitesync.yaml`` (or ``$SITESYNC_CONFIG``) unless passed in.
"""

from __future__ import annotations

from fastapi import FastAPI

from sitesync import __version__
from sitesync.config import Settings, load_settings
from sitesync.remote import repository_from_settings
from sitesync.remote.base import Repository
from sitesync.store.kv import JsonFileStore, KeyValueStore
from sitesync.sync.orchestrator import DeploymentOrchestrator
from sitesync.triggers.webhook import WebhookHandler

from web.backend.app.dependencies import Services
from web.backend.app.routers import deployments, webhook


def create_app(
    settings: Settings | None = None,
    store: KeyValueStore | None = None,
    repository: Repository | None = None,
    orchestrator: DeploymentOrchestrator | None = None,
) -> FastAPI:
    """Build the application around one site's orchestrator."""
    settings = settings or load_settings()
    store = store or JsonFileStore(settings.store_file)
    repository = repository or repository_from_settings(settings)
    orchestrator = orchestrator or DeploymentOrchestrator(settings, store, repository)

    app = FastAPI(
        title="sitesync API",
        description="Deploy, roll back and inspect a site synchronized from a git repository.",
        version=__version__,
    )
    app.state.services = Services(
        settings=settings,
        store=store,
        orchestrator=orchestrator,
        webhook=WebhookHandler(settings, orchestrator, store),
    )

    # ---------------------------------------------------------------------------
    # Include routers
    # ---------------------------------------------------------------------------
    app.include_router(deployments.router)
    app.include_router(webhook.router)

    # ---------------------------------------------------------------------------
    # Root and health-check endpoints
    # ---------------------------------------------------------------------------

    @app.get("/", tags=["meta"])
    async def root():
        """Return basic API information."""
        return {
            "name": "sitesync API",
            "version": __version__,
            "docs": "/docs",
            "openapi": "/openapi.json",
        }

    @app.get("/health", tags=["meta"])
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app
