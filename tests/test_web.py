"""Tests for the HTTP API."""

import hashlib
import hmac
import json
import tempfile
from pathlib import Path

from fastapi.testclient import TestClient
from helpers import FakeRepository

from sitesync.config import Settings
from sitesync.store.kv import MemoryStore
from web.backend.app.main import create_app

SECRET = "hook-secret"


def _client(tmpdir, **overrides):
    settings = Settings(
        site_root=str(Path(tmpdir) / "site"),
        data_dir=str(Path(tmpdir) / "data"),
        webhook_secret=SECRET,
        maintenance_mode=False,
        **overrides,
    )
    repository = FakeRepository()
    return TestClient(create_app(settings, store=MemoryStore(), repository=repository)), repository


def test_meta_endpoints():
    with tempfile.TemporaryDirectory() as tmpdir:
        client, _ = _client(tmpdir)
        assert client.get("/health").json() == {"status": "healthy"}
        assert client.get("/").json()["name"] == "sitesync API"


def test_deploy_status_and_history():
    with tempfile.TemporaryDirectory() as tmpdir:
        client, repository = _client(tmpdir)
        sha = repository.commit({"index.php": "api"})

        response = client.post("/api/deploy", json={"actor": "bob"})
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "succeeded"
        assert body["record"]["commit"] == sha
        assert body["changes"]["add"] == 1

        status = client.get("/api/status").json()
        assert status["status"] == "idle"
        assert status["last_deployed_commit"] == sha
        assert status["lock_held"] is False

        history = client.get("/api/deployments", params={"limit": 5}).json()
        assert history["total_count"] == 1
        assert history["deployments"][0]["actor"] == "bob"

        assert client.get("/api/snapshots").json()["total_count"] == 0


def test_operation_status_codes():
    with tempfile.TemporaryDirectory() as tmpdir:
        client, repository = _client(tmpdir, chunk_size=1)

        assert client.post("/api/rollback", json={}).status_code == 404
        assert client.post("/api/resume", json={}).status_code == 404

        repository.commit({"a.txt": "a", "b.txt": "b"})
        started = client.post("/api/deploy", json={})
        assert started.status_code == 202
        assert started.json()["progress"]["current_step"] == 1

        assert client.post("/api/deploy", json={}).status_code == 409
        assert client.get("/api/status").json()["status"] == "in_progress"

        assert client.post("/api/resume", json={}).status_code == 200

        repository.fail_downloads = True
        repository.commit({"a.txt": "changed"})
        assert client.post("/api/deploy", json={}).status_code == 500



def test_upload_route():
    with tempfile.TemporaryDirectory() as tmpdir:
        client, repository = _client(tmpdir)
        site = Path(tmpdir) / "site"
        site.mkdir(exist_ok=True)
        (site / "index.php").write_text("<?php echo 'live';")

        response = client.post("/api/upload", json={"message": "Import live site", "actor": "carol"})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "succeeded"
        assert body["record"]["kind"] == "upload"
        assert body["record"]["actor"] == "carol"
        assert repository.messages[repository.branches["main"]] == "Import live site"
        assert repository.commits[repository.branches["main"]] == {"index.php": b"<?php echo 'live';"}
        assert client.get("/api/status").json()["last_deployed_commit"] == body["record"]["commit"]


def test_webhook_route():
    with tempfile.TemporaryDirectory() as tmpdir:
        client, repository = _client(tmpdir)
        sha = repository.commit({"index.php": "pushed"})
        body = json.dumps({"ref": "refs/heads/main", "after": sha}).encode()
        signature = "sha256=" + hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()

        rejected = client.post(
            "/api/webhook", content=body,
            headers={"X-GitHub-Event": "push", "X-Hub-Signature-256": "sha256=bad"},
        )
        assert rejected.status_code == 401

        accepted = client.post(
            "/api/webhook", content=body,
            headers={"X-GitHub-Event": "push", "X-Hub-Signature-256": signature},
        )
        assert accepted.status_code == 200
        assert accepted.json()["message"].startswith("Deployed")
        assert (Path(tmpdir) / "site" / "index.php").read_text() == "pushed"
