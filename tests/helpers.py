"""Shared test doubles: an in-memory repository and tree helpers."""

from __future__ import annotations

import hashlib
import io
import zipfile
from pathlib import Path

from sitesync.config import Settings
from sitesync.diff.tree import FileTree, TreeEntry
from sitesync.remote.base import CommitInfo, Repository, TreeItem
from sitesync.result import RemoteError
from sitesync.store.kv import MemoryStore
from sitesync.sync.maintenance import NullMaintenanceMode
from sitesync.sync.orchestrator import DeploymentOrchestrator

ARCHIVE_DATE = (2024, 1, 2, 3, 4, 6)


def write_tree(root: Path, files: dict[str, str | bytes]) -> None:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        data = content.encode() if isinstance(content, str) else content
        path.write_bytes(data)


def read_tree(root: Path, skip: tuple[str, ...] = ()) -> dict[str, bytes]:
    """Every file under ``root`` as ``{relative path: content}``."""
    result = {}
    if not root.exists():
        return result
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root).as_posix()
        if any(rel == s or rel.startswith(s + "/") for s in skip):
            continue
        if path.is_file():
            result[rel] = path.read_bytes()
    return result


class FakeRepository(Repository):
    """Commits held in memory; archives are built with zipfile on demand."""

    def __init__(self, name: str = "site-repo"):
        self.name = name
        self.commits: dict[str, dict[str, bytes]] = {}
        self.messages: dict[str, str] = {}
        self.branches: dict[str, str] = {}
        self.fail_downloads = False
        self.created: list[str] = []
        self.blobs: dict[str, bytes] = {}
        self.blob_uploads = 0
        self.fail_uploads_after: int | None = None  # Blob uploads that succeed before errors start

    def commit(self, files: dict[str, str | bytes], branch: str = "main", message: str = "") -> str:
        normalized = {k: v.encode() if isinstance(v, str) else v for k, v in files.items()}
        digest = hashlib.sha1()
        for path in sorted(normalized):
            digest.update(path.encode() + b"\0" + normalized[path] + b"\0")
        digest.update(str(len(self.commits)).encode())
        sha = digest.hexdigest()
        self.commits[sha] = normalized
        self.messages[sha] = message or f"commit {len(self.commits)}"
        self.branches[branch] = sha
        return sha

    def _resolve(self, ref: str) -> str:
        if ref in self.branches:
            return self.branches[ref]
        for sha in self.commits:
            if len(ref) >= 7 and sha.startswith(ref):
                return sha
        raise RemoteError(f"No commit found for ref {ref}", 404)

    def get_commit(self, ref: str) -> CommitInfo:
        sha = self._resolve(ref)
        return CommitInfo(sha=sha, message=self.messages[sha], author="Test", date="2024-01-02T03:04:06+00:00")

    def get_tree(self, ref: str) -> FileTree:
        files = self.commits[self._resolve(ref)]
        entries = []
        dirs = set()
        for path, data in files.items():
            sha = hashlib.sha1(f"blob {len(data)}\0".encode() + data).hexdigest()
            entries.append(TreeEntry(path, size=len(data), sha=sha))
            parts = path.split("/")[:-1]
            for i in range(len(parts)):
                dirs.add("/".join(parts[: i + 1]))
        entries.extend(TreeEntry(d, is_dir=True) for d in dirs)
        return FileTree(entries)

    def download_archive(self, ref: str) -> bytes:
        if self.fail_downloads:
            raise RemoteError("Connection reset by peer")
        sha = self._resolve(ref)
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            prefix = f"{self.name}-{sha[:7]}/"
            archive.writestr(zipfile.ZipInfo(prefix, date_time=ARCHIVE_DATE), b"")
            for path, data in sorted(self.commits[sha].items()):
                archive.writestr(zipfile.ZipInfo(prefix + path, date_time=ARCHIVE_DATE), data)
        return buffer.getvalue()

    def create_repository(self, name: str, description: str = "") -> str:
        self.created.append(name)
        return f"memory://{name}"

    def repository_exists(self) -> bool:
        return True

    def upload_blob(self, data: bytes) -> str:
        if self.fail_uploads_after is not None and self.blob_uploads >= self.fail_uploads_after:
            raise RemoteError("GitHub API error 502: Bad Gateway", 502)
        self.blob_uploads += 1
        sha = hashlib.sha1(f"blob {len(data)}\0".encode() + data).hexdigest()
        self.blobs[sha] = data
        return sha

    def commit_tree(self, items: list[TreeItem], message: str, branch: str) -> CommitInfo:
        missing = [item.path for item in items if item.sha not in self.blobs]
        if missing:
            raise RemoteError(f"Tree references unknown blobs: {missing}", 422)
        sha = self.commit({item.path: self.blobs[item.sha] for item in items}, branch, message)
        return self.get_commit(sha)


def make_orchestrator(tmpdir: str, repository: Repository | None = None, **overrides):
    """Orchestrator over ``<tmpdir>/site`` with an in-memory store."""
    base = Path(tmpdir)
    settings = Settings(
        site_root=str(base / "site"),
        data_dir=str(base / "data"),
        ignore_patterns=[".git", "*.log", "uploads"],
        **overrides,
    )
    (base / "site").mkdir(exist_ok=True)
    store = MemoryStore()
    repository = repository or FakeRepository()
    orchestrator = DeploymentOrchestrator(
        settings, store, repository, maintenance=NullMaintenanceMode()
    )
    return orchestrator
