"""Tests for archive extraction and the repository clients."""

import base64
import hashlib
import io
import json
import logging
import shutil
import tempfile
import zipfile
from pathlib import Path

import httpx
import pytest
from helpers import ARCHIVE_DATE, read_tree

from sitesync.config import Settings
from sitesync.remote import GitHubRepository, LocalGitRepository, extract_archive, repository_from_settings
from sitesync.remote.base import TreeItem
from sitesync.remote.github import TransientRemoteError
from sitesync.result import RemoteError


def _zip(entries: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in entries.items():
            archive.writestr(zipfile.ZipInfo(name, date_time=ARCHIVE_DATE), data)
    return buffer.getvalue()


# --- Archive extraction ---


def test_extract_strips_top_level_directory():
    with tempfile.TemporaryDirectory() as tmpdir:
        data = _zip({
            "acme-website-1a2b3c4/": b"",
            "acme-website-1a2b3c4/index.php": b"<?php",
            "acme-website-1a2b3c4/css/site.css": b"body{}",
        })

        written = extract_archive(data, tmpdir)

        assert written == 2
        assert read_tree(Path(tmpdir)) == {"index.php": b"<?php", "css/site.css": b"body{}"}


def test_extract_sets_mtimes_from_archive():
    with tempfile.TemporaryDirectory() as tmpdir:
        extract_archive(_zip({"repo-abc/a.txt": b"a"}), tmpdir)
        first = (Path(tmpdir) / "a.txt").stat().st_mtime
        shutil.rmtree(tmpdir)
        extract_archive(_zip({"repo-abc/a.txt": b"a"}), tmpdir)
        assert (Path(tmpdir) / "a.txt").stat().st_mtime == first


def test_extract_without_common_prefix():
    with tempfile.TemporaryDirectory() as tmpdir:
        extract_archive(_zip({"a.txt": b"a", "b/c.txt": b"c"}), tmpdir)
        assert read_tree(Path(tmpdir)) == {"a.txt": b"a", "b/c.txt": b"c"}


def test_extract_rejects_bad_input():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(RemoteError):
            extract_archive(b"definitely not a zip", tmpdir)
        with pytest.raises(RemoteError):
            extract_archive(_zip({"ok.txt": b"", "../escape.txt": b"x"}), Path(tmpdir) / "out")
        assert not (Path(tmpdir) / "escape.txt").exists()


# --- GitHub client ---


def _github(handler, **kwargs):
    sleeps = []
    repo = GitHubRepository(
        "acme", "website", token="t0ken",
        transport=httpx.MockTransport(handler), sleep=sleeps.append, **kwargs,
    )
    return repo, sleeps


def test_github_get_commit_and_tree():
    def handler(request):
        assert request.headers["Authorization"] == "Bearer t0ken"
        if request.url.path == "/repos/acme/website/commits/main":
            return httpx.Response(200, json={
                "sha": "a" * 40,
                "commit": {"message": "Fix header\n\nLonger text", "author": {"name": "Ann", "date": "2024-01-01T00:00:00Z"}},
            })
        if request.url.path == f"/repos/acme/website/git/trees/{'a' * 40}":
            assert request.url.params["recursive"] == "1"
            return httpx.Response(200, json={"truncated": False, "tree": [
                {"path": "css", "type": "tree"},
                {"path": "css/site.css", "type": "blob", "size": 6, "sha": "b" * 40},
                {"path": "vendor/lib", "type": "commit"},
            ]})
        return httpx.Response(404, json={"message": "Not Found"})

    repo, _ = _github(handler)
    commit = repo.get_commit("main")
    assert commit.sha == "a" * 40
    assert commit.summary == "Fix header"
    assert commit.short_sha == "aaaaaaaa"

    tree = repo.get_tree(commit.sha)
    assert tree.paths() == ["css", "css/site.css"]
    assert tree.content_hash("css/site.css") == "b" * 40


def test_github_retries_server_errors():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(502, text="Bad Gateway")
        return httpx.Response(200, content=b"zip bytes")

    repo, sleeps = _github(handler)
    assert repo.download_archive("main") == b"zip bytes"
    assert len(calls) == 3
    assert sleeps == [2, 4]


def test_github_rate_limit_is_reported():
    def handler(request):
        return httpx.Response(
            403, json={"message": "API rate limit exceeded"}, headers={"x-ratelimit-remaining": "0"}
        )

    repo, sleeps = _github(handler, retries=2)
    with pytest.raises(RemoteError) as exc:
        repo.get_commit("main")
    assert "rate limit" in exc.value.message
    assert sleeps == [2]


def test_github_network_errors_retry_until_attempts_run_out(caplog):
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    repo, sleeps = _github(handler, retries=3)
    with caplog.at_level(logging.INFO, logger="sitesync.remote.github"):
        with pytest.raises(TransientRemoteError) as exc:
            repo.get_commit("main")
    assert isinstance(exc.value, RemoteError)
    assert "Network error" in exc.value.message
    assert len(calls) == 3
    assert sleeps == [2, 4]
    retries = [r for r in caplog.records if "retrying" in r.getMessage()]
    assert len(retries) == 2
    assert "GET /repos/acme/website/commits/main" in retries[0].getMessage()


def test_github_client_errors_are_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(422, json={"message": "No commit found for SHA: nope"})

    repo, sleeps = _github(handler)
    with pytest.raises(RemoteError) as exc:
        repo.get_commit("nope")
    assert exc.value.status_code == 422
    assert "No commit found" in exc.value.message
    assert len(calls) == 1
    assert sleeps == []


def test_github_truncated_tree():
    repo, _ = _github(lambda request: httpx.Response(200, json={"truncated": True, "tree": []}))
    with pytest.raises(RemoteError):
        repo.get_tree("main")


def test_github_repository_exists_and_create():
    created = []

    def handler(request):
        if request.method == "POST":
            created.append(json.loads(request.content))
            return httpx.Response(201, json={"html_url": "https://github.com/acme/website"})
        return httpx.Response(404, json={"message": "Not Found"})

    repo, _ = _github(handler)
    assert repo.repository_exists() is False
    assert repo.create_repository("website", "Company site") == "https://github.com/acme/website"
    assert created[0]["private"] is True
    assert created[0]["description"] == "Company site"


def _git_data_handler(calls, head_status=200):
    def handler(request):
        path = request.url.path
        body = json.loads(request.content) if request.content else None
        calls.append((request.method, path, body))
        if path == "/repos/acme/website/git/blobs":
            return httpx.Response(201, json={"sha": "b" * 40})
        if path == "/repos/acme/website/git/ref/heads/main":
            if head_status != 200:
                return httpx.Response(head_status, json={"message": "Git Repository is empty."})
            return httpx.Response(200, json={"object": {"sha": "p" * 40}})
        if path == "/repos/acme/website/git/trees":
            return httpx.Response(201, json={"sha": "t" * 40})
        if path == "/repos/acme/website/git/commits":
            return httpx.Response(201, json={"sha": "c" * 40, "author": {"name": "sitesync", "date": "2024-01-01T00:00:00Z"}})
        if path in ("/repos/acme/website/git/refs/heads/main", "/repos/acme/website/git/refs"):
            return httpx.Response(200, json={"ref": "refs/heads/main"})
        return httpx.Response(404, json={"message": "Not Found"})

    return handler


def test_github_upload_blob_and_commit_tree():
    calls = []
    repo, _ = _github(_git_data_handler(calls))

    assert repo.upload_blob(b"<?php echo 1;") == "b" * 40
    method, _, body = calls[0]
    assert method == "POST"
    assert body["encoding"] == "base64"
    assert base64.b64decode(body["content"]) == b"<?php echo 1;"

    commit = repo.commit_tree(
        [TreeItem("index.php", "b" * 40), TreeItem("bin/run.sh", "e" * 40, "100755")], "Import site", "main"
    )

    assert commit.sha == "c" * 40
    assert commit.message == "Import site"
    by_path = {(m, p): b for m, p, b in calls}
    tree = by_path[("POST", "/repos/acme/website/git/trees")]["tree"]
    assert tree == [
        {"path": "index.php", "mode": "100644", "type": "blob", "sha": "b" * 40},
        {"path": "bin/run.sh", "mode": "100755", "type": "blob", "sha": "e" * 40},
    ]
    assert "base_tree" not in by_path[("POST", "/repos/acme/website/git/trees")]
    new_commit = by_path[("POST", "/repos/acme/website/git/commits")]
    assert new_commit == {"message": "Import site", "tree": "t" * 40, "parents": ["p" * 40]}
    assert by_path[("PATCH", "/repos/acme/website/git/refs/heads/main")] == {"sha": "c" * 40, "force": True}


def test_github_commit_tree_creates_missing_branch():
    calls = []
    repo, _ = _github(_git_data_handler(calls, head_status=409))

    repo.commit_tree([TreeItem("index.php", "b" * 40)], "First commit", "main")

    by_path = {(m, p): b for m, p, b in calls}
    assert by_path[("POST", "/repos/acme/website/git/commits")]["parents"] == []
    assert by_path[("POST", "/repos/acme/website/git/refs")] == {"ref": "refs/heads/main", "sha": "c" * 40}
    assert ("PATCH", "/repos/acme/website/git/refs/heads/main") not in by_path


# --- Local git ---


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


@requires_git
def test_local_git_repository():
    from git import Actor, Repo

    with tempfile.TemporaryDirectory() as tmpdir:
        work = Path(tmpdir) / "site-repo"
        repo = Repo.init(work)
        (work / "index.php").write_text("<?php echo 1;")
        (work / "lib").mkdir()
        (work / "lib" / "util.php").write_text("<?php")
        repo.index.add(["index.php", "lib/util.php"])
        author = Actor("Ann", "ann@example.com")
        sha = repo.index.commit("Initial import", author=author, committer=author).hexsha

        local = LocalGitRepository(work)
        assert local.repository_exists()
        commit = local.get_commit("HEAD")
        assert commit.sha == sha
        assert commit.summary == "Initial import"
        assert local.get_commit(sha[:8]).sha == sha

        tree = local.get_tree(sha)
        assert tree.paths() == ["index.php", "lib", "lib/util.php"]

        staging = Path(tmpdir) / "staging"
        extract_archive(local.download_archive(sha), staging)
        assert read_tree(staging) == {"index.php": b"<?php echo 1;", "lib/util.php": b"<?php"}

        with pytest.raises(RemoteError):
            local.get_commit("no-such-ref")


@requires_git
def test_local_git_create_repository():
    with tempfile.TemporaryDirectory() as tmpdir:
        local = LocalGitRepository(Path(tmpdir) / "new.git")
        assert not local.repository_exists()
        local.create_repository("new", "A new site")
        assert local.repository_exists()
        with pytest.raises(RemoteError):
            local.create_repository("new")


@requires_git
def test_local_git_upload_and_commit_tree():
    from git import Repo

    with tempfile.TemporaryDirectory() as tmpdir:
        local = LocalGitRepository(Path(tmpdir) / "site.git")
        local.create_repository("site")

        page = local.upload_blob(b"<?php echo 1;")
        script = local.upload_blob(b"#!/bin/sh\n")
        assert page == hashlib.sha1(b"blob 13\0<?php echo 1;").hexdigest()

        first = local.commit_tree(
            [TreeItem("index.php", page), TreeItem("bin/run.sh", script, "100755")], "Import site", "main"
        )
        assert first.summary == "Import site"
        assert local.get_tree(first.sha).paths() == ["bin", "bin/run.sh", "index.php"]
        git_commit = Repo(local.path).commit(first.sha)
        assert git_commit.tree["bin/run.sh"].mode == 0o100755
        assert git_commit.author.name == "sitesync"

        second = local.commit_tree([TreeItem("index.php", page)], "Drop scripts", "main")
        assert local.get_commit("main").sha == second.sha
        assert local.get_tree("main").paths() == ["index.php"]
        assert Repo(local.path).commit(second.sha).parents[0].hexsha == first.sha


def test_repository_from_settings():
    settings = Settings()
    settings.repository.owner = "acme"
    settings.repository.name = "website"
    assert isinstance(repository_from_settings(settings), GitHubRepository)

    settings.repository.provider = "local"
    with pytest.raises(ValueError):
        repository_from_settings(settings)
    settings.repository.path = "/srv/git/site.git"
    assert isinstance(repository_from_settings(settings), LocalGitRepository)

    with pytest.raises(ValueError):
        repository_from_settings(Settings())
