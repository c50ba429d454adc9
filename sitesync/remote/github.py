"""GitHub REST API client built on httpx."""

from __future__ import annotations

import base64
import logging
import time
from typing import Any, Callable

import httpx
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from sitesync.diff.tree import FileTree, TreeEntry
from sitesync.remote.base import CommitInfo, Repository, TreeItem
from sitesync.result import RemoteError

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.github.com"
USER_AGENT = "sitesync"


class GitHubRepository(Repository):
    """One GitHub repository, addressed as ``owner/repo``.

    Transient failures (transport errors, 5xx responses, exhausted rate
    limits) are retried with exponential backoff; everything else raises
    ``RemoteError`` straight away.
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str = "",
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 30.0,
        retries: int = 3,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not owner or not repo:
            raise ValueError("GitHub repository requires both an owner and a name")
        self.owner = owner
        self.repo = repo
        self.retries = max(1, retries)
        self._sleep = sleep
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": USER_AGENT,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=api_base.rstrip("/"),
            headers=headers,
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    @property
    def display_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def _repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        retrying = Retrying(
            # stop_after_attempt counts the first request too.
            stop=stop_after_attempt(self.retries),
            wait=wait_exponential(multiplier=2),
            retry=retry_if_exception_type(TransientRemoteError),
            before_sleep=_log_retry(method, path),
            sleep=self._sleep,
            reraise=True,
        )
        return retrying(self._send, method, path, **kwargs)

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise TransientRemoteError(f"Network error talking to GitHub: {exc}")
        if response.status_code < 400:
            return response
        if _is_transient(response):
            raise TransientRemoteError(_error_message(response), response.status_code)
        raise RemoteError(_error_message(response), response.status_code)

    def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteError(f"GitHub returned invalid JSON for {path}: {exc}")

    # ------------------------------------------------------------------
    # Repository
    # ------------------------------------------------------------------

    def get_commit(self, ref: str) -> CommitInfo:
        data = self._json("GET", f"{self._repo_path}/commits/{ref}")
        commit = data.get("commit", {})
        author = commit.get("author") or {}
        return CommitInfo(
            sha=data.get("sha", ""),
            message=commit.get("message", ""),
            author=author.get("name", ""),
            date=author.get("date", ""),
        )

    def get_tree(self, ref: str) -> FileTree:
        data = self._json("GET", f"{self._repo_path}/git/trees/{ref}", params={"recursive": "1"})
        if data.get("truncated"):
            raise RemoteError(f"GitHub truncated the tree listing for {ref}; it is too large to compare")
        entries = []
        for item in data.get("tree", []):
            kind = item.get("type")
            if kind == "tree":
                entries.append(TreeEntry(item["path"], is_dir=True))
            elif kind == "blob":
                entries.append(TreeEntry(item["path"], size=item.get("size"), sha=item.get("sha")))
        return FileTree(entries)

    def download_archive(self, ref: str) -> bytes:
        response = self._request("GET", f"{self._repo_path}/zipball/{ref}")
        return response.content

    def create_repository(self, name: str, description: str = "") -> str:
        data = self._json(
            "POST",
            "/user/repos",
            json={"name": name, "description": description, "private": True, "auto_init": True},
        )
        return data.get("html_url", "")

    def repository_exists(self) -> bool:
        try:
            self._request("GET", self._repo_path)
        except RemoteError as exc:
            if exc.status_code == 404:
                return False
            raise
        return True

    # ------------------------------------------------------------------
    # Git data API (uploads)
    # ------------------------------------------------------------------

    def upload_blob(self, data: bytes) -> str:
        payload = {"content": base64.b64encode(data).decode("ascii"), "encoding": "base64"}
        return _sha(self._json("POST", f"{self._repo_path}/git/blobs", json=payload), "blob")

    def commit_tree(self, items: list[TreeItem], message: str, branch: str) -> CommitInfo:
        parent = self._branch_head(branch)
        tree = self._json(
            "POST",
            f"{self._repo_path}/git/trees",
            json={"tree": [
                {"path": item.path, "mode": item.mode, "type": "blob", "sha": item.sha}
                for item in items
            ]},
        )
        commit = self._json(
            "POST",
            f"{self._repo_path}/git/commits",
            json={
                "message": message,
                "tree": _sha(tree, "tree"),
                "parents": [parent] if parent else [],
            },
        )
        sha = _sha(commit, "commit")
        if parent:
            self._json(
                "PATCH", f"{self._repo_path}/git/refs/heads/{branch}", json={"sha": sha, "force": True}
            )
        else:
            self._json(
                "POST", f"{self._repo_path}/git/refs", json={"ref": f"refs/heads/{branch}", "sha": sha}
            )
        logger.info("Moved %s of %s to %s", branch, self.display_name, sha[:8])
        author = commit.get("author") or {}
        return CommitInfo(sha=sha, message=message, author=author.get("name", ""), date=author.get("date", ""))

    def _branch_head(self, branch: str) -> str | None:
        """SHA the branch points at, or None for a missing branch or an empty repository."""
        try:
            data = self._json("GET", f"{self._repo_path}/git/ref/heads/{branch}")
        except RemoteError as exc:
            if exc.status_code in (404, 409):
                return None
            raise
        return (data.get("object") or {}).get("sha") or None


class TransientRemoteError(RemoteError):
    """A failure worth retrying: network trouble, 5xx or an exhausted rate limit."""


def _log_retry(method: str, path: str) -> Callable[[RetryCallState], None]:
    def log(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.info(
            "GitHub request %s %s failed (%s), retrying in %ds (attempt %d)",
            method, path, exc, wait, retry_state.attempt_number,
        )

    return log


def _is_transient(response: httpx.Response) -> bool:
    if response.status_code >= 500:
        return True
    return (
        response.status_code in (403, 429)
        and response.headers.get("x-ratelimit-remaining", "") == "0"
    )


def _sha(payload: Any, what: str) -> str:
    sha = payload.get("sha") if isinstance(payload, dict) else None
    if not sha:
        raise RemoteError(f"GitHub did not return a SHA for the new {what}")
    return sha


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    detail = payload.get("message", "") if isinstance(payload, dict) else ""
    detail = detail or response.reason_phrase or "unknown error"
    if response.status_code in (403, 429) and response.headers.get("x-ratelimit-remaining") == "0":
        return f"GitHub API rate limit exceeded ({detail})"
    return f"GitHub API error {response.status_code}: {detail}"
