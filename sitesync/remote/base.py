"""The remote side of a deployment: commits, trees, archives and uploads.

Implementations raise ``RemoteError`` for every failure (network, API,
missing ref); the orchestrator turns it into a ``REMOTE_ERROR`` result.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from sitesync.diff.tree import FileTree


@dataclass
class CommitInfo:
    """A resolved commit."""

    sha: str
    message: str = ""
    author: str = ""
    date: str = ""  # ISO 8601

    @property
    def short_sha(self) -> str:
        return self.sha[:8]

    @property
    def summary(self) -> str:
        return self.message.splitlines()[0] if self.message else ""


@dataclass(frozen=True)
class TreeItem:
    """A file to commit: its path, the SHA of an uploaded blob and a git file mode."""

    path: str
    sha: str
    mode: str = "100644"


class Repository(ABC):
    """What the engine needs from a remote repository."""

    @abstractmethod
    def get_commit(self, ref: str) -> CommitInfo:
        """Resolve a branch, tag or SHA to a commit."""

    @abstractmethod
    def get_tree(self, ref: str) -> FileTree:
        """List every file and directory at ``ref``, with blob SHAs."""

    @abstractmethod
    def download_archive(self, ref: str) -> bytes:
        """Return a zip archive of the tree at ``ref``."""

    @abstractmethod
    def create_repository(self, name: str, description: str = "") -> str:
        """Create the repository; returns its location (URL or path)."""

    @abstractmethod
    def repository_exists(self) -> bool:
        """Whether the configured repository is reachable."""

    @abstractmethod
    def upload_blob(self, data: bytes) -> str:
        """Store ``data`` as a blob; returns its git blob SHA."""

    @abstractmethod
    def commit_tree(self, items: list[TreeItem], message: str, branch: str) -> CommitInfo:
        """Commit exactly ``items`` on top of ``branch`` and move the branch to it.

        Files of the previous commit that are not in ``items`` are dropped.
        The branch is created when it does not exist yet.
        """

    @property
    def display_name(self) -> str:
        return type(self).__name__
