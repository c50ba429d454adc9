"""Remote repositories a site can be deployed from."""

from __future__ import annotations

from sitesync.config import Settings
from sitesync.remote.archive import extract_archive
from sitesync.remote.base import CommitInfo, Repository, TreeItem
from sitesync.remote.github import GitHubRepository
from sitesync.remote.local_git import LocalGitRepository

__all__ = [
    "CommitInfo",
    "GitHubRepository",
    "LocalGitRepository",
    "Repository",
    "TreeItem",
    "extract_archive",
    "repository_from_settings",
]


def repository_from_settings(settings: Settings) -> Repository:
    """Build the repository client named by ``settings.repository.provider``."""
    repo = settings.repository
    if repo.provider == "local":
        if not repo.path:
            raise ValueError("repository.path is required for the local provider")
        return LocalGitRepository(repo.path)
    if repo.provider == "github":
        return GitHubRepository(
            owner=repo.owner,
            repo=repo.name,
            token=repo.token,
            api_base=repo.api_base,
            timeout=repo.timeout,
        )
    raise ValueError(f"Unknown repository provider: {repo.provider}")
