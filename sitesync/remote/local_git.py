"""Local git repository as a deployment source, via GitPython."""

from __future__ import annotations

import io
import tempfile
from pathlib import Path

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo
from git.exc import BadName, BadObject

from sitesync.diff.tree import FileTree, TreeEntry
from sitesync.remote.base import CommitInfo, Repository, TreeItem
from sitesync.result import RemoteError

COMMIT_IDENTITY = {
    "GIT_AUTHOR_NAME": "sitesync",
    "GIT_AUTHOR_EMAIL": "sitesync@localhost",
    "GIT_COMMITTER_NAME": "sitesync",
    "GIT_COMMITTER_EMAIL": "sitesync@localhost",
}

# Paths per update-index call
INDEX_BATCH = 200


class LocalGitRepository(Repository):
    """A git repository on the local filesystem (bare or with a work tree)."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    @property
    def display_name(self) -> str:
        return str(self.path)

    def _repo(self) -> Repo:
        try:
            return Repo(self.path)
        except (InvalidGitRepositoryError, NoSuchPathError):
            raise RemoteError(f"Not a git repository: {self.path}", 404)

    def _commit(self, repo: Repo, ref: str):
        try:
            return repo.commit(ref)
        except (BadName, BadObject, ValueError, GitCommandError) as exc:
            raise RemoteError(f"Unknown ref {ref!r} in {self.path}: {exc}", 404)

    def get_commit(self, ref: str) -> CommitInfo:
        repo = self._repo()
        commit = self._commit(repo, ref)
        return CommitInfo(
            sha=commit.hexsha,
            message=commit.message.strip() if isinstance(commit.message, str) else "",
            author=commit.author.name or "",
            date=commit.committed_datetime.isoformat(),
        )

    def get_tree(self, ref: str) -> FileTree:
        repo = self._repo()
        commit = self._commit(repo, ref)
        entries = []
        for item in commit.tree.traverse():
            if item.type == "tree":
                entries.append(TreeEntry(item.path, is_dir=True))
            elif item.type == "blob":
                entries.append(TreeEntry(item.path, size=item.size, sha=item.hexsha))
            # Submodule entries ("commit") have no content in the archive
        return FileTree(entries)

    def download_archive(self, ref: str) -> bytes:
        repo = self._repo()
        commit = self._commit(repo, ref)
        buffer = io.BytesIO()
        prefix = f"{self.path.name or 'repo'}-{commit.hexsha[:7]}/"
        try:
            repo.archive(buffer, treeish=commit.hexsha, prefix=prefix, format="zip")
        except GitCommandError as exc:
            raise RemoteError(f"git archive failed for {ref}: {exc}")
        return buffer.getvalue()

    def create_repository(self, name: str, description: str = "") -> str:
        if self.repository_exists():
            raise RemoteError(f"Repository already exists: {self.path}", 422)
        try:
            repo = Repo.init(self.path, mkdir=True)
            if description:
                Path(repo.git_dir, "description").write_text(description + "\n", encoding="utf-8")
        except (OSError, GitCommandError) as exc:
            raise RemoteError(f"Could not create repository {name} at {self.path}: {exc}")
        return str(self.path)

    def repository_exists(self) -> bool:
        try:
            Repo(self.path)
        except (InvalidGitRepositoryError, NoSuchPathError):
            return False
        return True

    def upload_blob(self, data: bytes) -> str:
        repo = self._repo()
        try:
            with tempfile.TemporaryFile() as fh:
                fh.write(data)
                fh.seek(0)
                return repo.git.hash_object("-w", "--stdin", istream=fh).strip()
        except (OSError, GitCommandError) as exc:
            raise RemoteError(f"Could not store blob in {self.path}: {exc}")

    def commit_tree(self, items: list[TreeItem], message: str, branch: str) -> CommitInfo:
        """Build the commit with a throwaway index, then move ``refs/heads/<branch>``.

        The work tree of a non-bare repository is not touched.
        """
        repo = self._repo()
        try:
            parent = repo.commit(f"refs/heads/{branch}").hexsha
        except (BadName, BadObject, ValueError, GitCommandError):
            parent = None
        try:
            with tempfile.TemporaryDirectory() as tmpdir:
                env = dict(COMMIT_IDENTITY, GIT_INDEX_FILE=str(Path(tmpdir) / "index"))
                for start in range(0, len(items), INDEX_BATCH):
                    args = []
                    for item in items[start:start + INDEX_BATCH]:
                        args += ["--cacheinfo", f"{item.mode},{item.sha},{item.path}"]
                    repo.git.update_index("--add", *args, env=env)
                tree = repo.git.write_tree(env=env).strip()
            args = [tree, "-m", message]
            if parent:
                args += ["-p", parent]
            sha = repo.git.commit_tree(*args, env=COMMIT_IDENTITY).strip()
            repo.git.update_ref(f"refs/heads/{branch}", sha)
        except (OSError, GitCommandError) as exc:
            raise RemoteError(f"Could not commit to {branch} in {self.path}: {exc}")
        return self.get_commit(sha)
