"""Flat, path-keyed file trees the diff engine can walk.

A tree is a flat mapping of normalized relative paths to entries. Trees built
from a local directory hash file contents lazily; trees built from a remote
listing carry the hashes the remote reported. Both use git blob SHA-1s so a
local file and a remote blob with the same content compare equal.
"""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator

from sitesync.utils.paths import is_ignored, normalize_relative

_CHUNK_SIZE = 1 << 16


@dataclass(frozen=True)
class TreeEntry:
    """A file or directory in a tree."""

    path: str
    is_dir: bool = False
    size: int | None = None
    mtime: float | None = None
    sha: str | None = None


def git_blob_sha(path: str | Path) -> str:
    """Hash a file the way git hashes a blob: sha1("blob <size>\\0" + content)."""
    path = Path(path)
    size = path.stat().st_size
    digest = hashlib.sha1(f"blob {size}\0".encode("ascii"))
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class FileTree:
    """Flat, path-keyed view of a directory tree."""

    def __init__(self, entries: Iterable[TreeEntry] = (), root: str | Path | None = None):
        self.root = Path(root) if root is not None else None
        self._entries: dict[str, TreeEntry] = {}
        self._hashes: dict[str, str] = {}
        for entry in entries:
            path = normalize_relative(entry.path)
            if path != entry.path:
                entry = TreeEntry(path, entry.is_dir, entry.size, entry.mtime, entry.sha)
            self._entries[path] = entry

    @classmethod
    def from_directory(
        cls, root: str | Path, ignore_patterns: Iterable[str] = ()
    ) -> FileTree:
        """Scan ``root`` recursively, pruning ignored subtrees as it goes.

        A missing root yields an empty tree.
        """
        root = Path(root)
        patterns = tuple(ignore_patterns)
        entries: list[TreeEntry] = []
        if not root.is_dir():
            return cls(entries, root=root)

        for dirpath, dirnames, filenames in os.walk(root):
            rel_dir = os.path.relpath(dirpath, root).replace(os.sep, "/")
            rel_dir = "" if rel_dir == "." else rel_dir

            kept = []
            for name in sorted(dirnames):
                rel = f"{rel_dir}/{name}" if rel_dir else name
                if is_ignored(rel, patterns):
                    continue
                full = os.path.join(dirpath, name)
                entries.append(TreeEntry(rel, is_dir=True, mtime=os.lstat(full).st_mtime))
                # Symlinked directories are listed but not descended into
                if not os.path.islink(full):
                    kept.append(name)
            dirnames[:] = kept

            for name in sorted(filenames):
                rel = f"{rel_dir}/{name}" if rel_dir else name
                if is_ignored(rel, patterns):
                    continue
                st = os.stat(os.path.join(dirpath, name))
                entries.append(TreeEntry(rel, size=st.st_size, mtime=st.st_mtime))

        return cls(entries, root=root)

    def __contains__(self, path: str) -> bool:
        return path in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[TreeEntry]:
        for path in sorted(self._entries):
            yield self._entries[path]

    def get(self, path: str) -> TreeEntry | None:
        return self._entries.get(path)

    def paths(self) -> list[str]:
        return sorted(self._entries)

    def files(self) -> list[TreeEntry]:
        return [e for e in self if not e.is_dir]

    def directories_with_children(self) -> set[str]:
        """Directories that have at least one entry below them."""
        parents: set[str] = set()
        for path in self._entries:
            while "/" in path:
                path = path.rsplit("/", 1)[0]
                if path in parents:
                    break
                parents.add(path)
        return parents

    def content_hash(self, path: str) -> str | None:
        """Return the git blob SHA of a file, hashing it from disk if needed."""
        entry = self._entries.get(path)
        if entry is None or entry.is_dir:
            return None
        if entry.sha:
            return entry.sha
        if path not in self._hashes:
            if self.root is None:
                return None
            self._hashes[path] = git_blob_sha(self.root / path)
        return self._hashes[path]
