"""Diffing a remote tree against the local tree."""

from sitesync.diff.engine import CompareMode, DiffEngine
from sitesync.diff.tree import FileTree, TreeEntry, git_blob_sha

__all__ = ["CompareMode", "DiffEngine", "FileTree", "TreeEntry", "git_blob_sha"]
