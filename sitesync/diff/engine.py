"""Diff engine — compute the change set that turns a target tree into a source tree.

The source is the remote state being deployed, the target is the live site.
The engine is pure: it reads the two trees (hashing local files on demand)
and returns a ``ChangeSet``. It never writes and never logs.

Two content-signature policies are supported:

- ``strict``: git blob SHA-1 of the full content. Always correct.
- ``fast``: file size plus whole-second modification time. Much cheaper on
  large trees, but a file rewritten with identical size and mtime is missed.
  When either side has no mtime (remote listings) only sizes are compared.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable

from sitesync.diff.tree import FileTree, TreeEntry
from sitesync.models.changeset import ActionKind, ChangeSet, FileAction
from sitesync.utils.paths import depth, is_ignored


class CompareMode(Enum):
    STRICT = "strict"
    FAST = "fast"


class DiffEngine:
    """Computes ordered change sets between two file trees."""

    def __init__(self, compare_mode: CompareMode | str = CompareMode.STRICT, delete_removed: bool = True):
        self.compare_mode = CompareMode(compare_mode)
        self.delete_removed = delete_removed

    def compute(
        self,
        source_tree: FileTree,
        target_tree: FileTree,
        ignore_patterns: Iterable[str] = (),
    ) -> ChangeSet:
        """Diff ``source_tree`` (remote) against ``target_tree`` (local).

        Adds and modifies come first, parents before children; deletes come
        last, children before parents.
        """
        patterns = tuple(ignore_patterns)
        upserts: list[FileAction] = []
        deletes: list[FileAction] = []
        source_parents = source_tree.directories_with_children()

        for src in source_tree:
            if is_ignored(src.path, patterns):
                continue
            tgt = target_tree.get(src.path)

            if tgt is None:
                # Non-empty directories are created by the files inside them
                if src.is_dir and src.path in source_parents:
                    continue
                upserts.append(
                    FileAction(src.path, ActionKind.ADD, self._source_ref(source_tree, src), src.is_dir)
                )
            elif src.is_dir != tgt.is_dir:
                upserts.append(
                    FileAction(src.path, ActionKind.MODIFY, self._source_ref(source_tree, src), src.is_dir)
                )
            elif not src.is_dir and self._differs(source_tree, src, target_tree, tgt):
                upserts.append(
                    FileAction(src.path, ActionKind.MODIFY, self._source_ref(source_tree, src))
                )

        if self.delete_removed:
            for tgt in target_tree:
                if tgt.path in source_tree or is_ignored(tgt.path, patterns):
                    continue
                deletes.append(FileAction(tgt.path, ActionKind.DELETE, None, tgt.is_dir))

        upserts.sort(key=lambda a: (depth(a.path), a.path))
        deletes.sort(key=lambda a: (-depth(a.path), a.path))
        return ChangeSet(upserts + deletes)

    # ------------------------------------------------------------------
    # Signatures
    # ------------------------------------------------------------------

    def _differs(self, source_tree: FileTree, src: TreeEntry, target_tree: FileTree, tgt: TreeEntry) -> bool:
        if self.compare_mode is CompareMode.FAST:
            if src.size is not None and tgt.size is not None and src.size != tgt.size:
                return True
            if src.mtime is None or tgt.mtime is None:
                return False
            return int(src.mtime) != int(tgt.mtime)

        return source_tree.content_hash(src.path) != target_tree.content_hash(tgt.path)

    def _source_ref(self, tree: FileTree, entry: TreeEntry) -> str | None:
        if entry.is_dir:
            return None
        if entry.sha:
            return entry.sha
        if self.compare_mode is CompareMode.STRICT:
            return tree.content_hash(entry.path)
        return None
