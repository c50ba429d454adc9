"""Ordered file actions that turn a target tree into a source tree."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator

from sitesync.utils.paths import normalize_relative, top_level


class ActionKind(Enum):
    """What happens to a single path when a change set is applied."""

    ADD = "add"
    MODIFY = "modify"
    DELETE = "delete"


@dataclass(frozen=True)
class FileAction:
    """A single add/modify/delete of one relative path."""

    path: str
    kind: ActionKind
    source_ref: str | None = None  # Content hash or ref the action came from
    is_dir: bool = False

    def describe(self) -> str:
        suffix = "/" if self.is_dir else ""
        return f"{self.kind.value} {self.path}{suffix}"


@dataclass
class ChangeSet:
    """Ordered collection of file actions with unique, normalized paths.

    Produced fresh by the diff engine for each deployment attempt and never
    persisted.
    """

    actions: list[FileAction] = field(default_factory=list)

    def __post_init__(self):
        seen: set[str] = set()
        normalized = []
        for action in self.actions:
            path = normalize_relative(action.path)
            if path in seen:
                raise ValueError(f"Duplicate path in change set: {path}")
            seen.add(path)
            if path != action.path:
                action = FileAction(path, action.kind, action.source_ref, action.is_dir)
            normalized.append(action)
        self.actions = normalized

    def __iter__(self) -> Iterator[FileAction]:
        return iter(self.actions)

    def __len__(self) -> int:
        return len(self.actions)

    def __getitem__(self, index):
        return self.actions[index]

    @property
    def is_empty(self) -> bool:
        return not self.actions

    @property
    def paths(self) -> list[str]:
        return [a.path for a in self.actions]

    def top_level_paths(self) -> list[str]:
        """Affected top-level entries, in first-seen order."""
        result: list[str] = []
        for action in self.actions:
            root = top_level(action.path)
            if root not in result:
                result.append(root)
        return result

    def counts(self) -> dict[str, int]:
        counter = Counter(a.kind.value for a in self.actions)
        return {kind.value: counter.get(kind.value, 0) for kind in ActionKind}

    def summary(self) -> str:
        if self.is_empty:
            return "no changes"
        c = self.counts()
        return f"{c['add']} added, {c['modify']} modified, {c['delete']} deleted"

    @classmethod
    def from_actions(cls, actions: Iterable[FileAction]) -> ChangeSet:
        return cls(actions=list(actions))
