"""Snapshot metadata."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Snapshot:
    """An immutable point-in-time copy of a set of site paths.

    ``paths`` lists exactly what was physically copied. ``absent_paths`` lists
    requested paths that did not exist when the snapshot was taken; restoring
    the snapshot removes them again.
    """

    id: str
    created_at: str  # ISO 8601, UTC
    paths: tuple[str, ...]
    actor: str = ""
    site_metadata: dict[str, str] = field(default_factory=dict)
    absent_paths: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "paths": list(self.paths),
            "actor": self.actor,
            "site_metadata": dict(self.site_metadata),
            "absent_paths": list(self.absent_paths),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Snapshot:
        return cls(
            id=data["id"],
            created_at=data["created_at"],
            paths=tuple(data["paths"]),
            actor=data.get("actor", ""),
            site_metadata=dict(data.get("site_metadata", {})),
            absent_paths=tuple(data.get("absent_paths", [])),
        )
