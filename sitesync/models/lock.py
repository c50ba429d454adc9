"""Deployment lock records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class LockInfo:
    """The lock as stored: who holds it, since when, and for how long."""

    holder: str
    acquired_at: float  # Unix seconds
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.acquired_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {"holder": self.holder, "acquired_at": self.acquired_at, "ttl": self.ttl}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LockInfo:
        return cls(
            holder=str(data["holder"]),
            acquired_at=float(data["acquired_at"]),
            ttl=float(data["ttl"]),
        )


@dataclass(frozen=True)
class LockHandle:
    """Proof of acquisition, required to refresh or release the lock."""

    holder: str
    acquired_at: float
    ttl: float

    def as_info(self) -> LockInfo:
        return LockInfo(self.holder, self.acquired_at, self.ttl)
