"""Maintenance-mode toggles.

The orchestrator only needs ``enable()`` and ``disable()``; both must be safe
to call repeatedly.
"""

from __future__ import annotations

import time
from pathlib import Path


class MaintenanceMode:
    """Interface for the site-wide maintenance signal."""

    def enable(self) -> None:
        raise NotImplementedError

    def disable(self) -> None:
        raise NotImplementedError

    def is_enabled(self) -> bool:
        raise NotImplementedError

    def reserved_paths(self) -> list[str]:
        """Site-relative paths the toggle owns; deployments must leave them alone."""
        return []


class FileMaintenanceMode(MaintenanceMode):
    """Signals maintenance by the presence of a marker file in the site root."""

    def __init__(self, site_root: str | Path, filename: str = ".maintenance"):
        self.marker = Path(site_root) / filename

    def enable(self) -> None:
        self.marker.parent.mkdir(parents=True, exist_ok=True)
        self.marker.write_text(f"upgrading={int(time.time())}\n", encoding="utf-8")

    def disable(self) -> None:
        if self.marker.exists():
            self.marker.unlink()

    def is_enabled(self) -> bool:
        return self.marker.exists()

    def reserved_paths(self) -> list[str]:
        return [self.marker.name]


class NullMaintenanceMode(MaintenanceMode):
    """Records the toggle in memory only."""

    def __init__(self):
        self.enabled = False
        self.transitions: list[bool] = []

    def enable(self) -> None:
        self.enabled = True
        self.transitions.append(True)

    def disable(self) -> None:
        self.enabled = False
        self.transitions.append(False)

    def is_enabled(self) -> bool:
        return self.enabled
