"""Settings loaded from a YAML file with environment overrides.

Example ``sitesync.yaml``::

    site_root: /var/www/site
    data_dir: /var/lib/sitesync
    branch: main
    repository:
      provider: github
      owner: acme
      name: website
    compare_mode: strict
    chunk_size: 500
    ignore_patterns:
      - .git
      - "*.log"

Secrets can stay out of the file: ``SITESYNC_GITHUB_TOKEN`` (or
``GITHUB_TOKEN``) and ``SITESYNC_WEBHOOK_SECRET`` override the file values.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from sitesync.diff.engine import CompareMode

DEFAULT_CONFIG_FILE = "sitesync.yaml"

DEFAULT_IGNORE_PATTERNS = [
    ".git",
    "node_modules",
    "*.log",
    ".env",
    ".maintenance",
]

PROVIDERS = ("github", "local")


@dataclass
class RepositorySettings:
    """Where the remote tree comes from."""

    provider: str = "github"
    owner: str = ""
    name: str = ""
    path: str = ""  # Local git repository, for provider "local"
    token: str = ""
    api_base: str = "https://api.github.com"
    timeout: float = 30.0

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}" if self.owner and self.name else ""


@dataclass
class Settings:
    """All tunables of the deployment engine."""

    site_root: str = "."
    data_dir: str = ".sitesync"
    branch: str = "main"
    repository: RepositorySettings = field(default_factory=RepositorySettings)

    ignore_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS))
    compare_mode: str = CompareMode.STRICT.value
    delete_removed: bool = True

    create_snapshot: bool = True
    snapshot_paths: list[str] = field(default_factory=list)
    max_snapshots: int = 10
    maintenance_mode: bool = True

    history_limit: int = 100
    lock_ttl: int = 15 * 60
    chunk_size: int = 500

    auto_deploy: bool = False
    webhook_deploy: bool = True
    webhook_secret: str = ""
    platform_version: str = ""

    # Derived locations ------------------------------------------------

    @property
    def site_path(self) -> Path:
        return Path(self.site_root).expanduser()

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @property
    def store_file(self) -> Path:
        return self.data_path / "state.json"

    @property
    def snapshot_dir(self) -> Path:
        return self.data_path / "snapshots"

    @property
    def staging_dir(self) -> Path:
        return self.data_path / "staging"

    def effective_ignore_patterns(self) -> list[str]:
        """Configured patterns plus the data directory when it lives inside the site."""
        patterns = list(self.ignore_patterns)
        try:
            rel = self.data_path.resolve().relative_to(self.site_path.resolve())
        except ValueError:
            return patterns
        rel_str = rel.as_posix()
        if rel_str not in ("", ".") and rel_str not in patterns:
            patterns.append(rel_str)
        return patterns

    def validate(self) -> None:
        CompareMode(self.compare_mode)
        if self.repository.provider not in PROVIDERS:
            raise ValueError(
                f"Unknown repository provider {self.repository.provider!r}; "
                f"expected one of {', '.join(PROVIDERS)}"
            )
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.lock_ttl <= 0:
            raise ValueError("lock_ttl must be positive")


def settings_from_dict(data: dict[str, Any]) -> Settings:
    """Build settings from a parsed mapping, ignoring unknown keys."""
    data = dict(data or {})
    repo_data = data.pop("repository", None) or {}
    repo = RepositorySettings(
        **{k: v for k, v in repo_data.items() if k in RepositorySettings.__dataclass_fields__}
    )
    known = {k: v for k, v in data.items() if k in Settings.__dataclass_fields__}
    settings = Settings(repository=repo, **known)
    _apply_env(settings)
    settings.validate()
    return settings


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from YAML. A missing file yields defaults plus env overrides."""
    path = Path(path or os.environ.get("SITESYNC_CONFIG", DEFAULT_CONFIG_FILE))
    data: dict[str, Any] = {}
    if path.exists():
        with open(path) as f:
            loaded = yaml.safe_load(f)
        if loaded is not None and not isinstance(loaded, dict):
            raise ValueError(f"{path} must contain a mapping at the top level")
        data = loaded or {}
    return settings_from_dict(data)


def _apply_env(settings: Settings) -> None:
    token = os.environ.get("SITESYNC_GITHUB_TOKEN") or os.environ.get("GITHUB_TOKEN")
    if token:
        settings.repository.token = token
    secret = os.environ.get("SITESYNC_WEBHOOK_SECRET")
    if secret:
        settings.webhook_secret = secret
