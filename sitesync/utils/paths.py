"""Relative path helpers shared by the diff engine, snapshots and archives."""

from __future__ import annotations

import fnmatch
import posixpath


def normalize_relative(path: str) -> str:
    """Return ``path`` as a normalized, forward-slash relative path.

    Raises:
        ValueError: If the path is empty, absolute, or escapes its root.
    """
    candidate = path.replace("\\", "/").strip()
    if not candidate or candidate in (".", "/"):
        raise ValueError(f"Empty path: {path!r}")
    if candidate.startswith("/") or (len(candidate) > 1 and candidate[1] == ":"):
        raise ValueError(f"Absolute path not allowed: {path!r}")
    parts = [p for p in candidate.split("/") if p not in ("", ".")]
    if any(p == ".." for p in parts):
        raise ValueError(f"Path traversal not allowed: {path!r}")
    if not parts:
        raise ValueError(f"Empty path: {path!r}")
    return "/".join(parts)


def depth(path: str) -> int:
    return path.count("/") + 1


def top_level(path: str) -> str:
    return path.split("/", 1)[0]


def ancestors(path: str) -> list[str]:
    """Return every prefix of ``path`` from the top-level entry down to itself.

    ``ancestors("a/b/c.txt") == ["a", "a/b", "a/b/c.txt"]``
    """
    parts = path.split("/")
    return ["/".join(parts[: i + 1]) for i in range(len(parts))]


def is_ignored(path: str, patterns: list[str] | tuple[str, ...]) -> bool:
    """Check a relative path against glob ignore patterns.

    Each pattern is matched against the full relative path and the bare name
    of the path and of every ancestor directory, so a pattern that matches a
    directory excludes everything below it. Patterns are globs, not
    substrings: ``cache/*`` excludes ``cache/a.txt`` but not
    ``other/cache-note.txt``.
    """
    if not patterns:
        return False
    for prefix in ancestors(path):
        name = posixpath.basename(prefix)
        for pattern in patterns:
            if fnmatch.fnmatchcase(prefix, pattern) or fnmatch.fnmatchcase(name, pattern):
                return True
    return False
