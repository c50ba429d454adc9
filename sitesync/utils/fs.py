"""Recursive copy and delete that treat symlinks as links."""

from __future__ import annotations

import os
import shutil
from pathlib import Path


def copy_path(source: str | Path, destination: str | Path) -> None:
    """Copy a file or directory tree, preserving modification times.

    Parent directories of ``destination`` are created as needed. An existing
    destination directory is merged into; existing files are overwritten.
    """
    source = Path(source)
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    if source.is_dir() and not source.is_symlink():
        shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)
    else:
        shutil.copy2(source, destination, follow_symlinks=False)


def remove_path(path: str | Path) -> bool:
    """Delete a file, symlink or directory tree. Returns False if nothing was there."""
    path = Path(path)
    if path.is_symlink() or path.is_file():
        path.unlink()
        return True
    if path.is_dir():
        shutil.rmtree(path)
        return True
    return False


def exists(path: str | Path) -> bool:
    return os.path.lexists(path)
