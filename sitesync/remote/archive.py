"""Zip archive extraction for downloaded repository snapshots."""

from __future__ import annotations

import io
import os
import time
import zipfile
from pathlib import Path

from sitesync.result import RemoteError
from sitesync.utils.paths import normalize_relative


def _common_prefix(names: list[str]) -> str:
    """Return ``"<dir>/"`` when every entry lives under one top-level directory."""
    tops = {name.split("/", 1)[0] for name in names if name.strip("/")}
    if len(tops) != 1:
        return ""
    top = tops.pop()
    if all(name == f"{top}/" or name.startswith(f"{top}/") for name in names):
        return f"{top}/"
    return ""


def extract_archive(data: bytes, dest: str | Path) -> int:
    """Extract a repository zip into ``dest`` and return the number of files written.

    Hosting services wrap the tree in a single ``<repo>-<sha>/`` directory;
    it is stripped so ``dest`` mirrors the repository root. Modification
    times are set from the archive so repeated extractions of the same
    commit produce identical trees.

    Raises:
        RemoteError: If the data is not a zip or an entry would escape ``dest``.
    """
    dest = Path(dest)
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as exc:
        raise RemoteError(f"Downloaded archive is not a valid zip file: {exc}")

    with archive:
        infos = archive.infolist()
        prefix = _common_prefix([info.filename for info in infos])
        dest.mkdir(parents=True, exist_ok=True)
        written = 0
        dir_times: list[tuple[Path, float]] = []

        for info in infos:
            name = info.filename[len(prefix):] if prefix else info.filename
            if not name.strip("/"):
                continue
            try:
                rel = normalize_relative(name)
            except ValueError as exc:
                raise RemoteError(f"Refusing to extract archive entry {info.filename!r}: {exc}")

            target = dest / rel
            mtime = time.mktime(info.date_time + (0, 0, -1))
            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                dir_times.append((target, mtime))
                continue

            target.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(info) as src, open(target, "wb") as out:
                while True:
                    chunk = src.read(1 << 16)
                    if not chunk:
                        break
                    out.write(chunk)
            os.utime(target, (mtime, mtime))
            written += 1

        # Directory times last, after their contents stopped changing them
        for path, mtime in sorted(dir_times, key=lambda item: len(item[0].parts), reverse=True):
            os.utime(path, (mtime, mtime))

    return written
