"""Key/value store holding settings, history, locks and progress.

Every component that needs shared state receives a ``KeyValueStore`` through
its constructor. The only concurrency primitive the engine relies on is
``compare_and_set``; a store that cannot make it atomic must not claim to.

Two implementations are provided:

- ``MemoryStore``: process-local, for tests and embedding.
- ``JsonFileStore``: a single JSON document on disk. Read-modify-write cycles
  run under an exclusive ``fcntl.flock`` on a sidecar lock file and writes are
  atomic renames, so separate processes (CLI, cron, web) see consistent data.
"""

from __future__ import annotations

import copy
import fcntl
import json
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator


_MISSING = object()


class KeyValueStore:
    """Interface for the external configuration store."""

    #: Whether ``compare_and_set`` is atomic across every writer of the store.
    supports_atomic_cas: bool = False

    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def compare_and_set(self, key: str, expected: Any, new: Any) -> bool:
        """Replace the value of ``key`` with ``new`` only if it equals ``expected``.

        ``expected=None`` means "the key is absent"; ``new=None`` deletes the key.
        Returns True if the swap happened.
        """
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    """Thread-safe in-memory store."""

    supports_atomic_cas = True

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = copy.deepcopy(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def compare_and_set(self, key: str, expected: Any, new: Any) -> bool:
        with self._lock:
            current = self._data.get(key)
            if current != expected:
                return False
            if new is None:
                self._data.pop(key, None)
            else:
                self._data[key] = copy.deepcopy(new)
            return True

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)


class JsonFileStore(KeyValueStore):
    """File-backed store holding all keys in one JSON document.

    Storage layout::

        <path>        the JSON document
        <path>.lock   sidecar file used for fcntl locking
    """

    supports_atomic_cas = True

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock_path = self.path.with_name(self.path.name + ".lock")

    # ------------------------------------------------------------------
    # Locking and persistence helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self._lock_path.touch(exist_ok=True)
        fd = os.open(str(self._lock_path), os.O_RDWR)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError(f"Store file {self.path} does not contain a JSON object")
        return data

    def _save(self, data: dict[str, Any]) -> None:
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, sort_keys=True)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, str(self.path))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    # ------------------------------------------------------------------
    # KeyValueStore
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        with self._locked():
            value = self._load().get(key, _MISSING)
        return default if value is _MISSING else value

    def set(self, key: str, value: Any) -> None:
        with self._locked():
            data = self._load()
            data[key] = value
            self._save(data)

    def delete(self, key: str) -> None:
        with self._locked():
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)

    def compare_and_set(self, key: str, expected: Any, new: Any) -> bool:
        with self._locked():
            data = self._load()
            if data.get(key) != expected:
                return False
            if new is None:
                data.pop(key, None)
            else:
                data[key] = new
            self._save(data)
            return True
