"""Tests for the snapshot store."""

import json
import tempfile
import time
from pathlib import Path

from helpers import read_tree, write_tree

from sitesync.result import ErrorKind
from sitesync.snapshots import SnapshotStore


def _store(tmpdir, **kwargs):
    site = Path(tmpdir) / "site"
    site.mkdir(exist_ok=True)
    return site, SnapshotStore(Path(tmpdir) / "snapshots", site, **kwargs)


def test_create_and_restore_file_for_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        site, store = _store(tmpdir, platform_version="6.4")
        write_tree(site, {"theme/style.css": "body{}", "theme/img/logo.svg": "<svg/>", "index.php": "<?php"})
        before = read_tree(site)

        result = store.create(["theme", "index.php"], actor="tester")
        assert result.ok
        snapshot = result.value
        assert snapshot.paths == ("theme", "index.php")
        assert snapshot.actor == "tester"
        assert snapshot.site_metadata["platform_version"] == "6.4"

        write_tree(site, {"theme/style.css": "changed", "theme/new.css": "new", "index.php": "broken"})
        (site / "theme" / "img" / "logo.svg").unlink()

        restored = store.restore(snapshot.id)
        assert restored.ok
        assert read_tree(site) == before


def test_missing_paths_are_warnings_and_removed_on_restore():
    with tempfile.TemporaryDirectory() as tmpdir:
        site, store = _store(tmpdir)
        write_tree(site, {"a.txt": "a"})

        result = store.create(["a.txt", "later"])
        assert result.ok
        assert result.value.absent_paths == ("later",)
        assert any("later" in w for w in result.warnings)

        write_tree(site, {"later/created.txt": "appeared after the snapshot"})
        assert store.restore(result.value.id).ok
        assert not (site / "later").exists()
        assert (site / "a.txt").read_text() == "a"


def test_nothing_to_copy_fails_and_leaves_no_directory():
    with tempfile.TemporaryDirectory() as tmpdir:
        site, store = _store(tmpdir)
        result = store.create(["missing"])

        assert result.error == ErrorKind.SNAPSHOT_FAILED
        assert store.list() == []
        assert not list(store.snapshot_dir.glob("snapshot-*"))


def test_guard_files_are_written():
    with tempfile.TemporaryDirectory() as tmpdir:
        _, store = _store(tmpdir)
        assert (store.snapshot_dir / ".htaccess").read_text().strip() == "Deny from all"
        assert (store.snapshot_dir / "index.html").exists()


def test_rotation_deletes_exactly_the_oldest():
    with tempfile.TemporaryDirectory() as tmpdir:
        site, store = _store(tmpdir, max_keep=10)
        write_tree(site, {"a.txt": "a"})

        ids = []
        for _ in range(11):
            ids.append(store.create(["a.txt"]).value.id)
            time.sleep(0.002)

        remaining = [s.id for s in store.list()]
        assert len(remaining) == 10
        assert ids[0] not in remaining
        assert remaining == list(reversed(ids[1:]))


def test_rotate_explicitly():
    with tempfile.TemporaryDirectory() as tmpdir:
        site, store = _store(tmpdir, max_keep=0)
        write_tree(site, {"a.txt": "a"})
        ids = []
        for _ in range(3):
            ids.append(store.create(["a.txt"]).value.id)
            time.sleep(0.002)

        assert store.rotate(1) == [ids[0], ids[1]]
        assert [s.id for s in store.list()] == [ids[2]]


def test_rotation_skips_protected_snapshots():
    with tempfile.TemporaryDirectory() as tmpdir:
        site, store = _store(tmpdir, max_keep=3)
        write_tree(site, {"a.txt": "a"})
        ids = []
        for _ in range(3):
            ids.append(store.create(["a.txt"]).value.id)
            time.sleep(0.002)

        newest = store.create(["a.txt"], protect=[ids[0]]).value.id

        remaining = [s.id for s in store.list()]
        assert remaining == [newest, ids[2], ids[0]]
        assert store.rotate(1, keep=ids[0]) == [ids[2], newest]
        assert [s.id for s in store.list()] == [ids[0]]


def test_get_reports_missing_and_invalid_metadata():
    with tempfile.TemporaryDirectory() as tmpdir:
        site, store = _store(tmpdir)
        write_tree(site, {"a.txt": "a"})

        assert store.get("snapshot-nope").error == ErrorKind.NOT_FOUND
        assert store.get("../escape").error == ErrorKind.NOT_FOUND
        assert store.restore("snapshot-nope").error == ErrorKind.NOT_FOUND

        snapshot = store.create(["a.txt"]).value
        metadata = store.snapshot_dir / snapshot.id / "metadata.json"
        metadata.write_text("{not json")
        assert store.get(snapshot.id).error == ErrorKind.INVALID_METADATA

        metadata.write_text(json.dumps({"id": snapshot.id, "created_at": "x", "paths": []}))
        assert store.restore(snapshot.id).error == ErrorKind.INVALID_METADATA


def test_partial_restore_of_selected_paths():
    with tempfile.TemporaryDirectory() as tmpdir:
        site, store = _store(tmpdir)
        write_tree(site, {"a.txt": "a", "b.txt": "b"})
        snapshot = store.create(["a.txt", "b.txt"]).value
        write_tree(site, {"a.txt": "A", "b.txt": "B"})

        result = store.restore(snapshot.id, paths=["a.txt", "c.txt"])

        assert result.ok
        assert (site / "a.txt").read_text() == "a"
        assert (site / "b.txt").read_text() == "B"
        assert any("c.txt" in w for w in result.warnings)


def test_delete():
    with tempfile.TemporaryDirectory() as tmpdir:
        site, store = _store(tmpdir)
        write_tree(site, {"a.txt": "a"})
        snapshot = store.create(["a.txt"]).value

        assert store.delete(snapshot.id)
        assert not store.delete(snapshot.id)
        assert store.list() == []
