"""Key/value stores for settings, history, locks and progress."""

from sitesync.store.kv import JsonFileStore, KeyValueStore, MemoryStore

__all__ = ["JsonFileStore", "KeyValueStore", "MemoryStore"]
