"""Persistence for canvas state.

This package provides:
- Key-value storage backends (in-memory with quota, atomic file storage)
- An ordered backup manifest replacing storage-wide key scans
- The PersistenceController: save/load, compressed fallback, backup rotation
  and the auto-save policy
"""
from .controller import LoadOutcome, LoadResult, PersistenceController, SaveResult
from .manifest import BackupEntry, BackupManifest, ManifestStore, backup_key
from .storage import FileStorage, KeyValueStorage, MemoryStorage, atomic_write

__all__ = [
    "PersistenceController",
    "LoadOutcome",
    "LoadResult",
    "SaveResult",
    "BackupEntry",
    "BackupManifest",
    "ManifestStore",
    "backup_key",
    "KeyValueStorage",
    "MemoryStorage",
    "FileStorage",
    "atomic_write",
]
