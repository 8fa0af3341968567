"""Ordered manifest of timestamped backups, stored next to the primary entry.

Rotation reads the manifest instead of scanning every storage key. A
missing or unreadable manifest is rebuilt from one prefix scan.
"""
from __future__ import annotations

import json
from typing import TYPE_CHECKING

import structlog
from pydantic import Field
from pydantic import ValidationError as PydanticValidationError

from ..models.base import CanvasModel

if TYPE_CHECKING:
    from .storage import KeyValueStorage

logger = structlog.get_logger(__name__)


class BackupEntry(CanvasModel):
    key: str
    timestamp: int


class BackupManifest(CanvasModel):
    primary_key: str
    backups: list[BackupEntry] = Field(default_factory=list)

    def newest_first(self) -> list[BackupEntry]:
        return sorted(self.backups, key=lambda b: b.timestamp, reverse=True)

    def add(self, key: str, timestamp: int) -> None:
        self.backups = [b for b in self.backups if b.key != key]
        self.backups.append(BackupEntry(key=key, timestamp=timestamp))
        self.backups = self.newest_first()

    def prune(self, keep: int) -> list[BackupEntry]:
        """Drop all but the ``keep`` most recent entries; returns the dropped ones."""
        ordered = self.newest_first()
        self.backups = ordered[:keep]
        return ordered[keep:]


def backup_key(primary_key: str, timestamp: int) -> str:
    return f"{primary_key}_backup_{timestamp}"


def _timestamp_from_key(key: str) -> int | None:
    suffix = key.rsplit("_", 1)[-1]
    return int(suffix) if suffix.isdigit() else None


class ManifestStore:
    """Reads and writes the backup manifest for one primary key."""

    def __init__(self, storage: KeyValueStorage, primary_key: str, manifest_key: str, backup_prefix: str) -> None:
        self.storage = storage
        self.primary_key = primary_key
        self.manifest_key = manifest_key
        self.backup_prefix = backup_prefix

    def load(self) -> BackupManifest:
        raw = self.storage.get(self.manifest_key)
        if raw is not None:
            try:
                manifest = BackupManifest.model_validate(json.loads(raw))
                if manifest.primary_key == self.primary_key:
                    return manifest
            except (json.JSONDecodeError, PydanticValidationError) as e:
                logger.warning("manifest.unreadable", key=self.manifest_key, error=str(e))
        return self.rebuild()

    def rebuild(self) -> BackupManifest:
        """Recover the manifest from existing backup keys."""
        manifest = BackupManifest(primary_key=self.primary_key)
        for key in self.storage.keys_with_prefix(self.backup_prefix):
            timestamp = _timestamp_from_key(key)
            if timestamp is not None:
                manifest.add(key, timestamp)
        if manifest.backups:
            logger.info("manifest.rebuilt", backups=len(manifest.backups))
        return manifest

    def save(self, manifest: BackupManifest) -> None:
        self.storage.set(self.manifest_key, json.dumps(manifest.to_wire()))

    def delete(self) -> None:
        self.storage.delete(self.manifest_key)
