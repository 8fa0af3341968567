"""Key-value storage backends for persisted canvas state.

``MemoryStorage`` mirrors browser local storage (string values, optional
byte quota). ``FileStorage`` keeps one file per key under a directory and
writes atomically.
"""
from __future__ import annotations

import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

import structlog

from ..errors import StorageQuotaError, StorageWriteError

logger = structlog.get_logger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.\-]+$")


def atomic_write(path: Path | str, data: bytes) -> Path:
    """Write bytes via a sibling temp file, fsync, then rename over the target."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(prefix=target.name + ".", suffix=".tmp", dir=str(target.parent))
    try:
        with os.fdopen(tmp_fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, target)
        return target
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


class KeyValueStorage(ABC):
    """String key/value storage with enumeration."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value.

        Raises:
            StorageQuotaError: the write would exceed the quota
            StorageWriteError: the backend failed to write
        """
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    def keys(self) -> list[str]:
        ...

    def keys_with_prefix(self, prefix: str) -> list[str]:
        return [k for k in self.keys() if k.startswith(prefix)]

    def size_of(self, key: str) -> int:
        value = self.get(key)
        return len(value.encode("utf-8")) if value is not None else 0

    def total_size(self) -> int:
        return sum(self.size_of(k) for k in self.keys())


class MemoryStorage(KeyValueStorage):
    """In-process storage with an optional quota on total UTF-8 bytes."""

    def __init__(self, quota_bytes: int | None = None) -> None:
        self.quota_bytes = quota_bytes
        self._data: dict[str, str] = {}
        self.fail_writes = False

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise StorageWriteError(key, "storage is read-only")
        if self.quota_bytes is not None:
            size = len(value.encode("utf-8"))
            projected = self.total_size() - self.size_of(key) + size
            if projected > self.quota_bytes:
                raise StorageQuotaError(projected, self.quota_bytes)
        self._data[key] = value

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self) -> list[str]:
        return list(self._data)


class FileStorage(KeyValueStorage):
    """One ``<key>.json`` file per key inside ``root``."""

    SUFFIX = ".json"

    def __init__(self, root: str | Path, quota_bytes: int | None = None) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.quota_bytes = quota_bytes

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"unsafe storage key: {key!r}")
        return self.root / f"{key}{self.SUFFIX}"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("storage.read_failed", key=key, error=str(e))
            return None

    def set(self, key: str, value: str) -> None:
        data = value.encode("utf-8")
        if self.quota_bytes is not None:
            projected = self.total_size() - self._file_size(key) + len(data)
            if projected > self.quota_bytes:
                raise StorageQuotaError(projected, self.quota_bytes)
        try:
            atomic_write(self._path(key), data)
        except OSError as e:
            raise StorageWriteError(key, str(e)) from e

    def delete(self, key: str) -> bool:
        try:
            self._path(key).unlink()
            return True
        except FileNotFoundError:
            return False

    def keys(self) -> list[str]:
        return sorted(p.name[: -len(self.SUFFIX)] for p in self.root.glob(f"*{self.SUFFIX}") if p.is_file())

    def size_of(self, key: str) -> int:
        return self._file_size(key)

    def _file_size(self, key: str) -> int:
        try:
            return self._path(key).stat().st_size
        except FileNotFoundError:
            return 0
