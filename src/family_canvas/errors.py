"""Error taxonomy for the relationship graph engine.

Integrity fixes and skipped edges never propagate; format, validation and
storage failures are reported to the caller.
"""
from __future__ import annotations

from dataclasses import dataclass, field


class FamilyCanvasError(Exception):
    """Base class for all engine errors."""


@dataclass
class ValidationError(FamilyCanvasError):
    """A person edit or connect request is incomplete or inconsistent.

    Raised before any mutation is applied.
    """

    message: str
    missing_fields: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        if self.missing_fields:
            return f"{self.message} (missing: {', '.join(self.missing_fields)})"
        return self.message


@dataclass
class IntegrityError(FamilyCanvasError):
    """A record references itself through a relational field.

    Only used to describe fixes made by the cleanup pass; never raised to callers.
    """

    person_id: str
    field_name: str

    def __str__(self) -> str:
        return f"{self.person_id}.{self.field_name} referenced its own record"


class LoadFormatError(FamilyCanvasError):
    """Snapshot shape not recognized; prior state stays authoritative."""

    def __init__(self, message: str = "unrecognized format", details: str | None = None):
        super().__init__(message)
        self.details = details


class StorageQuotaError(FamilyCanvasError):
    """Serialized state is larger than the storage allows."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"state of {size} bytes exceeds limit of {limit} bytes")
        self.size = size
        self.limit = limit


class StorageWriteError(FamilyCanvasError):
    """Underlying storage rejected a write."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"failed to write {key!r}: {reason}")
        self.key = key
        self.reason = reason
