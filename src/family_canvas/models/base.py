"""Shared pydantic base for models that cross the storage boundary."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CanvasModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        """Serialize with the persisted (camelCase) key names."""
        return self.model_dump(mode="json", by_alias=True)


def coerce_number(value: Any, default: float = 0.0) -> float:
    """Best-effort numeric coercion for coordinates read from old snapshots."""
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def blank_to_none(value: Any) -> str | None:
    """Relational ids are stored as '' when absent."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None
