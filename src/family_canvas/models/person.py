"""Canonical person record held by the relationship store."""
from __future__ import annotations

from pydantic import Field, field_validator

from .base import CanvasModel, blank_to_none, coerce_number
from .settings import DEFAULT_NODE_COLOR, DEFAULT_NODE_RADIUS

RELATION_FIELDS: tuple[str, ...] = ("mother_id", "father_id", "spouse_id")
REQUIRED_FIELDS: tuple[str, ...] = ("name", "gender")


class Position(CanvasModel):
    x: float = 0.0
    y: float = 0.0

    @field_validator("x", "y", mode="before")
    @classmethod
    def _coerce(cls, value):
        return coerce_number(value)


class NodeVisual(CanvasModel):
    color: str = DEFAULT_NODE_COLOR
    radius: float = DEFAULT_NODE_RADIUS

    @field_validator("color", mode="before")
    @classmethod
    def _default_color(cls, value):
        return value or DEFAULT_NODE_COLOR

    @field_validator("radius", mode="before")
    @classmethod
    def _default_radius(cls, value):
        radius = coerce_number(value, default=DEFAULT_NODE_RADIUS)
        return radius if radius > 0 else DEFAULT_NODE_RADIUS


class PersonRecord(CanvasModel):
    """One member of the tree.

    Relational ids point at other records. They may dangle transiently
    (the deriver skips them) and self-references are removed by the
    cleanup pass after every load.
    """

    id: str = Field(min_length=1)
    name: str = ""
    father_name: str = ""
    surname: str = ""
    maiden_name: str = ""
    dob: str = Field(default="", description="Free-text date of birth")
    gender: str = ""

    mother_id: str | None = None
    father_id: str | None = None
    spouse_id: str | None = None

    position: Position = Field(default_factory=Position)
    visual: NodeVisual = Field(default_factory=NodeVisual)

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_text(cls, value):
        return str(value).strip() if value is not None else value

    @field_validator("name", "father_name", "surname", "maiden_name", "dob", "gender", mode="before")
    @classmethod
    def _text(cls, value):
        return "" if value is None else str(value).strip()

    @field_validator("mother_id", "father_id", "spouse_id", mode="before")
    @classmethod
    def _relation(cls, value):
        return blank_to_none(value)

    @property
    def display_name(self) -> str:
        if self.surname:
            return f"{self.name} {self.surname}".strip()
        return self.name or self.id

    @property
    def has_relations(self) -> bool:
        return any(getattr(self, f) for f in RELATION_FIELDS)

    def relation_count(self) -> int:
        return sum(1 for f in RELATION_FIELDS if getattr(self, f))

    def references(self, person_id: str) -> list[str]:
        """Relational fields that point at ``person_id``."""
        return [f for f in RELATION_FIELDS if getattr(self, f) == person_id]
