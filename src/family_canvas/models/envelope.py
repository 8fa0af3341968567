"""Persisted state envelope.

A single tagged envelope, discriminated on ``cacheFormat``, is validated
once at the storage boundary. The enhanced format carries everything
needed to restore a session; the compressed format keeps only what is
needed to rebuild the relationship graph.
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Union

import structlog
from pydantic import Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..errors import LoadFormatError
from .base import CanvasModel, blank_to_none, coerce_number
from .connection import ConnectionType, split_pair_key
from .person import NodeVisual, PersonRecord, Position
from .settings import DEFAULT_NODE_COLOR, DEFAULT_NODE_RADIUS, Camera, DisplayPreferences, DisplaySettings, NodeStyle

logger = structlog.get_logger(__name__)

ENHANCED = "enhanced"
COMPRESSED = "compressed"


def _well_formed_key(key: str) -> bool:
    try:
        split_pair_key(key)
    except ValueError:
        return False
    return True


_CONNECTION_TYPES = {t.value for t in ConnectionType}


def _salvage(model_cls: type[CanvasModel], value: Any, section: str) -> CanvasModel | None:
    """Validate one cosmetic section, falling back to defaults field by field.

    Fields the model rejects are dropped so their defaults apply. A section
    that is not an object at all is dropped whole.
    """
    if value is None or isinstance(value, model_cls):
        return value
    if not isinstance(value, dict):
        logger.warning("envelope.section_dropped", section=section, reason="not an object")
        return None

    data = dict(value)
    dropped: list[str] = []
    for _ in range(len(model_cls.model_fields) + 1):
        try:
            model = model_cls.model_validate(data)
        except PydanticValidationError as e:
            bad = {str(err["loc"][0]) for err in e.errors() if err["loc"]}
            names = {
                key
                for name, info in model_cls.model_fields.items()
                if bad & {name, info.alias}
                for key in (name, info.alias)
            }
            if not names & data.keys():
                break
            dropped.extend(sorted(names & data.keys()))
            data = {k: v for k, v in data.items() if k not in names}
            continue
        if dropped:
            logger.warning("envelope.settings_dropped", section=section, fields=dropped)
        return model

    logger.warning("envelope.section_dropped", section=section, reason="unreadable")
    return None


class PersistedPerson(CanvasModel):
    """Flat person row as written under ``persons``."""

    id: str = Field(min_length=1)
    x: float = 0.0
    y: float = 0.0
    name: str = ""
    father_name: str = ""
    surname: str = ""
    maiden_name: str = ""
    dob: str = ""
    gender: str = ""
    color: str = DEFAULT_NODE_COLOR
    radius: float = DEFAULT_NODE_RADIUS
    mother_id: str = ""
    father_id: str = ""
    spouse_id: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_text(cls, value):
        return str(value).strip() if value is not None else value

    @field_validator("x", "y", mode="before")
    @classmethod
    def _coord(cls, value):
        return coerce_number(value)

    @field_validator("radius", mode="before")
    @classmethod
    def _radius(cls, value):
        radius = coerce_number(value, default=DEFAULT_NODE_RADIUS)
        return radius if radius > 0 else DEFAULT_NODE_RADIUS

    @field_validator("color", mode="before")
    @classmethod
    def _color(cls, value):
        return value if isinstance(value, str) and value else DEFAULT_NODE_COLOR

    @field_validator("name", "father_name", "surname", "maiden_name", "dob", "gender", mode="before")
    @classmethod
    def _text(cls, value):
        return "" if value is None else str(value)

    @field_validator("mother_id", "father_id", "spouse_id", mode="before")
    @classmethod
    def _relation(cls, value):
        return blank_to_none(value) or ""

    @property
    def relation_count(self) -> int:
        return sum(1 for rel in (self.mother_id, self.father_id, self.spouse_id) if rel)

    @classmethod
    def from_record(cls, record: PersonRecord) -> PersistedPerson:
        return cls(
            id=record.id,
            x=record.position.x,
            y=record.position.y,
            name=record.name,
            father_name=record.father_name,
            surname=record.surname,
            maiden_name=record.maiden_name,
            dob=record.dob,
            gender=record.gender,
            color=record.visual.color,
            radius=record.visual.radius,
            mother_id=record.mother_id or "",
            father_id=record.father_id or "",
            spouse_id=record.spouse_id or "",
        )

    def to_record(self) -> PersonRecord:
        return PersonRecord(
            id=self.id,
            name=self.name,
            father_name=self.father_name,
            surname=self.surname,
            maiden_name=self.maiden_name,
            dob=self.dob,
            gender=self.gender,
            mother_id=self.mother_id,
            father_id=self.father_id,
            spouse_id=self.spouse_id,
            position=Position(x=self.x, y=self.y),
            visual=NodeVisual(color=self.color, radius=self.radius),
        )


class RelationalEntry(CanvasModel):
    """Relational copy of one person, kept as a redundant map for recovery."""

    name: str = ""
    surname: str = ""
    gender: str = ""
    mother_id: str = ""
    father_id: str = ""
    spouse_id: str = ""

    @field_validator("mother_id", "father_id", "spouse_id", mode="before")
    @classmethod
    def _relation(cls, value):
        return blank_to_none(value) or ""

    @field_validator("name", "surname", "gender", mode="before")
    @classmethod
    def _text(cls, value):
        return "" if value is None else str(value)

    @classmethod
    def from_record(cls, record: PersonRecord) -> RelationalEntry:
        return cls(
            name=record.name,
            surname=record.surname,
            gender=record.gender,
            mother_id=record.mother_id or "",
            father_id=record.father_id or "",
            spouse_id=record.spouse_id or "",
        )


class PersistedConnection(CanvasModel):
    """Edge as drawn at save time; kept for diagnostics only."""

    source: str = Field(alias="from")
    target: str = Field(alias="to")
    type: str


class _EnvelopeBase(CanvasModel):
    version: str | None = None
    timestamp: int = 0
    persons: list[PersistedPerson] = Field(default_factory=list)
    person_data_backup: list[tuple[str, RelationalEntry]] = Field(default_factory=list)
    hidden_connections: list[str] = Field(default_factory=list)
    line_only_connections: list[str] = Field(default_factory=list)
    next_id: int = 1

    @field_validator("version", mode="before")
    @classmethod
    def _version_text(cls, value):
        return None if value in (None, "") else str(value)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _timestamp(cls, value):
        return int(coerce_number(value))

    @field_validator("next_id", mode="before")
    @classmethod
    def _next_id(cls, value):
        next_id = int(coerce_number(value, default=1))
        return next_id if next_id > 0 else 1

    @field_validator("persons", mode="before")
    @classmethod
    def _drop_unusable_persons(cls, value):
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError("persons must be a list")
        usable = [p for p in value if isinstance(p, dict) and str(p.get("id") or "").strip()]
        if len(usable) != len(value):
            logger.warning("envelope.persons_dropped", dropped=len(value) - len(usable))
        return usable

    @field_validator("person_data_backup", mode="before")
    @classmethod
    def _backup_pairs(cls, value):
        if not isinstance(value, list):
            return []
        return [
            (str(entry[0]), entry[1])
            for entry in value
            if isinstance(entry, (list, tuple)) and len(entry) == 2 and isinstance(entry[1], dict)
        ]

    @field_validator("hidden_connections", "line_only_connections", mode="before")
    @classmethod
    def _keys(cls, value):
        if not isinstance(value, (list, tuple, set)):
            return []
        return [k for k in value if isinstance(k, str) and _well_formed_key(k)]

    @property
    def relationship_count(self) -> int:
        return sum(p.relation_count for p in self.persons)

    def to_json(self, indent: int | None = None) -> str:
        return self.model_dump_json(by_alias=True, indent=indent)


class EnhancedEnvelope(_EnvelopeBase):
    """Full session snapshot."""

    cache_format: Literal["enhanced"] = ENHANCED
    settings: DisplaySettings | None = None
    display_preferences: DisplayPreferences | None = None
    node_style: NodeStyle | None = None
    camera: Camera | None = None
    current_connections: list[PersistedConnection] = Field(default_factory=list)

    @field_validator("settings", mode="before")
    @classmethod
    def _settings(cls, value):
        return _salvage(DisplaySettings, value, "settings")

    @field_validator("display_preferences", mode="before")
    @classmethod
    def _preferences(cls, value):
        return _salvage(DisplayPreferences, value, "displayPreferences")

    @field_validator("camera", mode="before")
    @classmethod
    def _camera(cls, value):
        return _salvage(Camera, value, "camera")

    @field_validator("node_style", mode="before")
    @classmethod
    def _node_style(cls, value):
        if value is None or isinstance(value, NodeStyle):
            return value
        if isinstance(value, str) and value in {s.value for s in NodeStyle}:
            return value
        logger.warning("envelope.settings_dropped", section="nodeStyle", value=str(value))
        return None

    @field_validator("current_connections", mode="before")
    @classmethod
    def _connections(cls, value):
        if not isinstance(value, list):
            return []
        return [
            c
            for c in value
            if isinstance(c, dict)
            and isinstance(c.get("from"), str)
            and isinstance(c.get("to"), str)
            and isinstance(c.get("type"), str)
            and c["type"] in _CONNECTION_TYPES
        ]


class CompressedEnvelope(_EnvelopeBase):
    """Reduced snapshot written when the enhanced one is over quota."""

    cache_format: Literal["compressed"] = COMPRESSED


PersistedState = Annotated[
    Union[EnhancedEnvelope, CompressedEnvelope],
    Field(discriminator="cache_format"),
]

_ENVELOPE_ADAPTER: TypeAdapter[EnhancedEnvelope | CompressedEnvelope] = TypeAdapter(PersistedState)


def is_recognized(raw: Any) -> bool:
    """An envelope must expose a version marker or a persons collection."""
    if not isinstance(raw, dict):
        return False
    return bool(raw.get("version")) or isinstance(raw.get("persons"), list)


def parse_envelope(raw: Any) -> EnhancedEnvelope | CompressedEnvelope:
    """Validate an inbound snapshot at the storage boundary.

    Snapshots written before the format tag existed, or carrying a tag this
    version does not know, are read as enhanced.

    Raises:
        LoadFormatError: the shape is not a recognized envelope.
    """
    if not is_recognized(raw):
        raise LoadFormatError("unrecognized format", details="no version marker or persons collection")

    data = dict(raw)
    tag = data.pop("cache_format", None) or data.get("cacheFormat")
    if tag not in (ENHANCED, COMPRESSED):
        if tag:
            logger.warning("envelope.unknown_format_tag", tag=str(tag))
        tag = ENHANCED
    data["cacheFormat"] = tag

    try:
        return _ENVELOPE_ADAPTER.validate_python(data)
    except PydanticValidationError as e:
        raise LoadFormatError("unrecognized format", details=str(e)) from e
