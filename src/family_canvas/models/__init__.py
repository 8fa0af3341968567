"""Data models for persons, cosmetic state and the persisted envelope."""
from .base import CanvasModel
from .connection import ConnectionType, Edge, RelationKind, pair_key, split_pair_key
from .envelope import (
    COMPRESSED,
    ENHANCED,
    CompressedEnvelope,
    EnhancedEnvelope,
    PersistedConnection,
    PersistedPerson,
    PersistedState,
    RelationalEntry,
    is_recognized,
    parse_envelope,
)
from .person import RELATION_FIELDS, REQUIRED_FIELDS, NodeVisual, PersonRecord, Position
from .settings import (
    DEFAULT_NODE_COLOR,
    DEFAULT_NODE_RADIUS,
    Camera,
    DisplayPreferences,
    DisplaySettings,
    LineStyle,
    NodeStyle,
)

__all__ = [
    "CanvasModel",
    # Graph primitives
    "ConnectionType",
    "Edge",
    "RelationKind",
    "pair_key",
    "split_pair_key",
    # Person
    "PersonRecord",
    "Position",
    "NodeVisual",
    "RELATION_FIELDS",
    "REQUIRED_FIELDS",
    # Cosmetic state
    "Camera",
    "DisplayPreferences",
    "DisplaySettings",
    "LineStyle",
    "NodeStyle",
    "DEFAULT_NODE_COLOR",
    "DEFAULT_NODE_RADIUS",
    # Envelope
    "ENHANCED",
    "COMPRESSED",
    "EnhancedEnvelope",
    "CompressedEnvelope",
    "PersistedConnection",
    "PersistedPerson",
    "PersistedState",
    "RelationalEntry",
    "is_recognized",
    "parse_envelope",
]
