"""Pair-keys, derived edges and the relation kinds a user can create."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

PAIR_KEY_SEPARATOR = "-"


class ConnectionType(str, Enum):
    """Kinds of drawn connection."""
    PARENT = "parent"
    SPOUSE = "spouse"
    LINE_ONLY = "line-only"


class RelationKind(str, Enum):
    """Relations a user can establish between two selected people (A, B)."""
    MOTHER = "mother"  # A is B's mother
    FATHER = "father"  # A is B's father
    CHILD = "child"  # B is A's child; fills B's first free parent slot
    SPOUSE = "spouse"
    LINE_ONLY = "line-only"


def pair_key(id_a: str, id_b: str) -> str:
    """Canonical unordered pair key, lexicographically ordered."""
    first, second = sorted((id_a, id_b))
    return f"{first}{PAIR_KEY_SEPARATOR}{second}"


def split_pair_key(key: str) -> tuple[str, str]:
    """Split a pair key back into its two ids.

    Generated ids never contain the separator, so the first one splits the key.
    """
    first, sep, second = key.partition(PAIR_KEY_SEPARATOR)
    if not sep or not first or not second:
        raise ValueError(f"malformed pair key: {key!r}")
    return first, second


@dataclass(frozen=True)
class Edge:
    """A derived, drawable connection. Never authoritative."""
    source: str
    target: str
    type: ConnectionType

    @property
    def key(self) -> str:
        return pair_key(self.source, self.target)

    def to_dict(self) -> dict[str, Any]:
        return {"from": self.source, "to": self.target, "type": self.type.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Edge:
        return cls(
            source=str(data["from"]),
            target=str(data["to"]),
            type=ConnectionType(data["type"]),
        )
