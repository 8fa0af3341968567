"""Relationship store: the canonical person map plus suppression sets.

The store is the source of truth for who is related to whom. Drawn
connections are always derived from it (see ``deriver``), never the
other way round.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from ..errors import ValidationError
from ..models.connection import PAIR_KEY_SEPARATOR, RelationKind, pair_key, split_pair_key
from ..models.person import RELATION_FIELDS, REQUIRED_FIELDS, PersonRecord

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

logger = structlog.get_logger(__name__)

ID_PREFIX = "p"
_NUMERIC_ID = re.compile(rf"^{ID_PREFIX}(\d+)$")


@dataclass(frozen=True)
class StoreState:
    """Detached copy of everything the store owns."""
    persons: dict[str, PersonRecord]
    hidden_connections: frozenset[str]
    line_only_connections: frozenset[str]
    next_id: int


@dataclass
class ConnectResult:
    """What a connect request actually changed."""
    kind: RelationKind
    person_a: str
    person_b: str
    fields_set: list[tuple[str, str]] = field(default_factory=list)  # (person_id, field)
    line_only_key: str | None = None
    unhidden_key: str | None = None


def validate_person_fields(data: dict[str, Any]) -> None:
    """Reject a person edit that lacks a required field."""
    missing = [f for f in REQUIRED_FIELDS if not str(data.get(f) or "").strip()]
    if missing:
        raise ValidationError(f"{missing[0].capitalize()} is required", missing_fields=missing)


class RelationshipStore:
    """Mapping of person id to PersonRecord with hidden/line-only pair sets."""

    def __init__(self) -> None:
        self._persons: dict[str, PersonRecord] = {}
        self.hidden_connections: set[str] = set()
        self.line_only_connections: set[str] = set()
        self.next_id = 1

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._persons)

    def __contains__(self, person_id: object) -> bool:
        return person_id in self._persons

    def __iter__(self) -> Iterator[PersonRecord]:
        return iter(self._persons.values())

    def get(self, person_id: str) -> PersonRecord | None:
        return self._persons.get(person_id)

    def require(self, person_id: str) -> PersonRecord:
        record = self._persons.get(person_id)
        if record is None:
            raise ValidationError(f"Unknown person: {person_id}")
        return record

    @property
    def ids(self) -> list[str]:
        return list(self._persons)

    def relationship_count(self) -> int:
        """Number of non-empty relational fields across all records."""
        return sum(p.relation_count() for p in self._persons.values())

    # ------------------------------------------------------------------
    # Ids
    # ------------------------------------------------------------------

    def generate_id(self) -> str:
        """Next free ``p{n}`` id; the counter skips ids already present."""
        while f"{ID_PREFIX}{self.next_id}" in self._persons:
            self.next_id += 1
        person_id = f"{ID_PREFIX}{self.next_id}"
        self.next_id += 1
        return person_id

    def sync_id_counter(self) -> None:
        """Raise the counter above every numeric id in the store."""
        highest = 0
        for person_id in self._persons:
            match = _NUMERIC_ID.match(person_id)
            if match:
                highest = max(highest, int(match.group(1)))
        if highest >= self.next_id:
            self.next_id = highest + 1

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def upsert(self, record: PersonRecord) -> PersonRecord:
        if PAIR_KEY_SEPARATOR in record.id:
            raise ValidationError(f"Person id may not contain {PAIR_KEY_SEPARATOR!r}: {record.id}")
        self._persons[record.id] = record
        return record

    def apply_edit(self, data: dict[str, Any], editing_id: str | None = None) -> PersonRecord:
        """Create or update a person from form data.

        Everything is validated before the store is touched, so a rejected
        edit leaves every record unchanged.
        """
        validate_person_fields(data)

        existing = self.get(editing_id) if editing_id else None
        if editing_id and existing is None:
            raise ValidationError(f"Unknown person: {editing_id}")

        person_id = editing_id or self._peek_id()
        for rel in RELATION_FIELDS:
            target = str(data.get(rel) or "").strip()
            if not target:
                continue
            if target == person_id:
                raise ValidationError(f"{rel} cannot reference the person being edited")
            if target not in self._persons:
                raise ValidationError(f"{rel} references unknown person {target}")

        updates = {
            k: v
            for k, v in data.items()
            if k in PersonRecord.model_fields and k not in ("id", "position", "visual")
        }
        if existing is not None:
            record = PersonRecord.model_validate({**existing.model_dump(), **updates})
        else:
            person_id = self.generate_id()
            record = PersonRecord.model_validate({**updates, "id": person_id})
            if "position" in data:
                record.position = record.position.model_validate(data["position"])
            if "visual" in data:
                record.visual = record.visual.model_validate(data["visual"])

        self._persons[record.id] = record
        logger.info("store.person_saved", person_id=record.id, created=existing is None)
        return record

    def _peek_id(self) -> str:
        next_id = self.next_id
        while f"{ID_PREFIX}{next_id}" in self._persons:
            next_id += 1
        return f"{ID_PREFIX}{next_id}"

    def set_position(self, person_id: str, x: float, y: float) -> None:
        record = self.require(person_id)
        record.position = record.position.model_copy(update={"x": float(x), "y": float(y)})

    def remove(self, person_id: str) -> PersonRecord | None:
        """Delete a person, clearing references to it and its pair keys."""
        record = self._persons.pop(person_id, None)
        if record is None:
            return None
        for other in self._persons.values():
            for rel in other.references(person_id):
                setattr(other, rel, None)
        self.hidden_connections = {k for k in self.hidden_connections if person_id not in split_pair_key(k)}
        self.line_only_connections = {k for k in self.line_only_connections if person_id not in split_pair_key(k)}
        logger.info("store.person_removed", person_id=person_id)
        return record

    def replace_all(
        self,
        records: Iterable[PersonRecord],
        hidden_connections: Iterable[str] = (),
        line_only_connections: Iterable[str] = (),
        next_id: int = 1,
    ) -> None:
        """Destructive load: drop every record and suppression key."""
        self._persons = {}
        for record in records:
            self._persons[record.id] = record
        self.hidden_connections = set(hidden_connections)
        self.line_only_connections = set(line_only_connections)
        self.next_id = max(1, next_id)
        self.sync_id_counter()

    def clear(self) -> None:
        self.replace_all(())

    # ------------------------------------------------------------------
    # Relations and suppression
    # ------------------------------------------------------------------

    def connect(self, person_a: str, person_b: str, kind: RelationKind) -> ConnectResult:
        """Establish a relation between A and B (A is the first selection).

        ``mother``/``father``: A becomes B's mother/father.
        ``child``: B becomes A's child through B's first free parent slot;
        with both slots taken it falls back to a line-only connection.
        ``spouse``: A and B point at each other; a former partner's
        back-reference to either of them is cleared.
        """
        kind = RelationKind(kind)
        if person_a == person_b:
            raise ValidationError("A person cannot be connected to themselves")
        record_a = self.require(person_a)
        record_b = self.require(person_b)

        result = ConnectResult(kind=kind, person_a=person_a, person_b=person_b)
        key = pair_key(person_a, person_b)

        if kind is RelationKind.MOTHER:
            record_b.mother_id = person_a
            result.fields_set.append((person_b, "mother_id"))
        elif kind is RelationKind.FATHER:
            record_b.father_id = person_a
            result.fields_set.append((person_b, "father_id"))
        elif kind is RelationKind.CHILD:
            if not record_b.mother_id:
                record_b.mother_id = person_a
                result.fields_set.append((person_b, "mother_id"))
            elif not record_b.father_id:
                record_b.father_id = person_a
                result.fields_set.append((person_b, "father_id"))
            else:
                self.line_only_connections.add(key)
                result.line_only_key = key
        elif kind is RelationKind.SPOUSE:
            for record, partner in ((record_a, person_b), (record_b, person_a)):
                former = self.get(record.spouse_id) if record.spouse_id else None
                if former is not None and former.id != partner and former.spouse_id == record.id:
                    former.spouse_id = None
                    logger.info("store.spouse_unlinked", person_id=former.id, former_spouse=record.id)
            record_a.spouse_id = person_b
            record_b.spouse_id = person_a
            result.fields_set.extend([(person_a, "spouse_id"), (person_b, "spouse_id")])
        else:
            self.line_only_connections.add(key)
            result.line_only_key = key

        if key in self.hidden_connections:
            self.hidden_connections.discard(key)
            result.unhidden_key = key

        logger.info("store.connected", kind=kind.value, person_a=person_a, person_b=person_b)
        return result

    def hide_connection(self, person_a: str, person_b: str) -> str:
        """Suppress rendering of the pair without touching the relation."""
        key = pair_key(person_a, person_b)
        self.hidden_connections.add(key)
        return key

    def unhide_connection(self, person_a: str, person_b: str) -> bool:
        key = pair_key(person_a, person_b)
        if key not in self.hidden_connections:
            return False
        self.hidden_connections.discard(key)
        return True

    def remove_line_only(self, person_a: str, person_b: str) -> bool:
        key = pair_key(person_a, person_b)
        if key not in self.line_only_connections:
            return False
        self.line_only_connections.discard(key)
        return True

    def is_hidden(self, person_a: str, person_b: str) -> bool:
        return pair_key(person_a, person_b) in self.hidden_connections

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> StoreState:
        return StoreState(
            persons={pid: p.model_copy(deep=True) for pid, p in self._persons.items()},
            hidden_connections=frozenset(self.hidden_connections),
            line_only_connections=frozenset(self.line_only_connections),
            next_id=self.next_id,
        )

    def restore(self, state: StoreState) -> None:
        self._persons = {pid: p.model_copy(deep=True) for pid, p in state.persons.items()}
        self.hidden_connections = set(state.hidden_connections)
        self.line_only_connections = set(state.line_only_connections)
        self.next_id = state.next_id
