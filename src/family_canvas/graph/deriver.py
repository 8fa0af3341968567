"""Connection deriver: rebuilds the drawn edge list from the relationship store.

Always a full recompute. Graphs drawn on the canvas stay well under a
thousand people, so clearing and re-emitting every edge is cheap and
keeps the drawn state from drifting away from the relational fields.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from ..models.connection import ConnectionType, pair_key, split_pair_key

if TYPE_CHECKING:
    from .store import RelationshipStore
    from .surface import RenderSurface

logger = structlog.get_logger(__name__)


@dataclass
class DerivationStats:
    """Counters from one derivation run."""
    added: int = 0
    hidden: int = 0
    missing: int = 0

    @property
    def skipped(self) -> int:
        return self.hidden + self.missing

    def to_dict(self) -> dict[str, int]:
        return {"added": self.added, "skipped": self.skipped, "hidden": self.hidden, "missing": self.missing}


class ConnectionDeriver:
    """Derives parent, spouse and line-only edges onto a render surface.

    A missing endpoint never raises; the edge is counted and skipped.
    """

    def __init__(self, store: RelationshipStore, surface: RenderSurface) -> None:
        self.store = store
        self.surface = surface
        self.last_stats = DerivationStats()

    def derive(self) -> DerivationStats:
        stats = DerivationStats()
        hidden = self.store.hidden_connections
        surface = self.surface

        surface.clear_connections()

        for person in self.store:
            for parent_id in (person.mother_id, person.father_id):
                if parent_id:
                    self._emit(stats, hidden, person.id, parent_id, ConnectionType.PARENT)

            spouse_id = person.spouse_id
            # Only the lexicographically smaller side emits, so a mutual pair draws once
            if spouse_id and spouse_id != person.id and person.id < spouse_id:
                self._emit(stats, hidden, person.id, spouse_id, ConnectionType.SPOUSE)

        for key in sorted(self.store.line_only_connections):
            if key in hidden:
                stats.hidden += 1
                continue
            try:
                first, second = split_pair_key(key)
            except ValueError:
                stats.missing += 1
                continue
            if surface.has_node(first) and surface.has_node(second):
                surface.add_connection(first, second, ConnectionType.LINE_ONLY)
                stats.added += 1
            else:
                stats.missing += 1

        surface.request_redraw()
        self.last_stats = stats
        logger.debug("deriver.complete", **stats.to_dict(), total=len(surface.connections))
        return stats

    def _emit(
        self,
        stats: DerivationStats,
        hidden: set[str],
        source: str,
        target: str,
        connection_type: ConnectionType,
    ) -> None:
        if pair_key(source, target) in hidden:
            stats.hidden += 1
        elif self.surface.has_node(source) and self.surface.has_node(target):
            self.surface.add_connection(source, target, connection_type)
            stats.added += 1
        else:
            stats.missing += 1
