"""Integrity pass run after every load, before the first derivation."""
from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from ..errors import IntegrityError
from ..models.person import RELATION_FIELDS

if TYPE_CHECKING:
    from .store import RelationshipStore

logger = structlog.get_logger(__name__)


class CleanupPass:
    """Clears relational fields that point at their own record.

    Idempotent: a second run over a cleaned store changes nothing.
    """

    def __init__(self, store: RelationshipStore) -> None:
        self.store = store

    def run(self) -> list[IntegrityError]:
        """Repair the store and return one IntegrityError per fix made."""
        fixes: list[IntegrityError] = []
        for person in self.store:
            for rel in RELATION_FIELDS:
                if getattr(person, rel) == person.id:
                    setattr(person, rel, None)
                    fix = IntegrityError(person_id=person.id, field_name=rel)
                    fixes.append(fix)
                    logger.warning("cleanup.fixed", person_id=person.id, field=rel)
        if fixes:
            logger.info("cleanup.complete", fixed=len(fixes))
        return fixes
