"""Persistence controller: versioned save/load with compression fallback.

Save builds an enhanced envelope from the live model, falls back to the
compressed envelope when the enhanced one is over quota, writes the
primary key plus a timestamped backup and rotates old backups. Load
never crashes the caller: absent or corrupted state means "start fresh",
unrecognized envelopes are rejected with the prior state left in place.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from ..errors import LoadFormatError, StorageQuotaError, StorageWriteError
from ..graph.cleanup import CleanupPass
from ..graph.surface import CanvasNode
from ..models.base import blank_to_none
from ..models.connection import pair_key
from ..models.envelope import (
    COMPRESSED,
    ENHANCED,
    CompressedEnvelope,
    EnhancedEnvelope,
    PersistedConnection,
    PersistedPerson,
    RelationalEntry,
    parse_envelope,
)
from ..scheduler import Debouncer
from .manifest import ManifestStore, backup_key
from .storage import atomic_write

if TYPE_CHECKING:
    from ..context import AppContext
    from ..scheduler import TimerHandle
    from .storage import KeyValueStorage

logger = structlog.get_logger(__name__)


class LoadOutcome(str, Enum):
    LOADED = "loaded"
    NO_PRIOR_STATE = "no_prior_state"
    CORRUPTED = "corrupted"
    UNRECOGNIZED_FORMAT = "unrecognized_format"


@dataclass
class SaveResult:
    ok: bool
    cache_format: str | None = None
    size_bytes: int = 0
    backup_key: str | None = None
    pruned_backups: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class LoadResult:
    outcome: LoadOutcome
    persons: int = 0
    connections: int = 0
    relationships_found: int = 0
    integrity_fixes: int = 0
    recovered_from_backup: bool = False
    cache_format: str | None = None
    warnings: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def restored(self) -> bool:
        return self.outcome is LoadOutcome.LOADED


class PersistenceController:
    """Saves and restores the application context through a key-value storage."""

    def __init__(self, ctx: AppContext, storage: KeyValueStorage) -> None:
        self.ctx = ctx
        self.storage = storage
        self.config = ctx.config.persistence
        self.manifests = ManifestStore(
            storage, self.config.storage_key, self.config.manifest_key, self.config.backup_prefix
        )
        self.last_save: SaveResult | None = None
        self.last_saved_at: int | None = None
        self._autosave_handle: TimerHandle | None = None
        self._debouncer = Debouncer(ctx.scheduler, self.config.save_debounce_ms, self.autosave)

    # ------------------------------------------------------------------
    # Envelope construction
    # ------------------------------------------------------------------

    def _persons(self) -> list[PersistedPerson]:
        persons = []
        for record in self.ctx.store:
            row = PersistedPerson.from_record(record)
            node = self.ctx.surface.get_node(record.id)
            if node is not None:
                row.x, row.y, row.color, row.radius = node.x, node.y, node.color, node.radius
            persons.append(row)
        return persons

    def _relational_map(self) -> list[tuple[str, RelationalEntry]]:
        return [(record.id, RelationalEntry.from_record(record)) for record in self.ctx.store]

    def build_envelope(self) -> EnhancedEnvelope:
        ctx = self.ctx
        return EnhancedEnvelope(
            version=self.config.cache_version,
            timestamp=ctx.wall_clock_ms(),
            settings=ctx.settings.model_copy(),
            display_preferences=ctx.display_preferences.model_copy(),
            node_style=ctx.node_style,
            camera=ctx.surface.get_camera(),
            hidden_connections=sorted(ctx.store.hidden_connections),
            line_only_connections=sorted(ctx.store.line_only_connections),
            persons=self._persons(),
            person_data_backup=self._relational_map(),
            current_connections=[
                PersistedConnection(source=e.source, target=e.target, type=e.type.value)
                for e in ctx.surface.connections
            ],
            next_id=ctx.store.next_id,
        )

    def build_compressed_envelope(self) -> CompressedEnvelope:
        """Only what is needed to rebuild the relationship graph."""
        ctx = self.ctx
        return CompressedEnvelope(
            version=self.config.cache_version,
            timestamp=ctx.wall_clock_ms(),
            persons=self._persons(),
            person_data_backup=self._relational_map(),
            hidden_connections=sorted(ctx.store.hidden_connections),
            line_only_connections=sorted(ctx.store.line_only_connections),
            next_id=ctx.store.next_id,
        )

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def _check_size(self, payload: str) -> int:
        size = len(payload.encode("utf-8"))
        if size > self.config.max_state_bytes:
            raise StorageQuotaError(size, self.config.max_state_bytes)
        return size

    def save(self) -> SaveResult:
        """Full overwrite of the primary entry plus one rotated backup."""
        payload = self.build_envelope().to_json()
        cache_format = ENHANCED
        try:
            size = self._check_size(payload)
            self.storage.set(self.config.storage_key, payload)
        except StorageQuotaError as e:
            logger.warning("persistence.over_quota", size=e.size, limit=e.limit)
            payload = self.build_compressed_envelope().to_json()
            cache_format = COMPRESSED
            size = len(payload.encode("utf-8"))
            try:
                self.storage.set(self.config.storage_key, payload)
            except (StorageQuotaError, StorageWriteError) as inner:
                return self._failed_save(inner)
        except StorageWriteError as e:
            return self._failed_save(e)

        result = SaveResult(ok=True, cache_format=cache_format, size_bytes=size)
        self._write_backup(payload, result)

        self.last_save = result
        self.last_saved_at = self.ctx.wall_clock_ms()
        logger.info("persistence.saved", cache_format=cache_format, bytes=size, persons=len(self.ctx.store))
        return result

    def _failed_save(self, error: Exception) -> SaveResult:
        logger.error("persistence.save_failed", error=str(error))
        result = SaveResult(ok=False, error=str(error))
        self.last_save = result
        return result

    def _write_backup(self, payload: str, result: SaveResult) -> None:
        timestamp = self.ctx.wall_clock_ms()
        key = backup_key(self.config.storage_key, timestamp)
        try:
            self.storage.set(key, payload)
        except (StorageQuotaError, StorageWriteError) as e:
            logger.warning("persistence.backup_failed", key=key, error=str(e))
            return

        manifest = self.manifests.load()
        manifest.add(key, timestamp)
        stale = manifest.prune(self.config.backup_count)
        try:
            self.manifests.save(manifest)
        except (StorageQuotaError, StorageWriteError) as e:
            # backups on disk must stay listed in the manifest
            self.storage.delete(key)
            logger.warning("persistence.backup_failed", key=key, error=str(e))
            return

        for entry in stale:
            self.storage.delete(entry.key)
            result.pruned_backups.append(entry.key)
        result.backup_key = key

    def backups(self) -> list[tuple[str, int]]:
        return [(b.key, b.timestamp) for b in self.manifests.load().newest_first()]

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def read_stored(self) -> tuple[LoadOutcome, EnhancedEnvelope | CompressedEnvelope | None, str | None]:
        """Read and validate the primary entry without touching live state."""
        raw_text = self.storage.get(self.config.storage_key)
        if raw_text is None:
            return LoadOutcome.NO_PRIOR_STATE, None, None
        try:
            raw = json.loads(raw_text)
        except json.JSONDecodeError as e:
            return LoadOutcome.CORRUPTED, None, str(e)
        try:
            return LoadOutcome.LOADED, parse_envelope(raw), None
        except LoadFormatError as e:
            return LoadOutcome.UNRECOGNIZED_FORMAT, None, e.details or str(e)

    def load(self) -> LoadResult:
        """Restore the primary entry; never raises."""
        outcome, envelope, error = self.read_stored()
        if outcome is LoadOutcome.NO_PRIOR_STATE:
            logger.info("persistence.no_prior_state")
            return LoadResult(outcome)
        if outcome is LoadOutcome.CORRUPTED:
            logger.warning("persistence.corrupted", error=error)
            self.ctx.notify("error", "Restore Failed", "Could not restore previous progress")
            return LoadResult(outcome, error=error)
        if outcome is LoadOutcome.UNRECOGNIZED_FORMAT:
            logger.warning("persistence.unrecognized_format", error=error)
            self.ctx.notify("warning", "Restore Failed", "Saved data is in an unrecognized format")
            return LoadResult(outcome, error="unrecognized format")

        result = self.apply_envelope(envelope)
        self.ctx.notify("success", "Progress Restored", "Your previous work has been restored")
        return result

    def import_state(self, document: str | dict[str, Any]) -> LoadResult:
        """Load an externally supplied snapshot (file import).

        Raises:
            LoadFormatError: not JSON, or not a recognized envelope. Live state is untouched.
        """
        if isinstance(document, str):
            try:
                document = json.loads(document)
            except json.JSONDecodeError as e:
                raise LoadFormatError("unrecognized format", details=str(e)) from e
        envelope = parse_envelope(document)
        result = self.apply_envelope(envelope)
        self.schedule_save()
        return result

    def import_from_file(self, path: str | Path) -> LoadResult:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise LoadFormatError("unrecognized format", details=str(e)) from e
        return self.import_state(text)

    def apply_envelope(self, envelope: EnhancedEnvelope | CompressedEnvelope) -> LoadResult:
        """Destructively replace live state with ``envelope``."""
        ctx = self.ctx
        records = [p.to_record() for p in envelope.persons]

        ctx.store.replace_all(
            records,
            hidden_connections=envelope.hidden_connections,
            line_only_connections=envelope.line_only_connections,
            next_id=envelope.next_id,
        )
        ctx.surface.clear_connections()
        ctx.surface.clear_nodes()
        for record in ctx.store:
            ctx.surface.set_node(record.id, CanvasNode.from_record(record).to_dict())

        if isinstance(envelope, EnhancedEnvelope):
            if envelope.settings is not None:
                ctx.settings = envelope.settings
            if envelope.display_preferences is not None:
                ctx.display_preferences = envelope.display_preferences
            if envelope.node_style is not None:
                ctx.node_style = envelope.node_style
            camera = envelope.camera
        else:
            camera = None

        if camera is not None:
            ctx.surface.set_camera(camera.x, camera.y, camera.scale)
        else:
            ctx.viewport.fit_content()

        fixes = CleanupPass(ctx.store).run()
        ctx.deriver.derive()

        result = LoadResult(
            LoadOutcome.LOADED,
            persons=len(ctx.store),
            relationships_found=envelope.relationship_count,
            integrity_fixes=len(fixes),
            cache_format=envelope.cache_format,
        )

        if not ctx.surface.connections and self._drawable_relations() > 0:
            logger.warning("persistence.no_connections_derived", relationships=result.relationships_found)
            if self._recover_from_backup(envelope.person_data_backup):
                result.recovered_from_backup = True
            else:
                message = "Relationships were found but no connections could be rebuilt"
                result.warnings.append(message)
                ctx.notify("warning", "Connections Missing", message)

        result.connections = len(ctx.surface.connections)
        ctx.history.reset()
        logger.info(
            "persistence.loaded",
            cache_format=envelope.cache_format,
            persons=result.persons,
            connections=result.connections,
            fixes=result.integrity_fixes,
        )
        return result

    def _drawable_relations(self) -> int:
        """Relational fields that should produce an edge once derived."""
        store = self.ctx.store
        count = 0
        for person in store:
            for target in (person.mother_id, person.father_id, person.spouse_id):
                if target and pair_key(person.id, target) not in store.hidden_connections:
                    count += 1
        return count

    def _recover_from_backup(self, relational_map: list[tuple[str, RelationalEntry]]) -> bool:
        """Reapply relational ids from the redundant map; True if edges appear."""
        if not relational_map:
            return False
        ctx = self.ctx
        for person_id, entry in relational_map:
            record = ctx.store.get(person_id)
            if record is None:
                continue
            record.mother_id = blank_to_none(entry.mother_id)
            record.father_id = blank_to_none(entry.father_id)
            record.spouse_id = blank_to_none(entry.spouse_id)
        CleanupPass(ctx.store).run()
        ctx.deriver.derive()
        recovered = bool(ctx.surface.connections)
        logger.info("persistence.backup_recovery", recovered=recovered, connections=len(ctx.surface.connections))
        return recovered

    def force_regenerate(self) -> int:
        """Re-derive connections, falling back to the stored relational map. Saves afterwards."""
        ctx = self.ctx
        ctx.deriver.derive()
        if not ctx.surface.connections:
            outcome, envelope, _ = self.read_stored()
            if outcome is LoadOutcome.LOADED and envelope is not None:
                self._recover_from_backup(envelope.person_data_backup)
        self.save()
        return len(ctx.surface.connections)

    # ------------------------------------------------------------------
    # Export / clear / diagnostics
    # ------------------------------------------------------------------

    def export_state(self, indent: int = 2) -> str:
        return self.build_envelope().to_json(indent=indent)

    def export_to_file(self, path: str | Path) -> Path:
        return atomic_write(path, self.export_state().encode("utf-8"))

    def clear(self) -> int:
        """Delete the primary entry, every backup and the manifest."""
        removed = int(self.storage.delete(self.config.storage_key))
        for key in self.storage.keys_with_prefix(self.config.backup_prefix):
            removed += int(self.storage.delete(key))
        self.manifests.delete()
        logger.info("persistence.cleared", removed=removed)
        return removed

    def describe(self) -> dict[str, Any]:
        """Stored-versus-live summary for troubleshooting."""
        ctx = self.ctx
        outcome, envelope, _ = self.read_stored()
        stored: dict[str, Any] = {"outcome": outcome.value}
        if envelope is not None:
            stored.update(
                version=envelope.version,
                cache_format=envelope.cache_format,
                persons=len(envelope.persons),
                relationships=envelope.relationship_count,
                backup_entries=len(envelope.person_data_backup),
                hidden_connections=len(envelope.hidden_connections),
                line_only_connections=len(envelope.line_only_connections),
            )
        return {
            "stored": stored,
            "backups": len(self.backups()),
            "live": {
                "persons": len(ctx.store),
                "nodes": len(ctx.surface.nodes),
                "connections": len(ctx.surface.connections),
                "relationships": ctx.store.relationship_count(),
                "hidden_connections": len(ctx.store.hidden_connections),
                "line_only_connections": len(ctx.store.line_only_connections),
            },
        }

    # ------------------------------------------------------------------
    # Auto-save policy
    # ------------------------------------------------------------------

    @property
    def autosave_enabled(self) -> bool:
        return self._autosave_handle is not None and self._autosave_handle.active

    def start_autosave(self) -> None:
        self.stop_autosave()
        self._autosave_handle = self.ctx.scheduler.call_every(self.config.autosave_interval_ms, self.autosave)
        logger.info("persistence.autosave_started", interval_ms=self.config.autosave_interval_ms)

    def stop_autosave(self) -> None:
        if self._autosave_handle is not None:
            self._autosave_handle.cancel()
            self._autosave_handle = None

    def autosave(self) -> SaveResult:
        result = self.save()
        if not result.ok:
            self.ctx.notify("warning", "Auto-save Failed", "Could not save progress automatically")
        return result

    def schedule_save(self) -> None:
        """Debounced save after a committed change."""
        self._debouncer.trigger()

    @property
    def save_pending(self) -> bool:
        return self._debouncer.pending

    def on_visibility_hidden(self) -> SaveResult:
        self._debouncer.cancel()
        return self.save()

    def on_teardown(self) -> SaveResult:
        self._debouncer.cancel()
        self.stop_autosave()
        return self.save()
