"""Tests for storage backends, the backup manifest and the persistence controller."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from family_canvas.config import PersistenceConfig
from family_canvas.context import AppContext
from family_canvas.errors import LoadFormatError, StorageQuotaError, StorageWriteError
from family_canvas.persistence import (
    BackupManifest,
    FileStorage,
    LoadOutcome,
    ManifestStore,
    MemoryStorage,
    backup_key,
)


PRIMARY = "familyTreeCanvas_state"


def _relations(ctx: AppContext) -> dict[str, tuple]:
    return {
        p.id: (p.mother_id, p.father_id, p.spouse_id, p.position.x, p.position.y)
        for p in ctx.store
    }


def _two_person_state(**extra) -> str:
    state = {
        "version": "2.6",
        "cacheFormat": "enhanced",
        "persons": [
            {"id": "p1", "name": "Anna", "gender": "female"},
            {"id": "p2", "name": "Clara", "gender": "female", "motherId": "p1"},
        ],
        "nextId": 3,
    }
    state.update(extra)
    return json.dumps(state)


class ManifestLockedStorage(MemoryStorage):
    """Memory storage whose manifest writes fail while ``locked`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.locked = True

    def set(self, key: str, value: str) -> None:
        if self.locked and key.endswith("_manifest"):
            raise StorageWriteError(key, "manifest locked")
        super().set(key, value)


class TestMemoryStorage:
    """Tests for the in-process storage backend."""

    def test_quota(self):
        """Test that writes past the byte quota are refused."""
        storage = MemoryStorage(quota_bytes=10)
        storage.set("a", "12345")
        with pytest.raises(StorageQuotaError):
            storage.set("b", "1234567")
        # overwriting counts the replaced value as freed
        storage.set("a", "1234567890")

    def test_fail_writes(self):
        """Test the read-only switch."""
        storage = MemoryStorage()
        storage.fail_writes = True
        with pytest.raises(StorageWriteError):
            storage.set("a", "x")

    def test_prefix_and_size(self):
        """Test prefix scans and UTF-8 sizes."""
        storage = MemoryStorage()
        storage.set("k_backup_1", "é")
        storage.set("k", "ab")
        assert storage.keys_with_prefix("k_backup_") == ["k_backup_1"]
        assert storage.size_of("k_backup_1") == 2
        assert storage.total_size() == 4


class TestFileStorage:
    """Tests for the one-file-per-key backend."""

    def test_round_trip(self, tmp_path: Path):
        """Test set, get and delete."""
        storage = FileStorage(tmp_path / "canvas")
        storage.set("state", '{"a": 1}')
        assert storage.get("state") == '{"a": 1}'
        assert storage.keys() == ["state"]
        assert storage.delete("state")
        assert storage.get("state") is None
        assert not storage.delete("state")

    def test_leaves_no_temp_files(self, tmp_path: Path):
        """Test that atomic writes clean up after themselves."""
        storage = FileStorage(tmp_path)
        storage.set("state", "x" * 100)
        storage.set("state", "y")
        assert sorted(p.name for p in tmp_path.iterdir()) == ["state.json"]

    def test_unsafe_key(self, tmp_path: Path):
        """Test that keys cannot escape the storage directory."""
        with pytest.raises(ValueError):
            FileStorage(tmp_path).set("../escape", "x")

    def test_quota(self, tmp_path: Path):
        """Test that writes past the byte quota are refused."""
        storage = FileStorage(tmp_path, quota_bytes=4)
        with pytest.raises(StorageQuotaError):
            storage.set("state", "12345")


class TestBackupManifest:
    """Tests for the backup manifest."""

    def test_prune_keeps_newest(self):
        """Test that pruning drops the oldest entries."""
        manifest = BackupManifest(primary_key=PRIMARY)
        for ts in (3, 1, 4, 2):
            manifest.add(backup_key(PRIMARY, ts), ts)
        dropped = manifest.prune(3)
        assert [b.timestamp for b in manifest.backups] == [4, 3, 2]
        assert [b.timestamp for b in dropped] == [1]

    def test_rebuilt_from_keys_when_missing(self):
        """Test rebuilding from a prefix scan."""
        storage = MemoryStorage()
        storage.set(backup_key(PRIMARY, 10), "{}")
        storage.set(backup_key(PRIMARY, 20), "{}")
        storage.set("unrelated", "{}")
        manifest = ManifestStore(storage, PRIMARY, f"{PRIMARY}_manifest", f"{PRIMARY}_backup_").load()
        assert [b.timestamp for b in manifest.newest_first()] == [20, 10]

    def test_rebuilt_when_corrupt(self):
        """Test that an unreadable manifest is rebuilt."""
        storage = MemoryStorage()
        storage.set(f"{PRIMARY}_manifest", "{not json")
        storage.set(backup_key(PRIMARY, 5), "{}")
        manifest = ManifestStore(storage, PRIMARY, f"{PRIMARY}_manifest", f"{PRIMARY}_backup_").load()
        assert [b.key for b in manifest.backups] == [backup_key(PRIMARY, 5)]


class TestSave:
    """Tests for writing the primary entry and its backups."""

    def test_writes_primary_backup_and_manifest(self, family, storage):
        """Test a normal save."""
        result = family.persistence.save()
        assert result.ok
        assert result.cache_format == "enhanced"
        data = json.loads(storage.get(PRIMARY))
        assert data["version"] == "2.6"
        assert len(data["persons"]) == 5
        assert storage.get(result.backup_key) == storage.get(PRIMARY)
        manifest = json.loads(storage.get(f"{PRIMARY}_manifest"))
        assert manifest["backups"][0]["key"] == result.backup_key

    def test_backup_rotation_keeps_three(self, family, storage):
        """Test that only the three newest backups survive."""
        keys = [family.persistence.save().backup_key for _ in range(5)]
        remaining = storage.keys_with_prefix(f"{PRIMARY}_backup_")
        assert sorted(remaining) == sorted(keys[-3:])
        assert [key for key, _ in family.persistence.backups()] == list(reversed(keys[-3:]))

    def test_compressed_fallback_over_limit(self, family, storage):
        """Test the compressed format above the size limit."""
        enhanced_size = len(family.persistence.build_envelope().to_json().encode())
        compressed_size = len(family.persistence.build_compressed_envelope().to_json().encode())
        assert compressed_size < enhanced_size
        limit = (enhanced_size + compressed_size) // 2
        family.persistence.config = PersistenceConfig(max_state_bytes=limit)
        result = family.persistence.save()

        assert result.ok
        assert result.cache_format == "compressed"
        data = json.loads(storage.get(PRIMARY))
        assert data["cacheFormat"] == "compressed"
        assert "settings" not in data
        assert "camera" not in data

    def test_storage_quota_triggers_compressed_retry(self, family):
        """Test the compressed retry when the backend is full."""
        compressed_size = len(family.persistence.build_compressed_envelope().to_json().encode())
        family.persistence.storage.quota_bytes = compressed_size + 10
        result = family.persistence.save()
        assert result.ok
        assert result.cache_format == "compressed"
        # the backup did not fit and is reported only in the log
        assert result.backup_key is None

    def test_write_failure_is_reported_not_raised(self, family, storage):
        """Test that a failed primary write is reported."""
        storage.fail_writes = True
        result = family.persistence.save()
        assert result.ok is False
        assert "read-only" in result.error

    def test_autosave_failure_notifies(self, family, storage, notifications):
        """Test the notification for a failed auto-save."""
        storage.fail_writes = True
        family.persistence.autosave()
        assert notifications.entries[-1][:2] == ("warning", "Auto-save Failed")

    def test_manifest_failure_leaves_no_untracked_backup(self, make_context):
        """Test that a backup is discarded when its manifest entry cannot be written."""
        storage = ManifestLockedStorage()
        ctx = make_context(storage)
        ctx.save_person({"name": "Anna", "gender": "female"})

        for _ in range(3):
            result = ctx.persistence.save()
            assert result.ok
            assert result.backup_key is None
        assert storage.keys_with_prefix(f"{PRIMARY}_backup_") == []

        storage.locked = False
        for _ in range(5):
            ctx.persistence.save()
        on_disk = storage.keys_with_prefix(f"{PRIMARY}_backup_")
        assert len(on_disk) == 3
        assert sorted(key for key, _ in ctx.persistence.backups()) == sorted(on_disk)


class TestLoad:
    """Tests for restoring a stored session."""

    def test_no_prior_state(self, ctx):
        """Test loading from empty storage."""
        assert ctx.persistence.load().outcome is LoadOutcome.NO_PRIOR_STATE

    def test_round_trip_five_people(self, family, storage, make_context):
        """Test the five-person save/load round trip."""
        family.move_person("p4", 321, -45)
        family.persistence.save()
        expected = _relations(family)

        restored = make_context(storage)
        result = restored.persistence.load()

        assert result.outcome is LoadOutcome.LOADED
        assert _relations(restored) == expected
        assert set(restored.surface.connections) == set(family.surface.connections)
        assert len(restored.surface.connections) == 2
        assert restored.store.next_id == family.store.next_id
        assert restored.surface.get_camera() == family.surface.get_camera()
        assert not restored.history.can_undo

    def test_round_trip_keeps_cosmetic_state(self, family, storage, make_context):
        """Test that settings and styles survive a reload."""
        family.update_settings(font_family="Georgia", spouse_line_style="dotted")
        family.update_display_preferences(show_maiden_name=False)
        family.set_node_style("rectangle")
        family.persistence.save()

        restored = make_context(storage)
        restored.persistence.load()
        assert restored.settings.font_family == "Georgia"
        assert restored.settings.spouse_line_style.value == "dotted"
        assert restored.display_preferences.show_maiden_name is False
        assert restored.node_style.value == "rectangle"

    def test_round_trip_suppression_sets(self, family, storage, make_context):
        """Test that hidden and line-only pairs survive a reload."""
        family.remove_connection("p1", "p3")
        family.connect("p4", "p5", "line-only")
        family.persistence.save()

        restored = make_context(storage)
        restored.persistence.load()
        assert restored.store.hidden_connections == {"p1-p3"}
        assert restored.store.line_only_connections == {"p4-p5"}
        assert restored.store.get("p3").mother_id == "p1"

    def test_corrupted_json_is_treated_as_absent(self, family, storage, notifications):
        """Test that broken JSON leaves live state alone."""
        storage.set(PRIMARY, "{truncated")
        before = _relations(family)
        result = family.persistence.load()
        assert result.outcome is LoadOutcome.CORRUPTED
        assert _relations(family) == before
        assert notifications.levels[-1] == "error"

    def test_unrecognized_format_leaves_state(self, family, storage):
        """Test rejection of envelopes without version or persons."""
        storage.set(PRIMARY, json.dumps({"people": [{"id": "x"}]}))
        before = _relations(family)
        result = family.persistence.load()
        assert result.outcome is LoadOutcome.UNRECOGNIZED_FORMAT
        assert result.error == "unrecognized format"
        assert _relations(family) == before

    def test_missing_camera_fits_content(self, storage, make_context):
        """Test auto-centering when no camera was saved."""
        storage.set(
            PRIMARY,
            json.dumps({"version": "2.0", "persons": [{"id": "p1", "x": 100, "y": 100}]}),
        )
        ctx = make_context(storage)
        ctx.persistence.load()
        assert ctx.surface.get_camera().x == 300
        assert ctx.surface.get_camera().y == 200

    def test_cleanup_runs_before_derivation(self, storage, make_context):
        """Test that self-references are cleared before edges are drawn."""
        storage.set(
            PRIMARY,
            json.dumps(
                {
                    "version": "2.6",
                    "persons": [{"id": "p1", "spouseId": "p1"}, {"id": "p2", "motherId": "p1"}],
                }
            ),
        )
        ctx = make_context(storage)
        result = ctx.persistence.load()
        assert result.integrity_fixes == 1
        assert ctx.store.get("p1").spouse_id is None
        assert [e.type.value for e in ctx.surface.connections] == ["parent"]

    def test_counter_raised_past_loaded_ids(self, storage, make_context):
        """Test that new ids never collide with loaded ones."""
        storage.set(PRIMARY, json.dumps({"version": "2.6", "persons": [{"id": "p12"}], "nextId": 3}))
        ctx = make_context(storage)
        ctx.persistence.load()
        assert ctx.store.generate_id() == "p13"

    def test_recovers_relations_from_backup_map(self, storage, make_context):
        """Test recovery from the redundant relational map."""
        storage.set(
            PRIMARY,
            json.dumps(
                {
                    "version": "2.6",
                    "persons": [{"id": "p1", "spouseId": "p9"}, {"id": "p2"}],
                    "personDataBackup": [["p1", {"spouseId": "p2"}], ["p2", {"spouseId": "p1"}]],
                }
            ),
        )
        ctx = make_context(storage)
        result = ctx.persistence.load()
        assert result.recovered_from_backup
        assert result.connections == 1
        assert ctx.store.get("p2").spouse_id == "p1"

    def test_warning_when_recovery_fails(self, storage, notifications, make_context):
        """Test the warning when recovery finds nothing."""
        storage.set(
            PRIMARY,
            json.dumps({"version": "2.6", "persons": [{"id": "p1", "motherId": "p9"}]}),
        )
        ctx = make_context(storage, notifications)
        result = ctx.persistence.load()
        assert result.connections == 0
        assert result.warnings
        assert "warning" in notifications.levels

    def test_hidden_relations_do_not_trigger_recovery(self, storage, make_context):
        """Test that hidden pairs are not mistaken for a load defect."""
        storage.set(
            PRIMARY,
            json.dumps(
                {
                    "version": "2.6",
                    "persons": [{"id": "p1"}, {"id": "p2", "motherId": "p1"}],
                    "hiddenConnections": ["p1-p2"],
                    "personDataBackup": [["p2", {"motherId": ""}]],
                }
            ),
        )
        ctx = make_context(storage)
        result = ctx.persistence.load()
        assert not result.recovered_from_backup
        assert result.warnings == []
        assert ctx.store.get("p2").mother_id == "p1"

    def test_bad_setting_falls_back_to_its_default(self, storage, make_context):
        """Test that one rejected setting keeps the rest of the tree and settings."""
        storage.set(PRIMARY, _two_person_state(settings={"nodeRadius": 0, "fontFamily": "Georgia"}))
        ctx = make_context(storage)
        result = ctx.persistence.load()
        assert result.outcome is LoadOutcome.LOADED
        assert result.persons == 2
        assert result.connections == 1
        assert ctx.settings.node_radius == 50.0
        assert ctx.settings.font_family == "Georgia"

    def test_bad_line_style_falls_back_to_its_default(self, storage, make_context):
        """Test an unknown line style."""
        storage.set(
            PRIMARY,
            _two_person_state(settings={"familyLineStyle": "double", "spouseLineStyle": "dotted"}),
        )
        ctx = make_context(storage)
        assert ctx.persistence.load().outcome is LoadOutcome.LOADED
        assert ctx.settings.family_line_style.value == "solid"
        assert ctx.settings.spouse_line_style.value == "dotted"

    def test_bad_node_style_is_ignored(self, storage, make_context):
        """Test an unknown node style."""
        storage.set(PRIMARY, _two_person_state(nodeStyle="hexagon"))
        ctx = make_context(storage)
        assert ctx.persistence.load().outcome is LoadOutcome.LOADED
        assert ctx.node_style.value == "circle"
        assert len(ctx.store) == 2

    def test_bad_display_preference_falls_back(self, storage, make_context):
        """Test a display preference that is not a boolean."""
        storage.set(
            PRIMARY,
            _two_person_state(displayPreferences={"showMaidenName": "maybe", "showDateOfBirth": False}),
        )
        ctx = make_context(storage)
        assert ctx.persistence.load().outcome is LoadOutcome.LOADED
        assert ctx.display_preferences.show_maiden_name is True
        assert ctx.display_preferences.show_date_of_birth is False

    def test_bad_saved_connection_is_skipped(self, storage, make_context):
        """Test that drawn-connection entries with an unknown type are dropped."""
        storage.set(
            PRIMARY,
            _two_person_state(
                currentConnections=[
                    {"from": "p2", "to": "p1", "type": 1},
                    {"from": "p2", "to": "p1", "type": "parent"},
                ]
            ),
        )
        ctx = make_context(storage)
        result = ctx.persistence.load()
        assert result.outcome is LoadOutcome.LOADED
        assert result.connections == 1

    def test_bad_cosmetic_state_survives_autosave(self, storage, make_context):
        """Test that the restored tree, not an empty one, is written by the next auto-save."""
        storage.set(PRIMARY, _two_person_state(nodeStyle="hexagon", camera="far away"))
        ctx = make_context(storage)
        assert ctx.start().restored
        ctx.scheduler.advance(30_000)
        assert len(json.loads(storage.get(PRIMARY))["persons"]) == 2

    def test_persons_must_be_a_list(self, family, storage):
        """Test that a non-list persons value is rejected."""
        storage.set(PRIMARY, json.dumps({"version": "2.6", "persons": "everyone"}))
        before = _relations(family)
        assert family.persistence.load().outcome is LoadOutcome.UNRECOGNIZED_FORMAT
        assert _relations(family) == before


class TestImportExport:
    """Tests for file import and export."""

    def test_export_then_import(self, family, tmp_path: Path, make_context):
        """Test exporting and importing a tree."""
        path = family.persistence.export_to_file(tmp_path / "tree.json")
        text = path.read_text()
        assert text.startswith("{\n")

        other = make_context(MemoryStorage())
        result = other.persistence.import_from_file(path)
        assert result.persons == 5
        assert _relations(other) == _relations(family)
        assert other.persistence.save_pending

    def test_import_rejects_unknown_shape(self, family):
        """Test that bad imports leave live state alone."""
        before = _relations(family)
        with pytest.raises(LoadFormatError):
            family.persistence.import_state({"something": "else"})
        with pytest.raises(LoadFormatError):
            family.persistence.import_state("not json at all")
        assert _relations(family) == before

    def test_import_rejects_non_utf8_file(self, family, tmp_path: Path):
        """Test that an undecodable file is reported as an unrecognized format."""
        path = tmp_path / "tree.json"
        path.write_bytes(b'{"version": "2.6", "persons": [], "name": "\xff"}')
        before = _relations(family)
        with pytest.raises(LoadFormatError) as exc:
            family.persistence.import_from_file(path)
        assert str(exc.value) == "unrecognized format"
        assert _relations(family) == before


class TestMaintenance:
    """Tests for clear, regenerate and describe."""

    def test_clear_removes_everything(self, family, storage):
        """Test that clear removes the primary entry and backups."""
        family.persistence.save()
        family.persistence.save()
        removed = family.persistence.clear()
        assert removed == 3
        assert storage.keys() == []

    def test_clear_removes_backups_missing_from_manifest(self, family, storage):
        """Test that clear also sweeps backups the manifest does not list."""
        family.persistence.save()
        storage.set(backup_key(PRIMARY, 5), "{}")
        assert family.persistence.clear() == 3
        assert storage.keys() == []

    def test_force_regenerate_uses_stored_backup_map(self, family, storage):
        """Test regeneration from the stored relational map."""
        family.persistence.save()
        for record in family.store:
            record.mother_id = record.father_id = record.spouse_id = None
        count = family.persistence.force_regenerate()
        assert count == 2

    def test_describe(self, family):
        """Test the stored-versus-live summary."""
        family.persistence.save()
        summary = family.persistence.describe()
        assert summary["stored"]["outcome"] == "loaded"
        assert summary["stored"]["persons"] == 5
        assert summary["stored"]["relationships"] == 3
        assert summary["live"]["connections"] == 2
        assert summary["backups"] == 1


class TestAutosave:
    """Tests for the auto-save policy."""

    def test_interval(self, ctx, storage, clock, scheduler):
        """Test the periodic save."""
        ctx.persistence.start_autosave()
        assert ctx.persistence.autosave_enabled
        scheduler.advance(29_999)
        assert storage.get(PRIMARY) is None
        scheduler.advance(1)
        assert storage.get(PRIMARY) is not None

    def test_stop(self, ctx, storage, scheduler):
        """Test that stopping disables the timer."""
        ctx.persistence.start_autosave()
        ctx.persistence.stop_autosave()
        scheduler.advance(60_000)
        assert storage.get(PRIMARY) is None

    def test_debounced_after_history_push(self, ctx, storage, scheduler):
        """Test that bursts of edits produce one save."""
        ctx.save_person({"name": "Anna", "gender": "female"})
        ctx.save_person({"name": "Boris", "gender": "male"})
        assert ctx.persistence.save_pending
        assert storage.get(PRIMARY) is None
        scheduler.advance(100)
        data = json.loads(storage.get(PRIMARY))
        assert len(data["persons"]) == 2
        assert len(storage.keys_with_prefix(f"{PRIMARY}_backup_")) == 1

    def test_visibility_and_teardown_save_immediately(self, family, storage):
        """Test saves on visibility loss and teardown."""
        family.on_visibility_hidden()
        assert storage.get(PRIMARY) is not None
        storage.delete(PRIMARY)
        family.teardown()
        assert storage.get(PRIMARY) is not None
        assert not family.persistence.autosave_enabled
