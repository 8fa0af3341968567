"""Application context: explicit wiring of the engine and the user actions on it.

One ``AppContext`` is constructed per canvas session and passed by
reference to everything that needs shared state; there is no module
global. Every committed user action follows the same pipeline:

    checkpoint -> mutate store/surface -> derive edges -> history push -> debounced save
"""
from __future__ import annotations

import time
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Callable

import structlog

from .config import CONFIG, CanvasConfig
from .graph.cleanup import CleanupPass
from .graph.deriver import ConnectionDeriver
from .graph.store import RelationshipStore
from .graph.surface import CanvasNode, InMemoryRenderSurface, RenderSurface
from .history import HistoryManager, HistorySnapshot
from .models.connection import RelationKind, pair_key
from .models.settings import DisplayPreferences, DisplaySettings, NodeStyle
from .persistence.controller import LoadResult, PersistenceController
from .persistence.storage import KeyValueStorage, MemoryStorage
from .scheduler import TickScheduler
from .viewport import CenterResult, ViewportController

if TYPE_CHECKING:
    from .errors import IntegrityError
    from .graph.store import ConnectResult
    from .models.person import PersonRecord

logger = structlog.get_logger(__name__)

Notifier = Callable[[str, str, str], None]


def log_notifier(level: str, title: str, message: str) -> None:
    """Default notifier: user-facing messages go to the log."""
    log = logger.warning if level in ("warning", "error") else logger.info
    log("notify", level=level, title=title, message=message)


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


class AppContext:
    """Owns the live state of one canvas session."""

    def __init__(
        self,
        config: CanvasConfig | None = None,
        storage: KeyValueStorage | None = None,
        surface: RenderSurface | None = None,
        scheduler: TickScheduler | None = None,
        notifier: Notifier | None = None,
        wall_clock: Callable[[], int] | None = None,
    ) -> None:
        self.config = config or CONFIG
        self.notifier = notifier or log_notifier
        self._wall_clock = wall_clock or wall_clock_ms

        self.settings = DisplaySettings()
        self.display_preferences = DisplayPreferences()
        self.node_style = NodeStyle.CIRCLE

        self.store = RelationshipStore()
        self.surface = surface or InMemoryRenderSurface()
        self.scheduler = scheduler or TickScheduler()
        self.deriver = ConnectionDeriver(self.store, self.surface)
        self.viewport = ViewportController(self.surface, self.scheduler, self.config.viewport)
        self.history = HistoryManager(self, max_size=self.config.history.max_undo, on_push=self._on_history_push)
        self.persistence = PersistenceController(self, storage if storage is not None else MemoryStorage())

    def wall_clock_ms(self) -> int:
        return self._wall_clock()

    def notify(self, level: str, title: str, message: str) -> None:
        self.notifier(level, title, message)

    def _on_history_push(self) -> None:
        self.persistence.schedule_save()

    # ------------------------------------------------------------------
    # Snapshot source for the history manager
    # ------------------------------------------------------------------

    def capture_snapshot(self) -> HistorySnapshot:
        return HistorySnapshot(
            nodes={node_id: replace(node) for node_id, node in self.surface.nodes.items()},
            store=self.store.snapshot(),
            camera=self.surface.get_camera(),
            settings=self.settings.model_copy(deep=True),
            display_preferences=self.display_preferences.model_copy(deep=True),
            node_style=self.node_style,
        )

    def restore_snapshot(self, snapshot: HistorySnapshot) -> None:
        self.store.restore(snapshot.store)
        self.surface.clear_nodes()
        for node_id, node in snapshot.nodes.items():
            self.surface.set_node(node_id, node.to_dict())
        camera = snapshot.camera
        self.surface.set_camera(camera.x, camera.y, camera.scale)
        self.settings = snapshot.settings.model_copy(deep=True)
        self.display_preferences = snapshot.display_preferences.model_copy(deep=True)
        self.node_style = snapshot.node_style
        self.deriver.derive()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start(self, autosave: bool = True) -> LoadResult:
        """Restore the previous session and begin auto-saving."""
        result = self.persistence.load()
        if autosave:
            self.persistence.start_autosave()
        return result

    def on_visibility_hidden(self) -> None:
        self.persistence.on_visibility_hidden()

    def teardown(self) -> None:
        self.persistence.on_teardown()
        self.scheduler.cancel_all()

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def _commit(self, checkpoint: HistorySnapshot) -> None:
        self.deriver.derive()
        self.history.push_snapshot(checkpoint)

    def new_node_position(self) -> tuple[float, float]:
        """Centred under the existing nodes, one row below the lowest."""
        cfg = self.config.viewport
        nodes = list(self.surface.nodes.values())
        if not nodes:
            return cfg.first_node_x, cfg.first_node_y
        min_x = min(n.x for n in nodes)
        max_x = max(n.x for n in nodes)
        max_y = max(n.y for n in nodes)
        return (min_x + max_x) / 2, max_y + cfg.row_spacing

    def save_person(self, data: dict[str, Any], editing_id: str | None = None) -> PersonRecord:
        """Create or edit a person from form data.

        Raises:
            ValidationError: name or gender missing, or a bad relation target.
                Nothing is changed.
        """
        checkpoint = self.capture_snapshot()
        data = dict(data)
        creating = editing_id is None
        if creating and "position" not in data:
            x, y = self.new_node_position()
            data["position"] = {"x": x, "y": y}
        if creating and "visual" not in data:
            data["visual"] = {"color": self.settings.default_color, "radius": self.settings.node_radius}

        record = self.store.apply_edit(data, editing_id=editing_id)

        node = CanvasNode.from_record(record)
        if not creating:
            existing = self.surface.get_node(record.id)
            if existing is not None:
                node = replace(node, x=existing.x, y=existing.y)
        self.surface.set_node(record.id, node.to_dict())
        self._commit(checkpoint)

        if creating:
            self.viewport.center_on_node(record.id)
        return record

    def move_person(self, person_id: str, x: float, y: float) -> None:
        checkpoint = self.capture_snapshot()
        self.store.set_position(person_id, x, y)
        self.surface.set_node(person_id, {"x": float(x), "y": float(y)})
        self._commit(checkpoint)

    def delete_person(self, person_id: str) -> bool:
        if person_id not in self.store:
            return False
        checkpoint = self.capture_snapshot()
        self.store.remove(person_id)
        self.surface.remove_node(person_id)
        self._commit(checkpoint)
        return True

    def connect(self, person_a: str, person_b: str, kind: RelationKind | str) -> ConnectResult:
        """Relate the first selected person (A) to the second (B).

        Raises:
            ValidationError: unknown id or self-connection. Nothing is changed.
        """
        checkpoint = self.capture_snapshot()
        result = self.store.connect(person_a, person_b, RelationKind(kind))
        self._commit(checkpoint)
        return result

    def remove_connection(self, person_a: str, person_b: str) -> str:
        """Line-only edges are deleted; relational edges are hidden, the relation stays."""
        checkpoint = self.capture_snapshot()
        key = pair_key(person_a, person_b)
        if not self.store.remove_line_only(person_a, person_b):
            self.store.hide_connection(person_a, person_b)
        self._commit(checkpoint)
        return key

    def restore_connection(self, person_a: str, person_b: str) -> bool:
        if not self.store.is_hidden(person_a, person_b):
            return False
        checkpoint = self.capture_snapshot()
        self.store.unhide_connection(person_a, person_b)
        self._commit(checkpoint)
        return True

    def update_settings(self, **changes: Any) -> DisplaySettings:
        checkpoint = self.capture_snapshot()
        self.settings = DisplaySettings.model_validate({**self.settings.model_dump(), **changes})
        self.surface.request_redraw()
        self.history.push_snapshot(checkpoint)
        return self.settings

    def update_display_preferences(self, **changes: Any) -> DisplayPreferences:
        checkpoint = self.capture_snapshot()
        self.display_preferences = DisplayPreferences.model_validate(
            {**self.display_preferences.model_dump(), **changes}
        )
        self.surface.request_redraw()
        self.history.push_snapshot(checkpoint)
        return self.display_preferences

    def set_node_style(self, style: NodeStyle | str) -> None:
        style = NodeStyle(style)
        if style is self.node_style:
            return
        checkpoint = self.capture_snapshot()
        self.node_style = style
        self.surface.request_redraw()
        self.history.push_snapshot(checkpoint)

    def undo(self) -> bool:
        if not self.history.undo():
            return False
        self.persistence.schedule_save()
        return True

    def redo(self) -> bool:
        if not self.history.redo():
            return False
        self.persistence.schedule_save()
        return True

    def clear_all(self) -> None:
        """Wipe the canvas and every stored entry. Not undoable."""
        self.store.clear()
        self.surface.clear_connections()
        self.surface.clear_nodes()
        self.history.reset()
        self.persistence.clear()
        self.surface.request_redraw()
        logger.info("context.cleared")
        self.notify("info", "Canvas Cleared", "All people and connections were removed")

    def select(self, *person_ids: str) -> None:
        self.surface.clear_selection()
        self.surface.select(person_ids)

    def center_selected(self) -> CenterResult:
        return self.viewport.center_selected()

    def cleanup(self) -> list[IntegrityError]:
        """Run the integrity pass on demand and redraw."""
        fixes = CleanupPass(self.store).run()
        self.deriver.derive()
        return fixes

    def rederive(self) -> int:
        self.deriver.derive()
        return len(self.surface.connections)
