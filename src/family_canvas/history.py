"""Bounded undo/redo over full-state snapshots.

Callers checkpoint *before* applying a mutation: ``push_state()`` captures
the state S, the mutation produces S', and ``undo()`` brings back S while
parking S' on the redo stack.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Protocol

import structlog

if TYPE_CHECKING:
    from .graph.store import StoreState
    from .graph.surface import CanvasNode
    from .models.settings import Camera, DisplayPreferences, DisplaySettings, NodeStyle

logger = structlog.get_logger(__name__)

DEFAULT_MAX_UNDO = 50


@dataclass(frozen=True)
class HistorySnapshot:
    """Deep copy of all mutable application state at one instant."""
    nodes: dict[str, CanvasNode]
    store: StoreState
    camera: Camera
    settings: DisplaySettings
    display_preferences: DisplayPreferences
    node_style: NodeStyle


class SnapshotSource(Protocol):
    """Whatever owns the live state the history manager records."""

    def capture_snapshot(self) -> HistorySnapshot: ...

    def restore_snapshot(self, snapshot: HistorySnapshot) -> None: ...


class HistoryManager:
    """Undo and redo stacks with FIFO eviction past ``max_size``."""

    def __init__(
        self,
        source: SnapshotSource,
        max_size: int = DEFAULT_MAX_UNDO,
        on_push: Callable[[], None] | None = None,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.source = source
        self.max_size = max_size
        self.on_push = on_push
        self._undo: deque[HistorySnapshot] = deque(maxlen=max_size)
        self._redo: deque[HistorySnapshot] = deque(maxlen=max_size)

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    @property
    def redo_depth(self) -> int:
        return len(self._redo)

    def push_state(self) -> HistorySnapshot:
        """Record the live state; a new edit drops any pending redo branch."""
        return self.push_snapshot(self.source.capture_snapshot())

    def push_snapshot(self, snapshot: HistorySnapshot) -> HistorySnapshot:
        """Commit a checkpoint captured before a mutation that has since succeeded."""
        evicting = len(self._undo) == self.max_size
        self._undo.append(snapshot)
        self._redo.clear()
        if evicting:
            logger.debug("history.evicted_oldest", max_size=self.max_size)
        if self.on_push is not None:
            self.on_push()
        return snapshot

    def undo(self) -> bool:
        if not self._undo:
            logger.info("history.undo_empty")
            return False
        snapshot = self._undo.pop()
        self._redo.append(self.source.capture_snapshot())
        self.source.restore_snapshot(snapshot)
        logger.debug("history.undo", undo_depth=len(self._undo), redo_depth=len(self._redo))
        return True

    def redo(self) -> bool:
        if not self._redo:
            logger.info("history.redo_empty")
            return False
        snapshot = self._redo.pop()
        self._undo.append(self.source.capture_snapshot())
        self.source.restore_snapshot(snapshot)
        logger.debug("history.redo", undo_depth=len(self._undo), redo_depth=len(self._redo))
        return True

    def reset(self) -> None:
        self._undo.clear()
        self._redo.clear()
