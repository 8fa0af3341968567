"""Render surface contract consumed by the engine.

The surface owns the visual node and edge state. The engine treats it as
a synchronized projection: nodes are upserted from person records and
the edge list is rebuilt wholesale by the connection deriver.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, fields, replace
from typing import TYPE_CHECKING, Any

from ..models.connection import ConnectionType, Edge
from ..models.settings import DEFAULT_NODE_COLOR, DEFAULT_NODE_RADIUS, Camera

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from ..models.person import PersonRecord


@dataclass
class CanvasNode:
    """Visual node: model coordinates, visual attributes and person display fields."""
    id: str
    x: float = 0.0
    y: float = 0.0
    color: str = DEFAULT_NODE_COLOR
    radius: float = DEFAULT_NODE_RADIUS
    name: str = ""
    father_name: str = ""
    surname: str = ""
    maiden_name: str = ""
    dob: str = ""
    gender: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_record(cls, record: PersonRecord) -> CanvasNode:
        return cls(
            id=record.id,
            x=record.position.x,
            y=record.position.y,
            color=record.visual.color,
            radius=record.visual.radius,
            name=record.name,
            father_name=record.father_name,
            surname=record.surname,
            maiden_name=record.maiden_name,
            dob=record.dob,
            gender=record.gender,
        )


_NODE_FIELDS = {f.name for f in fields(CanvasNode)} - {"id"}


@dataclass(frozen=True)
class Bounds:
    """Axis-aligned bounding box in model coordinates."""
    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2


class RenderSurface(ABC):
    """Abstract visual surface (canvas) the engine projects onto."""

    # Nodes

    @abstractmethod
    def set_node(self, node_id: str, data: Mapping[str, Any]) -> CanvasNode:
        """Insert or update a node; unknown keys are ignored."""
        ...

    @abstractmethod
    def get_node(self, node_id: str) -> CanvasNode | None:
        ...

    @abstractmethod
    def remove_node(self, node_id: str) -> bool:
        ...

    @abstractmethod
    def clear_nodes(self) -> None:
        ...

    @property
    @abstractmethod
    def nodes(self) -> dict[str, CanvasNode]:
        """Live node mapping keyed by id, in insertion order."""
        ...

    def has_node(self, node_id: str) -> bool:
        return node_id in self.nodes

    # Connections

    @abstractmethod
    def add_connection(self, source: str, target: str, connection_type: ConnectionType) -> Edge:
        ...

    @abstractmethod
    def clear_connections(self) -> None:
        ...

    @property
    @abstractmethod
    def connections(self) -> list[Edge]:
        ...

    # Selection

    @abstractmethod
    def get_selected_nodes(self) -> list[str]:
        """Selected node ids in selection order."""
        ...

    @abstractmethod
    def select(self, node_ids: Iterable[str]) -> None:
        ...

    @abstractmethod
    def clear_selection(self) -> None:
        ...

    # Camera and geometry

    @abstractmethod
    def get_camera(self) -> Camera:
        ...

    @abstractmethod
    def set_camera(self, x: float, y: float, scale: float) -> None:
        ...

    @abstractmethod
    def get_content_bounds(self) -> Bounds | None:
        """Bounding box of all nodes, or None if there are none."""
        ...

    @property
    @abstractmethod
    def canvas_size(self) -> tuple[float, float]:
        """Canvas width and height in CSS pixels."""
        ...

    def request_redraw(self) -> None:
        """Hook for surfaces that repaint lazily."""
        return None


class InMemoryRenderSurface(RenderSurface):
    """Headless surface used by the CLI and tests."""

    def __init__(self, width: float = 800.0, height: float = 600.0) -> None:
        self._nodes: dict[str, CanvasNode] = {}
        self._connections: list[Edge] = []
        self._selection: list[str] = []
        self._camera = Camera()
        self._size = (width, height)
        self.redraw_requests = 0

    def set_node(self, node_id: str, data: Mapping[str, Any]) -> CanvasNode:
        updates = {k: v for k, v in data.items() if k in _NODE_FIELDS}
        existing = self._nodes.get(node_id)
        node = replace(existing, **updates) if existing else CanvasNode(id=node_id, **updates)
        self._nodes[node_id] = node
        return node

    def get_node(self, node_id: str) -> CanvasNode | None:
        return self._nodes.get(node_id)

    def remove_node(self, node_id: str) -> bool:
        if node_id not in self._nodes:
            return False
        del self._nodes[node_id]
        if node_id in self._selection:
            self._selection.remove(node_id)
        return True

    def clear_nodes(self) -> None:
        self._nodes.clear()
        self._selection.clear()

    @property
    def nodes(self) -> dict[str, CanvasNode]:
        return self._nodes

    def add_connection(self, source: str, target: str, connection_type: ConnectionType) -> Edge:
        edge = Edge(source=source, target=target, type=ConnectionType(connection_type))
        self._connections.append(edge)
        return edge

    def clear_connections(self) -> None:
        self._connections.clear()

    @property
    def connections(self) -> list[Edge]:
        return self._connections

    def get_selected_nodes(self) -> list[str]:
        return list(self._selection)

    def select(self, node_ids: Iterable[str]) -> None:
        for node_id in node_ids:
            if node_id in self._nodes and node_id not in self._selection:
                self._selection.append(node_id)

    def clear_selection(self) -> None:
        self._selection.clear()

    def get_camera(self) -> Camera:
        return self._camera.model_copy()

    def set_camera(self, x: float, y: float, scale: float) -> None:
        self._camera = Camera(x=x, y=y, scale=scale)

    def get_content_bounds(self) -> Bounds | None:
        if not self._nodes:
            return None
        min_x = min(n.x - n.radius for n in self._nodes.values())
        min_y = min(n.y - n.radius for n in self._nodes.values())
        max_x = max(n.x + n.radius for n in self._nodes.values())
        max_y = max(n.y + n.radius for n in self._nodes.values())
        return Bounds(x=min_x, y=min_y, width=max_x - min_x, height=max_y - min_y)

    @property
    def canvas_size(self) -> tuple[float, float]:
        return self._size

    def resize(self, width: float, height: float) -> None:
        self._size = (width, height)

    def request_redraw(self) -> None:
        self.redraw_requests += 1
