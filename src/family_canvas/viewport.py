"""Camera state and animated centering."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from .config import ViewportConfig
from .models.settings import Camera

if TYPE_CHECKING:
    from .graph.surface import RenderSurface
    from .scheduler import TickScheduler

logger = structlog.get_logger(__name__)


def ease_in_out_cubic(t: float) -> float:
    t = min(max(t, 0.0), 1.0)
    if t < 0.5:
        return 4 * t * t * t
    return 1 - (-2 * t + 2) ** 3 / 2


def lerp(start: float, end: float, t: float) -> float:
    return start + (end - start) * t


class CenterOutcome(str, Enum):
    CENTERED = "centered"
    NO_SELECTION = "no_selection"
    NOT_FOUND = "not_found"


@dataclass
class CenterResult:
    outcome: CenterOutcome
    node_id: str | None = None
    multiple_selected: bool = False


@dataclass
class CameraAnimation:
    """One centering transition. Ticks from a superseded animation are ignored."""
    start: Camera
    target: Camera
    started_at: float
    duration_ms: float
    generation: int
    progress: float = 0.0
    done: bool = False
    superseded: bool = False


class ViewportController:
    """Maintains the camera and animates it onto nodes."""

    def __init__(
        self,
        surface: RenderSurface,
        scheduler: TickScheduler,
        config: ViewportConfig | None = None,
    ) -> None:
        self.surface = surface
        self.scheduler = scheduler
        self.config = config or ViewportConfig()
        self._generation = 0
        self.current: CameraAnimation | None = None

    @property
    def camera(self) -> Camera:
        return self.surface.get_camera()

    def set_camera(self, camera: Camera) -> None:
        self.surface.set_camera(camera.x, camera.y, camera.scale)

    def target_scale(self, current: float) -> float:
        """Snap unreadable or uncomfortable zoom levels, otherwise keep the scale."""
        cfg = self.config
        if current < cfg.min_legible_scale:
            return cfg.legible_scale
        if current > cfg.max_comfortable_scale:
            return cfg.comfortable_scale
        return current

    def target_for(self, x: float, y: float) -> Camera:
        """Camera that puts model point (x, y) at the canvas pixel centre."""
        width, height = self.surface.canvas_size
        scale = self.target_scale(self.camera.scale)
        return Camera(x=width / 2 - x * scale, y=height / 2 - y * scale, scale=scale)

    def center_on_node(self, node_id: str) -> CameraAnimation | None:
        node = self.surface.get_node(node_id)
        if node is None:
            logger.warning("viewport.node_missing", node_id=node_id)
            return None
        return self.animate_to(self.target_for(node.x, node.y))

    def center_selected(self) -> CenterResult:
        selected = self.surface.get_selected_nodes()
        if not selected:
            return CenterResult(CenterOutcome.NO_SELECTION)
        node_id = selected[0]
        if self.center_on_node(node_id) is None:
            return CenterResult(CenterOutcome.NOT_FOUND, node_id=node_id)
        return CenterResult(CenterOutcome.CENTERED, node_id=node_id, multiple_selected=len(selected) > 1)

    def fit_content(self) -> bool:
        """Centre on all content at scale 1 without animating."""
        bounds = self.surface.get_content_bounds()
        if bounds is None:
            return False
        center_x, center_y = bounds.center
        width, height = self.surface.canvas_size
        self.surface.set_camera(width / 2 - center_x, height / 2 - center_y, 1.0)
        return True

    def animate_to(self, target: Camera) -> CameraAnimation:
        """Start a tick loop toward ``target``; the newest loop wins."""
        if self.current is not None and not self.current.done:
            self.current.superseded = True
        self._generation += 1
        animation = CameraAnimation(
            start=self.camera,
            target=target,
            started_at=self.scheduler.now(),
            duration_ms=self.config.center_duration_ms,
            generation=self._generation,
        )
        self.current = animation
        if animation.duration_ms <= 0:
            self._finish(animation)
        else:
            self.scheduler.call_later(self.config.frame_interval_ms, lambda: self._tick(animation))
        return animation

    def _tick(self, animation: CameraAnimation) -> None:
        if animation.generation != self._generation:
            return
        elapsed = self.scheduler.now() - animation.started_at
        animation.progress = min(elapsed / animation.duration_ms, 1.0)
        if animation.progress >= 1.0:
            self._finish(animation)
            return
        eased = ease_in_out_cubic(animation.progress)
        start, target = animation.start, animation.target
        self.surface.set_camera(
            lerp(start.x, target.x, eased),
            lerp(start.y, target.y, eased),
            lerp(start.scale, target.scale, eased),
        )
        self.surface.request_redraw()
        self.scheduler.call_later(self.config.frame_interval_ms, lambda: self._tick(animation))

    def _finish(self, animation: CameraAnimation) -> None:
        animation.progress = 1.0
        animation.done = True
        target = animation.target
        self.surface.set_camera(target.x, target.y, target.scale)
        self.surface.request_redraw()
        logger.debug("viewport.centered", x=target.x, y=target.y, scale=target.scale)
