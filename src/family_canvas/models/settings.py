"""Cosmetic state: display settings, preferences, node style and camera."""
from __future__ import annotations

from enum import Enum

from pydantic import Field, field_validator

from .base import CanvasModel, coerce_number

DEFAULT_NODE_RADIUS = 50.0
DEFAULT_NODE_COLOR = "#3498db"


class NodeStyle(str, Enum):
    CIRCLE = "circle"
    RECTANGLE = "rectangle"


class LineStyle(str, Enum):
    SOLID = "solid"
    DASHED = "dashed"
    DOTTED = "dotted"
    DASH_DOT = "dash-dot"


class DisplaySettings(CanvasModel):
    """Node and line style knobs persisted under ``settings``."""

    node_radius: float = Field(default=DEFAULT_NODE_RADIUS, gt=0)
    default_color: str = DEFAULT_NODE_COLOR
    font_family: str = "Inter"
    font_size: float = Field(default=11, gt=0)
    name_color: str = "#ffffff"
    date_color: str = "#f0f0f0"

    # Node outline
    show_node_outline: bool = True
    outline_color: str = "#2c3e50"
    outline_thickness: float = Field(default=2, ge=0)

    # Parent/child lines
    family_line_style: LineStyle = LineStyle.SOLID
    family_line_thickness: float = Field(default=2, ge=0)
    family_line_color: str = "#7f8c8d"

    # Spouse lines
    spouse_line_style: LineStyle = LineStyle.DASHED
    spouse_line_thickness: float = Field(default=2, ge=0)
    spouse_line_color: str = "#e74c3c"

    # Purely visual lines
    line_only_style: LineStyle = LineStyle.DASH_DOT
    line_only_thickness: float = Field(default=2, ge=0)
    line_only_color: str = "#9b59b6"


class DisplayPreferences(CanvasModel):
    """Which optional person fields are drawn under a node."""

    show_maiden_name: bool = True
    show_date_of_birth: bool = True
    show_father_name: bool = True


class Camera(CanvasModel):
    x: float = 0.0
    y: float = 0.0
    scale: float = 1.0

    @field_validator("x", "y", mode="before")
    @classmethod
    def _coerce_offset(cls, value):
        return coerce_number(value)

    @field_validator("scale", mode="before")
    @classmethod
    def _coerce_scale(cls, value):
        scale = coerce_number(value, default=1.0)
        return scale if scale > 0 else 1.0
