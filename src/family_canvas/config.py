"""Engine configuration.

Every knob has a default matching the canvas application and can be
overridden through the environment:

    FAMILY_CANVAS_STORAGE_KEY: Primary storage key (default "familyTreeCanvas_state")
    FAMILY_CANVAS_STORAGE_DIR: Directory used by FileStorage (default "./data/canvas")
    FAMILY_CANVAS_CACHE_VERSION: Version marker written into envelopes (default "2.6")
    FAMILY_CANVAS_MAX_STATE_BYTES: Size above which the compressed format is used (default 5 MB)
    FAMILY_CANVAS_BACKUP_COUNT: Timestamped backups retained (default 3)
    FAMILY_CANVAS_AUTOSAVE_MS: Auto-save interval (default 30000)
    FAMILY_CANVAS_SAVE_DEBOUNCE_MS: Delay between a history push and its save (default 100)
    FAMILY_CANVAS_MAX_UNDO: Undo stack bound (default 50)
    FAMILY_CANVAS_CENTER_DURATION_MS: Camera centering animation length (default 1000)
    FAMILY_CANVAS_FRAME_MS: Animation tick interval (default 16)
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field


def _f(name: str, default: float) -> float:
    """Parse float from environment variable with fallback."""
    try:
        return float(os.getenv(name, default))
    except Exception:
        return default


def _i(name: str, default: int) -> int:
    """Parse int from environment variable with fallback."""
    try:
        return int(os.getenv(name, default))
    except Exception:
        return default


def _s(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value else default


@dataclass(frozen=True)
class PersistenceConfig:
    """Storage keys, size limits and save cadence."""

    storage_key: str = _s("FAMILY_CANVAS_STORAGE_KEY", "familyTreeCanvas_state")
    storage_dir: str = _s("FAMILY_CANVAS_STORAGE_DIR", "./data/canvas")
    cache_version: str = _s("FAMILY_CANVAS_CACHE_VERSION", "2.6")

    max_state_bytes: int = _i("FAMILY_CANVAS_MAX_STATE_BYTES", 5 * 1024 * 1024)
    backup_count: int = _i("FAMILY_CANVAS_BACKUP_COUNT", 3)

    autosave_interval_ms: int = _i("FAMILY_CANVAS_AUTOSAVE_MS", 30_000)
    save_debounce_ms: int = _i("FAMILY_CANVAS_SAVE_DEBOUNCE_MS", 100)

    @property
    def backup_prefix(self) -> str:
        return f"{self.storage_key}_backup_"

    @property
    def manifest_key(self) -> str:
        return f"{self.storage_key}_manifest"


@dataclass(frozen=True)
class HistoryConfig:
    max_undo: int = _i("FAMILY_CANVAS_MAX_UNDO", 50)


@dataclass(frozen=True)
class ViewportConfig:
    """Camera centering behaviour."""

    center_duration_ms: float = _f("FAMILY_CANVAS_CENTER_DURATION_MS", 1000.0)
    frame_interval_ms: float = _f("FAMILY_CANVAS_FRAME_MS", 16.0)

    # Scale clamping applied when centering on a node
    min_legible_scale: float = 0.8
    legible_scale: float = 1.0
    max_comfortable_scale: float = 3.0
    comfortable_scale: float = 2.0

    # Placement of freshly created people
    first_node_x: float = 400.0
    first_node_y: float = 300.0
    row_spacing: float = 150.0


@dataclass(frozen=True)
class CanvasConfig:
    """Top-level configuration bundle handed to AppContext."""

    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    viewport: ViewportConfig = field(default_factory=ViewportConfig)


CONFIG = CanvasConfig()
