"""Relationship graph: canonical store, render surface contract and derivation.

Provides:
- RelationshipStore: person records plus hidden/line-only pair sets
- RenderSurface: the visual projection the engine draws onto
- ConnectionDeriver: full recompute of drawn edges from the store
- CleanupPass: self-reference repair run after every load
"""
from .cleanup import CleanupPass
from .deriver import ConnectionDeriver, DerivationStats
from .store import ConnectResult, RelationshipStore, StoreState, validate_person_fields
from .surface import Bounds, CanvasNode, InMemoryRenderSurface, RenderSurface

__all__ = [
    # Store
    "RelationshipStore",
    "StoreState",
    "ConnectResult",
    "validate_person_fields",
    # Surface
    "RenderSurface",
    "InMemoryRenderSurface",
    "CanvasNode",
    "Bounds",
    # Derivation
    "ConnectionDeriver",
    "DerivationStats",
    "CleanupPass",
]
