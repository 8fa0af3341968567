"""Family Canvas - relationship graph engine for an interactive family tree canvas.

Keeps the canonical person/relationship model, derives the drawable
connection set from it, records undo/redo history and persists the whole
state in a versioned, corruption-tolerant envelope.
"""

__version__ = "2.6.0"

# Lazy imports to avoid circular dependencies
def __getattr__(name: str):
    if name == "AppContext":
        from family_canvas.context import AppContext
        return AppContext
    if name == "graph":
        from family_canvas import graph
        return graph
    if name == "models":
        from family_canvas import models
        return models
    if name == "persistence":
        from family_canvas import persistence
        return persistence
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
