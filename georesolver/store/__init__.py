"""
Reference stores.

:class:`~georesolver.store.postgis.PostGISStore` is imported from its own
module; importing it creates the database engine.
"""

from georesolver.store.base import (
    BOUNDARY_INTERSECTION,
    CENTROID_CONTAINMENT,
    CodeConflictError,
    ReferenceStore,
)
from georesolver.store.memory import MemoryStore

__all__ = [
    "ReferenceStore",
    "MemoryStore",
    "CodeConflictError",
    "CENTROID_CONTAINMENT",
    "BOUNDARY_INTERSECTION",
]
