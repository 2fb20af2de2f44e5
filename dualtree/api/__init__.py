"""Public ergonomic façade for dualtree."""

from .neighbors import NeighborIndex
from .runtime import Runtime

__all__ = [
    "NeighborIndex",
    "Runtime",
]
