from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Tuple

import numpy as np


@dataclass
class TraversalStats:
    """Per-call traversal counters."""

    n_trims: int = 0
    n_leaves: int = 0
    n_splits: int = 0

    def merge(self, other: "TraversalStats") -> None:
        self.n_trims += other.n_trims
        self.n_leaves += other.n_leaves
        self.n_splits += other.n_splits

    def as_metadata(self) -> dict:
        return {"trims": self.n_trims, "leaves": self.n_leaves, "splits": self.n_splits}


@dataclass(frozen=True)
class Neighborhood:
    """Query result holding per-row distances and indices into the tree's point matrix.

    For k-NN queries both arrays have shape ``(n_queries, k)``; for radius
    queries they are object arrays whose entries are 1-D arrays of varying
    length. ``distances`` is ``None`` when distances were not requested.
    """

    indices: np.ndarray
    distances: np.ndarray | None = None
    stats: TraversalStats = field(default_factory=TraversalStats)

    @property
    def num_queries(self) -> int:
        return len(self.indices)

    def __iter__(self) -> Iterator[np.ndarray]:
        # allows ``distances, indices = tree.query(...)``
        yield self.distances
        yield self.indices

    def as_tuple(self) -> Tuple[np.ndarray | None, np.ndarray]:
        return self.distances, self.indices


__all__ = ["Neighborhood", "TraversalStats"]
