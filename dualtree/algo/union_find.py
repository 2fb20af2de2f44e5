from __future__ import annotations

import numpy as np


class UnionFind:
    """Disjoint sets over ``[0, size)`` with union by rank and path compression.

    ``is_component[i]`` stays ``True`` exactly while ``i`` is the root of its set.
    """

    def __init__(self, size: int) -> None:
        self.parent = np.arange(size, dtype=np.int64)
        self.rank = np.zeros(size, dtype=np.int64)
        self.is_component = np.ones(size, dtype=bool)

    def __len__(self) -> int:
        return self.parent.shape[0]

    def find(self, x: int) -> int:
        parent = self.parent
        root = int(x)
        while parent[root] != root:
            root = int(parent[root])
        # compress the walked path onto the root
        node = int(x)
        while parent[node] != root:
            parent[node], node = root, int(parent[node])
        return root

    def union(self, x: int, y: int) -> bool:
        """Merge the sets holding ``x`` and ``y``; return ``False`` when already joined."""

        root_x = self.find(x)
        root_y = self.find(y)
        if root_x == root_y:
            return False
        if self.rank[root_x] < self.rank[root_y]:
            root_x, root_y = root_y, root_x
        self.parent[root_y] = root_x
        self.is_component[root_y] = False
        if self.rank[root_x] == self.rank[root_y]:
            self.rank[root_x] += 1
        return True

    def find_all(self) -> np.ndarray:
        return np.fromiter((self.find(i) for i in range(len(self))), dtype=np.int64, count=len(self))

    def components(self) -> np.ndarray:
        return np.flatnonzero(self.is_component)

    @property
    def num_components(self) -> int:
        return int(np.count_nonzero(self.is_component))


__all__ = ["UnionFind"]
