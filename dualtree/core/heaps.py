from __future__ import annotations

import heapq
import itertools
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from dualtree.core import _kernels_numba


class NeighborsHeap:
    """Fixed-capacity max-heaps of ``(reduced distance, index)``, one per query row.

    Row ``i`` keeps the ``k`` best candidates seen so far with the worst one at
    position 0, so :meth:`largest` is the pruning threshold for that query.
    """

    def __init__(self, n_pts: int, n_nbrs: int, *, use_numba: bool = False) -> None:
        self.distances = np.full((n_pts, n_nbrs), np.inf, dtype=np.float64)
        self.indices = np.zeros((n_pts, n_nbrs), dtype=np.int64)
        self.use_numba = use_numba

    @property
    def n_nbrs(self) -> int:
        return self.distances.shape[1]

    def largest(self, row: int) -> float:
        return float(self.distances[row, 0])

    def push(self, row: int, val: float, i_val: int) -> None:
        dist_row = self.distances[row]
        ind_row = self.indices[row]
        if self.use_numba:
            _kernels_numba.heap_push(dist_row, ind_row, val, i_val)
            return
        if val >= dist_row[0]:
            return
        size = dist_row.shape[0]
        i = 0
        while True:
            ic1 = 2 * i + 1
            ic2 = ic1 + 1
            if ic1 >= size:
                break
            if ic2 >= size:
                if dist_row[ic1] > val:
                    i_swap = ic1
                else:
                    break
            elif dist_row[ic1] >= dist_row[ic2]:
                if val < dist_row[ic1]:
                    i_swap = ic1
                else:
                    break
            elif val < dist_row[ic2]:
                i_swap = ic2
            else:
                break
            dist_row[i] = dist_row[i_swap]
            ind_row[i] = ind_row[i_swap]
            i = i_swap
        dist_row[i] = val
        ind_row[i] = i_val

    def get_arrays(self, sort: bool = True) -> Tuple[np.ndarray, np.ndarray]:
        if sort:
            sort_rows(self.distances, self.indices, use_numba=self.use_numba)
        return self.distances, self.indices


def sort_rows(distances: np.ndarray, indices: np.ndarray, *, use_numba: bool = False) -> None:
    """Sort every row of ``distances`` ascending in place, permuting ``indices`` alongside."""

    if distances.size == 0:
        return
    if use_numba:
        _kernels_numba.simultaneous_sort(distances, indices)
        return
    order = np.argsort(distances, axis=1, kind="stable")
    distances[:] = np.take_along_axis(distances, order, axis=1)
    indices[:] = np.take_along_axis(indices, order, axis=1)


@dataclass(frozen=True)
class NodeHeapItem:
    val: float
    i1: int
    i2: int = 0


class NodeHeap:
    """Min-heap of node (or node-pair) records keyed by a lower bound."""

    def __init__(self) -> None:
        self._heap: List[Tuple[float, int, int, int]] = []
        self._counter = itertools.count()

    def __len__(self) -> int:
        return len(self._heap)

    def push(self, item: NodeHeapItem) -> None:
        heapq.heappush(self._heap, (item.val, next(self._counter), item.i1, item.i2))

    def peek(self) -> NodeHeapItem:
        val, _, i1, i2 = self._heap[0]
        return NodeHeapItem(val, i1, i2)

    def pop(self) -> NodeHeapItem:
        val, _, i1, i2 = heapq.heappop(self._heap)
        return NodeHeapItem(val, i1, i2)

    def clear(self) -> None:
        self._heap.clear()


__all__ = ["NeighborsHeap", "NodeHeap", "NodeHeapItem", "sort_rows"]
