from __future__ import annotations

import math
from typing import TYPE_CHECKING, Tuple

import numpy as np

from dualtree.core.metrics import Metric

if TYPE_CHECKING:  # pragma: no cover
    from dualtree.core.tree import SpatialTree


def _reduce(extent: np.ndarray, p: float) -> float:
    # per-dimension extents -> reduced Minkowski distance
    if math.isinf(p):
        return float(extent.max()) if extent.size else 0.0
    if p == 1.0:
        return float(extent.sum())
    if p == 2.0:
        return float(np.dot(extent, extent))
    return float((extent ** p).sum())


def _gap(lower_delta: np.ndarray, upper_delta: np.ndarray) -> np.ndarray:
    # at most one of the two deltas is positive along each axis
    return 0.5 * ((lower_delta + np.abs(lower_delta)) + (upper_delta + np.abs(upper_delta)))


class KDBounds:
    """Axis-aligned bounding boxes; ``node_bounds[0]`` is the lower corner, ``[1]`` the upper."""

    kind = "kd"

    def valid_metric(self, metric: Metric) -> bool:
        return metric.kd_compatible

    def allocate(self, n_nodes: int, n_features: int) -> np.ndarray:
        return np.zeros((2, n_nodes, n_features), dtype=np.float64)

    def init_node(self, tree: "SpatialTree", i_node: int, idx_start: int, idx_end: int) -> float:
        points = tree.data[tree.idx_array[idx_start:idx_end]]
        lower = points.min(axis=0)
        upper = points.max(axis=0)
        tree.node_bounds[0, i_node] = lower
        tree.node_bounds[1, i_node] = upper
        half_extent = 0.5 * np.abs(upper - lower)
        return float(tree.metric.rdist_to_dist(_reduce(half_extent, tree.metric.p)))

    def min_rdist(self, tree: "SpatialTree", i_node: int, point: np.ndarray) -> float:
        lower = tree.node_bounds[0, i_node]
        upper = tree.node_bounds[1, i_node]
        return _reduce(_gap(lower - point, point - upper), tree.metric.p)

    def min_dist(self, tree: "SpatialTree", i_node: int, point: np.ndarray) -> float:
        return float(tree.metric.rdist_to_dist(self.min_rdist(tree, i_node, point)))

    def max_rdist(self, tree: "SpatialTree", i_node: int, point: np.ndarray) -> float:
        lower = tree.node_bounds[0, i_node]
        upper = tree.node_bounds[1, i_node]
        far = np.maximum(np.abs(point - lower), np.abs(point - upper))
        return _reduce(far, tree.metric.p)

    def max_dist(self, tree: "SpatialTree", i_node: int, point: np.ndarray) -> float:
        return float(tree.metric.rdist_to_dist(self.max_rdist(tree, i_node, point)))

    def min_max_dist(self, tree: "SpatialTree", i_node: int, point: np.ndarray) -> Tuple[float, float]:
        return self.min_dist(tree, i_node, point), self.max_dist(tree, i_node, point)

    def min_rdist_dual(self, tree1: "SpatialTree", i_node1: int, tree2: "SpatialTree", i_node2: int) -> float:
        lower1 = tree1.node_bounds[0, i_node1]
        upper1 = tree1.node_bounds[1, i_node1]
        lower2 = tree2.node_bounds[0, i_node2]
        upper2 = tree2.node_bounds[1, i_node2]
        return _reduce(_gap(lower2 - upper1, lower1 - upper2), tree1.metric.p)

    def min_dist_dual(self, tree1: "SpatialTree", i_node1: int, tree2: "SpatialTree", i_node2: int) -> float:
        return float(tree1.metric.rdist_to_dist(self.min_rdist_dual(tree1, i_node1, tree2, i_node2)))

    def max_rdist_dual(self, tree1: "SpatialTree", i_node1: int, tree2: "SpatialTree", i_node2: int) -> float:
        lower1 = tree1.node_bounds[0, i_node1]
        upper1 = tree1.node_bounds[1, i_node1]
        lower2 = tree2.node_bounds[0, i_node2]
        upper2 = tree2.node_bounds[1, i_node2]
        far = np.maximum(np.abs(upper1 - lower2), np.abs(upper2 - lower1))
        return _reduce(far, tree1.metric.p)

    def max_dist_dual(self, tree1: "SpatialTree", i_node1: int, tree2: "SpatialTree", i_node2: int) -> float:
        return float(tree1.metric.rdist_to_dist(self.max_rdist_dual(tree1, i_node1, tree2, i_node2)))


__all__ = ["KDBounds"]
