from __future__ import annotations

from typing import TYPE_CHECKING, Tuple

import numpy as np

from dualtree.core.metrics import Metric

if TYPE_CHECKING:  # pragma: no cover
    from dualtree.core.tree import SpatialTree


class BallBounds:
    """Centroid plus covering radius; ``node_bounds[0]`` holds the centroids.

    Only the triangle inequality is used, so any registered metric is valid.
    """

    kind = "ball"

    def valid_metric(self, metric: Metric) -> bool:
        return True

    def allocate(self, n_nodes: int, n_features: int) -> np.ndarray:
        return np.zeros((1, n_nodes, n_features), dtype=np.float64)

    def init_node(self, tree: "SpatialTree", i_node: int, idx_start: int, idx_end: int) -> float:
        points = tree.data[tree.idx_array[idx_start:idx_end]]
        centroid = points.mean(axis=0)
        tree.node_bounds[0, i_node] = centroid
        return float(tree.metric.dist_rows(centroid, points).max())

    def _center_dist(self, tree: "SpatialTree", i_node: int, point: np.ndarray) -> float:
        return tree.metric.dist(point, tree.node_bounds[0, i_node])

    def min_dist(self, tree: "SpatialTree", i_node: int, point: np.ndarray) -> float:
        gap = self._center_dist(tree, i_node, point) - tree.node_data.radius[i_node]
        return max(0.0, gap)

    def min_rdist(self, tree: "SpatialTree", i_node: int, point: np.ndarray) -> float:
        return float(tree.metric.dist_to_rdist(self.min_dist(tree, i_node, point)))

    def max_dist(self, tree: "SpatialTree", i_node: int, point: np.ndarray) -> float:
        return self._center_dist(tree, i_node, point) + float(tree.node_data.radius[i_node])

    def max_rdist(self, tree: "SpatialTree", i_node: int, point: np.ndarray) -> float:
        return float(tree.metric.dist_to_rdist(self.max_dist(tree, i_node, point)))

    def min_max_dist(self, tree: "SpatialTree", i_node: int, point: np.ndarray) -> Tuple[float, float]:
        center = self._center_dist(tree, i_node, point)
        radius = float(tree.node_data.radius[i_node])
        return max(0.0, center - radius), center + radius

    def _centers_dist(self, tree1: "SpatialTree", i_node1: int, tree2: "SpatialTree", i_node2: int) -> float:
        return tree1.metric.dist(tree1.node_bounds[0, i_node1], tree2.node_bounds[0, i_node2])

    def min_dist_dual(self, tree1: "SpatialTree", i_node1: int, tree2: "SpatialTree", i_node2: int) -> float:
        gap = (
            self._centers_dist(tree1, i_node1, tree2, i_node2)
            - tree1.node_data.radius[i_node1]
            - tree2.node_data.radius[i_node2]
        )
        return max(0.0, float(gap))

    def min_rdist_dual(self, tree1: "SpatialTree", i_node1: int, tree2: "SpatialTree", i_node2: int) -> float:
        return float(tree1.metric.dist_to_rdist(self.min_dist_dual(tree1, i_node1, tree2, i_node2)))

    def max_dist_dual(self, tree1: "SpatialTree", i_node1: int, tree2: "SpatialTree", i_node2: int) -> float:
        return float(
            self._centers_dist(tree1, i_node1, tree2, i_node2)
            + tree1.node_data.radius[i_node1]
            + tree2.node_data.radius[i_node2]
        )

    def max_rdist_dual(self, tree1: "SpatialTree", i_node1: int, tree2: "SpatialTree", i_node2: int) -> float:
        return float(tree1.metric.dist_to_rdist(self.max_dist_dual(tree1, i_node1, tree2, i_node2)))


__all__ = ["BallBounds"]
