from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Protocol, Tuple

import numpy as np

from dualtree.core.metrics import Metric
from dualtree.exceptions import InvalidConfiguration

if TYPE_CHECKING:  # pragma: no cover
    from dualtree.core.tree import SpatialTree


class NodeBounds(Protocol):
    """Geometric primitives a tree kind must supply to the query engine and MST solver.

    Every method answers a question about node ``i_node`` of ``tree`` (or a
    pair of nodes drawn from two trees of the same kind). ``*_rdist`` variants
    return reduced distances, the rest return true distances. Lower bounds must
    never exceed, and upper bounds never undershoot, the distance to any point
    stored under the node.
    """

    kind: str

    def valid_metric(self, metric: Metric) -> bool:
        ...

    def allocate(self, n_nodes: int, n_features: int) -> np.ndarray:
        ...

    def init_node(self, tree: "SpatialTree", i_node: int, idx_start: int, idx_end: int) -> float:
        ...

    def min_rdist(self, tree: "SpatialTree", i_node: int, point: np.ndarray) -> float:
        ...

    def min_dist(self, tree: "SpatialTree", i_node: int, point: np.ndarray) -> float:
        ...

    def max_rdist(self, tree: "SpatialTree", i_node: int, point: np.ndarray) -> float:
        ...

    def max_dist(self, tree: "SpatialTree", i_node: int, point: np.ndarray) -> float:
        ...

    def min_max_dist(self, tree: "SpatialTree", i_node: int, point: np.ndarray) -> Tuple[float, float]:
        ...

    def min_rdist_dual(self, tree1: "SpatialTree", i_node1: int, tree2: "SpatialTree", i_node2: int) -> float:
        ...

    def min_dist_dual(self, tree1: "SpatialTree", i_node1: int, tree2: "SpatialTree", i_node2: int) -> float:
        ...

    def max_rdist_dual(self, tree1: "SpatialTree", i_node1: int, tree2: "SpatialTree", i_node2: int) -> float:
        ...

    def max_dist_dual(self, tree1: "SpatialTree", i_node1: int, tree2: "SpatialTree", i_node2: int) -> float:
        ...


KD_TREE = "kd"
BALL_TREE = "ball"
AUTO = "auto"
TREE_KINDS = (KD_TREE, BALL_TREE)


def get_bounds(kind: str) -> NodeBounds:
    """Return the bound implementation registered for ``kind``."""

    from dualtree.core.ball_bounds import BallBounds
    from dualtree.core.kd_bounds import KDBounds

    implementations: Dict[str, NodeBounds] = {
        KD_TREE: KDBounds(),
        BALL_TREE: BallBounds(),
    }
    key = kind.strip().lower()
    if key not in implementations:
        raise InvalidConfiguration(f"Unknown tree kind '{kind}'. Expected one of {TREE_KINDS}.")
    return implementations[key]


__all__ = [
    "AUTO",
    "BALL_TREE",
    "KD_TREE",
    "NodeBounds",
    "TREE_KINDS",
    "get_bounds",
]
