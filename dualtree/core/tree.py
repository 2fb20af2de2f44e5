from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Tuple

import numpy as np

from dualtree.config import RuntimeConfig, resolve_config
from dualtree.core.bounds import AUTO, BALL_TREE, KD_TREE, NodeBounds, get_bounds
from dualtree.core.metrics import Metric, resolve_metric
from dualtree.core.partition import find_node_split_dim, partition_node_indices
from dualtree.diagnostics import log_operation
from dualtree.exceptions import InternalError, InvalidArgument, InvalidConfiguration
from dualtree.logging import get_logger

LOGGER = get_logger("core.tree")


@dataclass(frozen=True)
class NodeData:
    """Flat per-node arrays addressed by heap position (children of ``i`` are ``2i+1`` and ``2i+2``)."""

    idx_start: np.ndarray
    idx_end: np.ndarray
    is_leaf: np.ndarray
    radius: np.ndarray

    @classmethod
    def allocate(cls, n_nodes: int) -> "NodeData":
        return cls(
            idx_start=np.zeros(n_nodes, dtype=np.int64),
            idx_end=np.zeros(n_nodes, dtype=np.int64),
            is_leaf=np.zeros(n_nodes, dtype=bool),
            radius=np.zeros(n_nodes, dtype=np.float64),
        )

    def freeze(self) -> None:
        for array in (self.idx_start, self.idx_end, self.is_leaf, self.radius):
            array.setflags(write=False)


def tree_layout(n_samples: int, leaf_size: int) -> Tuple[int, int]:
    """Return ``(n_levels, n_nodes)`` for a complete tree over ``n_samples`` points.

    ``n_levels = floor(log2(max(1, (n_samples - 1) // leaf_size))) + 1``, which
    caps bottom-level leaves at ``2 * leaf_size`` points.
    """

    n_levels = max(1, (n_samples - 1) // leaf_size).bit_length()
    return n_levels, 2 ** n_levels - 1


def _as_point_matrix(points: Any) -> np.ndarray:
    try:
        array = np.asarray(points, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise InvalidConfiguration("Points must be convertible to a float matrix.") from exc
    if array.ndim != 2:
        raise InvalidConfiguration(f"Points must be a 2-D matrix, got {array.ndim} dimension(s).")
    if array.shape[0] == 0:
        raise InvalidConfiguration("Cannot build a tree over zero points.")
    if array.shape[1] == 0:
        raise InvalidConfiguration("Points must have at least one feature.")
    if not np.isfinite(array).all():
        raise InvalidConfiguration("Points must be finite.")
    return array


def _validate_leaf_size(leaf_size: Any) -> int:
    if isinstance(leaf_size, bool) or not isinstance(leaf_size, (int, np.integer)):
        raise InvalidConfiguration(f"leaf_size must be an integer, got {leaf_size!r}.")
    if leaf_size < 1:
        raise InvalidConfiguration(f"leaf_size must be at least 1, got {leaf_size}.")
    return int(leaf_size)


class SpatialTree:
    """Immutable KD-tree or Ball-tree laid out as a complete binary heap.

    The point matrix is copied and frozen. ``idx_array`` holds a permutation
    of the row indices such that every node owns the contiguous slice
    ``idx_array[idx_start:idx_end]``. All query methods are read-only and may
    be called concurrently.
    """

    def __init__(
        self,
        data: Any,
        *,
        leaf_size: int | None = None,
        metric: str | Metric | None = None,
        kind: str = KD_TREE,
        config: RuntimeConfig | None = None,
    ) -> None:
        runtime = resolve_config(config)
        self.config = runtime
        self.bounds: NodeBounds = get_bounds(kind)
        self.kind = self.bounds.kind
        self.metric = resolve_metric(metric, runtime)
        if not self.bounds.valid_metric(self.metric):
            raise InvalidConfiguration(
                f"Metric '{self.metric.name}' is not valid for the {self.kind} tree."
            )
        array = _as_point_matrix(data)
        self.metric.check_features(array.shape[1])
        self.leaf_size = _validate_leaf_size(runtime.leaf_size if leaf_size is None else leaf_size)

        self.data = np.array(array, dtype=np.float64, copy=True)
        self.data.setflags(write=False)
        self.n_samples, self.n_features = self.data.shape
        self.n_levels, self.n_nodes = tree_layout(self.n_samples, self.leaf_size)
        self.idx_array = np.arange(self.n_samples, dtype=np.int64)
        self.node_data = NodeData.allocate(self.n_nodes)
        self.node_bounds = self.bounds.allocate(self.n_nodes, self.n_features)

        with log_operation(LOGGER, "tree_build", config=runtime) as op_log:
            self._recursive_build(0, 0, self.n_samples)
            op_log.add_metadata(
                kind=self.kind,
                metric=self.metric.name,
                points=self.n_samples,
                features=self.n_features,
                leaf_size=self.leaf_size,
                levels=self.n_levels,
                nodes=self.n_nodes,
            )

        self.idx_array.setflags(write=False)
        self.node_data.freeze()
        self.node_bounds.setflags(write=False)

    def _recursive_build(self, i_node: int, idx_start: int, idx_end: int) -> None:
        n_points = idx_end - idx_start
        n_mid = n_points // 2
        self.node_data.idx_start[i_node] = idx_start
        self.node_data.idx_end[i_node] = idx_end
        self.node_data.radius[i_node] = self.bounds.init_node(self, i_node, idx_start, idx_end)

        if 2 * i_node + 1 >= self.n_nodes:
            if n_points > 2 * self.leaf_size:
                raise InternalError(
                    f"Node {i_node} holds {n_points} points, more than the "
                    f"{2 * self.leaf_size} a bottom-level leaf can address."
                )
            self.node_data.is_leaf[i_node] = True
            return
        if n_points <= self.leaf_size or n_points < 2:
            self.node_data.is_leaf[i_node] = True
            return

        self.node_data.is_leaf[i_node] = False
        node_indices = self.idx_array[idx_start:idx_end]
        use_numba = self.config.enable_numba
        split_dim = find_node_split_dim(self.data, node_indices, use_numba=use_numba)
        partition_node_indices(self.data, node_indices, split_dim, n_mid, use_numba=use_numba)
        self._recursive_build(2 * i_node + 1, idx_start, idx_start + n_mid)
        self._recursive_build(2 * i_node + 2, idx_start + n_mid, idx_end)

    @property
    def use_numba_kernels(self) -> bool:
        return self.config.enable_numba and self.metric.minkowski

    def node_indices(self, i_node: int) -> np.ndarray:
        start = self.node_data.idx_start[i_node]
        end = self.node_data.idx_end[i_node]
        return self.idx_array[start:end]

    def node_size(self, i_node: int) -> int:
        return int(self.node_data.idx_end[i_node] - self.node_data.idx_start[i_node])

    def get_arrays(self) -> Tuple[np.ndarray, np.ndarray, NodeData, np.ndarray]:
        return self.data, self.idx_array, self.node_data, self.node_bounds

    def check_queries(self, points: Any) -> np.ndarray:
        """Coerce query points to a 2-D float matrix matching the tree's feature count."""

        try:
            array = np.asarray(points, dtype=np.float64)
        except (TypeError, ValueError) as exc:
            raise InvalidArgument("Query points must be convertible to a float matrix.") from exc
        if array.ndim == 1:
            array = array[None, :]
        if array.ndim != 2:
            raise InvalidArgument(f"Query points must be 2-D, got {array.ndim} dimension(s).")
        if array.shape[1] != self.n_features:
            raise InvalidArgument(
                f"Query dimension {array.shape[1]} does not match tree dimension {self.n_features}."
            )
        if not np.isfinite(array).all():
            raise InvalidArgument("Query points must be finite.")
        return array

    def query(
        self,
        points: Any,
        k: int = 1,
        *,
        dual_tree: bool = False,
        breadth_first: bool = False,
        sort_results: bool = True,
        return_distance: bool = True,
        config: RuntimeConfig | None = None,
    ):
        from dualtree.queries.knn import knn

        return knn(
            self,
            points,
            k=k,
            dual_tree=dual_tree,
            breadth_first=breadth_first,
            sort_results=sort_results,
            return_distance=return_distance,
            config=config,
        )

    def query_radius(
        self,
        points: Any,
        r: Any,
        *,
        return_distance: bool = False,
        count_only: bool = False,
        sort_results: bool = False,
        config: RuntimeConfig | None = None,
    ):
        from dualtree.queries.radius import query_radius

        return query_radius(
            self,
            points,
            r,
            return_distance=return_distance,
            count_only=count_only,
            sort_results=sort_results,
            config=config,
        )

    def two_point_correlation(
        self,
        points: Any,
        r: Any,
        *,
        dual_tree: bool = False,
        config: RuntimeConfig | None = None,
    ) -> np.ndarray:
        from dualtree.queries.density import two_point_correlation

        return two_point_correlation(self, points, r, dual_tree=dual_tree, config=config)

    def kernel_density(
        self,
        points: Any,
        h: float,
        *,
        kernel: str = "gaussian",
        atol: float = 0.0,
        rtol: float = 1e-8,
        return_log: bool = False,
        config: RuntimeConfig | None = None,
    ) -> np.ndarray:
        from dualtree.queries.density import kernel_density

        return kernel_density(
            self,
            points,
            h,
            kernel=kernel,
            atol=atol,
            rtol=rtol,
            return_log=return_log,
            config=config,
        )

    def __repr__(self) -> str:
        return (
            f"SpatialTree(kind={self.kind!r}, metric={self.metric.name!r}, "
            f"n_samples={self.n_samples}, n_features={self.n_features}, "
            f"leaf_size={self.leaf_size}, n_nodes={self.n_nodes})"
        )


def select_tree_kind(
    n_samples: int,
    n_features: int,
    metric: Metric,
    kind: str = AUTO,
    config: RuntimeConfig | None = None,
) -> str:
    """Resolve ``kind="auto"`` to a concrete tree kind.

    Metrics without axis-aligned bounds always get a Ball-tree; otherwise the
    Ball-tree is chosen once the matrix holds more than
    ``config.auto_ball_threshold`` elements.
    """

    key = kind.strip().lower()
    if key != AUTO:
        return key
    runtime = resolve_config(config)
    if not metric.kd_compatible:
        return BALL_TREE
    if n_samples * n_features > runtime.auto_ball_threshold:
        return BALL_TREE
    return KD_TREE


def build_tree(
    points: Any,
    *,
    leaf_size: int | None = None,
    metric: str | Metric | None = None,
    kind: str = AUTO,
    config: RuntimeConfig | None = None,
) -> SpatialTree:
    """Build a :class:`SpatialTree` over ``points``."""

    runtime = resolve_config(config)
    array = _as_point_matrix(points)
    resolved_metric = resolve_metric(metric, runtime)
    chosen = select_tree_kind(array.shape[0], array.shape[1], resolved_metric, kind, runtime)
    return SpatialTree(
        array,
        leaf_size=leaf_size,
        metric=resolved_metric,
        kind=chosen,
        config=runtime,
    )


__all__ = [
    "NodeData",
    "SpatialTree",
    "build_tree",
    "select_tree_kind",
    "tree_layout",
]
