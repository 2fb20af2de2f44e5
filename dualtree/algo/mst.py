from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np

from dualtree.config import RuntimeConfig, resolve_config
from dualtree.core.metrics import Metric, resolve_metric
from dualtree.core.tree import SpatialTree, build_tree
from dualtree.diagnostics import log_operation
from dualtree.exceptions import InvalidArgument, InvalidConfiguration
from dualtree.logging import get_logger
from dualtree.queries.knn import knn

LOGGER = get_logger("algo.mst")

MST_ALGORITHMS = ("boruvka", "prims")


@dataclass(frozen=True)
class MinimumSpanningTree:
    """Edges of a spanning tree over ``num_points`` points, in the order they were added."""

    source: np.ndarray
    sink: np.ndarray
    weight: np.ndarray
    num_points: int

    @property
    def num_edges(self) -> int:
        return int(self.weight.shape[0])

    @property
    def total_weight(self) -> float:
        return float(self.weight.sum())

    @property
    def edges(self) -> np.ndarray:
        """``(num_edges, 3)`` float matrix of ``(source, sink, weight)`` rows."""

        return np.column_stack(
            [self.source.astype(np.float64), self.sink.astype(np.float64), self.weight]
        )

    def sorted(self) -> "MinimumSpanningTree":
        order = np.argsort(self.weight, kind="stable")
        return MinimumSpanningTree(
            source=self.source[order],
            sink=self.sink[order],
            weight=self.weight[order],
            num_points=self.num_points,
        )


def validate_mst_arguments(num_points: int, min_samples: Any, alpha: Any) -> None:
    if num_points < 2:
        raise InvalidConfiguration("A spanning tree needs at least two points.")
    if isinstance(min_samples, bool) or not isinstance(min_samples, (int, np.integer)):
        raise InvalidArgument(f"min_samples must be an integer, got {min_samples!r}.")
    if min_samples < 1:
        raise InvalidArgument("min_samples must be positive.")
    if min_samples >= num_points:
        raise InvalidArgument(
            f"min_samples ({min_samples}) must be smaller than the number of points ({num_points})."
        )
    if not (np.isfinite(alpha) and alpha > 0):
        raise InvalidArgument(f"alpha must be positive and finite, got {alpha}.")


def core_distances(
    tree: SpatialTree,
    min_samples: int,
    *,
    config: RuntimeConfig | None = None,
) -> np.ndarray:
    """Distance from every stored point to its ``min_samples``-th nearest other point.

    Uses a dual-tree self query with ``k = min_samples + 1``; the point itself
    always occupies one of the slots at distance zero.
    """

    validate_mst_arguments(tree.n_samples, min_samples, 1.0)
    result = knn(tree, tree.data, k=int(min_samples) + 1, dual_tree=True, config=config)
    return np.ascontiguousarray(result.distances[:, int(min_samples)])


def mutual_reachability(
    distances: np.ndarray,
    core: np.ndarray,
    *,
    alpha: float = 1.0,
) -> np.ndarray:
    """Return ``max(d(p, q) / alpha, core(p), core(q))`` for a dense distance matrix."""

    scaled = np.asarray(distances, dtype=np.float64)
    if alpha != 1.0:
        scaled = scaled / alpha
    core = np.asarray(core, dtype=np.float64)
    return np.maximum(scaled, np.maximum(core[:, None], core[None, :]))


def prim_mst(
    points: Any,
    min_samples: int = 5,
    *,
    metric: str | Metric | None = None,
    alpha: float = 1.0,
    config: RuntimeConfig | None = None,
) -> MinimumSpanningTree:
    """Dense ``O(M^2)`` Prim over the explicit mutual-reachability matrix."""

    runtime = resolve_config(config)
    data = points.data if isinstance(points, SpatialTree) else np.asarray(points, dtype=np.float64)
    if isinstance(points, SpatialTree) and metric is None:
        metric = points.metric
    resolved = resolve_metric(metric, runtime)
    if data.ndim != 2:
        raise InvalidConfiguration("Points must be a 2-D matrix.")
    num_points = data.shape[0]
    validate_mst_arguments(num_points, min_samples, alpha)

    with log_operation(LOGGER, "prim_mst", config=runtime) as op_log:
        distances = resolved.pairwise(data, data)
        core = np.partition(distances, int(min_samples), axis=1)[:, int(min_samples)]
        reach = mutual_reachability(distances, core, alpha=alpha)

        in_tree = np.zeros(num_points, dtype=bool)
        best = np.full(num_points, np.inf, dtype=np.float64)
        parent = np.full(num_points, -1, dtype=np.int64)
        source = np.empty(num_points - 1, dtype=np.int64)
        sink = np.empty(num_points - 1, dtype=np.int64)
        weight = np.empty(num_points - 1, dtype=np.float64)

        current = 0
        in_tree[current] = True
        for edge in range(num_points - 1):
            row = reach[current]
            closer = ~in_tree & (row < best)
            best[closer] = row[closer]
            parent[closer] = current
            candidates = np.where(in_tree, np.inf, best)
            current = int(np.argmin(candidates))
            source[edge] = parent[current]
            sink[edge] = current
            weight[edge] = best[current]
            in_tree[current] = True
        op_log.add_metadata(points=num_points, min_samples=min_samples, alpha=alpha)

    return MinimumSpanningTree(source=source, sink=sink, weight=weight, num_points=num_points)


def compute_mst(
    points: Any,
    min_samples: int = 5,
    *,
    metric: str | Metric | None = None,
    alpha: float = 1.0,
    approximate: bool = False,
    leaf_size: int | None = None,
    kind: str = "auto",
    algorithm: str = "boruvka",
    config: RuntimeConfig | None = None,
) -> MinimumSpanningTree:
    """Minimum spanning tree of ``points`` under mutual reachability distance.

    ``points`` may be a point matrix or an existing :class:`SpatialTree`. A tree
    is reused as-is unless a different ``kind``, an explicit ``metric`` or a
    ``leaf_size`` other than its own is requested, in which case a new tree is
    built over its points with those settings.
    """

    runtime = resolve_config(config)
    choice = algorithm.strip().lower()
    if choice not in MST_ALGORITHMS:
        raise InvalidArgument(f"Unknown MST algorithm '{algorithm}'. Expected one of {MST_ALGORITHMS}.")
    if choice == "prims":
        return prim_mst(points, min_samples, metric=metric, alpha=alpha, config=runtime)

    from dualtree.algo.boruvka import BoruvkaSolver

    if (
        isinstance(points, SpatialTree)
        and kind in ("auto", points.kind)
        and metric is None
        and leaf_size in (None, points.leaf_size)
    ):
        tree = points
    elif isinstance(points, SpatialTree):
        tree = build_tree(
            points.data,
            leaf_size=points.leaf_size if leaf_size is None else leaf_size,
            metric=points.metric if metric is None else metric,
            kind=points.kind if kind == "auto" else kind,
            config=runtime,
        )
    else:
        tree = build_tree(points, leaf_size=leaf_size, metric=metric, kind=kind, config=runtime)
    solver = BoruvkaSolver(
        tree,
        min_samples,
        alpha=alpha,
        approximate=approximate,
        config=runtime,
    )
    return solver.spanning_tree()


__all__ = [
    "MST_ALGORITHMS",
    "MinimumSpanningTree",
    "compute_mst",
    "core_distances",
    "mutual_reachability",
    "prim_mst",
    "validate_mst_arguments",
]
