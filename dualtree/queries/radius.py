from __future__ import annotations

from typing import Any, List, Tuple

import numpy as np

from dualtree.config import RuntimeConfig, resolve_config
from dualtree.core.tree import SpatialTree
from dualtree.diagnostics import OperationLog, log_operation
from dualtree.exceptions import InvalidArgument
from dualtree.logging import get_logger
from dualtree.queries._parallel import run_chunked
from dualtree.queries.results import Neighborhood, TraversalStats

LOGGER = get_logger("queries.radius")

_EMPTY_INDICES = np.empty(0, dtype=np.int64)
_EMPTY_DISTANCES = np.empty(0, dtype=np.float64)


def _validate_radii(r: Any, num_queries: int) -> np.ndarray:
    try:
        radii = np.asarray(r, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise InvalidArgument("Radius must be a number or a sequence of numbers.") from exc
    if radii.ndim == 0:
        radii = np.full(num_queries, float(radii), dtype=np.float64)
    elif radii.shape != (num_queries,):
        raise InvalidArgument(
            f"Expected one radius per query ({num_queries}), got shape {radii.shape}."
        )
    if not np.all(radii > 0):
        raise InvalidArgument("Radius must be positive.")
    return radii


class _RowCollector:
    """Accumulates matching index (and distance) chunks for one query row."""

    __slots__ = ("indices", "distances", "count")

    def __init__(self) -> None:
        self.indices: List[np.ndarray] = []
        self.distances: List[np.ndarray] = []
        self.count = 0

    def add(self, indices: np.ndarray, distances: np.ndarray | None) -> None:
        self.count += int(indices.shape[0])
        self.indices.append(indices)
        if distances is not None:
            self.distances.append(distances)

    def materialise(self, return_distance: bool) -> Tuple[np.ndarray, np.ndarray | None]:
        indices = np.concatenate(self.indices) if self.indices else _EMPTY_INDICES.copy()
        if not return_distance:
            return indices, None
        distances = np.concatenate(self.distances) if self.distances else _EMPTY_DISTANCES.copy()
        return indices, distances


def _query_radius_single(
    tree: SpatialTree,
    i_node: int,
    point: np.ndarray,
    r: float,
    reduced_r: float,
    collector: _RowCollector,
    count_only: bool,
    return_distance: bool,
    stats: TraversalStats,
) -> None:
    dist_lb, dist_ub = tree.bounds.min_max_dist(tree, i_node, point)
    if dist_lb > r:
        stats.n_trims += 1
        return

    indices = tree.node_indices(i_node)
    if dist_ub <= r:
        # whole node lies inside the ball
        if count_only:
            collector.count += int(indices.shape[0])
        elif return_distance:
            collector.add(indices, tree.metric.dist_rows(point, tree.data[indices]))
        else:
            collector.add(indices, None)
        return

    if tree.node_data.is_leaf[i_node]:
        stats.n_leaves += 1
        reduced = tree.metric.rdist_rows(point, tree.data[indices])
        mask = reduced <= reduced_r
        if count_only:
            collector.count += int(np.count_nonzero(mask))
        elif return_distance:
            collector.add(
                indices[mask],
                np.asarray(tree.metric.rdist_to_dist(reduced[mask]), dtype=np.float64),
            )
        else:
            collector.add(indices[mask], None)
        return

    stats.n_splits += 1
    for child in (2 * i_node + 1, 2 * i_node + 2):
        _query_radius_single(
            tree, child, point, r, reduced_r, collector, count_only, return_distance, stats
        )


def _radius_block(
    tree: SpatialTree,
    batch: np.ndarray,
    radii: np.ndarray,
    count_only: bool,
    return_distance: bool,
) -> Tuple[List[_RowCollector], TraversalStats]:
    stats = TraversalStats()
    collectors: List[_RowCollector] = []
    for point, r in zip(batch, radii):
        collector = _RowCollector()
        reduced_r = float(tree.metric.dist_to_rdist(r))
        _query_radius_single(
            tree, 0, point, float(r), reduced_r, collector, count_only, return_distance, stats
        )
        collectors.append(collector)
    return collectors, stats


def query_radius(
    tree: SpatialTree,
    query_points: Any,
    r: Any,
    *,
    return_distance: bool = False,
    count_only: bool = False,
    sort_results: bool = False,
    config: RuntimeConfig | None = None,
) -> Neighborhood | np.ndarray:
    """Return every stored point within distance ``r`` (inclusive) of each query row.

    ``r`` is either a scalar or one radius per query row. With ``count_only``
    only the per-row counts are returned as an ``int64`` array.
    """

    runtime = resolve_config(config)
    with log_operation(LOGGER, "radius_query", config=runtime) as op_log:
        return _radius_impl(
            op_log,
            tree,
            query_points,
            r,
            return_distance=return_distance,
            count_only=count_only,
            sort_results=sort_results,
            runtime=runtime,
        )


def _radius_impl(
    op_log: OperationLog,
    tree: SpatialTree,
    query_points: Any,
    r: Any,
    *,
    return_distance: bool,
    count_only: bool,
    sort_results: bool,
    runtime: RuntimeConfig,
) -> Neighborhood | np.ndarray:
    if count_only and return_distance:
        raise InvalidArgument("count_only and return_distance cannot both be set.")
    if sort_results and not return_distance:
        raise InvalidArgument("sort_results requires return_distance.")
    batch = tree.check_queries(query_points)
    num_queries = batch.shape[0]
    radii = _validate_radii(r, num_queries)

    blocks = run_chunked(
        num_queries,
        runtime,
        lambda start, end: _radius_block(
            tree, batch[start:end], radii[start:end], count_only, return_distance
        ),
    )
    stats = TraversalStats()
    collectors: List[_RowCollector] = []
    for block_collectors, block_stats in blocks:
        collectors.extend(block_collectors)
        stats.merge(block_stats)

    counts = np.fromiter((c.count for c in collectors), dtype=np.int64, count=num_queries)
    op_log.add_metadata(
        queries=num_queries,
        matches=int(counts.sum()),
        count_only=bool(count_only),
        **stats.as_metadata(),
    )
    if count_only:
        return counts

    indices_out = np.empty(num_queries, dtype=object)
    distances_out = np.empty(num_queries, dtype=object) if return_distance else None
    for row, collector in enumerate(collectors):
        indices, distances = collector.materialise(return_distance)
        if sort_results and distances is not None:
            order = np.argsort(distances, kind="stable")
            indices = indices[order]
            distances = distances[order]
        indices_out[row] = indices
        if distances_out is not None:
            distances_out[row] = distances
    return Neighborhood(indices=indices_out, distances=distances_out, stats=stats)


__all__ = ["query_radius"]
