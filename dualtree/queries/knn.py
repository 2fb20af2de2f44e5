from __future__ import annotations

from typing import Any, Tuple

import numpy as np

from dualtree.config import RuntimeConfig, resolve_config
from dualtree.core import _kernels_numba
from dualtree.core.heaps import NeighborsHeap, NodeHeap, NodeHeapItem, sort_rows
from dualtree.core.tree import SpatialTree
from dualtree.diagnostics import OperationLog, log_operation
from dualtree.exceptions import InvalidArgument
from dualtree.logging import get_logger
from dualtree.queries._parallel import run_chunked
from dualtree.queries.results import Neighborhood, TraversalStats

LOGGER = get_logger("queries.knn")


def _push_leaf(
    tree: SpatialTree,
    i_node: int,
    point: np.ndarray,
    row: int,
    heap: NeighborsHeap,
) -> None:
    """Offer every point of leaf ``i_node`` to heap row ``row``."""

    start = int(tree.node_data.idx_start[i_node])
    end = int(tree.node_data.idx_end[i_node])
    if tree.use_numba_kernels:
        _kernels_numba.leaf_push(
            tree.data,
            tree.idx_array,
            start,
            end,
            point,
            tree.metric.p,
            heap.distances[row],
            heap.indices[row],
        )
        return
    indices = tree.idx_array[start:end]
    reduced = tree.metric.rdist_rows(point, tree.data[indices])
    for j in np.flatnonzero(reduced < heap.largest(row)):
        heap.push(row, float(reduced[j]), int(indices[j]))


def _query_single_depthfirst(
    tree: SpatialTree,
    i_node: int,
    point: np.ndarray,
    row: int,
    heap: NeighborsHeap,
    reduced_lb: float,
    stats: TraversalStats,
) -> None:
    if reduced_lb > heap.largest(row):
        stats.n_trims += 1
        return
    if tree.node_data.is_leaf[i_node]:
        stats.n_leaves += 1
        _push_leaf(tree, i_node, point, row, heap)
        return

    stats.n_splits += 1
    left = 2 * i_node + 1
    right = left + 1
    lb_left = tree.bounds.min_rdist(tree, left, point)
    lb_right = tree.bounds.min_rdist(tree, right, point)
    if lb_left <= lb_right:
        _query_single_depthfirst(tree, left, point, row, heap, lb_left, stats)
        _query_single_depthfirst(tree, right, point, row, heap, lb_right, stats)
    else:
        _query_single_depthfirst(tree, right, point, row, heap, lb_right, stats)
        _query_single_depthfirst(tree, left, point, row, heap, lb_left, stats)


def _query_single_breadthfirst(
    tree: SpatialTree,
    point: np.ndarray,
    row: int,
    heap: NeighborsHeap,
    stats: TraversalStats,
) -> None:
    nodes = NodeHeap()
    nodes.push(NodeHeapItem(tree.bounds.min_rdist(tree, 0, point), 0))
    while len(nodes):
        item = nodes.pop()
        i_node = item.i1
        if item.val > heap.largest(row):
            # everything left in the heap is at least as far
            stats.n_trims += 1 + len(nodes)
            break
        if tree.node_data.is_leaf[i_node]:
            stats.n_leaves += 1
            _push_leaf(tree, i_node, point, row, heap)
            continue
        stats.n_splits += 1
        for child in (2 * i_node + 1, 2 * i_node + 2):
            nodes.push(NodeHeapItem(tree.bounds.min_rdist(tree, child, point), child))


def _leaf_pair(
    tree: SpatialTree,
    i_node1: int,
    other: SpatialTree,
    i_node2: int,
    heap: NeighborsHeap,
    bounds: np.ndarray,
    reduced_lb: float,
) -> None:
    """Brute-force every query of ``other``'s leaf against ``tree``'s leaf, then tighten bounds."""

    candidates = tree.node_indices(i_node1)
    candidate_points = tree.data[candidates]
    queries = other.node_indices(i_node2)
    for i_pt in queries:
        threshold = heap.largest(i_pt)
        if threshold < reduced_lb:
            continue
        if tree.use_numba_kernels:
            _kernels_numba.leaf_push(
                tree.data,
                tree.idx_array,
                int(tree.node_data.idx_start[i_node1]),
                int(tree.node_data.idx_end[i_node1]),
                other.data[i_pt],
                tree.metric.p,
                heap.distances[i_pt],
                heap.indices[i_pt],
            )
            continue
        reduced = tree.metric.rdist_rows(other.data[i_pt], candidate_points)
        for j in np.flatnonzero(reduced < threshold):
            heap.push(int(i_pt), float(reduced[j]), int(candidates[j]))

    bounds[i_node2] = float(heap.distances[queries, 0].max())
    _propagate_bound(bounds, i_node2)


def _propagate_bound(bounds: np.ndarray, i_node: int) -> None:
    # a parent's bound is the loosest of its children's
    while i_node > 0:
        i_parent = (i_node - 1) // 2
        bound_max = max(bounds[2 * i_parent + 1], bounds[2 * i_parent + 2])
        if bound_max < bounds[i_parent]:
            bounds[i_parent] = bound_max
            i_node = i_parent
        else:
            break


def _split_query_node(tree: SpatialTree, i_node1: int, other: SpatialTree, i_node2: int) -> bool:
    """Return ``True`` when the pair should descend into the query node."""

    if tree.node_data.is_leaf[i_node1]:
        return True
    if other.node_data.is_leaf[i_node2]:
        return False
    return bool(other.node_data.radius[i_node2] > tree.node_data.radius[i_node1])


def _query_dual_depthfirst(
    tree: SpatialTree,
    i_node1: int,
    other: SpatialTree,
    i_node2: int,
    bounds: np.ndarray,
    heap: NeighborsHeap,
    reduced_lb: float,
    stats: TraversalStats,
) -> None:
    if reduced_lb > bounds[i_node2]:
        stats.n_trims += 1
        return
    if tree.node_data.is_leaf[i_node1] and other.node_data.is_leaf[i_node2]:
        stats.n_leaves += 1
        _leaf_pair(tree, i_node1, other, i_node2, heap, bounds, reduced_lb)
        return

    stats.n_splits += 1
    bound_fn = tree.bounds.min_rdist_dual
    if _split_query_node(tree, i_node1, other, i_node2):
        for child in (2 * i_node2 + 1, 2 * i_node2 + 2):
            lb = bound_fn(tree, i_node1, other, child)
            _query_dual_depthfirst(tree, i_node1, other, child, bounds, heap, lb, stats)
        return

    left = 2 * i_node1 + 1
    right = left + 1
    lb_left = bound_fn(tree, left, other, i_node2)
    lb_right = bound_fn(tree, right, other, i_node2)
    if lb_left <= lb_right:
        _query_dual_depthfirst(tree, left, other, i_node2, bounds, heap, lb_left, stats)
        _query_dual_depthfirst(tree, right, other, i_node2, bounds, heap, lb_right, stats)
    else:
        _query_dual_depthfirst(tree, right, other, i_node2, bounds, heap, lb_right, stats)
        _query_dual_depthfirst(tree, left, other, i_node2, bounds, heap, lb_left, stats)


def _query_dual_breadthfirst(
    tree: SpatialTree,
    other: SpatialTree,
    bounds: np.ndarray,
    heap: NeighborsHeap,
    stats: TraversalStats,
) -> None:
    bound_fn = tree.bounds.min_rdist_dual
    pairs = NodeHeap()
    pairs.push(NodeHeapItem(bound_fn(tree, 0, other, 0), 0, 0))
    while len(pairs):
        item = pairs.pop()
        i_node1, i_node2 = item.i1, item.i2
        if item.val > bounds[i_node2]:
            stats.n_trims += 1
            continue
        if tree.node_data.is_leaf[i_node1] and other.node_data.is_leaf[i_node2]:
            stats.n_leaves += 1
            _leaf_pair(tree, i_node1, other, i_node2, heap, bounds, item.val)
            continue
        stats.n_splits += 1
        if _split_query_node(tree, i_node1, other, i_node2):
            for child in (2 * i_node2 + 1, 2 * i_node2 + 2):
                pairs.push(NodeHeapItem(bound_fn(tree, i_node1, other, child), i_node1, child))
        else:
            for child in (2 * i_node1 + 1, 2 * i_node1 + 2):
                pairs.push(NodeHeapItem(bound_fn(tree, child, other, i_node2), child, i_node2))


def _single_tree_block(
    tree: SpatialTree,
    batch: np.ndarray,
    k: int,
    breadth_first: bool,
    use_numba: bool,
) -> Tuple[np.ndarray, np.ndarray, TraversalStats]:
    heap = NeighborsHeap(batch.shape[0], k, use_numba=use_numba)
    stats = TraversalStats()
    for row, point in enumerate(batch):
        if breadth_first:
            _query_single_breadthfirst(tree, point, row, heap, stats)
        else:
            root_lb = tree.bounds.min_rdist(tree, 0, point)
            _query_single_depthfirst(tree, 0, point, row, heap, root_lb, stats)
    return heap.distances, heap.indices, stats


def knn(
    tree: SpatialTree,
    query_points: Any,
    *,
    k: int = 1,
    dual_tree: bool = False,
    breadth_first: bool = False,
    sort_results: bool = True,
    return_distance: bool = True,
    config: RuntimeConfig | None = None,
) -> Neighborhood:
    """Return the exact ``k`` nearest stored points for every query row.

    Depth-first, breadth-first and dual-tree traversals return the same
    neighbour sets; they differ only in how much work the pruning saves.
    """

    runtime = resolve_config(config)
    with log_operation(LOGGER, "knn_query", config=runtime) as op_log:
        return _knn_impl(
            op_log,
            tree,
            query_points,
            k=k,
            dual_tree=dual_tree,
            breadth_first=breadth_first,
            sort_results=sort_results,
            return_distance=return_distance,
            runtime=runtime,
        )


def _validate_k(tree: SpatialTree, k: Any) -> int:
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)):
        raise InvalidArgument(f"k must be an integer, got {k!r}.")
    if k <= 0:
        raise InvalidArgument("k must be positive.")
    if k > tree.n_samples:
        raise InvalidArgument("k cannot exceed the number of points in the tree.")
    return int(k)


def _knn_impl(
    op_log: OperationLog,
    tree: SpatialTree,
    query_points: Any,
    *,
    k: int,
    dual_tree: bool,
    breadth_first: bool,
    sort_results: bool,
    return_distance: bool,
    runtime: RuntimeConfig,
) -> Neighborhood:
    k = _validate_k(tree, k)
    batch = tree.check_queries(query_points)
    num_queries = batch.shape[0]
    use_numba = runtime.enable_numba
    stats = TraversalStats()

    if num_queries == 0:
        distances = np.empty((0, k), dtype=np.float64)
        indices = np.empty((0, k), dtype=np.int64)
    elif dual_tree:
        other = SpatialTree(
            batch,
            leaf_size=tree.leaf_size,
            metric=tree.metric,
            kind=tree.kind,
            config=runtime,
        )
        heap = NeighborsHeap(num_queries, k, use_numba=use_numba)
        bounds = np.full(other.n_nodes, np.inf, dtype=np.float64)
        if breadth_first:
            _query_dual_breadthfirst(tree, other, bounds, heap, stats)
        else:
            root_lb = tree.bounds.min_rdist_dual(tree, 0, other, 0)
            _query_dual_depthfirst(tree, 0, other, 0, bounds, heap, root_lb, stats)
        distances, indices = heap.distances, heap.indices
    else:
        blocks = run_chunked(
            num_queries,
            runtime,
            lambda start, end: _single_tree_block(
                tree, batch[start:end], k, breadth_first, use_numba
            ),
        )
        distances = np.concatenate([block[0] for block in blocks], axis=0)
        indices = np.concatenate([block[1] for block in blocks], axis=0)
        for block in blocks:
            stats.merge(block[2])

    if sort_results:
        sort_rows(distances, indices, use_numba=use_numba)

    op_log.add_metadata(
        queries=num_queries,
        k=k,
        dual_tree=bool(dual_tree),
        breadth_first=bool(breadth_first),
        **stats.as_metadata(),
    )
    if not return_distance:
        return Neighborhood(indices=indices, distances=None, stats=stats)
    true_distances = np.asarray(tree.metric.rdist_to_dist(distances), dtype=np.float64)
    return Neighborhood(indices=indices, distances=true_distances, stats=stats)


def nearest_neighbor(
    tree: SpatialTree,
    query_points: Any,
    *,
    config: RuntimeConfig | None = None,
) -> Neighborhood:
    return knn(tree, query_points, k=1, config=config)


__all__ = ["knn", "nearest_neighbor"]
