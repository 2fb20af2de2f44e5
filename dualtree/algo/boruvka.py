from __future__ import annotations

import enum

import numpy as np

from dualtree.algo.mst import MinimumSpanningTree, validate_mst_arguments
from dualtree.algo.union_find import UnionFind
from dualtree.config import RuntimeConfig, resolve_config
from dualtree.core.tree import SpatialTree
from dualtree.diagnostics import log_operation
from dualtree.exceptions import InternalError, InvalidArgument
from dualtree.logging import get_logger
from dualtree.queries.knn import knn

LOGGER = get_logger("algo.boruvka")


class BoruvkaState(enum.Enum):
    INITIALIZED = "initialized"
    COMPONENTS_COMPUTED = "components_computed"
    TRAVERSING = "traversing"
    COMPONENTS_MERGED = "components_merged"
    DONE = "done"


class BoruvkaSolver:
    """Dual-tree Boruvka over mutual reachability distance.

    Each pass walks the tree against itself, recording for every component
    the cheapest edge that leaves it, then merges all components along those
    edges. Work happens in the metric's reduced distance space; edge weights
    are converted back when the tree is returned.

    Per-node ``bounds`` hold an upper bound on the best candidate distance of
    any component owning a point under the node; a node pair whose lower
    bound reaches it cannot improve any candidate and is pruned. With
    ``approximate=True`` those bounds are kept across passes unless a pass
    made no progress, trading exactness for fewer distance evaluations.
    """

    def __init__(
        self,
        tree: SpatialTree,
        min_samples: int = 5,
        *,
        alpha: float = 1.0,
        approximate: bool = False,
        config: RuntimeConfig | None = None,
    ) -> None:
        if not isinstance(tree, SpatialTree):
            raise InvalidArgument("BoruvkaSolver requires a SpatialTree.")
        validate_mst_arguments(tree.n_samples, min_samples, alpha)
        self.config = resolve_config(config)
        self.tree = tree
        self.metric = tree.metric
        self.min_samples = int(min_samples)
        self.alpha = float(alpha)
        self.approximate = bool(approximate)

        n_points = tree.n_samples
        n_nodes = tree.n_nodes
        self.num_points = n_points
        self.bounds = np.full(n_nodes, np.inf, dtype=np.float64)
        self.component_of_point = np.arange(n_points, dtype=np.int64)
        self.component_of_node = -np.arange(1, n_nodes + 1, dtype=np.int64)
        self.candidate_point = np.full(n_points, -1, dtype=np.int64)
        self.candidate_neighbor = np.full(n_points, -1, dtype=np.int64)
        self.candidate_distance = np.full(n_points, np.inf, dtype=np.float64)
        self.union_find = UnionFind(n_points)

        self.source = np.zeros(n_points - 1, dtype=np.int64)
        self.sink = np.zeros(n_points - 1, dtype=np.int64)
        self.weight = np.zeros(n_points - 1, dtype=np.float64)
        self.num_edges = 0
        self.num_passes = 0
        self.core_distance = np.zeros(n_points, dtype=np.float64)
        self._core_rdist = np.zeros(n_points, dtype=np.float64)
        self._live_nodes = self._reachable_nodes()
        self._bounds_fresh = True
        self.state = BoruvkaState.INITIALIZED

    def _reachable_nodes(self) -> np.ndarray:
        # heap slots below an early leaf are never initialised
        live = np.zeros(self.tree.n_nodes, dtype=bool)
        live[0] = True
        for i_node in range(self.tree.n_nodes):
            if live[i_node] and not self.tree.node_data.is_leaf[i_node]:
                live[2 * i_node + 1] = True
                live[2 * i_node + 2] = True
        return live

    @property
    def num_components(self) -> int:
        return self.union_find.num_components

    def _scale(self, reduced: np.ndarray | float) -> np.ndarray | float:
        """Apply ``d / alpha`` to reduced distances."""

        if self.alpha == 1.0:
            return reduced
        return self.metric.dist_to_rdist(self.metric.rdist_to_dist(reduced) / self.alpha)

    def compute_bounds(self) -> None:
        """Compute core distances and merge every point with its cheapest k-NN edge."""

        if self.state is not BoruvkaState.INITIALIZED:
            raise InternalError(f"compute_bounds called in state {self.state.value}.")
        k = self.min_samples + 1
        result = knn(self.tree, self.tree.data, k=k, dual_tree=True, config=self.config)
        distances = result.distances
        indices = result.indices
        self.core_distance = np.ascontiguousarray(distances[:, self.min_samples])
        self._core_rdist = np.asarray(self.metric.dist_to_rdist(self.core_distance), dtype=np.float64)
        scaled = np.asarray(self._scale(self.metric.dist_to_rdist(distances)), dtype=np.float64)

        core = self._core_rdist
        for n in range(self.num_points):
            for j in range(k):
                m = int(indices[n, j])
                if m == n:
                    continue
                # this edge already costs core(n), the least any edge from n can
                if core[m] <= core[n] and scaled[n, j] <= core[n]:
                    self.candidate_point[n] = n
                    self.candidate_neighbor[n] = m
                    self.candidate_distance[n] = core[n]
                    break

        self.state = BoruvkaState.COMPONENTS_COMPUTED
        self.update_components()
        self.bounds.fill(np.inf)
        self._bounds_fresh = True

    def _leaf_pair(self, node1: int, node2: int) -> None:
        tree = self.tree
        points1 = tree.node_indices(node1)
        points2 = tree.node_indices(node2)
        data2 = tree.data[points2]
        component2 = self.component_of_point[points2]
        core2 = self._core_rdist[points2]

        new_upper = 0.0
        for p in points1:
            c1 = self.component_of_point[p]
            core_p = self._core_rdist[p]
            if core_p > self.candidate_distance[c1]:
                continue
            reduced = np.asarray(self._scale(self.metric.rdist_rows(tree.data[p], data2)))
            reach = np.maximum(reduced, np.maximum(core2, core_p))
            allowed = (component2 != c1) & (core2 <= self.candidate_distance[c1])
            if allowed.any():
                reach = np.where(allowed, reach, np.inf)
                j = int(np.argmin(reach))
                if reach[j] < self.candidate_distance[c1]:
                    self.candidate_distance[c1] = reach[j]
                    self.candidate_point[c1] = p
                    self.candidate_neighbor[c1] = points2[j]
            if self.candidate_distance[c1] > new_upper:
                new_upper = float(self.candidate_distance[c1])

        if new_upper < self.bounds[node1]:
            self.bounds[node1] = new_upper
            node = node1
            while node > 0:
                parent = (node - 1) // 2
                bound_max = max(self.bounds[2 * parent + 1], self.bounds[2 * parent + 2])
                if bound_max < self.bounds[parent]:
                    self.bounds[parent] = bound_max
                    node = parent
                else:
                    break

    def dual_tree_traversal(self, node1: int, node2: int) -> None:
        tree = self.tree
        lower = self._scale(tree.bounds.min_rdist_dual(tree, node1, tree, node2))
        if lower >= self.bounds[node1]:
            return
        owner1 = self.component_of_node[node1]
        if owner1 >= 0 and owner1 == self.component_of_node[node2]:
            return

        leaf1 = tree.node_data.is_leaf[node1]
        leaf2 = tree.node_data.is_leaf[node2]
        if leaf1 and leaf2:
            self._leaf_pair(node1, node2)
            return

        radius = tree.node_data.radius
        if leaf1 or (not leaf2 and radius[node2] > radius[node1]):
            left, right = 2 * node2 + 1, 2 * node2 + 2
            left_lb = tree.bounds.min_rdist_dual(tree, node1, tree, left)
            right_lb = tree.bounds.min_rdist_dual(tree, node1, tree, right)
            order = ((node1, left), (node1, right)) if left_lb <= right_lb else ((node1, right), (node1, left))
        else:
            left, right = 2 * node1 + 1, 2 * node1 + 2
            left_lb = tree.bounds.min_rdist_dual(tree, left, tree, node2)
            right_lb = tree.bounds.min_rdist_dual(tree, right, tree, node2)
            order = ((left, node2), (right, node2)) if left_lb <= right_lb else ((right, node2), (left, node2))
        for pair in order:
            self.dual_tree_traversal(*pair)

    def update_components(self) -> int:
        """Add every surviving candidate edge, merge components and refresh ownership.

        Returns the number of edges added.
        """

        components_before = self.num_components
        added = 0
        for component in np.flatnonzero(self.candidate_point >= 0):
            if self.num_edges == self.num_points - 1:
                break
            source = int(self.candidate_point[component])
            sink = int(self.candidate_neighbor[component])
            # stale: both ends already merged earlier this pass
            if not self.union_find.union(source, sink):
                continue
            self.source[self.num_edges] = source
            self.sink[self.num_edges] = sink
            self.weight[self.num_edges] = self.candidate_distance[component]
            self.num_edges += 1
            added += 1

        self.candidate_point.fill(-1)
        self.candidate_neighbor.fill(-1)
        self.candidate_distance.fill(np.inf)
        self.component_of_point = self.union_find.find_all()
        self._refresh_node_components()

        if not self.approximate or components_before == self.num_components:
            self.bounds.fill(np.inf)
            self._bounds_fresh = True
        else:
            self._bounds_fresh = False
        self.state = BoruvkaState.COMPONENTS_MERGED
        return added

    def _refresh_node_components(self) -> None:
        tree = self.tree
        for i_node in range(tree.n_nodes - 1, -1, -1):
            if not self._live_nodes[i_node]:
                continue
            if tree.node_data.is_leaf[i_node]:
                owners = self.component_of_point[tree.node_indices(i_node)]
                if owners.size and np.all(owners == owners[0]):
                    self.component_of_node[i_node] = owners[0]
            else:
                left = self.component_of_node[2 * i_node + 1]
                if left >= 0 and left == self.component_of_node[2 * i_node + 2]:
                    self.component_of_node[i_node] = left

    def spanning_tree(self) -> MinimumSpanningTree:
        """Run Boruvka passes until ``M - 1`` edges exist and return them."""

        with log_operation(LOGGER, "boruvka_mst", config=self.config) as op_log:
            if self.state is BoruvkaState.INITIALIZED:
                self.compute_bounds()
            while self.num_edges < self.num_points - 1:
                started_fresh = self._bounds_fresh
                self.state = BoruvkaState.TRAVERSING
                self.dual_tree_traversal(0, 0)
                added = self.update_components()
                self.num_passes += 1
                LOGGER.debug(
                    "pass %d: components=%d edges=%d",
                    self.num_passes,
                    self.num_components,
                    self.num_edges,
                )
                if added == 0 and started_fresh:
                    raise InternalError(
                        f"Boruvka pass {self.num_passes} found no edge between "
                        f"{self.num_components} components."
                    )
            self.state = BoruvkaState.DONE
            op_log.add_metadata(
                points=self.num_points,
                min_samples=self.min_samples,
                alpha=self.alpha,
                approximate=self.approximate,
                kind=self.tree.kind,
                passes=self.num_passes,
            )

        weight = np.asarray(self.metric.rdist_to_dist(self.weight), dtype=np.float64)
        return MinimumSpanningTree(
            source=self.source.copy(),
            sink=self.sink.copy(),
            weight=weight,
            num_points=self.num_points,
        )


def boruvka_mst(
    tree: SpatialTree,
    min_samples: int = 5,
    *,
    alpha: float = 1.0,
    approximate: bool = False,
    config: RuntimeConfig | None = None,
) -> MinimumSpanningTree:
    return BoruvkaSolver(
        tree, min_samples, alpha=alpha, approximate=approximate, config=config
    ).spanning_tree()


__all__ = ["BoruvkaSolver", "BoruvkaState", "boruvka_mst"]
