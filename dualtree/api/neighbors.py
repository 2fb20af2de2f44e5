from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

import numpy as np

from dualtree.algo.mst import MinimumSpanningTree, compute_mst
from dualtree.api.runtime import Runtime
from dualtree.core.bounds import AUTO
from dualtree.core.tree import SpatialTree, build_tree
from dualtree.exceptions import InvalidArgument
from dualtree.queries.density import kernel_density, two_point_correlation
from dualtree.queries.knn import knn as knn_query
from dualtree.queries.radius import query_radius
from dualtree.queries.results import Neighborhood


@dataclass(frozen=True)
class NeighborIndex:
    """Thin façade around tree construction, queries and the MST solver.

    ``fit`` returns a new index holding the built tree; the instance it is
    called on is left untouched.
    """

    runtime: Runtime = field(default_factory=Runtime)
    kind: str = AUTO
    leaf_size: int | None = None
    metric: str | None = None
    tree: SpatialTree | None = None

    def fit(self, points: Any) -> "NeighborIndex":
        config = self.runtime.activate().config
        tree = build_tree(
            points,
            leaf_size=self.leaf_size,
            metric=self.metric,
            kind=self.kind,
            config=config,
        )
        return replace(self, tree=tree)

    def knn(
        self,
        query_points: Any,
        *,
        k: int = 1,
        dual_tree: bool = False,
        breadth_first: bool = False,
        return_distance: bool = True,
    ) -> Neighborhood:
        tree = self._require_tree()
        config = self.runtime.activate().config
        return knn_query(
            tree,
            query_points,
            k=k,
            dual_tree=dual_tree,
            breadth_first=breadth_first,
            return_distance=return_distance,
            config=config,
        )

    def nearest(self, query_points: Any) -> Neighborhood:
        return self.knn(query_points, k=1)

    def radius(
        self,
        query_points: Any,
        r: Any,
        *,
        return_distance: bool = False,
        count_only: bool = False,
        sort_results: bool = False,
    ) -> Neighborhood | np.ndarray:
        tree = self._require_tree()
        config = self.runtime.activate().config
        return query_radius(
            tree,
            query_points,
            r,
            return_distance=return_distance,
            count_only=count_only,
            sort_results=sort_results,
            config=config,
        )

    def two_point_correlation(self, query_points: Any, r: Any, *, dual_tree: bool = False) -> np.ndarray:
        tree = self._require_tree()
        config = self.runtime.activate().config
        return two_point_correlation(tree, query_points, r, dual_tree=dual_tree, config=config)

    def kernel_density(
        self,
        query_points: Any,
        h: float,
        *,
        kernel: str = "gaussian",
        atol: float = 0.0,
        rtol: float = 1e-8,
        return_log: bool = False,
    ) -> np.ndarray:
        tree = self._require_tree()
        config = self.runtime.activate().config
        return kernel_density(
            tree,
            query_points,
            h,
            kernel=kernel,
            atol=atol,
            rtol=rtol,
            return_log=return_log,
            config=config,
        )

    def minimum_spanning_tree(
        self,
        min_samples: int = 5,
        *,
        alpha: float = 1.0,
        approximate: bool = False,
        algorithm: str = "boruvka",
    ) -> MinimumSpanningTree:
        tree = self._require_tree()
        config = self.runtime.activate().config
        return compute_mst(
            tree,
            min_samples,
            alpha=alpha,
            approximate=approximate,
            algorithm=algorithm,
            config=config,
        )

    def _require_tree(self) -> SpatialTree:
        if self.tree is None:
            raise InvalidArgument("NeighborIndex requires a built tree; call fit() first.")
        return self.tree


__all__ = ["NeighborIndex"]
