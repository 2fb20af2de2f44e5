"""dualtree: KD-tree and Ball-tree spatial indexes with dual-tree algorithms.

Quick Start
-----------
>>> import numpy as np
>>> from dualtree import build_tree, compute_mst
>>>
>>> # Exact k-NN
>>> points = np.random.randn(10000, 3)
>>> tree = build_tree(points, leaf_size=40)
>>> result = tree.query(points[:100], k=10, dual_tree=True)
>>> result.distances.shape
(100, 10)

Minimum spanning tree (mutual reachability)
-------------------------------------------
>>> mst = compute_mst(points, min_samples=5)
>>> mst.num_edges
9999

Classes
-------
SpatialTree : Immutable KD-tree or Ball-tree over a point matrix.
NeighborIndex : Façade bundling tree construction, queries and the MST solver.
Runtime : Declarative overrides for the runtime configuration.
"""

from importlib.metadata import PackageNotFoundError, version as _pkg_version

try:
    __version__ = _pkg_version("dualtree")
except PackageNotFoundError:  # pragma: no cover - running from a source checkout
    __version__ = "0.0.1"

from .algo import BoruvkaSolver, MinimumSpanningTree, UnionFind, compute_mst, prim_mst
from .api import NeighborIndex, Runtime
from .config import RuntimeConfig, configure_runtime, describe_runtime, runtime_config
from .core import Metric, SpatialTree, available_metrics, build_tree, get_metric
from .exceptions import DualTreeError, InternalError, InvalidArgument, InvalidConfiguration
from .queries import Neighborhood, kernel_density, knn, query_radius, two_point_correlation

__all__ = [
    "__version__",
    # Primary API
    "build_tree",
    "compute_mst",
    "NeighborIndex",
    "Runtime",
    "SpatialTree",
    # Queries
    "knn",
    "query_radius",
    "two_point_correlation",
    "kernel_density",
    "Neighborhood",
    # Spanning trees
    "BoruvkaSolver",
    "MinimumSpanningTree",
    "UnionFind",
    "prim_mst",
    # Metrics and configuration
    "Metric",
    "available_metrics",
    "get_metric",
    "RuntimeConfig",
    "configure_runtime",
    "describe_runtime",
    "runtime_config",
    # Errors
    "DualTreeError",
    "InvalidArgument",
    "InvalidConfiguration",
    "InternalError",
]
