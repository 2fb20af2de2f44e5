#!/usr/bin/env python
"""Quick-start guide for dualtree library usage.

Run with: python -m dualtree

This module intentionally avoids importing dualtree internals to provide
a fast, clean startup for displaying help text.
"""

from __future__ import annotations

QUICKSTART = """\
================================================================================
                                 DUALTREE
        KD-tree / Ball-tree k-NN, radius queries and dual-tree Boruvka MST
================================================================================

INSTALLATION
------------
    pip install dualtree

BUILDING A TREE
---------------
    import numpy as np
    from dualtree import build_tree

    points = np.random.randn(10000, 3)

    # kind="auto" picks a Ball-tree for large matrices or non-axis metrics
    tree = build_tree(points, leaf_size=40, metric="euclidean", kind="kd")

K NEAREST NEIGHBOURS
--------------------
    result = tree.query(points[:100], k=10)
    result.distances, result.indices          # (100, 10) each, ascending

    # Same neighbours, different traversal strategy
    tree.query(points[:100], k=10, dual_tree=True)
    tree.query(points[:100], k=10, breadth_first=True)

RADIUS, CORRELATION AND DENSITY
-------------------------------
    hits = tree.query_radius(points[:5], r=0.5, return_distance=True)
    counts = tree.query_radius(points[:5], r=0.5, count_only=True)
    pairs = tree.two_point_correlation(points, r=[0.1, 0.5, 1.0])
    density = tree.kernel_density(points[:5], h=0.3, kernel="epanechnikov")

MINIMUM SPANNING TREE (mutual reachability)
-------------------------------------------
    from dualtree import compute_mst

    mst = compute_mst(points, min_samples=5, alpha=1.0)
    mst.source, mst.sink, mst.weight          # M - 1 edges in merge order

    # Reuse an existing tree, or check against the dense Prim solver
    compute_mst(tree, min_samples=5)
    compute_mst(points[:500], min_samples=5, algorithm="prims")

RUNTIME CONFIGURATION
---------------------
    from dualtree import NeighborIndex, Runtime

    runtime = Runtime(enable_numba=True, query_workers=4, log_level="DEBUG")
    index = NeighborIndex(runtime=runtime, kind="ball").fit(points)
    index.knn(points[:10], k=5)

    Environment variables: DUALTREE_ENABLE_NUMBA, DUALTREE_ENABLE_DIAGNOSTICS,
    DUALTREE_LOG_LEVEL, DUALTREE_METRIC, DUALTREE_LEAF_SIZE,
    DUALTREE_AUTO_BALL_THRESHOLD, DUALTREE_QUERY_WORKERS,
    DUALTREE_QUERY_CHUNK_SIZE

METRICS
-------
    euclidean, manhattan, chebyshev, minkowski (p >= 1)
    haversine, canberra, hamming (Ball-tree only)

BENCHMARKING CLI
----------------
    python -m cli.benchmark knn --points 20000 --dimension 3 --k 10
    python -m cli.benchmark mst --points 5000 --min-samples 5

================================================================================
"""


def main() -> None:
    """Print quick-start guide."""
    print(QUICKSTART)


if __name__ == "__main__":
    main()
