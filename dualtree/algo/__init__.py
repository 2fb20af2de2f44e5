"""Spanning tree algorithms over mutual reachability distance."""

from .boruvka import BoruvkaSolver, BoruvkaState, boruvka_mst
from .mst import (
    MST_ALGORITHMS,
    MinimumSpanningTree,
    compute_mst,
    core_distances,
    mutual_reachability,
    prim_mst,
)
from .union_find import UnionFind

__all__ = [
    "BoruvkaSolver",
    "BoruvkaState",
    "boruvka_mst",
    "MST_ALGORITHMS",
    "MinimumSpanningTree",
    "compute_mst",
    "core_distances",
    "mutual_reachability",
    "prim_mst",
    "UnionFind",
]
