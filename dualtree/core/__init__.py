"""Core data structures: metrics, node bounds, heaps and the spatial tree."""

from .bounds import AUTO, BALL_TREE, KD_TREE, TREE_KINDS, NodeBounds, get_bounds
from .heaps import NeighborsHeap, NodeHeap, NodeHeapItem
from .metrics import (
    Metric,
    MetricRegistry,
    available_metrics,
    get_metric,
    minkowski_metric,
)
from .tree import NodeData, SpatialTree, build_tree, select_tree_kind

__all__ = [
    "AUTO",
    "BALL_TREE",
    "KD_TREE",
    "TREE_KINDS",
    "NodeBounds",
    "get_bounds",
    "NeighborsHeap",
    "NodeHeap",
    "NodeHeapItem",
    "Metric",
    "MetricRegistry",
    "available_metrics",
    "get_metric",
    "minkowski_metric",
    "NodeData",
    "SpatialTree",
    "build_tree",
    "select_tree_kind",
]
