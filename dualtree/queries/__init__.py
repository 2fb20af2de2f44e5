"""Query engine: k-NN, radius, two-point correlation and kernel density."""

from .density import KERNELS, Kernel, get_kernel, kernel_density, two_point_correlation
from .knn import knn, nearest_neighbor
from .radius import query_radius
from .results import Neighborhood, TraversalStats

__all__ = [
    "KERNELS",
    "Kernel",
    "get_kernel",
    "kernel_density",
    "two_point_correlation",
    "knn",
    "nearest_neighbor",
    "query_radius",
    "Neighborhood",
    "TraversalStats",
]
