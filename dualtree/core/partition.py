from __future__ import annotations

import numpy as np

from dualtree.core import _kernels_numba


def find_node_split_dim(
    data: np.ndarray,
    node_indices: np.ndarray,
    *,
    use_numba: bool = False,
) -> int:
    """Return the feature with the largest spread among the points in ``node_indices``."""

    if use_numba:
        return int(_kernels_numba.find_node_split_dim(data, node_indices))
    points = data[node_indices]
    return int(np.argmax(points.max(axis=0) - points.min(axis=0)))


def partition_node_indices(
    data: np.ndarray,
    node_indices: np.ndarray,
    split_dim: int,
    split_index: int,
    *,
    use_numba: bool = False,
) -> None:
    """Reorder ``node_indices`` in place around ``split_index`` along ``split_dim``.

    On return every point before ``split_index`` has a coordinate no greater
    than the point at ``split_index``, and every point after it no smaller.
    Only the given slice is touched.
    """

    if use_numba:
        _kernels_numba.partition_node_indices(data, node_indices, split_dim, split_index)
        return
    values = data[node_indices, split_dim]
    order = np.argpartition(values, split_index, kind="introselect")
    node_indices[:] = node_indices[order]


__all__ = ["find_node_split_dim", "partition_node_indices"]
