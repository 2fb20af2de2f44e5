from __future__ import annotations

import math

from numba import njit


@njit(cache=True, inline="always")
def _dual_swap(darr, iarr, i1, i2):
    dtmp = darr[i1]
    darr[i1] = darr[i2]
    darr[i2] = dtmp
    itmp = iarr[i1]
    iarr[i1] = iarr[i2]
    iarr[i2] = itmp


@njit(cache=True, inline="always")
def _swap(arr, i1, i2):
    tmp = arr[i1]
    arr[i1] = arr[i2]
    arr[i2] = tmp


@njit
def _simultaneous_sort(distances, indices):
    size = distances.size
    if size <= 1:
        return
    if size == 2:
        if distances[0] > distances[1]:
            _dual_swap(distances, indices, 0, 1)
        return
    if size == 3:
        if distances[0] > distances[1]:
            _dual_swap(distances, indices, 0, 1)
        if distances[1] > distances[2]:
            _dual_swap(distances, indices, 1, 2)
            if distances[0] > distances[1]:
                _dual_swap(distances, indices, 0, 1)
        return
    # median of three: smallest to the front, pivot to the back
    pivot_idx = size // 2
    if distances[0] > distances[size - 1]:
        _dual_swap(distances, indices, 0, size - 1)
    if distances[size - 1] > distances[pivot_idx]:
        _dual_swap(distances, indices, size - 1, pivot_idx)
        if distances[0] > distances[size - 1]:
            _dual_swap(distances, indices, 0, size - 1)
    pivot_val = distances[size - 1]
    store = 0
    for i in range(size - 1):
        if distances[i] < pivot_val:
            _dual_swap(distances, indices, i, store)
            store += 1
    _dual_swap(distances, indices, store, size - 1)
    if store > 1:
        _simultaneous_sort(distances[:store], indices[:store])
    if store + 2 < size:
        _simultaneous_sort(distances[store + 1:], indices[store + 1:])


@njit(cache=True)
def simultaneous_sort(distances, indices):
    """Sort each row of ``distances`` in place, applying the same permutation to ``indices``."""
    for row in range(distances.shape[0]):
        _simultaneous_sort(distances[row], indices[row])


@njit(cache=True)
def find_node_split_dim(data, node_indices):
    n_points = node_indices.size
    n_features = data.shape[1]
    j_max = 0
    max_spread = 0.0
    for j in range(n_features):
        max_val = data[node_indices[0], j]
        min_val = max_val
        for i in range(1, n_points):
            val = data[node_indices[i], j]
            if val > max_val:
                max_val = val
            elif val < min_val:
                min_val = val
        spread = max_val - min_val
        if spread > max_spread:
            max_spread = spread
            j_max = j
    return j_max


@njit(cache=True)
def partition_node_indices(data, node_indices, split_dim, split_index):
    left = 0
    right = node_indices.size - 1
    while True:
        mid = left
        for i in range(left, right):
            if data[node_indices[i], split_dim] < data[node_indices[right], split_dim]:
                _swap(node_indices, i, mid)
                mid += 1
        _swap(node_indices, mid, right)
        if mid == split_index:
            break
        if mid < split_index:
            left = mid + 1
        else:
            right = mid - 1


@njit(cache=True)
def heap_push(dist_row, ind_row, val, i_val):
    size = dist_row.shape[0]
    if val >= dist_row[0]:
        return
    i = 0
    while True:
        ic1 = 2 * i + 1
        ic2 = ic1 + 1
        if ic1 >= size:
            break
        if ic2 >= size:
            if dist_row[ic1] > val:
                i_swap = ic1
            else:
                break
        elif dist_row[ic1] >= dist_row[ic2]:
            if val < dist_row[ic1]:
                i_swap = ic1
            else:
                break
        else:
            if val < dist_row[ic2]:
                i_swap = ic2
            else:
                break
        dist_row[i] = dist_row[i_swap]
        ind_row[i] = ind_row[i_swap]
        i = i_swap
    dist_row[i] = val
    ind_row[i] = i_val


@njit(cache=True)
def minkowski_rdist(x, y, p):
    total = 0.0
    if p == 2.0:
        for j in range(x.shape[0]):
            diff = x[j] - y[j]
            total += diff * diff
    elif p == 1.0:
        for j in range(x.shape[0]):
            total += abs(x[j] - y[j])
    elif math.isinf(p):
        for j in range(x.shape[0]):
            diff = abs(x[j] - y[j])
            if diff > total:
                total = diff
    else:
        for j in range(x.shape[0]):
            total += abs(x[j] - y[j]) ** p
    return total


@njit(cache=True)
def leaf_push(data, idx_array, idx_start, idx_end, point, p, dist_row, ind_row):
    """Push every point of a leaf closer than the current k-th best into the heap row."""
    for i in range(idx_start, idx_end):
        j = idx_array[i]
        rdist = minkowski_rdist(point, data[j], p)
        if rdist < dist_row[0]:
            heap_push(dist_row, ind_row, rdist, j)


__all__ = [
    "find_node_split_dim",
    "heap_push",
    "leaf_push",
    "minkowski_rdist",
    "partition_node_indices",
    "simultaneous_sort",
]
