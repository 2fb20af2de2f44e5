import numpy as np
import pytest

from dualtree.core.heaps import NeighborsHeap, NodeHeap, NodeHeapItem, sort_rows


@pytest.mark.parametrize("use_numba", [False, True])
def test_neighbors_heap_keeps_k_smallest(use_numba: bool):
    if use_numba:
        pytest.importorskip("numba")
    rng = np.random.default_rng(0)
    values = rng.uniform(size=(3, 50))
    heap = NeighborsHeap(3, 5, use_numba=use_numba)

    for row in range(3):
        for idx, value in enumerate(values[row]):
            heap.push(row, float(value), idx)

    distances, indices = heap.get_arrays(sort=True)
    expected = np.sort(values, axis=1)[:, :5]
    np.testing.assert_allclose(distances, expected)
    np.testing.assert_array_equal(np.take_along_axis(values, indices, axis=1), distances)


def test_neighbors_heap_largest_tracks_threshold():
    heap = NeighborsHeap(1, 2)

    assert heap.largest(0) == np.inf
    heap.push(0, 3.0, 0)
    assert heap.largest(0) == np.inf
    heap.push(0, 1.0, 1)
    assert heap.largest(0) == 3.0
    heap.push(0, 2.0, 2)
    assert heap.largest(0) == 2.0
    # values not below the current k-th best are ignored
    heap.push(0, 2.0, 3)
    distances, indices = heap.get_arrays()
    np.testing.assert_array_equal(indices[0], [1, 2])


@pytest.mark.parametrize("use_numba", [False, True])
def test_sort_rows_permutes_indices(use_numba: bool):
    if use_numba:
        pytest.importorskip("numba")
    distances = np.asarray([[3.0, 1.0, 2.0], [0.5, 0.2, 0.9]])
    indices = np.asarray([[10, 11, 12], [20, 21, 22]], dtype=np.int64)

    sort_rows(distances, indices, use_numba=use_numba)

    np.testing.assert_allclose(distances, [[1.0, 2.0, 3.0], [0.2, 0.5, 0.9]])
    np.testing.assert_array_equal(indices, [[11, 12, 10], [21, 20, 22]])


def test_node_heap_orders_by_value_then_insertion():
    heap = NodeHeap()
    heap.push(NodeHeapItem(2.0, 5))
    heap.push(NodeHeapItem(1.0, 3, 4))
    heap.push(NodeHeapItem(1.0, 7, 8))

    assert len(heap) == 3
    assert heap.peek() == NodeHeapItem(1.0, 3, 4)
    assert heap.pop() == NodeHeapItem(1.0, 3, 4)
    assert heap.pop() == NodeHeapItem(1.0, 7, 8)
    assert heap.pop() == NodeHeapItem(2.0, 5, 0)
    assert len(heap) == 0

    heap.push(NodeHeapItem(0.0, 1))
    heap.clear()
    assert len(heap) == 0
