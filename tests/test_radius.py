import numpy as np
import pytest

from dualtree.config import RuntimeConfig
from dualtree.core.tree import build_tree
from dualtree.exceptions import InvalidArgument
from dualtree.queries import query_radius

from tests.utils import brute_force
from tests.utils.datasets import TWO_TRIANGLES, gaussian_dataset


@pytest.mark.parametrize("kind", ["kd", "ball"])
@pytest.mark.parametrize("leaf_size", [1, 5, 40])
def test_radius_matches_bruteforce(kind: str, leaf_size: int):
    rng = np.random.default_rng(0)
    points, queries = gaussian_dataset(rng, tree_points=300, queries=30, dimension=3)
    tree = build_tree(points, leaf_size=leaf_size, kind=kind)
    distances = brute_force.minkowski_distances(queries, points)

    result = query_radius(tree, queries, 0.8, return_distance=True, sort_results=True)

    for row, expected in enumerate(brute_force.radius(distances, 0.8)):
        assert sorted(result.indices[row].tolist()) == expected.tolist()
        np.testing.assert_allclose(result.distances[row], np.sort(distances[row, expected]))
        assert np.all(np.diff(result.distances[row]) >= 0)


def test_radius_is_inclusive_on_two_triangles():
    tree = build_tree(TWO_TRIANGLES, leaf_size=2)

    result = query_radius(tree, [[0.0, 0.0]], 1.0)

    assert sorted(result.indices[0].tolist()) == [0, 1, 2]
    assert result.distances is None


def test_per_query_radii_and_counts():
    tree = build_tree(TWO_TRIANGLES, leaf_size=2, kind="ball")
    queries = [[0.0, 0.0], [10.0, 10.0], [5.0, 5.0]]

    counts = query_radius(tree, queries, [0.5, 1.5, 20.0], count_only=True)

    assert counts.dtype == np.int64
    np.testing.assert_array_equal(counts, [1, 3, 6])


def test_count_only_matches_full_results():
    rng = np.random.default_rng(1)
    points, queries = gaussian_dataset(rng, tree_points=200, queries=20, dimension=2)
    tree = build_tree(points, leaf_size=6)

    counts = query_radius(tree, queries, 0.5, count_only=True)
    full = query_radius(tree, queries, 0.5)

    np.testing.assert_array_equal(counts, [len(row) for row in full.indices])


def test_infinite_radius_returns_everything():
    tree = build_tree(TWO_TRIANGLES, leaf_size=2)

    counts = query_radius(tree, [[3.0, 3.0]], np.inf, count_only=True)

    assert counts[0] == 6


def test_parallel_radius_matches_serial():
    rng = np.random.default_rng(2)
    points, queries = gaussian_dataset(rng, tree_points=250, queries=53, dimension=3)
    tree = build_tree(points, leaf_size=8)

    serial = query_radius(tree, queries, 0.7, config=RuntimeConfig())
    parallel = query_radius(tree, queries, 0.7, config=RuntimeConfig(query_workers=3, query_chunk_size=7))

    for lhs, rhs in zip(serial.indices, parallel.indices):
        assert sorted(lhs.tolist()) == sorted(rhs.tolist())


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"r": 0.0}, "Radius must be positive"),
        ({"r": -1.0}, "Radius must be positive"),
        ({"r": [1.0, 2.0]}, "one radius per query"),
        ({"r": 1.0, "count_only": True, "return_distance": True}, "cannot both be set"),
        ({"r": 1.0, "sort_results": True}, "requires return_distance"),
    ],
)
def test_invalid_radius_arguments(kwargs, message: str):
    tree = build_tree(TWO_TRIANGLES, leaf_size=2)

    with pytest.raises(InvalidArgument, match=message):
        query_radius(tree, [[0.0, 0.0]], **kwargs)
