import math

import numpy as np
import pytest

from dualtree.core.tree import build_tree
from dualtree.exceptions import InvalidArgument
from dualtree.queries import KERNELS, get_kernel, kernel_density, two_point_correlation

from tests.utils import brute_force
from tests.utils.datasets import TWO_TRIANGLES, gaussian_dataset


def _bruteforce_density(points: np.ndarray, queries: np.ndarray, h: float, kernel: str) -> np.ndarray:
    chosen = get_kernel(kernel)
    distances = brute_force.minkowski_distances(queries, points)
    log_values = chosen.log_kernel(distances.ravel(), h).reshape(distances.shape)
    log_norm = chosen.log_kernel_norm(h, points.shape[1])
    return np.exp(np.logaddexp.reduce(log_values, axis=1) + log_norm)


def test_gaussian_density_matches_closed_form():
    rng = np.random.default_rng(0)
    points, queries = gaussian_dataset(rng, tree_points=300, queries=15, dimension=2)
    tree = build_tree(points, leaf_size=10)
    h = 0.4

    density = kernel_density(tree, queries, h, kernel="gaussian", rtol=1e-10)

    sq = brute_force.minkowski_distances(queries, points) ** 2
    expected = np.exp(-0.5 * sq / h ** 2).sum(axis=1) / (2.0 * math.pi * h ** 2)
    np.testing.assert_allclose(density, expected, rtol=1e-8)


@pytest.mark.parametrize("kernel", sorted(KERNELS))
@pytest.mark.parametrize("kind", ["kd", "ball"])
def test_density_matches_bruteforce_for_every_kernel(kernel: str, kind: str):
    rng = np.random.default_rng(1)
    points, queries = gaussian_dataset(rng, tree_points=200, queries=10, dimension=3)
    tree = build_tree(points, leaf_size=8, kind=kind)

    density = kernel_density(tree, queries, 0.9, kernel=kernel, rtol=1e-10)

    np.testing.assert_allclose(density, _bruteforce_density(points, queries, 0.9, kernel), rtol=1e-7, atol=1e-300)


def test_density_respects_relative_tolerance():
    rng = np.random.default_rng(2)
    points, queries = gaussian_dataset(rng, tree_points=500, queries=10, dimension=2)
    tree = build_tree(points, leaf_size=5)

    loose = kernel_density(tree, queries, 0.5, rtol=1e-2)
    exact = _bruteforce_density(points, queries, 0.5, "gaussian")

    assert np.all(np.abs(loose - exact) <= 1e-2 * exact + 1e-12)


def test_density_log_output():
    tree = build_tree(TWO_TRIANGLES, leaf_size=2)

    log_density = kernel_density(tree, [[0.0, 0.0]], 1.0, return_log=True)
    density = kernel_density(tree, [[0.0, 0.0]], 1.0)

    assert log_density[0] == pytest.approx(math.log(density[0]))


def test_tophat_density_counts_points_inside_bandwidth():
    tree = build_tree(TWO_TRIANGLES, leaf_size=2)

    density = kernel_density(tree, [[0.2, 0.2]], 1.5, kernel="tophat")

    # unit-volume normalisation of a disc with radius h in two dimensions
    assert density[0] == pytest.approx(3.0 / (math.pi * 1.5 ** 2))


def test_density_invalid_arguments():
    tree = build_tree(TWO_TRIANGLES, leaf_size=2)

    with pytest.raises(InvalidArgument, match="Unknown kernel"):
        kernel_density(tree, [[0.0, 0.0]], 1.0, kernel="triweight")
    with pytest.raises(InvalidArgument, match="Bandwidth"):
        kernel_density(tree, [[0.0, 0.0]], 0.0)
    with pytest.raises(InvalidArgument, match="non-negative"):
        kernel_density(tree, [[0.0, 0.0]], 1.0, atol=-1.0)


@pytest.mark.parametrize("kind", ["kd", "ball"])
@pytest.mark.parametrize("dual_tree", [False, True])
def test_two_point_correlation_matches_bruteforce(kind: str, dual_tree: bool):
    rng = np.random.default_rng(3)
    points, queries = gaussian_dataset(rng, tree_points=250, queries=40, dimension=2)
    tree = build_tree(points, leaf_size=7, kind=kind)
    radii = [1.0, 0.1, 0.5, 2.0]

    counts = two_point_correlation(tree, queries, radii, dual_tree=dual_tree)

    distances = brute_force.minkowski_distances(queries, points)
    expected = [int((distances <= r).sum()) for r in radii]
    np.testing.assert_array_equal(counts, expected)


def test_two_point_correlation_on_two_triangles():
    tree = build_tree(TWO_TRIANGLES, leaf_size=2)

    counts = tree.two_point_correlation(TWO_TRIANGLES, [0.5, 1.0, 20.0])

    # 6 self pairs, 4 ordered unit pairs per triangle, 36 pairs overall
    np.testing.assert_array_equal(counts, [6, 14, 36])
