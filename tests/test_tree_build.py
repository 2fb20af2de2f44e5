import numpy as np
import pytest

from dualtree.config import RuntimeConfig
from dualtree.core.tree import SpatialTree, build_tree, select_tree_kind, tree_layout
from dualtree.core.metrics import get_metric
from dualtree.exceptions import InternalError, InvalidArgument, InvalidConfiguration

from tests.utils.datasets import TWO_TRIANGLES, gaussian_points, lat_lon_points


def _check_structure(tree: SpatialTree) -> None:
    node_data = tree.node_data
    assert np.array_equal(np.sort(tree.idx_array), np.arange(tree.n_samples))
    assert node_data.idx_start[0] == 0
    assert node_data.idx_end[0] == tree.n_samples

    live = [0]
    while live:
        i_node = live.pop()
        start, end = node_data.idx_start[i_node], node_data.idx_end[i_node]
        assert end > start
        if node_data.is_leaf[i_node]:
            assert end - start <= 2 * tree.leaf_size
            continue
        left, right = 2 * i_node + 1, 2 * i_node + 2
        assert node_data.idx_start[left] == start
        assert node_data.idx_end[left] == node_data.idx_start[right]
        assert node_data.idx_end[right] == end
        live.extend([left, right])


def _check_kd_boxes(tree: SpatialTree) -> None:
    for i_node in range(tree.n_nodes):
        if tree.node_data.idx_end[i_node] == tree.node_data.idx_start[i_node]:
            continue
        points = tree.data[tree.node_indices(i_node)]
        assert np.all(points >= tree.node_bounds[0, i_node])
        assert np.all(points <= tree.node_bounds[1, i_node])


def _check_ball_radii(tree: SpatialTree) -> None:
    for i_node in range(tree.n_nodes):
        if tree.node_data.idx_end[i_node] == tree.node_data.idx_start[i_node]:
            continue
        points = tree.data[tree.node_indices(i_node)]
        dist = tree.metric.dist_rows(tree.node_bounds[0, i_node], points)
        assert np.all(dist <= tree.node_data.radius[i_node] + 1e-12)


@pytest.mark.parametrize(
    "n_samples, leaf_size, expected",
    [(1, 40, (1, 1)), (40, 40, (1, 1)), (6, 2, (2, 3)), (100, 10, (4, 15)), (1000, 1, (10, 1023))],
)
def test_tree_layout(n_samples: int, leaf_size: int, expected):
    assert tree_layout(n_samples, leaf_size) == expected


@pytest.mark.parametrize("kind", ["kd", "ball"])
@pytest.mark.parametrize("leaf_size", [1, 3, 40])
def test_build_preserves_structure(kind: str, leaf_size: int):
    rng = np.random.default_rng(0)
    points = gaussian_points(rng, 257, 3)

    tree = build_tree(points, leaf_size=leaf_size, kind=kind)

    assert tree.kind == kind
    assert tree.n_samples == 257
    assert tree.n_features == 3
    assert tree.node_bounds.shape == ((2 if kind == "kd" else 1), tree.n_nodes, 3)
    _check_structure(tree)
    if kind == "kd":
        _check_kd_boxes(tree)
    else:
        _check_ball_radii(tree)


def test_undersized_node_array_raises_internal_error(monkeypatch: pytest.MonkeyPatch):
    rng = np.random.default_rng(11)
    points = gaussian_points(rng, 50, 2)
    monkeypatch.setattr("dualtree.core.tree.tree_layout", lambda n_samples, leaf_size: (1, 1))

    with pytest.raises(InternalError, match="more than the 8"):
        build_tree(points, leaf_size=4, kind="kd")


def test_array_bound_leaf_within_capacity_is_accepted(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr("dualtree.core.tree.tree_layout", lambda n_samples, leaf_size: (1, 1))

    tree = build_tree(TWO_TRIANGLES, leaf_size=3, kind="ball")

    assert tree.n_nodes == 1
    assert bool(tree.node_data.is_leaf[0])
    assert tree.node_size(0) == 6


def test_leaf_size_one_puts_one_point_per_bottom_leaf():
    rng = np.random.default_rng(1)
    tree = build_tree(gaussian_points(rng, 64, 2), leaf_size=1, kind="kd")

    bottom = range(tree.n_nodes // 2, tree.n_nodes)
    sizes = [tree.node_size(i) for i in bottom if tree.node_data.is_leaf[i]]
    assert sizes
    assert max(sizes) <= 2


def test_tree_copies_and_freezes_data():
    points = TWO_TRIANGLES.copy()
    tree = build_tree(points, leaf_size=2, kind="kd")
    points[0, 0] = 99.0

    assert tree.data[0, 0] == 0.0
    with pytest.raises(ValueError):
        tree.data[0, 0] = 1.0
    with pytest.raises(ValueError):
        tree.idx_array[0] = 1


def test_single_point_tree():
    tree = build_tree([[1.0, 2.0]], leaf_size=5)

    assert tree.n_nodes == 1
    assert bool(tree.node_data.is_leaf[0])
    assert tree.node_size(0) == 1


def test_select_tree_kind_auto():
    config = RuntimeConfig(auto_ball_threshold=100)
    euclidean = get_metric("euclidean")

    assert select_tree_kind(10, 5, euclidean, "auto", config) == "kd"
    assert select_tree_kind(50, 5, euclidean, "auto", config) == "ball"
    assert select_tree_kind(10, 2, get_metric("haversine"), "auto", config) == "ball"
    assert select_tree_kind(50, 5, euclidean, "KD", config) == "kd"


def test_haversine_builds_ball_tree_only():
    rng = np.random.default_rng(2)
    points = lat_lon_points(rng, 50)

    tree = build_tree(points, metric="haversine", leaf_size=4)
    assert tree.kind == "ball"
    _check_ball_radii(tree)

    with pytest.raises(InvalidConfiguration, match="not valid for the kd tree"):
        SpatialTree(points, metric="haversine", kind="kd")


@pytest.mark.parametrize("metric", ["canberra", "hamming"])
def test_non_minkowski_metrics_need_ball_tree(metric: str):
    rng = np.random.default_rng(14)
    points = gaussian_points(rng, 60, 3)

    tree = build_tree(points, metric=metric, leaf_size=4)
    assert tree.kind == "ball"
    _check_ball_radii(tree)

    with pytest.raises(InvalidConfiguration, match="not valid for the kd tree"):
        SpatialTree(points, metric=metric, kind="kd")


@pytest.mark.parametrize(
    "points",
    [
        np.zeros((0, 3)),
        np.zeros(5),
        np.zeros((4, 0)),
        np.asarray([[0.0, np.nan]]),
        [["a", "b"]],
    ],
)
def test_invalid_point_matrices_rejected(points):
    with pytest.raises(InvalidConfiguration):
        build_tree(points)


@pytest.mark.parametrize("leaf_size", [0, -3, 2.5, True])
def test_invalid_leaf_size_rejected(leaf_size):
    with pytest.raises(InvalidConfiguration, match="leaf_size"):
        build_tree(TWO_TRIANGLES, leaf_size=leaf_size)


def test_unknown_kind_rejected():
    with pytest.raises(InvalidConfiguration, match="Unknown tree kind"):
        build_tree(TWO_TRIANGLES, kind="octree")


def test_check_queries_validates_dimensions():
    tree = build_tree(TWO_TRIANGLES, leaf_size=2)

    assert tree.check_queries([0.0, 0.0]).shape == (1, 2)
    with pytest.raises(InvalidArgument, match="does not match"):
        tree.check_queries([[0.0, 0.0, 0.0]])
    with pytest.raises(InvalidArgument, match="finite"):
        tree.check_queries([[np.inf, 0.0]])


def test_numba_build_matches_structure():
    pytest.importorskip("numba")
    rng = np.random.default_rng(3)
    points = gaussian_points(rng, 300, 4)

    tree = build_tree(points, leaf_size=8, kind="kd", config=RuntimeConfig(enable_numba=True))

    _check_structure(tree)
    _check_kd_boxes(tree)
