import logging
import math

import numpy as np
import pytest

from dualtree.algo import BoruvkaSolver, BoruvkaState, compute_mst, core_distances, mutual_reachability, prim_mst
from dualtree.config import RuntimeConfig
from dualtree.core.tree import build_tree
from dualtree.exceptions import InternalError, InvalidArgument, InvalidConfiguration

from tests.utils import brute_force
from tests.utils.datasets import TWO_TRIANGLES, clustered_points, gaussian_points


def _expected_weight(points: np.ndarray, min_samples: int, alpha: float = 1.0) -> float:
    distances = brute_force.minkowski_distances(points, points)
    return brute_force.kruskal_weight(brute_force.mutual_reachability(distances, min_samples, alpha))


def _assert_spanning(mst, num_points: int) -> None:
    assert mst.num_edges == num_points - 1
    assert brute_force.count_components(num_points, mst.source, mst.sink) == 1
    assert np.all(mst.source != mst.sink)


def test_two_triangles_have_single_bridge():
    mst = compute_mst(TWO_TRIANGLES, min_samples=1, leaf_size=2, kind="kd")

    _assert_spanning(mst, 6)
    long_edges = mst.weight[mst.weight > 1.0 + 1e-9]
    assert long_edges.shape == (1,)
    assert long_edges[0] == pytest.approx(math.sqrt(181.0))
    assert mst.total_weight == pytest.approx(4.0 + math.sqrt(181.0))
    bridge = int(np.argmax(mst.weight))
    assert {mst.source[bridge] < 3, mst.sink[bridge] < 3} == {True, False}


@pytest.mark.parametrize("kind", ["kd", "ball"])
@pytest.mark.parametrize("min_samples", [1, 3, 8])
@pytest.mark.parametrize("leaf_size", [1, 4, 30])
def test_boruvka_matches_bruteforce_weight(kind: str, min_samples: int, leaf_size: int):
    rng = np.random.default_rng(0)
    points = clustered_points(rng, clusters=4, per_cluster=30, dimension=2)

    mst = compute_mst(points, min_samples=min_samples, leaf_size=leaf_size, kind=kind)

    _assert_spanning(mst, points.shape[0])
    assert mst.total_weight == pytest.approx(_expected_weight(points, min_samples), rel=1e-9)


@pytest.mark.parametrize("kind", ["kd", "ball"])
@pytest.mark.parametrize("alpha", [0.5, 1.0, 2.5])
def test_boruvka_alpha_scaling(kind: str, alpha: float):
    rng = np.random.default_rng(1)
    points = gaussian_points(rng, 150, 3)

    mst = compute_mst(points, min_samples=4, alpha=alpha, leaf_size=6, kind=kind)

    _assert_spanning(mst, 150)
    assert mst.total_weight == pytest.approx(_expected_weight(points, 4, alpha), rel=1e-9)


@pytest.mark.parametrize("metric, p", [("manhattan", 1.0), ("chebyshev", math.inf)])
def test_boruvka_other_metrics(metric: str, p: float):
    rng = np.random.default_rng(2)
    points = gaussian_points(rng, 120, 2)

    mst = compute_mst(points, min_samples=3, metric=metric, leaf_size=5, kind="kd")

    distances = brute_force.minkowski_distances(points, points, p)
    expected = brute_force.kruskal_weight(brute_force.mutual_reachability(distances, 3))
    assert mst.total_weight == pytest.approx(expected, rel=1e-9)


def test_prim_reference_agrees_with_boruvka():
    rng = np.random.default_rng(3)
    points = clustered_points(rng, clusters=3, per_cluster=40, dimension=3)

    boruvka = compute_mst(points, min_samples=5, leaf_size=8)
    prims = compute_mst(points, min_samples=5, algorithm="prims")

    _assert_spanning(prims, points.shape[0])
    assert boruvka.total_weight == pytest.approx(prims.total_weight, rel=1e-9)
    np.testing.assert_allclose(np.sort(boruvka.weight), np.sort(prims.weight), rtol=1e-9)


def test_approximate_mode_still_spans():
    rng = np.random.default_rng(4)
    points = clustered_points(rng, clusters=5, per_cluster=25, dimension=2)
    exact = _expected_weight(points, 4)

    mst = compute_mst(points, min_samples=4, approximate=True, leaf_size=6)

    _assert_spanning(mst, points.shape[0])
    assert mst.total_weight >= exact - 1e-9


def test_compute_mst_reuses_existing_tree():
    rng = np.random.default_rng(5)
    points = gaussian_points(rng, 90, 2)
    tree = build_tree(points, leaf_size=5, kind="ball")

    mst = compute_mst(tree, min_samples=2)

    assert mst.total_weight == pytest.approx(_expected_weight(points, 2), rel=1e-9)


def test_compute_mst_rebuilds_tree_for_new_leaf_size(monkeypatch: pytest.MonkeyPatch):
    rng = np.random.default_rng(13)
    points = gaussian_points(rng, 90, 2)
    tree = build_tree(points, leaf_size=20, kind="ball")
    built = []

    def recording_build_tree(*args, **kwargs):
        rebuilt_tree = build_tree(*args, **kwargs)
        built.append(rebuilt_tree)
        return rebuilt_tree

    monkeypatch.setattr("dualtree.algo.mst.build_tree", recording_build_tree)

    same = compute_mst(tree, min_samples=2, leaf_size=20)
    assert built == []

    rebuilt = compute_mst(tree, min_samples=2, leaf_size=3)
    assert len(built) == 1
    assert built[0].leaf_size == 3
    assert built[0].kind == "ball"
    assert rebuilt.total_weight == pytest.approx(same.total_weight, rel=1e-9)
    assert rebuilt.total_weight == pytest.approx(_expected_weight(points, 2), rel=1e-9)


def test_solver_state_machine_and_core_distances():
    rng = np.random.default_rng(6)
    points = gaussian_points(rng, 80, 2)
    tree = build_tree(points, leaf_size=4)
    solver = BoruvkaSolver(tree, min_samples=3)

    assert solver.state is BoruvkaState.INITIALIZED
    solver.compute_bounds()
    assert solver.state is BoruvkaState.COMPONENTS_MERGED
    assert solver.num_components < 80

    mst = solver.spanning_tree()

    assert solver.state is BoruvkaState.DONE
    assert solver.num_components == 1
    assert solver.num_edges == 79
    distances = brute_force.minkowski_distances(points, points)
    np.testing.assert_allclose(solver.core_distance, brute_force.core_distances(distances, 3), atol=1e-12)
    _assert_spanning(mst, 80)


def test_pass_without_progress_raises_internal_error(monkeypatch: pytest.MonkeyPatch):
    rng = np.random.default_rng(12)
    tree = build_tree(clustered_points(rng, clusters=3, per_cluster=20, dimension=2), leaf_size=4)
    solver = BoruvkaSolver(tree, min_samples=3)
    solver.compute_bounds()
    assert solver.num_components > 1
    monkeypatch.setattr(solver, "dual_tree_traversal", lambda node1, node2: None)

    with pytest.raises(InternalError, match="found no edge"):
        solver.spanning_tree()

    assert solver.num_passes == 1
    assert solver.num_edges < 59


def test_core_distances_monotone_in_min_samples():
    rng = np.random.default_rng(7)
    tree = build_tree(gaussian_points(rng, 100, 3), leaf_size=6)

    previous = core_distances(tree, 1)
    for min_samples in (2, 4, 9):
        current = core_distances(tree, min_samples)
        assert np.all(current >= previous - 1e-12)
        previous = current


def test_mutual_reachability_matrix():
    distances = np.asarray([[0.0, 2.0], [2.0, 0.0]])
    core = np.asarray([1.0, 3.0])

    reach = mutual_reachability(distances, core, alpha=0.5)

    np.testing.assert_allclose(reach, [[1.0, 4.0], [4.0, 3.0]])


def test_prim_mst_accepts_tree_input():
    tree = build_tree(TWO_TRIANGLES, leaf_size=2)

    mst = prim_mst(tree, min_samples=1)

    assert mst.total_weight == pytest.approx(4.0 + math.sqrt(181.0))
    assert mst.sorted().weight[-1] == pytest.approx(math.sqrt(181.0))


def test_single_point_rejected():
    with pytest.raises(InvalidConfiguration, match="at least two points"):
        compute_mst([[0.0, 0.0]], min_samples=1)


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"min_samples": 0}, "min_samples must be positive"),
        ({"min_samples": 6}, "must be smaller"),
        ({"min_samples": 2.0}, "must be an integer"),
        ({"min_samples": 1, "alpha": 0.0}, "alpha must be positive"),
        ({"min_samples": 1, "algorithm": "kruskal"}, "Unknown MST algorithm"),
    ],
)
def test_invalid_mst_arguments(kwargs, message: str):
    with pytest.raises(InvalidArgument, match=message):
        compute_mst(TWO_TRIANGLES, leaf_size=2, **kwargs)


def test_boruvka_logs_passes(caplog: pytest.LogCaptureFixture):
    caplog.set_level(logging.DEBUG, logger="dualtree.algo.boruvka")
    rng = np.random.default_rng(8)

    compute_mst(gaussian_points(rng, 60, 2), min_samples=2, leaf_size=4, config=RuntimeConfig())

    messages = [record.getMessage() for record in caplog.records]
    assert any(message.startswith("pass 1: components=") for message in messages)
    assert any("op=boruvka_mst" in message and "passes=" in message for message in messages)


def test_numba_boruvka_matches_bruteforce():
    pytest.importorskip("numba")
    rng = np.random.default_rng(9)
    points = clustered_points(rng, clusters=3, per_cluster=30, dimension=2)

    mst = compute_mst(points, min_samples=3, leaf_size=5, config=RuntimeConfig(enable_numba=True))

    assert mst.total_weight == pytest.approx(_expected_weight(points, 3), rel=1e-9)
