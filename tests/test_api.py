import math

import numpy as np
import pytest

from dualtree import config as dt_config
from dualtree.api import NeighborIndex, Runtime
from dualtree.exceptions import InvalidArgument

from tests.utils.datasets import TWO_TRIANGLES, gaussian_points


@pytest.fixture(autouse=True)
def _reset_runtime():
    dt_config.reset_runtime_context()
    yield
    dt_config.reset_runtime_context()


def test_runtime_to_config_applies_overrides():
    base = dt_config.RuntimeConfig(leaf_size=40, metric="euclidean")
    runtime = Runtime(leaf_size=8, metric="Manhattan", diagnostics=False, log_level="debug")

    config = runtime.to_config(base)

    assert config.leaf_size == 8
    assert config.metric == "manhattan"
    assert config.enable_diagnostics is False
    assert config.log_level == "DEBUG"
    assert config.query_workers == base.query_workers


def test_runtime_rejects_invalid_overrides():
    with pytest.raises(ValueError, match="leaf_size must be positive"):
        Runtime(leaf_size=0).to_config(dt_config.RuntimeConfig())
    with pytest.raises(ValueError, match="Unsupported log level"):
        Runtime(log_level="loud").to_config(dt_config.RuntimeConfig())


def test_runtime_activate_installs_context():
    runtime = Runtime(query_workers=3, query_chunk_size=11)

    context = runtime.activate()

    assert dt_config.runtime_config() is context.config
    assert context.config.query_workers == 3
    assert context.config.query_chunk_size == 11


def test_runtime_round_trips_through_config():
    config = dt_config.RuntimeConfig(enable_numba=True, leaf_size=12, metric="chebyshev")

    runtime = Runtime.from_config(config)

    assert runtime.to_config(dt_config.RuntimeConfig()) == config
    updated = runtime.with_updates(leaf_size=5)
    assert updated.leaf_size == 5
    assert runtime.leaf_size == 12
    assert Runtime.from_active().leaf_size == dt_config.runtime_config().leaf_size


def test_runtime_describe_reports_overrides():
    summary = Runtime(leaf_size=9).describe()

    assert summary["leaf_size"] == 9
    assert "numba_version" in summary


def test_neighbor_index_requires_fit():
    index = NeighborIndex()

    with pytest.raises(InvalidArgument, match="call fit"):
        index.knn([[0.0, 0.0]], k=1)


def test_neighbor_index_end_to_end():
    index = NeighborIndex(runtime=Runtime(leaf_size=2), kind="kd").fit(TWO_TRIANGLES)

    assert index.tree is not None
    assert index.tree.leaf_size == 2
    assert index.tree.kind == "kd"

    nearest = index.nearest([[0.0, 0.0]])
    assert nearest.indices[0, 0] == 0

    neighbours = index.knn([[0.0, 0.0]], k=2, dual_tree=True)
    assert neighbours.indices[0, 1] in (1, 2)

    counts = index.radius([[10.0, 10.0]], 1.0, count_only=True)
    np.testing.assert_array_equal(counts, [3])

    pairs = index.two_point_correlation(TWO_TRIANGLES, [1.0])
    np.testing.assert_array_equal(pairs, [14])

    density = index.kernel_density([[0.2, 0.2]], 1.5, kernel="tophat")
    assert density[0] == pytest.approx(3.0 / (math.pi * 1.5 ** 2))

    mst = index.minimum_spanning_tree(min_samples=1)
    assert mst.total_weight == pytest.approx(4.0 + math.sqrt(181.0))


def test_neighbor_index_fit_returns_new_instance():
    rng = np.random.default_rng(0)
    index = NeighborIndex(kind="ball", metric="manhattan")

    fitted = index.fit(gaussian_points(rng, 50, 3))

    assert index.tree is None
    assert fitted.tree.kind == "ball"
    assert fitted.tree.metric.name == "manhattan"
