from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict

import numpy as np

from dualtree.config import RuntimeConfig, resolve_config
from dualtree.core.tree import SpatialTree
from dualtree.diagnostics import log_operation
from dualtree.exceptions import InvalidArgument
from dualtree.logging import get_logger

LOGGER = get_logger("queries.density")

_LOG_2 = math.log(2.0)
_LOG_2PI = math.log(2.0 * math.pi)


def _log_vn(n: int) -> float:
    """Log volume of the unit ball in ``n`` dimensions."""
    return 0.5 * n * math.log(math.pi) - math.lgamma(0.5 * n + 1.0)


def _log_sn(n: int) -> float:
    """Log surface area of the unit sphere embedded in ``n + 1`` dimensions."""
    return _LOG_2PI + _log_vn(n - 1)


def _logsubexp(a: float, b: float) -> float:
    if a <= b:
        return -math.inf
    return a + math.log1p(-math.exp(b - a))


def _logaddexp(a: float, b: float) -> float:
    return float(np.logaddexp(a, b))


def _masked_log(values: np.ndarray, inside: np.ndarray) -> np.ndarray:
    out = np.full(values.shape, -np.inf, dtype=np.float64)
    with np.errstate(divide="ignore"):
        out[inside] = np.log(values[inside])
    return out


def _gaussian(dist: np.ndarray, h: float) -> np.ndarray:
    return -0.5 * (dist * dist) / (h * h)


def _tophat(dist: np.ndarray, h: float) -> np.ndarray:
    return np.where(dist < h, 0.0, -np.inf)


def _epanechnikov(dist: np.ndarray, h: float) -> np.ndarray:
    return _masked_log(1.0 - (dist * dist) / (h * h), dist < h)


def _exponential(dist: np.ndarray, h: float) -> np.ndarray:
    return -dist / h


def _linear(dist: np.ndarray, h: float) -> np.ndarray:
    return _masked_log(1.0 - dist / h, dist < h)


def _cosine(dist: np.ndarray, h: float) -> np.ndarray:
    return _masked_log(np.cos(0.5 * math.pi * dist / h), dist < h)


def _cosine_norm(d: int) -> float:
    factor = 0.0
    tmp = 2.0 / math.pi
    for k in range(1, d + 1, 2):
        factor += tmp
        tmp *= -(d - k) * (d - k - 1) * (2.0 / math.pi) ** 2
    return math.log(factor) + _log_sn(d - 1)


@dataclass(frozen=True)
class Kernel:
    """Log-kernel profile plus the log of its normalisation integral for unit bandwidth."""

    name: str
    log_profile: Callable[[np.ndarray, float], np.ndarray]
    log_norm: Callable[[int], float]

    def log_kernel(self, dist: Any, h: float) -> Any:
        scalar = np.ndim(dist) == 0
        values = self.log_profile(np.atleast_1d(np.asarray(dist, dtype=np.float64)), h)
        return float(values[0]) if scalar else values

    def log_kernel_norm(self, h: float, n_features: int) -> float:
        return -self.log_norm(n_features) - n_features * math.log(h)


KERNELS: Dict[str, Kernel] = {
    "gaussian": Kernel("gaussian", _gaussian, lambda d: 0.5 * d * _LOG_2PI),
    "tophat": Kernel("tophat", _tophat, _log_vn),
    "epanechnikov": Kernel(
        "epanechnikov", _epanechnikov, lambda d: _log_vn(d) + math.log(2.0 / (d + 2.0))
    ),
    "exponential": Kernel(
        "exponential", _exponential, lambda d: _log_sn(d - 1) + math.lgamma(d)
    ),
    "linear": Kernel("linear", _linear, lambda d: _log_vn(d) - math.log(d + 1.0)),
    "cosine": Kernel("cosine", _cosine, _cosine_norm),
}


def get_kernel(name: str) -> Kernel:
    key = name.strip().lower()
    if key not in KERNELS:
        raise InvalidArgument(f"Unknown kernel '{name}'. Expected one of {tuple(sorted(KERNELS))}.")
    return KERNELS[key]


@dataclass
class _DensityBounds:
    """Running log-space lower bound and spread of one query's density."""

    log_min: float
    log_spread: float


@dataclass(frozen=True)
class _DensityContext:
    tree: SpatialTree
    kernel: Kernel
    h: float
    log_knorm: float
    log_atol: float
    log_rtol: float
    log_n_samples: float


def _node_bounds(ctx: _DensityContext, i_node: int, point: np.ndarray) -> tuple[float, float]:
    tree = ctx.tree
    log_count = math.log(tree.node_size(i_node))
    dist_lb, dist_ub = tree.bounds.min_max_dist(tree, i_node, point)
    log_min = log_count + ctx.kernel.log_kernel(dist_ub, ctx.h)
    log_max = log_count + ctx.kernel.log_kernel(dist_lb, ctx.h)
    return log_min, _logsubexp(log_max, log_min)


def _kde_single_depthfirst(
    ctx: _DensityContext,
    i_node: int,
    point: np.ndarray,
    local_log_min: float,
    local_log_spread: float,
    bounds: _DensityBounds,
) -> None:
    tree = ctx.tree
    log_node_size = math.log(tree.node_size(i_node))

    # node contribution already pinned down to within tolerance
    if ctx.log_knorm + local_log_spread - log_node_size + ctx.log_n_samples <= _logaddexp(
        ctx.log_atol, ctx.log_rtol + ctx.log_knorm + local_log_min
    ):
        return
    # whole estimate already pinned down to within tolerance
    if ctx.log_knorm + bounds.log_spread <= _logaddexp(
        ctx.log_atol, ctx.log_rtol + ctx.log_knorm + bounds.log_min
    ):
        return

    if tree.node_data.is_leaf[i_node]:
        bounds.log_min = _logsubexp(bounds.log_min, local_log_min)
        bounds.log_spread = _logsubexp(bounds.log_spread, local_log_spread)
        indices = tree.node_indices(i_node)
        dist = tree.metric.dist_rows(point, tree.data[indices])
        contributions = ctx.kernel.log_kernel(dist, ctx.h)
        bounds.log_min = _logaddexp(bounds.log_min, float(np.logaddexp.reduce(contributions)))
        return

    left = 2 * i_node + 1
    right = left + 1
    left_min, left_spread = _node_bounds(ctx, left, point)
    right_min, right_spread = _node_bounds(ctx, right, point)

    bounds.log_min = _logsubexp(bounds.log_min, local_log_min)
    bounds.log_min = _logaddexp(bounds.log_min, left_min)
    bounds.log_min = _logaddexp(bounds.log_min, right_min)
    bounds.log_spread = _logsubexp(bounds.log_spread, local_log_spread)
    bounds.log_spread = _logaddexp(bounds.log_spread, left_spread)
    bounds.log_spread = _logaddexp(bounds.log_spread, right_spread)

    _kde_single_depthfirst(ctx, left, point, left_min, left_spread, bounds)
    _kde_single_depthfirst(ctx, right, point, right_min, right_spread, bounds)


def kernel_density(
    tree: SpatialTree,
    query_points: Any,
    h: float,
    *,
    kernel: str = "gaussian",
    atol: float = 0.0,
    rtol: float = 1e-8,
    return_log: bool = False,
    config: RuntimeConfig | None = None,
) -> np.ndarray:
    """Kernel density estimate at each query row, summed (not averaged) over stored points.

    The result is accurate to ``atol + rtol * density``; node pairs whose
    contribution is bounded tightly enough are never expanded.
    """

    runtime = resolve_config(config)
    chosen = get_kernel(kernel)
    if not (math.isfinite(h) and h > 0):
        raise InvalidArgument(f"Bandwidth h must be positive and finite, got {h}.")
    if atol < 0 or rtol < 0:
        raise InvalidArgument("atol and rtol must be non-negative.")
    batch = tree.check_queries(query_points)

    ctx = _DensityContext(
        tree=tree,
        kernel=chosen,
        h=float(h),
        log_knorm=chosen.log_kernel_norm(float(h), tree.n_features),
        log_atol=math.log(atol) if atol > 0 else -math.inf,
        log_rtol=math.log(rtol) if rtol > 0 else -math.inf,
        log_n_samples=math.log(tree.n_samples),
    )
    with log_operation(LOGGER, "kernel_density", config=runtime) as op_log:
        log_density = np.empty(batch.shape[0], dtype=np.float64)
        for row, point in enumerate(batch):
            log_min, log_spread = _node_bounds(ctx, 0, point)
            bounds = _DensityBounds(log_min=log_min, log_spread=log_spread)
            _kde_single_depthfirst(ctx, 0, point, log_min, log_spread, bounds)
            log_density[row] = _logaddexp(bounds.log_min, bounds.log_spread - _LOG_2)
        log_density += ctx.log_knorm
        op_log.add_metadata(queries=batch.shape[0], kernel=chosen.name, h=float(h))

    if return_log:
        return log_density
    return np.exp(log_density)


def _two_point_single(
    tree: SpatialTree,
    i_node: int,
    point: np.ndarray,
    radii: np.ndarray,
    counts: np.ndarray,
    i_min: int,
    i_max: int,
) -> None:
    dist_lb, dist_ub = tree.bounds.min_max_dist(tree, i_node, point)
    while i_min < i_max and dist_lb > radii[i_min]:
        i_min += 1
    n_points = tree.node_size(i_node)
    while i_max > i_min and dist_ub <= radii[i_max - 1]:
        counts[i_max - 1] += n_points
        i_max -= 1
    if i_min >= i_max:
        return
    if tree.node_data.is_leaf[i_node]:
        indices = tree.node_indices(i_node)
        dist = tree.metric.dist_rows(point, tree.data[indices])
        counts[i_min:i_max] += (dist[None, :] <= radii[i_min:i_max, None]).sum(axis=1)
        return
    for child in (2 * i_node + 1, 2 * i_node + 2):
        _two_point_single(tree, child, point, radii, counts, i_min, i_max)


def _two_point_dual(
    tree: SpatialTree,
    i_node1: int,
    other: SpatialTree,
    i_node2: int,
    radii: np.ndarray,
    counts: np.ndarray,
    i_min: int,
    i_max: int,
) -> None:
    dist_lb = tree.bounds.min_dist_dual(tree, i_node1, other, i_node2)
    dist_ub = tree.bounds.max_dist_dual(tree, i_node1, other, i_node2)
    while i_min < i_max and dist_lb > radii[i_min]:
        i_min += 1
    n_pairs = tree.node_size(i_node1) * other.node_size(i_node2)
    while i_max > i_min and dist_ub <= radii[i_max - 1]:
        counts[i_max - 1] += n_pairs
        i_max -= 1
    if i_min >= i_max:
        return

    leaf1 = bool(tree.node_data.is_leaf[i_node1])
    leaf2 = bool(other.node_data.is_leaf[i_node2])
    if leaf1 and leaf2:
        dist = tree.metric.pairwise(
            other.data[other.node_indices(i_node2)], tree.data[tree.node_indices(i_node1)]
        ).ravel()
        counts[i_min:i_max] += (dist[None, :] <= radii[i_min:i_max, None]).sum(axis=1)
        return
    children1 = (i_node1,) if leaf1 else (2 * i_node1 + 1, 2 * i_node1 + 2)
    children2 = (i_node2,) if leaf2 else (2 * i_node2 + 1, 2 * i_node2 + 2)
    for child1 in children1:
        for child2 in children2:
            _two_point_dual(tree, child1, other, child2, radii, counts, i_min, i_max)


def two_point_correlation(
    tree: SpatialTree,
    query_points: Any,
    r: Any,
    *,
    dual_tree: bool = False,
    config: RuntimeConfig | None = None,
) -> np.ndarray:
    """Count ``(query, stored point)`` pairs within each radius of ``r`` (inclusive).

    Counts come back in the order the radii were given.
    """

    runtime = resolve_config(config)
    radii = np.atleast_1d(np.asarray(r, dtype=np.float64))
    if radii.ndim != 1:
        raise InvalidArgument("Radii must be a scalar or a 1-D sequence.")
    if np.isnan(radii).any():
        raise InvalidArgument("Radii must not be NaN.")
    batch = tree.check_queries(query_points)

    order = np.argsort(radii, kind="stable")
    sorted_radii = radii[order]
    counts = np.zeros(radii.shape[0], dtype=np.int64)
    with log_operation(LOGGER, "two_point_correlation", config=runtime) as op_log:
        if batch.shape[0] and radii.shape[0]:
            if dual_tree:
                other = SpatialTree(
                    batch,
                    leaf_size=tree.leaf_size,
                    metric=tree.metric,
                    kind=tree.kind,
                    config=runtime,
                )
                _two_point_dual(tree, 0, other, 0, sorted_radii, counts, 0, radii.shape[0])
            else:
                for point in batch:
                    _two_point_single(tree, 0, point, sorted_radii, counts, 0, radii.shape[0])
        op_log.add_metadata(queries=batch.shape[0], radii=radii.shape[0], dual_tree=bool(dual_tree))

    result = np.empty_like(counts)
    result[order] = counts
    return result


__all__ = [
    "KERNELS",
    "Kernel",
    "get_kernel",
    "kernel_density",
    "two_point_correlation",
]
