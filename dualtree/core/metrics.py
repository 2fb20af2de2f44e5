from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Protocol, Tuple

import numpy as np

from dualtree.config import RuntimeConfig, resolve_config
from dualtree.exceptions import InvalidConfiguration

ArrayLike = Any


class PairwiseKernel(Protocol):
    def __call__(self, lhs: np.ndarray, rhs: np.ndarray) -> np.ndarray:
        ...


@dataclass(frozen=True)
class Metric:
    """Distance collaborator shared by the trees, the query engine and the MST solver.

    ``reduced_kernel`` returns the *reduced* distance matrix between two row
    sets: any quantity that is monotone in the true distance and cheaper to
    evaluate (the squared distance for Euclidean). ``to_dist``/``to_rdist``
    convert between the two spaces and accept scalars or arrays.
    """

    name: str
    p: float
    reduced_kernel: PairwiseKernel
    to_dist: Callable[[ArrayLike], ArrayLike]
    to_rdist: Callable[[ArrayLike], ArrayLike]
    minkowski: bool = True
    n_features: int | None = None

    @property
    def kd_compatible(self) -> bool:
        return self.minkowski

    def pairwise_rdist(self, lhs: ArrayLike, rhs: ArrayLike) -> np.ndarray:
        lhs_arr = np.atleast_2d(np.asarray(lhs, dtype=np.float64))
        rhs_arr = np.atleast_2d(np.asarray(rhs, dtype=np.float64))
        if lhs_arr.shape[0] == 0 or rhs_arr.shape[0] == 0:
            return np.zeros((lhs_arr.shape[0], rhs_arr.shape[0]), dtype=np.float64)
        return self.reduced_kernel(lhs_arr, rhs_arr)

    def pairwise(self, lhs: ArrayLike, rhs: ArrayLike) -> np.ndarray:
        return np.asarray(self.to_dist(self.pairwise_rdist(lhs, rhs)), dtype=np.float64)

    def rdist_rows(self, point: np.ndarray, rows: np.ndarray) -> np.ndarray:
        return self.pairwise_rdist(point[None, :], rows)[0]

    def dist_rows(self, point: np.ndarray, rows: np.ndarray) -> np.ndarray:
        return np.asarray(self.to_dist(self.rdist_rows(point, rows)), dtype=np.float64)

    def rdist(self, lhs: ArrayLike, rhs: ArrayLike) -> float:
        return float(self.pairwise_rdist(lhs, rhs)[0, 0])

    def dist(self, lhs: ArrayLike, rhs: ArrayLike) -> float:
        return float(self.to_dist(self.rdist(lhs, rhs)))

    def rdist_to_dist(self, value: ArrayLike) -> ArrayLike:
        return self.to_dist(value)

    def dist_to_rdist(self, value: ArrayLike) -> ArrayLike:
        return self.to_rdist(value)

    def check_features(self, n_features: int) -> None:
        if self.n_features is not None and n_features != self.n_features:
            raise InvalidConfiguration(
                f"Metric '{self.name}' requires {self.n_features} features, got {n_features}."
            )


class MetricRegistry:
    """Minimal registry for runtime-selectable metrics."""

    def __init__(self) -> None:
        self._metrics: Dict[str, Metric] = {}

    def register(self, metric: Metric, *, overwrite: bool = False) -> None:
        name = metric.name.lower()
        if not overwrite and name in self._metrics:
            raise ValueError(f"Metric '{metric.name}' already registered.")
        self._metrics[name] = metric

    def get(self, name: str) -> Metric:
        key = name.lower()
        if key not in self._metrics:
            raise KeyError(f"Metric '{name}' not registered.")
        return self._metrics[key]

    def names(self) -> Tuple[str, ...]:
        return tuple(sorted(self._metrics.keys()))


def _squared_euclidean(lhs: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    diff = lhs[:, None, :] - rhs[None, :, :]
    return np.einsum("ijk,ijk->ij", diff, diff)


def _manhattan(lhs: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    return np.abs(lhs[:, None, :] - rhs[None, :, :]).sum(axis=-1)


def _chebyshev(lhs: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    return np.abs(lhs[:, None, :] - rhs[None, :, :]).max(axis=-1)


def _power_sum(p: float) -> PairwiseKernel:
    def kernel(lhs: np.ndarray, rhs: np.ndarray) -> np.ndarray:
        return (np.abs(lhs[:, None, :] - rhs[None, :, :]) ** p).sum(axis=-1)

    return kernel


def _haversine(lhs: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    # rows are (latitude, longitude) in radians; result is sin^2 of half the arc
    lat_l = lhs[:, None, 0]
    lat_r = rhs[None, :, 0]
    sin_lat = np.sin(0.5 * (lat_l - lat_r))
    sin_lon = np.sin(0.5 * (lhs[:, None, 1] - rhs[None, :, 1]))
    return sin_lat * sin_lat + np.cos(lat_l) * np.cos(lat_r) * sin_lon * sin_lon


def _canberra(lhs: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    diff = np.abs(lhs[:, None, :] - rhs[None, :, :])
    denom = np.abs(lhs[:, None, :]) + np.abs(rhs[None, :, :])
    # coordinates where both rows are zero contribute nothing
    ratio = np.divide(diff, denom, out=np.zeros_like(diff), where=denom > 0)
    return ratio.sum(axis=-1)


def _hamming(lhs: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    return (lhs[:, None, :] != rhs[None, :, :]).mean(axis=-1)


def _identity(value: ArrayLike) -> ArrayLike:
    return value


def _haversine_to_dist(value: ArrayLike) -> ArrayLike:
    return 2.0 * np.arcsin(np.sqrt(np.clip(value, 0.0, 1.0)))


def _haversine_to_rdist(value: ArrayLike) -> ArrayLike:
    # sin^2(d/2) is only monotone on [0, pi]
    half = 0.5 * np.minimum(value, math.pi)
    return np.sin(half) ** 2


def minkowski_metric(p: float, *, name: str = "minkowski") -> Metric:
    """Return the Minkowski metric of order ``p`` (``p >= 1``, ``inf`` allowed)."""

    p = float(p)
    if not p >= 1.0:
        raise InvalidConfiguration(f"Minkowski order p must be >= 1, got {p}.")
    if p == 2.0:
        return Metric(name=name, p=p, reduced_kernel=_squared_euclidean, to_dist=np.sqrt, to_rdist=np.square)
    if p == 1.0:
        return Metric(name=name, p=p, reduced_kernel=_manhattan, to_dist=_identity, to_rdist=_identity)
    if math.isinf(p):
        return Metric(name=name, p=p, reduced_kernel=_chebyshev, to_dist=_identity, to_rdist=_identity)
    inverse = 1.0 / p
    return Metric(
        name=name,
        p=p,
        reduced_kernel=_power_sum(p),
        to_dist=lambda value: np.power(value, inverse),
        to_rdist=lambda value: np.power(value, p),
    )


def _load_runtime_registry() -> MetricRegistry:
    registry = MetricRegistry()
    registry.register(minkowski_metric(2.0, name="euclidean"))
    registry.register(minkowski_metric(1.0, name="manhattan"))
    registry.register(minkowski_metric(math.inf, name="chebyshev"))
    registry.register(minkowski_metric(2.0, name="minkowski"))
    registry.register(
        Metric(
            name="haversine",
            p=2.0,
            reduced_kernel=_haversine,
            to_dist=_haversine_to_dist,
            to_rdist=_haversine_to_rdist,
            minkowski=False,
            n_features=2,
        )
    )
    for name, kernel in (("canberra", _canberra), ("hamming", _hamming)):
        registry.register(
            Metric(
                name=name,
                p=1.0,
                reduced_kernel=kernel,
                to_dist=_identity,
                to_rdist=_identity,
                minkowski=False,
            )
        )
    return registry


_REGISTRY = _load_runtime_registry()


def available_metrics() -> Tuple[str, ...]:
    return _REGISTRY.names()


def get_metric(name: str | None = None, *, p: float | None = None) -> Metric:
    """Return the metric registered as ``name`` (defaults to the runtime metric).

    ``p`` is only meaningful for ``minkowski``.
    """

    metric_name = (name or resolve_config(None).metric).lower()
    if metric_name == "minkowski" and p is not None:
        return minkowski_metric(p)
    if p is not None:
        raise InvalidConfiguration(f"Metric '{metric_name}' does not take a 'p' parameter.")
    try:
        return _REGISTRY.get(metric_name)
    except KeyError as exc:
        raise InvalidConfiguration(
            f"Unknown metric '{metric_name}'. Expected one of {available_metrics()}."
        ) from exc


def resolve_metric(metric: str | Metric | None, config: RuntimeConfig | None = None) -> Metric:
    if isinstance(metric, Metric):
        return metric
    if metric is None:
        return get_metric(resolve_config(config).metric)
    return get_metric(metric)


__all__ = [
    "Metric",
    "MetricRegistry",
    "PairwiseKernel",
    "available_metrics",
    "get_metric",
    "minkowski_metric",
    "resolve_metric",
]
