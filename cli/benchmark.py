from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

import numpy as np
import psutil
import typer
from numpy.random import default_rng
from typing_extensions import Annotated

from dualtree import config as dt_config
from dualtree.algo.mst import compute_mst
from dualtree.api import Runtime
from dualtree.core.tree import build_tree
from dualtree.queries.knn import knn


@dataclass(frozen=True)
class Measurement:
    wall_seconds: float
    cpu_seconds: float
    rss_delta_bytes: int

    @property
    def cpu_utilisation(self) -> float:
        return self.cpu_seconds / self.wall_seconds if self.wall_seconds > 0 else 0.0


@dataclass(frozen=True)
class KNNBenchmarkResult:
    build: Measurement
    query: Measurement
    queries: int
    k: int
    kind: str

    @property
    def latency_ms(self) -> float:
        return self.query.wall_seconds * 1e3 / max(self.queries, 1)

    @property
    def queries_per_second(self) -> float:
        return self.queries / self.query.wall_seconds if self.query.wall_seconds > 0 else float("inf")


@dataclass(frozen=True)
class MSTBenchmarkResult:
    solve: Measurement
    points: int
    edges: int
    total_weight: float


def _measure(func: Callable[[], Any]) -> Tuple[Any, Measurement]:
    proc = psutil.Process()
    cpu_before = proc.cpu_times()
    rss_before = proc.memory_info().rss
    start = time.perf_counter()
    result = func()
    wall_seconds = time.perf_counter() - start
    cpu_after = proc.cpu_times()
    rss_after = proc.memory_info().rss
    cpu_seconds = (cpu_after.user - cpu_before.user) + (cpu_after.system - cpu_before.system)
    return result, Measurement(
        wall_seconds=wall_seconds,
        cpu_seconds=cpu_seconds,
        rss_delta_bytes=int(rss_after - rss_before),
    )


def _gaussian(seed: int, count: int, dimension: int) -> np.ndarray:
    return default_rng(seed).normal(loc=0.0, scale=1.0, size=(count, dimension))


def benchmark_knn(
    *,
    points: int,
    queries: int,
    dimension: int,
    k: int,
    kind: str = "auto",
    dual_tree: bool = False,
    breadth_first: bool = False,
    seed: int = 0,
    config: dt_config.RuntimeConfig | None = None,
) -> KNNBenchmarkResult:
    data = _gaussian(seed, points, dimension)
    query_points = _gaussian(seed + 1, queries, dimension)
    tree, build = _measure(lambda: build_tree(data, kind=kind, config=config))
    _, query = _measure(
        lambda: knn(
            tree,
            query_points,
            k=k,
            dual_tree=dual_tree,
            breadth_first=breadth_first,
            config=config,
        )
    )
    return KNNBenchmarkResult(build=build, query=query, queries=queries, k=k, kind=tree.kind)


def benchmark_mst(
    *,
    points: int,
    dimension: int,
    min_samples: int,
    alpha: float = 1.0,
    approximate: bool = False,
    algorithm: str = "boruvka",
    kind: str = "auto",
    seed: int = 0,
    config: dt_config.RuntimeConfig | None = None,
) -> MSTBenchmarkResult:
    data = _gaussian(seed, points, dimension)
    mst, solve = _measure(
        lambda: compute_mst(
            data,
            min_samples,
            alpha=alpha,
            approximate=approximate,
            algorithm=algorithm,
            kind=kind,
            config=config,
        )
    )
    return MSTBenchmarkResult(
        solve=solve,
        points=points,
        edges=mst.num_edges,
        total_weight=mst.total_weight,
    )


app = typer.Typer(
    add_completion=False,
    pretty_exceptions_enable=False,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
    help="Benchmark dualtree k-NN queries and spanning tree construction.",
)

_SHAPE_PANEL = "Benchmark shape"
_RUNTIME_PANEL = "Runtime controls"

KindOption = Annotated[
    str,
    typer.Option("--kind", help="Tree kind to build (auto, kd or ball).", rich_help_panel=_SHAPE_PANEL),
]
DimensionOption = Annotated[
    int,
    typer.Option("--dimension", help="Dimensionality of the points.", rich_help_panel=_SHAPE_PANEL),
]
SeedOption = Annotated[
    int,
    typer.Option("--seed", help="Random seed for point generation.", rich_help_panel=_SHAPE_PANEL),
]
NumbaOption = Annotated[
    Optional[bool],
    typer.Option(
        "--enable-numba/--disable-numba",
        help="Force-enable or disable Numba kernels.",
        rich_help_panel=_RUNTIME_PANEL,
    ),
]
WorkersOption = Annotated[
    Optional[int],
    typer.Option(
        "--query-workers",
        help="Thread count for chunked single-tree queries.",
        rich_help_panel=_RUNTIME_PANEL,
    ),
]
LeafSizeOption = Annotated[
    Optional[int],
    typer.Option("--leaf-size", help="Override the tree leaf size.", rich_help_panel=_RUNTIME_PANEL),
]
LogLevelOption = Annotated[
    Optional[str],
    typer.Option("--log-level", help="Override runtime log level.", rich_help_panel=_RUNTIME_PANEL),
]


def _runtime_config(
    *,
    enable_numba: bool | None,
    query_workers: int | None,
    leaf_size: int | None,
    log_level: str | None,
) -> dt_config.RuntimeConfig:
    runtime = Runtime(
        enable_numba=enable_numba,
        query_workers=query_workers,
        leaf_size=leaf_size,
        log_level=log_level,
    )
    return runtime.activate().config


def _format_measurement(label: str, measurement: Measurement) -> str:
    return (
        f"{label}={measurement.wall_seconds:.4f}s "
        f"cpu_util={measurement.cpu_utilisation:.2f} "
        f"rss_delta={measurement.rss_delta_bytes}"
    )


@app.command("knn")
def knn_command(
    points: Annotated[
        int,
        typer.Option("--points", help="Number of points stored in the tree.", rich_help_panel=_SHAPE_PANEL),
    ] = 20_000,
    queries: Annotated[
        int,
        typer.Option("--queries", help="Number of query points.", rich_help_panel=_SHAPE_PANEL),
    ] = 1_024,
    dimension: DimensionOption = 3,
    k: Annotated[
        int,
        typer.Option("--k", help="Number of neighbours requested per query.", rich_help_panel=_SHAPE_PANEL),
    ] = 8,
    kind: KindOption = "auto",
    dual_tree: Annotated[
        bool,
        typer.Option("--dual-tree/--single-tree", help="Use the dual-tree traversal."),
    ] = False,
    breadth_first: Annotated[
        bool,
        typer.Option("--breadth-first/--depth-first", help="Traversal order."),
    ] = False,
    seed: SeedOption = 0,
    enable_numba: NumbaOption = None,
    query_workers: WorkersOption = None,
    leaf_size: LeafSizeOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Time tree construction and a batch of k-NN queries."""

    config = _runtime_config(
        enable_numba=enable_numba,
        query_workers=query_workers,
        leaf_size=leaf_size,
        log_level=log_level,
    )
    try:
        result = benchmark_knn(
            points=points,
            queries=queries,
            dimension=dimension,
            k=k,
            kind=kind,
            dual_tree=dual_tree,
            breadth_first=breadth_first,
            seed=seed,
            config=config,
        )
        typer.echo(
            f"dualtree[{result.kind}] | {_format_measurement('build', result.build)} "
            f"queries={result.queries} k={result.k} "
            f"{_format_measurement('time', result.query)} "
            f"latency={result.latency_ms:.4f}ms "
            f"throughput={result.queries_per_second:,.1f} q/s"
        )
    finally:
        dt_config.reset_runtime_context()


@app.command("mst")
def mst_command(
    points: Annotated[
        int,
        typer.Option("--points", help="Number of points to span.", rich_help_panel=_SHAPE_PANEL),
    ] = 5_000,
    dimension: DimensionOption = 3,
    min_samples: Annotated[
        int,
        typer.Option("--min-samples", help="Neighbour rank defining the core distance.", rich_help_panel=_SHAPE_PANEL),
    ] = 5,
    alpha: Annotated[
        float,
        typer.Option("--alpha", help="Distance scaling applied before mutual reachability."),
    ] = 1.0,
    approximate: Annotated[
        bool,
        typer.Option("--approximate/--exact", help="Keep node bounds across Boruvka passes."),
    ] = False,
    algorithm: Annotated[
        str,
        typer.Option("--algorithm", help="Spanning tree solver (boruvka or prims)."),
    ] = "boruvka",
    kind: KindOption = "auto",
    seed: SeedOption = 0,
    enable_numba: NumbaOption = None,
    leaf_size: LeafSizeOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Time a minimum spanning tree over mutual reachability distance."""

    config = _runtime_config(
        enable_numba=enable_numba,
        query_workers=None,
        leaf_size=leaf_size,
        log_level=log_level,
    )
    try:
        result = benchmark_mst(
            points=points,
            dimension=dimension,
            min_samples=min_samples,
            alpha=alpha,
            approximate=approximate,
            algorithm=algorithm,
            kind=kind,
            seed=seed,
            config=config,
        )
        typer.echo(
            f"dualtree[{algorithm}] | points={result.points} edges={result.edges} "
            f"total_weight={result.total_weight:.6f} "
            f"{_format_measurement('time', result.solve)}"
        )
    finally:
        dt_config.reset_runtime_context()


def main() -> None:
    app()


__all__ = [
    "KNNBenchmarkResult",
    "MSTBenchmarkResult",
    "Measurement",
    "app",
    "benchmark_knn",
    "benchmark_mst",
    "main",
]


if __name__ == "__main__":
    main()
