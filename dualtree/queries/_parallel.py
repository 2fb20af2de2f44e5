from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Tuple, TypeVar

from dualtree.config import RuntimeConfig

T = TypeVar("T")


def chunk_bounds(num_rows: int, chunk_size: int) -> List[Tuple[int, int]]:
    """Split ``range(num_rows)`` into contiguous ``[start, end)`` blocks."""

    return [(start, min(start + chunk_size, num_rows)) for start in range(0, num_rows, chunk_size)]


def run_chunked(
    num_rows: int,
    runtime: RuntimeConfig,
    task: Callable[[int, int], T],
) -> List[T]:
    """Run ``task(start, end)`` over every query block, in order.

    Blocks run on a thread pool when ``runtime.query_workers > 1``; every task
    owns the output rows of its block so no locking is needed.
    """

    blocks = chunk_bounds(num_rows, runtime.query_chunk_size)
    if not runtime.parallel_queries or len(blocks) <= 1:
        return [task(start, end) for start, end in blocks]
    with ThreadPoolExecutor(max_workers=runtime.query_workers) as executor:
        futures = [executor.submit(task, start, end) for start, end in blocks]
        return [future.result() for future in futures]


__all__ = ["chunk_bounds", "run_chunked"]
