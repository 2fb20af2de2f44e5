from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator

import psutil

from dualtree.config import RuntimeConfig, resolve_config


@dataclass
class OperationLog:
    """Mutable record populated inside a :func:`log_operation` block."""

    operation: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def add_metadata(self, **values: Any) -> None:
        self.metadata.update(values)


@dataclass(frozen=True)
class _ResourceSnapshot:
    wall: float
    cpu_user: float | None
    rss: int | None

    @classmethod
    def take(cls, process: psutil.Process | None) -> "_ResourceSnapshot":
        wall = time.perf_counter()
        if process is None:
            return cls(wall=wall, cpu_user=None, rss=None)
        cpu = process.cpu_times()
        return cls(wall=wall, cpu_user=cpu.user, rss=process.memory_info().rss)


def _format_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.3f}"
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def format_operation(
    operation: str,
    start: _ResourceSnapshot,
    end: _ResourceSnapshot,
    metadata: Dict[str, Any],
) -> str:
    parts = [f"op={operation}", f"wall_ms={(end.wall - start.wall) * 1e3:.3f}"]
    if start.cpu_user is None or end.cpu_user is None:
        parts.append("cpu_user_ms=NA")
    else:
        parts.append(f"cpu_user_ms={(end.cpu_user - start.cpu_user) * 1e3:.3f}")
    if start.rss is None or end.rss is None:
        parts.append("rss_delta=NA")
    else:
        parts.append(f"rss_delta={end.rss - start.rss}")
    parts.extend(f"{key}={_format_value(value)}" for key, value in metadata.items())
    return " ".join(parts)


@contextmanager
def log_operation(
    logger: logging.Logger,
    operation: str,
    *,
    config: RuntimeConfig | None = None,
) -> Iterator[OperationLog]:
    """Time ``operation`` and emit a single ``op=<name>`` INFO record on success.

    CPU and RSS deltas are sampled through ``psutil`` when diagnostics are
    enabled and reported as ``NA`` otherwise. Resource exhaustion is logged at
    ERROR level and re-raised.
    """

    runtime = resolve_config(config)
    process = psutil.Process() if runtime.enable_diagnostics else None
    op_log = OperationLog(operation=operation)
    start = _ResourceSnapshot.take(process)
    try:
        yield op_log
    except (MemoryError, RecursionError):
        logger.error("ran out of memory during %s", operation)
        raise
    end = _ResourceSnapshot.take(process)
    if logger.isEnabledFor(logging.INFO):
        logger.info(format_operation(operation, start, end, op_log.metadata))


__all__ = ["OperationLog", "format_operation", "log_operation"]
