from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

_LOGGER = logging.getLogger("dualtree")

_SUPPORTED_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_DEFAULT_LEAF_SIZE = 40
_DEFAULT_AUTO_BALL_THRESHOLD = 15_000
_DEFAULT_QUERY_WORKERS = 1
_DEFAULT_QUERY_CHUNK_SIZE = 500


def _bool_from_env(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    value = value.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_optional_int(raw: str | None) -> int | None:
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid integer value '{raw}'") from exc


def _parse_positive_int(raw: str | None, *, default: int, name: str) -> int:
    value = _parse_optional_int(raw)
    if value is None:
        return default
    if value <= 0:
        raise ValueError(f"{name} must be positive, got '{raw}'")
    return value


def _normalise_log_level(value: str | None) -> str:
    if value is None or value.strip() == "":
        return "INFO"
    level = value.strip().upper()
    if level not in _SUPPORTED_LOG_LEVELS:
        raise ValueError(f"Unsupported log level '{value}'. Expected one of {sorted(_SUPPORTED_LOG_LEVELS)}.")
    return level


@dataclass(frozen=True)
class RuntimeConfig:
    enable_numba: bool = False
    enable_diagnostics: bool = True
    log_level: str = "INFO"
    metric: str = "euclidean"
    leaf_size: int = _DEFAULT_LEAF_SIZE
    auto_ball_threshold: int = _DEFAULT_AUTO_BALL_THRESHOLD
    query_workers: int = _DEFAULT_QUERY_WORKERS
    query_chunk_size: int = _DEFAULT_QUERY_CHUNK_SIZE

    @property
    def parallel_queries(self) -> bool:
        return self.query_workers > 1

    @classmethod
    def from_env(cls) -> "RuntimeConfig":
        enable_numba = _bool_from_env(os.getenv("DUALTREE_ENABLE_NUMBA"), default=False)
        enable_diagnostics = _bool_from_env(
            os.getenv("DUALTREE_ENABLE_DIAGNOSTICS"), default=True
        )
        log_level = _normalise_log_level(os.getenv("DUALTREE_LOG_LEVEL"))
        metric = os.getenv("DUALTREE_METRIC", "euclidean").strip().lower() or "euclidean"
        leaf_size = _parse_positive_int(
            os.getenv("DUALTREE_LEAF_SIZE"),
            default=_DEFAULT_LEAF_SIZE,
            name="DUALTREE_LEAF_SIZE",
        )
        auto_ball_threshold = _parse_positive_int(
            os.getenv("DUALTREE_AUTO_BALL_THRESHOLD"),
            default=_DEFAULT_AUTO_BALL_THRESHOLD,
            name="DUALTREE_AUTO_BALL_THRESHOLD",
        )
        query_workers = _parse_positive_int(
            os.getenv("DUALTREE_QUERY_WORKERS"),
            default=_DEFAULT_QUERY_WORKERS,
            name="DUALTREE_QUERY_WORKERS",
        )
        query_chunk_size = _parse_positive_int(
            os.getenv("DUALTREE_QUERY_CHUNK_SIZE"),
            default=_DEFAULT_QUERY_CHUNK_SIZE,
            name="DUALTREE_QUERY_CHUNK_SIZE",
        )
        return cls(
            enable_numba=enable_numba,
            enable_diagnostics=enable_diagnostics,
            log_level=log_level,
            metric=metric,
            leaf_size=leaf_size,
            auto_ball_threshold=auto_ball_threshold,
            query_workers=query_workers,
            query_chunk_size=query_chunk_size,
        )


def _configure_logging(level: str) -> None:
    logger = logging.getLogger("dualtree")
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(level)
        formatter = logging.Formatter("%(levelname)s %(name)s: %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)


@dataclass
class RuntimeContext:
    """Hold the active configuration and apply its side effects once."""

    config: RuntimeConfig
    _activated: bool = field(default=False, init=False, repr=False)

    def activate(self) -> None:
        if self._activated:
            return
        _configure_logging(self.config.log_level)
        self._activated = True


_CONTEXT_CACHE: Optional[RuntimeContext] = None


def runtime_context() -> RuntimeContext:
    """Return the cached runtime context, constructing it from the environment."""

    global _CONTEXT_CACHE
    if _CONTEXT_CACHE is None:
        context = RuntimeContext(config=RuntimeConfig.from_env())
        context.activate()
        _CONTEXT_CACHE = context
    return _CONTEXT_CACHE


def runtime_config() -> RuntimeConfig:
    return runtime_context().config


def configure_runtime(config: RuntimeConfig) -> RuntimeContext:
    """Force the active runtime context to use ``config`` instead of env defaults."""

    global _CONTEXT_CACHE
    context = RuntimeContext(config=config)
    context.activate()
    _CONTEXT_CACHE = context
    _LOGGER.debug("runtime configured: %s", config)
    return context


def resolve_config(config: RuntimeConfig | None) -> RuntimeConfig:
    """Prefer an explicitly passed configuration over the cached one."""

    if config is not None:
        return config
    return runtime_config()


def reset_runtime_config_cache() -> None:
    reset_runtime_context()


def reset_runtime_context() -> None:
    """Clear the cached runtime context (used in tests)."""

    global _CONTEXT_CACHE
    _CONTEXT_CACHE = None


def describe_runtime(config: RuntimeConfig | None = None) -> Dict[str, Any]:
    """Return a serialisable view of the active runtime configuration."""

    import numba

    config = resolve_config(config)
    return {
        "enable_numba": config.enable_numba,
        "numba_version": numba.__version__,
        "enable_diagnostics": config.enable_diagnostics,
        "log_level": config.log_level,
        "metric": config.metric,
        "leaf_size": config.leaf_size,
        "auto_ball_threshold": config.auto_ball_threshold,
        "query_workers": config.query_workers,
        "query_chunk_size": config.query_chunk_size,
    }


__all__ = [
    "RuntimeConfig",
    "RuntimeContext",
    "configure_runtime",
    "describe_runtime",
    "reset_runtime_config_cache",
    "reset_runtime_context",
    "resolve_config",
    "runtime_config",
    "runtime_context",
]
