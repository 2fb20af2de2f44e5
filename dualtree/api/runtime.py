from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict

from dualtree import config as dt_config


def _apply_if_present(target: Dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        target[key] = value


_ATTR_TO_FIELD = {
    "enable_numba": "enable_numba",
    "diagnostics": "enable_diagnostics",
    "log_level": "log_level",
    "metric": "metric",
    "leaf_size": "leaf_size",
    "auto_ball_threshold": "auto_ball_threshold",
    "query_workers": "query_workers",
    "query_chunk_size": "query_chunk_size",
}


@dataclass(frozen=True)
class Runtime:
    """Declarative runtime overrides that can activate a dualtree context.

    Fields left as ``None`` fall through to the environment defaults read by
    :meth:`dualtree.config.RuntimeConfig.from_env`.
    """

    enable_numba: bool | None = None
    diagnostics: bool | None = None
    log_level: str | None = None
    metric: str | None = None
    leaf_size: int | None = None
    auto_ball_threshold: int | None = None
    query_workers: int | None = None
    query_chunk_size: int | None = None

    def overrides(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for attr, field_name in _ATTR_TO_FIELD.items():
            _apply_if_present(payload, field_name, getattr(self, attr))
        if "log_level" in payload:
            payload["log_level"] = dt_config._normalise_log_level(payload["log_level"])
        if "metric" in payload:
            payload["metric"] = str(payload["metric"]).strip().lower()
        for name in ("leaf_size", "auto_ball_threshold", "query_workers", "query_chunk_size"):
            if name in payload and int(payload[name]) <= 0:
                raise ValueError(f"{name} must be positive, got '{payload[name]}'")
        return payload

    def to_config(self, base: dt_config.RuntimeConfig | None = None) -> dt_config.RuntimeConfig:
        base_config = base if base is not None else dt_config.RuntimeConfig.from_env()
        return replace(base_config, **self.overrides())

    def activate(self) -> dt_config.RuntimeContext:
        """Install this runtime as the active global context and return it."""

        return dt_config.configure_runtime(self.to_config())

    def describe(self) -> Dict[str, Any]:
        return dt_config.describe_runtime(self.to_config())

    def with_updates(self, **kwargs: Any) -> "Runtime":
        return replace(self, **kwargs)

    @classmethod
    def from_active(cls) -> "Runtime":
        return cls.from_config(dt_config.runtime_config())

    @classmethod
    def from_config(cls, config: dt_config.RuntimeConfig) -> "Runtime":
        return cls(
            enable_numba=config.enable_numba,
            diagnostics=config.enable_diagnostics,
            log_level=config.log_level,
            metric=config.metric,
            leaf_size=config.leaf_size,
            auto_ball_threshold=config.auto_ball_threshold,
            query_workers=config.query_workers,
            query_chunk_size=config.query_chunk_size,
        )


__all__ = ["Runtime"]
