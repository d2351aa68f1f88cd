"""Load KubeDiag configuration from ``KUBEDIAG_*`` environment variables.

Integer settings are clamped into their allowed range rather than rejected;
settings with no sensible clamp (log level, restart threshold) raise
``ValueError`` so a misconfigured deployment fails at startup.
"""

from __future__ import annotations

import os

from kubediag.models.config import (
    AnalysisConfig,
    ApiConfig,
    KubeDiagConfig,
    KubernetesConfig,
    LogConfig,
)

_PREFIX = "KUBEDIAG_"
_LOG_LEVELS = ("debug", "info", "warning", "error")
_TRUTHY = frozenset({"1", "true", "yes", "on"})


def _env(name: str) -> str | None:
    value = os.environ.get(_PREFIX + name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _env_str(name: str, default: str) -> str:
    value = _env(name)
    return default if value is None else value


def _env_bool(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    value = _env(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Invalid integer for {_PREFIX}{name}: {value!r}") from exc


def _clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))


def _validate_log_level(level: str) -> str:
    normalised = level.lower()
    if normalised not in _LOG_LEVELS:
        raise ValueError(f"Invalid log level: {level!r} (expected one of {', '.join(_LOG_LEVELS)})")
    return normalised


def load_config() -> KubeDiagConfig:
    """Build a :class:`KubeDiagConfig` from the process environment."""
    restart_threshold = _env_int("POD_RESTART_THRESHOLD", 5)
    if restart_threshold < 0:
        raise ValueError(f"Invalid pod restart threshold: {restart_threshold} (must be >= 0)")

    return KubeDiagConfig(
        cluster_id=_env_str("CLUSTER_ID", ""),
        api=ApiConfig(
            port=_clamp(_env_int("API_PORT", 8080), 1024, 65535),
            metrics_enabled=_env_bool("METRICS_ENABLED", True),
        ),
        log=LogConfig(level=_validate_log_level(_env_str("LOG_LEVEL", "info"))),
        kubernetes=KubernetesConfig(
            timeout_seconds=_clamp(_env_int("K8S_TIMEOUT", 30), 1, 300),
        ),
        analysis=AnalysisConfig(
            request_timeout_seconds=_clamp(_env_int("REQUEST_TIMEOUT", 5), 1, 120),
            pod_restart_threshold=restart_threshold,
        ),
    )
