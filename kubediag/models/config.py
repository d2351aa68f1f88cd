"""Runtime configuration data structures.

Populated from ``KUBEDIAG_*`` environment variables by
:func:`kubediag.config.load_config`.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ApiConfig:
    port: int = 8080
    metrics_enabled: bool = True


@dataclass(frozen=True)
class LogConfig:
    level: str = "info"


@dataclass(frozen=True)
class KubernetesConfig:
    """Kubernetes client behaviour."""

    timeout_seconds: int = 30


@dataclass(frozen=True)
class AnalysisConfig:
    """Knobs for the diagnostic reports.

    ``request_timeout_seconds`` is the per-report deadline; a report that
    is still running when it expires is aborted, never returned partially.
    """

    request_timeout_seconds: int = 5
    pod_restart_threshold: int = 5


@dataclass(frozen=True)
class KubeDiagConfig:
    cluster_id: str = ""
    api: ApiConfig = field(default_factory=ApiConfig)
    log: LogConfig = field(default_factory=LogConfig)
    kubernetes: KubernetesConfig = field(default_factory=KubernetesConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
