"""Pod health score data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class HealthStatus(StrEnum):
    """Bucket for the overall pod score."""

    HEALTHY = "Healthy"
    GOOD = "Good"
    WARNING = "Warning"
    DEGRADED = "Degraded"
    CRITICAL = "Critical"

    @classmethod
    def from_score(cls, score: int) -> HealthStatus:
        if score >= 90:
            return cls.HEALTHY
        if score >= 70:
            return cls.GOOD
        if score >= 50:
            return cls.WARNING
        if score >= 30:
            return cls.DEGRADED
        return cls.CRITICAL


class ComponentStatus(StrEnum):
    """Bucket for a single component score."""

    EXCELLENT = "Excellent"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"
    CRITICAL = "Critical"

    @classmethod
    def from_score(cls, score: int) -> ComponentStatus:
        if score >= 90:
            return cls.EXCELLENT
        if score >= 70:
            return cls.GOOD
        if score >= 50:
            return cls.FAIR
        if score >= 30:
            return cls.POOR
        return cls.CRITICAL


@dataclass(frozen=True)
class HealthComponent:
    name: str
    score: int
    weight: float
    status: ComponentStatus
    description: str


@dataclass(frozen=True)
class ContainerHealth:
    name: str
    state: str
    ready: bool
    restart_count: int
    exit_code: int | None = None
    reason: str = ""


@dataclass(frozen=True)
class EventSummary:
    """Events sharing ``type:reason`` within the scoring window, counts summed."""

    type: str
    reason: str
    message: str
    count: int
    last_seen: datetime | None = None


@dataclass(frozen=True)
class ConditionStatus:
    type: str
    status: str
    reason: str = ""
    message: str = ""


@dataclass(frozen=True)
class HealthDetails:
    restart_count: int = 0
    restart_frequency: str = ""
    uptime: str = ""
    last_restart_time: datetime | None = None
    last_restart_reason: str = ""
    container_statuses: list[ContainerHealth] = field(default_factory=list)
    recent_events: list[EventSummary] = field(default_factory=list)
    pod_conditions: list[ConditionStatus] = field(default_factory=list)


@dataclass(frozen=True)
class PodHealthScore:
    """Weighted 0-100 health score for one pod.

    ``components`` is keyed by ``restarts``, ``containerStates``, ``events``,
    ``conditions`` and ``uptime``, in that order.
    """

    pod_name: str
    namespace: str
    overall_score: int
    status: HealthStatus
    components: dict[str, HealthComponent]
    calculated_at: datetime
    details: HealthDetails
