"""Pod detail report data structures: describe, resources, failure events,
node utilisation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from kubediag.models.common import EventInfo, Severity
from kubediag.models.snapshots import (
    Condition,
    ContainerState,
    Toleration,
    VolumeKind,
)

# ---------------------------------------------------------------------------
# Describe
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PodStatusInfo:
    phase: str
    reason: str = ""
    message: str = ""
    host_ip: str = ""
    pod_ip: str = ""
    nominated_node_name: str = ""


@dataclass(frozen=True)
class VolumeMountInfo:
    name: str
    mount_path: str
    read_only: bool = False
    sub_path: str = ""


@dataclass(frozen=True)
class ContainerInfo:
    name: str
    image: str
    image_id: str = ""
    state: ContainerState | None = None
    ready: bool = False
    restart_count: int = 0
    requests: dict[str, str] = field(default_factory=dict)
    limits: dict[str, str] = field(default_factory=dict)
    environment: list[str] = field(default_factory=list)
    mounts: list[VolumeMountInfo] = field(default_factory=list)


@dataclass(frozen=True)
class VolumeInfo:
    name: str
    type: VolumeKind


@dataclass(frozen=True)
class PodDescription:
    """``kubectl describe pod`` equivalent."""

    name: str
    namespace: str
    status: PodStatusInfo
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    node: str = ""
    start_time: datetime | None = None
    containers: list[ContainerInfo] = field(default_factory=list)
    init_containers: list[ContainerInfo] = field(default_factory=list)
    volumes: list[VolumeInfo] = field(default_factory=list)
    pod_ip: str = ""
    pod_ips: list[str] = field(default_factory=list)
    qos_class: str = ""
    priority: int | None = None
    priority_class_name: str = ""
    tolerations: list[Toleration] = field(default_factory=list)
    node_selector: dict[str, str] = field(default_factory=dict)
    events: list[EventInfo] = field(default_factory=list)
    conditions: list[Condition] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContainerResources:
    name: str
    requests: dict[str, str] = field(default_factory=dict)
    limits: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ResourceSummary:
    cpu_request: str
    cpu_limit: str
    memory_request: str
    memory_limit: str


@dataclass(frozen=True)
class PodResources:
    """Per-container requests/limits; totals cover regular containers only."""

    containers: list[ContainerResources]
    total: ResourceSummary


# ---------------------------------------------------------------------------
# Failure events
# ---------------------------------------------------------------------------


class FailureEventCategory(StrEnum):
    SCHEDULING = "Scheduling"
    CRASH = "Crash"
    IMAGE_PULL = "ImagePull"
    VOLUME = "Volume"
    PROBE = "Probe"
    RESOURCE = "Resource"
    NETWORK = "Network"
    OTHER = "Other"


@dataclass(frozen=True)
class FailureEvent:
    event: EventInfo
    category: FailureEventCategory
    severity: Severity
    possible_causes: list[str] = field(default_factory=list)
    suggested_action: str = ""
    is_recurring: bool = False
    recurrence_rate: str = ""
    time_since_first: str = ""


@dataclass(frozen=True)
class PodFailureEvents:
    pod_name: str
    namespace: str
    total_events: int
    failure_events: list[FailureEvent]
    event_categories: dict[str, int]
    critical_events: int
    warning_events: int
    most_recent_issue: FailureEvent | None
    ongoing_issues: list[str]
    pod_phase: str
    pod_status: str


# ---------------------------------------------------------------------------
# Node utilisation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NodeUtilization:
    node_name: str
    cpu_usage: str
    cpu_capacity: str
    cpu_percentage: float
    memory_usage: str
    memory_capacity: str
    memory_percentage: float
    timestamp: datetime
