"""Namespace error report and cluster-wide issue data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import assert_never

from kubediag.models.common import EventInfo, Severity


class TrendDirection(StrEnum):
    IMPROVING = "improving"
    STABLE = "stable"
    DEGRADING = "degrading"


# ---------------------------------------------------------------------------
# Namespace error report
# ---------------------------------------------------------------------------


class PodIssueType(StrEnum):
    """Issue kinds detected by the namespace analyzer, in tie-break order."""

    HIGH_RESTARTS = "HighRestarts"
    PENDING = "Pending"
    FAILED = "Failed"
    CRASH_LOOP = "CrashLoopBackOff"
    IMAGE_PULL = "ImagePullError"
    RESOURCE_CONSTRAINTS = "ResourceConstraints"
    UNSCHEDULABLE = "Unschedulable"

    @property
    def rank(self) -> int:
        return list(PodIssueType).index(self)

    @property
    def description(self) -> str:
        match self:
            case PodIssueType.HIGH_RESTARTS:
                return "Pods with excessive restart counts"
            case PodIssueType.PENDING:
                return "Pods stuck in pending state"
            case PodIssueType.FAILED:
                return "Pods in failed state"
            case PodIssueType.CRASH_LOOP:
                return "Pods in crash loop backoff"
            case PodIssueType.IMAGE_PULL:
                return "Pods with image pull errors"
            case PodIssueType.RESOURCE_CONSTRAINTS:
                return "Pods with insufficient resources"
            case PodIssueType.UNSCHEDULABLE:
                return "Pods that cannot be scheduled"
            case _:
                assert_never(self)


@dataclass(frozen=True)
class PodIssue:
    type: PodIssueType
    description: str
    severity: Severity
    details: str = ""


@dataclass(frozen=True)
class ProblematicPod:
    """A controller-owned pod with at least one detected issue.

    ``owner_kind`` is ``Deployment`` (resolved from the owning ReplicaSet)
    or ``StatefulSet``.  ``recent_events`` holds at most five Warning
    events from the last hour, newest first.
    """

    name: str
    namespace: str
    owner_kind: str
    owner_name: str
    phase: str
    status: str
    restart_count: int
    age: str
    issues: list[PodIssue] = field(default_factory=list)
    recent_events: list[EventInfo] = field(default_factory=list)

    @property
    def has_critical_issue(self) -> bool:
        return any(issue.severity is Severity.CRITICAL for issue in self.issues)


@dataclass(frozen=True)
class NamespaceErrorSummary:
    issue_type: PodIssueType
    count: int
    description: str
    affected_pods: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class NamespaceErrorReport:
    namespace: str
    analysis_time: datetime
    total_pods_analyzed: int
    problematic_pods_count: int
    healthy_pods_count: int
    restart_threshold_used: int
    summary: list[NamespaceErrorSummary] = field(default_factory=list)
    problematic_pods: list[ProblematicPod] = field(default_factory=list)
    critical_issues_count: int = 0
    warning_issues_count: int = 0


# ---------------------------------------------------------------------------
# Cluster issues
# ---------------------------------------------------------------------------


class IssueCategory(StrEnum):
    """Cluster issue categories.

    VolumeMountError, NetworkError and ResourceQuotaExceeded are reserved:
    no detector produces them yet.
    """

    CRASH_LOOP = "CrashLoopBackOff"
    IMAGE_PULL = "ImagePullError"
    PENDING = "PendingScheduling"
    OOM_KILLED = "OOMKilled"
    EVICTED = "Evicted"
    FAILED = "Failed"
    UNHEALTHY = "Unhealthy"
    INIT_ERROR = "InitContainerError"
    VOLUME_MOUNT = "VolumeMountError"
    CONFIG_ERROR = "ConfigurationError"
    NETWORK_ERROR = "NetworkError"
    RESOURCE_QUOTA = "ResourceQuotaExceeded"

    @property
    def rank(self) -> int:
        return list(IssueCategory).index(self)

    @property
    def description(self) -> str:
        match self:
            case IssueCategory.CRASH_LOOP:
                return "Container repeatedly crashing and restarting"
            case IssueCategory.IMAGE_PULL:
                return "Unable to pull container image"
            case IssueCategory.PENDING:
                return "Pod unable to be scheduled"
            case IssueCategory.OOM_KILLED:
                return "Container terminated due to memory limit"
            case IssueCategory.EVICTED:
                return "Pod evicted from node"
            case IssueCategory.FAILED:
                return "Pod in failed state"
            case IssueCategory.UNHEALTHY:
                return "Pod health checks failing"
            case IssueCategory.INIT_ERROR:
                return "Init container failing to start"
            case IssueCategory.VOLUME_MOUNT:
                return "Volume mount issues"
            case IssueCategory.CONFIG_ERROR:
                return "Configuration or secret mounting error"
            case IssueCategory.NETWORK_ERROR:
                return "Network connectivity issues"
            case IssueCategory.RESOURCE_QUOTA:
                return "Resource quota limits exceeded"
            case _:
                assert_never(self)


@dataclass(frozen=True)
class ClusterPodIssue:
    pod_name: str
    namespace: str
    category: IssueCategory
    severity: Severity
    reason: str
    message: str
    last_seen: datetime
    count: int = 0
    first_seen: datetime | None = None
    is_recurring: bool = False
    node_name: str = ""
    container_name: str = ""


@dataclass(frozen=True)
class NamespaceIssues:
    namespace: str
    total_pods: int = 0
    issues_count: int = 0
    critical_count: int = 0
    warning_count: int = 0
    top_issues: list[ClusterPodIssue] = field(default_factory=list)


@dataclass(frozen=True)
class IssueSummary:
    category: IssueCategory
    count: int
    severity: Severity
    description: str
    affected_pods: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class IssueVelocity:
    """New-vs-resolved issue counts.

    Resolved counts need issue history across requests, which is not kept,
    so they are always zero and the trend is never ``improving``.
    """

    new_issues_last_hour: int = 0
    new_issues_last_24h: int = 0
    resolved_last_hour: int = 0
    resolved_last_24h: int = 0
    trend_direction: TrendDirection = TrendDirection.STABLE
    velocity_per_hour: float = 0.0


@dataclass
class IssuePattern:
    """Recurring ``category:reason`` combination.

    Mutable while the aggregator accumulates occurrences; ``common_labels``
    is the running intersection of the affected pods' labels.
    """

    type: IssueCategory
    description: str
    count: int
    namespaces: list[str]
    common_labels: dict[str, str]
    first_seen: datetime
    last_seen: datetime


@dataclass(frozen=True)
class ClusterIssues:
    total_pods: int
    healthy_pods: int
    unhealthy_pods: int
    issue_categories: dict[str, int]
    issues_by_namespace: dict[str, NamespaceIssues]
    top_issues: list[IssueSummary]
    issue_velocity: IssueVelocity
    patterns: list[IssuePattern]
    critical_issues: list[ClusterPodIssue]
    calculated_at: datetime
