"""Scheduling report data structures.

Two report shapes are produced for a pod: :class:`PodScheduling`, a
compact decision trace plus per-node failure list, and
:class:`SchedulingExplanation`, a detailed per-node breakdown with
recommendations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import assert_never

from kubediag.models.snapshots import Affinity, Condition, Taint, Toleration


class SchedulingStatus(StrEnum):
    SCHEDULED = "Scheduled"
    PENDING = "Pending"
    FAILED = "Failed"


class FailureCategory(StrEnum):
    """Why a pod could not be placed on a node.

    Declaration order is the tie-break order when categories are ranked.
    """

    INSUFFICIENT_CPU = "InsufficientCPU"
    INSUFFICIENT_MEMORY = "InsufficientMemory"
    INSUFFICIENT_STORAGE = "InsufficientStorage"
    VOLUME_ATTACHMENT_ERROR = "VolumeAttachmentError"
    VOLUME_MULTI_ATTACH_ERROR = "VolumeMultiAttachError"
    VOLUME_NODE_AFFINITY_CONFLICT = "VolumeNodeAffinityConflict"
    NODE_AFFINITY_NOT_MATCH = "NodeAffinityNotMatch"
    TAINT_TOLERATION_MISMATCH = "TaintTolerationMismatch"
    POD_AFFINITY_CONFLICT = "PodAffinityConflict"
    NODE_NOT_READY = "NodeNotReady"
    MISCELLANEOUS = "Miscellaneous"

    @property
    def rank(self) -> int:
        return list(FailureCategory).index(self)

    @property
    def description(self) -> str:
        match self:
            case FailureCategory.INSUFFICIENT_CPU:
                return "Insufficient CPU resources available on nodes"
            case FailureCategory.INSUFFICIENT_MEMORY:
                return "Insufficient memory resources available on nodes"
            case FailureCategory.INSUFFICIENT_STORAGE:
                return "Insufficient storage resources available on nodes"
            case FailureCategory.VOLUME_ATTACHMENT_ERROR:
                return "Failed to attach persistent volume to node"
            case FailureCategory.VOLUME_MULTI_ATTACH_ERROR:
                return "Volume already attached to another node (ReadWriteOnce)"
            case FailureCategory.VOLUME_NODE_AFFINITY_CONFLICT:
                return "Volume zone/region doesn't match node placement"
            case FailureCategory.NODE_AFFINITY_NOT_MATCH:
                return "Node selector or affinity requirements not satisfied"
            case FailureCategory.TAINT_TOLERATION_MISMATCH:
                return "Node taints not tolerated by pod"
            case FailureCategory.POD_AFFINITY_CONFLICT:
                return "Pod affinity or anti-affinity constraints not satisfied"
            case FailureCategory.NODE_NOT_READY:
                return "Node is not in ready state"
            case FailureCategory.MISCELLANEOUS:
                return "Other scheduling constraints not satisfied"
            case _:
                assert_never(self)


@dataclass(frozen=True)
class ConstraintResult:
    """Outcome of one predicate for one (pod, node) pair.

    A failing result always carries at least one reason.
    """

    satisfied: bool
    reasons: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.satisfied and not self.reasons:
            raise ValueError("an unsatisfied constraint must carry at least one reason")


@dataclass(frozen=True)
class SchedulingEvent:
    type: str
    reason: str
    message: str
    timestamp: datetime | None = None
    count: int = 1


# ---------------------------------------------------------------------------
# Compact report
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResourceFitDetails:
    """CPU/memory requests of a pod against one node."""

    fits: bool
    pod_requests: dict[str, str] = field(default_factory=dict)
    node_capacity: dict[str, str] = field(default_factory=dict)
    node_allocatable: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SchedulingDecisions:
    selected_node: str
    reasons: list[str] = field(default_factory=list)
    matched_affinity: list[str] = field(default_factory=list)
    tolerated_taints: list[str] = field(default_factory=list)
    matched_node_selector: dict[str, str] = field(default_factory=dict)
    resources_fit: ResourceFitDetails | None = None


@dataclass(frozen=True)
class UnschedulableNode:
    node_name: str
    reasons: list[str] = field(default_factory=list)
    unmatched_affinity: list[str] = field(default_factory=list)
    untolerated_taints: list[Taint] = field(default_factory=list)
    unmatched_selectors: dict[str, str] = field(default_factory=dict)
    insufficient_resources: list[str] = field(default_factory=list)
    pod_affinity_conflicts: list[str] = field(default_factory=list)
    volume_issues: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class FailureCategorySummary:
    category: FailureCategory
    count: int
    description: str
    nodes: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PodScheduling:
    namespace: str
    pod_name: str
    status: SchedulingStatus
    node_name: str = ""
    scheduler_name: str = ""
    affinity: Affinity | None = None
    tolerations: list[Toleration] = field(default_factory=list)
    node_selector: dict[str, str] = field(default_factory=dict)
    priority: int | None = None
    priority_class_name: str = ""
    conditions: list[Condition] = field(default_factory=list)
    events: list[SchedulingEvent] = field(default_factory=list)
    scheduling_decisions: SchedulingDecisions | None = None
    unschedulable_nodes: list[UnschedulableNode] = field(default_factory=list)
    failure_categories: list[FailureCategory] = field(default_factory=list)
    failure_summary: list[FailureCategorySummary] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Detailed explanation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NodeReadyExplanation:
    ready: bool
    conditions: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ResourceDetail:
    pod_requests: str
    node_capacity: str
    node_allocatable: str
    node_allocated: str
    node_available: str
    percent_used: float = 0.0
    shortage: str = ""
    recommendation: str = ""


@dataclass(frozen=True)
class ResourceExplanation:
    fits: bool
    details: dict[str, ResourceDetail] = field(default_factory=dict)
    summary: str = ""


@dataclass(frozen=True)
class SelectorExplanation:
    matched: bool
    required: dict[str, str] = field(default_factory=dict)
    node_labels: dict[str, str] = field(default_factory=dict)
    missing_labels: list[str] = field(default_factory=list)
    details: str = ""


@dataclass(frozen=True)
class NodeAffinityDetail:
    required_matched: bool
    failed_terms: list[str] = field(default_factory=list)
    details: str = ""


@dataclass(frozen=True)
class AffinityExplanation:
    node_selector: SelectorExplanation | None = None
    node_affinity: NodeAffinityDetail | None = None
    summary: str = ""


@dataclass(frozen=True)
class TaintExplanation:
    tolerated: bool
    node_taints: list[Taint] = field(default_factory=list)
    pod_tolerations: list[str] = field(default_factory=list)
    untolerated_taints: list[Taint] = field(default_factory=list)
    details: str = ""


@dataclass(frozen=True)
class PodAffinityExplanation:
    satisfied: bool
    anti_affinity_failed: list[str] = field(default_factory=list)
    required_not_met: list[str] = field(default_factory=list)
    details: str = ""


@dataclass(frozen=True)
class VolumeExplanation:
    satisfied: bool
    issues: list[str] = field(default_factory=list)
    details: str = ""


@dataclass(frozen=True)
class NodeSchedulingReasons:
    """Only the checks that failed on a node are populated."""

    node_ready: NodeReadyExplanation | None = None
    resources: ResourceExplanation | None = None
    affinity: AffinityExplanation | None = None
    taints: TaintExplanation | None = None
    pod_affinity: PodAffinityExplanation | None = None
    volume: VolumeExplanation | None = None


@dataclass(frozen=True)
class NodeSchedulingExplanation:
    node_name: str
    schedulable: bool
    reasons: NodeSchedulingReasons = field(default_factory=NodeSchedulingReasons)
    recommendation: str = ""


@dataclass(frozen=True)
class SchedulingSummary:
    total_nodes: int = 0
    filtered_by_node_not_ready: int = 0
    filtered_by_resources: int = 0
    filtered_by_node_selector: int = 0
    filtered_by_node_affinity: int = 0
    filtered_by_taints: int = 0
    filtered_by_pod_affinity: int = 0
    filtered_by_volume: int = 0
    recommendation: str = ""
    possible_actions: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SchedulingExplanation:
    pod_name: str
    namespace: str
    status: SchedulingStatus
    node_name: str = ""
    node_analysis: list[NodeSchedulingExplanation] = field(default_factory=list)
    summary: SchedulingSummary = field(default_factory=SchedulingSummary)
    events: list[SchedulingEvent] = field(default_factory=list)
