"""Pydantic response models for the KubeDiag REST API.

All models use Pydantic v2 syntax and are built from the engine's report
dataclasses with ``model_validate`` (``from_attributes``).  Field names
are serialised in camelCase; map keys (labels, resource names, health
component names) are passed through unchanged.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from kubediag.models.snapshots import RunningState, TerminatedState, WaitingState


class CamelModel(BaseModel):
    """Base for every response body: camelCase aliases, built from attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ---------------------------------------------------------------------------
# Envelope and health
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Standard error envelope returned for all 4xx and 5xx responses."""

    error: str = Field(
        ...,
        description="Machine-readable error code.",
        examples=[
            "RESOURCE_NOT_FOUND",
            "METRICS_UNAVAILABLE",
            "REQUEST_TIMEOUT",
            "INVALID_PARAMETER",
            "INTERNAL_ERROR",
        ],
    )
    detail: str = Field(
        ...,
        description="Human-readable description of the error.",
        examples=["Pod 'default/api-0' not found"],
    )


class HealthStatus(BaseModel):
    """Response body for ``GET /api/v1/health``."""

    status: str = Field(..., description="Always ``ok`` while the process is running.", examples=["ok"])
    version: str = Field(..., description="KubeDiag version string.", examples=["0.1.0"])
    cluster_id: str = Field(default="", description="Configured cluster identifier.")


# ---------------------------------------------------------------------------
# Shared Kubernetes shapes
# ---------------------------------------------------------------------------


class ConditionSchema(CamelModel):
    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = None


class TaintSchema(CamelModel):
    key: str
    value: str = ""
    effect: str = ""


class TolerationSchema(CamelModel):
    key: str = ""
    operator: str = ""
    value: str = ""
    effect: str = ""


class SelectorRequirementSchema(CamelModel):
    key: str
    operator: str
    values: list[str] = Field(default_factory=list)


class NodeSelectorTermSchema(CamelModel):
    match_expressions: list[SelectorRequirementSchema] = Field(default_factory=list)
    match_fields: list[SelectorRequirementSchema] = Field(default_factory=list)


class NodeAffinitySchema(CamelModel):
    required: list[NodeSelectorTermSchema] | None = None
    preferred: list[NodeSelectorTermSchema] = Field(default_factory=list)


class LabelSelectorSchema(CamelModel):
    match_labels: dict[str, str] = Field(default_factory=dict)
    match_expressions: list[SelectorRequirementSchema] = Field(default_factory=list)


class PodAffinityTermSchema(CamelModel):
    label_selector: LabelSelectorSchema | None = None
    namespaces: list[str] = Field(default_factory=list)
    topology_key: str = ""


class AffinitySchema(CamelModel):
    node_affinity: NodeAffinitySchema | None = None
    pod_affinity: list[PodAffinityTermSchema] = Field(default_factory=list)
    pod_anti_affinity: list[PodAffinityTermSchema] = Field(default_factory=list)


class EventInfoSchema(CamelModel):
    type: str
    reason: str
    message: str
    count: int
    source: str
    first_timestamp: datetime | None = None
    last_timestamp: datetime | None = None


class ContainerStateSchema(CamelModel):
    """One of running / waiting / terminated, flattened with a ``state`` tag."""

    state: str
    reason: str = ""
    message: str = ""
    exit_code: int | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _from_state(cls, value: Any) -> Any:
        match value:
            case RunningState():
                return {"state": "running", "started_at": value.started_at}
            case WaitingState():
                return {"state": "waiting", "reason": value.reason, "message": value.message}
            case TerminatedState():
                return {
                    "state": "terminated",
                    "reason": value.reason,
                    "message": value.message,
                    "exit_code": value.exit_code,
                    "started_at": value.started_at,
                    "finished_at": value.finished_at,
                }
        return value


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


class SchedulingEventSchema(CamelModel):
    type: str
    reason: str
    message: str
    timestamp: datetime | None = None
    count: int = 1


class ResourceFitDetailsSchema(CamelModel):
    fits: bool
    pod_requests: dict[str, str] = Field(default_factory=dict)
    node_capacity: dict[str, str] = Field(default_factory=dict)
    node_allocatable: dict[str, str] = Field(default_factory=dict)


class SchedulingDecisionsSchema(CamelModel):
    selected_node: str
    reasons: list[str] = Field(default_factory=list)
    matched_affinity: list[str] = Field(default_factory=list)
    tolerated_taints: list[str] = Field(default_factory=list)
    matched_node_selector: dict[str, str] = Field(default_factory=dict)
    resources_fit: ResourceFitDetailsSchema | None = None


class UnschedulableNodeSchema(CamelModel):
    node_name: str
    reasons: list[str] = Field(default_factory=list)
    unmatched_affinity: list[str] = Field(default_factory=list)
    untolerated_taints: list[TaintSchema] = Field(default_factory=list)
    unmatched_selectors: dict[str, str] = Field(default_factory=dict)
    insufficient_resources: list[str] = Field(default_factory=list)
    pod_affinity_conflicts: list[str] = Field(default_factory=list)
    volume_issues: list[str] = Field(default_factory=list)


class FailureCategorySummarySchema(CamelModel):
    category: str
    count: int
    description: str
    nodes: list[str] = Field(default_factory=list)


class PodSchedulingResponse(CamelModel):
    """Response body for ``GET /api/v1/pods/{namespace}/{pod}/scheduling``."""

    namespace: str
    pod_name: str
    status: str
    node_name: str = ""
    scheduler_name: str = ""
    affinity: AffinitySchema | None = None
    tolerations: list[TolerationSchema] = Field(default_factory=list)
    node_selector: dict[str, str] = Field(default_factory=dict)
    priority: int | None = None
    priority_class_name: str = ""
    conditions: list[ConditionSchema] = Field(default_factory=list)
    events: list[SchedulingEventSchema] = Field(default_factory=list)
    scheduling_decisions: SchedulingDecisionsSchema | None = None
    unschedulable_nodes: list[UnschedulableNodeSchema] = Field(default_factory=list)
    failure_categories: list[str] = Field(default_factory=list)
    failure_summary: list[FailureCategorySummarySchema] = Field(default_factory=list)


class NodeReadySchema(CamelModel):
    ready: bool
    conditions: list[str] = Field(default_factory=list)


class ResourceDetailSchema(CamelModel):
    pod_requests: str
    node_capacity: str
    node_allocatable: str
    node_allocated: str
    node_available: str
    percent_used: float = 0.0
    shortage: str = ""
    recommendation: str = ""


class ResourceExplanationSchema(CamelModel):
    fits: bool
    details: dict[str, ResourceDetailSchema] = Field(default_factory=dict)
    summary: str = ""


class SelectorExplanationSchema(CamelModel):
    matched: bool
    required: dict[str, str] = Field(default_factory=dict)
    node_labels: dict[str, str] = Field(default_factory=dict)
    missing_labels: list[str] = Field(default_factory=list)
    details: str = ""


class NodeAffinityDetailSchema(CamelModel):
    required_matched: bool
    failed_terms: list[str] = Field(default_factory=list)
    details: str = ""


class AffinityExplanationSchema(CamelModel):
    node_selector: SelectorExplanationSchema | None = None
    node_affinity: NodeAffinityDetailSchema | None = None
    summary: str = ""


class TaintExplanationSchema(CamelModel):
    tolerated: bool
    node_taints: list[TaintSchema] = Field(default_factory=list)
    pod_tolerations: list[str] = Field(default_factory=list)
    untolerated_taints: list[TaintSchema] = Field(default_factory=list)
    details: str = ""


class PodAffinityExplanationSchema(CamelModel):
    satisfied: bool
    anti_affinity_failed: list[str] = Field(default_factory=list)
    required_not_met: list[str] = Field(default_factory=list)
    details: str = ""


class VolumeExplanationSchema(CamelModel):
    satisfied: bool
    issues: list[str] = Field(default_factory=list)
    details: str = ""


class NodeSchedulingReasonsSchema(CamelModel):
    node_ready: NodeReadySchema | None = None
    resources: ResourceExplanationSchema | None = None
    affinity: AffinityExplanationSchema | None = None
    taints: TaintExplanationSchema | None = None
    pod_affinity: PodAffinityExplanationSchema | None = None
    volume: VolumeExplanationSchema | None = None


class NodeSchedulingExplanationSchema(CamelModel):
    node_name: str
    schedulable: bool
    reasons: NodeSchedulingReasonsSchema
    recommendation: str = ""


class SchedulingSummarySchema(CamelModel):
    total_nodes: int = 0
    filtered_by_node_not_ready: int = 0
    filtered_by_resources: int = 0
    filtered_by_node_selector: int = 0
    filtered_by_node_affinity: int = 0
    filtered_by_taints: int = 0
    filtered_by_pod_affinity: int = 0
    filtered_by_volume: int = 0
    recommendation: str = ""
    possible_actions: list[str] = Field(default_factory=list)


class SchedulingExplanationResponse(CamelModel):
    """Response body for ``GET /api/v1/pods/{namespace}/{pod}/scheduling/explain``."""

    pod_name: str
    namespace: str
    status: str
    node_name: str = ""
    node_analysis: list[NodeSchedulingExplanationSchema] = Field(default_factory=list)
    summary: SchedulingSummarySchema
    events: list[SchedulingEventSchema] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Health score
# ---------------------------------------------------------------------------


class HealthComponentSchema(CamelModel):
    name: str
    score: int
    weight: float
    status: str
    description: str


class ContainerHealthSchema(CamelModel):
    name: str
    state: str
    ready: bool
    restart_count: int
    exit_code: int | None = None
    reason: str = ""


class EventSummarySchema(CamelModel):
    type: str
    reason: str
    message: str
    count: int
    last_seen: datetime | None = None


class ConditionStatusSchema(CamelModel):
    type: str
    status: str
    reason: str = ""
    message: str = ""


class HealthDetailsSchema(CamelModel):
    restart_count: int = 0
    restart_frequency: str = ""
    uptime: str = ""
    last_restart_time: datetime | None = None
    last_restart_reason: str = ""
    container_statuses: list[ContainerHealthSchema] = Field(default_factory=list)
    recent_events: list[EventSummarySchema] = Field(default_factory=list)
    pod_conditions: list[ConditionStatusSchema] = Field(default_factory=list)


class PodHealthScoreResponse(CamelModel):
    """Response body for ``GET /api/v1/pods/{namespace}/{pod}/health-score``."""

    pod_name: str
    namespace: str
    overall_score: int
    status: str
    components: dict[str, HealthComponentSchema]
    calculated_at: datetime
    details: HealthDetailsSchema


# ---------------------------------------------------------------------------
# Pod details
# ---------------------------------------------------------------------------


class PodStatusInfoSchema(CamelModel):
    phase: str
    reason: str = ""
    message: str = ""
    host_ip: str = ""
    pod_ip: str = ""
    nominated_node_name: str = ""


class VolumeMountSchema(CamelModel):
    name: str
    mount_path: str
    read_only: bool = False
    sub_path: str = ""


class ContainerInfoSchema(CamelModel):
    name: str
    image: str
    image_id: str = ""
    state: ContainerStateSchema | None = None
    ready: bool = False
    restart_count: int = 0
    requests: dict[str, str] = Field(default_factory=dict)
    limits: dict[str, str] = Field(default_factory=dict)
    environment: list[str] = Field(default_factory=list)
    mounts: list[VolumeMountSchema] = Field(default_factory=list)


class VolumeInfoSchema(CamelModel):
    name: str
    type: str


class PodDescriptionResponse(CamelModel):
    """Response body for ``GET /api/v1/pods/{namespace}/{pod}/describe``."""

    name: str
    namespace: str
    status: PodStatusInfoSchema
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    node: str = ""
    start_time: datetime | None = None
    containers: list[ContainerInfoSchema] = Field(default_factory=list)
    init_containers: list[ContainerInfoSchema] = Field(default_factory=list)
    volumes: list[VolumeInfoSchema] = Field(default_factory=list)
    pod_ip: str = ""
    pod_ips: list[str] = Field(default_factory=list)
    qos_class: str = ""
    priority: int | None = None
    priority_class_name: str = ""
    tolerations: list[TolerationSchema] = Field(default_factory=list)
    node_selector: dict[str, str] = Field(default_factory=dict)
    events: list[EventInfoSchema] = Field(default_factory=list)
    conditions: list[ConditionSchema] = Field(default_factory=list)


class ContainerResourcesSchema(CamelModel):
    name: str
    requests: dict[str, str] = Field(default_factory=dict)
    limits: dict[str, str] = Field(default_factory=dict)


class ResourceSummarySchema(CamelModel):
    cpu_request: str
    cpu_limit: str
    memory_request: str
    memory_limit: str


class PodResourcesResponse(CamelModel):
    """Response body for ``GET /api/v1/pods/{namespace}/{pod}/resources``."""

    containers: list[ContainerResourcesSchema]
    total: ResourceSummarySchema


class FailureEventSchema(CamelModel):
    event: EventInfoSchema
    category: str
    severity: str
    possible_causes: list[str] = Field(default_factory=list)
    suggested_action: str = ""
    is_recurring: bool = False
    recurrence_rate: str = ""
    time_since_first: str = ""


class PodFailureEventsResponse(CamelModel):
    """Response body for ``GET /api/v1/pods/{namespace}/{pod}/failure-events``."""

    pod_name: str
    namespace: str
    total_events: int
    failure_events: list[FailureEventSchema]
    event_categories: dict[str, int]
    critical_events: int
    warning_events: int
    most_recent_issue: FailureEventSchema | None = None
    ongoing_issues: list[str] = Field(default_factory=list)
    pod_phase: str
    pod_status: str


class NodeUtilizationResponse(CamelModel):
    """Response body for ``GET /api/v1/nodes/{node}/utilization``."""

    node_name: str
    cpu_usage: str
    cpu_capacity: str
    cpu_percentage: float
    memory_usage: str
    memory_capacity: str
    memory_percentage: float
    timestamp: datetime


# ---------------------------------------------------------------------------
# Namespace errors
# ---------------------------------------------------------------------------


class PodIssueSchema(CamelModel):
    type: str
    description: str
    severity: str
    details: str = ""


class ProblematicPodSchema(CamelModel):
    name: str
    namespace: str
    owner_kind: str
    owner_name: str
    phase: str
    status: str
    restart_count: int
    age: str
    issues: list[PodIssueSchema] = Field(default_factory=list)
    recent_events: list[EventInfoSchema] = Field(default_factory=list)


class NamespaceErrorSummarySchema(CamelModel):
    issue_type: str
    count: int
    description: str
    affected_pods: list[str] = Field(default_factory=list)


class NamespaceErrorReportResponse(CamelModel):
    """Response body for ``GET /api/v1/namespace/{namespace}/error``."""

    namespace: str
    analysis_time: datetime
    total_pods_analyzed: int
    problematic_pods_count: int
    healthy_pods_count: int
    restart_threshold_used: int
    summary: list[NamespaceErrorSummarySchema] = Field(default_factory=list)
    problematic_pods: list[ProblematicPodSchema] = Field(default_factory=list)
    critical_issues_count: int = 0
    warning_issues_count: int = 0


# ---------------------------------------------------------------------------
# Cluster issues
# ---------------------------------------------------------------------------


class ClusterPodIssueSchema(CamelModel):
    pod_name: str
    namespace: str
    category: str
    severity: str
    reason: str
    message: str
    last_seen: datetime
    count: int = 0
    first_seen: datetime | None = None
    is_recurring: bool = False
    node_name: str = ""
    container_name: str = ""


class NamespaceIssuesSchema(CamelModel):
    namespace: str
    total_pods: int = 0
    issues_count: int = 0
    critical_count: int = 0
    warning_count: int = 0
    top_issues: list[ClusterPodIssueSchema] = Field(default_factory=list)


class IssueSummarySchema(CamelModel):
    category: str
    count: int
    severity: str
    description: str
    affected_pods: list[str] = Field(default_factory=list)


class IssueVelocitySchema(CamelModel):
    new_issues_last_hour: int = 0
    new_issues_last_24h: int = 0
    resolved_last_hour: int = 0
    resolved_last_24h: int = 0
    trend_direction: str = "stable"
    velocity_per_hour: float = 0.0


class IssuePatternSchema(CamelModel):
    type: str
    description: str
    count: int
    namespaces: list[str]
    common_labels: dict[str, str]
    first_seen: datetime
    last_seen: datetime


class ClusterIssuesResponse(CamelModel):
    """Response body for ``GET /api/v1/cluster/pod-issues``."""

    total_pods: int
    healthy_pods: int
    unhealthy_pods: int
    issue_categories: dict[str, int]
    issues_by_namespace: dict[str, NamespaceIssuesSchema]
    top_issues: list[IssueSummarySchema]
    issue_velocity: IssueVelocitySchema
    patterns: list[IssuePatternSchema]
    critical_issues: list[ClusterPodIssueSchema]
    calculated_at: datetime
