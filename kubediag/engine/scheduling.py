"""Scheduling explainer.

Runs the constraint evaluator over the cluster's nodes for one pod and
turns the per-node results into either a compact :class:`PodScheduling`
report or a detailed :class:`SchedulingExplanation`.

Everything here is a pure function of a :class:`SchedulingInputs`
snapshot; fetching is the coordinator's job.  Node results are always
ordered by node name so repeated calls on the same snapshot produce
identical output.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from kubediag.engine.categorize import aggregate_failure_categories, parse_failed_scheduling_message
from kubediag.engine.constraints import (
    CPU,
    EPHEMERAL_STORAGE,
    MEMORY,
    allocated_on_node,
    anti_affinity_conflicts,
    container_requests,
    describe_failed_term,
    describe_toleration,
    evaluate_node_affinity,
    evaluate_pod_anti_affinity,
    evaluate_resource_fit,
    evaluate_taints,
    evaluate_volume_binding,
    has_claim_volumes,
    matches_node_selector_term,
    pod_matches_term,
    unmatched_node_selector,
)
from kubediag.engine.quantity import Quantity, quantity_or_zero
from kubediag.models.scheduling import (
    AffinityExplanation,
    FailureCategorySummary,
    NodeAffinityDetail,
    NodeReadyExplanation,
    NodeSchedulingExplanation,
    NodeSchedulingReasons,
    PodAffinityExplanation,
    PodScheduling,
    ResourceDetail,
    ResourceExplanation,
    SchedulingDecisions,
    SchedulingEvent,
    SchedulingExplanation,
    SchedulingStatus,
    SchedulingSummary,
    SelectorExplanation,
    TaintExplanation,
    UnschedulableNode,
    VolumeExplanation,
)
from kubediag.models.snapshots import (
    EventRecord,
    NodeSnapshot,
    PodPhase,
    PodSnapshot,
    VolumeClaimSnapshot,
    VolumeSnapshot,
)

_SCHEDULING_REASONS = frozenset({"FailedScheduling", "Scheduled", "Preempted", "NotTriggerScaleUp"})
_DEFAULT_SCHEDULER = "default-scheduler"
_EPOCH = datetime.min.replace(tzinfo=UTC)


@dataclass(frozen=True)
class SchedulingInputs:
    """Everything the explainer reads for one pod.

    ``pods_by_node`` maps a node name to the pods currently placed on it.
    ``claims`` and ``volumes`` hold the PVCs/PVs that could be read.
    """

    pod: PodSnapshot
    nodes: Sequence[NodeSnapshot] = ()
    pods_by_node: Mapping[str, Sequence[PodSnapshot]] = field(default_factory=dict)
    claims: Mapping[str, VolumeClaimSnapshot] = field(default_factory=dict)
    volumes: Mapping[str, VolumeSnapshot] = field(default_factory=dict)
    events: Sequence[EventRecord] = ()

    def node_pods(self, node_name: str) -> Sequence[PodSnapshot]:
        return self.pods_by_node.get(node_name, ())

    def sorted_nodes(self) -> list[NodeSnapshot]:
        return sorted(self.nodes, key=lambda n: n.name)


def scheduling_events(events: Sequence[EventRecord]) -> list[SchedulingEvent]:
    """Scheduler-related events, newest first."""
    selected = [
        SchedulingEvent(
            type=e.type,
            reason=e.reason,
            message=e.message,
            timestamp=e.last_timestamp,
            count=e.count,
        )
        for e in events
        if e.reason in _SCHEDULING_REASONS or e.source_component == _DEFAULT_SCHEDULER
    ]
    selected.sort(key=lambda e: e.timestamp or _EPOCH, reverse=True)
    return selected


def scheduling_status(pod: PodSnapshot) -> SchedulingStatus:
    if pod.node_name:
        return SchedulingStatus.SCHEDULED
    if pod.phase == PodPhase.PENDING:
        return SchedulingStatus.PENDING
    return SchedulingStatus.FAILED


# ---------------------------------------------------------------------------
# Compact report
# ---------------------------------------------------------------------------


def analyze_scheduling_decision(pod: PodSnapshot, node: NodeSnapshot) -> SchedulingDecisions:
    """Positive decision trace for the node a pod was placed on."""
    reasons: list[str] = []
    matched_affinity: list[str] = []
    tolerated: list[str] = []

    affinity = evaluate_node_affinity(pod, node)
    if affinity.satisfied:
        reasons.extend(affinity.reasons)
        matched_affinity = list(affinity.reasons)

    taints = evaluate_taints(pod, node)
    if taints.result.satisfied:
        if taints.tolerated:
            reasons.append(f"tolerates node taints: [{' '.join(taints.tolerated)}]")
            tolerated = taints.tolerated
        else:
            reasons.append("node has no taints")

    matched_selector = {k: v for k, v in sorted(pod.node_selector.items()) if node.labels.get(k) == v}
    if matched_selector:
        reasons.append("node selector labels matched")

    fit = evaluate_resource_fit(pod, node)
    if fit.details.fits:
        reasons.append("node has sufficient resources")

    if not reasons:
        reasons.append("no specific scheduling constraints, selected by scheduler algorithm")

    return SchedulingDecisions(
        selected_node=node.name,
        reasons=reasons,
        matched_affinity=matched_affinity,
        tolerated_taints=tolerated,
        matched_node_selector=matched_selector,
        resources_fit=fit.details,
    )


def analyze_unschedulable_node(inputs: SchedulingInputs, node: NodeSnapshot) -> UnschedulableNode | None:
    """Run every predicate for ``node``; ``None`` means the node could host the pod."""
    pod = inputs.pod
    reasons: list[str] = []

    if not node.is_ready:
        reasons.append("node is not ready")
    if node.unschedulable:
        reasons.append("node is marked as unschedulable")

    unmatched_affinity: list[str] = []
    affinity = evaluate_node_affinity(pod, node)
    if not affinity.satisfied:
        reasons.extend(affinity.reasons)
        unmatched_affinity = list(affinity.reasons)

    taints = evaluate_taints(pod, node)
    if not taints.result.satisfied:
        reasons.append(f"node has untolerated taints: {len(taints.untolerated)}")

    unmatched_selectors = unmatched_node_selector(pod, node)
    if unmatched_selectors:
        reasons.append("node selector not matched")

    fit = evaluate_resource_fit(pod, node)
    if not fit.result.satisfied:
        reasons.append("insufficient resources")

    anti = evaluate_pod_anti_affinity(pod, inputs.node_pods(node.name))
    if not anti.satisfied:
        reasons.append("pod anti-affinity conflict")

    volume_issues: list[str] = []
    if has_claim_volumes(pod):
        volumes = evaluate_volume_binding(pod, node, inputs.claims, inputs.volumes)
        if not volumes.result.satisfied:
            volume_issues = list(volumes.result.reasons)
            reasons.extend(volume_issues)

    if not reasons:
        return None
    return UnschedulableNode(
        node_name=node.name,
        reasons=reasons,
        unmatched_affinity=unmatched_affinity,
        untolerated_taints=taints.untolerated,
        unmatched_selectors=unmatched_selectors,
        insufficient_resources=list(fit.result.reasons) if not fit.result.satisfied else [],
        pod_affinity_conflicts=list(anti.reasons),
        volume_issues=volume_issues,
    )


def explain_scheduling(inputs: SchedulingInputs, assigned_node: NodeSnapshot | None = None) -> PodScheduling:
    """Build the compact scheduling report for ``inputs.pod``.

    ``assigned_node`` is the node the pod is bound to, when it could be
    read; a scheduled pod without it gets no decision trace.
    """
    pod = inputs.pod
    status = scheduling_status(pod)
    events = scheduling_events(inputs.events)

    decisions = None
    unschedulable: list[UnschedulableNode] = []
    summary: list[FailureCategorySummary] = []

    if status is SchedulingStatus.SCHEDULED and assigned_node is not None:
        decisions = analyze_scheduling_decision(pod, assigned_node)
    elif status is SchedulingStatus.PENDING:
        for node in inputs.sorted_nodes():
            result = analyze_unschedulable_node(inputs, node)
            if result is not None:
                unschedulable.append(result)
        summary = aggregate_failure_categories(unschedulable, events)

    return PodScheduling(
        namespace=pod.namespace,
        pod_name=pod.name,
        status=status,
        node_name=pod.node_name,
        scheduler_name=pod.scheduler_name,
        affinity=pod.affinity,
        tolerations=list(pod.tolerations),
        node_selector=dict(pod.node_selector),
        priority=pod.priority,
        priority_class_name=pod.priority_class_name,
        conditions=list(pod.conditions),
        events=events,
        scheduling_decisions=decisions,
        unschedulable_nodes=unschedulable,
        failure_categories=[s.category for s in summary],
        failure_summary=summary,
    )


# ---------------------------------------------------------------------------
# Detailed explanation
# ---------------------------------------------------------------------------


def explain_node_ready(node: NodeSnapshot) -> NodeReadyExplanation:
    ready = True
    conditions: list[str] = []
    if node.unschedulable:
        ready = False
        conditions.append("Node is marked as unschedulable")
    for condition in node.conditions:
        if condition.type == "Ready":
            if condition.status != "True":
                ready = False
                conditions.append(f"NodeReady condition is {condition.status}: {condition.message}")
        elif condition.status != "False":
            conditions.append(f"{condition.type} condition is {condition.status}: {condition.message}")
    return NodeReadyExplanation(ready=ready, conditions=conditions)


def resource_detail(
    resource: str,
    requested: Quantity,
    capacity: Quantity,
    allocatable: Quantity,
    allocated: Quantity,
) -> ResourceDetail:
    available = allocatable - allocated
    percent_used = 0.0
    if not allocatable.is_zero:
        percent_used = round(allocated.milli / allocatable.milli * 100, 2)

    shortage = ""
    recommendation = ""
    if requested.compare(available) > 0:
        shortage = str(requested - available)
        recommendation = f"Pod needs {shortage} more {resource} than available on this node"

    return ResourceDetail(
        pod_requests=str(requested),
        node_capacity=str(capacity),
        node_allocatable=str(allocatable),
        node_allocated=str(allocated),
        node_available=str(available),
        percent_used=percent_used,
        shortage=shortage,
        recommendation=recommendation,
    )


def explain_resource_fit(pod: PodSnapshot, node: NodeSnapshot, node_pods: Sequence[PodSnapshot]) -> ResourceExplanation:
    """Per-axis request vs. what is still free on the node.

    Ephemeral storage is only reported when the pod requests it.
    """
    details: dict[str, ResourceDetail] = {}
    for resource in (CPU, MEMORY, EPHEMERAL_STORAGE):
        requested = container_requests(pod, resource)
        if resource == EPHEMERAL_STORAGE and requested.is_zero:
            continue
        details[resource] = resource_detail(
            resource,
            requested,
            quantity_or_zero(node.capacity.get(resource), resource=resource, source=node.name),
            quantity_or_zero(node.allocatable.get(resource), resource=resource, source=node.name),
            allocated_on_node(node_pods, resource),
        )

    shortages = [f"{name}: {d.shortage}" for name, d in details.items() if d.shortage]
    summary = f"Insufficient resources: {', '.join(shortages)}" if shortages else ""
    return ResourceExplanation(fits=not shortages, details=details, summary=summary)


def explain_affinity(pod: PodSnapshot, node: NodeSnapshot) -> tuple[bool, AffinityExplanation]:
    matched = True
    selector = None
    if pod.node_selector:
        missing = [f"{k}={v}" for k, v in unmatched_node_selector(pod, node).items()]
        selector = SelectorExplanation(
            matched=not missing,
            required=dict(pod.node_selector),
            node_labels=dict(node.labels),
            missing_labels=missing,
            details=f"Node selector requirements not met. Missing labels: {', '.join(missing)}" if missing else "",
        )
        matched = not missing

    node_affinity = pod.affinity.node_affinity if pod.affinity else None
    affinity_detail = None
    if node_affinity is not None:
        required_matched = True
        failed_terms: list[str] = []
        if node_affinity.required is not None:
            required_matched = False
            for term in node_affinity.required:
                if matches_node_selector_term(node, term):
                    required_matched = True
                    break
                failed_terms.append(describe_failed_term(node, term))
        affinity_detail = NodeAffinityDetail(
            required_matched=required_matched,
            failed_terms=failed_terms,
            details="" if required_matched else "No required node affinity terms matched this node",
        )
        matched = matched and required_matched

    return matched, AffinityExplanation(
        node_selector=selector,
        node_affinity=affinity_detail,
        summary="" if matched else "Node affinity requirements not satisfied",
    )


def explain_taints(pod: PodSnapshot, node: NodeSnapshot) -> TaintExplanation:
    evaluation = evaluate_taints(pod, node)
    details = ""
    if evaluation.untolerated:
        details = f"Pod does not tolerate taints: {', '.join(str(t) for t in evaluation.untolerated)}"
    return TaintExplanation(
        tolerated=evaluation.result.satisfied,
        node_taints=list(node.taints),
        pod_tolerations=[describe_toleration(t) for t in pod.tolerations],
        untolerated_taints=evaluation.untolerated,
        details=details,
    )


def explain_pod_affinity(pod: PodSnapshot, node_pods: Sequence[PodSnapshot]) -> PodAffinityExplanation:
    if pod.affinity is None:
        return PodAffinityExplanation(satisfied=True)

    conflicts = anti_affinity_conflicts(pod, node_pods)
    others = [p for p in node_pods if p.key != pod.key]
    not_met = [
        "No pods matching required affinity term found on node"
        for term in pod.affinity.pod_affinity
        if not any(pod_matches_term(o, term, pod.namespace) for o in others)
    ]

    parts: list[str] = []
    if conflicts:
        parts.append(f"anti-affinity conflicts with pods: {', '.join(conflicts)}")
    if not_met:
        parts.append("; ".join(not_met))
    return PodAffinityExplanation(
        satisfied=not conflicts and not not_met,
        anti_affinity_failed=conflicts,
        required_not_met=not_met,
        details="; ".join(parts),
    )


def explain_volume_constraints(inputs: SchedulingInputs, node: NodeSnapshot) -> VolumeExplanation:
    check = evaluate_volume_binding(inputs.pod, node, inputs.claims, inputs.volumes)
    issues = [*check.result.reasons, *check.notes]
    details = ""
    if not check.result.satisfied:
        details = f"Volume constraints not satisfied: {'; '.join(issues)}"
    return VolumeExplanation(satisfied=check.result.satisfied, issues=issues, details=details)


def node_recommendation(reasons: NodeSchedulingReasons) -> str:
    if reasons.node_ready is not None and not reasons.node_ready.ready:
        return "Node is not ready for scheduling"

    issues: list[str] = []
    if reasons.resources is not None and not reasons.resources.fits:
        shortages = [f"{d.shortage} {name}" for name, d in reasons.resources.details.items() if d.shortage]
        if shortages:
            issues.append(f"needs {', '.join(shortages)}")
    if reasons.affinity is not None:
        if reasons.affinity.node_selector is not None and not reasons.affinity.node_selector.matched:
            issues.append("node selector mismatch")
        if reasons.affinity.node_affinity is not None and not reasons.affinity.node_affinity.required_matched:
            issues.append("node affinity mismatch")
    if reasons.taints is not None and not reasons.taints.tolerated:
        issues.append(f"{len(reasons.taints.untolerated_taints)} untolerated taints")
    if reasons.pod_affinity is not None and not reasons.pod_affinity.satisfied:
        issues.append("pod affinity conflict")
    if reasons.volume is not None and not reasons.volume.satisfied:
        issues.append("volume constraints")

    if not issues:
        return "Node is schedulable for this pod"
    return f"Node cannot schedule pod due to: {', '.join(issues)}"


def analyze_node(inputs: SchedulingInputs, node: NodeSnapshot) -> NodeSchedulingExplanation:
    """Detailed explanation of whether ``node`` can host the pod."""
    pod = inputs.pod
    node_pods = inputs.node_pods(node.name)

    ready = explain_node_ready(node)
    resources = explain_resource_fit(pod, node, node_pods)
    affinity_ok, affinity = explain_affinity(pod, node)
    taints = explain_taints(pod, node)
    pod_affinity = explain_pod_affinity(pod, node_pods)
    volume = explain_volume_constraints(inputs, node) if has_claim_volumes(pod) else None

    reasons = NodeSchedulingReasons(
        node_ready=None if ready.ready else ready,
        resources=None if resources.fits else resources,
        affinity=None if affinity_ok else affinity,
        taints=None if taints.tolerated else taints,
        pod_affinity=None if pod_affinity.satisfied else pod_affinity,
        volume=None if volume is None or volume.satisfied else volume,
    )
    schedulable = all(
        part is None
        for part in (
            reasons.node_ready,
            reasons.resources,
            reasons.affinity,
            reasons.taints,
            reasons.pod_affinity,
            reasons.volume,
        )
    )
    return NodeSchedulingExplanation(
        node_name=node.name,
        schedulable=schedulable,
        reasons=reasons,
        recommendation=node_recommendation(reasons),
    )


def scheduling_recommendation(
    pod: PodSnapshot,
    analysis: Sequence[NodeSchedulingExplanation],
    events: Sequence[SchedulingEvent],
) -> str:
    if pod.node_name:
        return f"Pod is already scheduled on node {pod.node_name}"

    total = len(analysis)
    resource_issues = sum(1 for a in analysis if a.reasons.resources is not None)
    affinity_issues = sum(1 for a in analysis if a.reasons.affinity is not None)
    taint_issues = sum(1 for a in analysis if a.reasons.taints is not None)
    not_ready = sum(1 for a in analysis if a.reasons.node_ready is not None)

    if resource_issues == total:
        return "No nodes have sufficient resources. Consider scaling up the cluster or reducing pod resource requests."
    if affinity_issues == total:
        return "No nodes match the pod's affinity requirements. Review node labels and affinity rules."
    if taint_issues > 0 and taint_issues == total - not_ready:
        return "All available nodes have taints that the pod doesn't tolerate. Add appropriate tolerations to the pod."

    for event in events:
        if event.reason == "FailedScheduling" and parse_failed_scheduling_message(event.message):
            return f"Scheduling failed: {event.message}. See node analysis for details."

    return "Pod cannot be scheduled. Review the detailed node analysis above for specific issues on each node."


def possible_actions(analysis: Sequence[NodeSchedulingExplanation]) -> list[str]:
    actions: set[str] = set()
    for node in analysis:
        reasons = node.reasons
        if reasons.resources is not None:
            for name, detail in reasons.resources.details.items():
                if detail.shortage:
                    actions.add(f"Reduce pod {name} request by at least {detail.shortage}")
            actions.add("Scale up cluster by adding more nodes")
            actions.add("Enable cluster autoscaler if not already enabled")
        if reasons.affinity is not None:
            if reasons.affinity.node_selector is not None and not reasons.affinity.node_selector.matched:
                actions.add("Remove or modify node selector requirements")
                actions.add("Label nodes to match selector requirements")
            if reasons.affinity.node_affinity is not None and not reasons.affinity.node_affinity.required_matched:
                actions.add("Modify node affinity rules to be less restrictive")
                actions.add("Add nodes that match affinity requirements")
        if reasons.taints is not None:
            actions.add("Add tolerations for node taints to the pod spec")
            actions.add("Remove taints from nodes if appropriate")
        if reasons.volume is not None:
            actions.add("Ensure PVCs are bound and available")
            actions.add("Check volume node affinity matches available nodes")
            actions.add("Consider using different storage class or access modes")
    return sorted(actions)


def summarize(
    pod: PodSnapshot,
    analysis: Sequence[NodeSchedulingExplanation],
    events: Sequence[SchedulingEvent],
) -> SchedulingSummary:
    def count(predicate: Callable[[NodeSchedulingReasons], bool]) -> int:
        return sum(1 for a in analysis if predicate(a.reasons))

    return SchedulingSummary(
        total_nodes=len(analysis),
        filtered_by_node_not_ready=count(lambda r: r.node_ready is not None),
        filtered_by_resources=count(lambda r: r.resources is not None),
        filtered_by_node_selector=count(
            lambda r: r.affinity is not None
            and r.affinity.node_selector is not None
            and not r.affinity.node_selector.matched
        ),
        filtered_by_node_affinity=count(
            lambda r: r.affinity is not None
            and r.affinity.node_affinity is not None
            and not r.affinity.node_affinity.required_matched
        ),
        filtered_by_taints=count(lambda r: r.taints is not None),
        filtered_by_pod_affinity=count(lambda r: r.pod_affinity is not None),
        filtered_by_volume=count(lambda r: r.volume is not None),
        recommendation=scheduling_recommendation(pod, analysis, events),
        possible_actions=possible_actions(analysis),
    )


def explain_scheduling_detailed(inputs: SchedulingInputs) -> SchedulingExplanation:
    """Build the detailed per-node scheduling explanation for ``inputs.pod``."""
    pod = inputs.pod
    events = scheduling_events(inputs.events)
    analysis = [analyze_node(inputs, node) for node in inputs.sorted_nodes()]
    return SchedulingExplanation(
        pod_name=pod.name,
        namespace=pod.namespace,
        status=SchedulingStatus.SCHEDULED if pod.node_name else SchedulingStatus.PENDING,
        node_name=pod.node_name,
        node_analysis=analysis,
        summary=summarize(pod, analysis, events),
        events=events,
    )
