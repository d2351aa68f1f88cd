"""Namespace analyzer: problematic controller-owned pods in one namespace."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta

from kubediag.engine.durations import format_age
from kubediag.engine.pod_details import to_event_info
from kubediag.models.common import EventInfo, Severity
from kubediag.models.issues import (
    NamespaceErrorReport,
    NamespaceErrorSummary,
    PodIssue,
    PodIssueType,
    ProblematicPod,
)
from kubediag.models.snapshots import (
    EventRecord,
    PodPhase,
    PodSnapshot,
    TerminatedState,
    WaitingState,
)
from kubediag.observability.logging import get_logger

_log = get_logger("namespace_analyzer")

_CONTROLLER_KINDS = frozenset({"ReplicaSet", "StatefulSet"})
_PENDING_GRACE = timedelta(minutes=5)
_EVENT_WINDOW = timedelta(hours=1)
_MAX_RECENT_EVENTS = 5


def is_controller_owned(pod: PodSnapshot) -> bool:
    return any(owner.kind in _CONTROLLER_KINDS for owner in pod.owner_references)


def owner_info(pod: PodSnapshot) -> tuple[str, str]:
    """Return ``(kind, name)`` of the workload that owns ``pod``.

    A ReplicaSet owner is reported as its Deployment by dropping the
    trailing pod-template-hash segment.
    """
    for owner in pod.owner_references:
        if owner.kind == "ReplicaSet":
            deployment, sep, _ = owner.name.rpartition("-")
            return "Deployment", deployment if sep else owner.name
        if owner.kind == "StatefulSet":
            return "StatefulSet", owner.name
    return "", ""


def total_restarts(pod: PodSnapshot) -> int:
    return sum(s.restart_count for s in (*pod.container_statuses, *pod.init_container_statuses))


def _restart_details(pod: PodSnapshot) -> str:
    return ", ".join(f"{s.name}: {s.restart_count} restarts" for s in pod.container_statuses if s.restart_count > 0)


def _pending_issue(pod: PodSnapshot, age: timedelta) -> PodIssue:
    issue_type = PodIssueType.PENDING
    details = ""
    scheduled = pod.condition("PodScheduled")
    if scheduled is not None and scheduled.status == "False":
        details = scheduled.message
        message = scheduled.message.lower()
        if "insufficient" in message:
            issue_type = PodIssueType.RESOURCE_CONSTRAINTS
        elif "unschedulable" in message:
            issue_type = PodIssueType.UNSCHEDULABLE
    return PodIssue(
        type=issue_type,
        description=f"Pod has been pending for {format_age(age)}",
        severity=Severity.CRITICAL,
        details=details,
    )


def _container_issues(pod: PodSnapshot) -> list[PodIssue]:
    issues: list[PodIssue] = []
    for status in pod.container_statuses:
        state = status.state
        if isinstance(state, WaitingState):
            if state.reason == "CrashLoopBackOff":
                issues.append(
                    PodIssue(
                        type=PodIssueType.CRASH_LOOP,
                        description=f"Container {status.name} is in CrashLoopBackOff state",
                        severity=Severity.CRITICAL,
                        details=state.message,
                    )
                )
            elif state.reason in ("ImagePullBackOff", "ErrImagePull"):
                issues.append(
                    PodIssue(
                        type=PodIssueType.IMAGE_PULL,
                        description=f"Container {status.name} has image pull error: {state.reason}",
                        severity=Severity.CRITICAL,
                        details=state.message,
                    )
                )
        elif isinstance(state, TerminatedState) and state.exit_code != 0:
            issues.append(
                PodIssue(
                    type=PodIssueType.FAILED,
                    description=f"Container {status.name} terminated with exit code {state.exit_code}",
                    severity=Severity.WARNING,
                    details=state.reason,
                )
            )
    return issues


def recent_warning_events(events: Sequence[EventRecord], now: datetime) -> list[EventInfo]:
    """Warning events seen within the last hour, newest first, at most five."""
    cutoff = now - _EVENT_WINDOW
    recent = [
        e for e in events if e.type == "Warning" and e.last_timestamp is not None and e.last_timestamp > cutoff
    ]
    recent.sort(key=lambda e: e.last_timestamp or cutoff, reverse=True)
    return [to_event_info(e) for e in recent[:_MAX_RECENT_EVENTS]]


def analyze_pod(
    pod: PodSnapshot,
    events: Sequence[EventRecord],
    restart_threshold: int,
    now: datetime,
) -> ProblematicPod:
    """Detect issues on one pod; the result has no issues when it is healthy."""
    age = now - pod.created_at if pod.created_at is not None else timedelta(0)
    restarts = total_restarts(pod)
    issues: list[PodIssue] = []

    if restarts > restart_threshold:
        issues.append(
            PodIssue(
                type=PodIssueType.HIGH_RESTARTS,
                description=f"Pod has restarted {restarts} times (threshold: {restart_threshold})",
                severity=Severity.CRITICAL,
                details=_restart_details(pod),
            )
        )

    if pod.phase == PodPhase.PENDING and age > _PENDING_GRACE:
        issues.append(_pending_issue(pod, age))

    issues.extend(_container_issues(pod))

    owner_kind, owner_name = owner_info(pod)
    return ProblematicPod(
        name=pod.name,
        namespace=pod.namespace,
        owner_kind=owner_kind,
        owner_name=owner_name,
        phase=str(pod.phase),
        status=pod.reason,
        restart_count=restarts,
        age=format_age(age),
        issues=issues,
        recent_events=recent_warning_events(events, now) if issues else [],
    )


def analyze_namespace(
    namespace: str,
    pods: Sequence[PodSnapshot],
    events_by_pod: Mapping[str, Sequence[EventRecord]],
    restart_threshold: int,
    now: datetime,
) -> NamespaceErrorReport:
    """Build the namespace error report.

    Only pods owned by a ReplicaSet or StatefulSet are analyzed.
    ``events_by_pod`` is keyed by pod name.  The summary is ordered by
    count descending, ties by issue type; problematic pods put those with a
    critical issue first, then higher restart counts, then name.
    """
    owned = [p for p in pods if is_controller_owned(p)]
    problematic: list[ProblematicPod] = []
    affected: dict[PodIssueType, list[str]] = {}
    critical = 0
    warning = 0

    for pod in owned:
        result = analyze_pod(pod, events_by_pod.get(pod.name, ()), restart_threshold, now)
        if not result.issues:
            continue
        problematic.append(result)
        for issue in result.issues:
            affected.setdefault(issue.type, []).append(pod.name)
            if issue.severity is Severity.CRITICAL:
                critical += 1
            elif issue.severity is Severity.WARNING:
                warning += 1

    summary = [
        NamespaceErrorSummary(
            issue_type=issue_type,
            count=len(pod_names),
            description=issue_type.description,
            affected_pods=pod_names,
        )
        for issue_type, pod_names in affected.items()
    ]
    summary.sort(key=lambda s: (-s.count, s.issue_type.rank))
    problematic.sort(key=lambda p: (not p.has_critical_issue, -p.restart_count, p.name))

    _log.info(
        "namespace_analysis_complete",
        namespace=namespace,
        total_pods=len(owned),
        problematic_pods=len(problematic),
        critical_issues=critical,
        warning_issues=warning,
    )

    return NamespaceErrorReport(
        namespace=namespace,
        analysis_time=now,
        total_pods_analyzed=len(owned),
        problematic_pods_count=len(problematic),
        healthy_pods_count=len(owned) - len(problematic),
        restart_threshold_used=restart_threshold,
        summary=summary,
        problematic_pods=problematic,
        critical_issues_count=critical,
        warning_issues_count=warning,
    )


def empty_namespace_report(namespace: str, restart_threshold: int, now: datetime) -> NamespaceErrorReport:
    """Report for a namespace that does not exist."""
    return NamespaceErrorReport(
        namespace=namespace,
        analysis_time=now,
        total_pods_analyzed=0,
        problematic_pods_count=0,
        healthy_pods_count=0,
        restart_threshold_used=restart_threshold,
    )
