"""Cluster issue aggregator.

Classifies every pod in scope into :class:`IssueCategory` issues, then rolls
them up per namespace, per ``category:severity`` (top issues) and per
``category:reason`` (recurring patterns).  All maps are finalised into
sorted structures so repeated runs over the same pods give identical
reports.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from kubediag.engine.durations import format_age
from kubediag.models.common import Severity
from kubediag.models.issues import (
    ClusterIssues,
    ClusterPodIssue,
    IssueCategory,
    IssuePattern,
    IssueSummary,
    IssueVelocity,
    NamespaceIssues,
    TrendDirection,
)
from kubediag.models.snapshots import (
    ContainerStatus,
    PodPhase,
    PodSnapshot,
    TerminatedState,
    WaitingState,
)
from kubediag.observability.logging import get_logger

_log = get_logger("cluster_issues")

_PENDING_GRACE = timedelta(seconds=30)
_NOT_READY_GRACE = timedelta(minutes=5)
_HIGH_RESTARTS = 5


@dataclass(frozen=True)
class AggregationLimits:
    """Thresholds and caps applied when finalising a report."""

    pattern_threshold: int = 3
    max_patterns: int = 5
    max_top_issues: int = 10
    max_affected_pods: int = 5
    max_critical_issues: int = 20


DEFAULT_LIMITS = AggregationLimits()


# ---------------------------------------------------------------------------
# Per-pod classification
# ---------------------------------------------------------------------------


def _pending_issue(pod: PodSnapshot, now: datetime) -> ClusterPodIssue | None:
    if pod.created_at is None:
        pending_for = "an unknown time"
    else:
        age = now - pod.created_at
        if age < _PENDING_GRACE:
            return None
        pending_for = format_age(age)

    reason = "PendingScheduling"
    message = f"Pod pending for {pending_for}"
    severity = Severity.WARNING
    scheduled = pod.condition("PodScheduled")
    if scheduled is not None and scheduled.status == "False":
        reason = scheduled.reason
        message = scheduled.message
        if "Insufficient" in scheduled.message:
            severity = Severity.CRITICAL

    return ClusterPodIssue(
        pod_name=pod.name,
        namespace=pod.namespace,
        category=IssueCategory.PENDING,
        severity=severity,
        reason=reason,
        message=message,
        last_seen=now,
    )


def _waiting_category(reason: str) -> tuple[IssueCategory, Severity]:
    match reason:
        case "CrashLoopBackOff":
            return IssueCategory.CRASH_LOOP, Severity.CRITICAL
        case "ImagePullBackOff" | "ErrImagePull":
            return IssueCategory.IMAGE_PULL, Severity.CRITICAL
        case "CreateContainerConfigError":
            return IssueCategory.CONFIG_ERROR, Severity.CRITICAL
        case _:
            return IssueCategory.UNHEALTHY, Severity.WARNING


def _container_issues(pod: PodSnapshot, status: ContainerStatus, now: datetime) -> list[ClusterPodIssue]:
    issues: list[ClusterPodIssue] = []
    state = status.state

    if isinstance(state, WaitingState):
        category, severity = _waiting_category(state.reason)
        crash_loop = category is IssueCategory.CRASH_LOOP
        issues.append(
            ClusterPodIssue(
                pod_name=pod.name,
                namespace=pod.namespace,
                category=category,
                severity=severity,
                reason=state.reason,
                message=state.message,
                last_seen=now,
                count=status.restart_count if crash_loop else 0,
                is_recurring=crash_loop,
                node_name=pod.node_name,
                container_name=status.name,
            )
        )

    if isinstance(state, TerminatedState) and state.exit_code != 0:
        if state.reason == "OOMKilled":
            category, severity = IssueCategory.OOM_KILLED, Severity.CRITICAL
            message = "Container killed due to Out Of Memory"
        else:
            category, severity = IssueCategory.FAILED, Severity.WARNING
            message = f"Container terminated with exit code {state.exit_code}"
        issues.append(
            ClusterPodIssue(
                pod_name=pod.name,
                namespace=pod.namespace,
                category=category,
                severity=severity,
                reason=state.reason,
                message=message,
                last_seen=state.finished_at or now,
                node_name=pod.node_name,
                container_name=status.name,
            )
        )

    if status.restart_count > _HIGH_RESTARTS and not issues:
        issues.append(
            ClusterPodIssue(
                pod_name=pod.name,
                namespace=pod.namespace,
                category=IssueCategory.UNHEALTHY,
                severity=Severity.WARNING,
                reason="HighRestartCount",
                message=f"Container has restarted {status.restart_count} times",
                last_seen=now,
                count=status.restart_count,
                is_recurring=True,
                node_name=pod.node_name,
                container_name=status.name,
            )
        )
    return issues


def _init_container_issue(pod: PodSnapshot, status: ContainerStatus, now: datetime) -> ClusterPodIssue | None:
    state = status.state
    if isinstance(state, WaitingState):
        reason, message = state.reason, state.message
    elif isinstance(state, TerminatedState) and state.exit_code != 0:
        reason, message = state.reason, f"Init container exited with code {state.exit_code}"
    else:
        return None
    return ClusterPodIssue(
        pod_name=pod.name,
        namespace=pod.namespace,
        category=IssueCategory.INIT_ERROR,
        severity=Severity.CRITICAL,
        reason=reason,
        message=message,
        last_seen=now,
        node_name=pod.node_name,
        container_name=status.name,
    )


def classify_pod(pod: PodSnapshot, now: datetime) -> list[ClusterPodIssue]:
    """All issues detected on ``pod``; empty when the pod is healthy."""
    issues: list[ClusterPodIssue] = []

    if pod.phase == PodPhase.PENDING:
        pending = _pending_issue(pod, now)
        if pending is not None:
            issues.append(pending)

    if pod.phase == PodPhase.FAILED:
        issues.append(
            ClusterPodIssue(
                pod_name=pod.name,
                namespace=pod.namespace,
                category=IssueCategory.FAILED,
                severity=Severity.CRITICAL,
                reason=str(pod.phase),
                message=pod.message,
                last_seen=now,
                node_name=pod.node_name,
            )
        )

    if pod.reason == "Evicted":
        issues.append(
            ClusterPodIssue(
                pod_name=pod.name,
                namespace=pod.namespace,
                category=IssueCategory.EVICTED,
                severity=Severity.WARNING,
                reason=pod.reason,
                message=pod.message,
                last_seen=now,
                node_name=pod.node_name,
            )
        )

    for status in pod.container_statuses:
        issues.extend(_container_issues(pod, status, now))

    for status in pod.init_container_statuses:
        init_issue = _init_container_issue(pod, status, now)
        if init_issue is not None:
            issues.append(init_issue)

    ready = pod.condition("Ready")
    if ready is not None and not ready.is_true and ready.last_transition_time is not None:
        not_ready_for = now - ready.last_transition_time
        if not_ready_for > _NOT_READY_GRACE:
            issues.append(
                ClusterPodIssue(
                    pod_name=pod.name,
                    namespace=pod.namespace,
                    category=IssueCategory.UNHEALTHY,
                    severity=Severity.WARNING,
                    reason="NotReady",
                    message=f"Pod not ready for {format_age(not_ready_for)}",
                    last_seen=now,
                    node_name=pod.node_name,
                )
            )
    return issues


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def record_pattern(patterns: dict[str, IssuePattern], pod: PodSnapshot, issue: ClusterPodIssue) -> None:
    """Fold one occurrence into the ``category:reason`` pattern map.

    A label stays common only while every occurrence carries it with the
    same value.
    """
    key = f"{issue.category}:{issue.reason}"
    pattern = patterns.get(key)
    if pattern is None:
        patterns[key] = IssuePattern(
            type=issue.category,
            description=f"{issue.category}: {issue.reason}",
            count=1,
            namespaces=[pod.namespace],
            common_labels=dict(pod.labels),
            first_seen=issue.last_seen,
            last_seen=issue.last_seen,
        )
        return

    pattern.count += 1
    pattern.first_seen = min(pattern.first_seen, issue.last_seen)
    pattern.last_seen = max(pattern.last_seen, issue.last_seen)
    if pod.namespace not in pattern.namespaces:
        pattern.namespaces.append(pod.namespace)
    for label in list(pattern.common_labels):
        if pod.labels.get(label) != pattern.common_labels[label]:
            del pattern.common_labels[label]


def finalize_patterns(patterns: dict[str, IssuePattern], limits: AggregationLimits) -> list[IssuePattern]:
    """Keep patterns seen at least ``pattern_threshold`` times, most frequent first."""
    kept = [p for p in patterns.values() if p.count >= limits.pattern_threshold]
    for pattern in kept:
        pattern.namespaces.sort()
    kept.sort(key=lambda p: (-p.count, p.type.rank, p.description))
    return kept[: limits.max_patterns]


def top_issues(issues: Sequence[ClusterPodIssue], limits: AggregationLimits) -> list[IssueSummary]:
    """Group by ``category:severity``; rank by severity weight, then count."""
    grouped: dict[tuple[IssueCategory, Severity], list[str]] = {}
    for issue in issues:
        grouped.setdefault((issue.category, issue.severity), []).append(f"{issue.namespace}/{issue.pod_name}")

    summaries: list[IssueSummary] = []
    for (category, severity), pods in grouped.items():
        affected = pods[: limits.max_affected_pods]
        if len(pods) > limits.max_affected_pods:
            affected.append(f"... and {len(pods) - limits.max_affected_pods} more")
        summaries.append(
            IssueSummary(
                category=category,
                count=len(pods),
                severity=severity,
                description=category.description,
                affected_pods=affected,
            )
        )
    summaries.sort(key=lambda s: (-s.severity.weight, -s.count, s.category.rank))
    return summaries[: limits.max_top_issues]


def issue_velocity(issues: Sequence[ClusterPodIssue], now: datetime) -> IssueVelocity:
    """Count new issues in the last hour/day.

    Resolved counts are not tracked, so they stay zero.
    """
    last_hour = sum(1 for i in issues if i.last_seen > now - timedelta(hours=1))
    last_day = sum(1 for i in issues if i.last_seen > now - timedelta(hours=24))
    resolved_hour = 0

    if last_hour > resolved_hour:
        trend = TrendDirection.DEGRADING
    elif last_hour < resolved_hour:
        trend = TrendDirection.IMPROVING
    else:
        trend = TrendDirection.STABLE

    return IssueVelocity(
        new_issues_last_hour=last_hour,
        new_issues_last_24h=last_day,
        resolved_last_hour=resolved_hour,
        resolved_last_24h=0,
        trend_direction=trend,
        velocity_per_hour=last_day / 24.0 if last_day > 0 else 0.0,
    )


def aggregate_cluster_issues(
    pods: Sequence[PodSnapshot],
    now: datetime,
    *,
    severity: Severity | None = None,
    limits: AggregationLimits = DEFAULT_LIMITS,
) -> ClusterIssues:
    """Build the cluster issue report for ``pods``.

    ``severity`` restricts the top-issue ranking only; counts, namespace
    rollups, patterns and critical issues always cover every issue.
    """
    all_issues: list[ClusterPodIssue] = []
    categories: dict[IssueCategory, int] = {}
    namespaces: dict[str, NamespaceIssues] = {}
    patterns: dict[str, IssuePattern] = {}
    healthy = 0

    for pod in pods:
        pod_issues = classify_pod(pod, now)
        if not pod_issues:
            healthy += 1
            continue

        rollup = namespaces.get(pod.namespace) or NamespaceIssues(namespace=pod.namespace)
        critical = sum(1 for i in pod_issues if i.severity is Severity.CRITICAL)
        warning = sum(1 for i in pod_issues if i.severity is Severity.WARNING)
        namespaces[pod.namespace] = NamespaceIssues(
            namespace=pod.namespace,
            total_pods=rollup.total_pods + 1,
            issues_count=rollup.issues_count + len(pod_issues),
            critical_count=rollup.critical_count + critical,
            warning_count=rollup.warning_count + warning,
            top_issues=[*rollup.top_issues, *pod_issues],
        )

        for issue in pod_issues:
            all_issues.append(issue)
            categories[issue.category] = categories.get(issue.category, 0) + 1
            record_pattern(patterns, pod, issue)

    ranked = all_issues if severity is None else [i for i in all_issues if i.severity is severity]
    critical_issues = sorted(
        (i for i in all_issues if i.severity is Severity.CRITICAL),
        key=lambda i: (-i.last_seen.timestamp(), i.namespace, i.pod_name, i.container_name),
    )

    report = ClusterIssues(
        total_pods=len(pods),
        healthy_pods=healthy,
        unhealthy_pods=len(pods) - healthy,
        issue_categories={c.value: categories[c] for c in IssueCategory if c in categories},
        issues_by_namespace={ns: namespaces[ns] for ns in sorted(namespaces)},
        top_issues=top_issues(ranked, limits),
        issue_velocity=issue_velocity(all_issues, now),
        patterns=finalize_patterns(patterns, limits),
        critical_issues=critical_issues[: limits.max_critical_issues],
        calculated_at=now,
    )

    _log.info(
        "cluster_issues_aggregated",
        total_pods=report.total_pods,
        unhealthy_pods=report.unhealthy_pods,
        issues=len(all_issues),
        patterns=len(report.patterns),
    )
    return report
