"""Pod detail builders: describe, resource totals and failure-event analysis."""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from kubediag.engine.constraints import CPU, MEMORY
from kubediag.engine.durations import format_age
from kubediag.engine.quantity import ZERO, Quantity, accumulate, quantity_or_zero
from kubediag.models.common import EventInfo, Severity
from kubediag.models.pod import (
    ContainerInfo,
    ContainerResources,
    FailureEvent,
    FailureEventCategory,
    PodDescription,
    PodFailureEvents,
    PodResources,
    PodStatusInfo,
    ResourceSummary,
    VolumeInfo,
    VolumeMountInfo,
)
from kubediag.models.snapshots import (
    ContainerSpec,
    ContainerStatus,
    EventRecord,
    PodSnapshot,
    TerminatedState,
)

MAX_DESCRIBE_EVENTS = 20
_ONGOING_WINDOW = timedelta(minutes=5)
_ONGOING_MAX_LEN = 100


def to_event_info(event: EventRecord) -> EventInfo:
    return EventInfo(
        type=event.type,
        reason=event.reason,
        message=event.message,
        count=event.count,
        source=f"{event.source_component}/{event.source_host}",
        first_timestamp=event.first_timestamp,
        last_timestamp=event.last_timestamp,
    )


def newest_first(events: Sequence[EventRecord]) -> list[EventRecord]:
    """Sort by last timestamp descending; undated events go last."""
    return sorted(
        events,
        key=lambda e: (e.last_timestamp is not None, e.last_timestamp or datetime.min),
        reverse=True,
    )


# ---------------------------------------------------------------------------
# Describe
# ---------------------------------------------------------------------------


def _container_info(specs: Sequence[ContainerSpec], statuses: Sequence[ContainerStatus]) -> list[ContainerInfo]:
    by_name = {s.name: s for s in statuses}
    result: list[ContainerInfo] = []
    for spec in specs:
        status = by_name.get(spec.name)
        result.append(
            ContainerInfo(
                name=spec.name,
                image=spec.image,
                image_id=status.image_id if status else "",
                state=status.state if status else None,
                ready=status.ready if status else False,
                restart_count=status.restart_count if status else 0,
                requests=dict(spec.requests),
                limits=dict(spec.limits),
                environment=list(spec.env),
                mounts=[VolumeMountInfo(m.name, m.mount_path, m.read_only, m.sub_path) for m in spec.mounts],
            )
        )
    return result


def describe_pod(pod: PodSnapshot, events: Sequence[EventRecord]) -> PodDescription:
    """``kubectl describe pod`` equivalent; at most 20 events, newest first."""
    return PodDescription(
        name=pod.name,
        namespace=pod.namespace,
        status=PodStatusInfo(
            phase=str(pod.phase),
            reason=pod.reason,
            message=pod.message,
            host_ip=pod.host_ip,
            pod_ip=pod.pod_ip,
            nominated_node_name=pod.nominated_node_name,
        ),
        labels=dict(pod.labels),
        annotations=dict(pod.annotations),
        node=pod.node_name,
        start_time=pod.start_time,
        containers=_container_info(pod.containers, pod.container_statuses),
        init_containers=_container_info(pod.init_containers, pod.init_container_statuses),
        volumes=[VolumeInfo(name=v.name, type=v.source.kind) for v in pod.volumes],
        pod_ip=pod.pod_ip,
        pod_ips=list(pod.pod_ips),
        qos_class=pod.qos_class,
        priority=pod.priority,
        priority_class_name=pod.priority_class_name,
        tolerations=list(pod.tolerations),
        node_selector=dict(pod.node_selector),
        events=[to_event_info(e) for e in newest_first(events)[:MAX_DESCRIBE_EVENTS]],
        conditions=list(pod.conditions),
    )


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


def _total(pod: PodSnapshot, resource: str, field_name: str) -> Quantity:
    total = ZERO
    for container in pod.containers:
        values = container.requests if field_name == "requests" else container.limits
        source = f"{pod.key}/{container.name} {field_name}"
        addend = quantity_or_zero(values.get(resource), resource=resource, source=source)
        total = accumulate(total, addend, resource=resource, source=source)
    return total


def pod_resources(pod: PodSnapshot) -> PodResources:
    """Requests and limits per container, init containers suffixed ``(init)``."""
    containers = [ContainerResources(c.name, dict(c.requests), dict(c.limits)) for c in pod.containers]
    containers.extend(
        ContainerResources(f"{c.name} (init)", dict(c.requests), dict(c.limits)) for c in pod.init_containers
    )
    return PodResources(
        containers=containers,
        total=ResourceSummary(
            cpu_request=str(_total(pod, CPU, "requests")),
            cpu_limit=str(_total(pod, CPU, "limits")),
            memory_request=str(_total(pod, MEMORY, "requests")),
            memory_limit=str(_total(pod, MEMORY, "limits")),
        ),
    )


# ---------------------------------------------------------------------------
# Failure events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FailurePattern:
    reason: str
    category: FailureEventCategory
    severity: Severity
    possible_causes: tuple[str, ...]
    suggested_action: str


FAILURE_PATTERNS: tuple[FailurePattern, ...] = (
    FailurePattern(
        "FailedScheduling",
        FailureEventCategory.SCHEDULING,
        Severity.CRITICAL,
        ("Insufficient resources", "Node selector mismatch", "Affinity rules", "Taints not tolerated"),
        "Check node resources and scheduling constraints",
    ),
    FailurePattern(
        "BackOff",
        FailureEventCategory.CRASH,
        Severity.CRITICAL,
        ("Application crash", "Missing dependencies", "Configuration error"),
        "Check container logs for crash details",
    ),
    FailurePattern(
        "CrashLoopBackOff",
        FailureEventCategory.CRASH,
        Severity.CRITICAL,
        ("Repeated application crashes", "Startup failure", "Missing configuration"),
        "Examine container logs and fix application startup issues",
    ),
    FailurePattern(
        "ImagePullBackOff",
        FailureEventCategory.IMAGE_PULL,
        Severity.CRITICAL,
        ("Image not found", "Registry authentication failure", "Network issues"),
        "Verify image name and registry credentials",
    ),
    FailurePattern(
        "ErrImagePull",
        FailureEventCategory.IMAGE_PULL,
        Severity.CRITICAL,
        ("Invalid image name", "Registry unreachable", "No pull secrets"),
        "Check image availability and pull secrets",
    ),
    FailurePattern(
        "FailedAttachVolume",
        FailureEventCategory.VOLUME,
        Severity.CRITICAL,
        ("Volume already attached", "Volume not found", "Zone mismatch"),
        "Check volume status and node availability zones",
    ),
    FailurePattern(
        "FailedMount",
        FailureEventCategory.VOLUME,
        Severity.CRITICAL,
        ("Volume not ready", "Mount permissions", "Filesystem issues"),
        "Verify volume is properly provisioned and accessible",
    ),
    FailurePattern(
        "Unhealthy",
        FailureEventCategory.PROBE,
        Severity.WARNING,
        ("Liveness probe failure", "Readiness probe failure", "Application not responding"),
        "Review probe configuration and application health endpoints",
    ),
    FailurePattern(
        "OOMKilled",
        FailureEventCategory.RESOURCE,
        Severity.CRITICAL,
        ("Memory limit exceeded", "Memory leak", "Insufficient memory allocation"),
        "Increase memory limits or optimize application memory usage",
    ),
    FailurePattern(
        "Evicted",
        FailureEventCategory.RESOURCE,
        Severity.WARNING,
        ("Node pressure", "Resource limits", "Priority preemption"),
        "Check node resources and pod priority settings",
    ),
    FailurePattern(
        "NetworkNotReady",
        FailureEventCategory.NETWORK,
        Severity.WARNING,
        ("CNI plugin issues", "Network policy blocking", "Service mesh problems"),
        "Check network plugin status and network policies",
    ),
)

_OTHER_PATTERN = FailurePattern(
    "",
    FailureEventCategory.OTHER,
    Severity.WARNING,
    ("Check event message for details",),
    "Investigate based on event message",
)


def match_failure_pattern(reason: str) -> FailurePattern | None:
    """Exact reason match first, then the first pattern contained in ``reason``.

    The exact pass keeps ``ImagePullBackOff`` from matching ``BackOff``.
    """
    for pattern in FAILURE_PATTERNS:
        if pattern.reason == reason:
            return pattern
    for pattern in FAILURE_PATTERNS:
        if pattern.reason in reason:
            return pattern
    return None


def _recurrence_rate(event: EventRecord) -> str:
    if event.first_timestamp is None or event.last_timestamp is None:
        return ""
    hours = (event.last_timestamp - event.first_timestamp).total_seconds() / 3600
    if hours <= 0:
        return ""
    rate = event.count / hours
    if rate > 1:
        return f"{rate:.1f} times per hour"
    return f"{event.count} times in {hours:.1f} hours"


def _context_causes(category: FailureEventCategory, pod: PodSnapshot) -> list[str]:
    causes: list[str] = []
    if category is FailureEventCategory.CRASH:
        for status in pod.container_statuses:
            if isinstance(status.state, TerminatedState) and status.state.exit_code != 0:
                causes.append(f"Container {status.name} exited with code {status.state.exit_code}")
            if status.restart_count > 0:
                causes.append(f"Container {status.name} has restarted {status.restart_count} times")
    elif category is FailureEventCategory.RESOURCE and pod.qos_class in ("Burstable", "BestEffort"):
        causes.append(f"Pod QoS class is {pod.qos_class} - consider setting guaranteed QoS")
    return causes


def analyze_failure_events(
    events: Sequence[EventRecord],
    pod: PodSnapshot,
    now: datetime,
) -> list[FailureEvent]:
    """Classify failure-related events.

    Normal events with fewer than five occurrences are ignored; Warning
    events that match no known pattern are reported as ``Other``.  Sorted
    by severity weight descending, then newest first.
    """
    failures: list[FailureEvent] = []
    for event in events:
        if event.type == "Normal" and event.count < 5:
            continue
        pattern = match_failure_pattern(event.reason)
        if pattern is None:
            if event.type != "Warning":
                continue
            pattern = _OTHER_PATTERN

        time_since_first = ""
        if event.first_timestamp is not None and now > event.first_timestamp:
            time_since_first = format_age(now - event.first_timestamp)

        failures.append(
            FailureEvent(
                event=to_event_info(event),
                category=pattern.category,
                severity=pattern.severity,
                possible_causes=[*pattern.possible_causes, *_context_causes(pattern.category, pod)],
                suggested_action=pattern.suggested_action,
                is_recurring=event.count > 3,
                recurrence_rate=_recurrence_rate(event) if event.count > 3 else "",
                time_since_first=time_since_first,
            )
        )

    failures.sort(
        key=lambda f: (
            f.severity.weight,
            f.event.last_timestamp is not None,
            f.event.last_timestamp or datetime.min,
        ),
        reverse=True,
    )
    return failures


def ongoing_issues(failures: Sequence[FailureEvent], now: datetime) -> list[str]:
    """Critical failures seen in the last five minutes as ``Reason: message``."""
    threshold = now - _ONGOING_WINDOW
    issues: list[str] = []
    for failure in failures:
        last = failure.event.last_timestamp
        if failure.severity is not Severity.CRITICAL or last is None or last <= threshold:
            continue
        text = f"{failure.event.reason}: {failure.event.message}"
        if len(text) > _ONGOING_MAX_LEN:
            text = text[: _ONGOING_MAX_LEN - 3] + "..."
        issues.append(text)
    return issues


def pod_failure_events(pod: PodSnapshot, events: Sequence[EventRecord], now: datetime) -> PodFailureEvents:
    failures = analyze_failure_events(events, pod, now)
    severities = Counter(f.severity for f in failures)
    categories = Counter(str(f.category) for f in failures)

    most_recent: FailureEvent | None = None
    for failure in failures:
        last = failure.event.last_timestamp
        if last is None:
            continue
        if most_recent is None or most_recent.event.last_timestamp is None or last > most_recent.event.last_timestamp:
            most_recent = failure

    return PodFailureEvents(
        pod_name=pod.name,
        namespace=pod.namespace,
        total_events=len(events),
        failure_events=failures,
        event_categories={c.value: categories[c.value] for c in FailureEventCategory if categories[c.value]},
        critical_events=severities[Severity.CRITICAL],
        warning_events=severities[Severity.WARNING],
        most_recent_issue=most_recent,
        ongoing_issues=ongoing_issues(failures, now),
        pod_phase=str(pod.phase),
        pod_status=pod.reason,
    )
