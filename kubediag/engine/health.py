"""Health scorer: a weighted 0-100 score for one pod.

Five components are scored independently and combined as a weighted
mean.  Each component starts at 100 and is lowered by a running minimum
of caps, so the order containers, events or conditions are seen in never
changes the result.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import datetime, timedelta

from kubediag.engine.durations import format_uptime
from kubediag.models.health import (
    ComponentStatus,
    ConditionStatus,
    ContainerHealth,
    EventSummary,
    HealthComponent,
    HealthDetails,
    HealthStatus,
    PodHealthScore,
)
from kubediag.models.snapshots import (
    EventRecord,
    PodSnapshot,
    RunningState,
    TerminatedState,
    WaitingState,
)

RESTARTS_WEIGHT = 0.30
CONTAINER_STATES_WEIGHT = 0.25
EVENTS_WEIGHT = 0.20
CONDITIONS_WEIGHT = 0.15
UPTIME_WEIGHT = 0.10

_EVENT_WINDOW = timedelta(hours=24)


def restart_ladder(restarts: int) -> int:
    """Base restart score; non-increasing in ``restarts``."""
    if restarts == 0:
        return 100
    if restarts <= 2:
        return 85
    if restarts <= 5:
        return 70
    if restarts <= 10:
        return 50
    if restarts <= 20:
        return 30
    return 10


def _waiting_cap(reason: str) -> int:
    match reason:
        case "CrashLoopBackOff" | "Error":
            return 20
        case "ImagePullBackOff" | "ErrImagePull":
            return 30
        case _:
            return 50


def _event_cap(reason: str) -> int:
    match reason:
        case "Failed" | "FailedScheduling" | "FailedMount":
            return 30
        case "BackOff" | "CrashLoopBackOff":
            return 40
        case "Unhealthy":
            return 50
        case _:
            return 70


def _condition_cap(condition_type: str) -> int | None:
    match condition_type:
        case "PodScheduled":
            return 30
        case "Ready":
            return 50
        case "ContainersReady":
            return 60
        case "Initialized":
            return 70
        case _:
            return None


def _component(name: str, score: int, weight: float, description: str) -> HealthComponent:
    return HealthComponent(
        name=name,
        score=score,
        weight=weight,
        status=ComponentStatus.from_score(score),
        description=description,
    )


def _pod_age(pod: PodSnapshot, now: datetime) -> timedelta:
    if pod.created_at is None:
        return timedelta(0)
    return now - pod.created_at


def score_restarts(pod: PodSnapshot, now: datetime) -> tuple[HealthComponent, int, str]:
    """Return the component, total restarts and restart frequency string."""
    restarts = sum(s.restart_count for s in pod.container_statuses)
    score = restart_ladder(restarts)
    frequency = ""

    age_hours = _pod_age(pod, now).total_seconds() / 3600
    if age_hours > 0 and restarts > 0:
        per_hour = restarts / age_hours
        if per_hour > 1:
            score = max(int(score * 0.5), 10)
        frequency = f"{per_hour:.2f} restarts/hour"

    component = _component("Container Restarts", score, RESTARTS_WEIGHT, f"{restarts} total restarts")
    return component, restarts, frequency


def score_container_states(pod: PodSnapshot) -> tuple[HealthComponent, list[ContainerHealth]]:
    score = 100
    unhealthy = 0
    containers: list[ContainerHealth] = []

    for status in pod.container_statuses:
        state = status.state
        if isinstance(state, RunningState):
            containers.append(ContainerHealth(status.name, "Running", status.ready, status.restart_count))
        elif isinstance(state, WaitingState):
            unhealthy += 1
            score = min(score, _waiting_cap(state.reason))
            containers.append(
                ContainerHealth(status.name, "Waiting", status.ready, status.restart_count, reason=state.reason)
            )
        elif isinstance(state, TerminatedState):
            unhealthy += 1
            if state.exit_code != 0:
                score = min(score, 40)
            containers.append(
                ContainerHealth(
                    status.name,
                    "Terminated",
                    status.ready,
                    status.restart_count,
                    exit_code=state.exit_code,
                    reason=state.reason,
                )
            )
        else:
            containers.append(ContainerHealth(status.name, "", status.ready, status.restart_count))

    total = len(pod.container_statuses)
    if unhealthy == 0 and total > 0:
        ready = sum(1 for s in pod.container_statuses if s.ready)
        score = int(ready / total * 100)

    component = _component(
        "Container States", score, CONTAINER_STATES_WEIGHT, f"{total - unhealthy}/{total} containers healthy"
    )
    return component, containers


def score_events(events: Sequence[EventRecord], now: datetime) -> tuple[HealthComponent, list[EventSummary]]:
    """Score Warning events seen in the last 24 hours.

    Events are grouped by ``type:reason`` with counts summed; the summary
    list is ordered newest first.
    """
    score = 100
    warnings = 0
    grouped: dict[str, EventSummary] = {}
    cutoff = now - _EVENT_WINDOW

    for event in events:
        if event.last_timestamp is None or event.last_timestamp < cutoff:
            continue
        key = f"{event.type}:{event.reason}"
        existing = grouped.get(key)
        if existing is None:
            grouped[key] = EventSummary(
                type=event.type,
                reason=event.reason,
                message=event.message,
                count=event.count,
                last_seen=event.last_timestamp,
            )
        else:
            last_seen = existing.last_seen
            if last_seen is None or event.last_timestamp > last_seen:
                last_seen = event.last_timestamp
            grouped[key] = EventSummary(
                type=existing.type,
                reason=existing.reason,
                message=existing.message,
                count=existing.count + event.count,
                last_seen=last_seen,
            )

        if event.type == "Warning":
            warnings += 1
            score = min(score, _event_cap(event.reason))

    summaries = sorted(grouped.values(), key=lambda s: (s.last_seen or cutoff, s.type, s.reason), reverse=True)
    component = _component("Recent Events", score, EVENTS_WEIGHT, f"{warnings} warning events in last 24h")
    return component, summaries


def score_conditions(pod: PodSnapshot) -> tuple[HealthComponent, list[ConditionStatus]]:
    score = 100
    failed = 0
    conditions: list[ConditionStatus] = []
    for condition in pod.conditions:
        conditions.append(ConditionStatus(condition.type, condition.status, condition.reason, condition.message))
        if condition.is_true:
            continue
        cap = _condition_cap(condition.type)
        if cap is not None:
            score = min(score, cap)
            failed += 1

    total = len(pod.conditions)
    component = _component("Pod Conditions", score, CONDITIONS_WEIGHT, f"{total - failed}/{total} conditions healthy")
    return component, conditions


def score_uptime(pod: PodSnapshot, now: datetime) -> tuple[HealthComponent, str, datetime | None, str]:
    """Return the component, formatted pod age and the last restart time/reason."""
    score = 100
    age = _pod_age(pod, now)
    uptime = format_uptime(age)
    last_restart_time: datetime | None = None
    last_restart_reason = ""

    age_seconds = age.total_seconds()
    for status in pod.container_statuses:
        state = status.state
        if isinstance(state, RunningState) and state.started_at is not None and age_seconds > 0:
            ratio = (now - state.started_at).total_seconds() / age_seconds
            if ratio < 0.5:
                score = min(score, 50)
            elif ratio < 0.8:
                score = min(score, 70)
            elif ratio < 0.95:
                score = min(score, 85)
        if isinstance(status.last_state, TerminatedState):
            last_restart_time = status.last_state.finished_at
            last_restart_reason = status.last_state.reason

    component = _component("Uptime/Stability", score, UPTIME_WEIGHT, f"Pod age: {uptime}")
    return component, uptime, last_restart_time, last_restart_reason


def overall_score(components: Sequence[HealthComponent]) -> int:
    """``sum(score * weight) / sum(weight)`` rounded half up, or 0 with no weight."""
    total_weight = sum(c.weight for c in components)
    if total_weight == 0:
        return 0
    return math.floor(sum(c.score * c.weight for c in components) / total_weight + 0.5)


def calculate_health_score(pod: PodSnapshot, events: Sequence[EventRecord], now: datetime) -> PodHealthScore:
    """Score ``pod`` using its events, as of ``now``."""
    restarts, restart_count, frequency = score_restarts(pod, now)
    states, containers = score_container_states(pod)
    recent, summaries = score_events(events, now)
    conditions, condition_statuses = score_conditions(pod)
    uptime, uptime_text, last_restart_time, last_restart_reason = score_uptime(pod, now)

    components = {
        "restarts": restarts,
        "containerStates": states,
        "events": recent,
        "conditions": conditions,
        "uptime": uptime,
    }
    overall = overall_score(list(components.values()))

    return PodHealthScore(
        pod_name=pod.name,
        namespace=pod.namespace,
        overall_score=overall,
        status=HealthStatus.from_score(overall),
        components=components,
        calculated_at=now,
        details=HealthDetails(
            restart_count=restart_count,
            restart_frequency=frequency,
            uptime=uptime_text,
            last_restart_time=last_restart_time,
            last_restart_reason=last_restart_reason,
            container_statuses=containers,
            recent_events=summaries,
            pod_conditions=condition_statuses,
        ),
    )
