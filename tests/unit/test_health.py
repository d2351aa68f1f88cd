"""Tests for kubediag.engine.health — weighted pod health scoring."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from kubediag.engine.durations import format_age, format_uptime
from kubediag.engine.health import (
    CONDITIONS_WEIGHT,
    CONTAINER_STATES_WEIGHT,
    EVENTS_WEIGHT,
    RESTARTS_WEIGHT,
    UPTIME_WEIGHT,
    calculate_health_score,
    overall_score,
    restart_ladder,
    score_container_states,
    score_events,
    score_uptime,
)
from kubediag.models.health import ComponentStatus, HealthComponent, HealthStatus
from kubediag.models.snapshots import (
    Condition,
    ContainerStatus,
    EventRecord,
    PodPhase,
    PodSnapshot,
    RunningState,
    TerminatedState,
    WaitingState,
)

_TS = datetime(2026, 2, 18, 12, 0, 0, tzinfo=UTC)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_pod(
    statuses: tuple[ContainerStatus, ...] = (),
    conditions: tuple[Condition, ...] = (),
    age: timedelta = timedelta(days=2),
) -> PodSnapshot:
    return PodSnapshot(
        namespace="default",
        name="web-0",
        phase=PodPhase.RUNNING,
        created_at=_TS - age,
        container_statuses=statuses,
        conditions=conditions,
    )


def _running(name: str = "app", ready: bool = True, started_ago: timedelta = timedelta(days=2)) -> ContainerStatus:
    return ContainerStatus(name=name, ready=ready, state=RunningState(started_at=_TS - started_ago))


def _all_true() -> tuple[Condition, ...]:
    return tuple(Condition(type=t, status="True") for t in ("Initialized", "Ready", "ContainersReady", "PodScheduled"))


def _warning(reason: str, ago: timedelta = timedelta(minutes=10), count: int = 1) -> EventRecord:
    return EventRecord(type="Warning", reason=reason, message=reason, count=count, last_timestamp=_TS - ago)


# ---------------------------------------------------------------------------
# Restart ladder and weights
# ---------------------------------------------------------------------------


class TestRestartLadder:
    @pytest.mark.parametrize(
        ("restarts", "score"),
        [(0, 100), (1, 85), (2, 85), (3, 70), (5, 70), (6, 50), (10, 50), (11, 30), (20, 30), (21, 10), (500, 10)],
    )
    def test_boundaries(self, restarts: int, score: int) -> None:
        assert restart_ladder(restarts) == score

    def test_non_increasing(self) -> None:
        scores = [restart_ladder(n) for n in range(50)]
        assert scores == sorted(scores, reverse=True)

    def test_weights_sum_to_one(self) -> None:
        total = RESTARTS_WEIGHT + CONTAINER_STATES_WEIGHT + EVENTS_WEIGHT + CONDITIONS_WEIGHT + UPTIME_WEIGHT
        assert total == pytest.approx(1.0)


class TestOverallScore:
    def test_rounds_half_up(self) -> None:
        components = [
            HealthComponent("a", 70, 0.5, ComponentStatus.GOOD, ""),
            HealthComponent("b", 75, 0.5, ComponentStatus.GOOD, ""),
        ]
        assert overall_score(components) == 73

    def test_zero_weight_is_zero(self) -> None:
        assert overall_score([]) == 0

    @pytest.mark.parametrize(
        ("score", "status"),
        [
            (100, HealthStatus.HEALTHY),
            (90, HealthStatus.HEALTHY),
            (89, HealthStatus.GOOD),
            (50, HealthStatus.WARNING),
            (30, HealthStatus.DEGRADED),
            (29, HealthStatus.CRITICAL),
        ],
    )
    def test_status_buckets(self, score: int, status: HealthStatus) -> None:
        assert HealthStatus.from_score(score) is status


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------


class TestContainerStates:
    def test_crash_loop_caps_at_20(self) -> None:
        pod = _make_pod((ContainerStatus(name="app", state=WaitingState(reason="CrashLoopBackOff")),))
        component, containers = score_container_states(pod)
        assert component.score == 20
        assert component.description == "0/1 containers healthy"
        assert containers[0].state == "Waiting"

    def test_image_pull_caps_at_30(self) -> None:
        pod = _make_pod((ContainerStatus(name="app", state=WaitingState(reason="ErrImagePull")),))
        assert score_container_states(pod)[0].score == 30

    def test_non_zero_exit_caps_at_40(self) -> None:
        pod = _make_pod((ContainerStatus(name="app", state=TerminatedState(exit_code=137, reason="OOMKilled")),))
        component, containers = score_container_states(pod)
        assert component.score == 40
        assert containers[0].exit_code == 137

    def test_ready_fraction_when_all_running(self) -> None:
        pod = _make_pod((_running("a"), _running("b", ready=False)))
        assert score_container_states(pod)[0].score == 50

    def test_order_independent(self) -> None:
        statuses = (
            ContainerStatus(name="a", state=WaitingState(reason="ErrImagePull")),
            ContainerStatus(name="b", state=WaitingState(reason="CrashLoopBackOff")),
            _running("c"),
        )
        forward = score_container_states(_make_pod(statuses))[0]
        backward = score_container_states(_make_pod(statuses[::-1]))[0]
        assert forward.score == backward.score == 20


class TestEvents:
    def test_window_and_caps(self) -> None:
        events = [
            _warning("Unhealthy"),
            _warning("FailedMount", ago=timedelta(hours=30)),
            EventRecord(type="Warning", reason="Failed", last_timestamp=None),
        ]
        component, summaries = score_events(events, _TS)
        assert component.score == 50
        assert component.description == "1 warning events in last 24h"
        assert [s.reason for s in summaries] == ["Unhealthy"]

    def test_grouped_by_type_and_reason(self) -> None:
        events = [
            _warning("BackOff", ago=timedelta(minutes=30), count=2),
            _warning("BackOff", ago=timedelta(minutes=5), count=3),
            _warning("Unhealthy", ago=timedelta(minutes=20)),
        ]
        component, summaries = score_events(events, _TS)
        assert component.score == 40
        assert [(s.reason, s.count) for s in summaries] == [("BackOff", 5), ("Unhealthy", 1)]
        assert summaries[0].last_seen == _TS - timedelta(minutes=5)


class TestUptime:
    def test_recent_container_start_caps_at_50(self) -> None:
        pod = _make_pod((_running(started_ago=timedelta(hours=1)),), age=timedelta(hours=10))
        component, uptime, _, _ = score_uptime(pod, _TS)
        assert component.score == 50
        assert uptime == "10h 0m"

    def test_last_restart_from_last_state(self) -> None:
        finished = _TS - timedelta(hours=1)
        status = ContainerStatus(
            name="app",
            state=RunningState(started_at=finished),
            last_state=TerminatedState(exit_code=1, reason="Error", finished_at=finished),
        )
        _, _, last_time, last_reason = score_uptime(_make_pod((status,)), _TS)
        assert last_time == finished
        assert last_reason == "Error"

    def test_missing_creation_time_is_zero_age(self) -> None:
        pod = PodSnapshot(namespace="default", name="x")
        component, uptime, _, _ = score_uptime(pod, _TS)
        assert component.score == 100
        assert uptime == "0m"


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------


class TestCalculateHealthScore:
    def test_healthy_pod(self) -> None:
        score = calculate_health_score(_make_pod((_running(),), _all_true()), [], _TS)
        assert score.overall_score == 100
        assert score.status is HealthStatus.HEALTHY
        assert list(score.components) == ["restarts", "containerStates", "events", "conditions", "uptime"]
        assert score.components["restarts"].name == "Container Restarts"
        assert score.calculated_at == _TS

    def test_crash_looping_pod(self) -> None:
        status = ContainerStatus(name="app", restart_count=12, state=WaitingState(reason="CrashLoopBackOff"))
        conditions = (
            Condition(type="PodScheduled", status="True"),
            Condition(type="Ready", status="False"),
            Condition(type="ContainersReady", status="False"),
        )
        pod = _make_pod((status,), conditions, age=timedelta(hours=10))
        score = calculate_health_score(pod, [_warning("BackOff")], _TS)

        assert score.components["restarts"].score == 15
        assert score.components["containerStates"].score == 20
        assert score.components["events"].score == 40
        assert score.components["conditions"].score == 50
        assert score.components["uptime"].score == 100
        assert score.overall_score == 35
        assert score.status is HealthStatus.DEGRADED
        assert score.details.restart_frequency == "1.20 restarts/hour"

    def test_deterministic_for_same_now(self) -> None:
        pod = _make_pod((_running(),), _all_true())
        events = [_warning("Unhealthy")]
        assert calculate_health_score(pod, events, _TS) == calculate_health_score(pod, events, _TS)


class TestDurations:
    @pytest.mark.parametrize(
        ("delta", "text"),
        [
            (timedelta(seconds=45), "45s"),
            (timedelta(minutes=12), "12m"),
            (timedelta(hours=3), "3h"),
            (timedelta(hours=3, minutes=20), "3h20m"),
            (timedelta(days=2), "2d"),
            (timedelta(days=2, hours=5), "2d5h"),
        ],
    )
    def test_format_age(self, delta: timedelta, text: str) -> None:
        assert format_age(delta) == text

    @pytest.mark.parametrize(
        ("delta", "text"),
        [
            (timedelta(days=2, hours=3, minutes=4), "2d 3h 4m"),
            (timedelta(hours=3, minutes=4), "3h 4m"),
            (timedelta(minutes=4), "4m"),
            (timedelta(seconds=-5), "0m"),
        ],
    )
    def test_format_uptime(self, delta: timedelta, text: str) -> None:
        assert format_uptime(delta) == text
