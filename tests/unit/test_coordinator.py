"""Tests for kubediag.analyst.coordinator — DiagnosticsCoordinator report flow."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from kubediag.analyst.coordinator import DiagnosticsCoordinator
from kubediag.errors import (
    DeadlineExceededError,
    MetricsUnavailableError,
    NotFoundError,
    ProviderError,
)
from kubediag.models.common import Severity
from kubediag.models.config import AnalysisConfig
from kubediag.models.scheduling import SchedulingStatus
from kubediag.models.snapshots import (
    Condition,
    ContainerStatus,
    EventRecord,
    NodeMetrics,
    NodeSnapshot,
    OwnerReference,
    PodPhase,
    PodSnapshot,
    RunningState,
    WaitingState,
)
from kubediag.observability.metrics import reports_total
from kubediag.provider.kubernetes import KubernetesProvider

_TS = datetime(2026, 2, 18, 12, 0, 0, tzinfo=UTC)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_coordinator(provider: AsyncMock, timeout: int = 5) -> DiagnosticsCoordinator:
    config = AnalysisConfig(request_timeout_seconds=timeout, pod_restart_threshold=5)
    return DiagnosticsCoordinator(provider, config=config, clock=lambda: _TS)


def _make_pod(name: str = "web-0", node_name: str = "", **kwargs: object) -> PodSnapshot:
    return PodSnapshot(
        namespace="shop",
        name=name,
        phase=PodPhase.RUNNING if node_name else PodPhase.PENDING,
        node_name=node_name,
        created_at=_TS - timedelta(hours=2),
        **kwargs,  # type: ignore[arg-type]
    )


def _ready_node(name: str, labels: dict[str, str] | None = None) -> NodeSnapshot:
    return NodeSnapshot(
        name=name,
        labels=labels or {},
        allocatable={"cpu": "4", "memory": "8Gi", "pods": "110"},
        conditions=(Condition(type="Ready", status="True"),),
    )


def _reports(report: str, outcome: str) -> float:
    return reports_total.labels(report=report, outcome=outcome)._value.get()


# ---------------------------------------------------------------------------
# Deadline and error handling
# ---------------------------------------------------------------------------


class TestRunWrapper:
    async def test_deadline_exceeded(self) -> None:
        """A report still running at the deadline is abandoned."""

        async def slow_get_pod(namespace: str, name: str) -> PodSnapshot:
            await asyncio.sleep(5)
            return _make_pod()

        provider = AsyncMock()
        provider.get_pod = slow_get_pod
        coordinator = _make_coordinator(provider, timeout=0)
        before = _reports("describe", "timeout")

        with pytest.raises(DeadlineExceededError) as exc_info:
            await coordinator.describe_pod("shop", "web-0")

        assert exc_info.value.report == "describe"
        assert _reports("describe", "timeout") == before + 1

    async def test_missing_pod_propagates(self) -> None:
        provider = AsyncMock()
        provider.get_pod.side_effect = NotFoundError("Pod", "web-0", "shop")
        coordinator = _make_coordinator(provider)
        before = _reports("health_score", "not_found")

        with pytest.raises(NotFoundError):
            await coordinator.pod_health_score("shop", "web-0")

        assert _reports("health_score", "not_found") == before + 1

    async def test_provider_error_propagates(self) -> None:
        provider = AsyncMock()
        provider.get_pod.side_effect = ProviderError("get_pod", RuntimeError("boom"))

        with pytest.raises(ProviderError):
            await _make_coordinator(provider).pod_resources("shop", "web-0")

    async def test_unexpected_error_is_internal(self) -> None:
        """Errors outside the taxonomy are logged and surfaced as ProviderError."""
        provider = AsyncMock()
        provider.get_pod.side_effect = RuntimeError("decoder exploded")
        before = _reports("resources", "error")

        with pytest.raises(ProviderError) as exc_info:
            await _make_coordinator(provider).pod_resources("shop", "web-0")

        assert isinstance(exc_info.value.cause, RuntimeError)
        assert _reports("resources", "error") == before + 1

    async def test_deadline_checked_after_engine_work(self) -> None:
        """A report that finishes past its deadline without yielding is still rejected."""
        provider = AsyncMock()
        provider.get_pod.return_value = _make_pod(node_name="node-a")
        before = _reports("resources", "timeout")

        with pytest.raises(DeadlineExceededError):
            await _make_coordinator(provider, timeout=0).pod_resources("shop", "web-0")

        assert _reports("resources", "timeout") == before + 1


# ---------------------------------------------------------------------------
# Pod reports
# ---------------------------------------------------------------------------


class TestPodReports:
    async def test_event_failure_degrades_to_no_events(self) -> None:
        provider = AsyncMock()
        provider.get_pod.return_value = _make_pod(node_name="node-a")
        provider.list_pod_events.side_effect = ProviderError("list_pod_events", OSError("reset"))

        description = await _make_coordinator(provider).describe_pod("shop", "web-0")

        assert description.name == "web-0"
        assert description.events == []

    async def test_dropped_event_connection_keeps_health_score(self) -> None:
        provider = KubernetesProvider(MagicMock(), timeout_seconds=5.0)
        provider._core = MagicMock()
        provider._core.read_namespaced_pod = AsyncMock(
            return_value={"metadata": {"name": "web-0", "namespace": "shop"}, "status": {"phase": "Running"}}
        )
        provider._core.list_namespaced_event = AsyncMock(side_effect=aiohttp.ServerDisconnectedError())

        score = await _make_coordinator(provider).pod_health_score("shop", "web-0")

        assert score.pod_name == "web-0"
        assert score.details.recent_events == []

    async def test_health_score_uses_clock(self) -> None:
        provider = AsyncMock()
        status = ContainerStatus(name="app", ready=True, state=RunningState(started_at=_TS - timedelta(hours=2)))
        provider.get_pod.return_value = _make_pod(node_name="node-a", container_statuses=(status,))
        provider.list_pod_events.return_value = []

        score = await _make_coordinator(provider).pod_health_score("shop", "web-0")

        assert score.calculated_at == _TS
        provider.list_pod_events.assert_awaited_once_with("shop", "web-0")

    async def test_failure_events(self) -> None:
        provider = AsyncMock()
        provider.get_pod.return_value = _make_pod(node_name="node-a")
        provider.list_pod_events.return_value = [
            EventRecord(type="Warning", reason="BackOff", message="back-off", last_timestamp=_TS - timedelta(minutes=1))
        ]

        report = await _make_coordinator(provider).pod_failure_events("shop", "web-0")

        assert report.total_events == 1
        assert report.critical_events == 1


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


class TestScheduling:
    async def test_pending_pod_checks_every_node(self) -> None:
        provider = AsyncMock()
        provider.get_pod.return_value = _make_pod(node_selector={"disk": "ssd"})
        provider.list_pod_events.return_value = []
        provider.list_nodes.return_value = [_ready_node("node-b"), _ready_node("node-a", {"disk": "ssd"})]
        provider.list_pods.return_value = []

        report = await _make_coordinator(provider).explain_scheduling("shop", "web-0")

        assert report.status is SchedulingStatus.PENDING
        assert [n.node_name for n in report.unschedulable_nodes] == ["node-b"]
        assert report.unschedulable_nodes[0].unmatched_selectors == {"disk": "ssd"}
        awaited_nodes = sorted(call.kwargs["node_name"] for call in provider.list_pods.await_args_list)
        assert awaited_nodes == ["node-a", "node-b"]

    async def test_scheduled_pod_with_missing_node(self) -> None:
        provider = AsyncMock()
        provider.get_pod.return_value = _make_pod(node_name="gone")
        provider.list_pod_events.return_value = []
        provider.get_node.side_effect = NotFoundError("Node", "gone")

        report = await _make_coordinator(provider).explain_scheduling("shop", "web-0")

        assert report.status is SchedulingStatus.SCHEDULED
        assert report.scheduling_decisions is None
        provider.list_nodes.assert_not_awaited()

    async def test_scheduled_pod_with_unreadable_node(self) -> None:
        provider = AsyncMock()
        provider.get_pod.return_value = _make_pod(node_name="node-a")
        provider.list_pod_events.return_value = []
        provider.get_node.side_effect = ProviderError("get_node", OSError("reset"))

        report = await _make_coordinator(provider).explain_scheduling("shop", "web-0")

        assert report.status is SchedulingStatus.SCHEDULED
        assert report.node_name == "node-a"
        assert report.scheduling_decisions is None

    async def test_detailed_explanation_sorted_by_node(self) -> None:
        provider = AsyncMock()
        provider.get_pod.return_value = _make_pod()
        provider.list_pod_events.return_value = []
        provider.list_nodes.return_value = [_ready_node("node-c"), _ready_node("node-a")]
        provider.list_pods.side_effect = [ProviderError("list_pods", OSError("reset")), []]

        explanation = await _make_coordinator(provider).explain_scheduling_detailed("shop", "web-0")

        assert [n.node_name for n in explanation.node_analysis] == ["node-a", "node-c"]


# ---------------------------------------------------------------------------
# Namespace, cluster and node reports
# ---------------------------------------------------------------------------


class TestWideReports:
    async def test_missing_namespace_is_empty_report(self) -> None:
        provider = AsyncMock()
        provider.list_pods.side_effect = NotFoundError("Namespace", "ghost")

        report = await _make_coordinator(provider).namespace_errors("ghost")

        assert report.namespace == "ghost"
        assert report.total_pods_analyzed == 0
        assert report.analysis_time == _TS
        provider.list_events.assert_not_awaited()

    async def test_namespace_events_grouped_by_pod(self) -> None:
        status = ContainerStatus(name="app", restart_count=9, state=WaitingState(reason="CrashLoopBackOff"))
        pod = _make_pod(
            "web-1",
            node_name="node-a",
            container_statuses=(status,),
            owner_references=(OwnerReference(kind="ReplicaSet", name="web-5f6d7"),),
        )
        provider = AsyncMock()
        provider.list_pods.return_value = [pod]
        provider.list_events.return_value = [
            EventRecord(
                type="Warning",
                reason="BackOff",
                last_timestamp=_TS - timedelta(minutes=2),
                involved_kind="Pod",
                involved_name="web-1",
            ),
            EventRecord(type="Warning", reason="Scaled", involved_kind="Deployment", involved_name="web-1"),
        ]

        report = await _make_coordinator(provider).namespace_errors("shop")

        assert report.problematic_pods_count == 1
        assert [e.reason for e in report.problematic_pods[0].recent_events] == ["BackOff"]
        provider.list_pods.assert_awaited_once_with(namespace="shop")

    @pytest.mark.parametrize("namespace", ["", "all"])
    async def test_cluster_issues_all_namespaces(self, namespace: str) -> None:
        provider = AsyncMock()
        provider.list_pods.return_value = []

        report = await _make_coordinator(provider).cluster_issues(namespace, severity=Severity.CRITICAL)

        assert report.total_pods == 0
        assert report.calculated_at == _TS
        provider.list_pods.assert_awaited_once_with(namespace="")

    async def test_node_utilization_without_metrics_api(self) -> None:
        provider = AsyncMock()
        provider.get_node.return_value = _ready_node("node-a")
        provider.metrics_available.return_value = False

        with pytest.raises(MetricsUnavailableError):
            await _make_coordinator(provider).node_utilization("node-a")

        provider.get_node_metrics.assert_not_awaited()

    async def test_node_utilization(self) -> None:
        provider = AsyncMock()
        provider.get_node.return_value = NodeSnapshot(name="node-a", capacity={"cpu": "4", "memory": "8Gi"})
        provider.metrics_available.return_value = True
        provider.get_node_metrics.return_value = NodeMetrics(name="node-a", cpu_usage="2", memory_usage="4Gi")

        utilization = await _make_coordinator(provider).node_utilization("node-a")

        assert utilization.cpu_percentage == 50.0
        assert utilization.memory_percentage == 50.0
        assert utilization.timestamp == _TS
