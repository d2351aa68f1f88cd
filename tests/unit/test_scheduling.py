"""Tests for kubediag.engine.scheduling — compact and detailed scheduling reports."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from kubediag.engine.scheduling import (
    SchedulingInputs,
    explain_node_ready,
    explain_scheduling,
    explain_scheduling_detailed,
    scheduling_events,
    scheduling_status,
)
from kubediag.models.scheduling import FailureCategory, SchedulingStatus
from kubediag.models.snapshots import (
    Condition,
    ContainerSpec,
    EventRecord,
    NodeSnapshot,
    PodPhase,
    PodSnapshot,
    Taint,
)

_TS = datetime(2026, 2, 18, 12, 0, 0, tzinfo=UTC)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_pod(
    name: str = "web-0",
    node_name: str = "",
    phase: PodPhase = PodPhase.PENDING,
    requests: dict[str, str] | None = None,
    node_selector: dict[str, str] | None = None,
) -> PodSnapshot:
    return PodSnapshot(
        namespace="default",
        name=name,
        phase=phase,
        node_name=node_name,
        node_selector=node_selector or {},
        containers=(ContainerSpec(name="app", requests=requests or {"cpu": "100m", "memory": "128Mi"}),),
    )


def _make_node(
    name: str,
    cpu: str = "2",
    zone: str = "us-east-1b",
    ready: bool = True,
    taints: tuple[Taint, ...] = (),
) -> NodeSnapshot:
    return NodeSnapshot(
        name=name,
        labels={"topology.kubernetes.io/zone": zone},
        capacity={"cpu": cpu, "memory": "4Gi"},
        allocatable={"cpu": cpu, "memory": "4Gi"},
        conditions=(Condition(type="Ready", status="True" if ready else "False", message="kubelet"),),
        taints=taints,
    )


def _event(reason: str, message: str, minutes_ago: int = 0) -> EventRecord:
    return EventRecord(
        type="Warning",
        reason=reason,
        message=message,
        last_timestamp=_TS - timedelta(minutes=minutes_ago),
        involved_kind="Pod",
        involved_name="web-0",
    )


# ---------------------------------------------------------------------------
# Status and events
# ---------------------------------------------------------------------------


class TestSchedulingStatus:
    def test_bound_pod_is_scheduled(self) -> None:
        assert scheduling_status(_make_pod(node_name="node-a", phase=PodPhase.RUNNING)) is SchedulingStatus.SCHEDULED

    def test_pending_pod(self) -> None:
        assert scheduling_status(_make_pod()) is SchedulingStatus.PENDING

    def test_unbound_non_pending_pod_failed(self) -> None:
        assert scheduling_status(_make_pod(phase=PodPhase.FAILED)) is SchedulingStatus.FAILED

    def test_scheduling_events_filtered_and_newest_first(self) -> None:
        events = [
            _event("FailedScheduling", "old", minutes_ago=10),
            _event("Pulled", "image pulled"),
            _event("FailedScheduling", "new", minutes_ago=1),
        ]
        selected = scheduling_events(events)
        assert [e.message for e in selected] == ["new", "old"]


# ---------------------------------------------------------------------------
# Compact report
# ---------------------------------------------------------------------------


class TestExplainSchedulingPending:
    def test_zone_selector_mismatch(self) -> None:
        """Every node is in the wrong zone, so only node affinity is reported."""
        pod = _make_pod(node_selector={"topology.kubernetes.io/zone": "us-east-1a"})
        nodes = [_make_node("node-b"), _make_node("node-a")]
        report = explain_scheduling(SchedulingInputs(pod=pod, nodes=nodes))

        assert report.status is SchedulingStatus.PENDING
        assert report.failure_categories == [FailureCategory.NODE_AFFINITY_NOT_MATCH]
        assert [n.node_name for n in report.unschedulable_nodes] == ["node-a", "node-b"]
        assert report.unschedulable_nodes[0].unmatched_selectors == {"topology.kubernetes.io/zone": "us-east-1a"}
        assert report.failure_summary[0].count == 2

    def test_insufficient_cpu_only(self) -> None:
        pod = _make_pod(requests={"cpu": "4", "memory": "128Mi"})
        report = explain_scheduling(SchedulingInputs(pod=pod, nodes=[_make_node("node-a")]))

        assert report.failure_categories == [FailureCategory.INSUFFICIENT_CPU]
        node = report.unschedulable_nodes[0]
        assert node.reasons == ["insufficient resources"]
        assert node.insufficient_resources == ["insufficient CPU (requested: 4, allocatable: 2)"]

    def test_fitting_node_is_not_listed(self) -> None:
        pod = _make_pod(requests={"cpu": "4"})
        nodes = [_make_node("small"), _make_node("big", cpu="8")]
        report = explain_scheduling(SchedulingInputs(pod=pod, nodes=nodes))
        assert [n.node_name for n in report.unschedulable_nodes] == ["small"]

    def test_not_ready_and_tainted_nodes(self) -> None:
        nodes = [
            _make_node("node-a", ready=False),
            _make_node("node-b", taints=(Taint("dedicated", "gpu", "NoSchedule"),)),
        ]
        report = explain_scheduling(SchedulingInputs(pod=_make_pod(), nodes=nodes))
        assert report.unschedulable_nodes[0].reasons == ["node is not ready"]
        assert report.unschedulable_nodes[1].reasons == ["node has untolerated taints: 1"]
        assert report.failure_categories == [
            FailureCategory.TAINT_TOLERATION_MISMATCH,
            FailureCategory.NODE_NOT_READY,
        ]

    def test_repeated_calls_are_identical(self) -> None:
        pod = _make_pod(requests={"cpu": "4"}, node_selector={"disk": "ssd"})
        inputs = SchedulingInputs(pod=pod, nodes=[_make_node("c"), _make_node("a"), _make_node("b")])
        assert explain_scheduling(inputs) == explain_scheduling(inputs)

    def test_node_order_does_not_change_report(self) -> None:
        pod = _make_pod(requests={"cpu": "4"})
        nodes = [_make_node("c"), _make_node("a"), _make_node("b")]
        forward = explain_scheduling(SchedulingInputs(pod=pod, nodes=nodes))
        backward = explain_scheduling(SchedulingInputs(pod=pod, nodes=nodes[::-1]))
        assert forward == backward


class TestExplainSchedulingScheduled:
    def test_decision_trace_for_assigned_node(self) -> None:
        pod = _make_pod(node_name="node-a", phase=PodPhase.RUNNING)
        node = _make_node("node-a")
        report = explain_scheduling(SchedulingInputs(pod=pod, nodes=[node]), assigned_node=node)

        assert report.status is SchedulingStatus.SCHEDULED
        assert report.unschedulable_nodes == []
        assert report.scheduling_decisions is not None
        assert report.scheduling_decisions.selected_node == "node-a"
        assert report.scheduling_decisions.reasons == ["node has no taints", "node has sufficient resources"]

    def test_scheduled_without_node_has_no_trace(self) -> None:
        pod = _make_pod(node_name="gone", phase=PodPhase.RUNNING)
        report = explain_scheduling(SchedulingInputs(pod=pod))
        assert report.scheduling_decisions is None


# ---------------------------------------------------------------------------
# Detailed explanation
# ---------------------------------------------------------------------------


class TestExplainSchedulingDetailed:
    def test_resource_shortage_per_node(self) -> None:
        pod = _make_pod(requests={"cpu": "4"})
        nodes = [_make_node("small"), _make_node("big", cpu="8")]
        report = explain_scheduling_detailed(SchedulingInputs(pod=pod, nodes=nodes))

        assert report.status is SchedulingStatus.PENDING
        assert [a.node_name for a in report.node_analysis] == ["big", "small"]
        big, small = report.node_analysis
        assert big.schedulable is True
        assert big.recommendation == "Node is schedulable for this pod"
        assert small.schedulable is False
        assert small.reasons.resources is not None
        cpu = small.reasons.resources.details["cpu"]
        assert cpu.shortage == "2"
        assert cpu.recommendation == "Pod needs 2 more cpu than available on this node"
        assert small.recommendation == "Node cannot schedule pod due to: needs 2 cpu"

    def test_summary_counts_and_actions(self) -> None:
        pod = _make_pod(requests={"cpu": "4"})
        report = explain_scheduling_detailed(SchedulingInputs(pod=pod, nodes=[_make_node("a"), _make_node("b")]))

        assert report.summary.total_nodes == 2
        assert report.summary.filtered_by_resources == 2
        assert report.summary.recommendation.startswith("No nodes have sufficient resources.")
        assert report.summary.possible_actions == [
            "Enable cluster autoscaler if not already enabled",
            "Reduce pod cpu request by at least 2",
            "Scale up cluster by adding more nodes",
        ]

    def test_allocated_requests_reduce_available(self) -> None:
        placed = _make_pod(name="other", node_name="a", phase=PodPhase.RUNNING, requests={"cpu": "500m"})
        inputs = SchedulingInputs(pod=_make_pod(), nodes=[_make_node("a")], pods_by_node={"a": [placed]})
        report = explain_scheduling_detailed(inputs)
        assert report.node_analysis[0].schedulable is True
        assert report.node_analysis[0].reasons.resources is None

    def test_already_scheduled_recommendation(self) -> None:
        pod = _make_pod(node_name="a", phase=PodPhase.RUNNING)
        report = explain_scheduling_detailed(SchedulingInputs(pod=pod, nodes=[_make_node("a")]))
        assert report.status is SchedulingStatus.SCHEDULED
        assert report.summary.recommendation == "Pod is already scheduled on node a"

    def test_node_ready_explanation(self) -> None:
        explanation = explain_node_ready(_make_node("a", ready=False))
        assert explanation.ready is False
        assert explanation.conditions == ["NodeReady condition is False: kubelet"]
