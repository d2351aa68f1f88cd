"""Tests for kubediag.engine.categorize — scheduling failure categorisation."""

from __future__ import annotations

from kubediag.engine.categorize import (
    aggregate_failure_categories,
    categorize_reason,
    categorize_scheduling_failure,
    parse_failed_scheduling_message,
    parse_not_trigger_scale_up_message,
    volume_categories_from_events,
)
from kubediag.models.scheduling import FailureCategory, SchedulingEvent, UnschedulableNode

_CPU_SHORT = "insufficient CPU (requested: 4, allocatable: 2)"


def _event(reason: str, message: str) -> SchedulingEvent:
    return SchedulingEvent(type="Warning", reason=reason, message=message)


class TestCategorizeReason:
    def test_insufficient_cpu(self) -> None:
        reason = "insufficient CPU (requested: 4, allocatable: 2)"
        assert categorize_reason(reason) == {FailureCategory.INSUFFICIENT_CPU}

    def test_node_selector(self) -> None:
        assert categorize_reason("node selector zone=a not matched") == {FailureCategory.NODE_AFFINITY_NOT_MATCH}

    def test_volume_node_affinity_is_not_pod_placement_affinity(self) -> None:
        reason = "PV pv-1 has node affinity that doesn't match node node-a"
        assert categorize_reason(reason) == {FailureCategory.VOLUME_NODE_AFFINITY_CONFLICT}

    def test_unbound_claim(self) -> None:
        reason = "PVC data is not bound (status: Pending)"
        assert categorize_reason(reason) == {FailureCategory.VOLUME_ATTACHMENT_ERROR}

    def test_taints_and_not_ready(self) -> None:
        assert categorize_reason("node has untolerated taints: 2") == {FailureCategory.TAINT_TOLERATION_MISMATCH}
        assert categorize_reason("node is not ready") == {FailureCategory.NODE_NOT_READY}

    def test_anti_affinity(self) -> None:
        assert categorize_reason("pod anti-affinity conflict") == {FailureCategory.POD_AFFINITY_CONFLICT}


class TestSchedulerMessages:
    def test_failed_scheduling_clause_counts(self) -> None:
        message = (
            "0/46 nodes are available: 1 Insufficient memory, "
            "3 node(s) had untolerated taint {node-role: master}, "
            "42 node(s) didn't match Pod's node affinity/selector."
        )
        counts = parse_failed_scheduling_message(message)
        assert counts[FailureCategory.INSUFFICIENT_MEMORY] == 1
        assert counts[FailureCategory.TAINT_TOLERATION_MISMATCH] == 3
        assert counts[FailureCategory.NODE_AFFINITY_NOT_MATCH] == 42

    def test_unrelated_message_is_empty(self) -> None:
        assert not parse_failed_scheduling_message("Successfully assigned default/web-0 to node-a")

    def test_not_trigger_scale_up(self) -> None:
        message = (
            "pod didn't trigger scale-up: 2 max node group size reached, "
            "3 node(s) didn't match Pod's node affinity/selector"
        )
        counts = parse_not_trigger_scale_up_message(message)
        assert counts[FailureCategory.MISCELLANEOUS] == 2
        assert counts[FailureCategory.NODE_AFFINITY_NOT_MATCH] == 3

    def test_multi_attach_event(self) -> None:
        events = [_event("FailedAttachVolume", "Multi-Attach error for volume pvc-123")]
        assert volume_categories_from_events(events) == {FailureCategory.VOLUME_MULTI_ATTACH_ERROR}

    def test_failed_scheduling_volume_fallback(self) -> None:
        events = [_event("FailedScheduling", "pod has unbound immediate PersistentVolumeClaims (volume pending)")]
        assert volume_categories_from_events(events) == {FailureCategory.VOLUME_ATTACHMENT_ERROR}


class TestCategorizeSchedulingFailure:
    def test_nothing_to_explain(self) -> None:
        assert categorize_scheduling_failure([], []) == []

    def test_unknown_reason_is_miscellaneous(self) -> None:
        assert categorize_scheduling_failure(["something odd"], []) == [FailureCategory.MISCELLANEOUS]

    def test_declaration_order(self) -> None:
        reasons = ["node has untolerated taints: 1", "insufficient CPU (requested: 4, allocatable: 2)"]
        assert categorize_scheduling_failure(reasons, []) == [
            FailureCategory.INSUFFICIENT_CPU,
            FailureCategory.TAINT_TOLERATION_MISMATCH,
        ]


class TestAggregateFailureCategories:
    def test_sorted_by_count_then_declaration_order(self) -> None:
        nodes = [
            UnschedulableNode(node_name="n3", reasons=["node has untolerated taints: 1"]),
            UnschedulableNode(node_name="n2", insufficient_resources=[_CPU_SHORT]),
            UnschedulableNode(node_name="n1", insufficient_resources=[_CPU_SHORT]),
            UnschedulableNode(node_name="n4", reasons=["node is not ready"]),
        ]
        summaries = aggregate_failure_categories(nodes, [])
        assert [s.category for s in summaries] == [
            FailureCategory.INSUFFICIENT_CPU,
            FailureCategory.TAINT_TOLERATION_MISMATCH,
            FailureCategory.NODE_NOT_READY,
        ]
        assert summaries[0].count == 2
        assert summaries[0].nodes == ["n1", "n2"]
        assert summaries[0].description == "Insufficient CPU resources available on nodes"
