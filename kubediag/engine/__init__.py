"""Public API of the diagnostic rules engine.

Every entry point is a pure function of snapshots and an explicit ``now``;
nothing here performs I/O.

Usage::

    from kubediag.engine import SchedulingInputs, explain_scheduling

    report = explain_scheduling(SchedulingInputs(pod=pod, nodes=nodes, pods_by_node=placed))
"""

from __future__ import annotations

from kubediag.engine.cluster_issues import DEFAULT_LIMITS, AggregationLimits, aggregate_cluster_issues
from kubediag.engine.constraints import (
    evaluate_node_affinity,
    evaluate_pod_anti_affinity,
    evaluate_resource_fit,
    evaluate_taints,
    evaluate_volume_binding,
)
from kubediag.engine.health import calculate_health_score
from kubediag.engine.namespace import analyze_namespace, analyze_pod, empty_namespace_report
from kubediag.engine.nodes import node_utilization
from kubediag.engine.pod_details import describe_pod, pod_failure_events, pod_resources
from kubediag.engine.scheduling import SchedulingInputs, explain_scheduling, explain_scheduling_detailed

__all__ = [
    "DEFAULT_LIMITS",
    "AggregationLimits",
    "SchedulingInputs",
    "aggregate_cluster_issues",
    "analyze_namespace",
    "analyze_pod",
    "calculate_health_score",
    "describe_pod",
    "empty_namespace_report",
    "evaluate_node_affinity",
    "evaluate_pod_anti_affinity",
    "evaluate_resource_fit",
    "evaluate_taints",
    "evaluate_volume_binding",
    "explain_scheduling",
    "explain_scheduling_detailed",
    "node_utilization",
    "pod_failure_events",
    "pod_resources",
]
