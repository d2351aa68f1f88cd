"""Prometheus metrics for KubeDiag."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# Report metrics
reports_total = Counter(
    "kubediag_reports_total",
    "Total diagnostic reports requested",
    ["report", "outcome"],
)

report_duration_seconds = Histogram(
    "kubediag_report_duration_seconds",
    "Diagnostic report duration in seconds",
    ["report"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Provider metrics
provider_errors_total = Counter(
    "kubediag_provider_errors_total",
    "Cluster state provider failures",
    ["operation"],
)

# Engine metrics
unschedulable_nodes = Histogram(
    "kubediag_unschedulable_nodes",
    "Nodes found unable to host a pending pod per scheduling report",
    buckets=(0, 1, 2, 5, 10, 25, 50, 100, 250, 1000),
)

pod_health_score = Histogram(
    "kubediag_pod_health_score",
    "Overall pod health scores computed",
    buckets=(10, 30, 50, 70, 90, 100),
)

quantity_overflows_total = Counter(
    "kubediag_quantity_overflows_total",
    "Resource quantity contributions dropped because the sum overflowed",
)
