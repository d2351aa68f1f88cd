"""Diagnostics coordinator: fetch snapshots, run the engine, return reports.

Every public method is one report.  Each runs under the configured
per-request deadline; when it expires the report is abandoned and
:class:`DeadlineExceededError` is raised, never a partial result.
Lookups that only enrich a report (events, PVCs, PVs, co-located pods)
are logged and skipped on failure.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TypeVar

from kubediag.engine.cluster_issues import DEFAULT_LIMITS, AggregationLimits, aggregate_cluster_issues
from kubediag.engine.health import calculate_health_score
from kubediag.engine.namespace import analyze_namespace, empty_namespace_report
from kubediag.engine.nodes import node_utilization
from kubediag.engine.pod_details import describe_pod, pod_failure_events, pod_resources
from kubediag.engine.scheduling import SchedulingInputs, explain_scheduling, explain_scheduling_detailed
from kubediag.errors import (
    DeadlineExceededError,
    DiagnosticsError,
    MetricsUnavailableError,
    NotFoundError,
    ProviderError,
)
from kubediag.models.common import Severity
from kubediag.models.config import AnalysisConfig
from kubediag.models.health import PodHealthScore
from kubediag.models.issues import ClusterIssues, NamespaceErrorReport
from kubediag.models.pod import NodeUtilization, PodDescription, PodFailureEvents, PodResources
from kubediag.models.scheduling import PodScheduling, SchedulingExplanation, SchedulingStatus
from kubediag.models.snapshots import (
    EventRecord,
    NodeSnapshot,
    PodSnapshot,
    VolumeClaimSnapshot,
    VolumeSnapshot,
)
from kubediag.observability.logging import bind_request, get_logger
from kubediag.observability.metrics import (
    pod_health_score,
    report_duration_seconds,
    reports_total,
    unschedulable_nodes,
)
from kubediag.provider.base import ClusterStateProvider

_log = get_logger("coordinator")

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class DiagnosticsCoordinator:
    """Serves the diagnostic reports on top of a :class:`ClusterStateProvider`.

    Args:
        provider: Read-only cluster state source.
        config: Deadline and restart-threshold settings.
        clock: Returns the current time; injectable for tests.
        limits: Caps applied by the cluster issue aggregator.
    """

    def __init__(
        self,
        provider: ClusterStateProvider,
        config: AnalysisConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
        limits: AggregationLimits = DEFAULT_LIMITS,
    ) -> None:
        self._provider = provider
        self._config = config or AnalysisConfig()
        self._clock = clock
        self._limits = limits

    # ------------------------------------------------------------------
    # Execution wrapper
    # ------------------------------------------------------------------

    async def _run(self, report: str, build: Callable[[], Awaitable[T]], **context: str) -> T:
        """Run ``build`` under the request deadline and record metrics."""
        bind_request(report=report, **context)
        timeout = self._config.request_timeout_seconds
        start = time.monotonic()
        outcome = "error"
        try:
            async with asyncio.timeout(timeout) as deadline:
                result = await build()
            # the engine runs without yielding, so the timeout cannot fire during it
            when = deadline.when()
            if when is not None and asyncio.get_running_loop().time() >= when:
                raise TimeoutError
            outcome = "success"
            return result
        except TimeoutError as exc:
            outcome = "timeout"
            _log.warning("report_timeout", timeout_seconds=timeout)
            raise DeadlineExceededError(report, timeout) from exc
        except NotFoundError:
            outcome = "not_found"
            raise
        except MetricsUnavailableError:
            outcome = "unavailable"
            raise
        except DiagnosticsError as exc:
            _log.error("report_failed", error=str(exc))
            raise
        except Exception as exc:
            _log.error("report_failed", error=str(exc), error_type=type(exc).__name__)
            raise ProviderError(report, exc) from exc
        finally:
            reports_total.labels(report=report, outcome=outcome).inc()
            report_duration_seconds.labels(report=report).observe(time.monotonic() - start)

    # ------------------------------------------------------------------
    # Fetch helpers
    # ------------------------------------------------------------------

    async def _pod_events(self, namespace: str, name: str) -> list[EventRecord]:
        try:
            return await self._provider.list_pod_events(namespace, name)
        except ProviderError as exc:
            _log.warning("pod_events_unavailable", namespace=namespace, pod=name, error=str(exc))
            return []

    async def _volume_objects(
        self, pod: PodSnapshot
    ) -> tuple[dict[str, VolumeClaimSnapshot], dict[str, VolumeSnapshot]]:
        claims: dict[str, VolumeClaimSnapshot] = {}
        volumes: dict[str, VolumeSnapshot] = {}
        for claim_name in pod.claim_names():
            try:
                claim = await self._provider.get_pvc(pod.namespace, claim_name)
            except (NotFoundError, ProviderError) as exc:
                _log.warning("volume_lookup_failed", kind="PersistentVolumeClaim", name=claim_name, error=str(exc))
                continue
            claims[claim_name] = claim
            if not claim.volume_name or claim.volume_name in volumes:
                continue
            try:
                volumes[claim.volume_name] = await self._provider.get_pv(claim.volume_name)
            except (NotFoundError, ProviderError) as exc:
                _log.warning(
                    "volume_lookup_failed", kind="PersistentVolume", name=claim.volume_name, error=str(exc)
                )
        return claims, volumes

    async def _node_pods(self, node: NodeSnapshot) -> list[PodSnapshot]:
        try:
            return await self._provider.list_pods(node_name=node.name)
        except ProviderError as exc:
            _log.warning("node_pods_unavailable", node=node.name, error=str(exc))
            return []

    async def _assigned_node(self, pod: PodSnapshot) -> NodeSnapshot | None:
        try:
            return await self._provider.get_node(pod.node_name)
        except (NotFoundError, ProviderError) as exc:
            _log.warning("assigned_node_unavailable", node=pod.node_name, error=str(exc))
            return None

    async def _scheduling_inputs(self, pod: PodSnapshot, events: list[EventRecord]) -> SchedulingInputs:
        """Fetch every node, the pods placed on each, and the pod's volumes.

        Per-node pod lists are fetched concurrently; the engine orders
        results by node name, so fetch order never shows in a report.
        """
        nodes = await self._provider.list_nodes()
        node_pods = await asyncio.gather(*(self._node_pods(node) for node in nodes))
        claims, volumes = await self._volume_objects(pod)
        return SchedulingInputs(
            pod=pod,
            nodes=nodes,
            pods_by_node={node.name: pods for node, pods in zip(nodes, node_pods, strict=True)},
            claims=claims,
            volumes=volumes,
            events=events,
        )

    # ------------------------------------------------------------------
    # Pod reports
    # ------------------------------------------------------------------

    async def describe_pod(self, namespace: str, name: str) -> PodDescription:
        async def build() -> PodDescription:
            pod = await self._provider.get_pod(namespace, name)
            return describe_pod(pod, await self._pod_events(namespace, name))

        return await self._run("describe", build, namespace=namespace, pod=name)

    async def pod_resources(self, namespace: str, name: str) -> PodResources:
        async def build() -> PodResources:
            return pod_resources(await self._provider.get_pod(namespace, name))

        return await self._run("resources", build, namespace=namespace, pod=name)

    async def pod_failure_events(self, namespace: str, name: str) -> PodFailureEvents:
        async def build() -> PodFailureEvents:
            pod = await self._provider.get_pod(namespace, name)
            events = await self._pod_events(namespace, name)
            return pod_failure_events(pod, events, self._clock())

        return await self._run("failure_events", build, namespace=namespace, pod=name)

    async def explain_scheduling(self, namespace: str, name: str) -> PodScheduling:
        async def build() -> PodScheduling:
            pod = await self._provider.get_pod(namespace, name)
            events = await self._pod_events(namespace, name)
            if pod.node_name:
                inputs = SchedulingInputs(pod=pod, events=events)
                return explain_scheduling(inputs, await self._assigned_node(pod))
            inputs = await self._scheduling_inputs(pod, events)
            report = explain_scheduling(inputs)
            if report.status is SchedulingStatus.PENDING:
                unschedulable_nodes.observe(len(report.unschedulable_nodes))
            return report

        return await self._run("scheduling", build, namespace=namespace, pod=name)

    async def explain_scheduling_detailed(self, namespace: str, name: str) -> SchedulingExplanation:
        async def build() -> SchedulingExplanation:
            pod = await self._provider.get_pod(namespace, name)
            events = await self._pod_events(namespace, name)
            return explain_scheduling_detailed(await self._scheduling_inputs(pod, events))

        return await self._run("scheduling_explanation", build, namespace=namespace, pod=name)

    async def pod_health_score(self, namespace: str, name: str) -> PodHealthScore:
        async def build() -> PodHealthScore:
            pod = await self._provider.get_pod(namespace, name)
            events = await self._pod_events(namespace, name)
            score = calculate_health_score(pod, events, self._clock())
            pod_health_score.observe(score.overall_score)
            return score

        return await self._run("health_score", build, namespace=namespace, pod=name)

    # ------------------------------------------------------------------
    # Namespace, cluster and node reports
    # ------------------------------------------------------------------

    async def namespace_errors(self, namespace: str) -> NamespaceErrorReport:
        threshold = self._config.pod_restart_threshold

        async def build() -> NamespaceErrorReport:
            now = self._clock()
            try:
                pods = await self._provider.list_pods(namespace=namespace)
            except NotFoundError:
                return empty_namespace_report(namespace, threshold, now)
            events = await self._namespace_events(namespace)
            by_pod: dict[str, list[EventRecord]] = {}
            for event in events:
                if event.involved_kind == "Pod":
                    by_pod.setdefault(event.involved_name, []).append(event)
            return analyze_namespace(namespace, pods, by_pod, threshold, now)

        return await self._run("namespace_errors", build, namespace=namespace)

    async def _namespace_events(self, namespace: str) -> list[EventRecord]:
        try:
            return await self._provider.list_events(namespace)
        except (NotFoundError, ProviderError) as exc:
            _log.warning("namespace_events_unavailable", namespace=namespace, error=str(exc))
            return []

    async def cluster_issues(self, namespace: str = "", severity: Severity | None = None) -> ClusterIssues:
        """Cluster-wide issues; ``""`` or ``"all"`` covers every namespace."""
        scope = "" if namespace in ("", "all") else namespace

        async def build() -> ClusterIssues:
            try:
                pods = await self._provider.list_pods(namespace=scope)
            except NotFoundError:
                pods = []
            return aggregate_cluster_issues(pods, self._clock(), severity=severity, limits=self._limits)

        return await self._run("cluster_issues", build, namespace=scope or "all")

    async def node_utilization(self, name: str) -> NodeUtilization:
        async def build() -> NodeUtilization:
            node = await self._provider.get_node(name)
            if not await self._provider.metrics_available():
                raise MetricsUnavailableError()
            metrics = await self._provider.get_node_metrics(name)
            return node_utilization(node, metrics, self._clock())

        return await self._run("node_utilization", build, node=name)
