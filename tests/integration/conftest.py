"""Shared fixtures for integration tests: an in-memory cluster state provider."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from kubediag.errors import MetricsUnavailableError, NotFoundError
from kubediag.models.snapshots import (
    Condition,
    ContainerSpec,
    ContainerStatus,
    EventRecord,
    NodeMetrics,
    NodeSnapshot,
    OwnerReference,
    PodPhase,
    PodSnapshot,
    RunningState,
    Taint,
    VolumeClaimSnapshot,
    VolumeSnapshot,
    WaitingState,
)

NOW = datetime(2026, 2, 18, 12, 0, 0, tzinfo=UTC)


@dataclass
class InMemoryProvider:
    """ClusterStateProvider backed by plain lists, for end-to-end tests."""

    pods: list[PodSnapshot] = field(default_factory=list)
    nodes: list[NodeSnapshot] = field(default_factory=list)
    events: list[EventRecord] = field(default_factory=list)
    claims: list[VolumeClaimSnapshot] = field(default_factory=list)
    volumes: list[VolumeSnapshot] = field(default_factory=list)
    metrics: dict[str, NodeMetrics] = field(default_factory=dict)

    async def get_pod(self, namespace: str, name: str) -> PodSnapshot:
        for pod in self.pods:
            if (pod.namespace, pod.name) == (namespace, name):
                return pod
        raise NotFoundError("Pod", name, namespace)

    async def list_pods(self, namespace: str = "", node_name: str = "") -> list[PodSnapshot]:
        if namespace and not any(p.namespace == namespace for p in self.pods):
            raise NotFoundError("Namespace", namespace)
        return [
            p
            for p in self.pods
            if (not namespace or p.namespace == namespace) and (not node_name or p.node_name == node_name)
        ]

    async def get_node(self, name: str) -> NodeSnapshot:
        for node in self.nodes:
            if node.name == name:
                return node
        raise NotFoundError("Node", name)

    async def list_nodes(self) -> list[NodeSnapshot]:
        return list(self.nodes)

    async def list_pod_events(self, namespace: str, pod_name: str) -> list[EventRecord]:
        return [
            e
            for e in self.events
            if e.involved_kind == "Pod" and e.involved_namespace == namespace and e.involved_name == pod_name
        ]

    async def list_events(self, namespace: str) -> list[EventRecord]:
        return [e for e in self.events if e.involved_namespace == namespace]

    async def get_pvc(self, namespace: str, name: str) -> VolumeClaimSnapshot:
        for claim in self.claims:
            if (claim.namespace, claim.name) == (namespace, name):
                return claim
        raise NotFoundError("PersistentVolumeClaim", name, namespace)

    async def get_pv(self, name: str) -> VolumeSnapshot:
        for volume in self.volumes:
            if volume.name == name:
                return volume
        raise NotFoundError("PersistentVolume", name)

    async def metrics_available(self) -> bool:
        return bool(self.metrics)

    async def get_node_metrics(self, name: str) -> NodeMetrics:
        if name not in self.metrics:
            raise MetricsUnavailableError(f"no metrics reported for node '{name}'")
        return self.metrics[name]


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_node(
    name: str,
    cpu: str = "4",
    memory: str = "8Gi",
    labels: dict[str, str] | None = None,
    taints: tuple[Taint, ...] = (),
    ready: bool = True,
) -> NodeSnapshot:
    resources = {"cpu": cpu, "memory": memory, "pods": "110"}
    return NodeSnapshot(
        name=name,
        labels={"kubernetes.io/hostname": name, **(labels or {})},
        taints=taints,
        capacity=dict(resources),
        allocatable=dict(resources),
        conditions=(Condition(type="Ready", status="True" if ready else "False"),),
    )


def make_running_pod(name: str, namespace: str = "shop", node_name: str = "node-a", cpu: str = "500m") -> PodSnapshot:
    return PodSnapshot(
        namespace=namespace,
        name=name,
        phase=PodPhase.RUNNING,
        node_name=node_name,
        created_at=NOW - timedelta(days=3),
        labels={"app": name.rsplit("-", 1)[0]},
        containers=(ContainerSpec(name="app", image="app:1.0", requests={"cpu": cpu, "memory": "256Mi"}),),
        container_statuses=(
            ContainerStatus(name="app", ready=True, state=RunningState(started_at=NOW - timedelta(days=3))),
        ),
        conditions=tuple(
            Condition(type=t, status="True") for t in ("Initialized", "Ready", "ContainersReady", "PodScheduled")
        ),
        owner_references=(OwnerReference(kind="ReplicaSet", name=f"{name.rsplit('-', 1)[0]}-5d8f9"),),
    )


def make_crash_looping_pod(name: str, namespace: str = "shop", restarts: int = 14) -> PodSnapshot:
    return PodSnapshot(
        namespace=namespace,
        name=name,
        phase=PodPhase.RUNNING,
        node_name="node-a",
        created_at=NOW - timedelta(hours=6),
        labels={"app": "worker", "pod-template-hash": "5d8f9"},
        containers=(ContainerSpec(name="app", image="worker:2.1"),),
        container_statuses=(
            ContainerStatus(
                name="app",
                restart_count=restarts,
                state=WaitingState(reason="CrashLoopBackOff", message="back-off 5m0s restarting failed container"),
            ),
        ),
        conditions=(
            Condition(type="PodScheduled", status="True"),
            Condition(type="Ready", status="False", last_transition_time=NOW - timedelta(hours=5)),
        ),
        owner_references=(OwnerReference(kind="ReplicaSet", name="worker-5d8f9"),),
    )


def make_pending_pod(name: str, namespace: str = "shop", cpu: str = "6") -> PodSnapshot:
    return PodSnapshot(
        namespace=namespace,
        name=name,
        phase=PodPhase.PENDING,
        scheduler_name="default-scheduler",
        created_at=NOW - timedelta(minutes=20),
        containers=(ContainerSpec(name="app", image="batch:1.0", requests={"cpu": cpu, "memory": "1Gi"}),),
        conditions=(
            Condition(
                type="PodScheduled",
                status="False",
                reason="Unschedulable",
                message="0/2 nodes are available: 2 Insufficient cpu.",
            ),
        ),
        owner_references=(OwnerReference(kind="Job", name="batch"),),
    )


def make_event(pod: PodSnapshot, reason: str, minutes_ago: int, type_: str = "Warning", count: int = 1) -> EventRecord:
    return EventRecord(
        type=type_,
        reason=reason,
        message=f"{reason} for {pod.name}",
        count=count,
        first_timestamp=NOW - timedelta(minutes=minutes_ago + 30),
        last_timestamp=NOW - timedelta(minutes=minutes_ago),
        involved_kind="Pod",
        involved_namespace=pod.namespace,
        involved_name=pod.name,
        source_component="kubelet",
        source_host=pod.node_name,
    )


@pytest.fixture
def cluster() -> InMemoryProvider:
    """Two ready nodes, healthy web pods, one crash-looping worker and one pending batch pod."""
    web = [make_running_pod(f"web-{i}", node_name="node-a" if i % 2 else "node-b") for i in range(4)]
    worker = make_crash_looping_pod("worker-5d8f9-x1")
    pending = make_pending_pod("batch-1")
    return InMemoryProvider(
        pods=[*web, worker, pending],
        nodes=[make_node("node-b"), make_node("node-a")],
        events=[
            make_event(worker, "BackOff", minutes_ago=2, count=40),
            make_event(worker, "Started", minutes_ago=7, type_="Normal"),
            make_event(pending, "FailedScheduling", minutes_ago=1),
        ],
        metrics={"node-a": NodeMetrics(name="node-a", cpu_usage="1", memory_usage="2Gi", timestamp=NOW)},
    )
