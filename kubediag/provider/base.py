"""Cluster state provider interface.

The diagnostics coordinator reads cluster state only through this
protocol.  Implementations raise :class:`~kubediag.errors.NotFoundError`
for missing objects and :class:`~kubediag.errors.ProviderError` for any
other failure; a missing metrics API is reported by
:meth:`ClusterStateProvider.metrics_available` rather than an error.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from kubediag.models.snapshots import (
    EventRecord,
    NodeMetrics,
    NodeSnapshot,
    PodSnapshot,
    VolumeClaimSnapshot,
    VolumeSnapshot,
)


@runtime_checkable
class ClusterStateProvider(Protocol):
    """Read-only access to the objects the diagnostic reports need."""

    async def get_pod(self, namespace: str, name: str) -> PodSnapshot: ...

    async def list_pods(self, namespace: str = "", node_name: str = "") -> list[PodSnapshot]: ...

    async def get_node(self, name: str) -> NodeSnapshot: ...

    async def list_nodes(self) -> list[NodeSnapshot]: ...

    async def list_pod_events(self, namespace: str, pod_name: str) -> list[EventRecord]: ...

    async def list_events(self, namespace: str) -> list[EventRecord]: ...

    async def get_pvc(self, namespace: str, name: str) -> VolumeClaimSnapshot: ...

    async def get_pv(self, name: str) -> VolumeSnapshot: ...

    async def metrics_available(self) -> bool: ...

    async def get_node_metrics(self, name: str) -> NodeMetrics: ...
