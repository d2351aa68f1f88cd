"""kubernetes_asyncio-backed cluster state provider.

Typed API objects are flattened to their camelCase JSON form with
``ApiClient.sanitize_for_serialization`` and parsed by
:mod:`kubediag.provider.parse`, so the engine never sees client models.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import aiohttp
from kubernetes_asyncio import client as k8s_client
from kubernetes_asyncio.client.exceptions import ApiException

from kubediag.errors import MetricsUnavailableError, NotFoundError, ProviderError
from kubediag.models.snapshots import (
    EventRecord,
    NodeMetrics,
    NodeSnapshot,
    PodSnapshot,
    VolumeClaimSnapshot,
    VolumeSnapshot,
)
from kubediag.observability.logging import get_logger
from kubediag.observability.metrics import provider_errors_total
from kubediag.provider.parse import (
    parse_event,
    parse_node,
    parse_node_metrics,
    parse_pod,
    parse_pv,
    parse_pvc,
)

_log = get_logger("kubernetes_provider")

_METRICS_GROUP = "metrics.k8s.io"
_METRICS_VERSION = "v1beta1"

T = TypeVar("T")


class KubernetesProvider:
    """Reads live cluster state through the Kubernetes API.

    Args:
        api_client: A configured ``kubernetes_asyncio`` ApiClient.
        timeout_seconds: Per-call request timeout passed to the client.
    """

    def __init__(self, api_client: Any, timeout_seconds: float = 30.0) -> None:
        self._api_client = api_client
        self._core = k8s_client.CoreV1Api(api_client)
        self._custom = k8s_client.CustomObjectsApi(api_client)
        self._timeout = timeout_seconds

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _raw(self, obj: Any) -> dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        data = self._api_client.sanitize_for_serialization(obj)
        return data if isinstance(data, dict) else {}

    def _items(self, result: Any) -> list[dict[str, Any]]:
        return [self._raw(item) for item in (getattr(result, "items", None) or [])]

    async def _call(
        self,
        operation: str,
        request: Callable[[], Awaitable[T]],
        *,
        kind: str = "",
        name: str = "",
        namespace: str = "",
    ) -> T:
        """Run one API request, translating failures into the error taxonomy."""
        try:
            return await request()
        except ApiException as exc:
            if exc.status == 404 and kind:
                raise NotFoundError(kind, name, namespace) from exc
            provider_errors_total.labels(operation=operation).inc()
            _log.error("provider_error", operation=operation, status=exc.status, reason=exc.reason)
            raise ProviderError(operation, exc) from exc
        except (aiohttp.ClientError, OSError, TimeoutError) as exc:
            provider_errors_total.labels(operation=operation).inc()
            _log.error("provider_error", operation=operation, error=str(exc))
            raise ProviderError(operation, exc) from exc

    # ------------------------------------------------------------------
    # Pods and nodes
    # ------------------------------------------------------------------

    async def get_pod(self, namespace: str, name: str) -> PodSnapshot:
        pod = await self._call(
            "get_pod",
            lambda: self._core.read_namespaced_pod(name, namespace, _request_timeout=self._timeout),
            kind="Pod",
            name=name,
            namespace=namespace,
        )
        return parse_pod(self._raw(pod))

    async def list_pods(self, namespace: str = "", node_name: str = "") -> list[PodSnapshot]:
        """List pods in ``namespace`` (all namespaces when empty), optionally on one node."""
        kwargs: dict[str, Any] = {"_request_timeout": self._timeout}
        if node_name:
            kwargs["field_selector"] = f"spec.nodeName={node_name}"

        if namespace:
            result = await self._call(
                "list_pods",
                lambda: self._core.list_namespaced_pod(namespace, **kwargs),
                kind="Namespace",
                name=namespace,
            )
        else:
            result = await self._call("list_pods", lambda: self._core.list_pod_for_all_namespaces(**kwargs))
        return [parse_pod(item) for item in self._items(result)]

    async def get_node(self, name: str) -> NodeSnapshot:
        node = await self._call(
            "get_node",
            lambda: self._core.read_node(name, _request_timeout=self._timeout),
            kind="Node",
            name=name,
        )
        return parse_node(self._raw(node))

    async def list_nodes(self) -> list[NodeSnapshot]:
        result = await self._call("list_nodes", lambda: self._core.list_node(_request_timeout=self._timeout))
        return [parse_node(item) for item in self._items(result)]

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def list_pod_events(self, namespace: str, pod_name: str) -> list[EventRecord]:
        selector = f"involvedObject.kind=Pod,involvedObject.name={pod_name},involvedObject.namespace={namespace}"
        result = await self._call(
            "list_pod_events",
            lambda: self._core.list_namespaced_event(
                namespace, field_selector=selector, _request_timeout=self._timeout
            ),
        )
        return [parse_event(item) for item in self._items(result)]

    async def list_events(self, namespace: str) -> list[EventRecord]:
        result = await self._call(
            "list_events",
            lambda: self._core.list_namespaced_event(namespace, _request_timeout=self._timeout),
        )
        return [parse_event(item) for item in self._items(result)]

    # ------------------------------------------------------------------
    # Volumes
    # ------------------------------------------------------------------

    async def get_pvc(self, namespace: str, name: str) -> VolumeClaimSnapshot:
        pvc = await self._call(
            "get_pvc",
            lambda: self._core.read_namespaced_persistent_volume_claim(
                name, namespace, _request_timeout=self._timeout
            ),
            kind="PersistentVolumeClaim",
            name=name,
            namespace=namespace,
        )
        return parse_pvc(self._raw(pvc))

    async def get_pv(self, name: str) -> VolumeSnapshot:
        pv = await self._call(
            "get_pv",
            lambda: self._core.read_persistent_volume(name, _request_timeout=self._timeout),
            kind="PersistentVolume",
            name=name,
        )
        return parse_pv(self._raw(pv))

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    async def metrics_available(self) -> bool:
        """Probe the metrics API with a one-item list."""
        try:
            await self._custom.list_cluster_custom_object(
                _METRICS_GROUP, _METRICS_VERSION, "nodes", limit=1, _request_timeout=self._timeout
            )
        except (ApiException, aiohttp.ClientError, OSError, TimeoutError) as exc:
            _log.info("metrics_api_unavailable", error=str(exc))
            return False
        return True

    async def get_node_metrics(self, name: str) -> NodeMetrics:
        try:
            raw = await self._custom.get_cluster_custom_object(
                _METRICS_GROUP, _METRICS_VERSION, "nodes", name, _request_timeout=self._timeout
            )
        except ApiException as exc:
            if exc.status == 404:
                raise MetricsUnavailableError(f"no metrics reported for node '{name}'") from exc
            provider_errors_total.labels(operation="get_node_metrics").inc()
            _log.error("provider_error", operation="get_node_metrics", status=exc.status, reason=exc.reason)
            raise ProviderError("get_node_metrics", exc) from exc
        except (aiohttp.ClientError, OSError, TimeoutError) as exc:
            provider_errors_total.labels(operation="get_node_metrics").inc()
            _log.error("provider_error", operation="get_node_metrics", error=str(exc))
            raise ProviderError("get_node_metrics", exc) from exc
        return parse_node_metrics(self._raw(raw))
