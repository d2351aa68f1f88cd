"""FastAPI route handlers for the KubeDiag REST API.

All routes are registered on a single APIRouter that ``app.py`` mounts
under the ``/api/v1`` prefix.  Handlers delegate to the
:class:`~kubediag.analyst.coordinator.DiagnosticsCoordinator` stored on
``app.state``; errors it raises are mapped to the error envelope by the
exception handlers installed in ``app.py``.

Error code conventions:
    400 INVALID_PARAMETER    -- query parameter outside its allowed values
    404 RESOURCE_NOT_FOUND   -- pod or node does not exist
    500 INTERNAL_ERROR       -- unexpected failure reading cluster state
    503 METRICS_UNAVAILABLE  -- metrics API missing (node utilisation only)
    504 REQUEST_TIMEOUT      -- report did not finish within the deadline
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from kubediag.analyst.coordinator import DiagnosticsCoordinator
from kubediag.api.schemas import (
    ClusterIssuesResponse,
    ErrorResponse,
    HealthStatus,
    NamespaceErrorReportResponse,
    NodeUtilizationResponse,
    PodDescriptionResponse,
    PodFailureEventsResponse,
    PodHealthScoreResponse,
    PodResourcesResponse,
    PodSchedulingResponse,
    SchedulingExplanationResponse,
)
from kubediag.models.common import Severity
from kubediag.observability.logging import get_logger

_log = get_logger("api.routes")

router = APIRouter()

_POD_ERRORS: dict[int | str, dict[str, object]] = {
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    504: {"model": ErrorResponse},
}


def _coordinator(request: Request) -> DiagnosticsCoordinator:
    coordinator: DiagnosticsCoordinator = request.app.state.coordinator
    return coordinator


# ---------------------------------------------------------------------------
# Pod reports
# ---------------------------------------------------------------------------


@router.get(
    "/pods/{namespace}/{pod}/describe",
    response_model=PodDescriptionResponse,
    summary="Describe a pod",
    description="Pod metadata, container states, volumes and the 20 most recent events.",
    responses=_POD_ERRORS,
)
async def get_pod_description(request: Request, namespace: str, pod: str) -> PodDescriptionResponse:
    """``GET /api/v1/pods/{namespace}/{pod}/describe``"""
    report = await _coordinator(request).describe_pod(namespace, pod)
    return PodDescriptionResponse.model_validate(report)


@router.get(
    "/pods/{namespace}/{pod}/resources",
    response_model=PodResourcesResponse,
    summary="Pod resource requests and limits",
    responses=_POD_ERRORS,
)
async def get_pod_resources(request: Request, namespace: str, pod: str) -> PodResourcesResponse:
    """``GET /api/v1/pods/{namespace}/{pod}/resources``"""
    report = await _coordinator(request).pod_resources(namespace, pod)
    return PodResourcesResponse.model_validate(report)


@router.get(
    "/pods/{namespace}/{pod}/failure-events",
    response_model=PodFailureEventsResponse,
    summary="Categorised pod failure events",
    description="Failure events with possible causes, suggested actions and recurrence analysis.",
    responses=_POD_ERRORS,
)
async def get_pod_failure_events(request: Request, namespace: str, pod: str) -> PodFailureEventsResponse:
    """``GET /api/v1/pods/{namespace}/{pod}/failure-events``"""
    report = await _coordinator(request).pod_failure_events(namespace, pod)
    return PodFailureEventsResponse.model_validate(report)


@router.get(
    "/pods/{namespace}/{pod}/scheduling",
    response_model=PodSchedulingResponse,
    summary="Explain pod scheduling",
    description=(
        "For a placed pod, why its node was chosen.  For a pending pod, why each "
        "node rejected it, grouped into failure categories."
    ),
    responses=_POD_ERRORS,
)
async def get_pod_scheduling(request: Request, namespace: str, pod: str) -> PodSchedulingResponse:
    """``GET /api/v1/pods/{namespace}/{pod}/scheduling``"""
    report = await _coordinator(request).explain_scheduling(namespace, pod)
    return PodSchedulingResponse.model_validate(report)


@router.get(
    "/pods/{namespace}/{pod}/scheduling/explain",
    response_model=SchedulingExplanationResponse,
    summary="Detailed per-node scheduling explanation",
    responses=_POD_ERRORS,
)
async def get_scheduling_explanation(request: Request, namespace: str, pod: str) -> SchedulingExplanationResponse:
    """``GET /api/v1/pods/{namespace}/{pod}/scheduling/explain``"""
    report = await _coordinator(request).explain_scheduling_detailed(namespace, pod)
    return SchedulingExplanationResponse.model_validate(report)


@router.get(
    "/pods/{namespace}/{pod}/health-score",
    response_model=PodHealthScoreResponse,
    summary="Pod health score",
    description="Weighted 0-100 score from restarts, container states, events, conditions and uptime.",
    responses=_POD_ERRORS,
)
async def get_pod_health_score(request: Request, namespace: str, pod: str) -> PodHealthScoreResponse:
    """``GET /api/v1/pods/{namespace}/{pod}/health-score``"""
    report = await _coordinator(request).pod_health_score(namespace, pod)
    return PodHealthScoreResponse.model_validate(report)


# ---------------------------------------------------------------------------
# Node, namespace and cluster reports
# ---------------------------------------------------------------------------


@router.get(
    "/nodes/{node}/utilization",
    response_model=NodeUtilizationResponse,
    summary="Node CPU and memory utilisation",
    responses={**_POD_ERRORS, 503: {"model": ErrorResponse}},
)
async def get_node_utilization(request: Request, node: str) -> NodeUtilizationResponse:
    """``GET /api/v1/nodes/{node}/utilization``"""
    report = await _coordinator(request).node_utilization(node)
    return NodeUtilizationResponse.model_validate(report)


@router.get(
    "/namespace/{namespace}/error",
    response_model=NamespaceErrorReportResponse,
    summary="Namespace error report",
    description="Controller-owned pods with restarts, crash loops, pull errors or scheduling problems.",
    responses={500: {"model": ErrorResponse}, 504: {"model": ErrorResponse}},
)
async def get_namespace_errors(request: Request, namespace: str) -> NamespaceErrorReportResponse:
    """``GET /api/v1/namespace/{namespace}/error``"""
    report = await _coordinator(request).namespace_errors(namespace)
    return NamespaceErrorReportResponse.model_validate(report)


@router.get(
    "/cluster/pod-issues",
    response_model=ClusterIssuesResponse,
    summary="Cluster-wide pod issues",
    description=(
        "Issue categories, per-namespace breakdown, recurring patterns and velocity.  "
        "``severity`` restricts the top issue summaries; ``namespace`` may be ``all``."
    ),
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}, 504: {"model": ErrorResponse}},
)
async def get_cluster_issues(
    request: Request,
    namespace: str = "",
    severity: str | None = None,
) -> ClusterIssuesResponse:
    """``GET /api/v1/cluster/pod-issues?namespace={ns}&severity={level}``"""
    level: Severity | None = None
    if severity:
        try:
            level = Severity(severity.lower())
        except ValueError:
            _log.info("invalid_severity", severity=severity)
            return JSONResponse(  # type: ignore[return-value]
                status_code=400,
                content=ErrorResponse(
                    error="INVALID_PARAMETER",
                    detail=f"severity must be one of {', '.join(s.value for s in Severity)}, got: {severity!r}",
                ).model_dump(),
            )
    report = await _coordinator(request).cluster_issues(namespace, level)
    return ClusterIssuesResponse.model_validate(report)


@router.get(
    "/health",
    response_model=HealthStatus,
    summary="Health check",
    description="Lightweight liveness probe.  Always returns 200 if the process is up.",
)
async def get_health(request: Request) -> HealthStatus:
    """``GET /api/v1/health``"""
    from kubediag import __version__

    config = getattr(request.app.state, "config", None)
    return HealthStatus(
        status="ok",
        version=__version__,
        cluster_id=config.cluster_id if config is not None else "",
    )
