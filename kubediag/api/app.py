"""FastAPI application factory for the KubeDiag REST API."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from kubediag.analyst.coordinator import DiagnosticsCoordinator
from kubediag.api.routes import router
from kubediag.api.schemas import ErrorResponse
from kubediag.errors import (
    DeadlineExceededError,
    DiagnosticsError,
    MetricsUnavailableError,
    NotFoundError,
)
from kubediag.models.config import KubeDiagConfig
from kubediag.observability.logging import get_logger

_log = get_logger("api.app")


def _error(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail).model_dump(),
    )


async def _not_found(request: Request, exc: Exception) -> JSONResponse:
    return _error(404, "RESOURCE_NOT_FOUND", str(exc))


async def _metrics_unavailable(request: Request, exc: Exception) -> JSONResponse:
    return _error(503, "METRICS_UNAVAILABLE", str(exc))


async def _deadline_exceeded(request: Request, exc: Exception) -> JSONResponse:
    return _error(504, "REQUEST_TIMEOUT", str(exc))


async def _diagnostics_error(request: Request, exc: Exception) -> JSONResponse:
    _log.error("request_failed", path=request.url.path, error=str(exc))
    return _error(500, "INTERNAL_ERROR", "An unexpected error occurred.")


async def _invalid_request(request: Request, exc: Exception) -> JSONResponse:
    if isinstance(exc, RequestValidationError):
        detail = "; ".join(str(err.get("msg", "")) for err in exc.errors())
    else:
        detail = str(exc)
    return _error(400, "INVALID_PARAMETER", detail)


def create_app(
    coordinator: DiagnosticsCoordinator,
    config: KubeDiagConfig | None = None,
) -> FastAPI:
    """Build the FastAPI app serving the diagnostic reports under ``/api/v1``.

    ``/metrics`` is mounted unless metrics are disabled in ``config``.
    """
    from kubediag import __version__

    app = FastAPI(
        title="KubeDiag",
        description="Kubernetes pod diagnostics, health scores and scheduling explanations.",
        version=__version__,
        openapi_url="/api/v1/openapi.json",
        docs_url="/api/v1/docs",
        redoc_url=None,
    )
    app.state.coordinator = coordinator
    app.state.config = config

    app.add_exception_handler(NotFoundError, _not_found)
    app.add_exception_handler(MetricsUnavailableError, _metrics_unavailable)
    app.add_exception_handler(DeadlineExceededError, _deadline_exceeded)
    app.add_exception_handler(DiagnosticsError, _diagnostics_error)
    app.add_exception_handler(RequestValidationError, _invalid_request)

    app.include_router(router, prefix="/api/v1")

    if config is None or config.api.metrics_enabled:
        app.mount("/metrics", make_asgi_app())

    return app
