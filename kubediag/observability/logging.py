"""Structured logging configuration using structlog.

Every line is a JSON object on stderr carrying ``service`` and, when one
is configured, ``cluster_id``, so reports from several clusters can share a
log pipeline.  Request-scoped values (report, namespace, pod) are bound by
the coordinator through :func:`bind_request`.
"""

from __future__ import annotations

import logging
import sys
from typing import cast

import structlog
from structlog.typing import EventDict, FilteringBoundLogger, Processor, WrappedLogger

# Libraries that log through the standard library at INFO on every request.
_NOISY_LOGGERS = ("kubernetes_asyncio", "urllib3", "uvicorn.error")


def _service_stamper(cluster_id: str) -> Processor:
    def stamp(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", "kubediag")
        if cluster_id:
            event_dict.setdefault("cluster_id", cluster_id)
        return event_dict

    return stamp


def setup_logging(level: str = "info", cluster_id: str = "") -> None:
    """Configure structlog for JSON output to stderr."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            _service_stamper(cluster_id),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def get_logger(component: str) -> FilteringBoundLogger:
    """Get a logger bound with a component name."""
    return cast(FilteringBoundLogger, structlog.get_logger(component=component))


def bind_request(**values: object) -> None:
    """Bind request-scoped values (report, namespace, pod) to every log line."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)
