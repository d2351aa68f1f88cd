"""Error taxonomy shared by the provider, the coordinator and the API."""

from __future__ import annotations


class DiagnosticsError(Exception):
    """Base class for every error surfaced by a diagnostic report."""


class NotFoundError(DiagnosticsError):
    """The requested pod, node or volume object does not exist."""

    def __init__(self, kind: str, name: str, namespace: str = "") -> None:
        target = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} '{target}' not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class MetricsUnavailableError(DiagnosticsError):
    """The metrics API is not installed or not reachable."""

    def __init__(self, detail: str = "metrics server not available") -> None:
        super().__init__(detail)


class DeadlineExceededError(DiagnosticsError):
    """The per-request deadline expired before the report was complete."""

    def __init__(self, report: str, timeout_seconds: float) -> None:
        super().__init__(f"{report} did not complete within {timeout_seconds:g}s")
        self.report = report
        self.timeout_seconds = timeout_seconds


class ProviderError(DiagnosticsError):
    """Unexpected failure while reading cluster state."""

    def __init__(self, operation: str, cause: Exception) -> None:
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause
