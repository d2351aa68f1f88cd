"""Application bootstrap for KubeDiag.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → K8s client → provider → coordinator → REST

Shutdown is graceful: the REST server is asked to exit, background tasks are
cancelled, then the Kubernetes client connection pool is closed.  Each
step's error is logged independently so one failure does not block the rest.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING, Any

from kubediag.config import load_config
from kubediag.models.config import KubeDiagConfig
from kubediag.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from kubediag.analyst.coordinator import DiagnosticsCoordinator
    from kubediag.provider.kubernetes import KubernetesProvider

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class KubeDiagApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    ``stop()`` is safe to call on an app that was never started or has
    already stopped.
    """

    def __init__(self) -> None:
        self.config: KubeDiagConfig | None = None

        self._api_client: Any | None = None
        self._provider: KubernetesProvider | None = None
        self._coordinator: DiagnosticsCoordinator | None = None
        self._rest_server: Any | None = None

        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: FilteringBoundLogger | None = None

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a component cannot start; ``main()``
        turns that into a non-zero exit.
        """
        self.config = load_config()

        setup_logging(self.config.log.level, cluster_id=self.config.cluster_id)
        self._log = get_logger("app")
        self._log.info("kubediag starting", version=_kubediag_version())

        await self._start_k8s_client()
        await self._start_coordinator()
        await self._start_rest()

        self._running = True
        self._log.info("kubediag started", port=self.config.api.port)

    async def _start_k8s_client(self) -> None:
        """Load in-cluster config, falling back to kubeconfig, and open an ApiClient."""
        assert self._log is not None
        self._log.debug("starting k8s client")
        try:
            import kubernetes_asyncio.config as k8s_config
            from kubernetes_asyncio import client as k8s_client

            try:
                k8s_config.load_incluster_config()  # type: ignore[no-untyped-call]
                self._log.info("k8s client configured from in-cluster service account")
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config()
                self._log.info("k8s client configured from kubeconfig")

            self._api_client = k8s_client.ApiClient()
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _start_coordinator(self) -> None:
        """Build the Kubernetes provider and the diagnostics coordinator on top of it."""
        assert self._log is not None
        assert self.config is not None
        assert self._api_client is not None
        try:
            from kubediag.analyst.coordinator import DiagnosticsCoordinator
            from kubediag.provider.kubernetes import KubernetesProvider

            self._provider = KubernetesProvider(
                self._api_client,
                timeout_seconds=float(self.config.kubernetes.timeout_seconds),
            )
            self._coordinator = DiagnosticsCoordinator(self._provider, config=self.config.analysis)
            self._log.info(
                "diagnostics coordinator started",
                request_timeout=self.config.analysis.request_timeout_seconds,
                restart_threshold=self.config.analysis.pod_restart_threshold,
            )
        except Exception as exc:
            raise _ComponentError("coordinator", exc) from exc

    async def _start_rest(self) -> None:
        """Start the uvicorn REST server as a background task."""
        assert self._log is not None
        assert self.config is not None
        assert self._coordinator is not None
        self._log.debug("starting rest api")
        try:
            import uvicorn

            from kubediag.api.app import create_app

            fastapi_app = create_app(coordinator=self._coordinator, config=self.config)
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.api.port,
                log_config=None,
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest api started", port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop the REST server, cancel background tasks, close the k8s client."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("kubediag shutting down")
        self._running = False

        if self._rest_server is not None:
            self._rest_server.should_exit = True

        pending = [task for task in self._background_tasks if not task.done()]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=_SHUTDOWN_GRACE_SECONDS)
            for task in still_running:
                log.warning("background task did not exit in time", task=task.get_name())
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        self._background_tasks.clear()

        self._rest_server = None
        self._coordinator = None
        self._provider = None
        await self._stop_k8s_client()

        log.info("kubediag stopped")

    async def _stop_k8s_client(self) -> None:
        """Close the ApiClient connection pool."""
        if self._api_client is None:
            return
        log = self._log or get_logger("app")
        api_client, self._api_client = self._api_client, None
        try:
            await api_client.close()
        except (OSError, RuntimeError) as exc:
            log.warning("k8s client close failed", error=str(exc))


def _kubediag_version() -> str:
    from kubediag import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = KubeDiagApp()
    loop = asyncio.get_running_loop()
    stopped = asyncio.Event()

    def _request_shutdown() -> None:
        stopped.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        await stopped.wait()
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical("fatal startup error", component=exc.component, error=str(exc.cause))
        raise SystemExit(1) from exc
    finally:
        await app.stop()


def run() -> None:
    """Console-script entrypoint for the server process."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
