"""Integration tests for the FastAPI REST API.

Runs the real DiagnosticsCoordinator and engine behind TestClient, reading
cluster state from an in-memory provider, to exercise the full
request/response cycle: routing, report building, error mapping and
camelCase serialisation.
"""

from __future__ import annotations

import pytest
from conftest import NOW, InMemoryProvider
from fastapi.testclient import TestClient

from kubediag.analyst.coordinator import DiagnosticsCoordinator
from kubediag.api.app import create_app
from kubediag.models.config import KubeDiagConfig

pytestmark = pytest.mark.integration

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def client(cluster: InMemoryProvider) -> TestClient:
    config = KubeDiagConfig(cluster_id="integration")
    coordinator = DiagnosticsCoordinator(cluster, config=config.analysis, clock=lambda: NOW)
    return TestClient(create_app(coordinator, config=config), raise_server_exceptions=False)


# ---------------------------------------------------------------------------
# Health and OpenAPI
# ---------------------------------------------------------------------------


class TestHealthEndpoint:
    def test_health_reports_cluster(self, client: TestClient) -> None:
        resp = client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["cluster_id"] == "integration"


class TestOpenAPISpec:
    def test_openapi_lists_every_report(self, client: TestClient) -> None:
        resp = client.get("/api/v1/openapi.json")
        assert resp.status_code == 200
        spec = resp.json()
        assert spec["openapi"].startswith("3.")
        assert spec["info"]["title"] == "KubeDiag"
        for path in (
            "/api/v1/pods/{namespace}/{pod}/describe",
            "/api/v1/pods/{namespace}/{pod}/resources",
            "/api/v1/pods/{namespace}/{pod}/failure-events",
            "/api/v1/pods/{namespace}/{pod}/scheduling",
            "/api/v1/pods/{namespace}/{pod}/scheduling/explain",
            "/api/v1/pods/{namespace}/{pod}/health-score",
            "/api/v1/nodes/{node}/utilization",
            "/api/v1/namespace/{namespace}/error",
            "/api/v1/cluster/pod-issues",
            "/api/v1/health",
        ):
            assert path in spec["paths"]


# ---------------------------------------------------------------------------
# Pod reports
# ---------------------------------------------------------------------------


class TestPodReports:
    def test_healthy_pod_scores_100(self, client: TestClient) -> None:
        resp = client.get("/api/v1/pods/shop/web-0/health-score")
        assert resp.status_code == 200
        body = resp.json()
        assert body["overallScore"] == 100
        assert body["status"] == "Healthy"

    def test_crash_looping_pod_scores_low(self, client: TestClient) -> None:
        body = client.get("/api/v1/pods/shop/worker-5d8f9-x1/health-score").json()
        assert body["overallScore"] < 50
        assert body["components"]["containerStates"]["score"] == 20
        assert [e["reason"] for e in body["details"]["recentEvents"]] == ["BackOff", "Started"]

    def test_describe_includes_pod_events(self, client: TestClient) -> None:
        body = client.get("/api/v1/pods/shop/worker-5d8f9-x1/describe").json()
        assert [e["reason"] for e in body["events"]] == ["BackOff", "Started"]
        assert body["events"][0]["source"] == "kubelet/node-a"

    def test_failure_events(self, client: TestClient) -> None:
        body = client.get("/api/v1/pods/shop/worker-5d8f9-x1/failure-events").json()
        assert body["totalEvents"] == 2
        assert [f["event"]["reason"] for f in body["failureEvents"]] == ["BackOff"]

    def test_missing_pod_is_404(self, client: TestClient) -> None:
        resp = client.get("/api/v1/pods/shop/ghost/resources")
        assert resp.status_code == 404
        assert resp.json() == {"error": "RESOURCE_NOT_FOUND", "detail": "Pod 'shop/ghost' not found"}


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


class TestScheduling:
    def test_scheduled_pod_decision(self, client: TestClient) -> None:
        body = client.get("/api/v1/pods/shop/web-0/scheduling").json()
        assert body["status"] == "Scheduled"
        assert body["schedulingDecisions"]["selectedNode"] == "node-b"
        assert body["unschedulableNodes"] == []

    def test_pending_pod_rejected_by_every_node(self, client: TestClient) -> None:
        body = client.get("/api/v1/pods/shop/batch-1/scheduling").json()
        assert body["status"] == "Pending"
        assert [n["nodeName"] for n in body["unschedulableNodes"]] == ["node-a", "node-b"]
        assert "InsufficientCPU" in body["failureCategories"]

    def test_detailed_explanation(self, client: TestClient) -> None:
        body = client.get("/api/v1/pods/shop/batch-1/scheduling/explain").json()
        assert [n["nodeName"] for n in body["nodeAnalysis"]] == ["node-a", "node-b"]
        assert not any(n["schedulable"] for n in body["nodeAnalysis"])

    def test_same_request_same_report(self, client: TestClient) -> None:
        first = client.get("/api/v1/pods/shop/batch-1/scheduling/explain").json()
        second = client.get("/api/v1/pods/shop/batch-1/scheduling/explain").json()
        assert first == second


# ---------------------------------------------------------------------------
# Namespace, cluster and node reports
# ---------------------------------------------------------------------------


class TestWideReports:
    def test_namespace_report(self, client: TestClient) -> None:
        body = client.get("/api/v1/namespace/shop/error").json()
        assert body["totalPodsAnalyzed"] == 5
        assert body["problematicPodsCount"] == 1
        assert body["healthyPodsCount"] == 4
        assert body["problematicPods"][0]["name"] == "worker-5d8f9-x1"
        assert body["problematicPods"][0]["ownerKind"] == "Deployment"

    def test_unknown_namespace_is_empty_report(self, client: TestClient) -> None:
        resp = client.get("/api/v1/namespace/ghost/error")
        assert resp.status_code == 200
        assert resp.json()["totalPodsAnalyzed"] == 0

    def test_cluster_issues(self, client: TestClient) -> None:
        body = client.get("/api/v1/cluster/pod-issues", params={"namespace": "all"}).json()
        assert (body["totalPods"], body["healthyPods"], body["unhealthyPods"]) == (6, 4, 2)
        assert {"CrashLoopBackOff", "PendingScheduling"} <= set(body["issueCategories"])
        assert body["issueVelocity"]["trendDirection"] == "degrading"

    def test_cluster_issues_invalid_severity(self, client: TestClient) -> None:
        resp = client.get("/api/v1/cluster/pod-issues", params={"severity": "bogus"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_PARAMETER"

    def test_node_utilization(self, client: TestClient) -> None:
        body = client.get("/api/v1/nodes/node-a/utilization").json()
        assert body["cpuPercentage"] == 25.0
        assert body["memoryPercentage"] == 25.0

    def test_node_without_metrics_is_503(self, client: TestClient) -> None:
        resp = client.get("/api/v1/nodes/node-b/utilization")
        assert resp.status_code == 503
        assert resp.json()["error"] == "METRICS_UNAVAILABLE"

    def test_unknown_node_is_404(self, client: TestClient) -> None:
        resp = client.get("/api/v1/nodes/node-z/utilization")
        assert resp.status_code == 404
