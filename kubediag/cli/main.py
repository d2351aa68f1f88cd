"""KubeDiag command-line interface.

Commands:
    kubediag health-score <namespace> <pod>        Pod health score breakdown.
    kubediag scheduling <namespace> <pod>          Why a pod was (not) placed.
    kubediag namespace-errors <namespace>          Problematic pods in a namespace.
    kubediag cluster-issues [-n NS] [--severity]   Cluster-wide pod issues.
    kubediag version                               Print version and exit.

All commands call the REST API at http://localhost:8080 (configurable via
``--api-url``).  Every report command accepts ``--json`` for the raw body.
"""

from __future__ import annotations

import json
from typing import Any

import click
import httpx

from kubediag import __version__

_DEFAULT_API_URL = "http://localhost:8080"

# ---------------------------------------------------------------------------
# Colour helpers
# ---------------------------------------------------------------------------

_SEVERITY_COLORS: dict[str, str] = {
    "info": "green",
    "warning": "yellow",
    "critical": "bright_red",
}

_HEALTH_COLORS: dict[str, str] = {
    "Healthy": "green",
    "Excellent": "green",
    "Good": "green",
    "Warning": "yellow",
    "Fair": "yellow",
    "Degraded": "red",
    "Poor": "red",
    "Critical": "bright_red",
}


def _styled_severity(severity: str) -> str:
    color = _SEVERITY_COLORS.get(severity.lower(), "white")
    return click.style(severity.upper(), fg=color, bold=True)


def _styled_health(status: str) -> str:
    return click.style(status, fg=_HEALTH_COLORS.get(status, "white"), bold=True)


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def _get(api_url: str, path: str, params: dict[str, str] | None = None) -> dict[str, Any]:
    """Perform a GET request and return the parsed JSON body.

    Raises click.ClickException on connection errors or non-2xx responses.
    """
    url = api_url.rstrip("/") + path
    try:
        with httpx.Client(timeout=30.0) as client:
            response = client.get(url, params=params or {})
        response.raise_for_status()
        return response.json()  # type: ignore[no-any-return]
    except httpx.ConnectError as err:
        raise click.ClickException(f"Cannot connect to KubeDiag API at {api_url}. Is the server running?") from err
    except httpx.HTTPStatusError as exc:
        raise click.ClickException(_error_message(exc.response)) from exc


def _error_message(response: httpx.Response) -> str:
    """Render an error envelope as ``CODE: detail``."""
    try:
        data: dict[str, object] = response.json()
    except ValueError:
        return f"HTTP {response.status_code}: {response.text[:200]}"
    return f"{data.get('error', 'ERROR')}: {data.get('detail', 'Unknown error')}"


def _echo_json(data: dict[str, Any]) -> None:
    click.echo(json.dumps(data, indent=2))


_JSON_OPTION = click.option(
    "--json",
    "output_json",
    is_flag=True,
    default=False,
    help="Print raw JSON response.",
)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--api-url",
    default=_DEFAULT_API_URL,
    envvar="KUBEDIAG_API_URL",
    show_default=True,
    help="KubeDiag REST API base URL.",
)
@click.pass_context
def cli(ctx: click.Context, api_url: str) -> None:
    """KubeDiag: Kubernetes pod diagnostics CLI."""
    ctx.ensure_object(dict)
    ctx.obj["api_url"] = api_url


@cli.command("version")
def cmd_version() -> None:
    """Print the KubeDiag version and exit."""
    click.echo(f"kubediag {__version__}")


# ---------------------------------------------------------------------------
# kubediag health-score
# ---------------------------------------------------------------------------


@cli.command("health-score")
@click.argument("namespace")
@click.argument("pod")
@_JSON_OPTION
@click.pass_context
def cmd_health_score(ctx: click.Context, namespace: str, pod: str, output_json: bool) -> None:
    """Show the 0-100 health score of POD in NAMESPACE."""
    data = _get(ctx.obj["api_url"], f"/api/v1/pods/{namespace}/{pod}/health-score")
    if output_json:
        _echo_json(data)
        return

    click.echo(
        click.style(f"{namespace}/{pod}", bold=True)
        + f"  score {data.get('overallScore', 0)}/100  "
        + _styled_health(str(data.get("status", "?")))
    )
    click.echo("")
    components: dict[str, dict[str, Any]] = data.get("components", {})
    for key, component in components.items():
        click.echo(
            f"  {key:<16} {component.get('score', 0):>3}  "
            f"{_styled_health(str(component.get('status', '?')))}  {component.get('description', '')}"
        )
    details: dict[str, Any] = data.get("details", {})
    if details:
        click.echo("")
        click.echo(f"  Restarts: {details.get('restartCount', 0)} ({details.get('restartFrequency', '')})")
        click.echo(f"  Uptime:   {details.get('uptime', '')}")


# ---------------------------------------------------------------------------
# kubediag scheduling
# ---------------------------------------------------------------------------


@cli.command("scheduling")
@click.argument("namespace")
@click.argument("pod")
@_JSON_OPTION
@click.pass_context
def cmd_scheduling(ctx: click.Context, namespace: str, pod: str, output_json: bool) -> None:
    """Explain why POD in NAMESPACE was or was not scheduled."""
    data = _get(ctx.obj["api_url"], f"/api/v1/pods/{namespace}/{pod}/scheduling")
    if output_json:
        _echo_json(data)
        return

    status = str(data.get("status", "?"))
    color = "green" if status == "Scheduled" else "yellow"
    click.echo(click.style(f"{namespace}/{pod}", bold=True) + "  " + click.style(status, fg=color, bold=True))

    decisions: dict[str, Any] | None = data.get("schedulingDecisions")
    if decisions:
        click.echo(f"  Node: {decisions.get('selectedNode', '')}")
        for reason in decisions.get("reasons", []):
            click.echo(f"    - {reason}")

    summaries: list[dict[str, Any]] = data.get("failureSummary", [])
    if summaries:
        click.echo("")
        click.echo(click.style("Failure categories:", bold=True))
        for summary in summaries:
            click.echo(
                f"  {click.style(str(summary.get('category', '?')), fg='red')} "
                f"({summary.get('count', 0)} nodes): {summary.get('description', '')}"
            )

    nodes: list[dict[str, Any]] = data.get("unschedulableNodes", [])
    if nodes:
        click.echo("")
        click.echo(click.style(f"Unschedulable nodes ({len(nodes)}):", bold=True))
        for node in nodes:
            click.echo(f"  {node.get('nodeName', '?')}")
            for reason in node.get("reasons", []):
                click.echo(f"    - {reason}")


# ---------------------------------------------------------------------------
# kubediag namespace-errors
# ---------------------------------------------------------------------------


@cli.command("namespace-errors")
@click.argument("namespace")
@_JSON_OPTION
@click.pass_context
def cmd_namespace_errors(ctx: click.Context, namespace: str, output_json: bool) -> None:
    """List problematic controller-owned pods in NAMESPACE."""
    data = _get(ctx.obj["api_url"], f"/api/v1/namespace/{namespace}/error")
    if output_json:
        _echo_json(data)
        return

    click.echo(
        click.style(f"Namespace {namespace}", bold=True)
        + f"  analyzed {data.get('totalPodsAnalyzed', 0)}"
        + f"  problematic {data.get('problematicPodsCount', 0)}"
        + f"  healthy {data.get('healthyPodsCount', 0)}"
    )
    pods: list[dict[str, Any]] = data.get("problematicPods", [])
    if not pods:
        click.echo(click.style("No problematic pods.", fg="green"))
        return

    click.echo("")
    for pod in pods:
        click.echo(
            f"  {click.style(str(pod.get('name', '?')), bold=True)}  "
            f"{pod.get('ownerKind', '')}/{pod.get('ownerName', '')}  "
            f"restarts={pod.get('restartCount', 0)}  age={pod.get('age', '')}"
        )
        for issue in pod.get("issues", []):
            click.echo(
                f"    [{_styled_severity(str(issue.get('severity', 'info')))}] "
                f"{issue.get('type', '?')}: {issue.get('description', '')}"
            )


# ---------------------------------------------------------------------------
# kubediag cluster-issues
# ---------------------------------------------------------------------------


@cli.command("cluster-issues")
@click.option(
    "--namespace",
    "-n",
    default=None,
    metavar="NS",
    help="Restrict to one namespace.  Omit for all namespaces.",
)
@click.option(
    "--severity",
    type=click.Choice(["critical", "warning", "info"], case_sensitive=False),
    default=None,
    help="Only summarise issues of this severity.",
)
@_JSON_OPTION
@click.pass_context
def cmd_cluster_issues(
    ctx: click.Context,
    namespace: str | None,
    severity: str | None,
    output_json: bool,
) -> None:
    """Summarise pod issues across the cluster."""
    params: dict[str, str] = {}
    if namespace:
        params["namespace"] = namespace
    if severity:
        params["severity"] = severity.lower()

    data = _get(ctx.obj["api_url"], "/api/v1/cluster/pod-issues", params=params or None)
    if output_json:
        _echo_json(data)
        return

    click.echo(
        click.style("Cluster Issues", bold=True)
        + f"  pods {data.get('totalPods', 0)}"
        + f"  healthy {data.get('healthyPods', 0)}"
        + f"  unhealthy {data.get('unhealthyPods', 0)}"
    )
    velocity: dict[str, Any] = data.get("issueVelocity", {})
    if velocity:
        click.echo(
            f"  trend {velocity.get('trendDirection', 'stable')}"
            f"  new last hour {velocity.get('newIssuesLastHour', 0)}"
        )

    summaries: list[dict[str, Any]] = data.get("topIssues", [])
    if summaries:
        click.echo("")
        click.echo(click.style("Top issues:", bold=True))
        for summary in summaries:
            click.echo(
                f"  [{_styled_severity(str(summary.get('severity', 'info')))}] "
                f"{summary.get('category', '?')} x{summary.get('count', 0)}: "
                + ", ".join(summary.get("affectedPods", []))
            )

    patterns: list[dict[str, Any]] = data.get("patterns", [])
    if patterns:
        click.echo("")
        click.echo(click.style("Recurring patterns:", bold=True))
        for pattern in patterns:
            click.echo(f"  {pattern.get('description', '')} ({pattern.get('count', 0)} pods)")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()
