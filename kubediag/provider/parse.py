"""Convert raw Kubernetes object dicts into engine snapshots.

Input is the camelCase JSON form of an object, as returned by the API
server or by ``ApiClient.sanitize_for_serialization``.  Every field is
optional: missing or malformed values fall back to the snapshot default.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from kubediag.models.snapshots import (
    Affinity,
    Condition,
    ConfigMapSource,
    ContainerSpec,
    ContainerState,
    ContainerStatus,
    CSISource,
    DownwardAPISource,
    EmptyDirSource,
    EphemeralSource,
    EventRecord,
    HostPathSource,
    LabelSelector,
    LabelSelectorRequirement,
    NodeAffinity,
    NodeMetrics,
    NodeSelectorRequirement,
    NodeSelectorTerm,
    NodeSnapshot,
    OwnerReference,
    PersistentVolumeClaimSource,
    PodAffinityTerm,
    PodPhase,
    PodSnapshot,
    ProjectedSource,
    RunningState,
    SecretSource,
    Taint,
    TerminatedState,
    Toleration,
    UnknownSource,
    Volume,
    VolumeClaimSnapshot,
    VolumeMount,
    VolumeSnapshot,
    VolumeSource,
    WaitingState,
)

Raw = Mapping[str, Any]

# ---------------------------------------------------------------------------
# Primitive helpers
# ---------------------------------------------------------------------------


def _map(value: Any) -> Raw:
    return value if isinstance(value, Mapping) else {}


def _list(value: Any) -> list[Any]:
    return list(value) if isinstance(value, list | tuple) else []


def _str(value: Any) -> str:
    return "" if value is None else str(value)


def _str_dict(value: Any) -> dict[str, str]:
    return {str(k): _str(v) for k, v in _map(value).items()}


def _int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return default
    return default


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp; naive values are taken as UTC."""
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def _conditions(raw: Any) -> tuple[Condition, ...]:
    return tuple(
        Condition(
            type=_str(c.get("type")),
            status=_str(c.get("status")),
            reason=_str(c.get("reason")),
            message=_str(c.get("message")),
            last_transition_time=parse_timestamp(c.get("lastTransitionTime")),
        )
        for c in map(_map, _list(raw))
    )


# ---------------------------------------------------------------------------
# Scheduling constraints
# ---------------------------------------------------------------------------


def _selector_requirements(raw: Any) -> tuple[NodeSelectorRequirement, ...]:
    return tuple(
        NodeSelectorRequirement(
            key=_str(r.get("key")),
            operator=_str(r.get("operator")),
            values=tuple(_str(v) for v in _list(r.get("values"))),
        )
        for r in map(_map, _list(raw))
    )


def parse_node_selector_term(raw: Raw) -> NodeSelectorTerm:
    return NodeSelectorTerm(
        match_expressions=_selector_requirements(raw.get("matchExpressions")),
        match_fields=_selector_requirements(raw.get("matchFields")),
    )


def _node_affinity(raw: Raw) -> NodeAffinity | None:
    if not raw:
        return None
    required_raw = raw.get("requiredDuringSchedulingIgnoredDuringExecution")
    required = None
    if isinstance(required_raw, Mapping):
        required = tuple(parse_node_selector_term(_map(t)) for t in _list(required_raw.get("nodeSelectorTerms")))
    preferred = tuple(
        parse_node_selector_term(_map(_map(p).get("preference")))
        for p in _list(raw.get("preferredDuringSchedulingIgnoredDuringExecution"))
    )
    return NodeAffinity(required=required, preferred=preferred)


def _label_selector(raw: Any) -> LabelSelector | None:
    if not isinstance(raw, Mapping):
        return None
    return LabelSelector(
        match_labels=_str_dict(raw.get("matchLabels")),
        match_expressions=tuple(
            LabelSelectorRequirement(
                key=_str(r.get("key")),
                operator=_str(r.get("operator")),
                values=tuple(_str(v) for v in _list(r.get("values"))),
            )
            for r in map(_map, _list(raw.get("matchExpressions")))
        ),
    )


def _pod_affinity_terms(raw: Raw) -> tuple[PodAffinityTerm, ...]:
    return tuple(
        PodAffinityTerm(
            label_selector=_label_selector(t.get("labelSelector")),
            namespaces=tuple(_str(n) for n in _list(t.get("namespaces"))),
            topology_key=_str(t.get("topologyKey")),
        )
        for t in map(_map, _list(raw.get("requiredDuringSchedulingIgnoredDuringExecution")))
    )


def parse_affinity(raw: Any) -> Affinity | None:
    raw = _map(raw)
    if not raw:
        return None
    return Affinity(
        node_affinity=_node_affinity(_map(raw.get("nodeAffinity"))),
        pod_affinity=_pod_affinity_terms(_map(raw.get("podAffinity"))),
        pod_anti_affinity=_pod_affinity_terms(_map(raw.get("podAntiAffinity"))),
    )


def _tolerations(raw: Any) -> tuple[Toleration, ...]:
    return tuple(
        Toleration(
            key=_str(t.get("key")),
            operator=_str(t.get("operator")),
            value=_str(t.get("value")),
            effect=_str(t.get("effect")),
        )
        for t in map(_map, _list(raw))
    )


# ---------------------------------------------------------------------------
# Containers and volumes
# ---------------------------------------------------------------------------


def parse_container_state(raw: Any) -> ContainerState | None:
    raw = _map(raw)
    if "running" in raw:
        running = _map(raw["running"])
        return RunningState(started_at=parse_timestamp(running.get("startedAt")))
    if "waiting" in raw:
        waiting = _map(raw["waiting"])
        return WaitingState(reason=_str(waiting.get("reason")), message=_str(waiting.get("message")))
    if "terminated" in raw:
        terminated = _map(raw["terminated"])
        return TerminatedState(
            exit_code=_int(terminated.get("exitCode")),
            reason=_str(terminated.get("reason")),
            message=_str(terminated.get("message")),
            started_at=parse_timestamp(terminated.get("startedAt")),
            finished_at=parse_timestamp(terminated.get("finishedAt")),
        )
    return None


def _container_statuses(raw: Any) -> tuple[ContainerStatus, ...]:
    return tuple(
        ContainerStatus(
            name=_str(s.get("name")),
            ready=bool(s.get("ready", False)),
            restart_count=_int(s.get("restartCount")),
            image=_str(s.get("image")),
            image_id=_str(s.get("imageID")),
            state=parse_container_state(s.get("state")),
            last_state=parse_container_state(s.get("lastState")),
        )
        for s in map(_map, _list(raw))
    )


def _containers(raw: Any) -> tuple[ContainerSpec, ...]:
    containers = []
    for c in map(_map, _list(raw)):
        resources = _map(c.get("resources"))
        containers.append(
            ContainerSpec(
                name=_str(c.get("name")),
                image=_str(c.get("image")),
                requests=_str_dict(resources.get("requests")),
                limits=_str_dict(resources.get("limits")),
                env=tuple(_str(_map(e).get("name")) for e in _list(c.get("env"))),
                mounts=tuple(
                    VolumeMount(
                        name=_str(m.get("name")),
                        mount_path=_str(m.get("mountPath")),
                        read_only=bool(m.get("readOnly", False)),
                        sub_path=_str(m.get("subPath")),
                    )
                    for m in map(_map, _list(c.get("volumeMounts")))
                ),
            )
        )
    return tuple(containers)


def parse_volume_source(raw: Raw) -> VolumeSource:
    """Classify a volume by the first recognised source key."""
    if "emptyDir" in raw:
        return EmptyDirSource(medium=_str(_map(raw["emptyDir"]).get("medium")))
    if "hostPath" in raw:
        return HostPathSource(path=_str(_map(raw["hostPath"]).get("path")))
    if "secret" in raw:
        return SecretSource(secret_name=_str(_map(raw["secret"]).get("secretName")))
    if "configMap" in raw:
        return ConfigMapSource(name=_str(_map(raw["configMap"]).get("name")))
    if "persistentVolumeClaim" in raw:
        claim = _map(raw["persistentVolumeClaim"])
        return PersistentVolumeClaimSource(
            claim_name=_str(claim.get("claimName")),
            read_only=bool(claim.get("readOnly", False)),
        )
    if "downwardAPI" in raw:
        return DownwardAPISource()
    if "projected" in raw:
        return ProjectedSource()
    if "csi" in raw:
        return CSISource(driver=_str(_map(raw["csi"]).get("driver")))
    if "ephemeral" in raw:
        return EphemeralSource()
    return UnknownSource()


def _volumes(raw: Any) -> tuple[Volume, ...]:
    return tuple(Volume(name=_str(v.get("name")), source=parse_volume_source(v)) for v in map(_map, _list(raw)))


# ---------------------------------------------------------------------------
# Top-level objects
# ---------------------------------------------------------------------------


def _phase(value: Any) -> PodPhase:
    try:
        return PodPhase(_str(value))
    except ValueError:
        return PodPhase.UNKNOWN


def parse_pod(raw: Raw) -> PodSnapshot:
    metadata = _map(raw.get("metadata"))
    spec = _map(raw.get("spec"))
    status = _map(raw.get("status"))
    priority = spec.get("priority")

    return PodSnapshot(
        namespace=_str(metadata.get("namespace")),
        name=_str(metadata.get("name")),
        phase=_phase(status.get("phase")),
        labels=_str_dict(metadata.get("labels")),
        annotations=_str_dict(metadata.get("annotations")),
        created_at=parse_timestamp(metadata.get("creationTimestamp")),
        reason=_str(status.get("reason")),
        message=_str(status.get("message")),
        node_name=_str(spec.get("nodeName")),
        scheduler_name=_str(spec.get("schedulerName")),
        priority=priority if isinstance(priority, int) and not isinstance(priority, bool) else None,
        priority_class_name=_str(spec.get("priorityClassName")),
        qos_class=_str(status.get("qosClass")),
        host_ip=_str(status.get("hostIP")),
        pod_ip=_str(status.get("podIP")),
        pod_ips=tuple(_str(_map(ip).get("ip")) for ip in _list(status.get("podIPs"))),
        nominated_node_name=_str(status.get("nominatedNodeName")),
        start_time=parse_timestamp(status.get("startTime")),
        node_selector=_str_dict(spec.get("nodeSelector")),
        affinity=parse_affinity(spec.get("affinity")),
        tolerations=_tolerations(spec.get("tolerations")),
        containers=_containers(spec.get("containers")),
        init_containers=_containers(spec.get("initContainers")),
        volumes=_volumes(spec.get("volumes")),
        conditions=_conditions(status.get("conditions")),
        container_statuses=_container_statuses(status.get("containerStatuses")),
        init_container_statuses=_container_statuses(status.get("initContainerStatuses")),
        owner_references=tuple(
            OwnerReference(kind=_str(o.get("kind")), name=_str(o.get("name")))
            for o in map(_map, _list(metadata.get("ownerReferences")))
        ),
    )


def parse_node(raw: Raw) -> NodeSnapshot:
    metadata = _map(raw.get("metadata"))
    spec = _map(raw.get("spec"))
    status = _map(raw.get("status"))
    return NodeSnapshot(
        name=_str(metadata.get("name")),
        labels=_str_dict(metadata.get("labels")),
        taints=tuple(
            Taint(key=_str(t.get("key")), value=_str(t.get("value")), effect=_str(t.get("effect")))
            for t in map(_map, _list(spec.get("taints")))
        ),
        capacity=_str_dict(status.get("capacity")),
        allocatable=_str_dict(status.get("allocatable")),
        conditions=_conditions(status.get("conditions")),
        unschedulable=bool(spec.get("unschedulable", False)),
    )


def parse_event(raw: Raw) -> EventRecord:
    """Build an EventRecord; ``lastTimestamp`` falls back to ``eventTime``."""
    involved = _map(raw.get("involvedObject"))
    source = _map(raw.get("source"))
    first = parse_timestamp(raw.get("firstTimestamp"))
    last = parse_timestamp(raw.get("lastTimestamp")) or parse_timestamp(raw.get("eventTime")) or first
    return EventRecord(
        type=_str(raw.get("type")) or "Normal",
        reason=_str(raw.get("reason")),
        message=_str(raw.get("message")),
        count=_int(raw.get("count"), default=1) or 1,
        first_timestamp=first or last,
        last_timestamp=last,
        involved_kind=_str(involved.get("kind")),
        involved_namespace=_str(involved.get("namespace")),
        involved_name=_str(involved.get("name")),
        source_component=_str(source.get("component")),
        source_host=_str(source.get("host")),
    )


def parse_pvc(raw: Raw) -> VolumeClaimSnapshot:
    metadata = _map(raw.get("metadata"))
    spec = _map(raw.get("spec"))
    return VolumeClaimSnapshot(
        namespace=_str(metadata.get("namespace")),
        name=_str(metadata.get("name")),
        phase=_str(_map(raw.get("status")).get("phase")),
        volume_name=_str(spec.get("volumeName")),
        access_modes=tuple(_str(m) for m in _list(spec.get("accessModes"))),
    )


def parse_pv(raw: Raw) -> VolumeSnapshot:
    metadata = _map(raw.get("metadata"))
    node_affinity = _map(_map(raw.get("spec")).get("nodeAffinity"))
    required = node_affinity.get("required")
    terms = None
    if isinstance(required, Mapping):
        terms = tuple(parse_node_selector_term(_map(t)) for t in _list(required.get("nodeSelectorTerms")))
    return VolumeSnapshot(name=_str(metadata.get("name")), required_node_terms=terms)


def parse_node_metrics(raw: Raw) -> NodeMetrics:
    """Parse a ``metrics.k8s.io/v1beta1`` NodeMetrics object."""
    usage = _map(raw.get("usage"))
    return NodeMetrics(
        name=_str(_map(raw.get("metadata")).get("name")),
        cpu_usage=_str(usage.get("cpu")) or "0",
        memory_usage=_str(usage.get("memory")) or "0",
        timestamp=parse_timestamp(raw.get("timestamp")),
    )
