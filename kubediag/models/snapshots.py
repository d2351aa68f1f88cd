"""Read-only snapshots of the cluster objects the diagnostic engine consumes.

Snapshots are built once per request by the cluster state provider and are
never mutated afterwards.  Resource quantities are kept as the raw strings
the API server returned; the engine parses them with
:mod:`kubediag.engine.quantity`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import ClassVar

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class PodPhase(StrEnum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


class VolumeKind(StrEnum):
    """Volume source variants, in the order a raw volume is classified."""

    EMPTY_DIR = "EmptyDir"
    HOST_PATH = "HostPath"
    SECRET = "Secret"
    CONFIG_MAP = "ConfigMap"
    PERSISTENT_VOLUME_CLAIM = "PersistentVolumeClaim"
    DOWNWARD_API = "DownwardAPI"
    PROJECTED = "Projected"
    CSI = "CSI"
    EPHEMERAL = "Ephemeral"
    UNKNOWN = "Unknown"


# ---------------------------------------------------------------------------
# Shared pieces
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Condition:
    """A pod or node condition."""

    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = None

    @property
    def is_true(self) -> bool:
        return self.status == "True"


@dataclass(frozen=True)
class OwnerReference:
    kind: str
    name: str


# ---------------------------------------------------------------------------
# Container state (tagged union)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunningState:
    started_at: datetime | None = None


@dataclass(frozen=True)
class WaitingState:
    reason: str = ""
    message: str = ""


@dataclass(frozen=True)
class TerminatedState:
    exit_code: int = 0
    reason: str = ""
    message: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None


ContainerState = RunningState | WaitingState | TerminatedState


@dataclass(frozen=True)
class ContainerStatus:
    name: str
    ready: bool = False
    restart_count: int = 0
    image: str = ""
    image_id: str = ""
    state: ContainerState | None = None
    last_state: ContainerState | None = None

    @property
    def waiting(self) -> WaitingState | None:
        return self.state if isinstance(self.state, WaitingState) else None

    @property
    def terminated(self) -> TerminatedState | None:
        return self.state if isinstance(self.state, TerminatedState) else None

    @property
    def running(self) -> RunningState | None:
        return self.state if isinstance(self.state, RunningState) else None


@dataclass(frozen=True)
class VolumeMount:
    name: str
    mount_path: str
    read_only: bool = False
    sub_path: str = ""


@dataclass(frozen=True)
class ContainerSpec:
    """Container definition.  ``requests``/``limits`` map resource name to quantity string."""

    name: str
    image: str = ""
    requests: dict[str, str] = field(default_factory=dict)
    limits: dict[str, str] = field(default_factory=dict)
    env: tuple[str, ...] = ()
    mounts: tuple[VolumeMount, ...] = ()


# ---------------------------------------------------------------------------
# Scheduling constraints
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Toleration:
    key: str = ""
    operator: str = ""
    value: str = ""
    effect: str = ""


@dataclass(frozen=True)
class Taint:
    key: str
    value: str = ""
    effect: str = ""

    def __str__(self) -> str:
        return f"{self.key}={self.value}:{self.effect}"


@dataclass(frozen=True)
class NodeSelectorRequirement:
    key: str
    operator: str
    values: tuple[str, ...] = ()


@dataclass(frozen=True)
class NodeSelectorTerm:
    match_expressions: tuple[NodeSelectorRequirement, ...] = ()
    match_fields: tuple[NodeSelectorRequirement, ...] = ()


@dataclass(frozen=True)
class NodeAffinity:
    """Node affinity.  ``required`` is ``None`` when no hard requirement is declared."""

    required: tuple[NodeSelectorTerm, ...] | None = None
    preferred: tuple[NodeSelectorTerm, ...] = ()


@dataclass(frozen=True)
class LabelSelectorRequirement:
    key: str
    operator: str
    values: tuple[str, ...] = ()


@dataclass(frozen=True)
class LabelSelector:
    match_labels: dict[str, str] = field(default_factory=dict)
    match_expressions: tuple[LabelSelectorRequirement, ...] = ()


@dataclass(frozen=True)
class PodAffinityTerm:
    label_selector: LabelSelector | None = None
    namespaces: tuple[str, ...] = ()
    topology_key: str = ""


@dataclass(frozen=True)
class Affinity:
    """Pod affinity rules.  Only hard (required) pod (anti-)affinity terms are kept."""

    node_affinity: NodeAffinity | None = None
    pod_affinity: tuple[PodAffinityTerm, ...] = ()
    pod_anti_affinity: tuple[PodAffinityTerm, ...] = ()


# ---------------------------------------------------------------------------
# Volume sources (tagged union, one variant per volume kind)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EmptyDirSource:
    kind: ClassVar[VolumeKind] = VolumeKind.EMPTY_DIR
    medium: str = ""


@dataclass(frozen=True)
class HostPathSource:
    kind: ClassVar[VolumeKind] = VolumeKind.HOST_PATH
    path: str = ""


@dataclass(frozen=True)
class SecretSource:
    kind: ClassVar[VolumeKind] = VolumeKind.SECRET
    secret_name: str = ""


@dataclass(frozen=True)
class ConfigMapSource:
    kind: ClassVar[VolumeKind] = VolumeKind.CONFIG_MAP
    name: str = ""


@dataclass(frozen=True)
class PersistentVolumeClaimSource:
    kind: ClassVar[VolumeKind] = VolumeKind.PERSISTENT_VOLUME_CLAIM
    claim_name: str = ""
    read_only: bool = False


@dataclass(frozen=True)
class DownwardAPISource:
    kind: ClassVar[VolumeKind] = VolumeKind.DOWNWARD_API


@dataclass(frozen=True)
class ProjectedSource:
    kind: ClassVar[VolumeKind] = VolumeKind.PROJECTED


@dataclass(frozen=True)
class CSISource:
    kind: ClassVar[VolumeKind] = VolumeKind.CSI
    driver: str = ""


@dataclass(frozen=True)
class EphemeralSource:
    kind: ClassVar[VolumeKind] = VolumeKind.EPHEMERAL


@dataclass(frozen=True)
class UnknownSource:
    kind: ClassVar[VolumeKind] = VolumeKind.UNKNOWN


VolumeSource = (
    EmptyDirSource
    | HostPathSource
    | SecretSource
    | ConfigMapSource
    | PersistentVolumeClaimSource
    | DownwardAPISource
    | ProjectedSource
    | CSISource
    | EphemeralSource
    | UnknownSource
)


@dataclass(frozen=True)
class Volume:
    name: str
    source: VolumeSource = field(default_factory=UnknownSource)


# ---------------------------------------------------------------------------
# Top-level snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PodSnapshot:
    """Everything the engine needs to know about one pod."""

    namespace: str
    name: str
    phase: PodPhase = PodPhase.UNKNOWN
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    created_at: datetime | None = None
    reason: str = ""
    message: str = ""
    node_name: str = ""
    scheduler_name: str = ""
    priority: int | None = None
    priority_class_name: str = ""
    qos_class: str = ""
    host_ip: str = ""
    pod_ip: str = ""
    pod_ips: tuple[str, ...] = ()
    nominated_node_name: str = ""
    start_time: datetime | None = None
    node_selector: dict[str, str] = field(default_factory=dict)
    affinity: Affinity | None = None
    tolerations: tuple[Toleration, ...] = ()
    containers: tuple[ContainerSpec, ...] = ()
    init_containers: tuple[ContainerSpec, ...] = ()
    volumes: tuple[Volume, ...] = ()
    conditions: tuple[Condition, ...] = ()
    container_statuses: tuple[ContainerStatus, ...] = ()
    init_container_statuses: tuple[ContainerStatus, ...] = ()
    owner_references: tuple[OwnerReference, ...] = ()

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def condition(self, condition_type: str) -> Condition | None:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def claim_names(self) -> list[str]:
        """Names of the PersistentVolumeClaims mounted by this pod, in spec order."""
        return [v.source.claim_name for v in self.volumes if isinstance(v.source, PersistentVolumeClaimSource)]


@dataclass(frozen=True)
class NodeSnapshot:
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    taints: tuple[Taint, ...] = ()
    capacity: dict[str, str] = field(default_factory=dict)
    allocatable: dict[str, str] = field(default_factory=dict)
    conditions: tuple[Condition, ...] = ()
    unschedulable: bool = False

    @property
    def is_ready(self) -> bool:
        return any(c.type == "Ready" and c.is_true for c in self.conditions)


@dataclass(frozen=True)
class EventRecord:
    """A core/v1 Event about some involved object."""

    type: str
    reason: str
    message: str = ""
    count: int = 1
    first_timestamp: datetime | None = None
    last_timestamp: datetime | None = None
    involved_kind: str = ""
    involved_namespace: str = ""
    involved_name: str = ""
    source_component: str = ""
    source_host: str = ""


@dataclass(frozen=True)
class VolumeClaimSnapshot:
    namespace: str
    name: str
    phase: str = ""
    volume_name: str = ""
    access_modes: tuple[str, ...] = ()


@dataclass(frozen=True)
class VolumeSnapshot:
    name: str
    required_node_terms: tuple[NodeSelectorTerm, ...] | None = None


@dataclass(frozen=True)
class NodeMetrics:
    name: str
    cpu_usage: str = "0"
    memory_usage: str = "0"
    timestamp: datetime | None = None
