"""Constraint evaluator: scheduler-style predicates for one pod against one node.

Every predicate is a pure function of its inputs.  Absent fields are
treated as "no constraint" and no predicate raises; a failing result
always carries the reasons it failed.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from kubediag.engine.quantity import Quantity, quantity_or_zero, sum_quantities
from kubediag.models.scheduling import ConstraintResult, ResourceFitDetails
from kubediag.models.snapshots import (
    LabelSelector,
    NodeSelectorRequirement,
    NodeSelectorTerm,
    NodeSnapshot,
    PodAffinityTerm,
    PodPhase,
    PodSnapshot,
    Taint,
    Toleration,
    VolumeClaimSnapshot,
    VolumeSnapshot,
)

CPU = "cpu"
MEMORY = "memory"
EPHEMERAL_STORAGE = "ephemeral-storage"

_BLOCKING_EFFECTS = frozenset({"NoSchedule", "NoExecute"})


# ---------------------------------------------------------------------------
# Node selector / node affinity
# ---------------------------------------------------------------------------


def matches_label_requirement(node: NodeSnapshot, req: NodeSelectorRequirement) -> bool:
    """Evaluate one ``matchExpressions`` entry against the node's labels.

    Gt and Lt are accepted and always satisfied.
    """
    present = req.key in node.labels
    value = node.labels.get(req.key)
    match req.operator:
        case "In":
            return present and value in req.values
        case "NotIn":
            return not present or value not in req.values
        case "Exists":
            return present
        case "DoesNotExist":
            return not present
        case "Gt" | "Lt":
            return True
        case _:
            return False


def matches_field_requirement(node: NodeSnapshot, req: NodeSelectorRequirement) -> bool:
    """Evaluate one ``matchFields`` entry; only ``metadata.name`` with In/NotIn is supported."""
    if req.key != "metadata.name":
        return False
    match req.operator:
        case "In":
            return node.name in req.values
        case "NotIn":
            return node.name not in req.values
        case _:
            return False


def matches_node_selector_term(node: NodeSnapshot, term: NodeSelectorTerm) -> bool:
    return all(matches_label_requirement(node, r) for r in term.match_expressions) and all(
        matches_field_requirement(node, r) for r in term.match_fields
    )


def matches_any_term(node: NodeSnapshot, terms: Iterable[NodeSelectorTerm]) -> bool:
    return any(matches_node_selector_term(node, term) for term in terms)


def unmatched_node_selector(pod: PodSnapshot, node: NodeSnapshot) -> dict[str, str]:
    """Return the ``nodeSelector`` entries the node's labels do not satisfy."""
    return {
        key: value
        for key, value in sorted(pod.node_selector.items())
        if key not in node.labels or node.labels[key] != value
    }


def evaluate_node_affinity(pod: PodSnapshot, node: NodeSnapshot) -> ConstraintResult:
    """Check ``nodeSelector`` and required node affinity.

    Selector keys are visited in sorted order and evaluation stops at the
    first mismatch.  Preferred terms are reported but never fail the check.
    """
    reasons: list[str] = []

    if pod.node_selector:
        for key, value in sorted(pod.node_selector.items()):
            if node.labels.get(key) != value:
                reasons.append(f"node selector {key}={value} not matched")
                return ConstraintResult(False, reasons)
        reasons.append("all node selectors matched")

    node_affinity = pod.affinity.node_affinity if pod.affinity else None
    if node_affinity is not None:
        if node_affinity.required is not None:
            if not matches_any_term(node, node_affinity.required):
                reasons.append("required node affinity not matched")
                return ConstraintResult(False, reasons)
            reasons.append("required node affinity matched")
        if node_affinity.preferred:
            reasons.append("has preferred node affinity (soft constraint)")

    return ConstraintResult(True, reasons)


def describe_failed_term(node: NodeSnapshot, term: NodeSelectorTerm) -> str:
    """Describe the requirements of ``term`` that ``node`` fails, joined with AND."""
    failures = [
        f"label {r.key} {r.operator} [{' '.join(r.values)}]"
        for r in term.match_expressions
        if not matches_label_requirement(node, r)
    ]
    failures.extend(
        f"field {r.key} {r.operator} [{' '.join(r.values)}]"
        for r in term.match_fields
        if not matches_field_requirement(node, r)
    )
    return " AND ".join(failures)


# ---------------------------------------------------------------------------
# Taints and tolerations
# ---------------------------------------------------------------------------


def toleration_matches_taint(toleration: Toleration, taint: Taint) -> bool:
    """Empty toleration key or effect acts as a wildcard."""
    if toleration.key and toleration.key != taint.key:
        return False
    if toleration.effect and toleration.effect != taint.effect:
        return False
    match toleration.operator:
        case "Exists":
            return True
        case "Equal" | "":
            return toleration.value == taint.value
        case _:
            return False


@dataclass(frozen=True)
class TaintEvaluation:
    result: ConstraintResult
    untolerated: list[Taint] = field(default_factory=list)
    tolerated: list[str] = field(default_factory=list)


def evaluate_taints(pod: PodSnapshot, node: NodeSnapshot) -> TaintEvaluation:
    """Only untolerated NoSchedule/NoExecute taints make the node unschedulable."""
    untolerated: list[Taint] = []
    tolerated: list[str] = []
    for taint in node.taints:
        if any(toleration_matches_taint(t, taint) for t in pod.tolerations):
            tolerated.append(str(taint))
        elif taint.effect in _BLOCKING_EFFECTS:
            untolerated.append(taint)

    reasons = [f"untolerated taint {t}" for t in untolerated]
    return TaintEvaluation(ConstraintResult(not untolerated, reasons), untolerated, tolerated)


def describe_toleration(toleration: Toleration) -> str:
    text = f"key={toleration.key}"
    if toleration.value:
        text += f",value={toleration.value}"
    if toleration.effect:
        text += f",effect={toleration.effect}"
    if toleration.operator:
        text += f",operator={toleration.operator}"
    return text


# ---------------------------------------------------------------------------
# Resource fit
# ---------------------------------------------------------------------------


def container_requests(pod: PodSnapshot, resource: str) -> Quantity:
    """Sum one resource's requests over the pod's regular containers."""
    return sum_quantities(
        (c.requests[resource] for c in pod.containers if resource in c.requests),
        resource=resource,
        source=pod.key,
    )


def allocated_on_node(node_pods: Iterable[PodSnapshot], resource: str) -> Quantity:
    """Sum requests of the non-terminated pods already placed on a node."""
    values: list[str] = []
    for other in node_pods:
        if other.phase in (PodPhase.SUCCEEDED, PodPhase.FAILED):
            continue
        values.extend(c.requests[resource] for c in other.containers if resource in c.requests)
    return sum_quantities(values, resource=resource, source="node-allocated")


@dataclass(frozen=True)
class ResourceFit:
    result: ConstraintResult
    details: ResourceFitDetails


def evaluate_resource_fit(pod: PodSnapshot, node: NodeSnapshot) -> ResourceFit:
    """Compare summed CPU and memory requests against node allocatable."""
    insufficient: list[str] = []
    requests: dict[str, str] = {}
    for resource, label in ((CPU, "CPU"), (MEMORY, "memory")):
        requested = container_requests(pod, resource)
        allocatable = quantity_or_zero(node.allocatable.get(resource), resource=resource, source=node.name)
        requests[resource] = str(requested)
        if requested.compare(allocatable) > 0:
            insufficient.append(f"insufficient {label} (requested: {requested}, allocatable: {allocatable})")

    details = ResourceFitDetails(
        fits=not insufficient,
        pod_requests=requests,
        node_capacity=dict(node.capacity),
        node_allocatable=dict(node.allocatable),
    )
    return ResourceFit(ConstraintResult(not insufficient, insufficient), details)


# ---------------------------------------------------------------------------
# Pod affinity / anti-affinity
# ---------------------------------------------------------------------------


def label_selector_matches(selector: LabelSelector, labels: Mapping[str, str]) -> bool:
    for key, value in selector.match_labels.items():
        if labels.get(key) != value:
            return False
    for req in selector.match_expressions:
        present = req.key in labels
        match req.operator:
            case "In":
                ok = present and labels[req.key] in req.values
            case "NotIn":
                ok = not present or labels[req.key] not in req.values
            case "Exists":
                ok = present
            case "DoesNotExist":
                ok = not present
            case _:
                ok = False
        if not ok:
            return False
    return True


def pod_matches_term(candidate: PodSnapshot, term: PodAffinityTerm, owner_namespace: str) -> bool:
    """Whether ``candidate`` is selected by ``term``.

    An empty namespace list scopes the term to ``owner_namespace``; a term
    without a label selector selects nothing.
    """
    namespaces = term.namespaces or (owner_namespace,)
    if candidate.namespace not in namespaces:
        return False
    if term.label_selector is None:
        return False
    return label_selector_matches(term.label_selector, candidate.labels)


def _others(pod: PodSnapshot, node_pods: Iterable[PodSnapshot]) -> list[PodSnapshot]:
    return [p for p in node_pods if not (p.namespace == pod.namespace and p.name == pod.name)]


def anti_affinity_conflicts(pod: PodSnapshot, node_pods: Iterable[PodSnapshot]) -> list[str]:
    """Return ``ns/name`` of every pod on the node selected by a required anti-affinity term."""
    if pod.affinity is None or not pod.affinity.pod_anti_affinity:
        return []
    others = _others(pod, node_pods)
    return [
        other.key
        for term in pod.affinity.pod_anti_affinity
        for other in others
        if pod_matches_term(other, term, pod.namespace)
    ]


def evaluate_pod_anti_affinity(pod: PodSnapshot, node_pods: Iterable[PodSnapshot]) -> ConstraintResult:
    conflicts = anti_affinity_conflicts(pod, node_pods)
    return ConstraintResult(not conflicts, [f"anti-affinity conflict with pod {key}" for key in conflicts])


def unmet_pod_affinity_terms(pod: PodSnapshot, node_pods: Iterable[PodSnapshot]) -> int:
    """Count required pod affinity terms with no matching pod on the node."""
    if pod.affinity is None or not pod.affinity.pod_affinity:
        return 0
    others = _others(pod, node_pods)
    return sum(
        1 for term in pod.affinity.pod_affinity if not any(pod_matches_term(o, term, pod.namespace) for o in others)
    )


# ---------------------------------------------------------------------------
# Volume binding
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VolumeCheck:
    """Volume binding outcome.  ``notes`` are informational and never fail the check."""

    result: ConstraintResult
    notes: list[str] = field(default_factory=list)


def evaluate_volume_binding(
    pod: PodSnapshot,
    node: NodeSnapshot,
    claims: Mapping[str, VolumeClaimSnapshot],
    volumes: Mapping[str, VolumeSnapshot],
) -> VolumeCheck:
    """Check that each claim-backed volume is bound and reachable from ``node``.

    ``claims`` and ``volumes`` hold the objects that could be read; a claim
    or volume missing from them is skipped.
    """
    issues: list[str] = []
    notes: list[str] = []
    for claim_name in pod.claim_names():
        claim = claims.get(claim_name)
        if claim is None:
            continue
        if claim.phase != "Bound":
            issues.append(f"PVC {claim.name} is not bound (status: {claim.phase})")
            continue
        if not claim.volume_name:
            continue
        volume = volumes.get(claim.volume_name)
        if volume is None:
            continue
        if volume.required_node_terms is not None and not matches_any_term(node, volume.required_node_terms):
            issues.append(f"PV {volume.name} has node affinity that doesn't match node {node.name}")
        if "ReadWriteOnce" in claim.access_modes:
            notes.append(f"PVC {claim.name} has ReadWriteOnce access mode (potential multi-attach issue)")
    return VolumeCheck(ConstraintResult(not issues, issues), notes)


def has_claim_volumes(pod: PodSnapshot) -> bool:
    return bool(pod.claim_names())


def pods_on_node(pods: Sequence[PodSnapshot], node_name: str) -> list[PodSnapshot]:
    return [p for p in pods if p.node_name == node_name]
