"""Map scheduling failure reasons and events onto :class:`FailureCategory`.

Node reasons come from the constraint evaluator; event messages come from
the scheduler (``FailedScheduling``) and the cluster autoscaler
(``NotTriggerScaleUp``).  Results are always returned in category
declaration order so callers get deterministic output.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Sequence

from kubediag.models.scheduling import (
    FailureCategory,
    FailureCategorySummary,
    SchedulingEvent,
    UnschedulableNode,
)

_LEADING_COUNT_RE = re.compile(r"^(\d+)\s+")
_MAX_GROUP_RE = re.compile(r"(\d+)\s+max node group size reached")
_DIDNT_MATCH_RE = re.compile(r"(\d+)\s+node\(s\) didn't match")


def _ordered(categories: Iterable[FailureCategory]) -> list[FailureCategory]:
    return sorted(set(categories), key=lambda c: c.rank)


def categorize_reason(reason: str) -> set[FailureCategory]:
    """Classify one node-level reason string."""
    text = reason.lower()
    found: set[FailureCategory] = set()

    if "insufficient cpu" in text:
        found.add(FailureCategory.INSUFFICIENT_CPU)
    if "insufficient memory" in text:
        found.add(FailureCategory.INSUFFICIENT_MEMORY)
    if "insufficient storage" in text or "insufficient ephemeral-storage" in text:
        found.add(FailureCategory.INSUFFICIENT_STORAGE)
    if "node is not ready" in text or "node not ready" in text:
        found.add(FailureCategory.NODE_NOT_READY)

    # Volume reasons mention node affinity too; they must not count as pod placement affinity.
    if text.startswith("pv ") and "node affinity" in text:
        found.add(FailureCategory.VOLUME_NODE_AFFINITY_CONFLICT)
    elif text.startswith("pvc ") and "not bound" in text:
        found.add(FailureCategory.VOLUME_ATTACHMENT_ERROR)
    elif "node affinity" in text or "node selector" in text:
        found.add(FailureCategory.NODE_AFFINITY_NOT_MATCH)

    if "taint" in text or "toleration" in text:
        found.add(FailureCategory.TAINT_TOLERATION_MISMATCH)
    if "pod affinity" in text or "anti-affinity" in text:
        found.add(FailureCategory.POD_AFFINITY_CONFLICT)
    return found


def parse_failed_scheduling_message(message: str) -> Counter[FailureCategory]:
    """Parse ``"0/46 nodes are available: 1 Insufficient memory, 2 node(s) had ..."``.

    Each comma-separated clause contributes its leading node count (1 when
    absent) to the matching category.  Preemption notes are ignored.
    """
    counts: Counter[FailureCategory] = Counter()
    if "nodes are available:" not in message:
        return counts
    _, _, body = message.partition(":")
    for clause in body.split(","):
        clause = clause.strip()
        text = clause.lower()
        match_ = _LEADING_COUNT_RE.match(clause)
        count = int(match_.group(1)) if match_ else 1

        if "insufficient cpu" in text:
            counts[FailureCategory.INSUFFICIENT_CPU] += count
        elif "insufficient memory" in text:
            counts[FailureCategory.INSUFFICIENT_MEMORY] += count
        elif "insufficient storage" in text or "insufficient ephemeral-storage" in text:
            counts[FailureCategory.INSUFFICIENT_STORAGE] += count
        elif (
            "node(s) didn't match pod's node affinity/selector" in text
            or "node(s) didn't match node selector" in text
            or "node(s) didn't match pod's node affinity" in text
        ):
            counts[FailureCategory.NODE_AFFINITY_NOT_MATCH] += count
        elif "node(s) had untolerated taint" in text or "node(s) had taint" in text:
            counts[FailureCategory.TAINT_TOLERATION_MISMATCH] += count
        elif "node(s) had volume node affinity conflict" in text:
            counts[FailureCategory.VOLUME_NODE_AFFINITY_CONFLICT] += count
        elif "node(s) didn't match pod affinity" in text or "node(s) didn't match pod anti-affinity" in text:
            counts[FailureCategory.POD_AFFINITY_CONFLICT] += count
    return counts


def parse_not_trigger_scale_up_message(message: str) -> Counter[FailureCategory]:
    """Parse a cluster-autoscaler ``NotTriggerScaleUp`` message."""
    counts: Counter[FailureCategory] = Counter()
    text = message.lower()

    if "max node group size reached" in text:
        found = _MAX_GROUP_RE.search(text)
        counts[FailureCategory.MISCELLANEOUS] += int(found.group(1)) if found else 1

    if "node(s) didn't match pod's node affinity/selector" in text or "node(s) didn't match node selector" in text:
        found = _DIDNT_MATCH_RE.search(text)
        counts[FailureCategory.NODE_AFFINITY_NOT_MATCH] += int(found.group(1)) if found else 1
    return counts


def volume_categories_from_events(events: Sequence[SchedulingEvent]) -> set[FailureCategory]:
    found: set[FailureCategory] = set()
    for event in events:
        text = event.message.lower()
        if (
            "multi-attach error" in text
            or "volume is already exclusively attached" in text
            or "volume is already used by" in text
        ):
            found.add(FailureCategory.VOLUME_MULTI_ATTACH_ERROR)
        if (
            "volume node affinity conflict" in text
            or "nodeaffinity" in text
            or ("volume" in text and "node affinity" in text)
        ):
            found.add(FailureCategory.VOLUME_NODE_AFFINITY_CONFLICT)
        if (
            "failedattachvolume" in text
            or "failed to attach volume" in text
            or "unable to attach" in text
            or "attachvolume.attach failed" in text
        ):
            found.add(FailureCategory.VOLUME_ATTACHMENT_ERROR)
        if event.reason == "FailedScheduling" and "volume" in text and not found:
            found.add(FailureCategory.VOLUME_ATTACHMENT_ERROR)
    return found


def categorize_scheduling_failure(
    reasons: Sequence[str],
    events: Sequence[SchedulingEvent],
) -> list[FailureCategory]:
    """Categories for one unschedulable node, in declaration order.

    Falls back to Miscellaneous when nothing matched but there was
    something to explain.
    """
    found: set[FailureCategory] = set()
    for reason in reasons:
        found |= categorize_reason(reason)

    for event in events:
        if event.reason == "FailedScheduling":
            found |= set(parse_failed_scheduling_message(event.message))
        elif event.reason == "NotTriggerScaleUp":
            found |= set(parse_not_trigger_scale_up_message(event.message))

    found |= volume_categories_from_events(events)

    if not found and (reasons or events):
        found.add(FailureCategory.MISCELLANEOUS)
    return _ordered(found)


def aggregate_failure_categories(
    nodes: Sequence[UnschedulableNode],
    events: Sequence[SchedulingEvent],
) -> list[FailureCategorySummary]:
    """Tally categories by affected node count.

    Sorted by count descending, ties by category declaration order; each
    summary's node list is sorted by name.
    """
    affected: dict[FailureCategory, list[str]] = {}
    for node in nodes:
        for category in categorize_scheduling_failure([*node.reasons, *node.insufficient_resources], events):
            affected.setdefault(category, []).append(node.node_name)

    summaries = [
        FailureCategorySummary(
            category=category,
            count=len(node_names),
            description=category.description,
            nodes=sorted(node_names),
        )
        for category, node_names in affected.items()
    ]
    summaries.sort(key=lambda s: (-s.count, s.category.rank))
    return summaries
