"""Node utilisation from metrics-server usage against node capacity."""

from __future__ import annotations

from datetime import datetime

from kubediag.engine.constraints import CPU, MEMORY
from kubediag.engine.quantity import Quantity, quantity_or_zero
from kubediag.models.pod import NodeUtilization
from kubediag.models.snapshots import NodeMetrics, NodeSnapshot


def usage_percentage(usage: Quantity, capacity: Quantity) -> float:
    if capacity.is_zero:
        return 0.0
    return usage.milli / capacity.milli * 100


def node_utilization(node: NodeSnapshot, metrics: NodeMetrics, now: datetime) -> NodeUtilization:
    source = f"node/{node.name}"
    cpu_capacity = quantity_or_zero(node.capacity.get(CPU), resource=CPU, source=source)
    memory_capacity = quantity_or_zero(node.capacity.get(MEMORY), resource=MEMORY, source=source)
    cpu_usage = quantity_or_zero(metrics.cpu_usage, resource=CPU, source=source)
    memory_usage = quantity_or_zero(metrics.memory_usage, resource=MEMORY, source=source)

    return NodeUtilization(
        node_name=node.name,
        cpu_usage=str(cpu_usage),
        cpu_capacity=str(cpu_capacity),
        cpu_percentage=usage_percentage(cpu_usage, cpu_capacity),
        memory_usage=str(memory_usage),
        memory_capacity=str(memory_capacity),
        memory_percentage=usage_percentage(memory_usage, memory_capacity),
        timestamp=metrics.timestamp or now,
    )
