"""Node status classification and unit conversions."""

from enum import Enum
from typing import Optional

NANOS_IN_CPU = 1_000_000_000
BYTES_IN_MB = 1024 * 1024


class NodeState(str, Enum):
    PROVISIONING = "provisioning"
    ACTIVE = "active"
    DRAINING = "draining"
    DOWN = "down"
    UNREACHABLE = "unreachable"


ALL_STATES = frozenset(state.value for state in NodeState)

_DOCKER_STATE_MAP = {
    "ready": NodeState.ACTIVE,
    "active": NodeState.ACTIVE,
    "drain": NodeState.DRAINING,
    "draining": NodeState.DRAINING,
    "down": NodeState.DOWN,
    "disconnected": NodeState.DOWN,
}


def map_docker_status(state: Optional[str], fallback: Optional[str] = None) -> str:
    """Normalize a swarm node state into a fleet status.

    Unknown states keep the node's prior status when it is a valid status,
    otherwise the node is considered unreachable.
    """
    normalized = (state or "").strip().lower()
    mapped = _DOCKER_STATE_MAP.get(normalized)
    if mapped is not None:
        return mapped.value
    fallback = getattr(fallback, "value", fallback)
    if fallback in ALL_STATES:
        return fallback
    return NodeState.UNREACHABLE.value


def nanos_to_cpus(nano_cpus) -> float:
    """Convert NanoCPUs to cores, rounded to 2 decimals."""
    return round(float(nano_cpus or 0) / NANOS_IN_CPU, 2)


def bytes_to_mb(memory_bytes) -> int:
    return int(round(float(memory_bytes or 0) / BYTES_IN_MB))


def utilization(used: float, total: float) -> Optional[float]:
    """Return used/total, or None when there is no capacity to compare against."""
    if not total or total <= 0:
        return None
    return float(used or 0) / float(total)
