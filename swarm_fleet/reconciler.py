"""Node reconciliation against the swarm control plane.

Matches joined nodes to swarm records, aggregates task resource usage,
classifies node status and raises alerts on transitions and thresholds.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from .alerts import ALERT_DOWN, ALERT_RESOURCE, ALERT_UNREACHABLE, AlertEmitter
from .control_plane import SwarmClient
from .database import WorkerNode, utcnow
from .errors import MatchError
from .logging import get_logger
from .services.repository import NodeRepository
from .status import NodeState, bytes_to_mb, map_docker_status, nanos_to_cpus, utilization
from .usage_cache import ResourceUsageCache, ServiceUsage

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

TRANSITION_ALERTS = {
    NodeState.DOWN.value: ALERT_DOWN,
    NodeState.UNREACHABLE.value: ALERT_UNREACHABLE,
}


@dataclass
class RetryPolicy:
    """Fixed-interval retry budget. The interval applies between attempts only."""

    attempts: int = 6
    interval: float = 5.0

    def __post_init__(self) -> None:
        self.attempts = max(int(self.attempts), 1)


@dataclass
class NodeMetrics:
    """Control-plane view of one node for one sweep."""

    status: str
    availability: Optional[str]
    hostname: Optional[str]
    address: Optional[str]
    cpu_total: float
    ram_total_mb: int
    used_cpu: float
    used_ram_mb: int
    containers: int


def _resources(info: Dict[str, Any]) -> Dict[str, Any]:
    return (info.get("Description") or {}).get("Resources") or {}


class NodeReconciler:
    """Reconciles persisted worker nodes with the swarm."""

    def __init__(
        self,
        repository: NodeRepository,
        swarm: SwarmClient,
        alerts: AlertEmitter,
        match_policy: Optional[RetryPolicy] = None,
        resource_threshold: float = 0.90,
        sleep: Sleep = asyncio.sleep,
        now: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.swarm = swarm
        self.alerts = alerts
        self.match_policy = match_policy or RetryPolicy()
        self.resource_threshold = resource_threshold
        self._sleep = sleep
        self._now = now

    async def sync_node_metadata(self, node: WorkerNode, retries: Optional[int] = None) -> WorkerNode:
        """Match ``node`` in the swarm and persist its id, capacity and active status.

        Args:
            node: Node to match (by IP prefix or exact hostname)
            retries: Attempts before giving up (defaults to the match policy)

        Raises:
            MatchError: If no swarm node matched within the retry budget
        """
        attempts = max(retries if retries is not None else self.match_policy.attempts, 1)

        for attempt in range(1, attempts + 1):
            match = await self.swarm.find_node(node.ip_address, node.name)
            if match:
                swarm_node_id, info = match
                resources = _resources(info)
                hostname = (info.get("Description") or {}).get("Hostname")

                updated = self.repository.update(
                    node.id,
                    swarm_node_id=swarm_node_id,
                    status=NodeState.ACTIVE.value,
                    capacity_cpu=nanos_to_cpus(resources.get("NanoCPUs")),
                    capacity_ram_mb=bytes_to_mb(resources.get("MemoryBytes")),
                    last_heartbeat_at=self._now(),
                    metadata={"hostname": hostname, "last_error": None},
                )
                logger.info(f"Matched node {node.name} to swarm node {swarm_node_id} on attempt {attempt}")
                return updated or node

            if attempt < attempts:
                logger.debug(f"Node {node.name} not in swarm yet (attempt {attempt}/{attempts})")
                await self._sleep(self.match_policy.interval)

        raise MatchError(
            f'Node "{node.name}" ({node.ip_address}) joined but couldn\'t be matched in the swarm. '
            "Verify networking and try again.",
            node_id=node.id,
        )

    async def collect_node_metrics(self, swarm_node_id: str, cache: ResourceUsageCache) -> NodeMetrics:
        """Read node descriptor and aggregate declared usage of its running tasks."""
        info = await self.swarm.inspect_node(swarm_node_id)
        resources = _resources(info)
        status = info.get("Status") or {}
        spec = info.get("Spec") or {}

        used_cpu = 0.0
        used_ram_mb = 0
        containers = 0
        for task in await self.swarm.list_node_tasks(swarm_node_id):
            if str(task.get("CurrentState") or "").lower().startswith("running"):
                containers += 1

            service_name = task.get("ServiceName")
            if not service_name:
                continue
            usage = await cache.get_or_load(service_name, self._load_service_usage)
            used_cpu += usage.cpu
            used_ram_mb += usage.ram_mb

        return NodeMetrics(
            status=status.get("State") or "unknown",
            availability=spec.get("Availability") or status.get("Availability"),
            hostname=(info.get("Description") or {}).get("Hostname"),
            address=status.get("Addr"),
            cpu_total=nanos_to_cpus(resources.get("NanoCPUs")),
            ram_total_mb=bytes_to_mb(resources.get("MemoryBytes")),
            used_cpu=round(used_cpu, 2),
            used_ram_mb=used_ram_mb,
            containers=containers,
        )

    async def _load_service_usage(self, service_name: str) -> ServiceUsage:
        """Declared footprint of one task of ``service_name``; limits win over reservations."""
        try:
            resources = await self.swarm.inspect_service_resources(service_name)
        except Exception as e:
            logger.warning(f"Unable to inspect service {service_name} for resource usage: {e}")
            return ServiceUsage()

        limits = resources.get("Limits") or {}
        reservations = resources.get("Reservations") or {}
        return ServiceUsage(
            cpu=nanos_to_cpus(limits.get("NanoCPUs") or reservations.get("NanoCPUs")),
            ram_mb=bytes_to_mb(limits.get("MemoryBytes") or reservations.get("MemoryBytes")),
        )

    async def evaluate_alert_conditions(
        self,
        node: WorkerNode,
        new_status: str,
        metrics: Optional[NodeMetrics] = None,
    ) -> None:
        """Alert on transitions into down/unreachable and on resource pressure.

        ``node.status`` is the previously persisted status.
        """
        transition_alert = TRANSITION_ALERTS.get(new_status)
        if transition_alert and new_status != node.status:
            await self.alerts.emit_worker_alert(
                node,
                transition_alert,
                f"Worker node {node.name} is now {new_status}",
                {"previous_status": node.status, "current_status": new_status},
            )

        if new_status != NodeState.ACTIVE.value or metrics is None:
            return

        cpu_ratio = utilization(metrics.used_cpu, metrics.cpu_total)
        ram_ratio = utilization(metrics.used_ram_mb, metrics.ram_total_mb)
        cpu_exceeded = cpu_ratio is not None and cpu_ratio >= self.resource_threshold
        ram_exceeded = ram_ratio is not None and ram_ratio >= self.resource_threshold

        if cpu_exceeded or ram_exceeded:
            await self.alerts.emit_worker_alert(
                node,
                ALERT_RESOURCE,
                f"Worker node {node.name} resources are constrained",
                {
                    "cpu_used": metrics.used_cpu,
                    "cpu_total": metrics.cpu_total,
                    "ram_used_mb": metrics.used_ram_mb,
                    "ram_total_mb": metrics.ram_total_mb,
                },
            )

    async def reconcile_node(self, node: WorkerNode, cache: ResourceUsageCache) -> NodeMetrics:
        """Refresh one matched node: metrics, status, alerts, then persist."""
        metrics = await self.collect_node_metrics(node.swarm_node_id, cache)
        new_status = map_docker_status(metrics.status, node.status)
        await self.evaluate_alert_conditions(node, new_status, metrics)

        self.repository.update(
            node.id,
            status=new_status,
            capacity_cpu=metrics.cpu_total,
            used_cpu=metrics.used_cpu,
            capacity_ram_mb=metrics.ram_total_mb,
            used_ram_mb=metrics.used_ram_mb,
            last_heartbeat_at=self._now(),
            metadata={
                "hostname": metrics.hostname,
                "address": metrics.address,
                "availability": metrics.availability,
                "containers": metrics.containers,
                "last_error": None,
            },
        )
        return metrics
