"""Fleet manager facade.

Public operations for the swarm worker fleet: bootstrap the cluster,
add/provision/remove nodes, list statuses and run reconciliation sweeps.
"""

import asyncio
from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from .alerts import AdminRecipientCache, AlertCooldown, AlertEmitter
from .config import Settings, get_settings
from .control_plane import SwarmClient
from .database import WorkerNode, get_engine, get_session_local, init_db
from .errors import (
    BootstrapError,
    ConfigurationError,
    CredentialError,
    CryptoError,
    ExecutionError,
    FleetError,
    NotFoundError,
    PreconditionError,
    RemovalError,
    ValidationError,
)
from .logging import OperationLogger, get_logger
from .reconciler import NodeReconciler, RetryPolicy, Sleep
from .remote import RemoteCommandExecutor, SSHTarget, WorkerSetupScript, build_provision_commands
from .schemas import (
    NodeProvisionOptions,
    NodeStatusView,
    ResourceTriplet,
    SwarmConnectivity,
    SwarmJoinInfo,
    SweepSummary,
)
from .services import (
    ActivityLogSink,
    DatabaseActivitySink,
    LoggingActivitySink,
    NodeRepository,
    SecretStore,
    SettingsStore,
    UserDirectory,
)
from .status import NodeState, utilization
from .usage_cache import ResourceUsageCache

logger = get_logger(__name__)

WARNING_THRESHOLD = 0.9


class FleetManager:
    """Lifecycle and health management for swarm worker nodes."""

    def __init__(
        self,
        repository: NodeRepository,
        settings_store: SettingsStore,
        secrets: SecretStore,
        swarm: SwarmClient,
        executor: RemoteCommandExecutor,
        reconciler: NodeReconciler,
        setup_script: WorkerSetupScript,
        overlay_network: str = "paas-public",
        drain_grace_period: float = 5.0,
        default_ssh_user: str = "root",
        default_ssh_port: int = 22,
        sleep: Sleep = asyncio.sleep,
    ):
        self.repository = repository
        self.settings_store = settings_store
        self.secrets = secrets
        self.swarm = swarm
        self.executor = executor
        self.reconciler = reconciler
        self.setup_script = setup_script
        self.overlay_network = overlay_network
        self.drain_grace_period = drain_grace_period
        self.default_ssh_user = default_ssh_user
        self.default_ssh_port = default_ssh_port
        self._sleep = sleep

    # =========================================================================
    # Cluster bootstrap
    # =========================================================================

    async def bootstrap_cluster(self) -> SwarmJoinInfo:
        """Initialize the swarm on this manager, once.

        Returns the stored manager address and join tokens when the swarm is
        already initialized.

        Raises:
            BootstrapError: If address discovery, swarm init or token retrieval fails
        """
        config = self.settings_store.get_swarm_config()
        if config.initialized:
            return SwarmJoinInfo(
                manager_ip=config.manager_ip or "",
                worker_token=config.worker_token or "",
                manager_token=config.manager_token or "",
            )

        op = OperationLogger(logger).start("bootstrap_cluster")
        try:
            manager_ip = await self.swarm.discover_advertise_address()
            await self.swarm.init_swarm(manager_ip)
            worker_token = await self.swarm.join_token("worker")
            manager_token = await self.swarm.join_token("manager")
        except FleetError as e:
            op.failure(str(e))
            raise BootstrapError(f"Failed to initialize swarm: {e}") from e

        self.settings_store.save_swarm_config(manager_ip, worker_token, manager_token)

        try:
            await self.swarm.create_overlay_network(self.overlay_network)
        except ExecutionError as e:
            # Usually "network already exists"
            logger.info(f"Overlay network {self.overlay_network} not created: {e}")

        op.success(manager_ip=manager_ip)
        return SwarmJoinInfo(manager_ip=manager_ip, worker_token=worker_token, manager_token=manager_token)

    async def validate_swarm_connectivity(self) -> SwarmConnectivity:
        """Check that this manager's docker daemon is an active swarm member.

        Raises:
            PreconditionError: If the local swarm state is not active
            ExecutionError: If the control plane cannot be queried
        """
        try:
            info = await self.swarm.swarm_info()
        except ExecutionError as e:
            raise e.with_context("Docker Swarm connectivity check failed")

        state = str(info.get("LocalNodeState") or "")
        if state.lower() != "active":
            raise PreconditionError(
                f"Docker Swarm connectivity check failed: local node state is {state or 'unavailable'}"
            )
        return SwarmConnectivity(
            local_node_state=state,
            node_id=info.get("NodeID"),
            managers=int(info.get("Managers") or 0),
            nodes=int(info.get("Nodes") or 0),
        )

    # =========================================================================
    # Node lifecycle
    # =========================================================================

    async def add_worker_node(self, options: NodeProvisionOptions) -> str:
        """Register a worker node and optionally provision it right away.

        The record is created before provisioning starts; if provisioning
        fails the error carries ``node_id`` so the operator can retry.

        Raises:
            ValidationError: If auto-provisioning is requested without an SSH key
        """
        if options.auto_provision and not options.ssh_key:
            raise ValidationError("SSH private key is required for auto-provisioning")

        ssh_key_encrypted = self.secrets.encrypt(options.ssh_key) if options.ssh_key else None
        node = self.repository.create(
            name=options.name,
            ip_address=options.ip_address,
            ssh_port=options.ssh_port or self.default_ssh_port,
            ssh_user=options.ssh_user or self.default_ssh_user,
            ssh_key_encrypted=ssh_key_encrypted,
            status=NodeState.PROVISIONING.value,
        )

        if options.auto_provision:
            await self.provision_node(node.id)

        return node.id

    async def provision_node(self, node_id: str) -> None:
        """Install Docker on the node, join it to the swarm and match it.

        On any failure the node is marked ``down`` and the error re-raised.

        Raises:
            NotFoundError: Unknown node id
            PreconditionError: Swarm not initialized
            CredentialError: No usable SSH key stored
            ExecutionError: Remote setup failed
            MatchError: Node joined but never showed up in the swarm
        """
        node = self._get_node(node_id)
        op = OperationLogger(logger).start("provision_node", node_id=node.id, node_name=node.name)

        try:
            config = self.settings_store.get_swarm_config()
            if not config.initialized:
                raise PreconditionError("Swarm not initialized. Please initialize swarm first.", node_id=node.id)

            target = SSHTarget(
                host=node.ip_address,
                port=node.ssh_port,
                user=node.ssh_user,
                private_key=self._decrypt_ssh_key(node),
            )
            commands = build_provision_commands(
                node.id,
                self.setup_script.load(),
                config.worker_token or "",
                config.manager_ip or "",
                use_sudo=node.ssh_user != "root",
            )

            self.repository.set_status(node.id, NodeState.PROVISIONING.value)
            await self.executor.run_commands(target, commands, label=node.name)
            await self.reconciler.sync_node_metadata(node)

        except FleetError as e:
            self._mark_down(node.id)
            op.failure(str(e))
            error = e.with_context("Failed to provision node")
            error.node_id = node.id
            raise error from e
        except asyncio.CancelledError:
            self._mark_down(node.id)
            op.failure("cancelled")
            raise
        except Exception as e:
            self._mark_down(node.id)
            op.failure(str(e))
            raise ExecutionError(f"Failed to provision node: {e}", node_id=node.id) from e

        op.success()

    async def remove_node(self, node_id: str, force: bool = False) -> None:
        """Drain, remove from the swarm, then delete the record.

        Nodes that never joined are deleted directly. The record is deleted
        last so a failed drain leaves it recoverable.

        Raises:
            NotFoundError: Unknown node id
            RemovalError: Drain or swarm removal failed
        """
        node = self._get_node(node_id)
        op = OperationLogger(logger).start("remove_node", node_id=node.id, node_name=node.name)

        if node.swarm_node_id:
            self.repository.set_status(node.id, NodeState.DRAINING.value)
            try:
                await self.swarm.update_node_availability(node.swarm_node_id, "drain")
                await self._sleep(self.drain_grace_period)
                await self.swarm.remove_node(node.swarm_node_id, force=force)
            except ExecutionError as e:
                op.failure(str(e))
                raise RemovalError(f"Failed to remove node: {e}", node_id=node.id) from e

        self.repository.delete(node.id)
        op.success()

    # =========================================================================
    # Status and reconciliation
    # =========================================================================

    def get_node_statuses(self) -> List[NodeStatusView]:
        """Snapshot of every node for API consumers. Eventually consistent."""
        return [self._to_status_view(node) for node in self.repository.list_all()]

    async def update_node_resources(self) -> SweepSummary:
        """Reconcile every node with the swarm. Never raises for per-node failures.

        Unmatched nodes get one match attempt; matched nodes are refreshed
        and alerted on. A failing node is marked unreachable with the error
        recorded in ``metadata.last_error``.
        """
        cache = ResourceUsageCache()
        nodes = self.repository.list_all()
        summary = SweepSummary(total=len(nodes))

        for node in nodes:
            if not node.swarm_node_id:
                try:
                    await self.reconciler.sync_node_metadata(node, retries=1)
                    summary.matched += 1
                except Exception as e:
                    # Node may simply not have joined yet
                    logger.debug(f"Node {node.name} still unmatched: {e}")
                continue

            try:
                await self.reconciler.reconcile_node(node, cache)
                summary.reconciled += 1
            except Exception as e:
                summary.failed += 1
                message = str(e) or e.__class__.__name__
                logger.error(f"Failed to update node {node.name}: {message}")
                self.repository.update(
                    node.id,
                    status=NodeState.UNREACHABLE.value,
                    metadata={"last_error": message},
                )
                await self.reconciler.evaluate_alert_conditions(node, NodeState.UNREACHABLE.value)

        logger.info(
            "Node resource sweep finished",
            extra={"event": "sweep_finished", **summary.model_dump(), "services_inspected": len(cache)},
        )
        return summary

    # =========================================================================
    # Helpers
    # =========================================================================

    def _get_node(self, node_id: str) -> WorkerNode:
        node = self.repository.get(node_id)
        if node is None:
            raise NotFoundError(f"Node not found: {node_id}", node_id=node_id)
        return node

    def _decrypt_ssh_key(self, node: WorkerNode) -> str:
        if not node.ssh_key_encrypted:
            raise CredentialError("SSH key required for auto-provisioning", node_id=node.id)
        try:
            key = self.secrets.decrypt(node.ssh_key_encrypted)
        except CryptoError as e:
            raise CredentialError("Stored SSH key could not be decrypted", node_id=node.id) from e
        if not key.strip():
            raise CredentialError("SSH key required for auto-provisioning", node_id=node.id)
        return key

    def _mark_down(self, node_id: str) -> None:
        try:
            self.repository.set_status(node_id, NodeState.DOWN.value)
        except Exception as e:
            logger.error(f"Failed to mark node {node_id} down: {e}")

    @staticmethod
    def _to_status_view(node: WorkerNode) -> NodeStatusView:
        total_cpu = float(node.capacity_cpu or 0)
        used_cpu = float(node.used_cpu or 0)
        total_ram = int(node.capacity_ram_mb or 0)
        used_ram = int(node.used_ram_mb or 0)
        metadata = node.node_metadata or {}

        warnings = []
        if node.status in (NodeState.UNREACHABLE.value, NodeState.DOWN.value):
            warnings.append("Node unreachable")
        cpu_ratio = utilization(used_cpu, total_cpu)
        if cpu_ratio is not None and cpu_ratio > WARNING_THRESHOLD:
            warnings.append("CPU usage above 90%")
        ram_ratio = utilization(used_ram, total_ram)
        if ram_ratio is not None and ram_ratio > WARNING_THRESHOLD:
            warnings.append("RAM usage above 90%")
        if metadata.get("last_error"):
            warnings.append(str(metadata["last_error"]))

        return NodeStatusView(
            id=node.id,
            name=node.name,
            status=node.status,
            availability=metadata.get("availability"),
            ip_address=node.ip_address,
            hostname=metadata.get("hostname"),
            cpu=ResourceTriplet.from_usage(total_cpu, used_cpu),
            ram=ResourceTriplet.from_usage(total_ram, used_ram),
            containers=int(metadata.get("containers") or 0),
            warnings=warnings,
            last_heartbeat=node.last_heartbeat_at.isoformat() if node.last_heartbeat_at else None,
        )


def build_activity_sink(settings: Settings, session_factory: sessionmaker) -> ActivityLogSink:
    """Select the alert destination named by ``activity_sink``.

    Raises:
        ConfigurationError: On an unknown sink name
    """
    sink = settings.activity_sink.strip().lower()
    if sink == "database":
        return DatabaseActivitySink(session_factory)
    if sink == "log":
        return LoggingActivitySink()
    raise ConfigurationError(f"Unknown activity sink: {settings.activity_sink}")


def build_fleet_manager(settings: Optional[Settings] = None) -> FleetManager:
    """Wire a FleetManager from settings (database, docker CLI, ssh binary)."""
    settings = settings or get_settings()

    engine = get_engine(settings.database_url)
    init_db(engine)
    session_factory = get_session_local(engine)

    secrets = SecretStore.from_settings(settings)
    repository = NodeRepository(session_factory)
    swarm = SwarmClient(settings.docker_cli_path, timeout=settings.docker_cli_timeout)

    alerts = AlertEmitter(
        sink=build_activity_sink(settings, session_factory),
        recipients=AdminRecipientCache(
            UserDirectory(session_factory).list_admin_ids,
            ttl=settings.admin_recipient_ttl,
        ),
        cooldown=AlertCooldown(window=settings.worker_alert_cooldown),
    )
    reconciler = NodeReconciler(
        repository,
        swarm,
        alerts,
        match_policy=RetryPolicy(settings.node_match_retries, settings.node_match_interval),
        resource_threshold=settings.resource_alert_threshold,
    )

    return FleetManager(
        repository=repository,
        settings_store=SettingsStore(session_factory, secrets),
        secrets=secrets,
        swarm=swarm,
        executor=RemoteCommandExecutor(
            settings.ssh_cli_path,
            timeout=settings.provision_timeout,
            connect_timeout=settings.ssh_connect_timeout,
        ),
        reconciler=reconciler,
        setup_script=WorkerSetupScript(settings.worker_setup_script),
        overlay_network=settings.swarm_overlay_network,
        drain_grace_period=settings.node_drain_grace_period,
        default_ssh_user=settings.default_ssh_user,
        default_ssh_port=settings.default_ssh_port,
    )
