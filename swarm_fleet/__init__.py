"""Worker node fleet manager for Docker Swarm clusters.

Provides:
- Cluster bootstrap (swarm init, join tokens, overlay network)
- Worker node provisioning over SSH
- Periodic reconciliation of node status and resource usage
- Admin alerting with cooldown de-duplication

The public entry point is :class:`swarm_fleet.manager.FleetManager`.
"""

__version__ = "0.1.0"
