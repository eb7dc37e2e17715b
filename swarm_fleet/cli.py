"""Operator command line for the swarm fleet.

Usage:
    swarm-fleet bootstrap
    swarm-fleet add <name> <ip> [--ssh-key-file PATH] [--provision]
    swarm-fleet provision <node_id>
    swarm-fleet remove <node_id> [--force]
    swarm-fleet status
    swarm-fleet sweep
    swarm-fleet check
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from .config import get_settings
from .errors import FleetError
from .logging import setup_logging
from .manager import FleetManager, build_fleet_manager
from .schemas import NodeProvisionOptions, NodeStatusView

console = Console()

STATUS_STYLES = {
    "active": "green",
    "provisioning": "cyan",
    "draining": "yellow",
    "down": "red",
    "unreachable": "red",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="swarm-fleet", description="Manage swarm worker nodes")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("bootstrap", help="Initialize the swarm on this manager")
    sub.add_parser("check", help="Validate local swarm connectivity")
    sub.add_parser("status", help="List worker node statuses")
    sub.add_parser("sweep", help="Run one resource reconciliation sweep")

    add = sub.add_parser("add", help="Register a worker node")
    add.add_argument("name")
    add.add_argument("ip_address")
    add.add_argument("--ssh-port", type=int, default=None)
    add.add_argument("--ssh-user", default=None)
    add.add_argument("--ssh-key-file", type=Path, default=None)
    add.add_argument("--provision", action="store_true", help="Provision immediately")

    provision = sub.add_parser("provision", help="Install Docker and join a node to the swarm")
    provision.add_argument("node_id")

    remove = sub.add_parser("remove", help="Drain and remove a node")
    remove.add_argument("node_id")
    remove.add_argument("--force", action="store_true")

    return parser


def render_statuses(statuses: List[NodeStatusView]) -> Table:
    table = Table(title="Worker nodes")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Address")
    table.add_column("Status")
    table.add_column("CPU (used/total)", justify="right")
    table.add_column("RAM MB (used/total)", justify="right")
    table.add_column("Tasks", justify="right")
    table.add_column("Warnings")

    for node in statuses:
        style = STATUS_STYLES.get(node.status, "white")
        table.add_row(
            node.id,
            node.name,
            node.ip_address,
            f"[{style}]{node.status}[/{style}]",
            f"{node.cpu.used:g}/{node.cpu.total:g}",
            f"{node.ram.used:g}/{node.ram.total:g}",
            str(node.containers),
            "; ".join(node.warnings),
        )
    return table


async def run_command(manager: FleetManager, args: argparse.Namespace) -> None:
    if args.command == "bootstrap":
        info = await manager.bootstrap_cluster()
        console.print(f"[green]Swarm ready[/green] manager={info.manager_ip}")
    elif args.command == "check":
        connectivity = await manager.validate_swarm_connectivity()
        console.print(
            f"[green]Swarm {connectivity.local_node_state}[/green] "
            f"node={connectivity.node_id} managers={connectivity.managers} nodes={connectivity.nodes}"
        )
    elif args.command == "status":
        console.print(render_statuses(manager.get_node_statuses()))
    elif args.command == "sweep":
        summary = await manager.update_node_resources()
        console.print(
            f"Swept {summary.total} node(s): {summary.reconciled} reconciled, "
            f"{summary.matched} matched, {summary.failed} failed"
        )
    elif args.command == "add":
        ssh_key = args.ssh_key_file.read_text(encoding="utf-8") if args.ssh_key_file else None
        node_id = await manager.add_worker_node(NodeProvisionOptions(
            name=args.name,
            ip_address=args.ip_address,
            ssh_port=args.ssh_port,
            ssh_user=args.ssh_user,
            ssh_key=ssh_key,
            auto_provision=args.provision,
        ))
        console.print(f"[green]Added node[/green] {node_id}")
    elif args.command == "provision":
        await manager.provision_node(args.node_id)
        console.print(f"[green]Provisioned node[/green] {args.node_id}")
    elif args.command == "remove":
        await manager.remove_node(args.node_id, force=args.force)
        console.print(f"[green]Removed node[/green] {args.node_id}")


def main(argv: Optional[List[str]] = None, manager: Optional[FleetManager] = None) -> int:
    args = build_parser().parse_args(argv)

    settings = get_settings()
    setup_logging(settings.fleet_log_level, json_format=settings.fleet_log_json, use_stderr=True)

    try:
        manager = manager or build_fleet_manager(settings)
        asyncio.run(run_command(manager, args))
    except FleetError as e:
        console.print(f"[red]Error:[/red] {e}")
        if e.node_id:
            console.print(f"[dim]node id: {e.node_id}[/dim]")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
