"""Docker Swarm control-plane client.

Drives the local ``docker`` CLI through asyncio subprocesses. Every call
carries a timeout; every failure surfaces as :class:`ExecutionError`.
"""

import asyncio
import json
import subprocess
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .errors import ExecutionError
from .logging import get_logger

logger = get_logger(__name__)

JSON_FORMAT = "{{json .}}"


async def run_process(args: Sequence[str], timeout: float) -> str:
    """Run a local process and return its stdout.

    Raises:
        ExecutionError: On missing binary, timeout or non-zero exit
    """
    command_str = " ".join(args)
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise ExecutionError(f"Executable not found: {args[0]}", exit_code=-4) from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.communicate()
        raise ExecutionError(
            f"Command timed out after {timeout} seconds: {command_str}",
            exit_code=-1,
        )

    stdout_str = stdout.decode("utf-8", errors="replace")
    stderr_str = stderr.decode("utf-8", errors="replace")

    if process.returncode != 0:
        raise ExecutionError(
            f"Command failed with code {process.returncode}: {stderr_str.strip() or command_str}",
            exit_code=process.returncode,
            stderr=stderr_str,
            stdout=stdout_str,
        )
    return stdout_str


def _parse_json(raw: str, what: str) -> Any:
    raw = raw.strip()
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ExecutionError(f"Unparsable {what} output: {e}") from e


class SwarmClient:
    """Inspect and mutate the swarm through the docker CLI."""

    def __init__(self, docker_path: str = "docker", timeout: float = 60):
        self.docker_path = docker_path
        self.timeout = timeout

    async def _docker(self, *args: str) -> str:
        return await run_process([self.docker_path, *args], timeout=self.timeout)

    # -- nodes ---------------------------------------------------------------

    async def list_node_ids(self) -> List[str]:
        stdout = await self._docker("node", "ls", "-q")
        return [line.strip() for line in stdout.splitlines() if line.strip()]

    async def inspect_node(self, node_id: str) -> Dict[str, Any]:
        stdout = await self._docker("node", "inspect", node_id, "--format", JSON_FORMAT)
        return _parse_json(stdout, "node inspect")

    async def find_node(
        self,
        ip_address: Optional[str] = None,
        hostname: Optional[str] = None,
    ) -> Optional[Tuple[str, Dict[str, Any]]]:
        """Find a swarm node whose address starts with ``ip_address`` or whose hostname equals ``hostname``."""
        for node_id in await self.list_node_ids():
            info = await self.inspect_node(node_id)
            addr = str((info.get("Status") or {}).get("Addr") or "")
            node_hostname = (info.get("Description") or {}).get("Hostname")

            if ip_address and addr and addr.startswith(ip_address):
                return node_id, info
            if hostname and node_hostname == hostname:
                return node_id, info
        return None

    async def update_node_availability(self, node_id: str, availability: str) -> None:
        await self._docker("node", "update", "--availability", availability, node_id)

    async def remove_node(self, node_id: str, force: bool = False) -> None:
        args = ["node", "rm"]
        if force:
            args.append("--force")
        await self._docker(*args, node_id)

    async def list_node_tasks(self, node_id: str) -> List[Dict[str, Any]]:
        """Tasks scheduled on a node with desired state running."""
        stdout = await self._docker(
            "node", "ps", node_id,
            "--filter", "desired-state=running",
            "--format", JSON_FORMAT,
        )
        return [_parse_json(line, "node ps") for line in stdout.splitlines() if line.strip()]

    # -- services ------------------------------------------------------------

    async def inspect_service_resources(self, service_name: str) -> Dict[str, Any]:
        stdout = await self._docker(
            "service", "inspect", service_name,
            "--format", "{{json .Spec.TaskTemplate.Resources}}",
        )
        resources = _parse_json(stdout, "service inspect")
        return resources if isinstance(resources, dict) else {}

    # -- swarm ---------------------------------------------------------------

    async def init_swarm(self, advertise_addr: str) -> None:
        await self._docker("swarm", "init", "--advertise-addr", advertise_addr)

    async def join_token(self, role: str) -> str:
        stdout = await self._docker("swarm", "join-token", role, "-q")
        return stdout.strip()

    async def create_overlay_network(self, name: str) -> None:
        await self._docker("network", "create", "--driver", "overlay", "--attachable", name)

    async def swarm_info(self) -> Dict[str, Any]:
        stdout = await self._docker("info", "--format", "{{json .Swarm}}")
        return _parse_json(stdout, "docker info")

    async def discover_advertise_address(self) -> str:
        """First address reported by ``hostname -I``."""
        stdout = await run_process(["hostname", "-I"], timeout=self.timeout)
        addresses = stdout.split()
        if not addresses:
            raise ExecutionError("Could not determine a local advertise address")
        return addresses[0]
