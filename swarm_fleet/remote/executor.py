"""SSH executor for running command chains on worker nodes.

A command chain runs in one SSH session; the commands are joined with
``&&`` so the first failure aborts the rest. The chain is base64-encoded
to avoid remote shell interpretation issues.
"""

import asyncio
import base64
import os
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..errors import ExecutionError
from ..logging import get_logger

logger = get_logger(__name__)

READ_CHUNK_SIZE = 16 * 1024


@dataclass
class SSHTarget:
    """Connection details for one node. The key is plaintext and transient."""

    host: str
    port: int = 22
    user: str = "root"
    private_key: str = field(default="", repr=False)


@dataclass
class ExecutionResult:
    """Result of executing a command chain on a worker node."""

    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int

    @property
    def success(self) -> bool:
        """Check if the command succeeded (exit code 0)."""
        return self.exit_code == 0


def wrap_commands(commands: Sequence[str]) -> str:
    """Join commands with ``&&`` and wrap them for ``sh`` on the remote side."""
    chain = " && ".join(commands)
    chain_b64 = base64.b64encode(chain.encode("utf-8")).decode("ascii")
    return f"echo {chain_b64} | base64 -d | sh"


class RemoteCommandExecutor:
    """Execute ordered command chains on worker nodes via the ssh binary."""

    def __init__(
        self,
        ssh_path: str = "ssh",
        timeout: float = 1800,
        connect_timeout: int = 10,
    ):
        """Initialize the executor.

        Args:
            ssh_path: ssh binary to invoke
            timeout: Timeout for the whole chain in seconds
            connect_timeout: SSH connect timeout in seconds
        """
        self.ssh_path = ssh_path
        self.timeout = timeout
        self.connect_timeout = connect_timeout

    def build_ssh_args(self, target: SSHTarget, key_path: str, remote_command: str) -> List[str]:
        args = [self.ssh_path]
        if target.port != 22:
            args.extend(["-p", str(target.port)])
        args.extend([
            "-i", key_path,
            "-o", "StrictHostKeyChecking=accept-new",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            "-o", "BatchMode=yes",
            "-o", "IdentitiesOnly=yes",
            f"{target.user}@{target.host}",
            remote_command,
        ])
        return args

    async def run_commands(
        self,
        target: SSHTarget,
        commands: Sequence[str],
        label: Optional[str] = None,
    ) -> ExecutionResult:
        """Run ``commands`` in order in a single SSH session.

        Output is streamed to the log line by line.

        Raises:
            ExecutionError: If the session cannot be opened, times out or any
                command exits non-zero
        """
        if not commands:
            return ExecutionResult(stdout="", stderr="", exit_code=0, duration_ms=0)
        if not target.private_key:
            raise ExecutionError("SSH private key is required", exit_code=-2)

        label = label or target.host
        start_time = time.perf_counter()

        with tempfile.TemporaryDirectory(prefix="swarm-fleet-") as key_dir:
            key_path = os.path.join(key_dir, "id_key")
            fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as key_file:
                key_file.write(target.private_key.strip() + "\n")

            args = self.build_ssh_args(target, key_path, wrap_commands(commands))
            logger.info(
                f"Executing {len(commands)} command(s) on {label} "
                f"({target.user}@{target.host}:{target.port})"
            )

            try:
                process = await asyncio.create_subprocess_exec(
                    *args,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                )
            except FileNotFoundError as e:
                raise ExecutionError(f"SSH binary not found: {self.ssh_path}", exit_code=-4) from e

            stdout_lines: List[str] = []
            stderr_lines: List[str] = []
            try:
                await asyncio.wait_for(
                    asyncio.gather(
                        self._pump(process.stdout, stdout_lines, label, is_error=False),
                        self._pump(process.stderr, stderr_lines, label, is_error=True),
                        process.wait(),
                    ),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError:
                await self._terminate(process)
                raise ExecutionError(
                    f"Commands on {label} timed out after {self.timeout} seconds",
                    exit_code=124,
                    stdout="".join(stdout_lines),
                    stderr="".join(stderr_lines),
                )
            except asyncio.CancelledError:
                await self._terminate(process)
                raise
            except Exception as e:
                await self._terminate(process)
                raise ExecutionError(
                    f"SSH session on {label} failed: {e}",
                    exit_code=-3,
                    stdout="".join(stdout_lines),
                    stderr="".join(stderr_lines),
                ) from e

        duration_ms = int((time.perf_counter() - start_time) * 1000)
        result = ExecutionResult(
            stdout="".join(stdout_lines),
            stderr="".join(stderr_lines),
            exit_code=process.returncode,
            duration_ms=duration_ms,
        )

        logger.info(f"Commands on {label} completed with exit code {result.exit_code} in {duration_ms}ms")

        if not result.success:
            raise ExecutionError(
                f"Commands failed with code {result.exit_code}: {result.stderr.strip()}",
                exit_code=result.exit_code,
                stderr=result.stderr,
                stdout=result.stdout,
            )
        return result

    @staticmethod
    async def _terminate(process) -> None:
        if process.returncode is None:
            process.kill()
        await process.wait()

    @staticmethod
    async def _pump(stream, sink: List[str], label: str, is_error: bool) -> None:
        """Collect ``stream`` into ``sink`` line by line.

        Reads fixed-size chunks so lines longer than the reader limit
        never fail the session.
        """
        if stream is None:
            return

        def emit(raw: bytes) -> None:
            line = raw.decode("utf-8", errors="replace")
            sink.append(line)
            if is_error:
                logger.warning(f"[{label}] {line.rstrip()}")
            else:
                logger.info(f"[{label}] {line.rstrip()}")

        pending = b""
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            pending += chunk
            *lines, pending = pending.split(b"\n")
            for raw in lines:
                emit(raw + b"\n")
        if pending:
            emit(pending)
