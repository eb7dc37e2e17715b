"""Worker setup script loading and provisioning command assembly."""

import base64
import shlex
import threading
from pathlib import Path
from typing import List, Optional, Union

from ..errors import ConfigurationError
from ..logging import get_logger

logger = get_logger(__name__)

DEFAULT_SETUP_SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "setup-worker.sh"


class WorkerSetupScript:
    """Reads the setup script once and keeps it for the process lifetime."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else DEFAULT_SETUP_SCRIPT
        self._content: Optional[str] = None
        self._lock = threading.Lock()

    def load(self) -> str:
        """Return the script text.

        Raises:
            ConfigurationError: If the script cannot be read
        """
        if self._content is not None:
            return self._content
        with self._lock:
            if self._content is None:
                try:
                    self._content = self.path.read_text(encoding="utf-8")
                except OSError as e:
                    raise ConfigurationError(f"Setup script not found at {self.path}: {e}") from e
                logger.debug(f"Loaded worker setup script from {self.path}")
        return self._content


def build_provision_commands(
    node_id: str,
    script: str,
    worker_token: str,
    manager_ip: str,
    use_sudo: bool = False,
) -> List[str]:
    """Upload, run and remove the setup script on the node.

    The script receives the worker join token and manager address. It must
    run as root; ``use_sudo`` runs it through non-interactive sudo for
    other SSH users.
    """
    script_b64 = base64.b64encode(script.encode("utf-8")).decode("ascii")
    remote_path = shlex.quote(f"/tmp/swarm-fleet-worker-{node_id}.sh")
    run_prefix = "sudo -n " if use_sudo else ""
    return [
        f"echo '{script_b64}' | base64 -d > {remote_path}",
        f"chmod +x {remote_path}",
        f"{run_prefix}{remote_path} {shlex.quote(worker_token)} {shlex.quote(manager_ip)}",
        f"rm -f {remote_path}",
    ]
