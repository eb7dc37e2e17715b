"""Remote execution on worker nodes."""

from .executor import ExecutionResult, RemoteCommandExecutor, SSHTarget
from .setup_script import WorkerSetupScript, build_provision_commands

__all__ = [
    "ExecutionResult",
    "RemoteCommandExecutor",
    "SSHTarget",
    "WorkerSetupScript",
    "build_provision_commands",
]
