"""Error taxonomy for fleet operations.

Node-scoped operations raise these to the caller; the reconciliation
sweep catches them per node and records the message on the node.
"""

from typing import Optional


class FleetError(Exception):
    """Base class for all fleet manager errors."""

    def __init__(self, message: str, node_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.node_id = node_id

    def with_context(self, prefix: str) -> "FleetError":
        """Return a copy of this error with ``prefix`` prepended to the message.

        The copy keeps the concrete class so callers can still catch the
        specific error type.
        """
        clone = self.__class__.__new__(self.__class__)
        clone.__dict__.update(self.__dict__)
        clone.message = f"{prefix}: {self.message}"
        clone.args = (clone.message,)
        return clone

    def __str__(self) -> str:
        return self.message


class ValidationError(FleetError):
    """Invalid operator input (e.g. auto-provision without an SSH key)."""


class NotFoundError(FleetError):
    """Unknown worker node id."""


class PreconditionError(FleetError):
    """The cluster is not in a state that allows the operation."""


class CredentialError(FleetError):
    """SSH credentials are missing or cannot be decrypted."""


class BootstrapError(FleetError):
    """Swarm initialization failed."""


class MatchError(FleetError):
    """A joined node could not be matched in the control plane."""


class RemovalError(FleetError):
    """Draining or removing a node from the control plane failed."""


class ConfigurationError(FleetError):
    """Required local configuration (key, setup script) is missing."""


class CryptoError(FleetError):
    """Ciphertext could not be decrypted."""


class ExecutionError(FleetError):
    """A remote command or control-plane call failed.

    Attributes:
        exit_code: Process exit code (negative for local failures such as timeouts)
        stderr: Captured standard error
        stdout: Captured standard output
    """

    def __init__(
        self,
        message: str,
        exit_code: int = 1,
        stderr: str = "",
        stdout: str = "",
        node_id: Optional[str] = None,
    ):
        super().__init__(message, node_id=node_id)
        self.exit_code = exit_code
        self.stderr = stderr
        self.stdout = stdout
