"""Pydantic schemas for fleet manager inputs and outputs."""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class NodeProvisionOptions(BaseModel):
    """Input for adding a worker node."""

    name: str = Field(min_length=1, description="Node name; also used for hostname matching")
    ip_address: str = Field(min_length=1, description="Address the node is reachable on")
    ssh_port: Optional[int] = Field(default=None, ge=1, le=65535, description="SSH port")
    ssh_user: Optional[str] = Field(default=None, description="SSH username")
    ssh_key: Optional[str] = Field(default=None, repr=False, description="SSH private key (PEM/OpenSSH)")
    auto_provision: bool = Field(
        default=False,
        description="Install Docker and join the swarm immediately",
    )

    @field_validator("name", "ip_address")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("ssh_key")
    @classmethod
    def normalize_key(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class ResourceTriplet(BaseModel):
    """Capacity, usage and headroom of one resource."""

    total: float = 0
    used: float = 0
    available: float = 0

    @classmethod
    def from_usage(cls, total: float, used: float) -> "ResourceTriplet":
        total = total or 0
        used = used or 0
        return cls(total=total, used=used, available=max(total - used, 0))


class NodeStatusView(BaseModel):
    """API-facing snapshot of a worker node."""

    id: str
    name: str
    status: str
    availability: Optional[str] = None
    ip_address: str
    hostname: Optional[str] = None
    cpu: ResourceTriplet
    ram: ResourceTriplet
    containers: int = 0
    warnings: List[str] = Field(default_factory=list)
    last_heartbeat: Optional[str] = None


class SwarmJoinInfo(BaseModel):
    """Manager address and join tokens returned by bootstrap."""

    manager_ip: str
    worker_token: str = Field(repr=False)
    manager_token: str = Field(repr=False)


class SwarmConnectivity(BaseModel):
    """Local swarm membership as reported by the manager's docker daemon."""

    local_node_state: str
    node_id: Optional[str] = None
    managers: int = 0
    nodes: int = 0


class SweepSummary(BaseModel):
    """Outcome counts of one reconciliation sweep."""

    total: int = 0
    reconciled: int = 0
    matched: int = 0
    failed: int = 0
