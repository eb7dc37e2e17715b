"""Durable key/value settings, including swarm bootstrap state."""

import json
from typing import Any, Optional

from pydantic import BaseModel, Field
from sqlalchemy.orm import sessionmaker

from ..database import FleetSetting, session_scope
from ..logging import get_logger
from .secrets import SecretStore

logger = get_logger(__name__)

SWARM_INITIALIZED = "swarm_initialized"
SWARM_MANAGER_IP = "swarm_manager_ip"
SWARM_JOIN_TOKEN_WORKER = "swarm_join_token_worker"
SWARM_JOIN_TOKEN_MANAGER = "swarm_join_token_manager"


class SwarmConfig(BaseModel):
    """Cluster bootstrap state."""

    initialized: bool = Field(default=False, description="Whether swarm init has completed")
    manager_ip: Optional[str] = Field(default=None, description="Manager advertise address")
    worker_token: Optional[str] = Field(default=None, repr=False, description="Worker join token")
    manager_token: Optional[str] = Field(default=None, repr=False, description="Manager join token")


class SettingsStore:
    """Settings persisted in the ``fleet_settings`` table.

    Values are JSON encoded. Sensitive values are encrypted with the
    secret store before they are written.
    """

    def __init__(self, session_factory: sessionmaker, secrets: SecretStore):
        self._session_factory = session_factory
        self._secrets = secrets

    def get(self, key: str, default: Any = None) -> Any:
        with session_scope(self._session_factory) as session:
            row = session.get(FleetSetting, key)
            if row is None or row.value is None:
                return default
            raw = self._secrets.decrypt(row.value) if row.is_sensitive else row.value
        return json.loads(raw)

    def set(self, key: str, value: Any, sensitive: bool = False) -> None:
        raw = json.dumps(value)
        if sensitive:
            raw = self._secrets.encrypt(raw)
        with session_scope(self._session_factory) as session:
            row = session.get(FleetSetting, key)
            if row is None:
                session.add(FleetSetting(key=key, value=raw, is_sensitive=sensitive))
            else:
                row.value = raw
                row.is_sensitive = sensitive
        logger.debug(f"Stored setting {key} (sensitive={sensitive})")

    def delete(self, key: str) -> None:
        with session_scope(self._session_factory) as session:
            row = session.get(FleetSetting, key)
            if row is not None:
                session.delete(row)

    def is_swarm_initialized(self) -> bool:
        return bool(self.get(SWARM_INITIALIZED, False))

    def get_swarm_config(self) -> SwarmConfig:
        return SwarmConfig(
            initialized=self.is_swarm_initialized(),
            manager_ip=self.get(SWARM_MANAGER_IP),
            worker_token=self.get(SWARM_JOIN_TOKEN_WORKER),
            manager_token=self.get(SWARM_JOIN_TOKEN_MANAGER),
        )

    def save_swarm_config(self, manager_ip: str, worker_token: str, manager_token: str) -> None:
        """Persist bootstrap state. Join tokens are stored as sensitive settings."""
        self.set(SWARM_MANAGER_IP, manager_ip)
        self.set(SWARM_JOIN_TOKEN_WORKER, worker_token, sensitive=True)
        self.set(SWARM_JOIN_TOKEN_MANAGER, manager_token, sensitive=True)
        # Written last so a partial write never reads as initialized
        self.set(SWARM_INITIALIZED, True)
