"""Persistence-backed services consumed by the fleet manager.

- Secret encryption/decryption
- Settings store (swarm bootstrap state)
- Node repository and user directory
- Activity log sinks
"""

from .activity import ActivityEvent, ActivityLogSink, DatabaseActivitySink, LoggingActivitySink
from .repository import NodeRepository, UserDirectory
from .secrets import SecretStore
from .settings_store import SettingsStore, SwarmConfig

__all__ = [
    # Activity
    "ActivityEvent",
    "ActivityLogSink",
    "DatabaseActivitySink",
    "LoggingActivitySink",
    # Persistence
    "NodeRepository",
    "UserDirectory",
    "SettingsStore",
    "SwarmConfig",
    # Secrets
    "SecretStore",
]
