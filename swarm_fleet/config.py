"""Configuration management for the fleet manager.

Loads configuration from environment variables with sensible defaults.
Secrets are never logged or exposed in responses.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Fleet manager configuration settings.

    All settings can be overridden via environment variables.
    Prefix: None (uses exact variable names).
    """

    # Persistence
    database_url: str = Field(
        default="sqlite:///swarm_fleet.db",
        description="SQLAlchemy database URL",
    )

    # Encryption settings
    secret_encryption_key: Optional[str] = Field(
        default=None,
        description="Fernet encryption key for SSH keys and join tokens (required in production)",
    )
    environment: str = Field(
        default="development",
        description="Environment: development or production",
    )

    # Logging
    fleet_log_level: str = Field(default="INFO", description="Logging level")
    fleet_log_json: bool = Field(default=True, description="Emit JSON log records")

    # Control plane (docker CLI)
    docker_cli_path: str = Field(default="docker", description="Path to the docker binary")
    docker_cli_timeout: int = Field(default=60, description="Timeout for docker CLI calls in seconds")

    # Remote execution
    ssh_cli_path: str = Field(default="ssh", description="Path to the ssh binary")
    ssh_connect_timeout: int = Field(default=10, description="SSH connect timeout in seconds")
    provision_timeout: int = Field(
        default=1800,
        description="Timeout for the full remote setup command chain in seconds",
    )
    worker_setup_script: Optional[str] = Field(
        default=None,
        description="Path to the worker setup script (defaults to the packaged script)",
    )
    default_ssh_user: str = Field(default="root", description="SSH user for new nodes")
    default_ssh_port: int = Field(default=22, description="SSH port for new nodes")

    # Swarm
    swarm_overlay_network: str = Field(
        default="paas-public",
        description="Attachable overlay network created at bootstrap",
    )
    node_match_retries: int = Field(
        default=6,
        description="Attempts to match a freshly joined node in the swarm",
    )
    node_match_interval: float = Field(
        default=5.0,
        description="Seconds between node match attempts",
    )
    node_drain_grace_period: float = Field(
        default=5.0,
        description="Seconds to wait for task migration after draining a node",
    )

    # Alerting
    activity_sink: str = Field(
        default="database",
        description="Where worker alerts are delivered: database (activity_logs) or log",
    )
    worker_alert_cooldown: int = Field(
        default=900,
        description="Seconds before the same alert may fire again for a node",
    )
    admin_recipient_ttl: int = Field(
        default=300,
        description="Seconds the admin recipient list is cached",
    )
    resource_alert_threshold: float = Field(
        default=0.90,
        description="CPU/RAM utilization ratio that triggers a resource alert",
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",  # Ignore unknown environment variables
    }

    def get_safe_dict(self) -> dict:
        """Return config as dict with secrets masked.

        Use this for logging or debugging - never exposes secrets.
        """
        data = self.model_dump()
        if data.get("secret_encryption_key"):
            data["secret_encryption_key"] = "***MASKED***"
        return data


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance.

    Creates the instance on first call, then returns cached version.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Force reload settings from the environment.

    Useful for testing or after environment changes.
    """
    global _settings
    _settings = None
    return get_settings()
