"""Activity log sinks.

Alerts are delivered as activity feed entries, one per recipient.
"""

from typing import Any, Dict, Optional, Protocol

from pydantic import BaseModel, Field
from sqlalchemy.orm import sessionmaker

from ..database import ActivityLog, session_scope
from ..logging import get_logger

logger = get_logger(__name__)


class ActivityEvent(BaseModel):
    """A single activity feed entry."""

    user_id: Optional[str] = Field(default=None, description="Recipient user id")
    event_type: str = Field(description="Event type, e.g. 'admin.paas.worker.down'")
    entity_type: str = Field(description="Entity kind, e.g. 'paas_worker'")
    entity_id: Optional[str] = Field(default=None, description="Entity identifier")
    message: str = Field(description="Human-readable message")
    status: str = Field(default="info", description="success, info, warning or error")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Structured details")


class ActivityLogSink(Protocol):
    """Destination for activity events."""

    async def record(self, event: ActivityEvent) -> None:
        ...


class DatabaseActivitySink:
    """Persists events into ``activity_logs``."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def record(self, event: ActivityEvent) -> None:
        with session_scope(self._session_factory) as session:
            session.add(ActivityLog(
                user_id=event.user_id,
                event_type=event.event_type,
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                message=event.message,
                status=event.status,
                event_metadata=event.metadata,
            ))


class LoggingActivitySink:
    """Writes events to the log only."""

    async def record(self, event: ActivityEvent) -> None:
        logger.info(
            event.message,
            extra={
                "event": event.event_type,
                "recipient": event.user_id,
                "entity_id": event.entity_id,
                "severity": event.status,
            }
        )
