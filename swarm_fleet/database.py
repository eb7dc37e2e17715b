"""Database models and session management.

Uses SQLAlchemy; SQLite by default. SSH keys and sensitive settings are
stored encrypted (see :mod:`swarm_fleet.services.secrets`).
"""

import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_id() -> str:
    return str(uuid.uuid4())


class WorkerNode(Base):
    """A machine in the swarm fleet.

    ``swarm_node_id`` stays NULL until the control plane confirms the join.
    Capacity and usage columns are overwritten by every reconciliation sweep.
    """

    __tablename__ = "worker_nodes"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False, index=True)
    ip_address = Column(String(64), nullable=False)
    ssh_port = Column(Integer, nullable=False, default=22)
    ssh_user = Column(String(64), nullable=False, default="root")
    ssh_key_encrypted = Column(Text, nullable=True)

    swarm_node_id = Column(String(64), nullable=True, index=True)
    status = Column(String(32), nullable=False, default="provisioning", index=True)

    capacity_cpu = Column(Float, nullable=False, default=0.0)
    capacity_ram_mb = Column(Integer, nullable=False, default=0)
    used_cpu = Column(Float, nullable=False, default=0.0)
    used_ram_mb = Column(Integer, nullable=False, default=0)

    last_heartbeat_at = Column(DateTime(timezone=True), nullable=True)
    # "metadata" is reserved on declarative classes
    node_metadata = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<WorkerNode(name={self.name}, ip={self.ip_address}, status={self.status})>"


class FleetSetting(Base):
    """Key/value setting; sensitive values are stored encrypted."""

    __tablename__ = "fleet_settings"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=True)
    is_sensitive = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<FleetSetting(key={self.key}, sensitive={self.is_sensitive})>"


class User(Base):
    """Operator account. Only consulted to find alert recipients."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    email = Column(String(255), nullable=False, unique=True)
    role = Column(String(32), nullable=False, default="user", index=True)


class ActivityLog(Base):
    """Activity feed entry delivered to a user."""

    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=True, index=True)
    event_type = Column(String(128), nullable=False)
    entity_type = Column(String(64), nullable=False)
    entity_id = Column(String(64), nullable=True)
    message = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default="info")
    event_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


def get_engine(database_url: str) -> Engine:
    """Create a SQLAlchemy engine.

    In-memory SQLite URLs share one connection so every session sees the
    same database.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url)


def get_session_local(engine: Engine) -> sessionmaker:
    """Get session factory.

    Objects stay usable after commit; callers pass detached rows around.
    """
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
