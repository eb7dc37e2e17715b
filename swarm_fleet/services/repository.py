"""Worker node persistence and the admin user directory."""

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from ..database import User, WorkerNode, session_scope
from ..logging import get_logger

logger = get_logger(__name__)


class NodeRepository:
    """CRUD access to ``worker_nodes``.

    Returned rows are detached snapshots; mutate through the repository.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create(
        self,
        name: str,
        ip_address: str,
        ssh_port: int = 22,
        ssh_user: str = "root",
        ssh_key_encrypted: Optional[str] = None,
        status: str = "provisioning",
    ) -> WorkerNode:
        node = WorkerNode(
            name=name,
            ip_address=ip_address,
            ssh_port=ssh_port,
            ssh_user=ssh_user,
            ssh_key_encrypted=ssh_key_encrypted,
            status=status,
            node_metadata={},
        )
        with session_scope(self._session_factory) as session:
            session.add(node)
            session.flush()
            session.refresh(node)
        logger.info(f"Created worker node {node.name} ({node.ip_address}) id={node.id}")
        return node

    def get(self, node_id: str) -> Optional[WorkerNode]:
        with session_scope(self._session_factory) as session:
            return session.get(WorkerNode, node_id)

    def list_all(self) -> List[WorkerNode]:
        """All nodes, newest first."""
        with session_scope(self._session_factory) as session:
            return (
                session.query(WorkerNode)
                .order_by(WorkerNode.created_at.desc())
                .all()
            )

    def update(
        self,
        node_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        **fields: Any,
    ) -> Optional[WorkerNode]:
        """Update columns and shallow-merge ``metadata`` into the node's bag."""
        with session_scope(self._session_factory) as session:
            node = session.get(WorkerNode, node_id)
            if node is None:
                return None
            for column, value in fields.items():
                setattr(node, column, value)
            if metadata:
                # Reassign so the JSON column is flagged dirty
                node.node_metadata = {**(node.node_metadata or {}), **metadata}
            return node

    def set_status(self, node_id: str, status: str) -> None:
        self.update(node_id, status=status)

    def delete(self, node_id: str) -> bool:
        with session_scope(self._session_factory) as session:
            node = session.get(WorkerNode, node_id)
            if node is None:
                return False
            session.delete(node)
        logger.info(f"Deleted worker node record {node_id}")
        return True


class UserDirectory:
    """Looks up alert recipients."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def list_admin_ids(self) -> List[str]:
        with session_scope(self._session_factory) as session:
            rows = session.query(User.id).filter(User.role == "admin").all()
            return [row.id for row in rows]
