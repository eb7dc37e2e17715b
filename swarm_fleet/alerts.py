"""Worker alert emission with cooldown de-duplication.

Alerts fan out to every admin as activity events. Delivery is
fire-and-forget: failures are logged and never reach the caller.
"""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from .database import WorkerNode
from .logging import get_logger
from .services.activity import ActivityEvent, ActivityLogSink

logger = get_logger(__name__)

ALERT_DOWN = "down"
ALERT_UNREACHABLE = "unreachable"
ALERT_RESOURCE = "resource"

DEFAULT_COOLDOWN_SECONDS = 15 * 60
DEFAULT_RECIPIENT_TTL_SECONDS = 5 * 60

Clock = Callable[[], float]


class AlertCooldown:
    """Last-fired timestamps keyed by ``(node_id, alert_type)``."""

    def __init__(self, window: float = DEFAULT_COOLDOWN_SECONDS, clock: Clock = time.monotonic):
        self.window = window
        self._clock = clock
        self._last_fired: Dict[Tuple[str, str], float] = {}

    def try_acquire(self, node_id: str, alert_type: str) -> bool:
        """Record a fire and return True unless the key fired within the window."""
        key = (node_id, alert_type)
        now = self._clock()
        last = self._last_fired.get(key)
        if last is not None and now - last < self.window:
            return False
        self._last_fired[key] = now
        return True

    def last_fired(self, node_id: str, alert_type: str) -> Optional[float]:
        return self._last_fired.get((node_id, alert_type))


class AdminRecipientCache:
    """Caches the admin id list for ``ttl`` seconds.

    A failed lookup keeps serving the previous list.
    """

    def __init__(
        self,
        loader: Callable[[], List[str]],
        ttl: float = DEFAULT_RECIPIENT_TTL_SECONDS,
        clock: Clock = time.monotonic,
    ):
        self._loader = loader
        self.ttl = ttl
        self._clock = clock
        self._ids: List[str] = []
        self._fetched_at: Optional[float] = None

    def get(self) -> List[str]:
        now = self._clock()
        if self._ids and self._fetched_at is not None and now - self._fetched_at < self.ttl:
            return self._ids
        try:
            self._ids = list(self._loader())
            self._fetched_at = now
        except Exception as e:
            logger.error(f"Failed to fetch admin recipients for worker alerts: {e}")
        return self._ids


class AlertEmitter:
    """Delivers worker alerts to admins, at most once per cooldown window."""

    def __init__(
        self,
        sink: ActivityLogSink,
        recipients: AdminRecipientCache,
        cooldown: AlertCooldown,
    ):
        self.sink = sink
        self.recipients = recipients
        self.cooldown = cooldown

    async def emit_worker_alert(
        self,
        node: WorkerNode,
        alert_type: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Send an alert about ``node`` to every admin.

        Returns:
            Number of successful deliveries (0 when suppressed by cooldown)
        """
        if not self.cooldown.try_acquire(node.id, alert_type):
            logger.debug(f"Suppressed {alert_type} alert for {node.name} (cooldown)")
            return 0

        admin_ids = self.recipients.get()
        if not admin_ids:
            logger.warning(f"No admin recipients for {alert_type} alert on {node.name}")
            return 0

        status = "warning" if alert_type == ALERT_RESOURCE else "error"
        details = {
            "node_id": node.id,
            "node_name": node.name,
            "ip_address": node.ip_address,
            **(metadata or {}),
        }
        events = [
            ActivityEvent(
                user_id=admin_id,
                event_type=f"admin.paas.worker.{alert_type}",
                entity_type="paas_worker",
                entity_id=node.id,
                message=message,
                status=status,
                metadata=details,
            )
            for admin_id in admin_ids
        ]

        results = await asyncio.gather(
            *(self.sink.record(event) for event in events),
            return_exceptions=True,
        )
        delivered = 0
        for event, result in zip(events, results):
            if isinstance(result, BaseException):
                logger.warning(f"Worker alert delivery to {event.user_id} failed: {result}")
            else:
                delivered += 1

        logger.info(f"Emitted {alert_type} alert for {node.name} to {delivered}/{len(events)} admin(s)")
        return delivered
