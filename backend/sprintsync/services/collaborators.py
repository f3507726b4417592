"""
Default implementations of the external collaborators used by the services:
feature access checks, audit logging and user notification.
"""

from typing import Any, Dict, Iterable, Optional

import httpx
import structlog

from sprintsync.infrastructure.broadcast import BroadcastChannel, user_room
from sprintsync.models.common import utcnow

logger = structlog.get_logger()

# Feature name gating custom status vocabularies
CUSTOM_STATUSES = "custom-statuses"


class FeatureGate:
    """Allow-list of subscription features, shared by every project."""

    def __init__(self, features: Iterable[str]):
        self._features = set(features)

    async def check_feature_access(self, project_id: str, feature: str) -> bool:
        allowed = feature in self._features
        if not allowed:
            logger.info("feature_denied", project_id=project_id, feature=feature)
        return allowed


class AuditLogger:
    """Writes audit entries to a dedicated structlog logger."""

    def __init__(self):
        self._log = structlog.get_logger("sprintsync.audit")

    async def log_action(
        self,
        actor_id: str,
        action: str,
        entity_kind: str,
        entity_id: str,
        changes: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._log.info(
            "audit",
            actor_id=actor_id,
            action=action,
            entity_kind=entity_kind,
            entity_id=entity_id,
            changes=changes or {},
        )


class Notifier:
    """
    Delivers user notifications.

    Every notification is published to the user's room; when a webhook URL
    is configured it is also POSTed there. Delivery is best effort.
    """

    def __init__(
        self,
        broadcast: BroadcastChannel,
        webhook_url: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.broadcast = broadcast
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._transport = transport

    async def notify_user(
        self,
        user_id: str,
        message: str,
        link: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        payload = {
            "userId": user_id,
            "message": message,
            "link": link,
            "metadata": metadata or {},
            "createdAt": utcnow().isoformat(),
        }
        await self.broadcast.publish(user_room(user_id), "notification", payload)

        if not self.webhook_url:
            return True

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.webhook_url, json=payload)
            if resp.status_code < 400:
                logger.info("notification_webhook_sent", user_id=user_id)
                return True
            logger.warning("notification_webhook_failed", status=resp.status_code, body=resp.text[:200])
            return False
        except httpx.HTTPError as e:
            logger.error("notification_webhook_error", user_id=user_id, error=str(e))
            return False
