"""
Realtime notification fan-out. Services call publish() only after their transaction committed;
delivery is best effort and a failure is logged and counted, never raised back into the request.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable

from app import metrics
from app.services.sessions import SessionRegistry

logger = logging.getLogger(__name__)

MESSAGE_SENT = "message.sent"
INVITATION_SENT = "invitation.sent"
INVITATION_ACCEPTED = "invitation.accepted"
DEMAND_SENT = "teaching_demand.sent"
DEMAND_ACCEPTED = "teaching_demand.accepted"
DEMAND_CANCELLED = "teaching_demand.cancelled"
EVENT_CREATED = "event.created"
EVENT_MODIFIED = "event.modified"
EVENT_DELETED = "event.deleted"
EVENT_ACCEPTED = "event.accepted"
EVENT_DECLINED = "event.declined"
TASK_CREATED = "task.created"
TASK_COMPLETED = "task.completed"
TASK_VALIDATED = "task.validated"
USER_CONNECTED = "user.connected"
USER_DISCONNECTED = "user.disconnected"


class NotificationBus:
    def __init__(self, registry: SessionRegistry):
        self.registry = registry
        self.published: int = 0

    def publish(self, event_type: str, data: dict, recipients: Iterable) -> None:
        event = {
            "type": event_type,
            "data": data,
            "at": datetime.now(timezone.utc).isoformat(),
        }
        for recipient in {str(r) for r in recipients if r is not None}:
            try:
                self.registry.deliver(recipient, event)
            except Exception:
                total = metrics.increment_notification_failures_total()
                logger.exception(
                    "Notification delivery failed",
                    extra={"event_type": event_type, "recipient": recipient, "notification_failures_total": total},
                )
        self.published += 1
        logger.debug("Published %s", event_type)
