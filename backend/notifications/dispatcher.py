"""Fire-and-forget notification dispatch for the booking workflow."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

from notifications.events import NotificationEvent

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    def notify(self, user_id: int, event: NotificationEvent) -> bool: ...

    def notify_admins(self, event: NotificationEvent) -> bool: ...

    def schedule(self, user_id: int, event: NotificationEvent, eta: datetime) -> bool: ...


class CeleryNotificationDispatcher:
    """
    Queues delivery on Celery. Enqueue failures are logged and reported as
    False; they never raise into the caller, whose state change has already
    been committed.
    """

    def notify(self, user_id: int, event: NotificationEvent) -> bool:
        from notifications.tasks import deliver_notification

        return self._enqueue(deliver_notification, (user_id, event.event_type, event.to_payload()), event)

    def notify_admins(self, event: NotificationEvent) -> bool:
        from notifications.tasks import deliver_admin_notification

        return self._enqueue(deliver_admin_notification, (event.event_type, event.to_payload()), event)

    def schedule(self, user_id: int, event: NotificationEvent, eta: datetime) -> bool:
        from notifications.tasks import deliver_notification

        return self._enqueue(
            deliver_notification, (user_id, event.event_type, event.to_payload()), event, eta=eta
        )

    def _enqueue(self, task, args: tuple, event: NotificationEvent, eta: datetime | None = None) -> bool:
        try:
            if eta is None:
                task.delay(*args)
            else:
                task.apply_async(args=args, eta=eta)
        except Exception:
            logger.info(
                "notifications: failed to queue %s",
                event.event_type,
                exc_info=True,
                extra={"booking_id": event.booking_id},
            )
            return False
        return True
