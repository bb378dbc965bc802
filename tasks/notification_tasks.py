"""
tasks/notification_tasks.py
Celery delivery for in-app notifications.

The API enqueues (kind, entity_id, event); the worker renders and stores
the rows with the same code path as the in-process background task.

Usage:
    from tasks.notification_tasks import deliver_notification
    deliver_notification.delay("booking", str(booking.id), "confirmed")
"""

import asyncio
import logging
from uuid import UUID

from config.database import engine
from services.notification import dispatcher
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _deliver(kind: str, entity_id: UUID, event: str) -> int:
    try:
        return await dispatcher.deliver(kind, entity_id, event)
    finally:
        # Pooled connections are bound to this task's event loop
        await engine.dispose()


@celery_app.task(bind=True, max_retries=3, default_retry_delay=30)
def deliver_notification(self, kind: str, entity_id: str, event: str):
    """Store the notifications for one event, retrying with exponential backoff."""
    try:
        count = asyncio.run(_deliver(kind, UUID(entity_id), event))
    except Exception as e:
        if self.request.retries >= self.max_retries:
            logger.exception(f"deliver_notification {kind}.{event} for {entity_id} gave up")
            return 0
        logger.warning(f"deliver_notification {kind}.{event} for {entity_id} failed: {e}")
        raise self.retry(exc=e, countdown=30 * (2 ** self.request.retries))

    logger.info(f"Delivered {count} {kind}.{event} notifications for {entity_id}")
    return count
