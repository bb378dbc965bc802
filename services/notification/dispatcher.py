"""
services/notification/dispatcher.py
Best-effort in-app notifications for booking, payment and review events.

Delivery happens after the response has been sent, in its own database
session: through a FastAPI background task by default, or a Celery task
when NOTIFICATION_BACKEND=celery. A failure is logged and dropped; it
never reaches the request that triggered it.

Usage from a route:
    dispatcher.schedule(background_tasks, "booking", booking.id, "confirmed")
"""

import logging
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

from fastapi import BackgroundTasks
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db_context
from config.settings import settings
from shared.models.models import (
    Booking,
    Lawyer,
    Notification,
    NotificationPriority,
    NotificationType,
    Payment,
    RelatedModel,
    Review,
    Service,
)

logger = logging.getLogger(__name__)

CUSTOMER = "customer"
LAWYER = "lawyer"


# ── Templates ─────────────────────────────────────────────────

TEMPLATES: dict[str, dict[str, Any]] = {
    "booking.created": {
        "title": "New Booking Request",
        "message": "You have received a new booking request for {service_name}",
        "recipients": (LAWYER,),
        "priority": NotificationPriority.HIGH,
    },
    "booking.confirmed": {
        "title": "Booking Confirmed",
        "message": "Your booking for {service_name} has been confirmed",
        "recipients": (CUSTOMER,),
        "priority": NotificationPriority.MEDIUM,
    },
    "booking.completed": {
        "title": "Booking Completed",
        "message": "Your booking for {service_name} has been completed. Please leave a review!",
        "recipients": (CUSTOMER,),
        "priority": NotificationPriority.MEDIUM,
    },
    "booking.cancelled": {
        "title": "Booking Cancelled",
        "message": "The booking for {service_name} has been cancelled",
        "recipients": (CUSTOMER, LAWYER),
        "priority": NotificationPriority.HIGH,
    },
    "booking.rejected": {
        "title": "Booking Rejected",
        "message": "Your booking request for {service_name} was declined by the lawyer",
        "recipients": (CUSTOMER,),
        "priority": NotificationPriority.HIGH,
    },
    "booking.rescheduled": {
        "title": "Booking Rescheduled",
        "message": "The booking for {service_name} has been rescheduled to {booking_date}",
        "recipients": (CUSTOMER, LAWYER),
        "priority": NotificationPriority.MEDIUM,
    },
    "payment.success": {
        "title": "Payment Successful",
        "message": "Payment for booking #{booking_id} has been processed successfully",
        "recipients": (CUSTOMER, LAWYER),
        "priority": NotificationPriority.MEDIUM,
    },
    "payment.refunded": {
        "title": "Payment Refunded",
        "message": "A refund of {refunded_amount} {currency} for booking #{booking_id} has been processed",
        "recipients": (CUSTOMER,),
        "priority": NotificationPriority.HIGH,
    },
    "review.created": {
        "title": "New Review Received",
        "message": "You have received a {rating}-star review",
        "recipients": (LAWYER,),
        "priority": NotificationPriority.LOW,
    },
}

_TYPES = {
    "booking": (NotificationType.BOOKING, RelatedModel.BOOKING),
    "payment": (NotificationType.PAYMENT, RelatedModel.PAYMENT),
    "review": (NotificationType.REVIEW, RelatedModel.REVIEW),
}


def build_notifications(kind: str, event: str, ctx: dict[str, Any]) -> list[Notification]:
    """Render one Notification per recipient of `kind.event`; unknown events render none."""
    template = TEMPLATES.get(f"{kind}.{event}")
    if template is None:
        logger.warning("No notification template for %s.%s", kind, event)
        return []

    notification_type, related_model = _TYPES[kind]
    recipients = {CUSTOMER: ctx["customer_id"], LAWYER: ctx["lawyer_user_id"]}
    notifications = []
    for party in template["recipients"]:
        user_id = recipients.get(party)
        if user_id is None:
            continue
        notifications.append(
            Notification(
                user_id=user_id,
                title=template["title"],
                message=template["message"].format(**ctx),
                type=notification_type,
                related_id=ctx["related_id"],
                related_model=related_model,
                priority=template["priority"],
                action_url=f"/bookings/{ctx['booking_id']}",
            )
        )
    return notifications


# ── Context Loaders ───────────────────────────────────────────

async def _booking_context(db: AsyncSession, booking_id: UUID) -> Optional[dict[str, Any]]:
    row = (
        await db.execute(
            select(Booking, Service.name, Lawyer.user_id)
            .join(Service, Service.id == Booking.service_id)
            .join(Lawyer, Lawyer.id == Booking.lawyer_id)
            .where(Booking.id == booking_id)
        )
    ).first()
    if row is None:
        return None
    booking, service_name, lawyer_user_id = row
    return {
        "booking_id": booking.id,
        "related_id": booking.id,
        "customer_id": booking.customer_id,
        "lawyer_user_id": lawyer_user_id,
        "service_name": service_name,
        "booking_date": booking.booking_date.strftime("%d %b %Y"),
    }


async def _payment_context(db: AsyncSession, payment_id: UUID) -> Optional[dict[str, Any]]:
    payment = await db.get(Payment, payment_id)
    if payment is None:
        return None
    ctx = await _booking_context(db, payment.booking_id)
    if ctx is None:
        return None
    ctx.update(
        related_id=payment.id,
        amount=payment.amount,
        refunded_amount=payment.refunded_amount,
        currency=payment.currency,
    )
    return ctx


async def _review_context(db: AsyncSession, review_id: UUID) -> Optional[dict[str, Any]]:
    review = await db.get(Review, review_id)
    if review is None:
        return None
    ctx = await _booking_context(db, review.booking_id)
    if ctx is None:
        return None
    ctx.update(related_id=review.id, rating=review.rating)
    return ctx


_CONTEXT_LOADERS: dict[str, Callable[[AsyncSession, UUID], Awaitable[Optional[dict]]]] = {
    "booking": _booking_context,
    "payment": _payment_context,
    "review": _review_context,
}


# ── Delivery ──────────────────────────────────────────────────

async def deliver(kind: str, entity_id: UUID, event: str) -> int:
    """Create the notification rows for one event. Raises on failure."""
    async with get_db_context() as db:
        ctx = await _CONTEXT_LOADERS[kind](db, entity_id)
        if ctx is None:
            logger.warning("Skipping %s.%s notification: %s %s not found", kind, event, kind, entity_id)
            return 0
        notifications = build_notifications(kind, event, ctx)
        db.add_all(notifications)
    return len(notifications)


async def notify(kind: str, entity_id: UUID, event: str) -> None:
    """Fire-and-forget wrapper around deliver()."""
    try:
        await deliver(kind, entity_id, event)
    except Exception:
        logger.exception("Notification %s.%s for %s failed", kind, event, entity_id)


async def send_booking_notification(booking_id: UUID, event: str) -> None:
    await notify("booking", booking_id, event)


async def send_payment_notification(payment_id: UUID, event: str) -> None:
    await notify("payment", payment_id, event)


async def send_review_notification(review_id: UUID) -> None:
    await notify("review", review_id, "created")


def schedule(background_tasks: BackgroundTasks, kind: str, entity_id: UUID, event: str) -> None:
    """Queue a notification to run once the response has been sent."""
    if settings.NOTIFICATION_BACKEND == "celery":
        from tasks.notification_tasks import deliver_notification

        try:
            deliver_notification.delay(kind, str(entity_id), event)
        except Exception:
            logger.exception("Could not enqueue %s.%s notification for %s", kind, event, entity_id)
        return

    background_tasks.add_task(notify, kind, entity_id, event)
