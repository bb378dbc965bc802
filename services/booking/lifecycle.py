"""
services/booking/lifecycle.py
Single owner of booking state: creation, cart checkout, status
transitions, rescheduling, and the effect of payments/refunds on a booking.

    pending   → confirmed | rejected | cancelled
    confirmed → completed | cancelled

completed, cancelled and rejected are terminal. Nothing outside this
module assigns Booking.status or Booking.payment_status.

Functions here only add/flush; the caller's session commits (or rolls
back) the whole operation as one transaction.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import (
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    CartItem,
    Lawyer,
    Payment,
    PaymentStatus,
    Service,
    User,
    UserRole,
    service_lawyers,
    utcnow,
)
from shared.schemas.schemas import BookingCreateRequest, RescheduleRequest
from shared.utils.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


# ── Transition Table ──────────────────────────────────────────

ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.REJECTED, BookingStatus.CANCELLED}
    ),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.REJECTED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)

# Statuses each party may request; admins are still bound by the table above
ROLE_TARGETS: dict[UserRole, frozenset[BookingStatus]] = {
    UserRole.CUSTOMER: frozenset({BookingStatus.CANCELLED}),
    UserRole.LAWYER: frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.COMPLETED, BookingStatus.REJECTED}
    ),
    UserRole.ADMIN: frozenset(BookingStatus),
}

# Notification event for entering a status
STATUS_EVENTS: dict[BookingStatus, str] = {
    BookingStatus.CONFIRMED: "confirmed",
    BookingStatus.COMPLETED: "completed",
    BookingStatus.CANCELLED: "cancelled",
    BookingStatus.REJECTED: "rejected",
}

_REFUND_STATUSES = {
    PaymentStatus.REFUNDED: BookingPaymentStatus.REFUNDED,
    PaymentStatus.PARTIALLY_REFUNDED: BookingPaymentStatus.PARTIALLY_REFUNDED,
}


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition(
    booking: Booking,
    target: BookingStatus,
    actor: Optional[UserRole] = None,
    reason: Optional[str] = None,
) -> None:
    """Move a booking along one edge of the table. Raises ConflictError otherwise."""
    current = BookingStatus(booking.status)
    if not can_transition(current, target):
        raise ConflictError(
            f"Cannot change booking status from {current.value} to {target.value}"
        )

    booking.status = target
    if target in (BookingStatus.CANCELLED, BookingStatus.REJECTED):
        booking.cancelled_by = actor
        booking.cancelled_at = utcnow()
        if reason:
            booking.cancellation_reason = reason

    logger.info(
        "Booking %s: %s -> %s (by %s)",
        booking.id, current.value, target.value, actor.value if actor else "system",
    )


# ── Lookups ───────────────────────────────────────────────────

async def get_booking_or_404(
    db: AsyncSession, booking_id: UUID, for_update: bool = False
) -> Booking:
    query = select(Booking).where(Booking.id == booking_id)
    if for_update:
        query = query.with_for_update()
    booking = (await db.execute(query)).scalar_one_or_none()
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


async def _get_service_or_404(db: AsyncSession, service_id: UUID) -> Service:
    service = await db.get(Service, service_id)
    if not service:
        raise NotFoundError("Service not found")
    return service


async def _get_lawyer_or_404(db: AsyncSession, lawyer_id: UUID) -> Lawyer:
    lawyer = await db.get(Lawyer, lawyer_id)
    if not lawyer:
        raise NotFoundError("Lawyer not found")
    return lawyer


async def lawyer_offers_service(db: AsyncSession, lawyer_id: UUID, service_id: UUID) -> bool:
    found = await db.scalar(
        select(service_lawyers.c.lawyer_id).where(
            service_lawyers.c.service_id == service_id,
            service_lawyers.c.lawyer_id == lawyer_id,
        )
    )
    return found is not None


async def first_lawyer_for_service(db: AsyncSession, service_id: UUID) -> Optional[Lawyer]:
    """The lawyer attached to the service earliest."""
    result = await db.execute(
        select(Lawyer)
        .join(service_lawyers, service_lawyers.c.lawyer_id == Lawyer.id)
        .where(service_lawyers.c.service_id == service_id)
        .order_by(service_lawyers.c.created_at, Lawyer.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def resolve_actor(db: AsyncSession, booking: Booking, user: User) -> Optional[UserRole]:
    """Which party the user acts as on this booking: customer, then lawyer, then admin."""
    if booking.customer_id == user.id:
        return UserRole.CUSTOMER
    lawyer_user_id = await db.scalar(select(Lawyer.user_id).where(Lawyer.id == booking.lawyer_id))
    if lawyer_user_id == user.id:
        return UserRole.LAWYER
    if user.role == UserRole.ADMIN:
        return UserRole.ADMIN
    return None


# ── Creation ──────────────────────────────────────────────────

async def create_booking(db: AsyncSession, customer: User, data: BookingCreateRequest) -> Booking:
    """Single booking; total = service base price + lawyer hourly rate."""
    service = await _get_service_or_404(db, data.service_id)
    lawyer = await _get_lawyer_or_404(db, data.lawyer_id)

    if not await lawyer_offers_service(db, lawyer.id, service.id):
        raise ValidationError("Selected lawyer does not offer this service")

    booking = Booking(
        customer_id=customer.id,
        lawyer_id=lawyer.id,
        service_id=service.id,
        booking_date=data.booking_date,
        start_time=data.start_time,
        end_time=data.end_time,
        total_amount=Decimal(service.base_price) + Decimal(lawyer.hourly_rate or 0),
        status=BookingStatus.PENDING,
        payment_status=BookingPaymentStatus.PENDING,
        notes=data.notes,
    )
    db.add(booking)
    await db.flush()

    logger.info("Booking %s created by customer %s", booking.id, customer.id)
    return booking


def _cart_slot(preferred_date: Optional[datetime]) -> tuple[datetime, datetime]:
    day = preferred_date or (utcnow() + timedelta(days=settings.CART_BOOKING_LEAD_DAYS))
    if day.tzinfo is None:
        day = day.replace(tzinfo=timezone.utc)
    start = day.replace(
        hour=settings.CART_BOOKING_START_HOUR, minute=0, second=0, microsecond=0
    )
    return start, start + timedelta(hours=settings.CART_BOOKING_DURATION_HOURS)


async def create_bookings_from_cart(db: AsyncSession, customer: User) -> list[Booking]:
    """
    One pending booking per cart line, then clear the cart.

    Every item is resolved before anything is flushed, so a failure on any
    line leaves no bookings behind and the cart untouched.
    """
    items = (
        await db.execute(
            select(CartItem)
            .where(CartItem.user_id == customer.id)
            .order_by(CartItem.created_at, CartItem.id)
        )
    ).scalars().all()

    if not items:
        raise ValidationError("Your cart is empty")

    bookings: list[Booking] = []
    for item in items:
        service = await _get_service_or_404(db, item.service_id)

        if item.lawyer_id:
            lawyer = await _get_lawyer_or_404(db, item.lawyer_id)
            if not await lawyer_offers_service(db, lawyer.id, service.id):
                raise ValidationError("Selected lawyer does not offer this service")
        else:
            lawyer = await first_lawyer_for_service(db, service.id)
            if not lawyer:
                raise ValidationError(f"No lawyers available for service: {service.name}")

        unit_price = Decimal(service.base_price) + Decimal(lawyer.hourly_rate or 0)
        start, end = _cart_slot(item.preferred_date)
        bookings.append(
            Booking(
                customer_id=customer.id,
                lawyer_id=lawyer.id,
                service_id=service.id,
                booking_date=start,
                start_time=start,
                end_time=end,
                total_amount=unit_price * item.quantity,
                status=BookingStatus.PENDING,
                payment_status=BookingPaymentStatus.PENDING,
                notes=item.notes,
            )
        )

    db.add_all(bookings)
    await db.execute(delete(CartItem).where(CartItem.user_id == customer.id))
    await db.flush()

    logger.info("Checkout for customer %s created %d bookings", customer.id, len(bookings))
    return bookings


# ── Transitions ───────────────────────────────────────────────

def _record_notes(booking: Booking, actor: UserRole, notes: Optional[str]) -> None:
    if not notes:
        return
    if actor == UserRole.CUSTOMER:
        booking.customer_notes = notes
    elif actor == UserRole.LAWYER:
        booking.lawyer_notes = notes
    else:
        booking.notes = notes


async def update_status(
    db: AsyncSession,
    booking_id: UUID,
    user: User,
    target: BookingStatus,
    notes: Optional[str] = None,
) -> tuple[Booking, bool]:
    """
    Apply a status change requested by one of the booking's parties.
    Returns (booking, changed); requesting the current status is a no-op.
    """
    booking = await get_booking_or_404(db, booking_id, for_update=True)

    actor = await resolve_actor(db, booking, user)
    if actor is None:
        raise ForbiddenError("Access denied")

    if target not in ROLE_TARGETS[actor]:
        if actor == UserRole.CUSTOMER:
            raise ForbiddenError("Customers can only cancel bookings")
        raise ForbiddenError("Lawyers can only confirm, complete or reject bookings")

    current = BookingStatus(booking.status)
    if actor == UserRole.CUSTOMER and current == BookingStatus.COMPLETED:
        raise ConflictError("Cannot cancel a completed booking")

    if current == target:
        return booking, False

    transition(booking, target, actor)
    _record_notes(booking, actor, notes)
    await db.flush()
    return booking, True


async def reschedule(
    db: AsyncSession,
    booking_id: UUID,
    user: User,
    data: RescheduleRequest,
) -> tuple[Booking, Booking]:
    """
    Replace a booking with a new pending one at a different time.
    Returns (new_booking, original_booking); the original ends cancelled.
    """
    booking = await get_booking_or_404(db, booking_id, for_update=True)

    actor = await resolve_actor(db, booking, user)
    if actor is None:
        raise ForbiddenError("Access denied")

    current = BookingStatus(booking.status)
    if current in TERMINAL_STATUSES:
        raise ConflictError(f"Cannot reschedule a {current.value} booking")

    successor = Booking(
        customer_id=booking.customer_id,
        lawyer_id=booking.lawyer_id,
        service_id=booking.service_id,
        booking_date=data.booking_date,
        start_time=data.start_time,
        end_time=data.end_time,
        total_amount=booking.total_amount,
        status=BookingStatus.PENDING,
        payment_status=booking.payment_status,
        payment_id=booking.payment_id,
        notes=data.notes or booking.notes,
        customer_notes=booking.customer_notes,
        lawyer_notes=booking.lawyer_notes,
        meeting_link=booking.meeting_link,
        is_rescheduled=True,
        original_booking_id=booking.id,
    )
    transition(booking, BookingStatus.CANCELLED, actor, reason="Rescheduled")
    db.add(successor)
    await db.flush()

    logger.info("Booking %s rescheduled as %s", booking.id, successor.id)
    return successor, booking


# ── Payment Effects ───────────────────────────────────────────

def apply_payment(booking: Booking, payment: Payment) -> None:
    """Reflect a capture attempt on the booking; success confirms a pending booking."""
    if payment.status == PaymentStatus.SUCCESS:
        booking.payment_status = BookingPaymentStatus.PAID
        booking.payment_id = payment.id
        if BookingStatus(booking.status) == BookingStatus.PENDING:
            transition(booking, BookingStatus.CONFIRMED)
    else:
        booking.payment_status = BookingPaymentStatus.FAILED


async def apply_refund(db: AsyncSession, payment: Payment) -> None:
    """Copy a refund onto every booking paid by this payment (reschedule successors included)."""
    await db.execute(
        update(Booking)
        .where(or_(Booking.id == payment.booking_id, Booking.payment_id == payment.id))
        .values(payment_status=_REFUND_STATUSES[PaymentStatus(payment.status)])
    )
