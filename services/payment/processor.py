"""
services/payment/processor.py
Charge and refund logic. The gateway is a stub; what matters here is the
bookkeeping: one Payment row per booking, and the booking's payment state
moved only through the lifecycle module.
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.booking import lifecycle
from services.payment.gateway import DemoGateway
from shared.models.models import (
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    Lawyer,
    Payment,
    PaymentMethod,
    PaymentStatus,
    User,
    UserRole,
    utcnow,
)
from shared.utils.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# A failed or never-finished attempt may be retried on the same row
_RETRYABLE = (PaymentStatus.PENDING, PaymentStatus.FAILED)


async def get_payment_or_404(db: AsyncSession, payment_id: UUID, for_update: bool = False) -> Payment:
    query = select(Payment).where(Payment.id == payment_id)
    if for_update:
        query = query.with_for_update()
    payment = (await db.execute(query)).scalar_one_or_none()
    if not payment:
        raise NotFoundError("Payment not found")
    return payment


async def is_payment_lawyer(db: AsyncSession, payment: Payment, user: User) -> bool:
    lawyer_user_id = await db.scalar(select(Lawyer.user_id).where(Lawyer.id == payment.lawyer_id))
    return lawyer_user_id == user.id


# ── Charge ────────────────────────────────────────────────────

async def process_payment(
    db: AsyncSession,
    customer: User,
    booking_id: UUID,
    payment_method: PaymentMethod,
    gateway: DemoGateway,
) -> tuple[Payment, Booking]:
    """
    Charge a booking through the gateway.

    Returns (payment, booking) whatever the outcome; a declined charge comes
    back with payment.status == failed so the caller can persist it and
    answer 402.
    """
    booking = (
        await db.execute(
            select(Booking)
            .where(Booking.id == booking_id, Booking.customer_id == customer.id)
            .with_for_update()
        )
    ).scalar_one_or_none()
    if not booking:
        raise NotFoundError("Booking not found")

    status = BookingStatus(booking.status)
    if status in (BookingStatus.CANCELLED, BookingStatus.REJECTED):
        raise ConflictError(f"Cannot pay for a {status.value} booking")

    payment = (
        await db.execute(select(Payment).where(Payment.booking_id == booking.id))
    ).scalar_one_or_none()

    if booking.payment_status == BookingPaymentStatus.PAID or (
        payment is not None and payment.status not in _RETRYABLE
    ):
        raise ConflictError("Payment already processed for this booking")

    result = gateway.charge(booking.id, booking.total_amount, settings.DEFAULT_CURRENCY)

    if payment is None:
        payment = Payment(booking_id=booking.id, customer_id=customer.id, lawyer_id=booking.lawyer_id)
        db.add(payment)

    payment.amount = booking.total_amount
    payment.currency = settings.DEFAULT_CURRENCY
    payment.payment_method = payment_method
    payment.status = PaymentStatus.SUCCESS if result.succeeded else PaymentStatus.FAILED
    payment.transaction_id = result.transaction_id
    payment.receipt_url = result.receipt_url

    try:
        await db.flush()
    except IntegrityError:
        # Another request inserted the row for this booking first
        raise ConflictError("Payment already processed for this booking")

    lifecycle.apply_payment(booking, payment)
    await db.flush()

    if result.succeeded:
        logger.info(
            "Payment %s captured for booking %s (%s %s, txn %s)",
            payment.id, booking.id, payment.amount, payment.currency, payment.transaction_id,
        )
    else:
        logger.warning("Payment %s for booking %s declined: %s", payment.id, booking.id, result.error)
    return payment, booking


# ── Refund ────────────────────────────────────────────────────

async def process_refund(
    db: AsyncSession,
    user: User,
    payment_id: UUID,
    refund_reason: str,
    refund_amount: Optional[Decimal] = None,
) -> Payment:
    """Full or partial refund by an admin or the payment's lawyer."""
    payment = await get_payment_or_404(db, payment_id, for_update=True)

    if user.role != UserRole.ADMIN and not await is_payment_lawyer(db, payment, user):
        raise ForbiddenError("Not authorized to refund this payment")

    if payment.status != PaymentStatus.SUCCESS:
        raise ConflictError("Only successful payments can be refunded")

    original = Decimal(payment.amount)
    amount = original if refund_amount is None else Decimal(refund_amount)
    if amount > original:
        raise ValidationError("Refund amount cannot exceed original payment amount")

    payment.status = PaymentStatus.REFUNDED if amount == original else PaymentStatus.PARTIALLY_REFUNDED
    payment.refunded_amount = amount
    payment.refund_reason = refund_reason
    payment.refunded_at = utcnow()

    await lifecycle.apply_refund(db, payment)
    await db.flush()

    logger.info(
        "Payment %s refunded %s of %s (%s) by user %s",
        payment.id, amount, original, payment.status.value, user.id,
    )
    return payment
