"""
services/payment/router.py
Simulated payment capture, refunds, and payment history.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking import lifecycle
from services.notification import dispatcher
from services.payment import processor
from services.payment.gateway import DemoGateway, get_gateway
from shared.middleware.auth import get_current_user
from shared.models.models import Lawyer, Payment, PaymentStatus, User, UserRole
from shared.schemas.schemas import (
    BookingResponse,
    PaymentEnvelope,
    PaymentListResponse,
    PaymentProcessRequest,
    PaymentResponse,
    RefundRequest,
)
from shared.utils.errors import ForbiddenError, PaymentRequiredError

router = APIRouter(prefix="/payments", tags=["Payments"])


# ── Process Payment ───────────────────────────────────────────

@router.post("/process", response_model=PaymentEnvelope)
async def process_payment(
    data: PaymentProcessRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    gateway: DemoGateway = Depends(get_gateway),
    db: AsyncSession = Depends(get_db),
):
    """
    Charge a booking. On success the booking is marked paid and a pending
    booking becomes confirmed. A declined charge is still recorded, then
    answered with 402.
    """
    payment, booking = await processor.process_payment(
        db, current_user, data.booking_id, data.payment_method, gateway
    )
    await db.commit()

    if payment.status != PaymentStatus.SUCCESS:
        raise PaymentRequiredError(
            "Payment failed",
            payload={"payment": PaymentResponse.model_validate(payment).model_dump(mode="json")},
        )

    dispatcher.schedule(background_tasks, "payment", payment.id, "success")
    return PaymentEnvelope(
        message="Payment processed successfully",
        payment=PaymentResponse.model_validate(payment),
        booking=BookingResponse.model_validate(booking),
    )


# ── Refund ────────────────────────────────────────────────────

@router.post("/refund", response_model=PaymentEnvelope)
async def refund_payment(
    data: RefundRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Admin or the payment's lawyer refunds all or part of a captured payment."""
    payment = await processor.process_refund(
        db, current_user, data.payment_id, data.refund_reason, data.refund_amount
    )
    await db.commit()

    dispatcher.schedule(background_tasks, "payment", payment.id, "refunded")
    return PaymentEnvelope(
        message="Refund processed successfully",
        payment=PaymentResponse.model_validate(payment),
    )


# ── Read Endpoints ────────────────────────────────────────────

@router.get("", response_model=PaymentListResponse)
async def list_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[PaymentStatus] = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Payments made by the caller; for a lawyer, also payments received."""
    owner = Payment.customer_id == current_user.id
    if current_user.role == UserRole.LAWYER:
        lawyer_id = await db.scalar(select(Lawyer.id).where(Lawyer.user_id == current_user.id))
        owner = or_(owner, Payment.lawyer_id == lawyer_id)

    query = select(Payment).where(owner)
    if status:
        query = query.where(Payment.status == status)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Payment.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    payments = result.scalars().all()

    return PaymentListResponse(
        count=len(payments),
        total=total,
        total_pages=(total + limit - 1) // limit,
        current_page=page,
        payments=[PaymentResponse.model_validate(p) for p in payments],
    )


@router.get("/{payment_id}", response_model=PaymentEnvelope)
async def get_payment(
    payment_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    payment = await processor.get_payment_or_404(db, payment_id)

    if (
        payment.customer_id != current_user.id
        and current_user.role != UserRole.ADMIN
        and not await processor.is_payment_lawyer(db, payment, current_user)
    ):
        raise ForbiddenError("Not authorized to view this payment")

    booking = await lifecycle.get_booking_or_404(db, payment.booking_id)
    return PaymentEnvelope(
        payment=PaymentResponse.model_validate(payment),
        booking=BookingResponse.model_validate(booking),
    )
