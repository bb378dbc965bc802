"""
services/booking/router.py
Booking endpoints. All state changes go through services.booking.lifecycle;
this module handles HTTP, authorization for reads, and notifications.

    pending → confirmed | rejected | cancelled
    confirmed → completed | cancelled
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking import lifecycle
from services.notification import dispatcher
from shared.middleware.auth import get_current_lawyer, get_current_user
from shared.models.models import Booking, BookingStatus, Lawyer, User
from shared.schemas.schemas import (
    BookingCreateRequest,
    BookingEnvelope,
    BookingListResponse,
    BookingResponse,
    BookingStatusUpdate,
    CheckoutRequest,
    CheckoutResponse,
    RescheduleRequest,
    RescheduleResponse,
)
from shared.utils.errors import ForbiddenError

router = APIRouter(prefix="/bookings", tags=["Bookings"])


async def _list_bookings(
    db: AsyncSession, where, page: int, limit: int, booking_status: Optional[BookingStatus]
) -> BookingListResponse:
    query = select(Booking).where(where)
    if booking_status:
        query = query.where(Booking.status == booking_status)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Booking.booking_date.desc(), Booking.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    bookings = result.scalars().all()
    return BookingListResponse(
        count=len(bookings),
        total=total,
        total_pages=(total + limit - 1) // limit,
        current_page=page,
        bookings=[BookingResponse.model_validate(b) for b in bookings],
    )


# ── Creation ──────────────────────────────────────────────────

@router.post("/checkout", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def checkout(
    background_tasks: BackgroundTasks,
    data: Optional[CheckoutRequest] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Turn every cart line into a pending booking and empty the cart.
    All or nothing: one bad line leaves the cart and bookings untouched.
    """
    bookings = await lifecycle.create_bookings_from_cart(db, current_user)
    await db.commit()

    for booking in bookings:
        dispatcher.schedule(background_tasks, "booking", booking.id, "created")

    return CheckoutResponse(
        message="Bookings created successfully",
        total_amount=sum(b.total_amount for b in bookings),
        booking_count=len(bookings),
        payment_method=data.payment_method if data else None,
        bookings=[BookingResponse.model_validate(b) for b in bookings],
    )


@router.post("", response_model=BookingEnvelope, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Book a lawyer for one service. Price = base price + the lawyer's hourly rate."""
    booking = await lifecycle.create_booking(db, current_user, data)
    await db.commit()

    dispatcher.schedule(background_tasks, "booking", booking.id, "created")
    return BookingEnvelope(message="Booking created successfully", booking=BookingResponse.model_validate(booking))


# ── Read Endpoints ────────────────────────────────────────────

@router.get("", response_model=BookingListResponse)
async def my_bookings(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[BookingStatus] = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Bookings made by the authenticated customer."""
    return await _list_bookings(db, Booking.customer_id == current_user.id, page, limit, status)


@router.get("/lawyer", response_model=BookingListResponse)
async def lawyer_bookings(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[BookingStatus] = Query(None),
    lawyer: Lawyer = Depends(get_current_lawyer),
    db: AsyncSession = Depends(get_db),
):
    """Bookings assigned to the authenticated lawyer."""
    return await _list_bookings(db, Booking.lawyer_id == lawyer.id, page, limit, status)


@router.get("/{booking_id}", response_model=BookingEnvelope)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Visible to the booking's customer, its lawyer, and admins."""
    booking = await lifecycle.get_booking_or_404(db, booking_id)
    if await lifecycle.resolve_actor(db, booking, current_user) is None:
        raise ForbiddenError("Not authorized to access this booking")
    return BookingEnvelope(booking=BookingResponse.model_validate(booking))


# ── Transitions ───────────────────────────────────────────────

@router.put("/{booking_id}/status", response_model=BookingEnvelope)
async def update_booking_status(
    booking_id: UUID,
    data: BookingStatusUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Customers may cancel; the assigned lawyer may confirm, complete or
    reject; admins may request any status the transition table allows.
    """
    target = BookingStatus(data.status)
    booking, changed = await lifecycle.update_status(db, booking_id, current_user, target, data.notes)
    await db.commit()

    if changed:
        dispatcher.schedule(background_tasks, "booking", booking.id, lifecycle.STATUS_EVENTS[target])
    return BookingEnvelope(
        message=f"Booking status updated to {target.value}",
        booking=BookingResponse.model_validate(booking),
    )


@router.post("/{booking_id}/reschedule", response_model=RescheduleResponse)
async def reschedule_booking(
    booking_id: UUID,
    data: RescheduleRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel the booking and open a pending replacement at the new time."""
    successor, original = await lifecycle.reschedule(db, booking_id, current_user, data)
    await db.commit()

    dispatcher.schedule(background_tasks, "booking", successor.id, "rescheduled")
    return RescheduleResponse(
        message="Booking rescheduled successfully",
        booking=BookingResponse.model_validate(successor),
        original_booking=BookingResponse.model_validate(original),
    )
