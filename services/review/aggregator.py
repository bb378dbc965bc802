"""
services/review/aggregator.py
Review writes and the rating aggregates they drive.

Lawyer.rating / Service.rating are always a full re-scan of the reviews
that reference them, computed inside the same transaction as the review
write. The aggregate row is locked first so two reviews for the same
target cannot interleave their reads.
"""

import logging
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    Booking,
    BookingStatus,
    Lawyer,
    Review,
    Service,
    User,
    UserRole,
)
from shared.schemas.schemas import ReviewCreateRequest, ReviewUpdateRequest
from shared.utils.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

Target = Union[type[Lawyer], type[Service]]


# ── Recompute ─────────────────────────────────────────────────

async def _recompute(db: AsyncSession, model: Target, target_id: UUID) -> None:
    target = (
        await db.execute(select(model).where(model.id == target_id).with_for_update())
    ).scalar_one_or_none()
    if target is None:
        return

    column = Review.lawyer_id if model is Lawyer else Review.service_id
    total, count = (
        await db.execute(
            select(func.coalesce(func.sum(Review.rating), 0), func.count(Review.id)).where(
                column == target_id
            )
        )
    ).one()

    target.rating = float(total) / count if count else 0.0
    target.number_of_ratings = count
    logger.debug("%s %s rating -> %.3f over %d reviews", model.__name__, target_id, target.rating, count)


async def recompute_lawyer_rating(db: AsyncSession, lawyer_id: UUID) -> None:
    await _recompute(db, Lawyer, lawyer_id)


async def recompute_service_rating(db: AsyncSession, service_id: UUID) -> None:
    await _recompute(db, Service, service_id)


async def _recompute_targets(db: AsyncSession, review: Review) -> None:
    # Review rows must be visible to the aggregate query
    await db.flush()
    if review.lawyer_id:
        await recompute_lawyer_rating(db, review.lawyer_id)
    if review.service_id:
        await recompute_service_rating(db, review.service_id)
    await db.flush()


# ── Writes ────────────────────────────────────────────────────

async def create_review(db: AsyncSession, customer: User, data: ReviewCreateRequest) -> Review:
    """Review a completed booking; rates only the targets the customer names."""
    if not data.lawyer_id and not data.service_id:
        raise ValidationError("Either lawyer ID or service ID must be provided")

    booking = (
        await db.execute(
            select(Booking)
            .where(
                Booking.id == data.booking_id,
                Booking.customer_id == customer.id,
                Booking.status == BookingStatus.COMPLETED,
            )
            .with_for_update()
        )
    ).scalar_one_or_none()
    if not booking:
        raise NotFoundError("Booking not found or not completed")

    if data.lawyer_id and data.lawyer_id != booking.lawyer_id:
        raise ValidationError("Lawyer does not match the booking")
    if data.service_id and data.service_id != booking.service_id:
        raise ValidationError("Service does not match the booking")

    existing = await db.scalar(select(Review.id).where(Review.booking_id == booking.id))
    if existing or booking.is_reviewed:
        raise ConflictError("Review already exists for this booking")

    review = Review(
        user_id=customer.id,
        booking_id=booking.id,
        lawyer_id=data.lawyer_id,
        service_id=data.service_id,
        rating=data.rating,
        comment=data.comment,
        is_verified=True,
    )
    db.add(review)
    try:
        await db.flush()
    except IntegrityError:
        raise ConflictError("Review already exists for this booking")

    booking.is_reviewed = True
    await _recompute_targets(db, review)

    logger.info("Review %s (%d stars) created for booking %s", review.id, review.rating, booking.id)
    return review


async def _get_review_or_404(db: AsyncSession, review_id: UUID) -> Review:
    review = await db.get(Review, review_id)
    if not review:
        raise NotFoundError("Review not found")
    return review


async def update_review(
    db: AsyncSession, user: User, review_id: UUID, data: ReviewUpdateRequest
) -> Review:
    review = await _get_review_or_404(db, review_id)
    if review.user_id != user.id:
        raise NotFoundError("Review not found")

    if data.rating is not None:
        review.rating = data.rating
    if data.comment is not None:
        review.comment = data.comment

    await _recompute_targets(db, review)
    return review


async def delete_review(db: AsyncSession, user: User, review_id: UUID) -> None:
    """Owner or admin. The booking becomes reviewable again."""
    review = await _get_review_or_404(db, review_id)
    if review.user_id != user.id and user.role != UserRole.ADMIN:
        raise NotFoundError("Review not found")

    booking: Optional[Booking] = await db.get(Booking, review.booking_id)
    if booking:
        booking.is_reviewed = False

    await db.delete(review)
    await _recompute_targets(db, review)
    logger.info("Review %s deleted by user %s", review_id, user.id)
