"""
services/review/router.py
Reviews of completed bookings, and the public review listings for
services and lawyers. Mounted under /services alongside the catalog.
"""

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.notification import dispatcher
from services.review import aggregator
from shared.middleware.auth import get_current_user
from shared.models.models import Lawyer, Review, Service, User
from shared.schemas.schemas import (
    MessageResponse,
    ReviewCreateRequest,
    ReviewEnvelope,
    ReviewListResponse,
    ReviewResponse,
    ReviewUpdateRequest,
)
from shared.utils.errors import NotFoundError

router = APIRouter(prefix="/services", tags=["Reviews"])


async def _page_reviews(db: AsyncSession, query, page: int, limit: int) -> tuple[list[Review], int]:
    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Review.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    return list(result.scalars()), total


# ── Writes ────────────────────────────────────────────────────

@router.post("/reviews", response_model=ReviewEnvelope, status_code=status.HTTP_201_CREATED)
async def create_review(
    data: ReviewCreateRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Review a completed booking.
    - One review per booking
    - Only the booking's customer may review
    - Lawyer and service ratings are recomputed in the same transaction
    """
    review = await aggregator.create_review(db, current_user, data)
    await db.commit()

    if review.lawyer_id:
        dispatcher.schedule(background_tasks, "review", review.id, "created")
    return ReviewEnvelope(message="Review submitted successfully", review=ReviewResponse.model_validate(review))


@router.get("/reviews/user", response_model=ReviewListResponse)
async def my_reviews(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    reviews, total = await _page_reviews(
        db, select(Review).where(Review.user_id == current_user.id), page, limit
    )
    return ReviewListResponse(
        count=len(reviews),
        total=total,
        total_pages=(total + limit - 1) // limit,
        current_page=page,
        reviews=[ReviewResponse.model_validate(r) for r in reviews],
    )


@router.put("/reviews/{review_id}", response_model=ReviewEnvelope)
async def update_review(
    review_id: UUID,
    data: ReviewUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    review = await aggregator.update_review(db, current_user, review_id, data)
    await db.commit()
    return ReviewEnvelope(message="Review updated successfully", review=ReviewResponse.model_validate(review))


@router.delete("/reviews/{review_id}", response_model=MessageResponse)
async def delete_review(
    review_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Owner or admin removes a review; the affected ratings are recomputed."""
    await aggregator.delete_review(db, current_user, review_id)
    await db.commit()
    return MessageResponse(message="Review deleted successfully")


# ── Public Listings ───────────────────────────────────────────

@router.get("/lawyers/{lawyer_id}/reviews", response_model=ReviewListResponse)
async def lawyer_reviews(
    lawyer_id: UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Public: published reviews for a lawyer, with the current rating."""
    lawyer = await db.get(Lawyer, lawyer_id)
    if not lawyer:
        raise NotFoundError("Lawyer not found")

    reviews, total = await _page_reviews(
        db,
        select(Review).where(Review.lawyer_id == lawyer_id, Review.is_published == True),  # noqa: E712
        page,
        limit,
    )
    return ReviewListResponse(
        count=len(reviews),
        total=total,
        total_pages=(total + limit - 1) // limit,
        current_page=page,
        rating=lawyer.rating,
        number_of_ratings=lawyer.number_of_ratings,
        reviews=[ReviewResponse.model_validate(r) for r in reviews],
    )


@router.get("/{service_id}/reviews", response_model=ReviewListResponse)
async def service_reviews(
    service_id: UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Public: published reviews for a service, with the current rating."""
    service = await db.get(Service, service_id)
    if not service:
        raise NotFoundError("Service not found")

    reviews, total = await _page_reviews(
        db,
        select(Review).where(Review.service_id == service_id, Review.is_published == True),  # noqa: E712
        page,
        limit,
    )
    return ReviewListResponse(
        count=len(reviews),
        total=total,
        total_pages=(total + limit - 1) // limit,
        current_page=page,
        rating=service.rating,
        number_of_ratings=service.number_of_ratings,
        reviews=[ReviewResponse.model_validate(r) for r in reviews],
    )
