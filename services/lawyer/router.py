"""
services/lawyer/router.py
Lawyer directory (public) and a lawyer's own profile management.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import String, cast, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_lawyer
from shared.models.models import Lawyer, User, utcnow
from shared.schemas.schemas import (
    LawyerEnvelope,
    LawyerListResponse,
    LawyerResponse,
    LawyerUpdateRequest,
)
from shared.utils.errors import NotFoundError

router = APIRouter(prefix="/users", tags=["Lawyers"])

_SORTS = {
    "rating": (Lawyer.rating.desc(), Lawyer.number_of_ratings.desc()),
    "hourly_rate": (Lawyer.hourly_rate.asc(),),
    "-hourly_rate": (Lawyer.hourly_rate.desc(),),
    "experience": (Lawyer.experience.desc(),),
}


def _to_response(lawyer: Lawyer, user: Optional[User]) -> LawyerResponse:
    """Lawyer columns plus name and email from the joined User."""
    response = LawyerResponse.model_validate(lawyer)
    if user:
        response.name = user.name
        response.email = user.email
    return response


# ── Public Endpoints ──────────────────────────────────────────

@router.get("/lawyers", response_model=LawyerListResponse)
async def list_lawyers(
    expertise: Optional[str] = Query(None, max_length=100),
    min_rating: Optional[float] = Query(None, ge=0, le=5),
    verified: Optional[bool] = Query(None),
    sort: str = Query("rating", pattern="^(rating|hourly_rate|-hourly_rate|experience)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Active lawyers, filterable by area of expertise, minimum rating and verification."""
    query = (
        select(Lawyer, User)
        .join(User, User.id == Lawyer.user_id)
        .where(Lawyer.is_active == True, User.is_active == True)  # noqa: E712
    )
    if expertise:
        query = query.where(cast(Lawyer.areas_of_expertise, String).ilike(f"%{expertise}%"))
    if min_rating is not None:
        query = query.where(Lawyer.rating >= min_rating)
    if verified is not None:
        query = query.where(Lawyer.is_verified == verified)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(*_SORTS[sort], Lawyer.id).offset((page - 1) * limit).limit(limit)
    )
    rows = result.all()

    return LawyerListResponse(
        count=len(rows),
        total=total,
        total_pages=(total + limit - 1) // limit,
        current_page=page,
        lawyers=[_to_response(lawyer, user) for lawyer, user in rows],
    )


@router.get("/lawyers/{lawyer_id}", response_model=LawyerEnvelope)
async def get_lawyer(lawyer_id: UUID, db: AsyncSession = Depends(get_db)):
    row = (
        await db.execute(
            select(Lawyer, User).join(User, User.id == Lawyer.user_id).where(Lawyer.id == lawyer_id)
        )
    ).first()
    if not row:
        raise NotFoundError("Lawyer not found")
    return LawyerEnvelope(lawyer=_to_response(*row))


# ── Lawyer's Own Profile ──────────────────────────────────────

@router.put("/lawyer/profile", response_model=LawyerEnvelope)
async def update_my_profile(
    data: LawyerUpdateRequest,
    lawyer: Lawyer = Depends(get_current_lawyer),
    db: AsyncSession = Depends(get_db),
):
    """
    Update the authenticated lawyer's profile.
    Rating fields are derived from reviews and cannot be set here.
    """
    for field, value in data.model_dump(exclude_none=True).items():
        setattr(lawyer, field, value)

    await db.commit()
    user = await db.get(User, lawyer.user_id)
    return LawyerEnvelope(message="Lawyer profile updated successfully", lawyer=_to_response(lawyer, user))


@router.put("/lawyer/documents", response_model=LawyerEnvelope)
async def update_my_documents(
    lawyer: Lawyer = Depends(get_current_lawyer),
    db: AsyncSession = Depends(get_db),
):
    """Record that the lawyer has uploaded verification documents. Admins verify them separately."""
    lawyer.documents_uploaded_at = utcnow()

    await db.commit()
    user = await db.get(User, lawyer.user_id)
    return LawyerEnvelope(message="Documents uploaded successfully", lawyer=_to_response(lawyer, user))
