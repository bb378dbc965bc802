"""
services/catalog/router.py
Service catalog: categories and legal services, with the lawyers that
offer each service. Reads are public; writes are admin-only.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.middleware.auth import require_admin
from shared.models.models import Category, Lawyer, Service, User, service_lawyers
from shared.schemas.schemas import (
    CategoryCreate,
    CategoryEnvelope,
    CategoryListResponse,
    CategoryResponse,
    CategoryUpdate,
    LawyerResponse,
    MessageResponse,
    ServiceCreate,
    ServiceDetailEnvelope,
    ServiceEnvelope,
    ServiceLawyersUpdate,
    ServiceListResponse,
    ServiceResponse,
    ServiceUpdate,
)
from shared.utils.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/services", tags=["Services"])

_SORTS = {
    "price": (Service.base_price.asc(),),
    "-price": (Service.base_price.desc(),),
    "rating": (Service.rating.desc(), Service.number_of_ratings.desc()),
    "popularity": (Service.popularity_score.desc(),),
    "newest": (Service.created_at.desc(),),
}


# ── Helpers ───────────────────────────────────────────────────

async def _get_category_or_404(db: AsyncSession, category_id: UUID) -> Category:
    category = await db.get(Category, category_id)
    if not category:
        raise NotFoundError("Category not found")
    return category


async def _get_service_or_404(db: AsyncSession, service_id: UUID) -> Service:
    service = await db.get(Service, service_id)
    if not service:
        raise NotFoundError("Service not found")
    return service


async def _lawyer_ids(db: AsyncSession, service_ids: list[UUID]) -> dict[UUID, list[UUID]]:
    """service id -> offering lawyer ids, in attachment order."""
    mapping: dict[UUID, list[UUID]] = {sid: [] for sid in service_ids}
    if not service_ids:
        return mapping
    result = await db.execute(
        select(service_lawyers.c.service_id, service_lawyers.c.lawyer_id)
        .where(service_lawyers.c.service_id.in_(service_ids))
        .order_by(service_lawyers.c.created_at, service_lawyers.c.lawyer_id)
    )
    for service_id, lawyer_id in result.all():
        mapping[service_id].append(lawyer_id)
    return mapping


async def _service_response(db: AsyncSession, service: Service) -> ServiceResponse:
    response = ServiceResponse.model_validate(service)
    response.lawyer_ids = (await _lawyer_ids(db, [service.id]))[service.id]
    return response


async def _set_lawyers(db: AsyncSession, service: Service, lawyer_ids: list[UUID]) -> None:
    """Replace the set of lawyers offering a service. Unknown ids are rejected."""
    wanted = list(dict.fromkeys(lawyer_ids))
    if wanted:
        found = set((await db.execute(select(Lawyer.id).where(Lawyer.id.in_(wanted)))).scalars())
        missing = [str(lid) for lid in wanted if lid not in found]
        if missing:
            raise ValidationError(f"Lawyers not found: {', '.join(missing)}")

    await db.execute(delete(service_lawyers).where(service_lawyers.c.service_id == service.id))
    if wanted:
        await db.execute(
            insert(service_lawyers),
            [{"service_id": service.id, "lawyer_id": lid} for lid in wanted],
        )


async def _invalidate_categories(redis) -> None:
    await RedisCache(redis).delete(RedisCache.CATEGORIES_KEY)


# ── Categories ────────────────────────────────────────────────

@router.get("/categories", response_model=CategoryListResponse)
async def list_categories(db: AsyncSession = Depends(get_db), redis=Depends(get_redis)):
    """Active categories ordered by `order`, then name. Cached in Redis."""
    cache = RedisCache(redis)
    cached = await cache.get(RedisCache.CATEGORIES_KEY)
    if cached is not None:
        return CategoryListResponse(count=len(cached), categories=cached)

    result = await db.execute(
        select(Category)
        .where(Category.is_active == True)  # noqa: E712
        .order_by(Category.order, Category.name)
    )
    categories = [CategoryResponse.model_validate(c) for c in result.scalars()]
    await cache.set(RedisCache.CATEGORIES_KEY, [c.model_dump(mode="json") for c in categories])
    return CategoryListResponse(count=len(categories), categories=categories)


@router.get("/categories/{category_id}", response_model=CategoryEnvelope)
async def get_category(category_id: UUID, db: AsyncSession = Depends(get_db)):
    category = await _get_category_or_404(db, category_id)
    return CategoryEnvelope(category=CategoryResponse.model_validate(category))


@router.post("/categories", response_model=CategoryEnvelope, status_code=status.HTTP_201_CREATED)
async def create_category(
    data: CategoryCreate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    if await db.scalar(select(Category.id).where(Category.name == data.name)):
        raise ValidationError("Category already exists")
    if data.parent_category_id:
        await _get_category_or_404(db, data.parent_category_id)

    category = Category(**data.model_dump())
    db.add(category)
    await db.commit()
    await _invalidate_categories(redis)
    return CategoryEnvelope(message="Category created successfully", category=CategoryResponse.model_validate(category))


@router.put("/categories/{category_id}", response_model=CategoryEnvelope)
async def update_category(
    category_id: UUID,
    data: CategoryUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    category = await _get_category_or_404(db, category_id)
    updates = data.model_dump(exclude_none=True)

    if "name" in updates and updates["name"] != category.name:
        if await db.scalar(select(Category.id).where(Category.name == updates["name"])):
            raise ValidationError("Category already exists")
    if updates.get("parent_category_id") == category.id:
        raise ValidationError("A category cannot be its own parent")

    for field, value in updates.items():
        setattr(category, field, value)

    await db.commit()
    await _invalidate_categories(redis)
    return CategoryEnvelope(message="Category updated successfully", category=CategoryResponse.model_validate(category))


@router.delete("/categories/{category_id}", response_model=MessageResponse)
async def delete_category(
    category_id: UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    category = await _get_category_or_404(db, category_id)
    if await db.scalar(select(Service.id).where(Service.category_id == category.id).limit(1)):
        raise ConflictError("Category still has services")

    await db.delete(category)
    await db.commit()
    await _invalidate_categories(redis)
    return MessageResponse(message="Category deleted successfully")


# ── Services (public) ─────────────────────────────────────────

@router.get("", response_model=ServiceListResponse)
async def list_services(
    category: Optional[UUID] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    featured: Optional[bool] = Query(None),
    sort: str = Query("newest", pattern="^(price|-price|rating|popularity|newest)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Active services with optional filters. `search` matches name or description."""
    query = select(Service).where(Service.is_active == True)  # noqa: E712
    if category:
        query = query.where(Service.category_id == category)
    if search:
        pattern = f"%{search}%"
        query = query.where(or_(Service.name.ilike(pattern), Service.description.ilike(pattern)))
    if min_price is not None:
        query = query.where(Service.base_price >= min_price)
    if max_price is not None:
        query = query.where(Service.base_price <= max_price)
    if featured is not None:
        query = query.where(Service.featured == featured)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(*_SORTS[sort], Service.id).offset((page - 1) * limit).limit(limit)
    )
    services = result.scalars().all()
    lawyer_map = await _lawyer_ids(db, [s.id for s in services])

    responses = []
    for service in services:
        response = ServiceResponse.model_validate(service)
        response.lawyer_ids = lawyer_map[service.id]
        responses.append(response)

    return ServiceListResponse(
        count=len(responses),
        total=total,
        total_pages=(total + limit - 1) // limit,
        current_page=page,
        services=responses,
    )


@router.get("/{service_id}", response_model=ServiceDetailEnvelope)
async def get_service(service_id: UUID, db: AsyncSession = Depends(get_db)):
    """Service detail with offering lawyers. Each view bumps popularity_score."""
    service = await _get_service_or_404(db, service_id)

    await db.execute(
        update(Service)
        .where(Service.id == service.id)
        .values(popularity_score=Service.popularity_score + 1)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(service)

    result = await db.execute(
        select(Lawyer, User)
        .join(User, User.id == Lawyer.user_id)
        .join(service_lawyers, service_lawyers.c.lawyer_id == Lawyer.id)
        .where(service_lawyers.c.service_id == service.id)
        .order_by(service_lawyers.c.created_at, Lawyer.id)
    )
    lawyers = []
    for lawyer, user in result.all():
        response = LawyerResponse.model_validate(lawyer)
        response.name, response.email = user.name, user.email
        lawyers.append(response)

    service_response = ServiceResponse.model_validate(service)
    service_response.lawyer_ids = [lawyer.id for lawyer in lawyers]
    return ServiceDetailEnvelope(service=service_response, lawyers=lawyers)


# ── Services (admin) ──────────────────────────────────────────

@router.post("", response_model=ServiceEnvelope, status_code=status.HTTP_201_CREATED)
async def create_service(
    data: ServiceCreate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await _get_category_or_404(db, data.category_id)

    service = Service(**data.model_dump(exclude={"lawyer_ids"}))
    db.add(service)
    await db.flush()
    await _set_lawyers(db, service, data.lawyer_ids)
    await db.commit()

    logger.info("Service %s created by admin %s", service.id, admin.id)
    return ServiceEnvelope(message="Service created successfully", service=await _service_response(db, service))


@router.put("/{service_id}", response_model=ServiceEnvelope)
async def update_service(
    service_id: UUID,
    data: ServiceUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    service = await _get_service_or_404(db, service_id)
    updates = data.model_dump(exclude_none=True)
    if "category_id" in updates:
        await _get_category_or_404(db, updates["category_id"])

    for field, value in updates.items():
        setattr(service, field, value)

    await db.commit()
    return ServiceEnvelope(message="Service updated successfully", service=await _service_response(db, service))


@router.put("/{service_id}/lawyers", response_model=ServiceEnvelope)
async def set_service_lawyers(
    service_id: UUID,
    data: ServiceLawyersUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Replace the lawyers offering a service."""
    service = await _get_service_or_404(db, service_id)
    await _set_lawyers(db, service, data.lawyer_ids)
    await db.commit()
    return ServiceEnvelope(message="Service lawyers updated", service=await _service_response(db, service))


@router.delete("/{service_id}", response_model=MessageResponse)
async def delete_service(
    service_id: UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    service = await _get_service_or_404(db, service_id)
    await db.delete(service)
    try:
        await db.commit()
    except IntegrityError:
        raise ConflictError("Service has bookings and cannot be deleted")

    logger.info("Service %s deleted by admin %s", service_id, admin.id)
    return MessageResponse(message="Service deleted successfully")
