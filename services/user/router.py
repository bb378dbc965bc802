"""
services/user/router.py
User profile, password, shopping cart and wishlist.
"""

from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking.lifecycle import lawyer_offers_service
from shared.middleware.auth import get_current_user
from shared.models.models import CartItem, Lawyer, Service, User, WishlistItem
from shared.schemas.schemas import (
    CartItemCreate,
    CartItemEnvelope,
    CartItemResponse,
    CartItemUpdate,
    CartResponse,
    MessageResponse,
    PasswordUpdateRequest,
    UserEnvelope,
    UserResponse,
    UserUpdateRequest,
    WishlistItemCreate,
    WishlistItemEnvelope,
    WishlistItemResponse,
    WishlistResponse,
)
from shared.utils.errors import NotFoundError, UnauthorizedError, ValidationError
from shared.utils.security import hash_password, verify_password

router = APIRouter(prefix="/users", tags=["Users"])


# ── Profile ───────────────────────────────────────────────────

@router.get("/profile", response_model=UserEnvelope)
async def get_profile(current_user: User = Depends(get_current_user)):
    """Return the currently authenticated user's profile."""
    return UserEnvelope(user=UserResponse.model_validate(current_user))


@router.put("/profile", response_model=UserEnvelope)
async def update_profile(
    data: UserUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Update name and/or phone.
    Only non-None fields in the request body are updated.
    """
    for field, value in data.model_dump(exclude_none=True).items():
        setattr(current_user, field, value)

    await db.commit()
    return UserEnvelope(message="Profile updated successfully", user=UserResponse.model_validate(current_user))


@router.put("/password", response_model=MessageResponse)
async def update_password(
    data: PasswordUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not verify_password(data.current_password, current_user.password_hash):
        raise UnauthorizedError("Current password is incorrect")

    current_user.password_hash = hash_password(data.new_password)
    await db.commit()
    return MessageResponse(message="Password updated successfully")


# ── Cart ──────────────────────────────────────────────────────

async def _cart_item_response(db: AsyncSession, item: CartItem) -> CartItemResponse:
    """Price a cart line: (base price + chosen lawyer's hourly rate) × quantity."""
    service = await db.get(Service, item.service_id)
    rate = Decimal(0)
    if item.lawyer_id:
        rate = await db.scalar(select(Lawyer.hourly_rate).where(Lawyer.id == item.lawyer_id)) or Decimal(0)

    response = CartItemResponse.model_validate(item)
    if service:
        response.service_name = service.name
        response.item_total = (Decimal(service.base_price) + Decimal(rate)) * item.quantity
    return response


async def _get_cart_item_or_404(db: AsyncSession, item_id: UUID, user: User) -> CartItem:
    result = await db.execute(
        select(CartItem).where(CartItem.id == item_id, CartItem.user_id == user.id)
    )
    item = result.scalar_one_or_none()
    if not item:
        raise NotFoundError("Cart item not found")
    return item


@router.get("/cart", response_model=CartResponse)
async def get_cart(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(CartItem)
        .where(CartItem.user_id == current_user.id)
        .order_by(CartItem.created_at, CartItem.id)
    )
    items = [await _cart_item_response(db, item) for item in result.scalars().all()]
    return CartResponse(
        count=len(items),
        total=sum((i.item_total or Decimal(0) for i in items), Decimal(0)),
        items=items,
    )


@router.post("/cart", response_model=CartItemEnvelope)
async def add_to_cart(
    data: CartItemCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Add a service (optionally with a chosen lawyer). An existing line for the same pair is updated."""
    if not await db.get(Service, data.service_id):
        raise NotFoundError("Service not found")

    if data.lawyer_id:
        if not await db.get(Lawyer, data.lawyer_id):
            raise NotFoundError("Lawyer not found")
        if not await lawyer_offers_service(db, data.lawyer_id, data.service_id):
            raise ValidationError("Selected lawyer does not offer this service")

    lawyer_clause = (
        CartItem.lawyer_id == data.lawyer_id if data.lawyer_id else CartItem.lawyer_id.is_(None)
    )
    result = await db.execute(
        select(CartItem).where(
            CartItem.user_id == current_user.id,
            CartItem.service_id == data.service_id,
            lawyer_clause,
        )
    )
    item = result.scalar_one_or_none()

    if item:
        item.quantity = data.quantity
        for field in ("preferred_date", "preferred_time_slot", "notes"):
            value = getattr(data, field)
            if value is not None:
                setattr(item, field, value)
    else:
        item = CartItem(user_id=current_user.id, **data.model_dump())
        db.add(item)

    await db.flush()
    response = await _cart_item_response(db, item)
    await db.commit()
    return CartItemEnvelope(message="Item added to cart", item=response)


@router.put("/cart/{item_id}", response_model=CartItemEnvelope)
async def update_cart_item(
    item_id: UUID,
    data: CartItemUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    item = await _get_cart_item_or_404(db, item_id, current_user)
    for field, value in data.model_dump(exclude_none=True).items():
        setattr(item, field, value)

    await db.flush()
    response = await _cart_item_response(db, item)
    await db.commit()
    return CartItemEnvelope(message="Cart item updated", item=response)


@router.delete("/cart/{item_id}", response_model=MessageResponse)
async def remove_cart_item(
    item_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    item = await _get_cart_item_or_404(db, item_id, current_user)
    await db.delete(item)
    await db.commit()
    return MessageResponse(message="Item removed from cart")


@router.delete("/cart", response_model=MessageResponse)
async def clear_cart(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await db.execute(delete(CartItem).where(CartItem.user_id == current_user.id))
    await db.commit()
    return MessageResponse(message="Cart cleared")


# ── Wishlist ──────────────────────────────────────────────────

@router.get("/wishlist", response_model=WishlistResponse)
async def get_wishlist(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(WishlistItem)
        .where(WishlistItem.user_id == current_user.id)
        .order_by(WishlistItem.created_at.desc())
    )
    items = result.scalars().all()
    return WishlistResponse(
        count=len(items),
        items=[WishlistItemResponse.model_validate(i) for i in items],
    )


async def _in_wishlist(db: AsyncSession, user: User, data: WishlistItemCreate) -> bool:
    targets = []
    if data.lawyer_id:
        targets.append(WishlistItem.lawyer_id == data.lawyer_id)
    if data.service_id:
        targets.append(WishlistItem.service_id == data.service_id)

    existing = await db.scalar(
        select(WishlistItem.id).where(WishlistItem.user_id == user.id, or_(*targets))
    )
    return existing is not None


@router.post("/wishlist", response_model=WishlistItemEnvelope, status_code=status.HTTP_201_CREATED)
async def add_to_wishlist(
    data: WishlistItemCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Save a lawyer and/or service. Saving the same target twice is rejected."""
    if data.service_id and not await db.get(Service, data.service_id):
        raise NotFoundError("Service not found")
    if data.lawyer_id and not await db.get(Lawyer, data.lawyer_id):
        raise NotFoundError("Lawyer not found")

    if await _in_wishlist(db, current_user, data):
        raise ValidationError("Already in wishlist")

    item = WishlistItem(
        user_id=current_user.id, lawyer_id=data.lawyer_id, service_id=data.service_id
    )
    db.add(item)
    try:
        await db.flush()
    except IntegrityError:
        # A concurrent add saved the same target first
        raise ValidationError("Already in wishlist")

    await db.commit()
    return WishlistItemEnvelope(message="Item added to wishlist", item=WishlistItemResponse.model_validate(item))


@router.delete("/wishlist/{item_id}", response_model=MessageResponse)
async def remove_wishlist_item(
    item_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(WishlistItem).where(
            WishlistItem.id == item_id, WishlistItem.user_id == current_user.id
        )
    )
    item = result.scalar_one_or_none()
    if not item:
        raise NotFoundError("Wishlist item not found")

    await db.delete(item)
    await db.commit()
    return MessageResponse(message="Item removed from wishlist")


@router.delete("/wishlist", response_model=MessageResponse)
async def clear_wishlist(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await db.execute(delete(WishlistItem).where(WishlistItem.user_id == current_user.id))
    await db.commit()
    return MessageResponse(message="Wishlist cleared")
