"""
services/auth/router.py
Email/password authentication.
Implements: Register → Login (JWT issue) → Logout (JWT deny-list)
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from shared.middleware.auth import TokenData, get_current_user, get_token_data
from shared.models.models import Lawyer, User, UserRole
from shared.schemas.schemas import (
    AuthResponse,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    UserResponse,
)
from shared.utils.errors import UnauthorizedError, ValidationError
from shared.utils.security import (
    create_access_token,
    get_token_remaining_ttl,
    hash_password,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Authentication"])


# ── Helper ────────────────────────────────────────────────────

def _issue_token(user: User, message: str) -> AuthResponse:
    role = UserRole(user.role)
    token, _ = create_access_token(user_id=str(user.id), role=role.value, email=user.email)
    return AuthResponse(
        message=message,
        token=token,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponse.model_validate(user),
    )


# ── Endpoints ─────────────────────────────────────────────────

@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a customer or lawyer",
)
async def register(data: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """
    Create an account and return an access token.
    Lawyers also get an empty Lawyer profile to fill in later.
    """
    email = data.email.lower()
    existing = await db.scalar(select(User.id).where(User.email == email))
    if existing:
        raise ValidationError("User already exists")

    user = User(
        name=data.name,
        email=email,
        password_hash=hash_password(data.password),
        phone=data.phone,
        role=UserRole(data.role),
    )
    db.add(user)
    await db.flush()

    if user.role == UserRole.LAWYER:
        db.add(Lawyer(user_id=user.id))

    await db.commit()
    logger.info("Registered %s account %s", user.role.value, user.id)
    return _issue_token(user, "User registered successfully")


@router.post("/login", response_model=AuthResponse, summary="Login with email and password")
async def login(data: LoginRequest, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(User).where(User.email == data.email.lower()))
    user = result.scalar_one_or_none()

    if not user or not verify_password(data.password, user.password_hash):
        raise UnauthorizedError("Invalid email or password")
    if not user.is_active:
        raise UnauthorizedError("User account is inactive")

    return _issue_token(user, "Login successful")


@router.post("/logout", response_model=MessageResponse, summary="Logout user")
async def logout(
    current_user: User = Depends(get_current_user),
    token_data: TokenData = Depends(get_token_data),
    redis=Depends(get_redis),
):
    """Add the presented JWT to the Redis deny-list until it would have expired."""
    ttl = get_token_remaining_ttl(token_data.payload)
    if ttl > 0:
        await RedisCache(redis).revoke_token(token_data.jti, ttl)
    return MessageResponse(message="Logged out successfully")
