"""
shared/middleware/auth.py
FastAPI dependencies for authentication and role checks.

A request is authenticated by a Bearer JWT whose jti is not on the Redis
deny-list. Failures raise the domain errors from shared.utils.errors so
they render in the same {success, message} envelope as everything else.
"""

import uuid
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.models.models import Lawyer, User, UserRole
from shared.utils.errors import ForbiddenError, NotFoundError, UnauthorizedError
from shared.utils.security import verify_access_token

bearer_scheme = HTTPBearer(auto_error=False)


class TokenData:
    """Claims of a verified access token."""

    def __init__(self, payload: dict):
        self.user_id: uuid.UUID = _subject(payload)
        self.role: UserRole = UserRole(payload["role"])
        self.email: str = payload["email"]
        self.jti: str = payload["jti"]
        self.payload = payload


def _subject(payload: dict) -> uuid.UUID:
    try:
        return uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        raise UnauthorizedError("Invalid or expired token")


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    redis=Depends(get_redis),
) -> TokenData:
    if not credentials:
        raise UnauthorizedError("Authentication required")

    try:
        payload = verify_access_token(credentials.credentials)
    except JWTError:
        raise UnauthorizedError("Invalid or expired token")

    token = TokenData(payload)
    if await RedisCache(redis).is_token_revoked(token.jti):
        raise UnauthorizedError("Token has been revoked")
    return token


async def get_current_user(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> User:
    """The User behind the token; deactivated accounts are refused."""
    user = await db.get(User, token_data.user_id)
    if not user:
        raise UnauthorizedError("User not found")
    if not user.is_active:
        raise ForbiddenError("User account is inactive")
    return user


class RoleRequired:
    """Dependency factory: only the listed roles get through."""

    def __init__(self, *roles: UserRole):
        self.roles = roles

    async def __call__(self, current_user: User = Depends(get_current_user)) -> User:
        if UserRole(current_user.role) not in self.roles:
            raise ForbiddenError(
                f"Role {UserRole(current_user.role).value} is not allowed to access this resource"
            )
        return current_user


require_lawyer = RoleRequired(UserRole.LAWYER)
require_admin = RoleRequired(UserRole.ADMIN)


async def get_current_lawyer(
    current_user: User = Depends(require_lawyer),
    db: AsyncSession = Depends(get_db),
) -> Lawyer:
    lawyer = await db.scalar(select(Lawyer).where(Lawyer.user_id == current_user.id))
    if not lawyer:
        raise NotFoundError("Lawyer profile not found")
    return lawyer
