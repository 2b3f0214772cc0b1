from typing import Annotated
import logging

from fastapi import Cookie, Depends, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wishfund.core.errors import AppError, forbidden
from wishfund.core.security import decode_access_token
from wishfund.db.session import get_db
from wishfund.models.models import User
from wishfund.services.payments import PaymentGateway, get_gateway


DbSessionDep = Annotated[AsyncSession, Depends(get_db)]
GatewayDep = Annotated[PaymentGateway, Depends(get_gateway)]
logger = logging.getLogger("wishfund.auth")


def _token_from(request: Request, access_token: str | None) -> str | None:
    if access_token:
        return access_token
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.removeprefix("Bearer ").strip()
    return None


def _user_id_from(token: str) -> int | None:
    payload = decode_access_token(token)
    if not payload or "sub" not in payload:
        return None
    try:
        return int(payload["sub"])
    except (TypeError, ValueError):
        return None


async def get_current_user(
    request: Request,
    db: DbSessionDep,
    access_token: str | None = Cookie(default=None, alias="access_token"),
) -> User:
    token = _token_from(request, access_token)
    if not token:
        logger.info(
            "Auth token missing path=%s ip=%s",
            request.url.path,
            request.client.host if request.client else None,
        )
        raise AppError("Not authenticated", status.HTTP_401_UNAUTHORIZED)

    user_id = _user_id_from(token)
    if user_id is None:
        logger.info("Auth token invalid path=%s", request.url.path)
        raise AppError("Invalid token", status.HTTP_401_UNAUTHORIZED)

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user or user.is_deleted:
        logger.info("Auth user missing path=%s user_id=%s", request.url.path, user_id)
        raise AppError("User not found", status.HTTP_401_UNAUTHORIZED)
    if user.is_suspended:
        raise AppError("Your account is currently suspended", status.HTTP_401_UNAUTHORIZED)

    return user


async def get_optional_user(
    request: Request,
    db: DbSessionDep,
    access_token: str | None = Cookie(default=None, alias="access_token"),
) -> User | None:
    token = _token_from(request, access_token)
    if not token:
        return None
    user_id = _user_id_from(token)
    if user_id is None:
        return None
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None or user.is_deleted or user.is_suspended:
        return None
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]
OptionalUser = Annotated[User | None, Depends(get_optional_user)]


async def require_admin(user: CurrentUser) -> User:
    if not user.is_admin:
        raise forbidden("Admin access required")
    return user


AdminUser = Annotated[User, Depends(require_admin)]


class PageParams:
    def __init__(
        self,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=100),
    ) -> None:
        self.page = page
        self.limit = limit

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


PageDep = Annotated[PageParams, Depends()]
