import logging
from typing import AsyncIterator, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, get_settings
from .database import async_session
from .domain.fees import FeeSchedule
from .domain.locations import GeoPoint, RoutingProvider
from .infrastructure.routing import DistanceMatrixClient
from .models import User
from .utils.auth import OPERATOR_ROLES, decode_access_claims, parse_bearer

logger = logging.getLogger(__name__)

_UNAUTHORIZED_HEADERS = {"WWW-Authenticate": "Bearer"}


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


async def _authenticate(authorization: Optional[str], session: AsyncSession) -> tuple[int, str]:
    token = parse_bearer(authorization)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Bearer token required",
            headers=_UNAUTHORIZED_HEADERS,
        )
    settings = get_settings()
    try:
        user_id, role = decode_access_claims(token, secret=settings.auth_secret, algorithms=[settings.auth_algorithm])
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers=_UNAUTHORIZED_HEADERS,
        ) from exc

    try:
        exists = await session.scalar(select(User.id).where(User.id == user_id))
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("user lookup failed", extra={"user_id": user_id})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="user lookup failed") from exc
    # End the implicit read transaction so routes can open their own with session.begin().
    await session.rollback()
    if exists is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown user",
            headers=_UNAUTHORIZED_HEADERS,
        )
    return user_id, role


async def get_current_user_id(
    authorization: Optional[str] = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> int:
    user_id, _ = await _authenticate(authorization, session)
    return user_id


async def get_operator_user_id(
    authorization: Optional[str] = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> int:
    """Like get_current_user_id, but only for operator or admin tokens."""
    user_id, role = await _authenticate(authorization, session)
    if role not in OPERATOR_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="operator role required")
    return user_id


def get_routing_provider(settings: Settings = Depends(get_settings)) -> Optional[RoutingProvider]:
    if not settings.routing_api_key:
        return None
    return DistanceMatrixClient(
        api_key=settings.routing_api_key,
        base_url=settings.routing_base_url,
        timeout=settings.routing_timeout_seconds,
    )


def get_dispatch_origin(settings: Settings = Depends(get_settings)) -> GeoPoint:
    return GeoPoint(settings.dispatch_latitude, settings.dispatch_longitude)


def get_fee_schedule(settings: Settings = Depends(get_settings)) -> FeeSchedule:
    return FeeSchedule(
        base_fee=settings.setup_base_fee_cents,
        per_mile=settings.setup_per_mile_cents,
        free_radius_miles=settings.setup_free_radius_miles,
        cap=settings.setup_fee_cap_cents,
    )
