import logging
import re
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, get_settings
from ..deps import (
    get_current_user_id,
    get_dispatch_origin,
    get_fee_schedule,
    get_operator_user_id,
    get_routing_provider,
    get_session,
)
from ..domain.errors import (
    BookingConflictError,
    BookingNotFoundError,
    CancelNotAllowedError,
    InvalidTransitionError,
    RescheduleNotAllowedError,
    StoreUnavailableError,
    ValidationError,
    VersionConflictError,
)
from ..domain.fees import FeeSchedule
from ..domain.locations import GeoPoint, RoutingProvider
from ..infrastructure.repositories import SqlAlchemyBookingRepository
from ..schemas import BookingCancel, BookingCreate, BookingRead, BookingReschedule, BookingStatusChange
from ..usecases import bookings as booking_usecase
from ..usecases.store import store_guard
from ..utils.audit_log import emit_audit_log
from ..utils.time import business_tz, utc_naive_to_local

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["bookings"])

_ETAG_RE = re.compile(r'^(?:W/)?"(\d+)"$')


def _extract_version(if_match: Optional[str], payload: Optional[BookingCancel | BookingReschedule]) -> Optional[int]:
    """If-Match wins over the body version; neither given means no version check."""
    if if_match is not None:
        match = _ETAG_RE.match(if_match.strip())
        if match is None or int(match.group(1)) < 1:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid If-Match header")
        return int(match.group(1))
    version = getattr(payload, "version", None) if payload is not None else None
    if version is not None and version < 1:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="version must be >= 1")
    return version


def _conflict_detail(exc: BookingConflictError) -> dict[str, Any]:
    tz = business_tz()
    return {
        "message": str(exc),
        "conflicts": [
            {
                "starts_at": utc_naive_to_local(start, tz).isoformat(),
                "ends_at": utc_naive_to_local(end, tz).isoformat(),
            }
            for start, end in exc.conflicts
        ],
    }


def _audit_or_500(**kwargs: Any) -> None:
    try:
        emit_audit_log(**kwargs)
    except RuntimeError:
        logger.exception("audit log emission failed", extra={"action": kwargs.get("action")})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failure")


@router.post("/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    routing: Optional[RoutingProvider] = Depends(get_routing_provider),
    origin: GeoPoint = Depends(get_dispatch_origin),
    schedule: FeeSchedule = Depends(get_fee_schedule),
    settings: Settings = Depends(get_settings),
) -> BookingRead:
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        with store_guard("booking create commit", user_id=user_id):
            async with session.begin():
                booking = await booking_usecase.create_booking(
                    booking_repo,
                    routing,
                    request=payload.to_domain(),
                    user_id=user_id,
                    origin=origin,
                    schedule=schedule,
                    minutes_per_mile=settings.fallback_minutes_per_mile,
                )
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(exc), "fields": exc.fields},
        )
    except BookingConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=_conflict_detail(exc))
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))

    _audit_or_500(
        action="booking.created",
        initiator="user",
        booking_id=booking.id,
        user_id=booking.user_id,
        service_type=booking.service_type,
        starts_at=booking.starts_at,
        duration_minutes=booking.duration_minutes,
        status_from=None,
        status_to=booking.status,
        version=booking.version,
        setup_total_fee=booking.setup_total_fee,
        extra={"fee_source": booking.fee_source.value},
    )
    return BookingRead.from_db(booking=booking)


@router.get("/me/bookings", response_model=List[BookingRead])
async def list_my_bookings(
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> list[BookingRead]:
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        rows = await booking_usecase.list_user_bookings(booking_repo, user_id=user_id)
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return [BookingRead.from_db(booking=booking) for booking in rows]


@router.get("/me/bookings/{booking_id}", response_model=BookingRead)
async def get_my_booking(
    booking_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> BookingRead:
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        booking = await booking_usecase.get_user_booking(booking_repo, booking_id=booking_id, user_id=user_id)
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    if booking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="booking not found")
    return BookingRead.from_db(booking=booking)


@router.post("/me/bookings/{booking_id}/cancel", response_model=BookingRead)
async def cancel_booking(
    booking_id: int = Path(..., ge=1),
    payload: Optional[BookingCancel] = None,
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> BookingRead:
    version = _extract_version(if_match, payload)
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        with store_guard("booking cancel commit", booking_id=booking_id, user_id=user_id):
            async with session.begin():
                updated, previous = await booking_usecase.cancel_booking(
                    booking_repo,
                    booking_id=booking_id,
                    user_id=user_id,
                    version=version,
                )
    except BookingNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="booking not found")
    except VersionConflictError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="version mismatch")
    except CancelNotAllowedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))

    if previous != updated.status:
        _audit_or_500(
            action="booking.cancelled",
            initiator="user",
            booking_id=updated.id,
            user_id=updated.user_id,
            service_type=updated.service_type,
            starts_at=updated.starts_at,
            duration_minutes=updated.duration_minutes,
            status_from=previous,
            status_to=updated.status,
            version=updated.version,
        )
    return BookingRead.from_db(booking=updated)


@router.post("/me/bookings/{booking_id}/reschedule", response_model=BookingRead)
async def reschedule_booking(
    payload: BookingReschedule,
    booking_id: int = Path(..., ge=1),
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> BookingRead:
    version = _extract_version(if_match, payload)
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        with store_guard("booking reschedule commit", booking_id=booking_id, user_id=user_id):
            async with session.begin():
                updated, previous_start = await booking_usecase.reschedule_booking(
                    booking_repo,
                    booking_id=booking_id,
                    user_id=user_id,
                    new_starts_at=payload.starts_at,
                    version=version,
                )
    except BookingNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="booking not found")
    except VersionConflictError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="version mismatch")
    except RescheduleNotAllowedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(exc), "fields": exc.fields},
        )
    except BookingConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=_conflict_detail(exc))
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))

    _audit_or_500(
        action="booking.rescheduled",
        initiator="user",
        booking_id=updated.id,
        user_id=updated.user_id,
        service_type=updated.service_type,
        starts_at=updated.starts_at,
        duration_minutes=updated.duration_minutes,
        status_from=updated.status,
        status_to=updated.status,
        version=updated.version,
        extra={"starts_at_from": previous_start},
    )
    return BookingRead.from_db(booking=updated)


@router.post("/operator/bookings/{booking_id}/status", response_model=BookingRead)
async def change_booking_status(
    payload: BookingStatusChange,
    booking_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    operator_id: int = Depends(get_operator_user_id),
) -> BookingRead:
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        with store_guard("booking status commit", booking_id=booking_id, operator_id=operator_id):
            async with session.begin():
                updated, previous = await booking_usecase.advance_booking_status(
                    booking_repo,
                    booking_id=booking_id,
                    to_status=payload.status,
                )
    except BookingNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="booking not found")
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))

    _audit_or_500(
        action="booking.status_changed",
        initiator="operator",
        booking_id=updated.id,
        user_id=updated.user_id,
        service_type=updated.service_type,
        starts_at=updated.starts_at,
        duration_minutes=updated.duration_minutes,
        status_from=previous,
        status_to=updated.status,
        version=updated.version,
        extra={"operator_id": operator_id},
    )
    return BookingRead.from_db(booking=updated)
