import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from ..domain.errors import (
    BookingConflictError,
    BookingNotFoundError,
    CancelNotAllowedError,
    RescheduleNotAllowedError,
    StoreUnavailableError,
    ValidationError,
    VersionConflictError,
)
from ..domain.fees import FeeSchedule
from ..domain.locations import DEFAULT_MINUTES_PER_MILE, Address, GeoPoint, RoutingProvider
from ..domain.repositories import BookingRepository
from ..domain.services import (
    MIN_LEAD_TIME,
    BookingRequest,
    BookingWindow,
    can_cancel,
    can_reschedule,
    ensure_transition,
    validate_booking_request,
)
from ..models import Booking, BookingStatus
from ..utils.time import to_utc_naive
from .estimates import estimate_setup_fee
from .store import store_guard

logger = logging.getLogger(__name__)


async def find_conflicts(
    booking_repo: BookingRepository,
    *,
    starts_at: datetime,
    duration_minutes: int,
    exclude_user_id: Optional[int] = None,
    for_update: bool = False,
) -> list[Booking]:
    """
    Active bookings of other users whose window intersects the proposed one.
    `starts_at` is UTC naive. Store failures surface as StoreUnavailableError.
    """
    proposed = BookingWindow.from_duration(starts_at, duration_minutes)
    with store_guard("conflict check", starts_at=starts_at.isoformat(), duration_minutes=duration_minutes):
        candidates = await booking_repo.list_overlapping(
            proposed.starts_at,
            proposed.ends_at,
            for_update=for_update,
        )
    return [
        b
        for b in candidates
        if b.status != BookingStatus.CANCELLED
        and proposed.overlaps(BookingWindow(b.starts_at, b.ends_at))
        and (exclude_user_id is None or b.user_id != exclude_user_id)
    ]


async def has_conflict(
    booking_repo: BookingRepository,
    *,
    starts_at: datetime,
    duration_minutes: int,
    exclude_user_id: Optional[int] = None,
) -> bool:
    """Fail-closed: when the store cannot be read the window is treated as taken."""
    try:
        conflicts = await find_conflicts(
            booking_repo,
            starts_at=starts_at,
            duration_minutes=duration_minutes,
            exclude_user_id=exclude_user_id,
        )
    except StoreUnavailableError:
        logger.warning("conflict check could not reach the store; reporting conflict")
        return True
    except Exception:
        logger.exception(
            "conflict check failed unexpectedly; reporting conflict",
            extra={"starts_at": starts_at.isoformat(), "duration_minutes": duration_minutes},
        )
        return True
    return bool(conflicts)


def _raise_conflict(conflicts: Sequence[Booking]) -> None:
    raise BookingConflictError(
        "Booking conflict detected. Please choose a different time.",
        conflicts=[(b.starts_at, b.ends_at) for b in conflicts],
    )


async def create_booking(
    booking_repo: BookingRepository,
    routing: Optional[RoutingProvider],
    *,
    request: BookingRequest,
    user_id: int,
    origin: GeoPoint,
    schedule: FeeSchedule = FeeSchedule(),
    minutes_per_mile: float = DEFAULT_MINUTES_PER_MILE,
    now: datetime | None = None,
) -> Booking:
    """
    Validate, quote the setup fee, then re-check conflicts and insert.
    Must run inside the caller's transaction so the locking conflict read and
    the insert commit together.
    """
    now = now or datetime.now(timezone.utc)
    total_minutes = validate_booking_request(request, now=now)
    # validate_booking_request guarantees these are present
    address: Address = request.address  # type: ignore[assignment]
    starts_at = to_utc_naive(request.starts_at)  # type: ignore[arg-type]

    fee = await estimate_setup_fee(
        routing,
        origin=origin,
        address=address,
        schedule=schedule,
        minutes_per_mile=minutes_per_mile,
        now=now,
    )

    conflicts = await find_conflicts(
        booking_repo,
        starts_at=starts_at,
        duration_minutes=total_minutes,
        exclude_user_id=user_id,
        for_update=True,
    )
    if conflicts:
        _raise_conflict(conflicts)

    with store_guard("booking insert", user_id=user_id, starts_at=starts_at.isoformat()):
        booking = await booking_repo.create(
            user_id=user_id,
            service_type=request.service_type,  # type: ignore[arg-type]
            starts_at=starts_at,
            duration_minutes=total_minutes,
            address=address.to_snapshot(),
            add_ons=request.add_ons.to_snapshot(),
            special_instructions=request.special_instructions,
            setup_base_fee=fee.base_fee,
            setup_distance_fee=fee.distance_fee,
            setup_total_fee=fee.total_fee,
            distance_miles=fee.distance_miles,
            travel_minutes=fee.travel_minutes,
            fee_source=fee.source,
            status=BookingStatus.SCHEDULED,
        )
    return booking


async def cancel_booking(
    booking_repo: BookingRepository,
    *,
    booking_id: int,
    user_id: int,
    version: Optional[int] = None,
    now: datetime | None = None,
) -> tuple[Booking, BookingStatus]:
    """Returns the booking and the status it had before this call."""
    now = now or datetime.now(timezone.utc)
    with store_guard("booking cancel", booking_id=booking_id, user_id=user_id):
        booking = await booking_repo.get_for_user_for_update(booking_id, user_id)
        if booking is None:
            raise BookingNotFoundError("booking not found")
        previous = booking.status
        # Idempotent: already cancelled returns as-is
        if previous == BookingStatus.CANCELLED:
            return booking, previous
        if version is not None and booking.version != version:
            raise VersionConflictError("version mismatch")
        if not can_cancel(previous, booking.starts_at, now):
            raise CancelNotAllowedError("bookings can only be cancelled more than 24 hours ahead")

        booking.status = BookingStatus.CANCELLED
        booking.version += 1
        booking.updated_at = now.astimezone(timezone.utc).replace(tzinfo=None)
        updated = await booking_repo.save(booking)
    return updated, previous


async def reschedule_booking(
    booking_repo: BookingRepository,
    *,
    booking_id: int,
    user_id: int,
    new_starts_at: datetime,
    version: Optional[int] = None,
    now: datetime | None = None,
) -> tuple[Booking, datetime]:
    """Move a booking to a new start time. Returns the booking and its previous start."""
    now = now or datetime.now(timezone.utc)
    if new_starts_at.tzinfo is None or new_starts_at < now + MIN_LEAD_TIME:
        raise ValidationError("new start time must be timezone-aware and at least 2 hours ahead", fields=["starts_at"])
    target = to_utc_naive(new_starts_at)

    with store_guard("booking reschedule", booking_id=booking_id, user_id=user_id):
        booking = await booking_repo.get_for_user_for_update(booking_id, user_id)
    if booking is None:
        raise BookingNotFoundError("booking not found")
    if version is not None and booking.version != version:
        raise VersionConflictError("version mismatch")
    if not can_reschedule(booking.status, booking.starts_at, now):
        raise RescheduleNotAllowedError("bookings can only be rescheduled more than 48 hours ahead")

    conflicts = await find_conflicts(
        booking_repo,
        starts_at=target,
        duration_minutes=booking.duration_minutes,
        exclude_user_id=user_id,
        for_update=True,
    )
    if conflicts:
        _raise_conflict(conflicts)

    previous_start = booking.starts_at
    window = BookingWindow.from_duration(target, booking.duration_minutes)
    booking.starts_at = window.starts_at
    booking.ends_at = window.ends_at
    booking.version += 1
    booking.updated_at = now.astimezone(timezone.utc).replace(tzinfo=None)
    with store_guard("booking reschedule", booking_id=booking_id, user_id=user_id):
        updated = await booking_repo.save(booking)
    return updated, previous_start


async def advance_booking_status(
    booking_repo: BookingRepository,
    *,
    booking_id: int,
    to_status: BookingStatus,
    now: datetime | None = None,
) -> tuple[Booking, BookingStatus]:
    """Operational status change (confirm, start, complete, no-show)."""
    now = now or datetime.now(timezone.utc)
    with store_guard("booking status change", booking_id=booking_id):
        booking = await booking_repo.get_for_update(booking_id)
        if booking is None:
            raise BookingNotFoundError("booking not found")
        previous = booking.status
        ensure_transition(previous, to_status)
        booking.status = to_status
        booking.version += 1
        booking.updated_at = now.astimezone(timezone.utc).replace(tzinfo=None)
        updated = await booking_repo.save(booking)
    return updated, previous


async def list_user_bookings(booking_repo: BookingRepository, *, user_id: int) -> list[Booking]:
    with store_guard("booking list", user_id=user_id):
        return await booking_repo.list_by_user(user_id)


async def get_user_booking(
    booking_repo: BookingRepository,
    *,
    booking_id: int,
    user_id: int,
) -> Booking | None:
    with store_guard("booking lookup", booking_id=booking_id, user_id=user_id):
        return await booking_repo.get_for_user(booking_id, user_id)
