from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, cast

from ..models import BookingStatus, ServiceType
from .errors import InvalidTransitionError, ValidationError
from .locations import Address

MIN_DURATION_MINUTES = 30
MAX_DURATION_MINUTES = 120
MAX_EXTENDED_MINUTES = 30
MAX_FAMILY_MEMBERS = 4
MAX_EXTRA_VISITS = 5
MIN_LEAD_TIME = timedelta(hours=2)

CANCEL_CUTOFF = timedelta(hours=24)
RESCHEDULE_CUTOFF = timedelta(hours=48)

ACTIVE_STATUSES = frozenset({BookingStatus.SCHEDULED, BookingStatus.CONFIRMED})

ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.SCHEDULED: frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}


@dataclass(frozen=True)
class BookingWindow:
    """Half-open [starts_at, ends_at) interval, UTC naive."""

    starts_at: datetime
    ends_at: datetime

    @classmethod
    def from_duration(cls, starts_at: datetime, duration_minutes: int) -> "BookingWindow":
        if duration_minutes <= 0:
            raise ValueError("duration_minutes must be positive")
        return cls(starts_at=starts_at, ends_at=starts_at + timedelta(minutes=duration_minutes))

    def overlaps(self, other: "BookingWindow") -> bool:
        return overlaps(self.starts_at, self.ends_at, other.starts_at, other.ends_at)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and a_end > b_start


@dataclass(frozen=True)
class AddOns:
    extra_visits: int = 0
    family_members: int = 0
    extended_time: int = 0

    def to_snapshot(self) -> dict[str, int]:
        return {
            "extra_visits": self.extra_visits,
            "family_members": self.family_members,
            "extended_time": self.extended_time,
        }


@dataclass(frozen=True)
class BookingRequest:
    service_type: Optional[ServiceType]
    starts_at: Optional[datetime]
    duration_minutes: Optional[int]
    address: Optional[Address]
    add_ons: AddOns = field(default_factory=AddOns)
    special_instructions: Optional[str] = None


def validate_booking_request(request: BookingRequest, *, now: datetime) -> int:
    """
    Pure validation of a booking form.
    Returns the total window length in minutes (duration plus extended time).
    Raises ValidationError naming every offending field.
    """
    missing = [
        name
        for name, value in (
            ("service_type", request.service_type),
            ("starts_at", request.starts_at),
            ("address", request.address),
            ("duration_minutes", request.duration_minutes),
        )
        if value is None
    ]
    if missing:
        raise ValidationError("missing required fields: " + ", ".join(missing), fields=missing)

    starts_at = cast(datetime, request.starts_at)
    duration = cast(int, request.duration_minutes)
    invalid: list[str] = []
    if starts_at.tzinfo is None or starts_at < now + MIN_LEAD_TIME:
        invalid.append("starts_at")
    if not MIN_DURATION_MINUTES <= duration <= MAX_DURATION_MINUTES:
        invalid.append("duration_minutes")
    add_ons = request.add_ons
    if not 0 <= add_ons.extended_time <= MAX_EXTENDED_MINUTES:
        invalid.append("add_ons.extended_time")
    if not 0 <= add_ons.family_members <= MAX_FAMILY_MEMBERS:
        invalid.append("add_ons.family_members")
    if not 0 <= add_ons.extra_visits <= MAX_EXTRA_VISITS:
        invalid.append("add_ons.extra_visits")
    if invalid:
        raise ValidationError("invalid fields: " + ", ".join(invalid), fields=invalid)

    return duration + add_ons.extended_time


def ensure_transition(current: BookingStatus, target: BookingStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(f"cannot move booking from {current} to {target}")


def remaining_before_start(starts_at: datetime, now: datetime) -> timedelta:
    """`starts_at` is UTC naive as stored; `now` is timezone-aware."""
    return starts_at.replace(tzinfo=timezone.utc) - now


def can_cancel(status: BookingStatus, starts_at: datetime, now: datetime) -> bool:
    return status in ACTIVE_STATUSES and remaining_before_start(starts_at, now) > CANCEL_CUTOFF


def can_reschedule(status: BookingStatus, starts_at: datetime, now: datetime) -> bool:
    return status in ACTIVE_STATUSES and remaining_before_start(starts_at, now) > RESCHEDULE_CUTOFF
