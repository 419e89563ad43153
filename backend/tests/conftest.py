from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, List, Optional, Sequence

import pytest
from sqlalchemy.exc import OperationalError
from wellness_booking.models import AvailabilitySlot, Booking, BookingStatus, FeeSource, ServiceType


def _make_booking(
    *,
    booking_id: int = 1,
    user_id: int = 1,
    starts_at: datetime,
    duration_minutes: int = 60,
    status: BookingStatus = BookingStatus.SCHEDULED,
    version: int = 1,
) -> Booking:
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return Booking(
        id=booking_id,
        user_id=user_id,
        service_type=ServiceType.COLD_PLUNGE,
        starts_at=starts_at,
        ends_at=starts_at + timedelta(minutes=duration_minutes),
        duration_minutes=duration_minutes,
        address={"street": "1 Main St", "city": "Irvine", "state": "CA", "postal_code": "92618"},
        add_ons={"extra_visits": 0, "family_members": 0, "extended_time": 0},
        status=status,
        special_instructions=None,
        setup_base_fee=7999,
        setup_distance_fee=0,
        setup_total_fee=7999,
        distance_miles=5.0,
        travel_minutes=10,
        fee_source=FeeSource.FALLBACK,
        version=version,
        created_at=now,
        updated_at=now,
    )


def _make_slot(
    *,
    slot_id: int = 1,
    day: date = date(2024, 6, 1),
    start: time = time(10),
    end: time = time(12),
    max_bookings: int = 1,
    is_available: bool = True,
) -> AvailabilitySlot:
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return AvailabilitySlot(
        id=slot_id,
        slot_date=day,
        start_time=start,
        end_time=end,
        is_available=is_available,
        max_bookings=max_bookings,
        created_at=now,
        updated_at=now,
    )


class FakeBookingRepo:
    """In-memory booking store mirroring SqlAlchemyBookingRepository's contract."""

    def __init__(self, bookings: Sequence[Booking] = (), *, fail: bool = False) -> None:
        self.bookings: List[Booking] = list(bookings)
        self.fail = fail
        self.created: List[Booking] = []
        self.saved: List[Booking] = []
        self.locked_reads = 0

    def _check(self) -> None:
        if self.fail:
            raise OperationalError("SELECT", {}, Exception("connection refused"))

    async def list_overlapping(self, start: datetime, end: datetime, *, for_update: bool = False) -> List[Booking]:
        self._check()
        if for_update:
            self.locked_reads += 1
        return [
            b
            for b in self.bookings
            if b.starts_at < end and b.ends_at > start and b.status != BookingStatus.CANCELLED
        ]

    async def create(self, **fields: Any) -> Booking:
        self._check()
        duration = fields["duration_minutes"]
        booking = Booking(
            id=len(self.bookings) + 100,
            ends_at=fields["starts_at"] + timedelta(minutes=duration),
            version=1,
            created_at=fields["starts_at"],
            updated_at=fields["starts_at"],
            **fields,
        )
        self.bookings.append(booking)
        self.created.append(booking)
        return booking

    async def get_for_user(self, booking_id: int, user_id: int) -> Optional[Booking]:
        self._check()
        return next((b for b in self.bookings if b.id == booking_id and b.user_id == user_id), None)

    async def get_for_user_for_update(self, booking_id: int, user_id: int) -> Optional[Booking]:
        return await self.get_for_user(booking_id, user_id)

    async def get_for_update(self, booking_id: int) -> Optional[Booking]:
        self._check()
        return next((b for b in self.bookings if b.id == booking_id), None)

    async def list_by_user(self, user_id: int) -> List[Booking]:
        self._check()
        return [b for b in self.bookings if b.user_id == user_id]

    async def save(self, booking: Booking) -> Booking:
        self._check()
        self.saved.append(booking)
        return booking


class FakeSlotRepo:
    def __init__(self, slots: Sequence[AvailabilitySlot] = ()) -> None:
        self.slots: List[AvailabilitySlot] = list(slots)
        self.saved: List[AvailabilitySlot] = []

    async def list_for_date(self, day: date, *, available_only: bool = True) -> List[AvailabilitySlot]:
        return sorted(
            (s for s in self.slots if s.slot_date == day and (s.is_available or not available_only)),
            key=lambda s: s.start_time,
        )

    async def get_for_update(self, slot_id: int) -> Optional[AvailabilitySlot]:
        return next((s for s in self.slots if s.id == slot_id), None)

    async def create_many(
        self,
        *,
        day: date,
        windows: Sequence[tuple[time, time]],
        max_bookings: int,
    ) -> List[AvailabilitySlot]:
        created = [
            _make_slot(slot_id=len(self.slots) + i + 1, day=day, start=start, end=end, max_bookings=max_bookings)
            for i, (start, end) in enumerate(windows)
        ]
        self.slots.extend(created)
        return created

    async def save(self, slot: AvailabilitySlot) -> AvailabilitySlot:
        self.saved.append(slot)
        return slot


@pytest.fixture
def booking_repo() -> FakeBookingRepo:
    return FakeBookingRepo()


@pytest.fixture
def slot_repo() -> FakeSlotRepo:
    return FakeSlotRepo()


@pytest.fixture
def make_booking() -> Callable[..., Booking]:
    return _make_booking


@pytest.fixture
def make_slot() -> Callable[..., AvailabilitySlot]:
    return _make_slot


@pytest.fixture
def booking_repo_with() -> Callable[..., FakeBookingRepo]:
    return FakeBookingRepo


@pytest.fixture
def slot_repo_with() -> Callable[..., FakeSlotRepo]:
    return FakeSlotRepo
