from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Protocol, Sequence

from ..models import AvailabilitySlot, Booking, BookingStatus, FeeSource, ServiceType


class SlotRepository(Protocol):
    async def list_for_date(self, day: date, *, available_only: bool = True) -> Sequence[AvailabilitySlot]: ...

    async def get_for_update(self, slot_id: int) -> AvailabilitySlot | None: ...

    async def create_many(
        self,
        *,
        day: date,
        windows: Sequence[tuple[time, time]],
        max_bookings: int,
    ) -> list[AvailabilitySlot]: ...

    async def save(self, slot: AvailabilitySlot) -> AvailabilitySlot: ...


class BookingRepository(Protocol):
    async def list_overlapping(
        self,
        start: datetime,
        end: datetime,
        *,
        for_update: bool = False,
    ) -> Sequence[Booking]: ...

    async def create(
        self,
        *,
        user_id: int,
        service_type: ServiceType,
        starts_at: datetime,
        duration_minutes: int,
        address: dict[str, Any],
        add_ons: dict[str, Any],
        special_instructions: str | None,
        setup_base_fee: int,
        setup_distance_fee: int,
        setup_total_fee: int,
        distance_miles: float,
        travel_minutes: int,
        fee_source: FeeSource,
        status: BookingStatus,
    ) -> Booking: ...

    async def get_for_user(self, booking_id: int, user_id: int) -> Booking | None: ...

    async def get_for_user_for_update(self, booking_id: int, user_id: int) -> Booking | None: ...

    async def get_for_update(self, booking_id: int) -> Booking | None: ...

    async def list_by_user(self, user_id: int) -> list[Booking]: ...

    async def save(self, booking: Booking) -> Booking: ...
