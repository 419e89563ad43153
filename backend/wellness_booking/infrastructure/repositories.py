from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, List, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.repositories import BookingRepository, SlotRepository
from ..models import AvailabilitySlot, Booking, BookingStatus, FeeSource, ServiceType


def _utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SqlAlchemySlotRepository(SlotRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_for_date(self, day: date, *, available_only: bool = True) -> List[AvailabilitySlot]:
        stmt = select(AvailabilitySlot).where(AvailabilitySlot.slot_date == day)
        if available_only:
            stmt = stmt.where(AvailabilitySlot.is_available.is_(True))
        rows = await self.session.scalars(stmt.order_by(AvailabilitySlot.start_time))
        return list(rows.all())

    async def get_for_update(self, slot_id: int) -> AvailabilitySlot | None:
        result = await self.session.scalar(
            select(AvailabilitySlot).where(AvailabilitySlot.id == slot_id).with_for_update()
        )
        return result if isinstance(result, AvailabilitySlot) else None

    async def create_many(
        self,
        *,
        day: date,
        windows: Sequence[tuple[time, time]],
        max_bookings: int,
    ) -> List[AvailabilitySlot]:
        now = _utc_now_naive()
        slots = [
            AvailabilitySlot(
                slot_date=day,
                start_time=start,
                end_time=end,
                is_available=True,
                max_bookings=max_bookings,
                created_at=now,
                updated_at=now,
            )
            for start, end in windows
        ]
        self.session.add_all(slots)
        await self.session.flush()
        return slots

    async def save(self, slot: AvailabilitySlot) -> AvailabilitySlot:
        slot.updated_at = _utc_now_naive()
        self.session.add(slot)
        await self.session.flush()
        return slot


class SqlAlchemyBookingRepository(BookingRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_overlapping(
        self,
        start: datetime,
        end: datetime,
        *,
        for_update: bool = False,
    ) -> List[Booking]:
        # Range test on both ends of the stored window; a booking that began
        # before `start` but runs into it must be found too.
        stmt = (
            select(Booking)
            .where(
                Booking.starts_at < end,
                Booking.ends_at > start,
                Booking.status != BookingStatus.CANCELLED,
            )
            .order_by(Booking.starts_at)
        )
        if for_update:
            stmt = stmt.with_for_update()
        rows = await self.session.scalars(stmt)
        return list(rows.all())

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
    ) -> Booking:
        now = _utc_now_naive()
        booking = Booking(
            user_id=user_id,
            service_type=service_type,
            starts_at=starts_at,
            ends_at=starts_at + timedelta(minutes=duration_minutes),
            duration_minutes=duration_minutes,
            address=address,
            add_ons=add_ons,
            special_instructions=special_instructions,
            setup_base_fee=setup_base_fee,
            setup_distance_fee=setup_distance_fee,
            setup_total_fee=setup_total_fee,
            distance_miles=distance_miles,
            travel_minutes=travel_minutes,
            fee_source=fee_source,
            status=status,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def get_for_user(self, booking_id: int, user_id: int) -> Booking | None:
        stmt = select(Booking).where(Booking.id == booking_id, Booking.user_id == user_id)
        return await self.session.scalar(stmt)

    async def get_for_user_for_update(self, booking_id: int, user_id: int) -> Booking | None:
        stmt = select(Booking).where(Booking.id == booking_id, Booking.user_id == user_id).with_for_update()
        return await self.session.scalar(stmt)

    async def get_for_update(self, booking_id: int) -> Booking | None:
        return await self.session.scalar(select(Booking).where(Booking.id == booking_id).with_for_update())

    async def list_by_user(self, user_id: int) -> List[Booking]:
        stmt = select(Booking).where(Booking.user_id == user_id).order_by(Booking.starts_at)
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def save(self, booking: Booking) -> Booking:
        self.session.add(booking)
        await self.session.flush()
        return booking
