from datetime import date, time
from typing import Any, Dict, List
from zoneinfo import ZoneInfo

from ..domain.errors import SlotNotFoundError, ValidationError
from ..domain.repositories import BookingRepository, SlotRepository
from ..domain.services import overlaps
from ..models import AvailabilitySlot
from ..utils.time import local_day_bounds, local_to_utc_naive
from .store import store_guard

DAY_OPENS_AT = 8
DAY_CLOSES_AT = 20
SLOT_HOURS = 2


async def list_availability(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    *,
    day: date,
    tz: ZoneInfo,
) -> List[Dict[str, Any]]:
    """Bookable slots for `day`, each with the number of active bookings touching it."""
    day_start, day_end = local_day_bounds(day, tz)
    with store_guard("availability lookup", day=day.isoformat()):
        slots = await slot_repo.list_for_date(day, available_only=True)
        bookings = await booking_repo.list_overlapping(day_start, day_end)

    items: List[Dict[str, Any]] = []
    for slot in slots:
        if not slot.is_available:
            continue
        slot_start = local_to_utc_naive(slot.slot_date, slot.start_time, tz)
        slot_end = local_to_utc_naive(slot.slot_date, slot.end_time, tz)
        current = sum(1 for b in bookings if overlaps(b.starts_at, b.ends_at, slot_start, slot_end))
        if current >= slot.max_bookings:
            continue
        items.append({"slot": slot, "current_bookings": current})
    return items


def default_day_windows() -> List[tuple[time, time]]:
    return [
        (time(hour=h), time(hour=h + SLOT_HOURS))
        for h in range(DAY_OPENS_AT, DAY_CLOSES_AT, SLOT_HOURS)
    ]


async def generate_day_slots(
    slot_repo: SlotRepository,
    *,
    day: date,
    max_bookings: int = 1,
) -> List[AvailabilitySlot]:
    """Create the default two-hour windows for `day`, skipping ones that exist."""
    if max_bookings < 1:
        raise ValidationError("max_bookings must be >= 1", fields=["max_bookings"])
    with store_guard("slot generation", day=day.isoformat()):
        existing = await slot_repo.list_for_date(day, available_only=False)
        taken = {slot.start_time for slot in existing}
        windows = [w for w in default_day_windows() if w[0] not in taken]
        if not windows:
            return []
        return await slot_repo.create_many(day=day, windows=windows, max_bookings=max_bookings)


async def update_slot(
    slot_repo: SlotRepository,
    *,
    slot_id: int,
    is_available: bool | None = None,
    max_bookings: int | None = None,
) -> AvailabilitySlot:
    if max_bookings is not None and max_bookings < 1:
        raise ValidationError("max_bookings must be >= 1", fields=["max_bookings"])
    with store_guard("slot update", slot_id=slot_id):
        slot = await slot_repo.get_for_update(slot_id)
        if slot is None:
            raise SlotNotFoundError("slot not found")
        if is_available is not None:
            slot.is_available = is_available
        if max_bookings is not None:
            slot.max_bookings = max_bookings
        return await slot_repo.save(slot)
