from datetime import date
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_current_user_id, get_operator_user_id, get_session
from ..domain.errors import SlotNotFoundError, StoreUnavailableError, ValidationError
from ..infrastructure.repositories import SqlAlchemyBookingRepository, SqlAlchemySlotRepository
from ..schemas import SlotAvailability, SlotGenerate, SlotRead, SlotUpdate
from ..usecases import slots as slot_usecase
from ..usecases.store import store_guard
from ..utils.time import business_tz

router = APIRouter(prefix="/slots", tags=["slots"])


@router.get(
    "/availability",
    response_model=List[SlotAvailability],
    dependencies=[Depends(get_current_user_id)],
)
async def list_availability(
    day: date = Query(..., alias="date", description="Business-local calendar date (YYYY-MM-DD)"),
    session: AsyncSession = Depends(get_session),
) -> list[SlotAvailability]:
    slot_repo = SqlAlchemySlotRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        rows = await slot_usecase.list_availability(slot_repo, booking_repo, day=day, tz=business_tz())
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return [SlotAvailability.from_db(slot=row["slot"], current_bookings=row["current_bookings"]) for row in rows]


@router.post(
    "/generate",
    response_model=List[SlotRead],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(get_operator_user_id)],
)
async def generate_slots(
    payload: SlotGenerate,
    session: AsyncSession = Depends(get_session),
) -> list[SlotRead]:
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        # A concurrent run hitting the unique (date, start_time) key surfaces as
        # 503; retrying skips the windows it created.
        with store_guard("slot generation commit", day=payload.date.isoformat()):
            async with session.begin():
                slots = await slot_usecase.generate_day_slots(
                    slot_repo,
                    day=payload.date,
                    max_bookings=payload.max_bookings,
                )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return [SlotRead.from_db(slot=slot) for slot in slots]


@router.patch("/{slot_id}", response_model=SlotRead, dependencies=[Depends(get_operator_user_id)])
async def update_slot(
    payload: SlotUpdate,
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> SlotRead:
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        with store_guard("slot update commit", slot_id=slot_id):
            async with session.begin():
                slot = await slot_usecase.update_slot(
                    slot_repo,
                    slot_id=slot_id,
                    is_available=payload.is_available,
                    max_bookings=payload.max_bookings,
                )
    except SlotNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="slot not found")
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return SlotRead.from_db(slot=slot)
