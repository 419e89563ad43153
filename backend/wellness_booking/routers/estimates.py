from typing import Optional

from fastapi import APIRouter, Depends

from ..config import Settings, get_settings
from ..deps import get_dispatch_origin, get_fee_schedule, get_routing_provider
from ..domain.fees import FeeSchedule
from ..domain.locations import GeoPoint, RoutingProvider
from ..schemas import AddressIn, SetupFeeRead
from ..usecases import estimates as estimate_usecase

router = APIRouter(prefix="/estimates", tags=["estimates"])


@router.post("/setup-fee", response_model=SetupFeeRead)
async def estimate_fee(
    payload: AddressIn,
    routing: Optional[RoutingProvider] = Depends(get_routing_provider),
    origin: GeoPoint = Depends(get_dispatch_origin),
    schedule: FeeSchedule = Depends(get_fee_schedule),
    settings: Settings = Depends(get_settings),
) -> SetupFeeRead:
    fee = await estimate_usecase.estimate_setup_fee(
        routing,
        origin=origin,
        address=payload.to_domain(),
        schedule=schedule,
        minutes_per_mile=settings.fallback_minutes_per_mile,
    )
    return SetupFeeRead.from_domain(fee)
