from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal

from ..models import FeeSource


@dataclass(frozen=True)
class FeeSchedule:
    """Setup fee policy. Amounts are in cents."""

    base_fee: int = 7999
    per_mile: int = 500
    free_radius_miles: float = 10.0
    cap: int = 50000


@dataclass(frozen=True)
class SetupFeeCalculation:
    base_fee: int
    distance_fee: int
    total_fee: int
    distance_miles: float
    travel_minutes: int
    source: FeeSource = FeeSource.LIVE


def calculate_setup_fee(
    distance_miles: float,
    travel_minutes: int,
    schedule: FeeSchedule = FeeSchedule(),
    *,
    source: FeeSource = FeeSource.LIVE,
) -> SetupFeeCalculation:
    """
    Base fee plus a per-mile charge beyond the free radius, capped.
    Fractional cents round up so a quote never under-charges.
    """
    if distance_miles < 0:
        raise ValueError("distance_miles must be non-negative")

    # str() keeps 12.3 as 12.3 rather than its binary approximation.
    overage = Decimal(str(distance_miles)) - Decimal(str(schedule.free_radius_miles))
    distance_fee = 0
    if overage > 0:
        distance_fee = int((overage * schedule.per_mile).to_integral_value(rounding=ROUND_CEILING))

    total = min(schedule.base_fee + distance_fee, schedule.cap)
    return SetupFeeCalculation(
        base_fee=schedule.base_fee,
        distance_fee=distance_fee,
        total_fee=total,
        distance_miles=distance_miles,
        travel_minutes=travel_minutes,
        source=source,
    )
