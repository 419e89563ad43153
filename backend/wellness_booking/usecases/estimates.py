from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Optional, Sequence

from ..domain.errors import RoutingUnavailableError
from ..domain.fees import FeeSchedule, SetupFeeCalculation, calculate_setup_fee
from ..domain.locations import (
    DEFAULT_MINUTES_PER_MILE,
    FALLBACK_ZONES,
    Address,
    DistanceEstimate,
    FallbackZone,
    GeoPoint,
    RoutingProvider,
    fallback_estimate,
)
from ..models import FeeSource

logger = logging.getLogger(__name__)

METERS_PER_MILE = 1609.344


async def estimate_distance(
    routing: Optional[RoutingProvider],
    *,
    origin: GeoPoint,
    destination: Address,
    zones: Sequence[FallbackZone] = FALLBACK_ZONES,
    minutes_per_mile: float = DEFAULT_MINUTES_PER_MILE,
    now: datetime | None = None,
) -> DistanceEstimate:
    """
    Live traffic-aware estimate when the routing provider answers, otherwise the
    postal-code zone heuristic. Never raises.
    """
    departure = now or datetime.now(timezone.utc)
    if routing is not None:
        try:
            route = await routing.route(origin, destination, departure)
        except RoutingUnavailableError as exc:
            logger.warning(
                "estimation degraded: live routing unavailable (%s), using zone fallback",
                exc,
                extra={"postal_code": destination.postal_code},
            )
        except Exception:
            logger.exception(
                "estimation degraded: routing provider failed unexpectedly, using zone fallback",
                extra={"postal_code": destination.postal_code},
            )
        else:
            seconds = route.duration_in_traffic_seconds
            if seconds is None:
                seconds = route.duration_seconds
            if route.distance_meters >= 0 and seconds >= 0:
                return DistanceEstimate(
                    distance_miles=round(route.distance_meters / METERS_PER_MILE, 1),
                    travel_minutes=math.ceil(seconds / 60),
                    source=FeeSource.LIVE,
                )
            logger.warning(
                "estimation degraded: routing returned a negative route, using zone fallback",
                extra={"postal_code": destination.postal_code},
            )
    else:
        logger.warning(
            "estimation degraded: no routing provider configured, using zone fallback",
            extra={"postal_code": destination.postal_code},
        )

    return fallback_estimate(destination, zones, minutes_per_mile=minutes_per_mile)


async def estimate_setup_fee(
    routing: Optional[RoutingProvider],
    *,
    origin: GeoPoint,
    address: Address,
    schedule: FeeSchedule = FeeSchedule(),
    minutes_per_mile: float = DEFAULT_MINUTES_PER_MILE,
    now: datetime | None = None,
) -> SetupFeeCalculation:
    estimate = await estimate_distance(
        routing,
        origin=origin,
        destination=address,
        minutes_per_mile=minutes_per_mile,
        now=now,
    )
    return calculate_setup_fee(
        estimate.distance_miles,
        estimate.travel_minutes,
        schedule,
        source=estimate.source,
    )
