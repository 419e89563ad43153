"""Addresses, distance estimates and the static postal-code fallback table.

The fallback table is consulted only when live routing is unavailable. Zones
are evaluated in order and the first matching postal-code range wins; any
postal code outside every range (or one that is not numeric) resolves to the
conservative default zone.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Protocol, Sequence

from ..models import FeeSource


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float

    def as_query(self) -> str:
        return f"{self.latitude},{self.longitude}"


@dataclass(frozen=True)
class Address:
    street: str
    city: str
    state: str
    postal_code: Optional[str] = None
    location: Optional[GeoPoint] = None
    place_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.location is None and not self.postal_code:
            raise ValueError("postal_code is required when no geocoordinate is given")

    def formatted(self) -> str:
        parts = [self.street, self.city, f"{self.state} {self.postal_code or ''}".strip()]
        return ", ".join(p for p in parts if p)

    def to_snapshot(self) -> dict[str, Any]:
        snapshot: dict[str, Any] = {
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "place_id": self.place_id,
        }
        if self.location is not None:
            snapshot["latitude"] = self.location.latitude
            snapshot["longitude"] = self.location.longitude
        return snapshot


@dataclass(frozen=True)
class DistanceEstimate:
    distance_miles: float
    travel_minutes: int
    source: FeeSource


@dataclass(frozen=True)
class FallbackZone:
    name: str
    range_start: int
    range_end: int
    distance_miles: float

    def contains(self, postal: int) -> bool:
        return self.range_start <= postal <= self.range_end


FALLBACK_ZONES: tuple[FallbackZone, ...] = (
    FallbackZone("beverly_hills", 90210, 90299, 5.0),
    FallbackZone("central_la", 90001, 90099, 15.0),
    FallbackZone("san_fernando_valley", 91000, 91999, 25.0),
)
DEFAULT_FALLBACK_ZONE = FallbackZone("outlying", 0, 99999, 20.0)

DEFAULT_MINUTES_PER_MILE = 2.0


def classify_postal_code(
    postal_code: Optional[str],
    zones: Sequence[FallbackZone] = FALLBACK_ZONES,
    default: FallbackZone = DEFAULT_FALLBACK_ZONE,
) -> FallbackZone:
    if not postal_code:
        return default
    # ZIP+4 ("92660-1234") classifies by the five-digit prefix.
    head = postal_code.strip().split("-", 1)[0]
    if not head.isdigit():
        return default
    value = int(head)
    for zone in zones:
        if zone.contains(value):
            return zone
    return default


def fallback_estimate(
    destination: Address,
    zones: Sequence[FallbackZone] = FALLBACK_ZONES,
    *,
    minutes_per_mile: float = DEFAULT_MINUTES_PER_MILE,
) -> DistanceEstimate:
    zone = classify_postal_code(destination.postal_code, zones)
    return DistanceEstimate(
        distance_miles=zone.distance_miles,
        travel_minutes=math.ceil(zone.distance_miles * minutes_per_mile),
        source=FeeSource.FALLBACK,
    )


@dataclass(frozen=True)
class RouteResult:
    distance_meters: int
    duration_seconds: int
    duration_in_traffic_seconds: Optional[int] = None


class RoutingProvider(Protocol):
    async def route(self, origin: GeoPoint, destination: Address, departure_time: datetime) -> RouteResult: ...
