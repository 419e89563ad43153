from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

import httpx

from ..domain.errors import RoutingUnavailableError
from ..domain.locations import Address, GeoPoint, RouteResult, RoutingProvider

DEFAULT_TIMEOUT = 3.0


def destination_query(destination: Address) -> str:
    if destination.place_id:
        return f"place_id:{destination.place_id}"
    if destination.location is not None:
        return destination.location.as_query()
    return destination.formatted()


class DistanceMatrixClient(RoutingProvider):
    """Traffic-aware driving distance from a Distance Matrix style HTTP API."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.transport = transport

    async def route(self, origin: GeoPoint, destination: Address, departure_time: datetime) -> RouteResult:
        if not self.api_key:
            raise RoutingUnavailableError("routing api key not configured")

        params = {
            "origins": origin.as_query(),
            "destinations": destination_query(destination),
            "mode": "driving",
            "units": "imperial",
            "departure_time": str(int(departure_time.timestamp())),
            "key": self.api_key,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.get(self.base_url, params=params)
                resp.raise_for_status()
                payload = resp.json()
        except httpx.TimeoutException as exc:
            raise RoutingUnavailableError("routing provider timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise RoutingUnavailableError(f"routing provider returned {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise RoutingUnavailableError("routing provider unreachable or sent invalid JSON") from exc

        return parse_distance_matrix(payload)


def parse_distance_matrix(payload: Any) -> RouteResult:
    if not isinstance(payload, dict):
        raise RoutingUnavailableError("unexpected routing payload")
    status = payload.get("status")
    if status != "OK":
        raise RoutingUnavailableError(f"routing status {status}")
    try:
        element = payload["rows"][0]["elements"][0]
    except (KeyError, IndexError, TypeError) as exc:
        raise RoutingUnavailableError("routing payload has no elements") from exc
    if not isinstance(element, dict):
        raise RoutingUnavailableError("routing element is not an object")
    if element.get("status") != "OK":
        raise RoutingUnavailableError(f"routing element status {element.get('status')}")

    in_traffic: Optional[int] = None
    try:
        distance = int(element["distance"]["value"])
        duration = int(element["duration"]["value"])
        traffic = element.get("duration_in_traffic")
        if isinstance(traffic, dict) and traffic.get("value") is not None:
            in_traffic = int(traffic["value"])
    except (KeyError, TypeError, ValueError, OverflowError) as exc:
        raise RoutingUnavailableError("routing element has unusable distance or duration") from exc
    if distance < 0 or duration < 0 or (in_traffic is not None and in_traffic < 0):
        raise RoutingUnavailableError("routing element has negative distance or duration")

    return RouteResult(
        distance_meters=distance,
        duration_seconds=duration,
        duration_in_traffic_seconds=in_traffic,
    )
