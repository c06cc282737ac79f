"""Route provider client - fetches alternative routes from Google."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from saferoute.config import settings
from saferoute.schemas.common import Coordinate

logger = logging.getLogger(__name__)

DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"
ROUTES_V2_URL = "https://routes.googleapis.com/directions/v2:computeRoutes"

ROUTES_V2_FIELD_MASK = ",".join([
    "routes.polyline.encodedPolyline",
    "routes.distanceMeters",
    "routes.duration",
    "routes.staticDuration",
    "routes.description",
    "routes.localizedValues",
])

# Directions statuses that mean "no route", not a failure
EMPTY_STATUSES = frozenset({"ZERO_RESULTS", "NOT_FOUND"})

ROUTES_V2_TRAVEL_MODES = {
    "walking": "WALK",
    "driving": "DRIVE",
    "bicycling": "BICYCLE",
    "transit": "TRANSIT",
}


class RouteProviderError(Exception):
    """Raised when the upstream provider fails or rejects the request."""
    pass


def _routes_v2_waypoint(value: str) -> Dict[str, Any]:
    coordinate = Coordinate.parse_lat_lng(value)
    if coordinate is None:
        return {"address": value}
    return {
        "location": {
            "latLng": {"latitude": coordinate.latitude, "longitude": coordinate.longitude}
        }
    }


class RouteProvider:
    """Fetches raw alternative routes for an origin/destination pair.

    The raw payloads are returned untouched; shape differences between the
    Directions and Routes v2 APIs are handled by the route normalizer.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api: Optional[str] = None,
        travel_mode: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.google_maps_key
        self.api = api or settings.route_provider_api
        self.travel_mode = travel_mode or settings.route_travel_mode
        self.client = client or httpx.AsyncClient(timeout=settings.provider_timeout_seconds)

    async def fetch_routes(self, origin: str, destination: str) -> List[Dict[str, Any]]:
        """Fetch alternative routes.

        Returns:
            Raw route objects, possibly empty

        Raises:
            RouteProviderError: On transport failure or an error status
        """
        try:
            if self.api == "routes":
                return await self._fetch_routes_v2(origin, destination)
            return await self._fetch_directions(origin, destination)
        except httpx.HTTPError as e:
            logger.error(f"Route provider request failed: {e}")
            raise RouteProviderError(f"Route provider unavailable: {e}") from e

    async def _fetch_directions(self, origin: str, destination: str) -> List[Dict[str, Any]]:
        response = await self.client.get(
            DIRECTIONS_URL,
            params={
                "origin": origin,
                "destination": destination,
                "alternatives": "true",
                "mode": self.travel_mode,
                "key": self.api_key,
            },
        )
        response.raise_for_status()
        payload = response.json()

        status = payload.get("status", "OK")
        if status in EMPTY_STATUSES:
            return []
        if status != "OK":
            message = payload.get("error_message") or status
            raise RouteProviderError(f"Directions API returned {status}: {message}")

        routes = payload.get("routes") or []
        logger.debug(f"Directions API returned {len(routes)} routes")
        return routes

    async def _fetch_routes_v2(self, origin: str, destination: str) -> List[Dict[str, Any]]:
        body = {
            "origin": _routes_v2_waypoint(origin),
            "destination": _routes_v2_waypoint(destination),
            "travelMode": ROUTES_V2_TRAVEL_MODES.get(self.travel_mode.lower(), "WALK"),
            "computeAlternativeRoutes": True,
        }
        response = await self.client.post(
            ROUTES_V2_URL,
            json=body,
            headers={
                "X-Goog-Api-Key": self.api_key,
                "X-Goog-FieldMask": ROUTES_V2_FIELD_MASK,
            },
        )
        response.raise_for_status()

        routes = response.json().get("routes") or []
        logger.debug(f"Routes API returned {len(routes)} routes")
        return routes

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()


# Singleton instance
route_provider = RouteProvider()
