"""Normalization of upstream route payloads into CandidateRoute.

Two provider shapes are supported:

- Google Directions API (legacy JSON): ``overview_polyline.points`` and
  per-leg ``distance``/``duration`` objects of the form ``{text, value}``.
- Google Routes API v2 (``computeRoutes``): ``polyline.encodedPolyline``,
  ``distanceMeters``, ``duration`` as a ``"123s"`` string and optional
  ``localizedValues`` text.

Each field is resolved by an ordered list of extractor functions; the first
extractor that returns a value wins.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

from saferoute.schemas.routing import CandidateRoute, RouteDistance, RouteDuration

logger = logging.getLogger(__name__)

T = TypeVar("T")
Extractor = Callable[[Dict[str, Any]], Optional[T]]

DEFAULT_FALLBACK_SPEED_KMH = 30.0


# =============================================================================
# Text formatting
# =============================================================================

def format_distance(meters: float) -> str:
    """Format meters the way the Directions API does ("850 m", "12.4 km")."""
    if meters < 1000:
        return f"{int(round(meters))} m"
    return f"{meters / 1000:.1f} km"


def format_duration(seconds: float) -> str:
    """Format seconds the way the Directions API does ("1 hour 5 mins")."""
    minutes = max(1, int(round(seconds / 60)))
    hours, minutes = divmod(minutes, 60)
    parts = []
    if hours:
        parts.append(f"{hours} hour" + ("s" if hours > 1 else ""))
    if minutes:
        parts.append(f"{minutes} min" + ("s" if minutes > 1 else ""))
    return " ".join(parts)


def _parse_seconds(value: Any) -> Optional[int]:
    """Parse a protobuf duration string ("754s", "12.5s") or a number."""
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.endswith("s"):
        try:
            return int(float(value[:-1]))
        except ValueError:
            return None
    return None


def _legs(route: Dict[str, Any]) -> List[Dict[str, Any]]:
    legs = route.get("legs")
    return legs if isinstance(legs, list) else []


# =============================================================================
# Polyline extractors
# =============================================================================

def _directions_polyline(route: Dict[str, Any]) -> Optional[str]:
    return (route.get("overview_polyline") or {}).get("points")


def _routes_v2_polyline(route: Dict[str, Any]) -> Optional[str]:
    value = route.get("polyline")
    if isinstance(value, dict):
        return value.get("encodedPolyline")
    return None


def _plain_polyline(route: Dict[str, Any]) -> Optional[str]:
    value = route.get("polyline")
    return value if isinstance(value, str) else None


POLYLINE_EXTRACTORS: Sequence[Extractor[str]] = (
    _directions_polyline,
    _routes_v2_polyline,
    _plain_polyline,
)


# =============================================================================
# Distance extractors
# =============================================================================

def _directions_distance(route: Dict[str, Any]) -> Optional[RouteDistance]:
    legs = [leg for leg in _legs(route) if isinstance(leg.get("distance"), dict)]
    if not legs:
        return None
    if len(legs) == 1:
        distance = legs[0]["distance"]
        meters = distance.get("value")
        if meters is None:
            return None
        return RouteDistance(text=distance.get("text") or format_distance(meters), meters=int(meters))

    total = sum(leg["distance"].get("value") or 0 for leg in legs)
    return RouteDistance(text=format_distance(total), meters=int(total))


def _routes_v2_distance(route: Dict[str, Any]) -> Optional[RouteDistance]:
    meters = route.get("distanceMeters")
    if meters is None:
        return None
    localized = ((route.get("localizedValues") or {}).get("distance") or {}).get("text")
    return RouteDistance(text=localized or format_distance(meters), meters=int(meters))


DISTANCE_EXTRACTORS: Sequence[Extractor[RouteDistance]] = (
    _directions_distance,
    _routes_v2_distance,
)


# =============================================================================
# Duration extractors
# =============================================================================

def _directions_duration(route: Dict[str, Any]) -> Optional[RouteDuration]:
    legs = [leg for leg in _legs(route) if isinstance(leg.get("duration"), dict)]
    if not legs:
        return None
    if len(legs) == 1:
        duration = legs[0]["duration"]
        seconds = duration.get("value")
        if seconds is None:
            return None
        return RouteDuration(text=duration.get("text") or format_duration(seconds), seconds=int(seconds))

    total = sum(leg["duration"].get("value") or 0 for leg in legs)
    return RouteDuration(text=format_duration(total), seconds=int(total))


def _routes_v2_duration(route: Dict[str, Any]) -> Optional[RouteDuration]:
    seconds = _parse_seconds(route.get("duration"))
    if seconds is None:
        seconds = _parse_seconds(route.get("staticDuration"))
    if seconds is None:
        return None
    localized = ((route.get("localizedValues") or {}).get("duration") or {}).get("text")
    return RouteDuration(text=localized or format_duration(seconds), seconds=seconds)


DURATION_EXTRACTORS: Sequence[Extractor[RouteDuration]] = (
    _directions_duration,
    _routes_v2_duration,
)


def _summary(route: Dict[str, Any]) -> str:
    return route.get("summary") or route.get("description") or ""


# =============================================================================
# Normalization
# =============================================================================

def first_resolved(route: Dict[str, Any], extractors: Iterable[Extractor[T]]) -> Optional[T]:
    """Return the first non-empty value produced by the extractors.

    An extractor that trips over an unexpected shape counts as unresolved.
    """
    for extractor in extractors:
        try:
            value = extractor(route)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.debug(f"Extractor {extractor.__name__} failed: {e}")
            continue
        if value:
            return value
    return None


def estimate_duration(distance: RouteDistance, speed_kmh: float) -> RouteDuration:
    """Approximate travel time from distance at a constant average speed."""
    seconds = int(round(distance.meters / (speed_kmh / 3.6)))
    return RouteDuration(text=f"~{format_duration(seconds)}", seconds=seconds)


def normalize_route(
    route: Dict[str, Any],
    fallback_speed_kmh: float = DEFAULT_FALLBACK_SPEED_KMH,
) -> Optional[CandidateRoute]:
    """Convert one provider route into a CandidateRoute.

    Returns None when no polyline can be extracted.
    """
    if not isinstance(route, dict):
        return None

    encoded = first_resolved(route, POLYLINE_EXTRACTORS)
    if not encoded:
        return None

    distance = first_resolved(route, DISTANCE_EXTRACTORS)
    duration = first_resolved(route, DURATION_EXTRACTORS)

    if duration is None and distance is not None and distance.meters is not None:
        duration = estimate_duration(distance, fallback_speed_kmh)
        logger.debug(f"Provider omitted duration, estimated {duration.seconds}s for {distance.meters}m")

    return CandidateRoute(
        summary=_summary(route),
        polyline=encoded,
        distance=distance,
        duration=duration,
    )


def normalize_routes(
    routes: Iterable[Dict[str, Any]],
    fallback_speed_kmh: float = DEFAULT_FALLBACK_SPEED_KMH,
) -> List[CandidateRoute]:
    """Normalize provider routes, dropping those without a polyline."""
    normalized = []
    for index, route in enumerate(routes):
        candidate = normalize_route(route, fallback_speed_kmh)
        if candidate is None:
            logger.warning(f"Dropping route {index}: no polyline field could be resolved")
            continue
        normalized.append(candidate)
    return normalized
