# Pydantic schemas
from saferoute.schemas.common import (
    Coordinate,
    BoundingBox,
    GeoJSONPolygon,
    GeoJSONFeature,
    GeoJSONFeatureCollection,
)
from saferoute.schemas.safety import (
    SafetyFactors,
    SafetyFactorsPatch,
    NearestPolice,
    SafetyCellRecord,
    CellUpdate,
    SafetyCellUpdateRequest,
)
from saferoute.schemas.routing import (
    NO_DATA,
    RoutePreference,
    RouteColor,
    RouteDistance,
    RouteDuration,
    CandidateRoute,
    RouteComparisonResponse,
    SingleRouteResponse,
)
from saferoute.schemas.police import (
    PointOfInterest,
    PoliceStationResponse,
    PoliceMappingRequest,
    PoliceMappingResult,
    PoliceMappingResponse,
)

__all__ = [
    "Coordinate",
    "BoundingBox",
    "GeoJSONPolygon",
    "GeoJSONFeature",
    "GeoJSONFeatureCollection",
    "SafetyFactors",
    "SafetyFactorsPatch",
    "NearestPolice",
    "SafetyCellRecord",
    "CellUpdate",
    "SafetyCellUpdateRequest",
    "NO_DATA",
    "RoutePreference",
    "RouteColor",
    "RouteDistance",
    "RouteDuration",
    "CandidateRoute",
    "RouteComparisonResponse",
    "SingleRouteResponse",
    "PointOfInterest",
    "PoliceStationResponse",
    "PoliceMappingRequest",
    "PoliceMappingResult",
    "PoliceMappingResponse",
]
