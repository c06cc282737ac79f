"""Route comparison schemas."""

from enum import Enum
from typing import List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field

# Sentinel score for routes that cover no cells
NO_DATA = "no data"


class RoutePreference(str, Enum):
    """Route tags, also accepted as the single-selection preference."""

    SAFEST = "safest"
    FASTEST = "fastest"
    SHORTEST = "shortest"


class RouteColor(str, Enum):
    """Display color bucket for a route score."""

    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"
    GRAY = "gray"


class RouteDistance(BaseModel):
    """Route length as reported by the provider."""

    text: str = Field(..., description="Human-readable distance")
    meters: Optional[int] = Field(None, ge=0)


class RouteDuration(BaseModel):
    """Travel time as reported (or estimated) for the route."""

    text: str = Field(..., description="Human-readable duration, prefixed with ~ when estimated")
    seconds: Optional[int] = Field(None, ge=0)


class CandidateRoute(BaseModel):
    """One provider alternative, normalized and (once scored) tagged."""

    summary: str = Field(default="", description="Provider label, usually the main road")
    polyline: str = Field(..., description="Encoded polyline (precision 5)")
    distance: Optional[RouteDistance] = None
    duration: Optional[RouteDuration] = None
    safety_score: Union[float, Literal["no data"]] = Field(
        default=NO_DATA,
        description="Mean cell score (0-10), or 'no data' when the route covers no cells",
    )
    color: RouteColor = RouteColor.GRAY
    tags: List[RoutePreference] = Field(default_factory=list)

    # Working state, never serialized
    points: List[Tuple[float, float]] = Field(default_factory=list, exclude=True)
    cell_ids: List[str] = Field(default_factory=list, exclude=True)

    @property
    def is_scored(self) -> bool:
        return self.safety_score != NO_DATA


class RouteComparisonResponse(BaseModel):
    """Ranked and tagged alternatives."""

    routes: List[CandidateRoute]
    cells_created: int = Field(default=0, description="Cells created lazily while scoring")


class SingleRouteResponse(BaseModel):
    """One route chosen by preference."""

    route: CandidateRoute
    preference: RoutePreference
