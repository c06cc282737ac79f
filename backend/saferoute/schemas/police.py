"""Police station and police proximity mapping schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from saferoute.schemas.common import Coordinate
from saferoute.schemas.safety import NearestPolice
from saferoute.services.geohash_codec import is_valid_cell_id


class PointOfInterest(BaseModel):
    """Geocoded point of interest as read from the POI store."""

    place_id: str
    name: Optional[str] = None
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class PoliceStationResponse(BaseModel):
    """Police station details."""

    place_id: str
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    geohash: Optional[str] = None
    location: Coordinate
    last_updated: Optional[datetime] = None


class PoliceMappingRequest(BaseModel):
    """Targets of a police proximity pass.

    Explicit ``area_ids`` take precedence; otherwise up to ``limit`` stored
    cells are scanned.
    """

    area_ids: Optional[List[str]] = Field(None, max_length=5000)
    limit: Optional[int] = Field(None, ge=1, le=10000)
    dry_run: bool = False

    @field_validator("area_ids")
    @classmethod
    def validate_area_ids(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        invalid = [area_id for area_id in v if not is_valid_cell_id(area_id)]
        if invalid:
            raise ValueError(f"Invalid cell ids: {', '.join(invalid[:5])}")
        return v


class PoliceMappingResult(BaseModel):
    """Outcome for one cell."""

    area_id: str
    nearest: Optional[NearestPolice] = None
    police_score: Optional[int] = Field(None, ge=0, le=10)
    score: Optional[float] = Field(None, ge=0, le=10, description="Recomputed cell score")


class PoliceMappingResponse(BaseModel):
    """Aggregate outcome of a police proximity pass."""

    processed: int
    updated: int
    dry_run: bool = False
    results: List[PoliceMappingResult] = Field(default_factory=list)
