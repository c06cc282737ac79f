"""Safety cell schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class SafetyFactors(BaseModel):
    """Complete factor record of a cell (0-10 each, 5 is neutral)."""

    lighting: float = Field(default=5, ge=0, le=10)
    crowd: float = Field(default=5, ge=0, le=10)
    police: float = Field(default=5, ge=0, le=10)
    incidents: float = Field(default=5, ge=0, le=10, description="Risk factor, inverted in the score")
    accidents: float = Field(default=5, ge=0, le=10, description="Risk factor, inverted in the score")


class SafetyFactorsPatch(BaseModel):
    """Partial factor record; omitted factors keep their current value."""

    lighting: Optional[float] = Field(default=None, ge=0, le=10)
    crowd: Optional[float] = Field(default=None, ge=0, le=10)
    police: Optional[float] = Field(default=None, ge=0, le=10)
    incidents: Optional[float] = Field(default=None, ge=0, le=10)
    accidents: Optional[float] = Field(default=None, ge=0, le=10)

    def apply_to(self, factors: SafetyFactors) -> SafetyFactors:
        """Return ``factors`` with the provided values merged over it."""
        return factors.model_copy(update=self.model_dump(exclude_none=True))


class NearestPolice(BaseModel):
    """Weak reference to the nearest police station (no copied POI fields)."""

    place_id: str
    distance_meters: float = Field(..., ge=0)


class SafetyCellRecord(BaseModel):
    """Persisted safety record for one grid cell."""

    area_id: str = Field(..., description="Geohash cell id")
    score: float = Field(default=5, ge=0, le=10)
    factors: SafetyFactors = Field(default_factory=SafetyFactors)
    nearest_police: Optional[NearestPolice] = None
    last_updated: Optional[datetime] = None


class CellUpdate(BaseModel):
    """Partial update applied to one stored cell by a bulk write."""

    area_id: str
    factors: SafetyFactors
    score: float = Field(..., ge=0, le=10)
    nearest_police: Optional[NearestPolice] = None


class SafetyCellUpdateRequest(BaseModel):
    """Create or update a cell by area id or by coordinate."""

    area_id: Optional[str] = Field(None, description="Geohash cell id (optional if lat/lng provided)")
    lat: Optional[float] = None
    lng: Optional[float] = None
    factors: SafetyFactorsPatch = Field(default_factory=SafetyFactorsPatch)

    @model_validator(mode="after")
    def check_coordinates_complete(self) -> "SafetyCellUpdateRequest":
        if self.area_id is None and (self.lat is None) != (self.lng is None):
            raise ValueError("lat and lng must be provided together")
        return self
