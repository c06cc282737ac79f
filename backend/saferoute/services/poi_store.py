"""Read access to geocoded police stations (points of interest)."""

import abc
from typing import List, Optional

from geoalchemy2 import Geography
from geoalchemy2.functions import (
    ST_Distance,
    ST_Intersects,
    ST_MakeEnvelope,
    ST_MakePoint,
    ST_SetSRID,
    ST_X,
    ST_Y,
)
from sqlalchemy import cast, select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from saferoute.models.police_station import PoliceStation
from saferoute.schemas.common import BoundingBox, Coordinate
from saferoute.schemas.police import PointOfInterest, PoliceStationResponse
from saferoute.services.cell_store import StoreUnavailableError


class PoiStore(abc.ABC):
    """Police stations, populated by an external ingestion job."""

    @abc.abstractmethod
    async def nearest(self, lat: float, lng: float) -> Optional[PointOfInterest]:
        """Closest station by spherical distance, or None when there are none."""

    @abc.abstractmethod
    async def get(self, place_id: str) -> Optional[PoliceStationResponse]:
        """Station details by place id."""

    @abc.abstractmethod
    async def list(self, bbox: Optional[BoundingBox] = None, limit: int = 500) -> List[PoliceStationResponse]:
        """Stations, optionally restricted to a bounding box."""


class SqlPoiStore(PoiStore):
    """PostGIS implementation bound to one request session."""

    def __init__(self, db: AsyncSession):
        self._db = db

    def _station_columns(self):
        return (
            PoliceStation,
            ST_Y(PoliceStation.location).label("lat"),
            ST_X(PoliceStation.location).label("lng"),
        )

    @staticmethod
    def _to_response(row) -> PoliceStationResponse:
        station = row.PoliceStation
        return PoliceStationResponse(
            place_id=station.place_id,
            name=station.name,
            address=station.address,
            phone=station.phone,
            geohash=station.geohash,
            location=Coordinate(latitude=row.lat, longitude=row.lng),
            last_updated=station.last_updated,
        )

    async def nearest(self, lat: float, lng: float) -> Optional[PointOfInterest]:
        point = ST_SetSRID(ST_MakePoint(lng, lat), 4326)
        query = (
            select(
                PoliceStation.place_id,
                PoliceStation.name,
                ST_Y(PoliceStation.location).label("lat"),
                ST_X(PoliceStation.location).label("lng"),
            )
            .order_by(
                ST_Distance(
                    cast(PoliceStation.location, Geography),
                    cast(point, Geography),
                )
            )
            .limit(1)
        )

        try:
            result = await self._db.execute(query)
        except (OperationalError, InterfaceError, OSError) as e:
            raise StoreUnavailableError(f"POI store unreachable: {e}") from e

        row = result.first()
        if row is None:
            return None
        return PointOfInterest(place_id=row.place_id, name=row.name, latitude=row.lat, longitude=row.lng)

    async def get(self, place_id: str) -> Optional[PoliceStationResponse]:
        query = select(*self._station_columns()).where(PoliceStation.place_id == place_id)
        try:
            result = await self._db.execute(query)
        except (OperationalError, InterfaceError, OSError) as e:
            raise StoreUnavailableError(f"POI store unreachable: {e}") from e

        row = result.first()
        return self._to_response(row) if row is not None else None

    async def list(self, bbox: Optional[BoundingBox] = None, limit: int = 500) -> List[PoliceStationResponse]:
        query = select(*self._station_columns())
        if bbox is not None:
            envelope = ST_MakeEnvelope(bbox.min_lon, bbox.min_lat, bbox.max_lon, bbox.max_lat, 4326)
            query = query.where(ST_Intersects(PoliceStation.location, envelope))

        try:
            result = await self._db.execute(query.order_by(PoliceStation.place_id).limit(limit))
        except (OperationalError, InterfaceError, OSError) as e:
            raise StoreUnavailableError(f"POI store unreachable: {e}") from e

        return [self._to_response(row) for row in result.all()]
