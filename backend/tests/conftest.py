"""Shared fixtures: in-memory stores and a scripted route provider."""

import os

# Must be set before saferoute.config is imported anywhere
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("API_KEY_REQUIRED", "false")
os.environ.setdefault("API_KEYS", "")
os.environ.setdefault("LOG_REQUESTS", "false")

from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import pytest

from saferoute.schemas.common import BoundingBox, Coordinate
from saferoute.schemas.police import PointOfInterest, PoliceStationResponse
from saferoute.schemas.safety import CellUpdate, SafetyCellRecord, SafetyFactors
from saferoute.services.cell_store import BulkWriteResult, CellStore, StoreUnavailableError
from saferoute.services.geohash_codec import encode
from saferoute.services.poi_store import PoiStore
from saferoute.services.route_provider import RouteProviderError
from saferoute.services.scoring import compute_safety_score, haversine_distance

# Decodes to (38.5, -120.2), (40.7, -120.95), (43.252, -126.453)
SAMPLE_POLYLINE = "_p~iF~ps|U_ulLnnqC_mqNvxq`@"
SAMPLE_POINTS = [(38.5, -120.2), (40.7, -120.95), (43.252, -126.453)]


class InMemoryCellStore(CellStore):
    """Dict-backed cell store that records every write."""

    def __init__(self):
        self.records: Dict[str, SafetyCellRecord] = {}
        self.insert_calls: List[List[str]] = []
        self.bulk_calls: List[List[CellUpdate]] = []
        self.failing_ids: set = set()
        self.unavailable = False
        self._tick = 0

    def _check(self):
        if self.unavailable:
            raise StoreUnavailableError("Cell store unreachable")

    def _now(self) -> datetime:
        self._tick += 1
        return datetime(2026, 1, 1, tzinfo=timezone.utc).replace(microsecond=self._tick)

    def seed(self, area_id: str, **factors) -> SafetyCellRecord:
        values = SafetyFactors(**factors)
        record = SafetyCellRecord(
            area_id=area_id,
            score=compute_safety_score(values),
            factors=values,
            last_updated=self._now(),
        )
        self.records[area_id] = record
        return record

    async def batch_get(self, area_ids: Sequence[str]) -> Dict[str, SafetyCellRecord]:
        self._check()
        return {
            area_id: self.records[area_id].model_copy(deep=True)
            for area_id in dict.fromkeys(area_ids)
            if area_id in self.records
        }

    async def insert_if_absent(self, area_ids: Sequence[str], defaults: SafetyFactors) -> int:
        self._check()
        self.insert_calls.append(list(area_ids))
        created = 0
        for area_id in dict.fromkeys(area_ids):
            if area_id in self.records:
                continue
            self.records[area_id] = SafetyCellRecord(
                area_id=area_id,
                score=compute_safety_score(defaults),
                factors=defaults.model_copy(),
                last_updated=self._now(),
            )
            created += 1
        return created

    async def bulk_partial_update(
        self, updates: Sequence[CellUpdate], ordered: bool = False
    ) -> BulkWriteResult:
        self._check()
        self.bulk_calls.append(list(updates))
        outcome = BulkWriteResult()
        for item in updates:
            if item.area_id in self.failing_ids:
                outcome.errors.append((item.area_id, "write conflict"))
                if ordered:
                    break
                continue
            record = self.records.get(item.area_id)
            if record is None:
                continue
            record.factors = item.factors
            record.score = item.score
            if item.nearest_police is not None:
                record.nearest_police = item.nearest_police
            record.last_updated = self._now()
            outcome.matched += 1
            outcome.modified += 1
        return outcome

    async def scan_ids(self, limit: int) -> List[str]:
        self._check()
        ordered = sorted(self.records.values(), key=lambda r: (r.last_updated, r.area_id))
        return [record.area_id for record in ordered[:limit]]

    async def upsert(self, record: SafetyCellRecord) -> SafetyCellRecord:
        self._check()
        saved = record.model_copy(update={"last_updated": self._now()})
        self.records[record.area_id] = saved
        return saved.model_copy(deep=True)


class InMemoryPoiStore(PoiStore):
    """List-backed police station store with haversine nearest neighbor."""

    def __init__(self, stations: Optional[List[PoliceStationResponse]] = None):
        self.stations: List[PoliceStationResponse] = list(stations or [])

    def add(self, place_id: str, lat: float, lng: float, name: Optional[str] = None) -> PoliceStationResponse:
        station = PoliceStationResponse(
            place_id=place_id,
            name=name or f"Station {place_id}",
            geohash=encode(lat, lng),
            location=Coordinate(latitude=lat, longitude=lng),
        )
        self.stations.append(station)
        return station

    async def nearest(self, lat: float, lng: float) -> Optional[PointOfInterest]:
        if not self.stations:
            return None
        station = min(
            self.stations,
            key=lambda s: haversine_distance(lat, lng, s.location.latitude, s.location.longitude),
        )
        return PointOfInterest(
            place_id=station.place_id,
            name=station.name,
            latitude=station.location.latitude,
            longitude=station.location.longitude,
        )

    async def get(self, place_id: str) -> Optional[PoliceStationResponse]:
        return next((s for s in self.stations if s.place_id == place_id), None)

    async def list(self, bbox: Optional[BoundingBox] = None, limit: int = 500) -> List[PoliceStationResponse]:
        stations = sorted(self.stations, key=lambda s: s.place_id)
        if bbox is not None:
            stations = [
                s for s in stations
                if bbox.min_lat <= s.location.latitude <= bbox.max_lat
                and bbox.min_lon <= s.location.longitude <= bbox.max_lon
            ]
        return stations[:limit]


class ScriptedRouteProvider:
    """Route provider returning canned raw routes."""

    def __init__(self, routes: Optional[List[dict]] = None, error: Optional[Exception] = None):
        self.routes = routes or []
        self.error = error
        self.calls: List[tuple] = []
        self.api_key = "test-key"

    async def fetch_routes(self, origin: str, destination: str) -> List[dict]:
        self.calls.append((origin, destination))
        if self.error is not None:
            raise self.error
        return self.routes

    async def close(self):
        pass


def directions_route(polyline: str, meters: int, seconds: int, summary: str = "") -> dict:
    """Raw route in Google Directions shape."""
    return {
        "summary": summary,
        "overview_polyline": {"points": polyline},
        "legs": [{
            "distance": {"text": f"{meters / 1000:.1f} km", "value": meters},
            "duration": {"text": f"{seconds // 60} mins", "value": seconds},
        }],
    }


@pytest.fixture
def cell_store():
    return InMemoryCellStore()


@pytest.fixture
def poi_store():
    return InMemoryPoiStore()


@pytest.fixture
def route_provider():
    return ScriptedRouteProvider()


@pytest.fixture
def failing_provider():
    return ScriptedRouteProvider(error=RouteProviderError("Route provider unavailable: timeout"))
