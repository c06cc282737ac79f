"""Police station endpoints and police proximity mapping."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from saferoute.api.deps import get_cell_store, get_poi_store
from saferoute.core.audit import audit_log, AuditAction
from saferoute.core.exceptions import ResourceNotFoundException, ValidationException
from saferoute.core.security import verify_api_key
from saferoute.schemas.common import BoundingBox
from saferoute.schemas.police import (
    PoliceMappingRequest,
    PoliceMappingResponse,
    PoliceStationResponse,
)
from saferoute.services.cell_store import CellStore
from saferoute.services.poi_store import PoiStore
from saferoute.services.police_mapper import PoliceProximityMapper

router = APIRouter()


@router.post(
    "/map-nearest",
    response_model=PoliceMappingResponse,
    dependencies=[Depends(verify_api_key)],
)
async def map_nearest_police(
    request: Request,
    body: Optional[PoliceMappingRequest] = None,
    cells: CellStore = Depends(get_cell_store),
    pois: PoiStore = Depends(get_poi_store),
) -> PoliceMappingResponse:
    """
    Recompute the police factor of cells from the nearest police station.

    Targets the given ``area_ids``, or up to ``limit`` stored cells (least
    recently updated first). With ``dry_run`` nothing is written and
    ``updated`` is 0.
    """
    body = body or PoliceMappingRequest()
    mapper = PoliceProximityMapper(cells, pois)
    result = await mapper.map_nearest(
        area_ids=body.area_ids,
        limit=body.limit,
        dry_run=body.dry_run,
    )

    audit_log.log_request(
        request,
        AuditAction.POLICE_MAPPING,
        resource_type="cell",
        details={
            "processed": result.processed,
            "updated": result.updated,
            "dry_run": result.dry_run,
        },
    )
    return result


@router.get("", response_model=List[PoliceStationResponse])
async def list_police_stations(
    bbox: Optional[str] = Query(
        None,
        description="Bounding box as minLon,minLat,maxLon,maxLat",
        examples=["-122.52,37.70,-122.35,37.82"],
    ),
    limit: int = Query(500, ge=1, le=2000),
    pois: PoiStore = Depends(get_poi_store),
) -> List[PoliceStationResponse]:
    """List police stations, optionally within a bounding box."""
    bounds = None
    if bbox:
        try:
            bounds = BoundingBox.from_string(bbox)
        except ValueError as e:
            raise ValidationException(str(e), field="bbox") from e

    return await pois.list(bounds, limit)


@router.get("/{place_id}", response_model=PoliceStationResponse)
async def get_police_station(
    place_id: str,
    request: Request,
    pois: PoiStore = Depends(get_poi_store),
) -> PoliceStationResponse:
    """Get a police station by place id."""
    station = await pois.get(place_id)
    if station is None:
        raise ResourceNotFoundException("Police station", place_id)

    audit_log.log_request(request, AuditAction.POLICE_READ, resource_type="police", resource_id=place_id)
    return station
