"""Safety grid endpoints."""

from fastapi import APIRouter, Depends, Query, Request

from saferoute.api.deps import get_cell_store
from saferoute.core.audit import audit_log, AuditAction
from saferoute.core.exceptions import (
    InputException,
    ResourceNotFoundException,
    ValidationException,
)
from saferoute.core.security import verify_api_key
from saferoute.schemas.common import (
    GeoJSONFeature,
    GeoJSONFeatureCollection,
    GeoJSONPolygon,
)
from saferoute.schemas.routing import RouteColor
from saferoute.schemas.safety import (
    SafetyCellRecord,
    SafetyCellUpdateRequest,
    SafetyFactors,
)
from saferoute.services import geohash_codec
from saferoute.services.cell_store import CellStore
from saferoute.services.route_scorer import color_for_score
from saferoute.services.scoring import DEFAULT_FACTOR_VALUE, compute_safety_score

router = APIRouter()

MAX_GRID_CELLS = 500


@router.post("/update", response_model=SafetyCellRecord, dependencies=[Depends(verify_api_key)])
async def update_cell(
    body: SafetyCellUpdateRequest,
    request: Request,
    store: CellStore = Depends(get_cell_store),
) -> SafetyCellRecord:
    """
    Create or update a safety cell by area id or coordinate.

    Factors left out keep their stored value (or the neutral default for a
    new cell). The score is recomputed from the merged factors.
    """
    area_id = body.area_id
    if area_id is None:
        if body.lat is None or body.lng is None:
            raise InputException("Provide area_id or lat/lng")
        try:
            area_id = geohash_codec.encode(body.lat, body.lng)
        except geohash_codec.CoordinateRangeError as e:
            raise ValidationException(str(e), field="lat/lng") from e
    elif not geohash_codec.is_valid_cell_id(area_id):
        raise ValidationException("Invalid area_id", field="area_id")

    existing = (await store.batch_get([area_id])).get(area_id)
    current = existing.factors if existing is not None else SafetyFactors()
    factors = body.factors.apply_to(current)

    record = await store.upsert(
        SafetyCellRecord(
            area_id=area_id,
            score=compute_safety_score(factors),
            factors=factors,
            nearest_police=existing.nearest_police if existing is not None else None,
        )
    )

    audit_log.log_request(
        request,
        AuditAction.CELL_UPDATE,
        resource_type="cell",
        resource_id=area_id,
        details={"created": existing is None, "score": record.score},
    )
    return record


@router.get("/grid", response_model=GeoJSONFeatureCollection)
async def get_grid(
    ids: str = Query(..., description="Comma-separated cell ids"),
    store: CellStore = Depends(get_cell_store),
) -> GeoJSONFeatureCollection:
    """
    Get cells as GeoJSON polygons for map display.

    Unknown cells are returned with the neutral score and gray color; they
    are not created.
    """
    area_ids = list(dict.fromkeys(i.strip() for i in ids.split(",") if i.strip()))
    if not area_ids:
        raise InputException("Provide at least one cell id")
    if len(area_ids) > MAX_GRID_CELLS:
        raise ValidationException(f"At most {MAX_GRID_CELLS} cells per request", field="ids")

    invalid = [area_id for area_id in area_ids if not geohash_codec.is_valid_cell_id(area_id)]
    if invalid:
        raise ValidationException(f"Invalid cell ids: {', '.join(invalid[:5])}", field="ids")

    records = await store.batch_get(area_ids)

    features = []
    for area_id in area_ids:
        record = records.get(area_id)
        if record is not None:
            properties = {"score": record.score, "color": color_for_score(record.score).value}
        else:
            properties = {"score": DEFAULT_FACTOR_VALUE, "color": RouteColor.GRAY.value}

        features.append(GeoJSONFeature(
            id=area_id,
            geometry=GeoJSONPolygon(coordinates=[geohash_codec.cell_polygon(area_id)]),
            properties=properties,
        ))

    return GeoJSONFeatureCollection(features=features)


@router.get("/{area_id}", response_model=SafetyCellRecord)
async def get_cell(
    area_id: str,
    request: Request,
    store: CellStore = Depends(get_cell_store),
) -> SafetyCellRecord:
    """Get one stored safety cell."""
    if not geohash_codec.is_valid_cell_id(area_id):
        raise ValidationException("Invalid area_id", field="area_id")

    record = (await store.batch_get([area_id])).get(area_id)
    if record is None:
        raise ResourceNotFoundException("Safety cell", area_id)

    audit_log.log_request(request, AuditAction.CELL_READ, resource_type="cell", resource_id=area_id)
    return record
