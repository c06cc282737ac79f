"""Route comparison endpoints."""

from typing import Optional, Union

from fastapi import APIRouter, Depends, Query, Request

from saferoute.api.deps import get_cell_store, get_route_provider
from saferoute.core.audit import audit_log, AuditAction
from saferoute.core.exceptions import to_api_exception
from saferoute.schemas.routing import (
    RouteComparisonResponse,
    RoutePreference,
    SingleRouteResponse,
)
from saferoute.services.cell_store import CellStore, StoreUnavailableError
from saferoute.services.route_comparison import (
    NoRoutesFoundError,
    RouteComparisonService,
    RouteInputError,
)
from saferoute.services.route_provider import RouteProvider, RouteProviderError

router = APIRouter()


@router.get("/compare", response_model=Union[SingleRouteResponse, RouteComparisonResponse])
async def compare_routes(
    request: Request,
    origin: Optional[str] = Query(None, description="Address or 'lat,lng'", examples=["37.7793,-122.4193"]),
    destination: Optional[str] = Query(None, description="Address or 'lat,lng'", examples=["37.8080,-122.4177"]),
    single: bool = Query(False, description="Return only the preferred route"),
    prefer: Optional[RoutePreference] = Query(None, description="Preferred tag when single=true"),
    store: CellStore = Depends(get_cell_store),
    provider: RouteProvider = Depends(get_route_provider),
):
    """
    Compare alternative routes between origin and destination.

    Each route is scored as the mean safety score of the grid cells it
    crosses. Routes are ranked safest first and tagged safest, fastest and
    shortest. Routes crossing no cells report ``"no data"`` and rank last.
    """
    service = RouteComparisonService(provider, store)

    try:
        result = await service.compare(origin, destination, single=single, prefer=prefer)
    except (RouteInputError, NoRoutesFoundError, RouteProviderError, StoreUnavailableError) as e:
        raise to_api_exception(e) from e

    audit_log.log_request(
        request,
        AuditAction.ROUTE_COMPARE,
        resource_type="route",
        details={
            "routes": len(result.routes) if isinstance(result, RouteComparisonResponse) else 1,
            "cells_created": getattr(result, "cells_created", None),
            "single": single,
        },
    )
    return result
