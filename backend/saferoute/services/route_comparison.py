"""Route comparison pipeline: provider -> normalize -> sample -> score."""

import logging
from typing import List, Optional, Union

from saferoute.config import settings
from saferoute.schemas.routing import (
    CandidateRoute,
    RouteComparisonResponse,
    RoutePreference,
    SingleRouteResponse,
)
from saferoute.services.cell_store import CellStore
from saferoute.services.polyline_sampler import (
    cells_for_points,
    decode_polyline,
    sample_points,
)
from saferoute.services.route_normalizer import normalize_routes
from saferoute.services.route_provider import RouteProvider
from saferoute.services.route_scorer import RouteScorer, select_route

logger = logging.getLogger(__name__)


class RouteInputError(ValueError):
    """Raised when origin or destination is missing."""
    pass


class NoRoutesFoundError(Exception):
    """Raised when the provider returns no usable route."""
    pass


class RouteComparisonService:
    """Compares provider alternatives by safety score."""

    def __init__(
        self,
        provider: RouteProvider,
        store: CellStore,
        sample_cap: Optional[int] = None,
        fallback_speed_kmh: Optional[float] = None,
    ):
        self.provider = provider
        self.scorer = RouteScorer(store)
        self.sample_cap = sample_cap if sample_cap is not None else settings.route_sample_cap
        self.fallback_speed_kmh = fallback_speed_kmh or settings.fallback_speed_kmh

    def prepare(self, route: CandidateRoute) -> CandidateRoute:
        """Decode and sample the route polyline, then resolve covered cells."""
        route.points = sample_points(decode_polyline(route.polyline), self.sample_cap)
        route.cell_ids = cells_for_points(route.points)
        return route

    async def compare(
        self,
        origin: Optional[str],
        destination: Optional[str],
        single: bool = False,
        prefer: Optional[RoutePreference] = None,
    ) -> Union[RouteComparisonResponse, SingleRouteResponse]:
        """Fetch, score, rank and tag alternative routes.

        Raises:
            RouteInputError: Origin or destination missing
            NoRoutesFoundError: Provider returned no usable routes
            RouteProviderError: Provider failure
        """
        origin = (origin or "").strip()
        destination = (destination or "").strip()
        if not origin or not destination:
            raise RouteInputError("origin and destination are required")

        raw_routes = await self.provider.fetch_routes(origin, destination)
        candidates: List[CandidateRoute] = normalize_routes(raw_routes, self.fallback_speed_kmh)
        if not candidates:
            raise NoRoutesFoundError("No routes found")

        for route in candidates:
            self.prepare(route)

        ranked, created = await self.scorer.score_routes(candidates)
        logger.info(
            f"Compared {len(ranked)} routes, cells created={created}, "
            f"scores={[route.safety_score for route in ranked]}"
        )

        if single:
            chosen = select_route(ranked, prefer)
            return SingleRouteResponse(
                route=chosen,
                preference=prefer or RoutePreference.SAFEST,
            )

        return RouteComparisonResponse(routes=ranked, cells_created=created)
