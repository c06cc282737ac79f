"""Route scoring against the safety grid.

The scorer resolves every cell the candidate routes cover, creating missing
cells with neutral factors, then scores each route as the mean of its cell
scores. Routes are ranked by score and tagged safest/fastest/shortest.
"""

import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from saferoute.schemas.routing import (
    NO_DATA,
    CandidateRoute,
    RouteColor,
    RoutePreference,
)
from saferoute.schemas.safety import SafetyFactors
from saferoute.services.cell_store import CellStore
from saferoute.services.scoring import DEFAULT_FACTOR_VALUE

logger = logging.getLogger(__name__)

GREEN_THRESHOLD = 7.5
YELLOW_THRESHOLD = 5.0


def color_for_score(score) -> RouteColor:
    """Color bucket for a route score. Unscored routes are gray."""
    if score == NO_DATA or score is None:
        return RouteColor.GRAY
    if score >= GREEN_THRESHOLD:
        return RouteColor.GREEN
    if score >= YELLOW_THRESHOLD:
        return RouteColor.YELLOW
    return RouteColor.RED


def _index_of_min(routes: Sequence[CandidateRoute], key: Callable[[CandidateRoute], Optional[float]]) -> Optional[int]:
    best_index = None
    best_value = None
    for index, route in enumerate(routes):
        value = key(route)
        if value is None:
            continue
        # Strict comparison keeps the first occurrence on ties
        if best_value is None or value < best_value:
            best_index, best_value = index, value
    return best_index


def _duration_seconds(route: CandidateRoute) -> Optional[float]:
    return route.duration.seconds if route.duration is not None else None


def _distance_meters(route: CandidateRoute) -> Optional[float]:
    return route.distance.meters if route.distance is not None else None


def _negated_score(route: CandidateRoute) -> Optional[float]:
    return -route.safety_score if route.is_scored else None


def tag_routes(routes: Sequence[CandidateRoute]) -> None:
    """Assign safest/fastest/shortest tags in place.

    Tags are independent, so one route may hold several. Ties go to the
    route that appears first.
    """
    for route in routes:
        route.tags = []

    for tag, key in (
        (RoutePreference.SAFEST, _negated_score),
        (RoutePreference.FASTEST, _duration_seconds),
        (RoutePreference.SHORTEST, _distance_meters),
    ):
        index = _index_of_min(routes, key)
        if index is not None:
            routes[index].tags.append(tag)


def rank_routes(routes: Sequence[CandidateRoute]) -> List[CandidateRoute]:
    """Sort by score descending. Routes with no data always come last."""
    scored = [route for route in routes if route.is_scored]
    unscored = [route for route in routes if not route.is_scored]
    scored.sort(key=lambda route: route.safety_score, reverse=True)
    return scored + unscored


def select_route(
    routes: Sequence[CandidateRoute],
    prefer: Optional[RoutePreference] = None,
) -> Optional[CandidateRoute]:
    """Pick one route by preference.

    Falls back to the safest route, then to the first route.
    """
    if not routes:
        return None

    for wanted in (prefer, RoutePreference.SAFEST):
        if wanted is None:
            continue
        for route in routes:
            if wanted in route.tags:
                return route

    return routes[0]


class RouteScorer:
    """Scores candidate routes through a cell store."""

    def __init__(self, store: CellStore):
        self.store = store

    async def resolve_cells(self, area_ids: Sequence[str]) -> Tuple[Dict[str, float], int]:
        """Scores for the given cells, creating missing ones with neutral factors.

        Returns:
            Tuple of (score by cell id, number of cells created)
        """
        unique_ids = list(dict.fromkeys(area_ids))
        if not unique_ids:
            return {}, 0

        existing = await self.store.batch_get(unique_ids)
        missing = [area_id for area_id in unique_ids if area_id not in existing]

        created = 0
        if missing:
            created = await self.store.insert_if_absent(missing, SafetyFactors())
            logger.info(f"Lazily created {created} of {len(missing)} missing cells")
            # Re-read so cells written concurrently by another caller win
            existing = await self.store.batch_get(unique_ids)

        return {area_id: record.score for area_id, record in existing.items()}, created

    def score_route(self, route: CandidateRoute, scores: Dict[str, float]) -> None:
        """Set the route score to the mean of its cell scores, in place."""
        if not route.cell_ids:
            route.safety_score = NO_DATA
        else:
            values = [scores.get(area_id, DEFAULT_FACTOR_VALUE) for area_id in route.cell_ids]
            route.safety_score = round(sum(values) / len(values), 2)
        route.color = color_for_score(route.safety_score)

    async def score_routes(self, routes: Sequence[CandidateRoute]) -> Tuple[List[CandidateRoute], int]:
        """Score, tag and rank routes.

        Args:
            routes: Candidate routes with ``cell_ids`` already resolved

        Returns:
            Tuple of (ranked routes, number of cells created)
        """
        union = [area_id for route in routes for area_id in route.cell_ids]
        scores, created = await self.resolve_cells(union)

        for route in routes:
            self.score_route(route, scores)

        tag_routes(routes)
        return rank_routes(routes), created
