"""Police proximity enrichment of safety cells.

For each target cell the mapper finds the nearest police station, converts
the distance into the police sub-factor and recomputes the cell score.

The read-modify-write cycle is not linearizable: two passes touching the
same cell concurrently may interleave and the later write wins. Passes are
expected to converge since both compute from the same station data.
"""

import logging
from typing import Dict, List, Optional, Sequence

from saferoute.config import settings
from saferoute.schemas.police import PoliceMappingResponse, PoliceMappingResult
from saferoute.schemas.safety import (
    CellUpdate,
    NearestPolice,
    SafetyCellRecord,
    SafetyFactors,
)
from saferoute.services.cell_store import BulkWriteResult, CellStore
from saferoute.services.geohash_codec import bbox_center
from saferoute.services.poi_store import PoiStore
from saferoute.services.scoring import (
    compute_safety_score,
    haversine_distance,
    police_score_for_distance,
)

logger = logging.getLogger(__name__)


class PoliceProximityMapper:
    """Recomputes the police sub-factor of cells from the POI store."""

    def __init__(
        self,
        cells: CellStore,
        pois: PoiStore,
        batch_size: Optional[int] = None,
        default_limit: Optional[int] = None,
    ):
        self.cells = cells
        self.pois = pois
        self.batch_size = batch_size or settings.police_mapping_batch_size
        self.default_limit = default_limit or settings.police_mapping_default_limit

    async def _targets(self, area_ids: Optional[Sequence[str]], limit: Optional[int]) -> List[str]:
        if area_ids:
            return list(dict.fromkeys(area_ids))
        return await self.cells.scan_ids(limit or self.default_limit)

    async def _load_records(self, targets: List[str], dry_run: bool) -> Dict[str, SafetyCellRecord]:
        records = await self.cells.batch_get(targets)
        missing = [area_id for area_id in targets if area_id not in records]
        if not missing:
            return records

        if not dry_run:
            await self.cells.insert_if_absent(missing, SafetyFactors())
            records = await self.cells.batch_get(targets)

        # Dry runs (and any cell still unresolved) see neutral defaults
        for area_id in missing:
            records.setdefault(area_id, SafetyCellRecord(area_id=area_id))
        return records

    async def _map_cell(self, record: SafetyCellRecord):
        lat, lng = bbox_center(record.area_id)
        poi = await self.pois.nearest(lat, lng)
        if poi is None:
            return PoliceMappingResult(area_id=record.area_id), None

        distance = haversine_distance(lat, lng, poi.latitude, poi.longitude)
        police_score = police_score_for_distance(distance)
        factors = record.factors.model_copy(update={"police": float(police_score)})
        score = compute_safety_score(factors)
        nearest = NearestPolice(place_id=poi.place_id, distance_meters=round(distance, 1))

        result = PoliceMappingResult(
            area_id=record.area_id,
            nearest=nearest,
            police_score=police_score,
            score=score,
        )
        update = CellUpdate(
            area_id=record.area_id,
            factors=factors,
            score=score,
            nearest_police=nearest,
        )
        return result, update

    async def _persist(self, updates: List[CellUpdate]) -> BulkWriteResult:
        outcome = BulkWriteResult()
        for start in range(0, len(updates), self.batch_size):
            batch = updates[start:start + self.batch_size]
            outcome.merge(await self.cells.bulk_partial_update(batch, ordered=False))

        for area_id, error in outcome.errors:
            logger.warning(f"Police mapping write failed for cell {area_id}: {error}")
        return outcome

    async def map_nearest(
        self,
        area_ids: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        dry_run: bool = False,
    ) -> PoliceMappingResponse:
        """Run one police proximity pass.

        Args:
            area_ids: Explicit target cells; when empty, stored cells are scanned
            limit: Scan bound when no explicit cells are given
            dry_run: Compute and report without writing anything

        Returns:
            Per-cell results plus processed/updated counts
        """
        targets = await self._targets(area_ids, limit)
        records = await self._load_records(targets, dry_run)

        results: List[PoliceMappingResult] = []
        updates: List[CellUpdate] = []
        for area_id in targets:
            result, update = await self._map_cell(records[area_id])
            results.append(result)
            if update is not None:
                updates.append(update)

        updated = 0
        if not dry_run and updates:
            outcome = await self._persist(updates)
            updated = outcome.modified

        logger.info(
            f"Police mapping processed={len(targets)} updated={updated} dry_run={dry_run}"
        )
        return PoliceMappingResponse(
            processed=len(targets),
            updated=updated,
            dry_run=dry_run,
            results=results,
        )
