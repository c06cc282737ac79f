"""Persistent store of safety cells.

``CellStore`` is the storage contract used by the route scorer and the
police proximity mapper. ``SqlCellStore`` implements it on PostgreSQL:

- insert-if-absent is ``INSERT ... ON CONFLICT DO NOTHING``, so concurrent
  first references to the same cell converge on one row and never overwrite
  a row written in the meantime
- bulk partial updates run each item inside its own SAVEPOINT, so a failing
  item is recorded and skipped without aborting the rest of the batch
- writes are issued in area_id order so two transactions touching the same
  cells lock them in the same order; ordered bulk updates keep caller order
"""

import abc
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from saferoute.models.safety_cell import SafetyCell
from saferoute.schemas.safety import (
    CellUpdate,
    NearestPolice,
    SafetyCellRecord,
    SafetyFactors,
)
from saferoute.services.scoring import compute_safety_score

logger = logging.getLogger(__name__)

# Keeps multi-row statements well under the asyncpg bind parameter limit
_STATEMENT_CHUNK = 1000


class StoreUnavailableError(Exception):
    """Raised when the store itself cannot be reached."""
    pass


@dataclass
class BulkWriteResult:
    """Outcome of a bulk partial update."""

    matched: int = 0
    modified: int = 0
    errors: List[Tuple[str, str]] = field(default_factory=list)

    def merge(self, other: "BulkWriteResult") -> None:
        self.matched += other.matched
        self.modified += other.modified
        self.errors.extend(other.errors)


class CellStore(abc.ABC):
    """Keyed store of safety cell records."""

    @abc.abstractmethod
    async def batch_get(self, area_ids: Sequence[str]) -> Dict[str, SafetyCellRecord]:
        """Fetch existing records. Missing ids are absent from the result."""

    @abc.abstractmethod
    async def insert_if_absent(self, area_ids: Sequence[str], defaults: SafetyFactors) -> int:
        """Create records for ids that have none. Returns how many were created."""

    @abc.abstractmethod
    async def bulk_partial_update(
        self, updates: Sequence[CellUpdate], ordered: bool = False
    ) -> BulkWriteResult:
        """Apply partial updates to existing records.

        Unordered writes keep going after a failed item; ordered writes stop
        at the first failure.
        """

    @abc.abstractmethod
    async def scan_ids(self, limit: int) -> List[str]:
        """Up to ``limit`` stored cell ids, least recently updated first."""

    @abc.abstractmethod
    async def upsert(self, record: SafetyCellRecord) -> SafetyCellRecord:
        """Create or fully replace one record."""


def _chunks(items: Sequence, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _to_record(row: SafetyCell) -> SafetyCellRecord:
    nearest = None
    if row.nearest_police_place_id is not None and row.nearest_police_distance_m is not None:
        nearest = NearestPolice(
            place_id=row.nearest_police_place_id,
            distance_meters=row.nearest_police_distance_m,
        )

    return SafetyCellRecord(
        area_id=row.area_id,
        score=row.score,
        factors=SafetyFactors(
            lighting=row.lighting,
            crowd=row.crowd,
            police=row.police,
            incidents=row.incidents,
            accidents=row.accidents,
        ),
        nearest_police=nearest,
        last_updated=row.last_updated,
    )


class SqlCellStore(CellStore):
    """PostgreSQL implementation bound to one request session."""

    def __init__(self, db: AsyncSession):
        self._db = db

    async def batch_get(self, area_ids: Sequence[str]) -> Dict[str, SafetyCellRecord]:
        unique_ids = list(dict.fromkeys(area_ids))
        records: Dict[str, SafetyCellRecord] = {}

        try:
            for chunk in _chunks(unique_ids, _STATEMENT_CHUNK):
                result = await self._db.execute(
                    select(SafetyCell).where(SafetyCell.area_id.in_(chunk))
                )
                for row in result.scalars().all():
                    records[row.area_id] = _to_record(row)
        except (OperationalError, InterfaceError, OSError) as e:
            raise StoreUnavailableError(f"Cell store unreachable: {e}") from e

        return records

    async def insert_if_absent(self, area_ids: Sequence[str], defaults: SafetyFactors) -> int:
        # Sorted so concurrent inserts take row locks in the same order
        unique_ids = sorted(set(area_ids))
        if not unique_ids:
            return 0

        default_values = defaults.model_dump()
        default_score = compute_safety_score(defaults)
        created = 0

        try:
            for chunk in _chunks(unique_ids, _STATEMENT_CHUNK):
                stmt = (
                    pg_insert(SafetyCell)
                    .values([
                        {"area_id": area_id, "score": default_score, **default_values}
                        for area_id in chunk
                    ])
                    .on_conflict_do_nothing(index_elements=[SafetyCell.area_id])
                    .returning(SafetyCell.area_id)
                )
                result = await self._db.execute(stmt)
                created += len(result.scalars().all())
            await self._db.commit()
        except (OperationalError, InterfaceError, OSError) as e:
            raise StoreUnavailableError(f"Cell store unreachable: {e}") from e

        logger.debug(f"insert_if_absent: {created} of {len(unique_ids)} cells created")
        return created

    async def bulk_partial_update(
        self, updates: Sequence[CellUpdate], ordered: bool = False
    ) -> BulkWriteResult:
        outcome = BulkWriteResult()
        if not ordered:
            updates = sorted(updates, key=lambda item: item.area_id)

        try:
            for item in updates:
                values = {
                    "score": item.score,
                    "last_updated": func.now(),
                    **item.factors.model_dump(),
                }
                if item.nearest_police is not None:
                    values["nearest_police_place_id"] = item.nearest_police.place_id
                    values["nearest_police_distance_m"] = item.nearest_police.distance_meters

                stmt = update(SafetyCell).where(SafetyCell.area_id == item.area_id).values(**values)

                try:
                    async with self._db.begin_nested():
                        result = await self._db.execute(stmt)
                except (OperationalError, InterfaceError, OSError):
                    raise
                except SQLAlchemyError as e:
                    logger.warning(f"Bulk update failed for cell {item.area_id}: {e}")
                    outcome.errors.append((item.area_id, str(e)))
                    if ordered:
                        break
                    continue

                outcome.matched += result.rowcount
                outcome.modified += result.rowcount

            await self._db.commit()
        except (OperationalError, InterfaceError, OSError) as e:
            raise StoreUnavailableError(f"Cell store unreachable: {e}") from e

        return outcome

    async def scan_ids(self, limit: int) -> List[str]:
        try:
            result = await self._db.execute(
                select(SafetyCell.area_id)
                .order_by(SafetyCell.last_updated, SafetyCell.area_id)
                .limit(limit)
            )
        except (OperationalError, InterfaceError, OSError) as e:
            raise StoreUnavailableError(f"Cell store unreachable: {e}") from e
        return list(result.scalars().all())

    async def upsert(self, record: SafetyCellRecord) -> SafetyCellRecord:
        values = {
            "score": record.score,
            "last_updated": func.now(),
            **record.factors.model_dump(),
        }
        if record.nearest_police is not None:
            values["nearest_police_place_id"] = record.nearest_police.place_id
            values["nearest_police_distance_m"] = record.nearest_police.distance_meters

        stmt = (
            pg_insert(SafetyCell)
            .values(area_id=record.area_id, **values)
            .on_conflict_do_update(index_elements=[SafetyCell.area_id], set_=values)
            .returning(SafetyCell)
        )

        try:
            result = await self._db.execute(stmt)
            row = result.scalar_one()
            saved = _to_record(row)
            await self._db.commit()
        except (OperationalError, InterfaceError, OSError) as e:
            raise StoreUnavailableError(f"Cell store unreachable: {e}") from e

        return saved
