"""Tests for the SQL cell and POI stores on a recording session.

Statements are compiled with the PostgreSQL dialect so the emitted SQL and
bound ids can be checked without a database.
"""

import re
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import Insert, Update
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

from saferoute.models.safety_cell import SafetyCell
from saferoute.schemas.safety import CellUpdate, SafetyCellRecord, SafetyFactors
from saferoute.services.cell_store import SqlCellStore, StoreUnavailableError
from saferoute.services.poi_store import SqlPoiStore

_INSERT_ID_PARAM = re.compile(r"^area_id(_m\d+)?$")


def inserted_ids(compiled):
    """Cell ids bound by a multi-row insert, in row order."""
    return [value for key, value in compiled.params.items() if _INSERT_ID_PARAM.match(key)]


def updated_id(compiled):
    """Cell id in the WHERE clause of a single-cell update."""
    return next(value for key, value in compiled.params.items() if key.startswith("area_id"))


class FakeResult:
    def __init__(self, rows=None, rowcount=1):
        self._rows = list(rows or [])
        self.rowcount = rowcount

    def scalars(self):
        return self

    def all(self):
        return list(self._rows)

    def first(self):
        return self._rows[0] if self._rows else None

    def scalar_one(self):
        return self._rows[0]


class FakeSavepoint:
    def __init__(self, session):
        self.session = session

    async def __aenter__(self):
        self.session.savepoints += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.session.rolled_back_savepoints += 1
        return False


class RecordingSession:
    """AsyncSession stand-in that compiles and records every statement."""

    def __init__(self, existing=(), failing_ids=(), rows=None, error=None):
        self.existing = set(existing)
        self.failing_ids = set(failing_ids)
        self.rows = rows or []
        self.error = error
        self.statements = []
        self.commits = 0
        self.savepoints = 0
        self.rolled_back_savepoints = 0

    @property
    def sql(self):
        return [str(compiled) for compiled in self.statements]

    async def execute(self, stmt):
        if self.error is not None:
            raise self.error

        compiled = stmt.compile(dialect=postgresql.dialect())
        self.statements.append(compiled)

        if isinstance(stmt, Insert) and "DO NOTHING" in str(compiled):
            created = [area_id for area_id in inserted_ids(compiled) if area_id not in self.existing]
            self.existing.update(created)
            return FakeResult(created)

        if isinstance(stmt, Update):
            area_id = updated_id(compiled)
            if area_id in self.failing_ids:
                raise IntegrityError(str(compiled), compiled.params, Exception("check constraint violated"))
            return FakeResult(rowcount=1 if area_id in self.existing else 0)

        return FakeResult(self.rows)

    async def commit(self):
        self.commits += 1

    def begin_nested(self):
        return FakeSavepoint(self)


def connection_error():
    return OperationalError("SELECT 1", {}, Exception("connection refused"))


def cell_update(area_id, police=10):
    return CellUpdate(area_id=area_id, factors=SafetyFactors(police=police), score=6.25)


# =============================================================================
# Cell Store Tests
# =============================================================================

class TestSqlCellStoreInsert:
    """Tests for atomic insert-if-absent."""

    @pytest.mark.asyncio
    async def test_emits_on_conflict_do_nothing_returning(self):
        session = RecordingSession()

        created = await SqlCellStore(session).insert_if_absent(["9q8yyk1"], SafetyFactors())

        sql = session.sql[0]
        assert "INSERT INTO safety_cells" in sql
        assert "ON CONFLICT (area_id) DO NOTHING" in sql
        assert "RETURNING safety_cells.area_id" in sql
        assert created == 1
        assert session.commits == 1

    @pytest.mark.asyncio
    async def test_counts_only_rows_actually_created(self):
        session = RecordingSession(existing={"9q8yyk2"})

        created = await SqlCellStore(session).insert_if_absent(
            ["9q8yyk1", "9q8yyk2", "9q8yyk3"], SafetyFactors()
        )

        assert created == 2

    @pytest.mark.asyncio
    async def test_insert_order_independent_of_input_order(self):
        """Concurrent callers lock rows in the same order whatever their path order."""
        forward = RecordingSession()
        backward = RecordingSession()

        await SqlCellStore(forward).insert_if_absent(["9q8yyk2", "9q8yyk1", "9q8yyk2"], SafetyFactors())
        await SqlCellStore(backward).insert_if_absent(["9q8yyk1", "9q8yyk2"], SafetyFactors())

        assert inserted_ids(forward.statements[0]) == ["9q8yyk1", "9q8yyk2"]
        assert inserted_ids(backward.statements[0]) == ["9q8yyk1", "9q8yyk2"]

    @pytest.mark.asyncio
    async def test_empty_input_touches_nothing(self):
        session = RecordingSession()

        assert await SqlCellStore(session).insert_if_absent([], SafetyFactors()) == 0
        assert session.statements == []

    @pytest.mark.asyncio
    async def test_unreachable_store(self):
        session = RecordingSession(error=connection_error())

        with pytest.raises(StoreUnavailableError):
            await SqlCellStore(session).insert_if_absent(["9q8yyk1"], SafetyFactors())


class TestSqlCellStoreBulkUpdate:
    """Tests for savepoint-isolated bulk partial updates."""

    @pytest.mark.asyncio
    async def test_failing_item_isolated(self):
        session = RecordingSession(existing={"9q8yyk1", "9q8yyk2", "9q8yyk3"}, failing_ids={"9q8yyk2"})

        outcome = await SqlCellStore(session).bulk_partial_update(
            [cell_update("9q8yyk1"), cell_update("9q8yyk2"), cell_update("9q8yyk3")]
        )

        assert outcome.matched == 2
        assert outcome.modified == 2
        assert [area_id for area_id, _ in outcome.errors] == ["9q8yyk2"]
        assert session.savepoints == 3
        assert session.rolled_back_savepoints == 1
        assert session.commits == 1

    @pytest.mark.asyncio
    async def test_unordered_updates_applied_in_id_order(self):
        session = RecordingSession(existing={"9q8yyk1", "9q8yyk2", "9q8yyk3"})

        await SqlCellStore(session).bulk_partial_update(
            [cell_update("9q8yyk3"), cell_update("9q8yyk1"), cell_update("9q8yyk2")]
        )

        assert [updated_id(c) for c in session.statements] == ["9q8yyk1", "9q8yyk2", "9q8yyk3"]

    @pytest.mark.asyncio
    async def test_ordered_stops_at_first_failure(self):
        session = RecordingSession(existing={"9q8yyk1", "9q8yyk2", "9q8yyk3"}, failing_ids={"9q8yyk2"})

        outcome = await SqlCellStore(session).bulk_partial_update(
            [cell_update("9q8yyk3"), cell_update("9q8yyk2"), cell_update("9q8yyk1")],
            ordered=True,
        )

        assert [updated_id(c) for c in session.statements] == ["9q8yyk3", "9q8yyk2"]
        assert outcome.matched == 1
        assert len(outcome.errors) == 1

    @pytest.mark.asyncio
    async def test_missing_cell_not_counted(self):
        session = RecordingSession(existing={"9q8yyk1"})

        outcome = await SqlCellStore(session).bulk_partial_update(
            [cell_update("9q8yyk1"), cell_update("9q8yyk9")]
        )

        assert outcome.matched == 1
        assert outcome.errors == []

    @pytest.mark.asyncio
    async def test_sets_factors_and_score(self):
        session = RecordingSession(existing={"9q8yyk1"})

        await SqlCellStore(session).bulk_partial_update([cell_update("9q8yyk1", police=8)])

        sql = session.sql[0]
        params = session.statements[0].params
        assert sql.startswith("UPDATE safety_cells SET")
        assert "last_updated=now()" in sql
        assert params["police"] == 8
        assert params["score"] == 6.25

    @pytest.mark.asyncio
    async def test_connection_loss_is_fatal(self):
        session = RecordingSession(error=InterfaceError("UPDATE", {}, Exception("connection closed")))

        with pytest.raises(StoreUnavailableError):
            await SqlCellStore(session).bulk_partial_update([cell_update("9q8yyk1")])


class TestSqlCellStoreReads:
    """Tests for batch reads, scans and upserts."""

    @pytest.mark.asyncio
    async def test_batch_get_maps_rows(self):
        row = SafetyCell(
            area_id="9q8yyk1",
            score=8.0,
            lighting=8,
            crowd=8,
            police=8,
            incidents=2,
            accidents=2,
            nearest_police_place_id="station-1",
            nearest_police_distance_m=180.5,
            last_updated=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        session = RecordingSession(rows=[row])

        records = await SqlCellStore(session).batch_get(["9q8yyk1", "9q8yyk1"])

        record = records["9q8yyk1"]
        assert record.score == 8.0
        assert record.factors.incidents == 2
        assert record.nearest_police.place_id == "station-1"
        assert "WHERE safety_cells.area_id IN" in session.sql[0]

    @pytest.mark.asyncio
    async def test_batch_get_unreachable(self):
        session = RecordingSession(error=connection_error())

        with pytest.raises(StoreUnavailableError):
            await SqlCellStore(session).batch_get(["9q8yyk1"])

    @pytest.mark.asyncio
    async def test_scan_least_recently_updated_first(self):
        session = RecordingSession(rows=["9q8yyk1", "9q8yyk2"])

        ids = await SqlCellStore(session).scan_ids(limit=2)

        assert ids == ["9q8yyk1", "9q8yyk2"]
        assert "ORDER BY safety_cells.last_updated, safety_cells.area_id" in session.sql[0]
        assert "LIMIT" in session.sql[0]

    @pytest.mark.asyncio
    async def test_upsert_replaces_on_conflict(self):
        row = SafetyCell(
            area_id="9q8yyk1",
            score=5.0,
            lighting=5,
            crowd=5,
            police=5,
            incidents=5,
            accidents=5,
            last_updated=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        session = RecordingSession(rows=[row])

        saved = await SqlCellStore(session).upsert(SafetyCellRecord(area_id="9q8yyk1"))

        assert "ON CONFLICT (area_id) DO UPDATE SET" in session.sql[0]
        assert saved.area_id == "9q8yyk1"
        assert saved.nearest_police is None
        assert session.commits == 1


# =============================================================================
# POI Store Tests
# =============================================================================

class TestSqlPoiStore:
    """Tests for nearest-station and listing queries."""

    @pytest.mark.asyncio
    async def test_nearest_orders_by_geography_distance(self):
        row = SimpleNamespace(place_id="station-1", name="Mission Station", lat=37.7625, lng=-122.4220)
        session = RecordingSession(rows=[row])

        poi = await SqlPoiStore(session).nearest(37.76, -122.42)

        sql = session.sql[0]
        assert "ORDER BY ST_Distance(" in sql
        assert "geography" in sql.lower()
        assert "ST_MakePoint" in sql
        assert "LIMIT" in sql
        assert poi.place_id == "station-1"
        assert poi.latitude == 37.7625
        assert poi.longitude == -122.4220

    @pytest.mark.asyncio
    async def test_nearest_with_no_stations(self):
        assert await SqlPoiStore(RecordingSession()).nearest(37.76, -122.42) is None

    @pytest.mark.asyncio
    async def test_nearest_unreachable(self):
        session = RecordingSession(error=connection_error())

        with pytest.raises(StoreUnavailableError):
            await SqlPoiStore(session).nearest(37.76, -122.42)

    @pytest.mark.asyncio
    async def test_list_filters_by_envelope(self):
        from saferoute.schemas.common import BoundingBox

        session = RecordingSession()
        bbox = BoundingBox.from_string("-122.52,37.70,-122.35,37.82")

        assert await SqlPoiStore(session).list(bbox=bbox, limit=10) == []
        sql = session.sql[0]
        assert "ST_Intersects(" in sql
        assert "ST_MakeEnvelope(" in sql
