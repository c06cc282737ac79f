"""FastAPI dependencies for stores and the route provider."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from saferoute.db.session import get_db
from saferoute.services.cell_store import CellStore, SqlCellStore
from saferoute.services.poi_store import PoiStore, SqlPoiStore
from saferoute.services.route_provider import RouteProvider, route_provider


async def get_cell_store(db: AsyncSession = Depends(get_db)) -> CellStore:
    return SqlCellStore(db)


async def get_poi_store(db: AsyncSession = Depends(get_db)) -> PoiStore:
    return SqlPoiStore(db)


async def get_route_provider() -> RouteProvider:
    return route_provider
