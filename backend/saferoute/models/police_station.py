"""Police station database model.

Rows are written by a separate ingestion job; this service only reads them.
"""

from datetime import datetime
from typing import Optional

from geoalchemy2 import Geometry
from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from saferoute.models.base import Base, TimestampMixin


class PoliceStation(Base, TimestampMixin):
    """Geocoded police station (point of interest)."""

    __tablename__ = "police_stations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Google Place ID
    place_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Point location with a GiST index for nearest-neighbor queries
    location: Mapped[str] = mapped_column(
        Geometry(geometry_type="POINT", srid=4326),
        nullable=False,
    )
    geohash: Mapped[Optional[str]] = mapped_column(String(12), index=True, nullable=True)

    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
