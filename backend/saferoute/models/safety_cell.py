"""Safety cell database model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Float, String, func
from sqlalchemy.orm import Mapped, mapped_column

from saferoute.models.base import Base, TimestampMixin


class SafetyCell(Base, TimestampMixin):
    """Safety score and contributing factors for one geohash cell.

    ``score`` is always the weighted aggregate of the five factor columns.
    Rows are created lazily the first time a cell is referenced.
    """

    __tablename__ = "safety_cells"
    __table_args__ = (
        CheckConstraint("score >= 0 AND score <= 10", name="ck_safety_cells_score_range"),
    )

    # Geohash (precision 7)
    area_id: Mapped[str] = mapped_column(String(12), primary_key=True)

    score: Mapped[float] = mapped_column(Float, default=5.0, nullable=False)

    # Factors (0-10, 5 is neutral)
    lighting: Mapped[float] = mapped_column(Float, default=5.0, nullable=False)
    crowd: Mapped[float] = mapped_column(Float, default=5.0, nullable=False)
    police: Mapped[float] = mapped_column(Float, default=5.0, nullable=False)
    incidents: Mapped[float] = mapped_column(Float, default=5.0, nullable=False)
    accidents: Mapped[float] = mapped_column(Float, default=5.0, nullable=False)

    # Weak reference to police_stations.place_id, no foreign key
    nearest_police_place_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    nearest_police_distance_m: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
