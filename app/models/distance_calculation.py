from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.session import Base


class DistanceCalculation(Base):
    """One cached property → POI computation, both travel modes side by side."""

    __tablename__ = "distance_calculations"
    __table_args__ = (
        UniqueConstraint("property_id", "poi_id", name="uq_distance_calculations_pair"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    property_id: Mapped[int] = mapped_column(
        ForeignKey("properties.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    poi_id: Mapped[int] = mapped_column(
        ForeignKey("points_of_interest.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Either mode may still be NULL if only the other one was computed
    walking_distance_meters: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    walking_time_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    driving_distance_meters: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    driving_time_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    calculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
