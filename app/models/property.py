from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.session import Base


class Property(Base):
    """Read model for property coordinates. Rows are loaded by the import pipeline."""

    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(primary_key=True)
    folio_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, unique=True)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
