"""Farmer — a coffee grower delivering cherry or parchment to a weigh station.

`weigh_station` doubles as the farmer's region: field agents only see
and write farmers whose weigh station matches their assigned region.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class Season(str, enum.Enum):
    LONG = "Long"
    SHORT = "Short"


class Farmer(Base):
    __tablename__ = "farmers"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    cell_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    national_id: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)

    # Long | Short
    season: Mapped[str] = mapped_column(String(10), nullable=False)

    # ── Location ─────────────────────────────────────────────
    weigh_station: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    farm_lat: Mapped[float | None] = mapped_column(Float)
    farm_lng: Mapped[float | None] = mapped_column(Float)
    farm_address: Mapped[str | None] = mapped_column(String(255))

    # ── Metadata ─────────────────────────────────────────────
    created_by: Mapped[str] = mapped_column(String(36), nullable=False)  # user_id
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
