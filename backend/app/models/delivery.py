"""Delivery — a single weighed drop-off of coffee from a farmer.

A Delivery is settled by at most one Payment at a time through
`payment_id`.  There is no stored "paid" flag: a delivery
is unpaid iff `payment_id` is NULL or points at a Pending/Failed payment
(see `app.services.ledger.unpaid_clause`).
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class DeliveryType(str, enum.Enum):
    CHERRY = "Cherry"
    PARCHMENT = "Parchment"


class Delivery(Base):
    __tablename__ = "deliveries"
    __table_args__ = (
        Index("ix_deliveries_farmer_date", "farmer_id", "date"),
        Index("ix_deliveries_farmer_type", "farmer_id", "type"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    farmer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("farmers.id"), nullable=False, index=True
    )

    # ── Weighing ─────────────────────────────────────────────
    # Cherry | Parchment
    type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    kgs_delivered: Mapped[float] = mapped_column(Float, nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    region: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    driver: Mapped[str] = mapped_column(String(100), nullable=False)

    # ── Settlement ───────────────────────────────────────────
    # Claimed atomically by app.services.ledger.LedgerStore.claim_deliveries
    payment_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("payments.id"), index=True
    )

    # ── Metadata ─────────────────────────────────────────────
    recorded_by: Mapped[str | None] = mapped_column(String(36))  # user_id
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # ── Relationships ────────────────────────────────────────
    farmer = relationship("Farmer", backref="deliveries")
    payment = relationship("Payment", foreign_keys=[payment_id])
