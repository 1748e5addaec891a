"""Payment — money issued to a farmer for a set of deliveries.

Lifecycle:  Pending → Completed → Failed (void)
            Failed  → (retry) → new Payment [Completed]

A Payment is never deleted.  Voiding stamps the audit fields
(void_reason / voided_at / voided_by) and flips status to Failed; the
linked deliveries become unpaid again without being touched.  A retry
inserts a fresh Payment whose `retry_of` points back at the Failed one,
which stays exactly as it was.

Invariant:  amount_paid == kgs_delivered × price_per_kg
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class PaymentStatus(str, enum.Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"


# Statuses that leave a delivery open for a new claim
OPEN_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value)


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_farmer_date", "farmer_id", "date"),
        Index("ix_payments_status_date", "status", "date"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    payment_ref: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )

    # ── Links ────────────────────────────────────────────────
    farmer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("farmers.id"), nullable=False, index=True
    )
    # JSON array of delivery IDs this payment covers (snapshot at creation)
    delivery_ids: Mapped[list] = mapped_column(JSON, default=list)
    # Set on retries: the Failed payment this one replaces
    retry_of: Mapped[str | None] = mapped_column(String(36), index=True)

    # ── Amounts ──────────────────────────────────────────────
    delivery_type: Mapped[str] = mapped_column(String(20), nullable=False)
    kgs_delivered: Mapped[float] = mapped_column(Float, nullable=False)
    price_per_kg: Mapped[float] = mapped_column(Float, nullable=False)
    amount_paid: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="KES")

    # ── Status ───────────────────────────────────────────────
    # Pending | Completed | Failed
    status: Mapped[str] = mapped_column(
        String(20), default=PaymentStatus.COMPLETED.value, index=True
    )
    date: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    # ── Audit ────────────────────────────────────────────────
    recorded_by: Mapped[str] = mapped_column(String(36), nullable=False)  # user_id
    retry_reason: Mapped[str | None] = mapped_column(Text)
    void_reason: Mapped[str | None] = mapped_column(Text)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime)
    voided_by: Mapped[str | None] = mapped_column(String(36))  # user_id

    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # ── Relationships ────────────────────────────────────────
    farmer = relationship("Farmer", backref="payments", lazy="selectin")


class PaymentRefCounter(Base):
    """Last reference number handed out per day (PAY-YYYYMMDD-NNN)."""
    __tablename__ = "payment_ref_counters"

    day: Mapped[str] = mapped_column(String(8), primary_key=True)  # YYYYMMDD
    last_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
