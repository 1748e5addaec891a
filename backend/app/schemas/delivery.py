"""Pydantic schemas for Delivery intake and edits."""

from datetime import datetime

from pydantic import BaseModel, Field

from app.models.delivery import DeliveryType


# ── Create ───────────────────────────────────────────────────

class DeliveryCreate(BaseModel):
    model_config = {"use_enum_values": True}

    farmer_id: str
    type: DeliveryType
    kgs_delivered: float = Field(..., gt=0)
    region: str = Field(..., min_length=1, max_length=100)
    driver: str = Field(..., min_length=1, max_length=100)
    # Defaults to now when omitted
    date: datetime | None = None


# ── Update (partial) ─────────────────────────────────────────

class DeliveryUpdate(BaseModel):
    """Editable delivery fields.

    kgs_delivered, type and farmer_id are locked once a Completed
    payment settles the delivery (see app.utils.locks).
    """
    model_config = {"use_enum_values": True}

    farmer_id: str | None = None
    type: DeliveryType | None = None
    kgs_delivered: float | None = Field(None, gt=0)
    driver: str | None = Field(None, min_length=1, max_length=100)
    date: datetime | None = None


# ── Response ─────────────────────────────────────────────────

class DeliveryOut(BaseModel):
    id: str
    farmer_id: str
    type: str
    kgs_delivered: float
    date: datetime
    region: str
    driver: str
    payment_id: str | None = None
    paid: bool = False
    locked_fields: list[str] = []
    recorded_by: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
