"""Pydantic schemas for farmer payments and their lifecycle actions."""

from datetime import datetime

from pydantic import BaseModel, field_validator
from sqlalchemy import inspect

from app.models.delivery import DeliveryType
from app.models.payment import PaymentStatus


class PaymentCreate(BaseModel):
    farmer_id: str
    delivery_ids: list[str]
    delivery_type: DeliveryType
    price_per_kg: float
    # Completed in the common path; Pending holds the claim until completed
    status: PaymentStatus = PaymentStatus.COMPLETED
    payment_date: datetime | None = None
    notes: str | None = None

    @field_validator("price_per_kg")
    @classmethod
    def price_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("price_per_kg must be positive")
        return v

    @field_validator("status")
    @classmethod
    def valid_initial_status(cls, v: PaymentStatus) -> PaymentStatus:
        if v == PaymentStatus.FAILED:
            raise ValueError("status must be 'Completed' or 'Pending'")
        return v


class PaymentVoid(BaseModel):
    reason: str


class PaymentRetry(BaseModel):
    reason: str
    price_per_kg: float | None = None

    @field_validator("price_per_kg")
    @classmethod
    def price_positive(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError("price_per_kg must be positive")
        return v


class PaymentOut(BaseModel):
    id: str
    payment_ref: str
    farmer_id: str
    farmer_name: str | None = None
    delivery_ids: list[str]
    delivery_type: str
    kgs_delivered: float
    price_per_kg: float
    amount_paid: float
    currency: str
    status: str
    date: datetime
    recorded_by: str
    retry_of: str | None = None
    retry_reason: str | None = None
    void_reason: str | None = None
    voided_at: datetime | None = None
    voided_by: str | None = None
    notes: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}

    @classmethod
    def from_payment(cls, payment) -> "PaymentOut":
        out = cls.model_validate(payment)
        # Only read the farmer if it is already loaded (no lazy IO in async)
        if "farmer" not in inspect(payment).unloaded and payment.farmer:
            out.farmer_name = payment.farmer.name
        out.delivery_ids = list(payment.delivery_ids or [])
        return out
