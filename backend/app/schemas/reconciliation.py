"""Pydantic schemas for reconciliation (unpaid delivery) responses."""

from datetime import datetime

from pydantic import BaseModel


class UnpaidTypeTotal(BaseModel):
    """Unpaid kilograms for one (farmer, delivery type) pair."""
    farmer_id: str
    type: str
    total_kgs: float
    delivery_ids: list[str]


class FarmerSummary(BaseModel):
    id: str
    name: str
    cell_number: str
    weigh_station: str

    model_config = {"from_attributes": True}


class UnpaidDelivery(BaseModel):
    """A delivery awaiting settlement, with its farmer summary."""
    id: str
    date: datetime
    type: str
    kgs_delivered: float
    region: str
    driver: str
    payment_id: str | None = None
    farmer: FarmerSummary


class FarmerStatement(BaseModel):
    """Per-farmer ledger position."""
    farmer_id: str
    farmer_name: str
    total_deliveries: int
    total_kgs: float
    unpaid_deliveries: int
    unpaid_kgs: float
    unpaid_by_type: dict[str, float]
    total_paid: float              # Completed payments only
    payments_by_status: dict[str, int]
