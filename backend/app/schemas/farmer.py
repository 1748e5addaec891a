"""Pydantic schemas for Farmer CRUD operations."""

from datetime import datetime

from pydantic import BaseModel, Field

from app.models.farmer import Season


# ── Create ───────────────────────────────────────────────────

class FarmerCreate(BaseModel):
    model_config = {"use_enum_values": True}

    name: str = Field(..., min_length=1, max_length=255)
    cell_number: str = Field(..., min_length=1, max_length=20)
    national_id: str = Field(..., min_length=1, max_length=30)
    season: Season
    weigh_station: str = Field(..., min_length=1, max_length=100)

    # Optional location
    farm_lat: float | None = Field(None, ge=-90, le=90)
    farm_lng: float | None = Field(None, ge=-180, le=180)
    farm_address: str | None = None


# ── Update (partial) ─────────────────────────────────────────

class FarmerUpdate(BaseModel):
    model_config = {"use_enum_values": True}

    name: str | None = Field(None, min_length=1, max_length=255)
    cell_number: str | None = Field(None, min_length=1, max_length=20)
    season: Season | None = None
    weigh_station: str | None = Field(None, min_length=1, max_length=100)
    farm_lat: float | None = Field(None, ge=-90, le=90)
    farm_lng: float | None = Field(None, ge=-180, le=180)
    farm_address: str | None = None


# ── Response ─────────────────────────────────────────────────

class FarmerOut(BaseModel):
    id: str
    name: str
    cell_number: str
    national_id: str
    season: str
    weigh_station: str
    farm_lat: float | None = None
    farm_lng: float | None = None
    farm_address: str | None = None
    created_by: str
    created_at: datetime

    model_config = {"from_attributes": True}
