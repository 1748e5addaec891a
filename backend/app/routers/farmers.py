"""Farmer routes — registration, lookup and edits (region-scoped)."""

from fastapi import APIRouter, Depends, Query, status

from app.auth.deps import get_ledger_store, require_permission
from app.schemas.auth import Caller
from app.schemas.common import PaginatedResponse
from app.schemas.farmer import FarmerCreate, FarmerOut, FarmerUpdate
from app.services import intake
from app.services.ledger import LedgerFilter, LedgerStore
from app.utils.cache import invalidate_after_commit

router = APIRouter()


@router.get("/", response_model=PaginatedResponse[FarmerOut])
async def list_farmers(
    weigh_station: str | None = Query(None),
    search: str | None = Query(None, description="Case-insensitive name / phone match"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("farmers.read")),
):
    farmers = await store.find_farmers(LedgerFilter(region=weigh_station))
    if search:
        needle = search.lower()
        farmers = [
            f for f in farmers
            if needle in f.name.lower() or needle in f.cell_number.lower()
        ]
    page = farmers[offset:offset + limit]
    return PaginatedResponse[FarmerOut](
        items=[FarmerOut.model_validate(f) for f in page],
        total=len(farmers),
        limit=limit,
        offset=offset,
    )


@router.post("/", response_model=FarmerOut, status_code=status.HTTP_201_CREATED)
async def create_farmer(
    body: FarmerCreate,
    store: LedgerStore = Depends(get_ledger_store),
    caller: Caller = Depends(require_permission("farmers.write")),
):
    farmer = await intake.create_farmer(store, caller, body)
    invalidate_after_commit(store.db)
    return FarmerOut.model_validate(farmer)


@router.get("/{farmer_id}", response_model=FarmerOut)
async def get_farmer(
    farmer_id: str,
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("farmers.read")),
):
    return FarmerOut.model_validate(await intake.get_farmer(store, farmer_id))


@router.patch("/{farmer_id}", response_model=FarmerOut)
async def update_farmer(
    farmer_id: str,
    body: FarmerUpdate,
    store: LedgerStore = Depends(get_ledger_store),
    caller: Caller = Depends(require_permission("farmers.write")),
):
    farmer = await intake.update_farmer(store, caller, farmer_id, body)
    invalidate_after_commit(store.db)
    return FarmerOut.model_validate(farmer)
