"""Delivery routes — intake, listing and (admin) edits."""

from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query, status

from app.auth.deps import get_ledger_store, require_permission
from app.models.delivery import DeliveryType
from app.schemas.auth import Caller
from app.schemas.common import PaginatedResponse
from app.schemas.delivery import DeliveryCreate, DeliveryOut, DeliveryUpdate
from app.services import intake
from app.services.ledger import LedgerFilter, LedgerStore
from app.utils.cache import invalidate_after_commit

router = APIRouter()


@router.get("/", response_model=PaginatedResponse[DeliveryOut])
async def list_deliveries(
    farmer_id: str | None = Query(None),
    type: DeliveryType | None = Query(None),
    region: str | None = Query(None),
    driver: str | None = Query(None),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    unpaid_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("deliveries.read")),
):
    """Deliveries newest first.  `region` must match a scoped caller's own."""
    store = LedgerStore(store.db, store.scope.narrow(region))
    deliveries = await intake.list_deliveries(store, LedgerFilter(
        farmer_id=farmer_id,
        type=type.value if type else None,
        driver=driver,
        start=datetime.combine(start_date, time.min) if start_date else None,
        end=datetime.combine(end_date, time.max) if end_date else None,
        unpaid_only=unpaid_only,
    ))
    page = deliveries[offset:offset + limit]
    return PaginatedResponse[DeliveryOut](
        items=await intake.delivery_outs(store, page),
        total=len(deliveries),
        limit=limit,
        offset=offset,
    )


@router.post("/", response_model=DeliveryOut, status_code=status.HTTP_201_CREATED)
async def create_delivery(
    body: DeliveryCreate,
    store: LedgerStore = Depends(get_ledger_store),
    caller: Caller = Depends(require_permission("deliveries.write")),
):
    delivery = await intake.create_delivery(store, caller, body)
    invalidate_after_commit(store.db)
    return await intake.delivery_out(store, delivery)


@router.get("/{delivery_id}", response_model=DeliveryOut)
async def get_delivery(
    delivery_id: str,
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("deliveries.read")),
):
    delivery = await intake.get_delivery(store, delivery_id)
    return await intake.delivery_out(store, delivery)


@router.patch("/{delivery_id}", response_model=DeliveryOut)
async def update_delivery(
    delivery_id: str,
    body: DeliveryUpdate,
    store: LedgerStore = Depends(get_ledger_store),
    caller: Caller = Depends(require_permission("deliveries.manage")),
):
    """Edit a delivery.  Settled fields are locked under a Completed payment."""
    delivery = await intake.update_delivery(store, caller, delivery_id, body)
    invalidate_after_commit(store.db)
    return await intake.delivery_out(store, delivery)
