"""Dashboard routes — headline cards and filter dropdown values."""

from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query

from app.auth.deps import get_ledger_store, require_permission
from app.models.delivery import DeliveryType
from app.schemas.auth import Caller
from app.schemas.report import DashboardSummary
from app.services import analytics
from app.services.ledger import LedgerStore
from app.utils.cache import cached

router = APIRouter()


@router.get("/summary", response_model=DashboardSummary)
@cached(prefix="reports")
async def dashboard_summary(
    region: str | None = Query(None),
    driver: str | None = Query(None),
    type: DeliveryType | None = Query(None),
    day: date | None = Query(None, description="Restrict delivery figures to one day"),
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("deliveries.read")),
):
    return await analytics.dashboard_summary(
        store,
        region=region,
        driver=driver,
        delivery_type=type.value if type else None,
        day=datetime.combine(day, time.min) if day else None,
    )


@router.get("/drivers", response_model=list[str])
async def drivers(
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("deliveries.read")),
):
    return await analytics.distinct_drivers(store)


@router.get("/regions", response_model=list[str])
async def regions(
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("deliveries.read")),
):
    return await analytics.distinct_regions(store)
