"""Report routes — admin analytics over the ledger.

All reports are read-only and cached in Redis per access scope
(see app.utils.cache); ledger writes invalidate them.
"""

from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query

from app.auth.deps import get_ledger_store, require_permission
from app.schemas.auth import Caller
from app.schemas.report import (
    CashflowForecast,
    ComparativeAnalytics,
    DeliveryTypeAnalytics,
    FarmerPerformance,
    FullReport,
    OperationalMetrics,
    PaymentAnalytics,
    RegionalProfitability,
    SummaryReport,
)
from app.services import analytics
from app.services.ledger import LedgerStore
from app.utils.cache import cached

router = APIRouter()


def _range(start_date: date | None, end_date: date | None):
    """Inclusive datetime bounds for a date-only query range."""
    start = datetime.combine(start_date, time.min) if start_date else None
    end = datetime.combine(end_date, time.max) if end_date else None
    return start, end


@router.get("/summary", response_model=SummaryReport)
@cached(prefix="reports")
async def summary(
    region: str | None = Query(None),
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("reports.read")),
):
    return await analytics.summary(store, region=region)


@router.get("/payment-analytics", response_model=PaymentAnalytics)
@cached(prefix="reports")
async def payment_analytics(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    region: str | None = Query(None),
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("reports.read")),
):
    start, end = _range(start_date, end_date)
    return await analytics.payment_analytics(store, start=start, end=end, region=region)


@router.get("/cashflow-forecast", response_model=CashflowForecast)
@cached(prefix="reports")
async def cashflow_forecast(
    days: int = Query(30, ge=1, le=365),
    region: str | None = Query(None),
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("reports.read")),
):
    return await analytics.cashflow_forecast(store, days=days, region=region)


@router.get("/farmer-performance", response_model=FarmerPerformance)
@cached(prefix="reports")
async def farmer_performance(
    sort_by: str = Query("value", pattern="^(value|reliability|volume)$"),
    limit: int | None = Query(None, ge=1, le=500),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    region: str | None = Query(None),
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("reports.read")),
):
    start, end = _range(start_date, end_date)
    return await analytics.farmer_performance(
        store, sort_by=sort_by, limit=limit, start=start, end=end, region=region,
    )


@router.get("/comparative-analytics", response_model=ComparativeAnalytics)
@cached(prefix="reports")
async def comparative_analytics(
    region: str | None = Query(None),
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("reports.read")),
):
    return await analytics.comparative_analytics(store, region=region)


@router.get("/delivery-type-analytics", response_model=DeliveryTypeAnalytics)
@cached(prefix="reports")
async def delivery_type_analytics(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    region: str | None = Query(None),
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("reports.read")),
):
    start, end = _range(start_date, end_date)
    return await analytics.delivery_type_analytics(store, start=start, end=end, region=region)


@router.get("/regional-profitability", response_model=RegionalProfitability)
@cached(prefix="reports")
async def regional_profitability(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    region: str | None = Query(None),
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("reports.read")),
):
    start, end = _range(start_date, end_date)
    return await analytics.regional_profitability(store, start=start, end=end, region=region)


@router.get("/operational-metrics", response_model=OperationalMetrics)
@cached(prefix="reports")
async def operational_metrics(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    region: str | None = Query(None),
    top_drivers: int = Query(5, ge=1, le=50),
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("reports.read")),
):
    start, end = _range(start_date, end_date)
    return await analytics.operational_metrics(
        store, start=start, end=end, region=region, top_drivers=top_drivers,
    )


@router.get("/full", response_model=FullReport)
@cached(prefix="reports")
async def full_report(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    region: str | None = Query(None),
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("reports.read")),
):
    """All sections; a failing section comes back zeroed and listed in `errors`."""
    start, end = _range(start_date, end_date)
    return await analytics.full_report(store, start=start, end=end, region=region)
