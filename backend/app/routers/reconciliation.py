"""Reconciliation routes — what is still owed to a farmer.

Unknown or out-of-scope farmers yield empty results (never 404) so the
views are safe to poll; only the statement, which describes a farmer,
returns 404.
"""

from fastapi import APIRouter, Depends

from app.auth.deps import get_ledger_store, require_permission
from app.middleware.exceptions import ResourceNotFoundError
from app.schemas.auth import Caller
from app.schemas.reconciliation import FarmerStatement, UnpaidDelivery, UnpaidTypeTotal
from app.services import reconciliation
from app.services.ledger import LedgerStore

router = APIRouter()


@router.get("/{farmer_id}/types", response_model=list[str])
async def unpaid_types(
    farmer_id: str,
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("payments.read")),
):
    return await reconciliation.list_unpaid_types(store, farmer_id)


@router.get("/{farmer_id}/types/{delivery_type}", response_model=UnpaidTypeTotal)
async def unpaid_total_for_type(
    farmer_id: str,
    delivery_type: str,
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("payments.read")),
):
    return await reconciliation.total_unpaid_by_type(store, farmer_id, delivery_type)


@router.get("/{farmer_id}/totals", response_model=list[UnpaidTypeTotal])
async def unpaid_totals(
    farmer_id: str,
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("payments.read")),
):
    return await reconciliation.unpaid_totals_by_type(store, farmer_id)


@router.get("/{farmer_id}/deliveries", response_model=list[UnpaidDelivery])
async def unpaid_deliveries(
    farmer_id: str,
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("payments.read")),
):
    return await reconciliation.list_unpaid_deliveries(store, farmer_id)


@router.get("/{farmer_id}/statement", response_model=FarmerStatement)
async def statement(
    farmer_id: str,
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("payments.read")),
):
    result = await reconciliation.farmer_statement(store, farmer_id)
    if result is None:
        raise ResourceNotFoundError("Farmer", farmer_id)
    return result
