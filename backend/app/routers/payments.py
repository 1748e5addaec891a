"""Payment routes — create, complete, void and retry farmer payments.

Every write invalidates the cached reports across all scopes once it commits.
"""

from fastapi import APIRouter, Depends, Query, status

from app.auth.deps import get_ledger_store, require_permission
from app.middleware.exceptions import ResourceNotFoundError
from app.models.payment import PaymentStatus
from app.schemas.auth import Caller
from app.schemas.common import PaginatedResponse
from app.schemas.payment import PaymentCreate, PaymentOut, PaymentRetry, PaymentVoid
from app.services import payments as payment_service
from app.services.ledger import LedgerStore
from app.utils.cache import invalidate_after_commit

router = APIRouter()


async def _out(store: LedgerStore, payment) -> PaymentOut:
    # Reload so the farmer relationship is populated for farmer_name
    return PaymentOut.from_payment(await store.refresh(payment))


@router.get("/", response_model=PaginatedResponse[PaymentOut])
async def list_payments(
    farmer_id: str | None = Query(None),
    status_filter: PaymentStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("payments.read")),
):
    payments = await payment_service.list_payments(
        store,
        farmer_id=farmer_id,
        status=status_filter.value if status_filter else None,
    )
    page = payments[offset:offset + limit]
    return PaginatedResponse[PaymentOut](
        items=[PaymentOut.from_payment(p) for p in page],
        total=len(payments),
        limit=limit,
        offset=offset,
    )


@router.get("/{payment_id}", response_model=PaymentOut)
async def get_payment(
    payment_id: str,
    store: LedgerStore = Depends(get_ledger_store),
    _caller: Caller = Depends(require_permission("payments.read")),
):
    payment = await store.get_payment(payment_id)
    if payment is None:
        raise ResourceNotFoundError("Payment", payment_id)
    return PaymentOut.from_payment(payment)


@router.post("/", response_model=PaymentOut, status_code=status.HTTP_201_CREATED)
async def create_payment(
    body: PaymentCreate,
    store: LedgerStore = Depends(get_ledger_store),
    caller: Caller = Depends(require_permission("payments.write")),
):
    """Pay a farmer for unpaid deliveries of one type.

    409 CONFLICT if any delivery is already settled (including by a
    payment created concurrently).
    """
    payment = await payment_service.create_payment(
        store, caller,
        farmer_id=body.farmer_id,
        delivery_ids=body.delivery_ids,
        delivery_type=body.delivery_type.value,
        price_per_kg=body.price_per_kg,
        status=body.status.value,
        payment_date=body.payment_date,
        notes=body.notes,
    )
    invalidate_after_commit(store.db)
    return await _out(store, payment)


@router.post("/{payment_id}/complete", response_model=PaymentOut)
async def complete_payment(
    payment_id: str,
    store: LedgerStore = Depends(get_ledger_store),
    caller: Caller = Depends(require_permission("payments.write")),
):
    payment = await payment_service.complete_payment(store, caller, payment_id)
    invalidate_after_commit(store.db)
    return await _out(store, payment)


@router.post("/{payment_id}/void", response_model=PaymentOut)
async def void_payment(
    payment_id: str,
    body: PaymentVoid,
    store: LedgerStore = Depends(get_ledger_store),
    caller: Caller = Depends(require_permission("payments.write")),
):
    payment = await payment_service.void_payment(store, caller, payment_id, body.reason)
    invalidate_after_commit(store.db)
    return await _out(store, payment)


@router.post("/{payment_id}/retry", response_model=PaymentOut, status_code=status.HTTP_201_CREATED)
async def retry_payment(
    payment_id: str,
    body: PaymentRetry,
    store: LedgerStore = Depends(get_ledger_store),
    caller: Caller = Depends(require_permission("payments.write")),
):
    """Issue a new Completed payment for a Failed one's deliveries."""
    payment = await payment_service.retry_payment(
        store, caller, payment_id, body.reason, body.price_per_kg,
    )
    invalidate_after_commit(store.db)
    return await _out(store, payment)
