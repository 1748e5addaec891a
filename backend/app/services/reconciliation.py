"""Reconciliation service — which deliveries are still owed to a farmer.

A delivery is unpaid iff it has no linked payment, or its linked payment
is Pending or Failed.  Nothing about payability is stored on the
delivery; it is recomputed from the payment join on every query, so a
voided payment re-opens its deliveries without touching them.

All queries are read-only and scope-aware.  An unknown (or out-of-scope)
farmer yields an empty result rather than an error so the queries stay
idempotent and safe to poll.
"""

from collections import defaultdict

from app.models.delivery import Delivery
from app.models.payment import OPEN_STATUSES, PaymentStatus
from app.schemas.reconciliation import (
    FarmerStatement,
    FarmerSummary,
    UnpaidDelivery,
    UnpaidTypeTotal,
)
from app.services.ledger import LedgerFilter, LedgerStore


def is_unpaid(payment_status: str | None) -> bool:
    """In-memory mirror of ledger.unpaid_clause for a delivery's payment status."""
    return payment_status is None or payment_status in OPEN_STATUSES


async def _unpaid_deliveries(
    store: LedgerStore,
    farmer_id: str,
    delivery_type: str | None = None,
    *,
    with_farmer: bool = False,
) -> list[Delivery]:
    # Ordered by creation (insertion order), see LedgerStore.find_deliveries
    if await store.get_farmer(farmer_id) is None:
        return []
    return await store.find_deliveries(
        LedgerFilter(farmer_id=farmer_id, type=delivery_type, unpaid_only=True),
        with_farmer=with_farmer,
    )


async def list_unpaid_types(store: LedgerStore, farmer_id: str) -> list[str]:
    """Delivery types with at least one unpaid delivery, sorted by name."""
    deliveries = await _unpaid_deliveries(store, farmer_id)
    return sorted({d.type for d in deliveries})


async def total_unpaid_by_type(
    store: LedgerStore,
    farmer_id: str,
    delivery_type: str,
) -> UnpaidTypeTotal:
    """Total unpaid kgs and contributing delivery ids for one type."""
    deliveries = await _unpaid_deliveries(store, farmer_id, delivery_type)
    return UnpaidTypeTotal(
        farmer_id=farmer_id,
        type=delivery_type,
        total_kgs=sum(d.kgs_delivered for d in deliveries),
        delivery_ids=[d.id for d in deliveries],
    )


async def unpaid_totals_by_type(store: LedgerStore, farmer_id: str) -> list[UnpaidTypeTotal]:
    """Group every unpaid delivery into exactly one type bucket."""
    groups: dict[str, list[Delivery]] = defaultdict(list)
    for d in await _unpaid_deliveries(store, farmer_id):
        groups[d.type].append(d)
    return [
        UnpaidTypeTotal(
            farmer_id=farmer_id,
            type=t,
            total_kgs=sum(d.kgs_delivered for d in rows),
            delivery_ids=[d.id for d in rows],
        )
        for t, rows in sorted(groups.items())
    ]


async def list_unpaid_deliveries(store: LedgerStore, farmer_id: str) -> list[UnpaidDelivery]:
    """Unpaid deliveries with farmer summary, newest first.

    Ties on date keep creation order (stable sort over the insertion-ordered
    query result).
    """
    deliveries = await _unpaid_deliveries(store, farmer_id, with_farmer=True)
    deliveries = sorted(deliveries, key=lambda d: d.date, reverse=True)
    # reverse=True keeps equal keys in original order (sorted() is stable)
    return [
        UnpaidDelivery(
            id=d.id,
            date=d.date,
            type=d.type,
            kgs_delivered=d.kgs_delivered,
            region=d.region,
            driver=d.driver,
            payment_id=d.payment_id,
            farmer=FarmerSummary.model_validate(d.farmer),
        )
        for d in deliveries
    ]


async def farmer_statement(store: LedgerStore, farmer_id: str) -> FarmerStatement | None:
    """Delivered vs. unpaid vs. paid position for a single farmer."""
    farmer = await store.get_farmer(farmer_id)
    if farmer is None:
        return None

    deliveries = await store.find_deliveries(LedgerFilter(farmer_id=farmer_id))
    payments = await store.find_payments(LedgerFilter(farmer_id=farmer_id))
    status_by_payment = {p.id: p.status for p in payments}

    unpaid_by_type: dict[str, float] = defaultdict(float)
    unpaid_count = 0
    for d in deliveries:
        linked_status = status_by_payment.get(d.payment_id) if d.payment_id else None
        if is_unpaid(linked_status):
            unpaid_count += 1
            unpaid_by_type[d.type] += d.kgs_delivered

    by_status = {s.value: 0 for s in PaymentStatus}
    for p in payments:
        by_status[p.status] = by_status.get(p.status, 0) + 1

    return FarmerStatement(
        farmer_id=farmer.id,
        farmer_name=farmer.name,
        total_deliveries=len(deliveries),
        total_kgs=sum(d.kgs_delivered for d in deliveries),
        unpaid_deliveries=unpaid_count,
        unpaid_kgs=sum(unpaid_by_type.values()),
        unpaid_by_type=dict(sorted(unpaid_by_type.items())),
        total_paid=round(sum(
            p.amount_paid for p in payments if p.status == PaymentStatus.COMPLETED.value
        ), 2),
        payments_by_status=by_status,
    )
