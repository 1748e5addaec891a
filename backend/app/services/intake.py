"""Intake service — registering farmers and recording weighed deliveries.

Writes are region-checked with AccessScope.ensure_writable: a field
agent can register farmers at, and record deliveries into, their own
region only.  Delivery edits honour the downstream locks in
app.utils.locks (settled quantities cannot change under a Completed
payment).
"""

import logging
from datetime import datetime

from app.middleware.exceptions import ConflictError, ResourceNotFoundError
from app.models.delivery import Delivery
from app.models.farmer import Farmer
from app.schemas.auth import Caller
from app.schemas.delivery import DeliveryCreate, DeliveryOut, DeliveryUpdate
from app.schemas.farmer import FarmerCreate, FarmerUpdate
from app.services.ledger import LedgerFilter, LedgerStore
from app.services.reconciliation import is_unpaid
from app.utils.activity import log_activity
from app.utils.locks import DELIVERY_SETTLED_FIELDS, get_delivery_locks

logger = logging.getLogger(__name__)


# ── Farmers ──────────────────────────────────────────────────

async def create_farmer(store: LedgerStore, caller: Caller, body: FarmerCreate) -> Farmer:
    store.scope.ensure_writable(body.weigh_station, "farmer")

    farmer = Farmer(
        **body.model_dump(),
        created_by=caller.id,
    )
    await store.insert(farmer)

    await log_activity(
        store.db, caller,
        action="created",
        entity_type="farmer",
        entity_id=farmer.id,
        entity_code=farmer.cell_number,
        summary=f"Registered farmer {farmer.name} at {farmer.weigh_station}",
    )
    logger.info("Farmer %s registered at %s by %s", farmer.id, farmer.weigh_station, caller.id)
    return farmer


async def get_farmer(store: LedgerStore, farmer_id: str) -> Farmer:
    farmer = await store.get_farmer(farmer_id)
    if farmer is None:
        raise ResourceNotFoundError("Farmer", farmer_id)
    return farmer


async def update_farmer(
    store: LedgerStore,
    caller: Caller,
    farmer_id: str,
    body: FarmerUpdate,
) -> Farmer:
    farmer = await get_farmer(store, farmer_id)
    changes = body.model_dump(exclude_unset=True)
    if "weigh_station" in changes:
        store.scope.ensure_writable(changes["weigh_station"], "farmer")

    for field, value in changes.items():
        setattr(farmer, field, value)
    await store.db.flush()

    await log_activity(
        store.db, caller,
        action="updated",
        entity_type="farmer",
        entity_id=farmer.id,
        entity_code=farmer.cell_number,
        summary=f"Updated farmer {farmer.name}",
        details={"fields": sorted(changes)},
    )
    return farmer


# ── Deliveries ───────────────────────────────────────────────

async def delivery_outs(store: LedgerStore, deliveries: list[Delivery]) -> list[DeliveryOut]:
    """Response models with the derived paid flag and current locks.

    Payment statuses are read unscoped: a delivery in the caller's region
    may be settled by a payment to a farmer registered elsewhere.
    """
    payment_ids = {d.payment_id for d in deliveries if d.payment_id}
    statuses = {}
    if payment_ids:
        payments = await LedgerStore(store.db).find_payments(LedgerFilter(ids=payment_ids))
        statuses = {p.id: p.status for p in payments}

    outs = []
    for d in deliveries:
        status = statuses.get(d.payment_id)
        out = DeliveryOut.model_validate(d)
        out.paid = not is_unpaid(status)
        out.locked_fields = list(DELIVERY_SETTLED_FIELDS) if out.paid else []
        outs.append(out)
    return outs


async def delivery_out(store: LedgerStore, delivery: Delivery) -> DeliveryOut:
    return (await delivery_outs(store, [delivery]))[0]


async def create_delivery(store: LedgerStore, caller: Caller, body: DeliveryCreate) -> Delivery:
    store.scope.ensure_writable(body.region, "delivery")
    farmer = await get_farmer(store, body.farmer_id)

    delivery = Delivery(
        farmer_id=farmer.id,
        type=body.type,
        kgs_delivered=body.kgs_delivered,
        region=body.region,
        driver=body.driver,
        date=body.date or datetime.utcnow(),
        recorded_by=caller.id,
    )
    await store.insert(delivery)

    await log_activity(
        store.db, caller,
        action="created",
        entity_type="delivery",
        entity_id=delivery.id,
        summary=(
            f"Recorded {delivery.kgs_delivered:g} kg {delivery.type} "
            f"from {farmer.name} ({delivery.region})"
        ),
        details={"farmer_id": farmer.id, "driver": delivery.driver},
    )
    logger.info(
        "Delivery %s recorded: %s kg %s for farmer %s",
        delivery.id, delivery.kgs_delivered, delivery.type, farmer.id,
    )
    return delivery


async def get_delivery(store: LedgerStore, delivery_id: str) -> Delivery:
    found = await store.find_deliveries(LedgerFilter(ids=[delivery_id]))
    if not found:
        raise ResourceNotFoundError("Delivery", delivery_id)
    return found[0]


async def update_delivery(
    store: LedgerStore,
    caller: Caller,
    delivery_id: str,
    body: DeliveryUpdate,
) -> Delivery:
    delivery = await get_delivery(store, delivery_id)
    changes = body.model_dump(exclude_unset=True)

    locks = await get_delivery_locks(store.db, delivery)
    blocked = locks.check_update(set(changes))
    if blocked:
        raise ConflictError(
            f"{blocked.reason}. {blocked.unlock_hint}",
            error_code="FIELD_LOCKED",
            details={
                "field": blocked.field,
                "blocker_type": blocked.blocker_type,
                "blocker_ref": blocked.blocker_ref,
            },
        )

    if "farmer_id" in changes:
        await get_farmer(store, changes["farmer_id"])

    for field, value in changes.items():
        setattr(delivery, field, value)
    await store.db.flush()

    await log_activity(
        store.db, caller,
        action="updated",
        entity_type="delivery",
        entity_id=delivery.id,
        summary=f"Updated delivery {delivery.id}",
        details={"fields": sorted(changes)},
    )
    return delivery


async def list_deliveries(
    store: LedgerStore,
    flt: LedgerFilter,
) -> list[Delivery]:
    """Deliveries newest first; equal dates keep creation order."""
    deliveries = await store.find_deliveries(flt)
    return sorted(deliveries, key=lambda d: d.date, reverse=True)

