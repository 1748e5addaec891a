"""Payment service — lifecycle of farmer payments.

States and transitions:

    Pending   ──complete──▶ Completed
    Completed ──void──────▶ Failed        (audit fields stamped)
    Failed    ──retry─────▶ new Payment [Completed]   (original untouched)

Settlement is at-most-once per delivery.  Creating (or retrying) a
payment inserts the Payment row and then claims its deliveries with one
conditional UPDATE (LedgerStore.claim_deliveries).  If any delivery was
claimed in the meantime the whole transaction is rolled back and a
ConflictError is raised — never a partial claim.  A retry re-checks its
deliveries against the original farmer and type before claiming them.

Status transitions themselves are compare-and-swap updates guarded on
the expected current status, so two concurrent voids cannot both stamp
the audit fields.
"""

import logging
from datetime import datetime

from app.config import settings
from app.middleware.exceptions import (
    ConflictError,
    InvalidStateTransition,
    ResourceNotFoundError,
    ValidationError,
)
from app.models.delivery import Delivery, DeliveryType
from app.models.payment import Payment, PaymentStatus
from app.schemas.auth import Caller
from app.services.ledger import LedgerFilter, LedgerStore
from app.utils.activity import log_activity

logger = logging.getLogger("coffeetrack.payments")

# action → status the payment must currently be in
REQUIRED_STATUS: dict[str, PaymentStatus] = {
    "complete": PaymentStatus.PENDING,
    "void": PaymentStatus.COMPLETED,
    "retry": PaymentStatus.FAILED,
}


# ── Helpers ──────────────────────────────────────────────────

def compute_amount(kgs_delivered: float, price_per_kg: float) -> float:
    """amount_paid = kgs_delivered × price_per_kg (to the cent)."""
    return round(kgs_delivered * price_per_kg, 2)


def _require_reason(reason: str | None, action: str) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError(f"A reason is required to {action} a payment")
    return reason


def _require_price(price_per_kg: float | None) -> float:
    if price_per_kg is None or price_per_kg <= 0:
        raise ValidationError(
            "price_per_kg must be positive",
            details={"price_per_kg": price_per_kg},
        )
    return price_per_kg


async def _generate_payment_ref(store: LedgerStore) -> str:
    """Generate PAY-YYYYMMDD-NNN where NNN resets daily.

    The number is reserved on the day's counter row, so two payments
    created side by side never share a reference.
    """
    today = datetime.utcnow().strftime("%Y%m%d")
    prefix = f"PAY-{today}-"
    seq = await store.next_payment_seq(today, prefix)
    return f"{prefix}{seq:03d}"


async def _load_payment(store: LedgerStore, payment_id: str) -> Payment:
    payment = await store.get_payment(payment_id)
    if payment is None:
        raise ResourceNotFoundError("Payment", payment_id)
    return payment


def _check_transition(payment: Payment, action: str) -> None:
    if payment.status != REQUIRED_STATUS[action].value:
        raise InvalidStateTransition(payment.id, payment.status, action)


async def _load_payable(
    store: LedgerStore,
    ids: list[str],
    farmer_id: str,
    delivery_type: str,
) -> list[Delivery]:
    """Load the deliveries a payment covers; all must be this farmer's and this type."""
    deliveries = await store.find_deliveries(LedgerFilter(ids=ids))
    found = {d.id for d in deliveries}
    missing = [i for i in ids if i not in found]
    if missing:
        raise ResourceNotFoundError("Delivery", ", ".join(missing))

    foreign = [d.id for d in deliveries if d.farmer_id != farmer_id]
    if foreign:
        raise ValidationError(
            f"Deliveries don't belong to this farmer: {', '.join(foreign)}",
            details={"delivery_ids": foreign},
        )
    mismatched = [d.id for d in deliveries if d.type != delivery_type]
    if mismatched:
        raise ValidationError(
            f"Deliveries are not of type {delivery_type}: {', '.join(mismatched)}",
            details={"delivery_ids": mismatched},
        )
    return deliveries


async def _ensure_unpaid(store: LedgerStore, deliveries: list[Delivery]) -> None:
    """Early, friendly rejection of already-settled deliveries.

    Not the guard against races: claim_deliveries re-checks atomically.
    """
    ids = [d.id for d in deliveries]
    open_ids = {
        d.id for d in await store.find_deliveries(LedgerFilter(ids=ids, unpaid_only=True))
    }
    settled = [i for i in ids if i not in open_ids]
    if settled:
        raise ConflictError(
            f"Deliveries already settled: {', '.join(settled)}",
            details={"delivery_ids": settled},
        )


async def _claim_or_abort(store: LedgerStore, payment: Payment) -> None:
    """Claim the payment's deliveries or roll back the whole operation."""
    ref, ids = payment.payment_ref, list(payment.delivery_ids)
    if await store.claim_deliveries(ids, payment.id):
        return
    await store.db.rollback()
    logger.warning("Settlement conflict: payment %s lost the claim on %s", ref, ", ".join(ids))
    raise ConflictError(
        "One or more deliveries were settled by another payment",
        details={"delivery_ids": ids},
    )


# ── Create ───────────────────────────────────────────────────

async def create_payment(
    store: LedgerStore,
    caller: Caller,
    *,
    farmer_id: str,
    delivery_ids: list[str],
    delivery_type: str,
    price_per_kg: float,
    status: str = PaymentStatus.COMPLETED.value,
    payment_date: datetime | None = None,
    notes: str | None = None,
) -> Payment:
    """Pay a farmer for a set of unpaid deliveries of one type.

    Raises:
        ValidationError        bad price / type / empty or mixed delivery set
        ResourceNotFoundError  unknown farmer or delivery
        ConflictError          a delivery is (or just became) settled
    """
    price_per_kg = _require_price(price_per_kg)
    status = PaymentStatus(status).value
    if status == PaymentStatus.FAILED.value:
        raise ValidationError("A new payment cannot start out Failed")
    if delivery_type not in {t.value for t in DeliveryType}:
        raise ValidationError(f"Unknown delivery type: {delivery_type}")
    ids = list(dict.fromkeys(delivery_ids or []))
    if not ids:
        raise ValidationError("At least one delivery is required")

    farmer = await store.get_farmer(farmer_id)
    if farmer is None:
        raise ResourceNotFoundError("Farmer", farmer_id)

    deliveries = await _load_payable(store, ids, farmer_id, delivery_type)
    await _ensure_unpaid(store, deliveries)

    kgs = sum(d.kgs_delivered for d in deliveries)
    payment = Payment(
        payment_ref=await _generate_payment_ref(store),
        farmer_id=farmer_id,
        delivery_ids=ids,
        delivery_type=delivery_type,
        kgs_delivered=kgs,
        price_per_kg=price_per_kg,
        amount_paid=compute_amount(kgs, price_per_kg),
        currency=settings.default_currency,
        status=status,
        date=payment_date or datetime.utcnow(),
        recorded_by=caller.id,
        notes=notes,
    )
    await store.insert(payment)
    await _claim_or_abort(store, payment)

    await log_activity(
        store.db, caller,
        action="created",
        entity_type="payment",
        entity_id=payment.id,
        entity_code=payment.payment_ref,
        summary=(
            f"Recorded {payment.currency} {payment.amount_paid:.2f} payment "
            f"({payment.payment_ref}) to {farmer.name} for {kgs:g} kg {delivery_type}"
        ),
        details={"farmer_id": farmer_id, "delivery_ids": ids, "status": status},
    )
    logger.info(
        "Payment %s created: %s kg × %s = %s (%s)",
        payment.payment_ref, kgs, price_per_kg, payment.amount_paid, status,
    )
    return payment


# ── Complete (Pending → Completed) ───────────────────────────

async def complete_payment(store: LedgerStore, caller: Caller, payment_id: str) -> Payment:
    """Settle a Pending payment.

    The status flip comes first and holds the payment row; only then is
    ownership of the deliveries checked, with those rows locked.  A claim
    that slipped in before the flip is seen here and the flip is rolled
    back; one that comes after it waits on the payment row and then finds
    the deliveries settled.
    """
    payment = await _load_payment(store, payment_id)
    _check_transition(payment, "complete")
    ref, ids = payment.payment_ref, list(payment.delivery_ids or [])

    updated = await store.update_by_id(
        Payment, payment.id,
        {"status": PaymentStatus.COMPLETED.value},
        expected={"status": PaymentStatus.PENDING.value},
    )
    if not updated:
        await store.refresh(payment)
        raise InvalidStateTransition(payment.id, payment.status, "complete")

    deliveries = await store.find_deliveries(LedgerFilter(ids=ids), for_update=True)
    lost = [d.id for d in deliveries if d.payment_id != payment.id]
    if lost or len(deliveries) != len(ids):
        await store.db.rollback()
        logger.warning("Payment %s lost its pending claim on %s", ref, ", ".join(lost or ids))
        raise ConflictError(
            f"Payment {ref} no longer holds all of its deliveries",
            details={"delivery_ids": lost},
        )
    await store.refresh(payment)

    await log_activity(
        store.db, caller,
        action="completed",
        entity_type="payment",
        entity_id=payment.id,
        entity_code=payment.payment_ref,
        summary=f"Completed pending payment {payment.payment_ref}",
    )
    logger.info("Payment %s completed", payment.payment_ref)
    return payment


# ── Void (Completed → Failed) ────────────────────────────────

async def void_payment(
    store: LedgerStore,
    caller: Caller,
    payment_id: str,
    reason: str,
) -> Payment:
    """Mark a Completed payment Failed and stamp the audit fields.

    Linked deliveries are not touched; they read as unpaid again because
    their payment is now Failed.
    """
    reason = _require_reason(reason, "void")
    payment = await _load_payment(store, payment_id)
    _check_transition(payment, "void")

    updated = await store.update_by_id(
        Payment, payment.id,
        {
            "status": PaymentStatus.FAILED.value,
            "void_reason": reason,
            "voided_at": datetime.utcnow(),
            "voided_by": caller.id,
        },
        expected={"status": PaymentStatus.COMPLETED.value},
    )
    await store.refresh(payment)
    if not updated:
        raise InvalidStateTransition(payment.id, payment.status, "void")

    await log_activity(
        store.db, caller,
        action="voided",
        entity_type="payment",
        entity_id=payment.id,
        entity_code=payment.payment_ref,
        summary=f"Voided {payment.payment_ref}: {reason}",
        details={"reason": reason, "amount_paid": payment.amount_paid},
    )
    logger.info("Payment %s voided by %s: %s", payment.payment_ref, caller.id, reason)
    return payment


# ── Retry (Failed → new Completed payment) ───────────────────

async def retry_payment(
    store: LedgerStore,
    caller: Caller,
    payment_id: str,
    reason: str,
    price_per_kg: float | None = None,
) -> Payment:
    """Issue a fresh Completed payment for a Failed payment's deliveries.

    The Failed original is left exactly as it is.  The new payment
    re-claims the same delivery set, so a second retry of the same
    original (or a retry after the deliveries were paid some other way)
    fails with ConflictError.
    """
    reason = _require_reason(reason, "retry")
    if price_per_kg is not None:
        _require_price(price_per_kg)
    original = await _load_payment(store, payment_id)
    _check_transition(original, "retry")

    # Voiding unlocked the deliveries; they may have been reassigned since
    ids = list(original.delivery_ids or [])
    await _load_payable(store, ids, original.farmer_id, original.delivery_type)

    price = price_per_kg if price_per_kg is not None else original.price_per_kg
    retried = Payment(
        payment_ref=await _generate_payment_ref(store),
        farmer_id=original.farmer_id,
        delivery_ids=ids,
        delivery_type=original.delivery_type,
        kgs_delivered=original.kgs_delivered,
        price_per_kg=price,
        amount_paid=compute_amount(original.kgs_delivered, price),
        currency=original.currency,
        status=PaymentStatus.COMPLETED.value,
        date=datetime.utcnow(),
        recorded_by=caller.id,
        retry_of=original.id,
        retry_reason=reason,
        notes=original.notes,
    )
    original_ref = original.payment_ref
    await store.insert(retried)
    await _claim_or_abort(store, retried)

    await log_activity(
        store.db, caller,
        action="retried",
        entity_type="payment",
        entity_id=retried.id,
        entity_code=retried.payment_ref,
        summary=f"Retried {original_ref} as {retried.payment_ref}: {reason}",
        details={
            "retry_of": original.id,
            "reason": reason,
            "price_per_kg": price,
            "amount_paid": retried.amount_paid,
        },
    )
    logger.info(
        "Payment %s retried as %s at %s/kg", original_ref, retried.payment_ref, price,
    )
    return retried


async def list_payments(
    store: LedgerStore,
    *,
    farmer_id: str | None = None,
    status: str | None = None,
) -> list[Payment]:
    payments = await store.find_payments(LedgerFilter(farmer_id=farmer_id, status=status))
    return sorted(payments, key=lambda p: (p.date, p.created_at), reverse=True)
