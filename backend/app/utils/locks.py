"""Downstream locking — prevent edits to delivery fields a payment relies on.

Each check function returns a LockInfo describing which fields are locked
and why, without raising exceptions.  The caller decides whether to
block the request based on which fields are being updated.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.payment import Payment, PaymentStatus


# ── Data structures ────────────────────────────────────────────


@dataclass
class FieldLock:
    """A single locked field with reason and unlock instructions."""
    field: str
    reason: str
    blocker_type: str   # "payment"
    blocker_ref: str    # human-readable reference (e.g. "PAY-20260301-014")
    unlock_hint: str    # "Void the payment first."


@dataclass
class LockInfo:
    """Lock state for an entity.  Empty locked_fields means nothing locked."""
    locked_fields: dict[str, FieldLock] = field(default_factory=dict)

    @property
    def is_locked(self) -> bool:
        return len(self.locked_fields) > 0

    def check_update(self, updating_fields: set[str]) -> FieldLock | None:
        """Return the first FieldLock that conflicts, or None."""
        for f in sorted(updating_fields):
            if f in self.locked_fields:
                return self.locked_fields[f]
        return None


def _add_locks(
    info: LockInfo,
    field_names: list[str],
    reason: str,
    blocker_type: str,
    blocker_ref: str,
    unlock_hint: str,
) -> None:
    for name in field_names:
        info.locked_fields[name] = FieldLock(
            field=name,
            reason=f"Cannot edit {name}: {reason}",
            blocker_type=blocker_type,
            blocker_ref=blocker_ref,
            unlock_hint=unlock_hint,
        )


# ── Delivery locks (downstream: Completed payment) ────────────


DELIVERY_SETTLED_FIELDS = ["kgs_delivered", "type", "farmer_id"]


async def get_delivery_locks(db: AsyncSession, delivery) -> LockInfo:
    """Check if a delivery is settled by a Completed payment.

    Pending and Failed payments leave the delivery editable: it is still
    unpaid from the ledger's point of view.
    """
    info = LockInfo()

    if not delivery.payment_id:
        return info

    result = await db.execute(
        select(Payment.payment_ref, Payment.status).where(Payment.id == delivery.payment_id)
    )
    row = result.one_or_none()
    if not row or row[1] != PaymentStatus.COMPLETED.value:
        return info

    _add_locks(
        info,
        DELIVERY_SETTLED_FIELDS,
        reason=f"Delivery is settled by payment {row[0]}",
        blocker_type="payment",
        blocker_ref=row[0],
        unlock_hint="Void the payment first.",
    )
    return info
