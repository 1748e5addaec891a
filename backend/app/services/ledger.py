"""Ledger store — scoped persistence for farmers, deliveries and payments.

Every read goes through an AccessScope so region isolation is applied in
one place.  The only write with a concurrency contract is
`claim_deliveries`: a single conditional UPDATE that links deliveries to
a payment iff every one of them is still unpaid.  Two payments racing
for overlapping deliveries cannot both win; the loser sees a short row
count and the caller aborts its whole transaction.  Payment reference
numbers come from a per-day counter row (`next_payment_seq`), not from
counting existing references.

Persistence failures (anything but integrity violations, which the HTTP
layer reports as duplicates) are re-raised as StoreError.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.middleware.exceptions import StoreError
from app.models.delivery import Delivery
from app.models.farmer import Farmer
from app.models.payment import OPEN_STATUSES, Payment, PaymentRefCounter
from app.services.scope import AccessScope

logger = logging.getLogger(__name__)


def unpaid_clause():
    """SQL predicate: delivery has no payment, or only a Pending/Failed one.

    This is the single source of truth for payability.
    """
    open_payments = select(Payment.id).where(Payment.status.in_(OPEN_STATUSES))
    return or_(
        Delivery.payment_id.is_(None),
        Delivery.payment_id.in_(open_payments),
    )


@dataclass
class LedgerFilter:
    """Optional filters for ledger queries.  None means "don't filter"."""
    ids: Iterable[str] | None = None
    farmer_id: str | None = None
    type: str | None = None
    region: str | None = None
    driver: str | None = None
    status: str | Iterable[str] | None = None
    start: datetime | None = None
    end: datetime | None = None
    unpaid_only: bool = False


def _surface_store_errors(func):
    """Wrap non-integrity SQLAlchemy failures in StoreError."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Ledger store failure in %s: %s", func.__name__, exc)
            raise StoreError(f"Ledger store failure during {func.__name__}") from exc
    return wrapper


class LedgerStore:
    """Scoped access to the ledger tables for one session."""

    def __init__(self, db: AsyncSession, scope: AccessScope | None = None):
        self.db = db
        self.scope = scope or AccessScope.unrestricted()

    # ── Queries ──────────────────────────────────────────────

    async def _load(self, stmt):
        # Bulk UPDATEs bypass the identity map; reload rows already in the session
        return await self.db.execute(stmt.execution_options(populate_existing=True))

    @_surface_store_errors
    async def find_farmers(self, flt: LedgerFilter | None = None) -> list[Farmer]:
        flt = flt or LedgerFilter()
        stmt = self.scope.farmers(select(Farmer))
        if flt.ids is not None:
            stmt = stmt.where(Farmer.id.in_(list(flt.ids)))
        if flt.region:
            stmt = stmt.where(Farmer.weigh_station == flt.region)
        result = await self._load(stmt.order_by(Farmer.name, Farmer.id))
        return list(result.scalars().all())

    @_surface_store_errors
    async def get_farmer(self, farmer_id: str) -> Farmer | None:
        stmt = self.scope.farmers(select(Farmer).where(Farmer.id == farmer_id))
        return (await self._load(stmt)).scalar_one_or_none()

    @_surface_store_errors
    async def find_deliveries(
        self,
        flt: LedgerFilter | None = None,
        *,
        with_farmer: bool = False,
        for_update: bool = False,
    ) -> list[Delivery]:
        flt = flt or LedgerFilter()
        stmt = self.scope.deliveries(select(Delivery))
        if flt.ids is not None:
            stmt = stmt.where(Delivery.id.in_(list(flt.ids)))
        if flt.farmer_id:
            stmt = stmt.where(Delivery.farmer_id == flt.farmer_id)
        if flt.type:
            stmt = stmt.where(Delivery.type == flt.type)
        if flt.region:
            stmt = stmt.where(Delivery.region == flt.region)
        if flt.driver:
            stmt = stmt.where(Delivery.driver == flt.driver)
        if flt.start:
            stmt = stmt.where(Delivery.date >= flt.start)
        if flt.end:
            stmt = stmt.where(Delivery.date <= flt.end)
        if flt.unpaid_only:
            stmt = stmt.where(unpaid_clause())
        if with_farmer:
            stmt = stmt.options(selectinload(Delivery.farmer))
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._load(stmt.order_by(Delivery.created_at, Delivery.id))
        return list(result.scalars().all())

    @_surface_store_errors
    async def find_payments(self, flt: LedgerFilter | None = None) -> list[Payment]:
        flt = flt or LedgerFilter()
        stmt = self.scope.payments(select(Payment))
        if flt.ids is not None:
            stmt = stmt.where(Payment.id.in_(list(flt.ids)))
        if flt.farmer_id:
            stmt = stmt.where(Payment.farmer_id == flt.farmer_id)
        if flt.type:
            stmt = stmt.where(Payment.delivery_type == flt.type)
        if flt.region:
            stmt = stmt.where(
                Payment.farmer_id.in_(
                    select(Farmer.id).where(Farmer.weigh_station == flt.region)
                )
            )
        if flt.status is not None:
            statuses = [flt.status] if isinstance(flt.status, str) else list(flt.status)
            stmt = stmt.where(Payment.status.in_(statuses))
        if flt.start:
            stmt = stmt.where(Payment.date >= flt.start)
        if flt.end:
            stmt = stmt.where(Payment.date <= flt.end)
        result = await self._load(stmt.order_by(Payment.date, Payment.created_at, Payment.id))
        return list(result.scalars().all())

    @_surface_store_errors
    async def get_payment(self, payment_id: str) -> Payment | None:
        stmt = self.scope.payments(select(Payment).where(Payment.id == payment_id))
        return (await self._load(stmt)).scalar_one_or_none()

    @_surface_store_errors
    async def distinct_delivery_values(self, column: str) -> list[str]:
        """Sorted distinct non-blank values of a delivery column (driver, region)."""
        col = getattr(Delivery, column)
        stmt = self.scope.deliveries(select(col).distinct())
        values = (await self.db.execute(stmt)).scalars().all()
        return sorted(v for v in values if v and v.strip())

    # ── Writes ───────────────────────────────────────────────

    @_surface_store_errors
    async def insert(self, record: Any) -> Any:
        """Add a record and flush so ids and integrity errors surface now."""
        self.db.add(record)
        await self.db.flush()
        return record

    @_surface_store_errors
    async def update_by_id(
        self,
        model: type,
        record_id: str,
        patch: dict,
        *,
        expected: dict | None = None,
    ) -> int:
        """Apply a column patch to one row; returns the affected row count.

        `expected` adds column == value guards, turning the update into a
        compare-and-swap (0 rows means the guard did not hold).
        """
        if not patch:
            return 0
        stmt = update(model).where(model.id == record_id)
        for column, value in (expected or {}).items():
            stmt = stmt.where(getattr(model, column) == value)
        result = await self.db.execute(
            stmt.values(**patch).execution_options(synchronize_session=False)
        )
        return result.rowcount

    @_surface_store_errors
    async def claim_deliveries(self, delivery_ids: Iterable[str], payment_id: str) -> bool:
        """Atomically link every delivery to `payment_id` iff all are unpaid.

        Returns True iff all ids were unclaimed and are now claimed.  On
        False, some rows may already have been updated inside the current
        transaction; the caller must roll back.
        """
        ids = sorted(set(delivery_ids))
        if not ids:
            return False
        # Hold the open payments these deliveries point at, so a concurrent
        # complete either finishes first (and the claim below sees it) or waits
        await self.db.execute(
            select(Payment.id)
            .where(
                Payment.id.in_(select(Delivery.payment_id).where(Delivery.id.in_(ids))),
                Payment.status.in_(OPEN_STATUSES),
            )
            .with_for_update()
        )
        result = await self.db.execute(
            update(Delivery)
            .where(Delivery.id.in_(ids), unpaid_clause())
            .values(payment_id=payment_id)
            .execution_options(synchronize_session=False)
        )
        claimed = result.rowcount
        if claimed != len(ids):
            logger.warning(
                "Claim for payment %s got %d of %d deliveries",
                payment_id, claimed, len(ids),
            )
            return False
        return True

    @_surface_store_errors
    async def next_payment_seq(self, day: str, prefix: str) -> int:
        """Reserve the next payment reference number for `day`.

        One upsert on the day's counter row: concurrent callers serialise
        on that row and never get the same number.  A day's first
        reservation starts after any references already issued with
        `prefix`.
        """
        issued = (
            select(func.count(Payment.id))
            .where(Payment.payment_ref.like(f"{prefix}%"))
            .scalar_subquery()
        )
        dialect = self.db.get_bind().dialect.name
        upsert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = (
            upsert(PaymentRefCounter)
            .values(day=day, last_seq=issued + 1)
            .on_conflict_do_update(
                index_elements=[PaymentRefCounter.day],
                set_={"last_seq": PaymentRefCounter.last_seq + 1},
            )
            .returning(PaymentRefCounter.last_seq)
        )
        return (await self.db.execute(stmt)).scalar_one()

    async def refresh(self, record: Any) -> Any:
        await self.db.refresh(record)
        return record
