"""Payment lifecycle tests: create, complete, void and retry."""

import re

import pytest
from sqlalchemy import select

from app.middleware.exceptions import (
    ConflictError,
    InvalidStateTransition,
    ResourceNotFoundError,
    ValidationError,
)
from app.models.activity_log import ActivityLog
from app.schemas.delivery import DeliveryUpdate
from app.services import intake, payments, reconciliation


async def _pay(store, caller, farmer, deliveries, **kw):
    kw.setdefault("delivery_type", deliveries[0].type if deliveries else "Cherry")
    kw.setdefault("price_per_kg", 50.0)
    return await payments.create_payment(
        store, caller,
        farmer_id=farmer.id,
        delivery_ids=[d.id for d in deliveries],
        **kw,
    )


@pytest.mark.unit
@pytest.mark.asyncio
class TestCreatePayment:
    """Paying a farmer for unpaid deliveries."""

    async def test_amount_is_kgs_times_price(self, store, ledger, admin):
        farmer = await ledger.farmer()
        d1 = await ledger.delivery(farmer, kgs=100)
        d2 = await ledger.delivery(farmer, kgs=50)

        payment = await _pay(store, admin, farmer, [d1, d2], price_per_kg=50)

        assert payment.kgs_delivered == 150
        assert payment.amount_paid == 7500
        assert payment.status == "Completed"
        assert payment.recorded_by == admin.id
        assert await reconciliation.list_unpaid_types(store, farmer.id) == []

    async def test_payment_ref_format(self, store, ledger, admin):
        """References look like PAY-YYYYMMDD-NNN and count up within a day."""
        farmer = await ledger.farmer()
        first = await _pay(store, admin, farmer, [await ledger.delivery(farmer)])
        second = await _pay(store, admin, farmer, [await ledger.delivery(farmer)])

        assert re.fullmatch(r"PAY-\d{8}-001", first.payment_ref)
        assert second.payment_ref.endswith("-002")

    async def test_activity_is_logged(self, store, ledger, admin, db_session):
        farmer = await ledger.farmer()
        payment = await _pay(store, admin, farmer, [await ledger.delivery(farmer)])
        await db_session.flush()

        rows = (await db_session.execute(
            select(ActivityLog).where(ActivityLog.entity_id == payment.id)
        )).scalars().all()
        assert [r.action for r in rows] == ["created"]

    @pytest.mark.parametrize("price", [0, -5])
    async def test_rejects_non_positive_price(self, store, ledger, admin, price):
        farmer = await ledger.farmer()
        d = await ledger.delivery(farmer)
        with pytest.raises(ValidationError):
            await _pay(store, admin, farmer, [d], price_per_kg=price)

    async def test_rejects_empty_delivery_set(self, store, ledger, admin):
        farmer = await ledger.farmer()
        with pytest.raises(ValidationError):
            await _pay(store, admin, farmer, [])

    async def test_rejects_failed_initial_status(self, store, ledger, admin):
        farmer = await ledger.farmer()
        d = await ledger.delivery(farmer)
        with pytest.raises(ValidationError):
            await _pay(store, admin, farmer, [d], status="Failed")

    async def test_rejects_type_mismatch(self, store, ledger, admin):
        farmer = await ledger.farmer()
        d = await ledger.delivery(farmer, type="Parchment")
        with pytest.raises(ValidationError):
            await _pay(store, admin, farmer, [d], delivery_type="Cherry")

    async def test_rejects_other_farmers_delivery(self, store, ledger, admin):
        farmer = await ledger.farmer()
        other = await ledger.farmer(name="Kamau")
        d = await ledger.delivery(other)
        with pytest.raises(ValidationError):
            await _pay(store, admin, farmer, [d])

    async def test_unknown_farmer(self, store, ledger, admin):
        farmer = await ledger.farmer()
        d = await ledger.delivery(farmer)
        with pytest.raises(ResourceNotFoundError):
            await payments.create_payment(
                store, admin, farmer_id="missing", delivery_ids=[d.id],
                delivery_type="Cherry", price_per_kg=50,
            )

    async def test_unknown_delivery(self, store, ledger, admin):
        farmer = await ledger.farmer()
        with pytest.raises(ResourceNotFoundError):
            await payments.create_payment(
                store, admin, farmer_id=farmer.id, delivery_ids=["missing"],
                delivery_type="Cherry", price_per_kg=50,
            )

    async def test_already_settled_delivery_conflicts(self, store, ledger, admin):
        farmer = await ledger.farmer()
        d = await ledger.delivery(farmer)
        await ledger.payment(farmer, [d], status="Completed")

        with pytest.raises(ConflictError):
            await _pay(store, admin, farmer, [d])


@pytest.mark.unit
@pytest.mark.asyncio
class TestPendingPayments:
    """Pending payments hold deliveries without settling them."""

    async def test_pending_leaves_deliveries_unpaid(self, store, ledger, admin):
        farmer = await ledger.farmer()
        d = await ledger.delivery(farmer)

        payment = await _pay(store, admin, farmer, [d], status="Pending")

        assert payment.status == "Pending"
        total = await reconciliation.total_unpaid_by_type(store, farmer.id, "Cherry")
        assert total.delivery_ids == [d.id]

    async def test_complete_settles(self, store, ledger, admin):
        farmer = await ledger.farmer()
        d = await ledger.delivery(farmer)
        payment = await _pay(store, admin, farmer, [d], status="Pending")

        completed = await payments.complete_payment(store, admin, payment.id)

        assert completed.status == "Completed"
        assert await reconciliation.list_unpaid_types(store, farmer.id) == []

    async def test_complete_requires_pending(self, store, ledger, admin):
        farmer = await ledger.farmer()
        d = await ledger.delivery(farmer)
        payment = await _pay(store, admin, farmer, [d])

        with pytest.raises(InvalidStateTransition) as exc:
            await payments.complete_payment(store, admin, payment.id)
        assert exc.value.error_code == "INVALID_STATE_TRANSITION"

    async def test_complete_after_claim_was_taken_conflicts(self, store, ledger, admin):
        """A Pending payment whose delivery was re-claimed cannot complete."""
        farmer = await ledger.farmer()
        d = await ledger.delivery(farmer)
        pending = await _pay(store, admin, farmer, [d], status="Pending")
        await _pay(store, admin, farmer, [d])

        with pytest.raises(ConflictError):
            await payments.complete_payment(store, admin, pending.id)


@pytest.mark.unit
@pytest.mark.asyncio
class TestVoidAndRetry:
    """Voiding re-opens deliveries; retrying issues a fresh payment."""

    async def test_void_stamps_audit_fields(self, store, ledger, admin):
        farmer = await ledger.farmer()
        d = await ledger.delivery(farmer)
        payment = await _pay(store, admin, farmer, [d])

        voided = await payments.void_payment(store, admin, payment.id, "duplicate")

        assert voided.status == "Failed"
        assert voided.void_reason == "duplicate"
        assert voided.voided_by == admin.id
        assert voided.voided_at is not None
        assert await reconciliation.list_unpaid_types(store, farmer.id) == ["Cherry"]

    @pytest.mark.parametrize("reason", ["", "   ", None])
    async def test_void_requires_reason(self, store, ledger, admin, reason):
        farmer = await ledger.farmer()
        payment = await _pay(store, admin, farmer, [await ledger.delivery(farmer)])
        with pytest.raises(ValidationError):
            await payments.void_payment(store, admin, payment.id, reason)

    async def test_void_twice_is_invalid(self, store, ledger, admin):
        farmer = await ledger.farmer()
        payment = await _pay(store, admin, farmer, [await ledger.delivery(farmer)])
        await payments.void_payment(store, admin, payment.id, "duplicate")

        with pytest.raises(InvalidStateTransition):
            await payments.void_payment(store, admin, payment.id, "again")

    async def test_void_unknown_payment(self, store, admin):
        with pytest.raises(ResourceNotFoundError):
            await payments.void_payment(store, admin, "missing", "duplicate")

    async def test_retry_requires_failed(self, store, ledger, admin):
        farmer = await ledger.farmer()
        payment = await _pay(store, admin, farmer, [await ledger.delivery(farmer)])
        with pytest.raises(InvalidStateTransition):
            await payments.retry_payment(store, admin, payment.id, "wrong number")

    async def test_void_then_retry_scenario(self, store, ledger, admin):
        """100 + 50 kg at 50, void as duplicate, retry at 55."""
        farmer = await ledger.farmer()
        d1 = await ledger.delivery(farmer, kgs=100)
        d2 = await ledger.delivery(farmer, kgs=50)

        original = await _pay(store, admin, farmer, [d1, d2], price_per_kg=50)
        assert original.amount_paid == 7500

        await payments.void_payment(store, admin, original.id, "duplicate")
        total = await reconciliation.total_unpaid_by_type(store, farmer.id, "Cherry")
        assert total.total_kgs == 150

        retried = await payments.retry_payment(
            store, admin, original.id, "corrected price", price_per_kg=55,
        )
        assert retried.id != original.id
        assert retried.status == "Completed"
        assert retried.amount_paid == 8250
        assert retried.retry_of == original.id
        assert retried.retry_reason == "corrected price"
        assert sorted(retried.delivery_ids) == sorted([d1.id, d2.id])

        await store.refresh(original)
        assert original.status == "Failed"
        assert original.amount_paid == 7500
        assert original.void_reason == "duplicate"
        assert await reconciliation.list_unpaid_types(store, farmer.id) == []

    async def test_retry_keeps_original_price_by_default(self, store, ledger, admin):
        farmer = await ledger.farmer()
        payment = await _pay(store, admin, farmer, [await ledger.delivery(farmer, kgs=10)],
                             price_per_kg=42)
        await payments.void_payment(store, admin, payment.id, "bank bounced")

        retried = await payments.retry_payment(store, admin, payment.id, "resend")
        assert retried.price_per_kg == 42
        assert retried.amount_paid == 420

    async def test_second_retry_conflicts(self, store, ledger, admin):
        """Deliveries settled by the first retry cannot be claimed again."""
        farmer = await ledger.farmer()
        payment = await _pay(store, admin, farmer, [await ledger.delivery(farmer)])
        await payments.void_payment(store, admin, payment.id, "duplicate")
        await payments.retry_payment(store, admin, payment.id, "resend")

        with pytest.raises(ConflictError):
            await payments.retry_payment(store, admin, payment.id, "resend again")

    @pytest.mark.parametrize("move_farmer, new_type", [
        (True, None),
        (False, "Parchment"),
        (True, "Parchment"),
    ])
    async def test_retry_rechecks_edited_deliveries(
        self, store, ledger, admin, move_farmer, new_type,
    ):
        """A delivery reassigned after the void is not paid under the old terms."""
        alice = await ledger.farmer(name="Alice")
        bob = await ledger.farmer(name="Bob")
        d = await ledger.delivery(alice)
        payment = await _pay(store, admin, alice, [d])
        await payments.void_payment(store, admin, payment.id, "wrong farmer")

        edit = {}
        if move_farmer:
            edit["farmer_id"] = bob.id
        if new_type:
            edit["type"] = new_type
        await intake.update_delivery(store, admin, d.id, DeliveryUpdate(**edit))

        with pytest.raises(ValidationError) as exc:
            await payments.retry_payment(store, admin, payment.id, "resend")
        assert exc.value.details["delivery_ids"] == [d.id]

        retries = await payments.list_payments(store, farmer_id=alice.id)
        assert [p.id for p in retries] == [payment.id]
        await store.refresh(d)
        assert d.payment_id == payment.id


@pytest.mark.unit
@pytest.mark.asyncio
class TestListPayments:

    async def test_newest_first_with_filters(self, store, ledger):
        farmer = await ledger.farmer()
        other = await ledger.farmer(name="Kamau")
        old = await ledger.payment(farmer, days_ago=5, kgs=1)
        new = await ledger.payment(farmer, days_ago=1, kgs=1, status="Pending")
        await ledger.payment(other, days_ago=2, kgs=1)

        rows = await payments.list_payments(store, farmer_id=farmer.id)
        assert [p.id for p in rows] == [new.id, old.id]

        pending = await payments.list_payments(store, status="Pending")
        assert [p.id for p in pending] == [new.id]


@pytest.mark.unit
def test_compute_amount_rounds_to_cents():
    assert payments.compute_amount(3.333, 3) == 10.0
    assert payments.compute_amount(12.5, 47.9) == 598.75
