"""Reconciliation query engine tests (unpaid deliveries per farmer)."""

from datetime import timedelta

import pytest

from app.services import reconciliation


@pytest.mark.unit
@pytest.mark.asyncio
class TestUnpaidClassification:
    """A delivery is unpaid iff it has no payment or a Pending/Failed one."""

    async def test_no_payment_is_unpaid(self, store, ledger):
        """Deliveries without a payment are listed as unpaid."""
        farmer = await ledger.farmer()
        await ledger.delivery(farmer, kgs=100)

        assert await reconciliation.list_unpaid_types(store, farmer.id) == ["Cherry"]

    async def test_completed_payment_settles(self, store, ledger):
        """A Completed payment removes its deliveries from the unpaid set."""
        farmer = await ledger.farmer()
        d = await ledger.delivery(farmer)
        await ledger.payment(farmer, [d], status="Completed")

        assert await reconciliation.list_unpaid_types(store, farmer.id) == []

    @pytest.mark.parametrize("status", ["Pending", "Failed"])
    async def test_open_payment_keeps_delivery_unpaid(self, store, ledger, status):
        """Pending and Failed payments leave their deliveries unpaid."""
        farmer = await ledger.farmer()
        d = await ledger.delivery(farmer)
        await ledger.payment(farmer, [d], status=status)

        total = await reconciliation.total_unpaid_by_type(store, farmer.id, "Cherry")
        assert total.delivery_ids == [d.id]


@pytest.mark.unit
@pytest.mark.asyncio
class TestUnpaidQueries:
    """Grouping, totals and ordering of unpaid deliveries."""

    async def test_types_are_deduplicated_and_sorted(self, store, ledger):
        """Types list has each type once, alphabetically."""
        farmer = await ledger.farmer()
        await ledger.delivery(farmer, type="Parchment")
        await ledger.delivery(farmer, type="Cherry")
        await ledger.delivery(farmer, type="Parchment")

        assert await reconciliation.list_unpaid_types(store, farmer.id) == ["Cherry", "Parchment"]

    async def test_total_by_type(self, store, ledger):
        """Total kgs and contributing ids, in insertion order."""
        farmer = await ledger.farmer()
        d1 = await ledger.delivery(farmer, kgs=100)
        d2 = await ledger.delivery(farmer, kgs=50)
        await ledger.delivery(farmer, kgs=30, type="Parchment")

        total = await reconciliation.total_unpaid_by_type(store, farmer.id, "Cherry")
        assert total.total_kgs == 150
        assert total.delivery_ids == [d1.id, d2.id]

    async def test_each_delivery_in_exactly_one_group(self, store, ledger):
        """No delivery appears in two type groups."""
        farmer = await ledger.farmer()
        for t in ("Cherry", "Parchment", "Cherry", "Parchment", "Cherry"):
            await ledger.delivery(farmer, type=t)

        groups = await reconciliation.unpaid_totals_by_type(store, farmer.id)
        ids = [i for g in groups for i in g.delivery_ids]
        assert len(ids) == len(set(ids)) == 5
        assert [g.type for g in groups] == ["Cherry", "Parchment"]

    async def test_other_farmers_deliveries_excluded(self, store, ledger):
        """Only the requested farmer's deliveries are counted."""
        farmer = await ledger.farmer()
        other = await ledger.farmer(name="Kamau")
        await ledger.delivery(other, kgs=500)

        total = await reconciliation.total_unpaid_by_type(store, farmer.id, "Cherry")
        assert total.total_kgs == 0
        assert total.delivery_ids == []

    async def test_unpaid_deliveries_newest_first_with_stable_ties(self, store, ledger):
        """Date descending; equal dates keep creation order."""
        farmer = await ledger.farmer()
        same_day = ledger.now - timedelta(days=2)
        old = await ledger.delivery(farmer, days_ago=10)
        tie_a = await ledger.delivery(farmer, date=same_day)
        tie_b = await ledger.delivery(farmer, date=same_day)
        newest = await ledger.delivery(farmer, days_ago=1)

        rows = await reconciliation.list_unpaid_deliveries(store, farmer.id)
        assert [r.id for r in rows] == [newest.id, tie_a.id, tie_b.id, old.id]
        assert rows[0].farmer.name == farmer.name
        assert rows[0].farmer.weigh_station == farmer.weigh_station


@pytest.mark.unit
@pytest.mark.asyncio
class TestUnknownFarmer:
    """Unknown farmers yield empty results, never errors."""

    async def test_empty_results(self, store):
        assert await reconciliation.list_unpaid_types(store, "missing") == []
        assert await reconciliation.list_unpaid_deliveries(store, "missing") == []
        total = await reconciliation.total_unpaid_by_type(store, "missing", "Cherry")
        assert total.total_kgs == 0 and total.delivery_ids == []

    async def test_statement_is_none(self, store):
        assert await reconciliation.farmer_statement(store, "missing") is None


@pytest.mark.unit
@pytest.mark.asyncio
class TestFarmerStatement:
    """Per-farmer ledger position."""

    async def test_statement_totals(self, store, ledger):
        """Delivered, unpaid and paid figures are consistent."""
        farmer = await ledger.farmer()
        paid = await ledger.delivery(farmer, kgs=100)
        await ledger.delivery(farmer, kgs=40)
        voided = await ledger.delivery(farmer, kgs=20, type="Parchment")
        await ledger.payment(farmer, [paid], status="Completed", price=50)
        await ledger.payment(farmer, [voided], status="Failed", type="Parchment", price=80)

        st = await reconciliation.farmer_statement(store, farmer.id)
        assert st.total_deliveries == 3
        assert st.total_kgs == 160
        assert st.unpaid_deliveries == 2
        assert st.unpaid_kgs == 60
        assert st.unpaid_by_type == {"Cherry": 40, "Parchment": 20}
        assert st.total_paid == 5000
        assert st.payments_by_status == {"Pending": 0, "Completed": 1, "Failed": 1}


@pytest.mark.unit
def test_is_unpaid_mirrors_sql_predicate():
    """In-memory classification matches the SQL predicate."""
    assert reconciliation.is_unpaid(None)
    assert reconciliation.is_unpaid("Pending")
    assert reconciliation.is_unpaid("Failed")
    assert not reconciliation.is_unpaid("Completed")
