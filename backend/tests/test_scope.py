"""Region isolation tests for scoped (field agent) ledger access."""

import pytest

from app.middleware.exceptions import AccessDeniedError, ResourceNotFoundError
from app.schemas.delivery import DeliveryCreate
from app.schemas.farmer import FarmerCreate
from app.services import intake, payments, reconciliation
from app.services.ledger import LedgerFilter
from app.services.scope import AccessScope

REGION = "Kiambu"
OTHER_REGION = "Nyeri"


@pytest.mark.unit
class TestNarrow:

    def test_unscoped_narrows_to_any_region(self):
        assert AccessScope.unrestricted().narrow(OTHER_REGION).region == OTHER_REGION

    def test_scoped_keeps_own_region(self):
        scope = AccessScope(region=REGION)
        assert scope.narrow(REGION) is scope
        assert scope.narrow(None) is scope

    def test_scoped_other_region_denied(self):
        with pytest.raises(AccessDeniedError):
            AccessScope(region=REGION).narrow(OTHER_REGION)

    def test_for_caller(self, admin, agent):
        assert AccessScope.for_caller(admin).is_unrestricted
        assert AccessScope.for_caller(agent).region == REGION


@pytest.mark.unit
@pytest.mark.asyncio
class TestScopedReads:

    async def test_farmers_and_deliveries_filtered(self, scoped_store, ledger):
        mine = await ledger.farmer()
        theirs = await ledger.farmer(name="Kamau", weigh_station=OTHER_REGION)
        await ledger.delivery(mine)
        await ledger.delivery(theirs)

        farmers = await scoped_store.find_farmers()
        deliveries = await scoped_store.find_deliveries()
        assert [f.id for f in farmers] == [mine.id]
        assert {d.farmer_id for d in deliveries} == {mine.id}

    async def test_payments_follow_farmer_region(self, scoped_store, ledger):
        mine = await ledger.farmer()
        theirs = await ledger.farmer(name="Kamau", weigh_station=OTHER_REGION)
        own = await ledger.payment(mine, kgs=1)
        await ledger.payment(theirs, kgs=1)

        rows = await scoped_store.find_payments()
        assert [p.id for p in rows] == [own.id]

    async def test_foreign_farmer_reads_as_unknown(self, scoped_store, ledger):
        theirs = await ledger.farmer(weigh_station=OTHER_REGION)
        await ledger.delivery(theirs)

        assert await reconciliation.list_unpaid_types(scoped_store, theirs.id) == []
        assert await reconciliation.farmer_statement(scoped_store, theirs.id) is None

    async def test_foreign_delivery_not_payable(self, scoped_store, ledger, agent):
        """A scoped caller cannot pay for a farmer outside their region."""
        theirs = await ledger.farmer(weigh_station=OTHER_REGION)
        d = await ledger.delivery(theirs)

        with pytest.raises(ResourceNotFoundError):
            await payments.create_payment(
                scoped_store, agent, farmer_id=theirs.id, delivery_ids=[d.id],
                delivery_type="Cherry", price_per_kg=50,
            )

    async def test_distinct_values_scoped(self, scoped_store, ledger):
        await ledger.delivery(await ledger.farmer(), driver="Otieno")
        await ledger.delivery(await ledger.farmer(weigh_station=OTHER_REGION), driver="Achieng")

        assert await scoped_store.distinct_delivery_values("driver") == ["Otieno"]
        rows = await scoped_store.find_deliveries(LedgerFilter(driver="Achieng"))
        assert rows == []


@pytest.mark.unit
@pytest.mark.asyncio
class TestScopedWrites:

    async def test_register_farmer_elsewhere_denied(self, scoped_store, agent):
        body = FarmerCreate(
            name="Kamau", cell_number="0799000111", national_id="11223344",
            season="Short", weigh_station=OTHER_REGION,
        )
        with pytest.raises(AccessDeniedError):
            await intake.create_farmer(scoped_store, agent, body)

    async def test_record_delivery_elsewhere_denied(self, scoped_store, ledger, agent):
        farmer = await ledger.farmer()
        body = DeliveryCreate(
            farmer_id=farmer.id, type="Cherry", kgs_delivered=10,
            region=OTHER_REGION, driver="Otieno",
        )
        with pytest.raises(AccessDeniedError):
            await intake.create_delivery(scoped_store, agent, body)

    async def test_record_delivery_in_own_region(self, scoped_store, ledger, agent):
        farmer = await ledger.farmer()
        delivery = await intake.create_delivery(scoped_store, agent, DeliveryCreate(
            farmer_id=farmer.id, type="Cherry", kgs_delivered=10,
            region=REGION, driver="Otieno",
        ))
        assert delivery.region == REGION
