"""HTTP API tests: the full delivery → payment → void → retry flow."""

import pytest


async def _farmer(client, headers, **overrides):
    body = {
        "name": "Wanjiru",
        "cell_number": "0711000222",
        "national_id": "30111222",
        "season": "Long",
        "weigh_station": "Kiambu",
    }
    body.update(overrides)
    response = await client.post("/api/farmers/", headers=headers, json=body)
    assert response.status_code == 201, response.text
    return response.json()


async def _delivery(client, headers, farmer_id, kgs, **overrides):
    body = {
        "farmer_id": farmer_id,
        "type": "Cherry",
        "kgs_delivered": kgs,
        "region": "Kiambu",
        "driver": "Otieno",
    }
    body.update(overrides)
    response = await client.post("/api/deliveries/", headers=headers, json=body)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.api
@pytest.mark.asyncio
class TestPaymentFlow:

    async def test_pay_void_retry(self, client, admin_headers):
        """Pay 150 kg at 50, void as duplicate, retry at 55."""
        farmer = await _farmer(client, admin_headers)
        d1 = await _delivery(client, admin_headers, farmer["id"], 100)
        d2 = await _delivery(client, admin_headers, farmer["id"], 50)
        recon = f"/api/reconciliation/{farmer['id']}"

        response = await client.get(f"{recon}/types/Cherry", headers=admin_headers)
        assert response.json()["total_kgs"] == 150

        response = await client.post("/api/payments/", headers=admin_headers, json={
            "farmer_id": farmer["id"],
            "delivery_ids": [d1["id"], d2["id"]],
            "delivery_type": "Cherry",
            "price_per_kg": 50,
        })
        assert response.status_code == 201, response.text
        original = response.json()
        assert original["amount_paid"] == 7500
        assert original["status"] == "Completed"
        assert original["farmer_name"] == "Wanjiru"

        response = await client.get(f"{recon}/types", headers=admin_headers)
        assert response.json() == []

        response = await client.get(f"/api/deliveries/{d1['id']}", headers=admin_headers)
        assert response.json()["paid"] is True

        response = await client.post(
            f"/api/payments/{original['id']}/void",
            headers=admin_headers, json={"reason": "duplicate"},
        )
        assert response.status_code == 200, response.text
        assert response.json()["status"] == "Failed"
        assert response.json()["void_reason"] == "duplicate"

        response = await client.get(f"{recon}/types", headers=admin_headers)
        assert response.json() == ["Cherry"]

        response = await client.post(
            f"/api/payments/{original['id']}/retry",
            headers=admin_headers, json={"reason": "corrected price", "price_per_kg": 55},
        )
        assert response.status_code == 201, response.text
        retried = response.json()
        assert retried["amount_paid"] == 8250
        assert retried["retry_of"] == original["id"]

        response = await client.get(f"/api/payments/{original['id']}", headers=admin_headers)
        assert response.json()["status"] == "Failed"
        assert response.json()["amount_paid"] == 7500

        response = await client.get(f"{recon}/statement", headers=admin_headers)
        statement = response.json()
        assert statement["total_paid"] == 8250
        assert statement["unpaid_kgs"] == 0
        assert statement["payments_by_status"] == {"Pending": 0, "Completed": 1, "Failed": 1}

        response = await client.get("/api/payments/?status=Failed", headers=admin_headers)
        assert response.json()["total"] == 1

    async def test_double_payment_conflict(self, client, admin_headers):
        farmer = await _farmer(client, admin_headers)
        d = await _delivery(client, admin_headers, farmer["id"], 80)
        body = {
            "farmer_id": farmer["id"], "delivery_ids": [d["id"]],
            "delivery_type": "Cherry", "price_per_kg": 50,
        }

        first = await client.post("/api/payments/", headers=admin_headers, json=body)
        second = await client.post("/api/payments/", headers=admin_headers, json=body)

        assert first.status_code == 201
        assert second.status_code == 409
        error = second.json()["error"]
        assert error["code"] == "CONFLICT"
        assert error["details"]["delivery_ids"] == [d["id"]]

    async def test_pending_then_complete(self, client, admin_headers):
        farmer = await _farmer(client, admin_headers)
        d = await _delivery(client, admin_headers, farmer["id"], 10)

        response = await client.post("/api/payments/", headers=admin_headers, json={
            "farmer_id": farmer["id"], "delivery_ids": [d["id"]],
            "delivery_type": "Cherry", "price_per_kg": 50, "status": "Pending",
        })
        payment = response.json()
        assert payment["status"] == "Pending"

        response = await client.post(
            f"/api/payments/{payment['id']}/complete", headers=admin_headers,
        )
        assert response.json()["status"] == "Completed"

        again = await client.post(
            f"/api/payments/{payment['id']}/complete", headers=admin_headers,
        )
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "INVALID_STATE_TRANSITION"

    async def test_settled_delivery_edit_is_locked(self, client, admin_headers):
        farmer = await _farmer(client, admin_headers)
        d = await _delivery(client, admin_headers, farmer["id"], 10)
        await client.post("/api/payments/", headers=admin_headers, json={
            "farmer_id": farmer["id"], "delivery_ids": [d["id"]],
            "delivery_type": "Cherry", "price_per_kg": 50,
        })

        response = await client.patch(
            f"/api/deliveries/{d['id']}", headers=admin_headers, json={"kgs_delivered": 12},
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "FIELD_LOCKED"


@pytest.mark.api
@pytest.mark.asyncio
class TestErrorEnvelope:

    async def test_void_without_reason(self, client, admin_headers):
        farmer = await _farmer(client, admin_headers)
        d = await _delivery(client, admin_headers, farmer["id"], 10)
        payment = (await client.post("/api/payments/", headers=admin_headers, json={
            "farmer_id": farmer["id"], "delivery_ids": [d["id"]],
            "delivery_type": "Cherry", "price_per_kg": 50,
        })).json()

        response = await client.post(
            f"/api/payments/{payment['id']}/void", headers=admin_headers, json={"reason": " "},
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_request_validation(self, client, admin_headers):
        response = await client.post("/api/payments/", headers=admin_headers, json={
            "farmer_id": "f", "delivery_ids": ["d"],
            "delivery_type": "Cherry", "price_per_kg": -1,
        })
        assert response.status_code == 422
        fields = [e["field"] for e in response.json()["error"]["details"]["errors"]]
        assert any("price_per_kg" in f for f in fields)

    async def test_unknown_payment(self, client, admin_headers):
        response = await client.get("/api/payments/missing", headers=admin_headers)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "RESOURCE_NOT_FOUND"

    async def test_unknown_farmer_reconciliation_is_empty(self, client, admin_headers):
        response = await client.get("/api/reconciliation/missing/types", headers=admin_headers)
        assert response.status_code == 200
        assert response.json() == []

        response = await client.get("/api/reconciliation/missing/statement", headers=admin_headers)
        assert response.status_code == 404


@pytest.mark.api
@pytest.mark.asyncio
class TestRegionScope:

    async def test_agent_writes_only_own_region(self, client, admin_headers, agent_headers):
        response = await client.post("/api/farmers/", headers=agent_headers, json={
            "name": "Kamau", "cell_number": "0722000333", "national_id": "40222333",
            "season": "Short", "weigh_station": "Nyeri",
        })
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "ACCESS_DENIED"

        farmer = await _farmer(client, agent_headers)
        await _delivery(client, agent_headers, farmer["id"], 25)

    async def test_agent_reads_only_own_region(self, client, admin_headers, agent_headers):
        mine = await _farmer(client, admin_headers)
        theirs = await _farmer(
            client, admin_headers, name="Kamau", cell_number="0722000333",
            national_id="40222333", weigh_station="Nyeri",
        )
        await _delivery(client, admin_headers, mine["id"], 10)
        await _delivery(client, admin_headers, theirs["id"], 20, region="Nyeri")

        response = await client.get("/api/deliveries/", headers=agent_headers)
        assert [d["farmer_id"] for d in response.json()["items"]] == [mine["id"]]

        response = await client.get("/api/deliveries/?region=Nyeri", headers=agent_headers)
        assert response.status_code == 403

        response = await client.get(f"/api/farmers/{theirs['id']}", headers=agent_headers)
        assert response.status_code == 404

        response = await client.get("/api/dashboard/regions", headers=admin_headers)
        assert response.json() == ["Kiambu", "Nyeri"]


@pytest.mark.api
@pytest.mark.asyncio
class TestReports:

    @pytest.mark.parametrize("path", [
        "/api/reports/summary",
        "/api/reports/payment-analytics",
        "/api/reports/cashflow-forecast?days=7",
        "/api/reports/farmer-performance?sort_by=volume",
        "/api/reports/comparative-analytics",
        "/api/reports/delivery-type-analytics",
        "/api/reports/regional-profitability",
        "/api/reports/operational-metrics",
        "/api/reports/full",
        "/api/dashboard/summary",
        "/api/dashboard/drivers",
    ])
    async def test_report_endpoints(self, client, admin_headers, path):
        farmer = await _farmer(client, admin_headers)
        await _delivery(client, admin_headers, farmer["id"], 10)

        response = await client.get(path, headers=admin_headers)
        assert response.status_code == 200, response.text

    async def test_bad_sort_key(self, client, admin_headers):
        response = await client.get(
            "/api/reports/farmer-performance?sort_by=height", headers=admin_headers,
        )
        assert response.status_code == 422

    async def test_full_report_shape(self, client, admin_headers):
        response = await client.get("/api/reports/full", headers=admin_headers)
        body = response.json()
        assert body["report"] == "full"
        assert body["errors"] == []
        assert body["cashflow_forecast"]["report"] == "cashflow_forecast"


@pytest.mark.api
@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["service"] == "CoffeeTrack"
