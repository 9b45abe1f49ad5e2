"""
Finance API tests
Testing: route wiring, role checks and the error envelope
"""
from datetime import datetime
from decimal import Decimal

import httpx
import pytest
from bson import Decimal128, ObjectId
from fastapi import FastAPI, HTTPException

from auth import create_access_token, decode_access_token, get_current_user
from finance_routes import (
    finance_router,
    get_finance_services,
    register_finance_exception_handlers,
    serialize_doc,
)

BASE_URL = "http://finance.test/api/v1/finance"


@pytest.fixture
def identity():
    """Token payload returned by the overridden auth dependency"""
    return {}


@pytest.fixture
def app(services, identity):
    application = FastAPI()
    application.include_router(finance_router)
    register_finance_exception_handlers(application)
    application.dependency_overrides[get_current_user] = lambda: identity
    application.dependency_overrides[get_finance_services] = lambda: services
    return application


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://finance.test") as http_client:
        yield http_client


@pytest.fixture
def login(identity, users):
    def as_role(role):
        identity.clear()
        identity.update({"user_id": users[role], "role": role, "type": "access"})
    return as_role


@pytest.fixture
async def project(seed):
    project_id = await seed.project(budget={"materials": 10000.0, "indirect": 2000.0})
    await seed.investor(project_id, 100000.0)
    return project_id


class TestHealthEndpoint:

    async def test_health(self, client):
        response = await client.get(f"{BASE_URL}/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestAuth:
    """Token handling and role enforcement"""

    def test_access_token_round_trip(self):
        token = create_access_token({"user_id": "u-1", "role": "owner"})
        payload = decode_access_token(token)
        assert payload["user_id"] == "u-1"
        assert payload["type"] == "access"

    def test_tampered_token_rejected(self):
        token = create_access_token({"user_id": "u-1"}) + "x"
        with pytest.raises(HTTPException) as exc_info:
            decode_access_token(token)
        assert exc_info.value.status_code == 401

    async def test_unknown_user(self, client, identity, project):
        identity.update({"user_id": str(ObjectId()), "role": "owner"})
        response = await client.get(f"{BASE_URL}/projects/{project}/totals")
        assert response.status_code == 401

    async def test_role_from_database_not_token(self, client, identity, users, project):
        identity.update({"user_id": users["supplier"], "role": "owner"})
        response = await client.get(f"{BASE_URL}/projects/{project}/totals")
        assert response.status_code == 403


class TestLedgerEndpoints:

    async def test_totals(self, client, login, seed, project):
        await seed.material(project, 2500.0)
        login("accountant")

        response = await client.get(f"{BASE_URL}/projects/{project}/totals")

        assert response.status_code == 200
        data = response.json()
        assert data["projectId"] == str(project)
        assert data["totalInvested"] == 100000.0
        assert data["totalUsed"] == 2500.0
        assert data["availableCapital"] == 97500.0

    async def test_finances_live_then_cached(self, client, login, project):
        login("pm")

        live = await client.get(f"{BASE_URL}/projects/{project}/finances")
        assert live.json()["isCached"] is False

        recalculated = await client.post(f"{BASE_URL}/projects/{project}/recalculate")
        assert recalculated.status_code == 200
        assert recalculated.json()["projectId"] == str(project)

        cached = await client.get(f"{BASE_URL}/projects/{project}/finances")
        assert "isCached" not in cached.json()

    async def test_accountant_cannot_recalculate(self, client, login, project):
        login("accountant")
        response = await client.post(f"{BASE_URL}/projects/{project}/recalculate")
        assert response.status_code == 403

    async def test_capital_validation(self, client, login, project):
        login("pm")
        response = await client.post(f"{BASE_URL}/projects/{project}/capital/validate", json={"amount": 150000})

        data = response.json()
        assert response.status_code == 200
        assert data["status"] == "INSUFFICIENT"
        assert data["isValid"] is False

    async def test_malformed_project_id(self, client, login):
        login("pm")
        response = await client.get(f"{BASE_URL}/projects/not-an-id/totals")

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"


class TestPurchaseOrderEndpoints:

    async def test_accept(self, client, login, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"], quantity=4, unit_cost=250.0)
        login("supplier")

        response = await client.post(
            f"{BASE_URL}/purchase-orders/{order_id}/accept",
            json={"supplierNotes": "Dispatch Monday"}
        )

        assert response.status_code == 200, response.text
        data = response.json()
        assert data["order"]["_id"] == str(order_id)
        assert data["order"]["status"] == "order_accepted"
        assert data["order"]["totalCost"] == 1000.0
        assert data["capitalInfo"]["remaining"] == 99000.0
        assert all(effect["succeeded"] for effect in data["sideEffects"])

    async def test_insufficient_capital_envelope(self, client, login, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"], quantity=500, unit_cost=250.0)
        login("supplier")

        response = await client.post(f"{BASE_URL}/purchase-orders/{order_id}/accept", json={})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "INSUFFICIENT_CAPITAL"
        assert body["details"]["shortfall"] == 25000.0
        assert body["retryable"] is False

    async def test_unknown_order(self, client, login):
        login("supplier")
        response = await client.post(f"{BASE_URL}/purchase-orders/{ObjectId()}/accept", json={})
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    async def test_pm_cannot_accept(self, client, login, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"])
        login("pm")
        response = await client.post(f"{BASE_URL}/purchase-orders/{order_id}/accept", json={})
        assert response.status_code == 403

    async def test_full_lifecycle(self, client, login, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"], quantity=2, unit_cost=1000.0)

        login("supplier")
        assert (await client.post(f"{BASE_URL}/purchase-orders/{order_id}/accept", json={})).status_code == 200
        assert (await client.post(f"{BASE_URL}/purchase-orders/{order_id}/ready", json={"notes": "Loaded"})).status_code == 200

        login("pm")
        response = await client.post(
            f"{BASE_URL}/purchase-orders/{order_id}/confirm-delivery",
            json={"deliveryNotes": "Checked at gate"}
        )
        assert response.json()["order"]["financialStatus"] == "fulfilled"

        totals = (await client.get(f"{BASE_URL}/projects/{project}/totals")).json()
        assert totals["committedCost"] == 0.0
        assert totals["totalUsed"] == 2000.0

    async def test_reject_and_cancel(self, client, login, seed, users, project):
        rejected = await seed.purchase_order(project, users["supplier"])
        cancelled = await seed.purchase_order(project, users["supplier"])

        login("supplier")
        response = await client.post(f"{BASE_URL}/purchase-orders/{rejected}/reject", json={"reason": "No stock"})
        assert response.json()["order"]["status"] == "order_rejected"

        login("owner")
        response = await client.post(f"{BASE_URL}/purchase-orders/{cancelled}/cancel", json={"reason": "Duplicate"})
        assert response.json()["order"]["status"] == "cancelled"

        response = await client.post(f"{BASE_URL}/purchase-orders/{rejected}/cancel", json={})
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_TRANSITION"


class TestBudgetEndpoints:

    async def test_transfer_request_and_approval(self, client, login, project):
        login("pm")
        response = await client.post(
            f"{BASE_URL}/projects/{project}/budget-transfers",
            json={"fromCategory": "materials", "toCategory": "indirect", "amount": 1500, "reason": "Site works"}
        )
        assert response.status_code == 201
        transfer_id = response.json()["transfer"]["_id"]

        denied = await client.post(f"{BASE_URL}/budget-transfers/{transfer_id}/approve", json={})
        assert denied.status_code == 403

        login("owner")
        approved = await client.post(f"{BASE_URL}/budget-transfers/{transfer_id}/approve", json={"notes": "ok"})
        assert approved.status_code == 200
        assert approved.json()["transfer"]["status"] == "approved"

        listing = (await client.get(f"{BASE_URL}/projects/{project}/budget-transfers")).json()
        assert listing["summary"]["approved"] == 1
        assert listing["transfers"][0]["_id"] == transfer_id

    async def test_invalid_transfer_rejected(self, client, login, project):
        login("pm")
        response = await client.post(
            f"{BASE_URL}/projects/{project}/budget-transfers",
            json={"fromCategory": "materials", "toCategory": "contingency", "amount": 100}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "BUSINESS_RULE_VIOLATION"

    async def test_missing_body_field(self, client, login, project):
        login("pm")
        response = await client.post(
            f"{BASE_URL}/projects/{project}/budget-transfers",
            json={"fromCategory": "materials", "amount": 100}
        )
        assert response.status_code == 422

    async def test_adjustment_request_and_rejection(self, client, login, project):
        login("pm")
        response = await client.post(
            f"{BASE_URL}/projects/{project}/budget-adjustments",
            json={"category": "indirect", "adjustmentType": "increase", "adjustmentAmount": 500}
        )
        assert response.status_code == 201
        adjustment_id = response.json()["adjustment"]["_id"]

        login("owner")
        rejected = await client.post(f"{BASE_URL}/budget-adjustments/{adjustment_id}/reject", json={"notes": "Later"})
        assert rejected.json()["adjustment"]["status"] == "rejected"

        listing = (await client.get(
            f"{BASE_URL}/projects/{project}/budget-adjustments", params={"status_filter": "rejected"}
        )).json()
        assert len(listing["adjustments"]) == 1
        assert listing["summary"]["netChange"] == 0.0


class TestIntegrityEndpoint:

    async def test_owner_runs_sweep(self, client, login, project):
        login("owner")
        await client.post(f"{BASE_URL}/projects/{project}/recalculate")

        response = await client.post(f"{BASE_URL}/integrity/run", json={"repair": False})

        assert response.status_code == 200
        assert response.json()["records_checked"] == 1

    async def test_pm_cannot_run_sweep(self, client, login):
        login("pm")
        response = await client.post(f"{BASE_URL}/integrity/run", json={})
        assert response.status_code == 403


def test_serialize_doc():
    oid = ObjectId()
    now = datetime(2024, 6, 1, 12, 30)
    doc = {
        "_id": oid,
        "amount": Decimal128("12.50"),
        "total": Decimal("7.25"),
        "createdAt": now,
        "nested": {"projectId": oid},
        "history": [{"at": now}, oid, 3],
    }

    assert serialize_doc(doc) == {
        "_id": str(oid),
        "amount": 12.5,
        "total": 7.25,
        "createdAt": now.isoformat(),
        "nested": {"projectId": str(oid)},
        "history": [{"at": now.isoformat()}, str(oid), 3],
    }
