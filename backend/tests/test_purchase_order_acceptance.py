"""
Purchase order acceptance tests

Covers the atomic acceptance unit (capital check, status change, committed
cost, audit), its failure modes, and the fulfilment / cancellation paths that
release committed cost.
"""
import asyncio

import pytest
from bson import ObjectId

from finance_core.errors import (
    InsufficientCapitalError,
    InvalidStatusError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    TransactionError,
    ValidationError,
)


@pytest.fixture
async def project(seed):
    project_id = await seed.project(budget={"materials": 100000.0})
    await seed.investor(project_id, 100000.0)
    return project_id


async def committed_cost(db, project_id):
    record = await db.project_finances.find_one({"projectId": project_id})
    return (record or {}).get("committedCost", 0.0)


class TestAcceptPurchaseOrder:
    """Supplier acceptance"""

    async def test_accept_commits_cost(self, services, db, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"], quantity=10, unit_cost=500.0)

        result = await services.purchase_orders.accept_purchase_order(str(order_id), users["supplier"])

        order = result["order"]
        assert order["status"] == "order_accepted"
        assert order["financialStatus"] == "committed"
        assert order["totalCost"] == 5000.0
        assert order["committedAt"] is not None
        assert order["statusHistory"][-1]["fromState"] == "order_sent"
        assert result["capitalInfo"] == {
            "available": 100000.0,
            "required": 5000.0,
            "remaining": 95000.0,
            "capitalNotSet": False,
        }
        assert await committed_cost(db, project) == 5000.0

    async def test_side_effects_run_after_commit(self, services, db, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"])

        result = await services.purchase_orders.accept_purchase_order(order_id, users["supplier"])

        names = {effect["name"]: effect["succeeded"] for effect in result["sideEffects"]}
        assert names == {
            "phase_committed_cost_refresh": True,
            "project_finance_recalculation": True,
            "manager_notifications": True,
        }
        # owner + pm are managers
        assert await db.notifications.count_documents({"type": "order_accepted"}) == 2

    async def test_audit_entry_written(self, services, db, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"])

        await services.purchase_orders.accept_purchase_order(order_id, users["supplier"])

        entry = await db.audit_logs.find_one({"entityId": str(order_id), "action": "ACCEPTED"})
        assert entry["entityType"] == "PURCHASE_ORDER"
        assert entry["userId"] == users["supplier"]
        assert entry["changes"]["before"]["status"] == "order_sent"
        assert entry["changes"]["after"]["status"] == "order_accepted"
        assert entry["changes"]["capitalValidation"]["status"] == "SUFFICIENT"

    async def test_second_acceptance_increments(self, services, db, seed, users, project):
        first = await seed.purchase_order(project, users["supplier"], quantity=10, unit_cost=500.0)
        second = await seed.purchase_order(project, users["supplier"], quantity=6, unit_cost=500.0)

        await services.purchase_orders.accept_purchase_order(first, users["supplier"])
        assert await committed_cost(db, project) == 5000.0

        await services.purchase_orders.accept_purchase_order(second, users["supplier"])
        assert await committed_cost(db, project) == 8000.0

    async def test_concurrent_acceptances(self, services, db, seed, users, project, monkeypatch):
        first = await seed.purchase_order(project, users["supplier"], quantity=10, unit_cost=500.0)
        second = await seed.purchase_order(project, users["supplier"], quantity=6, unit_cost=500.0)

        # Leave the cached figure to the $inc path alone
        async def skip_recalculation(project_id, session=None):
            return None

        monkeypatch.setattr(services.recalculation, "recalculate_project_finances", skip_recalculation)

        await asyncio.gather(
            services.purchase_orders.accept_purchase_order(first, users["supplier"]),
            services.purchase_orders.accept_purchase_order(second, users["supplier"]),
        )

        assert await committed_cost(db, project) == 8000.0
        totals = await services.ledger.get_project_totals(project)
        assert float(totals.committed_cost) == 8000.0

    async def test_concurrent_acceptances_cannot_overdraw(self, services, db, seed, users):
        project_id = await seed.project()
        await seed.investor(project_id, 10000.0)
        first = await seed.purchase_order(project_id, users["supplier"], quantity=12, unit_cost=500.0)
        second = await seed.purchase_order(project_id, users["supplier"], quantity=12, unit_cost=500.0)

        results = await asyncio.gather(
            services.purchase_orders.accept_purchase_order(first, users["supplier"]),
            services.purchase_orders.accept_purchase_order(second, users["supplier"]),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], InsufficientCapitalError)
        assert await committed_cost(db, project_id) == 6000.0

    async def test_final_unit_cost_overrides(self, services, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"], quantity=10, unit_cost=0.0)

        result = await services.purchase_orders.accept_purchase_order(
            order_id, users["supplier"], final_unit_cost=250, supplier_notes="Price confirmed"
        )

        assert result["order"]["unitCost"] == 250.0
        assert result["order"]["totalCost"] == 2500.0
        assert result["order"]["supplierNotes"] == "Price confirmed"

    async def test_modified_order_can_be_accepted(self, services, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"], status="order_modified")
        result = await services.purchase_orders.accept_purchase_order(order_id, users["supplier"])
        assert result["order"]["status"] == "order_accepted"

    async def test_capital_not_configured_bypasses_check(self, services, db, seed, users):
        project_id = await seed.project()
        order_id = await seed.purchase_order(project_id, users["supplier"], quantity=1000, unit_cost=10000.0)

        result = await services.purchase_orders.accept_purchase_order(order_id, users["supplier"])

        assert result["capitalInfo"]["capitalNotSet"] is True
        assert result["order"]["totalCost"] == 10000000.0
        assert await committed_cost(db, project_id) == 10000000.0


class TestAcceptanceFailures:
    """Failed acceptance leaves no trace"""

    async def test_zero_unit_cost_rejected(self, services, db, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"], unit_cost=0.0)

        with pytest.raises(ValidationError):
            await services.purchase_orders.accept_purchase_order(order_id, users["supplier"])

        order = await db.purchase_orders.find_one({"_id": order_id})
        assert order["status"] == "order_sent"
        assert order["financialStatus"] == "not_committed"
        assert await committed_cost(db, project) == 0.0

    @pytest.mark.parametrize("final_unit_cost", [0, -10, "free"])
    async def test_invalid_final_unit_cost(self, services, seed, users, project, final_unit_cost):
        order_id = await seed.purchase_order(project, users["supplier"])
        with pytest.raises(ValidationError):
            await services.purchase_orders.accept_purchase_order(
                order_id, users["supplier"], final_unit_cost=final_unit_cost
            )

    async def test_audit_failure_rolls_back(self, services, db, seed, users, project, monkeypatch):
        order_id = await seed.purchase_order(project, users["supplier"])
        await services.recalculation.recalculate_project_finances(project)
        before = await db.project_finances.find_one({"projectId": project})

        async def failing_log_action(**kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(services.audit, "log_action", failing_log_action)

        with pytest.raises(TransactionError):
            await services.purchase_orders.accept_purchase_order(order_id, users["supplier"])

        order = await db.purchase_orders.find_one({"_id": order_id})
        assert order["status"] == "order_sent"
        assert order["statusHistory"] == []
        after = await db.project_finances.find_one({"projectId": project})
        assert after["committedCost"] == before["committedCost"] == 0.0

    async def test_insufficient_capital(self, services, db, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"], quantity=300, unit_cost=500.0)

        with pytest.raises(InsufficientCapitalError) as exc_info:
            await services.purchase_orders.accept_purchase_order(order_id, users["supplier"])

        assert exc_info.value.shortfall == 50000.0
        order = await db.purchase_orders.find_one({"_id": order_id})
        assert order["status"] == "order_sent"
        assert await db.audit_logs.count_documents({}) == 0

    async def test_wrong_supplier(self, services, seed, users, project):
        other_supplier = await seed.user("supplier")
        order_id = await seed.purchase_order(project, users["supplier"])

        with pytest.raises(PermissionDeniedError):
            await services.purchase_orders.accept_purchase_order(order_id, other_supplier)

    async def test_already_accepted(self, services, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"])
        await services.purchase_orders.accept_purchase_order(order_id, users["supplier"])

        with pytest.raises(InvalidStatusError):
            await services.purchase_orders.accept_purchase_order(order_id, users["supplier"])

    async def test_unknown_order(self, services, users):
        with pytest.raises(NotFoundError):
            await services.purchase_orders.accept_purchase_order(ObjectId(), users["supplier"])

    async def test_deleted_order(self, services, db, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"], deletedAt="2024-03-01")
        with pytest.raises(NotFoundError):
            await services.purchase_orders.accept_purchase_order(order_id, users["supplier"])

    async def test_malformed_order_id(self, services, users):
        with pytest.raises(ValidationError):
            await services.purchase_orders.accept_purchase_order("PO-001", users["supplier"])


class TestFulfilment:
    """Delivery and cancellation release committed cost"""

    async def test_delivery_reconciles_with_recalculation(self, services, db, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"], quantity=10, unit_cost=500.0)
        await services.purchase_orders.accept_purchase_order(order_id, users["supplier"])

        result = await services.purchase_orders.confirm_delivery(
            order_id, {"user_id": users["pm"], "role": "pm"}, delivery_notes="All bags received"
        )

        assert result["order"]["status"] == "delivered"
        assert result["order"]["financialStatus"] == "fulfilled"
        material = await db.materials.find_one({"purchaseOrderId": order_id})
        assert material["totalCost"] == 5000.0
        assert material["status"] == "approved"

        cached = await db.project_finances.find_one({"projectId": project})
        recalculated = await services.recalculation.recalculate_project_finances(project)
        assert cached["committedCost"] == recalculated["committedCost"] == 0.0
        assert recalculated["totalUsed"] == 5000.0

    async def test_delivery_releases_without_recalculation(self, services, db, seed, users, project, monkeypatch):
        async def recalculation_down(project_id, session=None):
            raise RuntimeError("recalculation unavailable")

        monkeypatch.setattr(services.recalculation, "recalculate_project_finances", recalculation_down)
        order_id = await seed.purchase_order(project, users["supplier"], quantity=10, unit_cost=500.0)

        await services.purchase_orders.accept_purchase_order(order_id, users["supplier"])
        assert await committed_cost(db, project) == 5000.0

        await services.purchase_orders.confirm_delivery(order_id, {"user_id": users["pm"]})
        assert await committed_cost(db, project) == 0.0

    async def test_ready_then_delivered(self, services, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"])
        await services.purchase_orders.accept_purchase_order(order_id, users["supplier"])

        ready = await services.purchase_orders.mark_ready_for_delivery(order_id, users["supplier"], "Truck booked")
        assert ready["order"]["status"] == "ready_for_delivery"

        delivered = await services.purchase_orders.confirm_delivery(order_id, {"user_id": users["pm"]})
        assert delivered["order"]["status"] == "delivered"

    async def test_cannot_deliver_unaccepted_order(self, services, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"])
        with pytest.raises(InvalidStatusError):
            await services.purchase_orders.confirm_delivery(order_id, {"user_id": users["pm"]})

    async def test_cancel_committed_order(self, services, db, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"], quantity=10, unit_cost=500.0)
        await services.purchase_orders.accept_purchase_order(order_id, users["supplier"])

        result = await services.purchase_orders.cancel_purchase_order(
            order_id, {"user_id": users["pm"]}, reason="Design change"
        )

        order = result["order"]
        assert order["status"] == "cancelled"
        assert order["financialStatus"] == "not_committed"
        assert order["deletedAt"] is not None
        assert await committed_cost(db, project) == 0.0

    async def test_cancel_uncommitted_order_skips_finance_refresh(self, services, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"])

        result = await services.purchase_orders.cancel_purchase_order(order_id, {"user_id": users["pm"]})

        names = [effect["name"] for effect in result["sideEffects"]]
        assert names == ["manager_notifications"]

    async def test_cannot_cancel_delivered_order(self, services, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"])
        await services.purchase_orders.accept_purchase_order(order_id, users["supplier"])
        await services.purchase_orders.confirm_delivery(order_id, {"user_id": users["pm"]})

        with pytest.raises(InvalidTransitionError):
            await services.purchase_orders.cancel_purchase_order(order_id, {"user_id": users["pm"]})


class TestSupplierRejection:

    async def test_reject_has_no_financial_effect(self, services, db, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"])

        result = await services.purchase_orders.reject_purchase_order(order_id, users["supplier"], "Out of stock")

        assert result["order"]["status"] == "order_rejected"
        assert result["order"]["rejectionReason"] == "Out of stock"
        assert await db.project_finances.count_documents({}) == 0

    async def test_cannot_reject_accepted_order(self, services, seed, users, project):
        order_id = await seed.purchase_order(project, users["supplier"])
        await services.purchase_orders.accept_purchase_order(order_id, users["supplier"])

        with pytest.raises(InvalidTransitionError):
            await services.purchase_orders.reject_purchase_order(order_id, users["supplier"])
