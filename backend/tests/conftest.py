"""
Shared fixtures for the project finance tests.

The database is an in-memory Motor (mongomock-motor). It has no session
support, so atomic units run through InMemoryTransactionCoordinator: units
are serialised and the whole database is restored from a snapshot when a
unit raises.
"""
import asyncio
import copy
from datetime import datetime

import pytest
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient

from finance_core.transaction_coordinator import TransactionCoordinator
from finance_routes import FinanceServices


class InMemoryTransactionCoordinator(TransactionCoordinator):
    """Serialising coordinator with snapshot rollback for mongomock"""

    def __init__(self, db, timeout_seconds: float = 5.0, max_attempts: int = 1):
        super().__init__(client=None, timeout_seconds=timeout_seconds, max_attempts=max_attempts)
        self.db = db
        self._lock = asyncio.Lock()
        self.units_run = 0

    async def _snapshot(self):
        snapshot = {}
        for name in await self.db.list_collection_names():
            docs = await self.db[name].find({}).to_list(length=None)
            snapshot[name] = copy.deepcopy(docs)
        return snapshot

    async def _restore(self, snapshot):
        for name in await self.db.list_collection_names():
            await self.db[name].delete_many({})
            docs = snapshot.get(name) or []
            if docs:
                await self.db[name].insert_many(copy.deepcopy(docs))

    async def _attempt(self, operation):
        async with self._lock:
            self.units_run += 1
            snapshot = await self._snapshot()
            try:
                return await asyncio.wait_for(operation(None), timeout=self.timeout_seconds)
            except Exception:
                await self._restore(snapshot)
                raise


class Seeder:
    """Inserts source documents in the shapes the finance core reads"""

    def __init__(self, db):
        self.db = db

    async def user(self, role: str, status: str = "active", name: str = None) -> str:
        result = await self.db.users.insert_one({
            "name": name or f"{role} user",
            "email": f"{role}-{ObjectId()}@example.com",
            "role": role,
            "status": status,
            "createdAt": datetime.utcnow(),
        })
        return str(result.inserted_id)

    async def project(self, budget: dict = None, **fields) -> ObjectId:
        doc = {
            "name": "Riverside Villas",
            "budget": budget or {},
            "createdAt": datetime.utcnow(),
            "deletedAt": None,
        }
        doc.update(fields)
        result = await self.db.projects.insert_one(doc)
        return result.inserted_id

    async def investor(self, project_id, amount, investment_type="EQUITY", status="ACTIVE", **allocation) -> ObjectId:
        allocation_doc = {"projectId": project_id, "amount": amount}
        allocation_doc.update(allocation)
        result = await self.db.investors.insert_one({
            "name": "Harbour Capital",
            "status": status,
            "investmentType": investment_type,
            "projectAllocations": [allocation_doc],
        })
        return result.inserted_id

    async def material(self, project_id, total_cost, status="approved", **fields) -> ObjectId:
        doc = {"projectId": project_id, "name": "Cement", "totalCost": total_cost, "status": status, "deletedAt": None}
        doc.update(fields)
        result = await self.db.materials.insert_one(doc)
        return result.inserted_id

    async def expense(self, project_id, amount, category="indirect", status="approved", **fields) -> ObjectId:
        doc = {"projectId": project_id, "amount": amount, "category": category, "status": status, "deletedAt": None}
        doc.update(fields)
        result = await self.db.expenses.insert_one(doc)
        return result.inserted_id

    async def labour(self, project_id, total_cost, status="approved") -> ObjectId:
        result = await self.db.labour_entries.insert_one({
            "projectId": project_id, "totalCost": total_cost, "status": status, "deletedAt": None
        })
        return result.inserted_id

    async def initial_expense(self, project_id, amount, status="approved") -> ObjectId:
        result = await self.db.initial_expenses.insert_one({
            "projectId": project_id, "amount": amount, "status": status, "deletedAt": None
        })
        return result.inserted_id

    async def purchase_order(
        self,
        project_id,
        supplier_id,
        quantity=10,
        unit_cost=500.0,
        status="order_sent",
        **fields
    ) -> ObjectId:
        doc = {
            "purchaseOrderNumber": f"PO-{str(ObjectId())[-6:]}",
            "projectId": project_id,
            "supplierId": ObjectId(supplier_id) if supplier_id else None,
            "supplierName": "Coastal Supplies",
            "materialName": "Cement",
            "unit": "bag",
            "quantityOrdered": quantity,
            "unitCost": unit_cost,
            "totalCost": 0.0,
            "status": status,
            "financialStatus": "not_committed",
            "statusHistory": [],
            "createdAt": datetime.utcnow(),
            "deletedAt": None,
        }
        doc.update(fields)
        result = await self.db.purchase_orders.insert_one(doc)
        return result.inserted_id

    async def committed_order(self, project_id, total_cost, **fields) -> ObjectId:
        """An order already accepted by its supplier"""
        return await self.purchase_order(
            project_id,
            None,
            status="order_accepted",
            financialStatus="committed",
            totalCost=total_cost,
            **fields
        )


@pytest.fixture
def db():
    return AsyncMongoMockClient()["finance_test"]


@pytest.fixture
async def coordinator(db):
    return InMemoryTransactionCoordinator(db)


@pytest.fixture
def services(db, coordinator):
    return FinanceServices(None, db, coordinator=coordinator)


@pytest.fixture
def seed(db):
    return Seeder(db)


@pytest.fixture
async def users(seed):
    """One active user per role the workflows use"""
    return {
        "owner": await seed.user("owner"),
        "pm": await seed.user("pm"),
        "accountant": await seed.user("accountant"),
        "supplier": await seed.user("supplier"),
    }
