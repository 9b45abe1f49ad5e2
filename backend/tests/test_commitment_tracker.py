"""
Commitment Tracker tests: atomic committed cost deltas and phase refresh
"""
import asyncio
from decimal import Decimal

import pytest

from finance_core.commitment_tracker import CommitmentTracker
from finance_core.errors import ValidationError


@pytest.fixture
def tracker(db):
    return CommitmentTracker(db)


class TestProjectCommittedCost:

    async def test_add_creates_record(self, tracker, seed, db):
        project_id = await seed.project()

        committed = await tracker.update_committed_cost(project_id, 5000, "add")

        assert committed == Decimal("5000.00")
        record = await db.project_finances.find_one({"projectId": project_id})
        assert record["committedCost"] == 5000.0
        assert "availableCapital" not in record

    async def test_adds_accumulate(self, tracker, seed, db):
        project_id = await seed.project()
        await tracker.increase_committed_cost(project_id, 5000)
        committed = await tracker.increase_committed_cost(project_id, 3000)

        assert committed == Decimal("8000.00")

    async def test_concurrent_adds(self, tracker, seed, db):
        project_id = await seed.project()
        await asyncio.gather(
            tracker.increase_committed_cost(project_id, 5000),
            tracker.increase_committed_cost(project_id, 3000),
        )

        record = await db.project_finances.find_one({"projectId": project_id})
        assert record["committedCost"] == 8000.0
        assert await db.project_finances.count_documents({"projectId": project_id}) == 1

    async def test_subtract(self, tracker, seed, db):
        project_id = await seed.project()
        await tracker.increase_committed_cost(project_id, 8000)

        committed = await tracker.decrease_committed_cost(project_id, 5000)

        assert committed == Decimal("3000.00")
        record = await db.project_finances.find_one({"projectId": project_id})
        assert "availableCapital" not in record

    async def test_seeded_record_moves_available_capital(self, tracker, seed, db):
        project_id = await seed.project()
        await db.project_finances.insert_one({
            "projectId": project_id,
            "totalInvested": 20000.0,
            "committedCost": 0.0,
            "availableCapital": 20000.0,
        })

        await tracker.increase_committed_cost(project_id, 8000)
        await tracker.decrease_committed_cost(project_id, 5000)

        record = await db.project_finances.find_one({"projectId": project_id})
        assert record["committedCost"] == 3000.0
        assert record["availableCapital"] == 17000.0

    async def test_unconfigured_project_never_shows_negative_capital(self, tracker, services, seed, db):
        project_id = await seed.project()

        await tracker.increase_committed_cost(project_id, 5000)

        record = await db.project_finances.find_one({"projectId": project_id})
        assert "availableCapital" not in record
        finances = await services.ledger.get_project_finances(project_id)
        assert finances["committedCost"] == 5000.0
        assert finances.get("availableCapital") is None

    async def test_subtract_clamps_at_zero(self, tracker, seed, db):
        project_id = await seed.project()
        await tracker.increase_committed_cost(project_id, 1000)

        committed = await tracker.decrease_committed_cost(project_id, 5000)

        assert committed == Decimal("0.00")

    async def test_subtract_without_record(self, tracker, seed):
        project_id = await seed.project()
        assert await tracker.decrease_committed_cost(project_id, 100) == Decimal("0.00")

    async def test_invalid_direction(self, tracker, seed):
        project_id = await seed.project()
        with pytest.raises(ValidationError):
            await tracker.update_committed_cost(project_id, 100, "multiply")

    @pytest.mark.parametrize("amount", [-5, None, "lots"])
    async def test_invalid_amount(self, tracker, seed, amount):
        project_id = await seed.project()
        with pytest.raises(ValidationError):
            await tracker.update_committed_cost(project_id, amount, "add")


class TestPhaseCommittedCost:
    """Best-effort phase level refresh"""

    async def test_phase_recalculated_from_orders(self, tracker, seed, db):
        project_id = await seed.project()
        phase = await db.phases.insert_one({
            "projectId": project_id,
            "name": "Foundation",
            "budgetAllocation": {"total": 20000.0},
            "actualSpending": {"total": 5000.0},
        })
        phase_id = phase.inserted_id
        request = await db.material_requests.insert_one({"projectId": project_id, "phaseId": phase_id})

        direct = await seed.committed_order(project_id, 3000.0, phaseId=phase_id)
        await seed.committed_order(project_id, 2000.0, materialRequestId=request.inserted_id)
        await seed.purchase_order(project_id, None, phaseId=phase_id, totalCost=9999.0)

        order = await db.purchase_orders.find_one({"_id": direct})
        assert await tracker.update_phase_committed_costs_for_po(order) is True

        phase_doc = await db.phases.find_one({"_id": phase_id})
        assert phase_doc["financialStates"]["committed"] == 5000.0
        assert phase_doc["financialStates"]["remaining"] == 10000.0

    async def test_phase_ids_from_material_request(self, tracker, seed, db):
        project_id = await seed.project()
        phase = await db.phases.insert_one({"projectId": project_id})
        request = await db.material_requests.insert_one({"phaseId": phase.inserted_id})

        phase_ids = await tracker.get_phase_ids_for_po({
            "phaseId": phase.inserted_id,
            "materialRequestId": request.inserted_id,
        })
        assert phase_ids == [phase.inserted_id]

    async def test_missing_order(self, tracker):
        assert await tracker.update_phase_committed_costs_for_po(None) is False

    async def test_failure_is_swallowed(self, tracker, monkeypatch):
        async def broken(order):
            raise RuntimeError("phases collection unavailable")

        monkeypatch.setattr(tracker, "refresh_phases_for_po", broken)
        assert await tracker.update_phase_committed_costs_for_po({"_id": "x"}) is False
