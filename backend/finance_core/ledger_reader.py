"""
FINANCE CORE: LEDGER READER

Computes a project's real-time financial position from source collections:

    total_invested  = active investor allocations for the project
    total_used      = approved materials + approved expenses
                      + approved labour entries + approved initial expenses
    committed_cost  = accepted purchase orders not yet fulfilled
    available       = total_invested - total_used - committed_cost

Pure read. Missing numeric fields count as zero and an unknown project
yields a zero result. Only a malformed project id is an error.

Accepted purchase orders are counted once, as committed cost. When an order
is fulfilled its material record carries the spend into total_used.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from bson import ObjectId
from bson.errors import InvalidId
from dataclasses import dataclass, field
from decimal import Decimal
from datetime import datetime
from typing import Dict, Any, Optional
import logging

from finance_core.errors import ValidationError
from finance_core.financial_precision import (
    ZERO, to_decimal, to_float, round_financial
)

logger = logging.getLogger(__name__)


# =============================================================================
# STATUS CONSTANTS
# =============================================================================

MATERIAL_APPROVED_STATUSES = ["approved", "received"]
EXPENSE_APPROVED_STATUSES = ["approved", "paid"]
LABOUR_APPROVED_STATUSES = ["approved", "paid"]
INITIAL_EXPENSE_APPROVED_STATUSES = ["approved"]

BUDGET_CATEGORIES = (
    "materials",
    "labour",
    "equipment",
    "subcontractors",
    "indirect",
    "preconstruction",
    "contingency",
)

INVESTOR_ACTIVE = "ACTIVE"
INVESTMENT_LOAN = "LOAN"
INVESTMENT_EQUITY = "EQUITY"
INVESTMENT_MIXED = "MIXED"


def to_object_id(value: Any, field_name: str = "id") -> ObjectId:
    """Parse an identifier, raising ValidationError on a malformed value"""
    if isinstance(value, ObjectId):
        return value
    if not value or not isinstance(value, str):
        raise ValidationError(f"Invalid {field_name}: {value!r}", {"field": field_name})
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {field_name}: {value!r}", {"field": field_name})


def not_deleted(query: Dict[str, Any]) -> Dict[str, Any]:
    """Add the soft-delete filter to a query"""
    query["deletedAt"] = None
    return query


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class ProjectTotals:
    """Live financial position of one project"""
    project_id: ObjectId
    total_invested: Decimal = ZERO
    total_loans: Decimal = ZERO
    total_equity: Decimal = ZERO
    total_used: Decimal = ZERO
    committed_cost: Decimal = ZERO
    estimated_cost: Decimal = ZERO
    investor_count: int = 0
    used_breakdown: Dict[str, Decimal] = field(default_factory=dict)

    @property
    def available_capital(self) -> Decimal:
        return round_financial(self.total_invested - self.total_used - self.committed_cost)

    @property
    def capital_balance(self) -> Decimal:
        return round_financial(self.total_invested - self.total_used)

    def _share_balance(self, share: Decimal) -> Decimal:
        # Used capital is drawn from loans and equity in proportion to their share
        if self.total_invested <= ZERO:
            return round_financial(share)
        return round_financial(share - self.total_used * (share / self.total_invested))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projectId": str(self.project_id),
            "totalInvested": to_float(self.total_invested),
            "totalLoans": to_float(self.total_loans),
            "totalEquity": to_float(self.total_equity),
            "totalUsed": to_float(self.total_used),
            "committedCost": to_float(self.committed_cost),
            "estimatedCost": to_float(self.estimated_cost),
            "availableCapital": to_float(self.available_capital),
            "capitalBalance": to_float(self.capital_balance),
            "investorCount": self.investor_count,
            "usedBreakdown": {k: to_float(v) for k, v in self.used_breakdown.items()},
        }

    def to_record(self) -> Dict[str, Any]:
        """Shape as a project_finances document (without _id)"""
        return {
            "projectId": self.project_id,
            "totalInvested": to_float(self.total_invested),
            "totalLoans": to_float(self.total_loans),
            "totalEquity": to_float(self.total_equity),
            "totalUsed": to_float(self.total_used),
            "committedCost": to_float(self.committed_cost),
            "estimatedCost": to_float(self.estimated_cost),
            "availableCapital": to_float(self.available_capital),
            "capitalBalance": to_float(self.capital_balance),
            "loanBalance": to_float(self._share_balance(self.total_loans)),
            "equityBalance": to_float(self._share_balance(self.total_equity)),
            "investorCount": self.investor_count,
            "usedBreakdown": {k: to_float(v) for k, v in self.used_breakdown.items()},
        }


@dataclass
class CategoryBudget:
    """Budget position of one budget category"""
    category: str
    budgeted: Decimal = ZERO
    actual: Decimal = ZERO
    committed: Decimal = ZERO

    @property
    def spent(self) -> Decimal:
        return round_financial(self.actual + self.committed)

    @property
    def remaining(self) -> Decimal:
        return max(ZERO, round_financial(self.budgeted - self.spent))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "budgeted": to_float(self.budgeted),
            "actual": to_float(self.actual),
            "committed": to_float(self.committed),
            "spent": to_float(self.spent),
            "remaining": to_float(self.remaining),
        }


# =============================================================================
# LEDGER READER
# =============================================================================

class LedgerReader:
    """
    Read-only aggregation over the cost-bearing collections.

    Every method accepts an optional session so reads can participate in
    a caller's transaction snapshot.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def _sum(
        self,
        collection: str,
        query: Dict[str, Any],
        amount_field: str,
        session=None
    ) -> Decimal:
        total = ZERO
        cursor = self.db[collection].find(query, {amount_field: 1}, session=session)
        async for doc in cursor:
            total += to_decimal(doc.get(amount_field))
        return total

    # =========================================================================
    # USED / COMMITTED
    # =========================================================================

    async def calculate_used_breakdown(self, project_id, session=None) -> Dict[str, Decimal]:
        """Approved spend per source collection"""
        oid = to_object_id(project_id, "project_id")

        materials = await self._sum(
            "materials",
            not_deleted({"projectId": oid, "status": {"$in": MATERIAL_APPROVED_STATUSES}}),
            "totalCost", session
        )
        expenses = await self._sum(
            "expenses",
            not_deleted({"projectId": oid, "status": {"$in": EXPENSE_APPROVED_STATUSES}}),
            "amount", session
        )
        labour = await self._sum(
            "labour_entries",
            not_deleted({"projectId": oid, "status": {"$in": LABOUR_APPROVED_STATUSES}}),
            "totalCost", session
        )
        initial_expenses = await self._sum(
            "initial_expenses",
            not_deleted({"projectId": oid, "status": {"$in": INITIAL_EXPENSE_APPROVED_STATUSES}}),
            "amount", session
        )

        return {
            "materials": round_financial(materials),
            "expenses": round_financial(expenses),
            "labour": round_financial(labour),
            "initialExpenses": round_financial(initial_expenses),
        }

    async def calculate_total_used(self, project_id, session=None) -> Decimal:
        breakdown = await self.calculate_used_breakdown(project_id, session=session)
        return round_financial(sum(breakdown.values(), ZERO))

    async def calculate_committed_cost(self, project_id, session=None) -> Decimal:
        """Sum of totalCost over accepted, not yet fulfilled purchase orders"""
        oid = to_object_id(project_id, "project_id")
        total = await self._sum(
            "purchase_orders",
            not_deleted({"projectId": oid, "financialStatus": "committed"}),
            "totalCost", session
        )
        return round_financial(total)

    async def calculate_estimated_cost(self, project_id, session=None) -> Decimal:
        """Approved material requests not yet converted to an order"""
        oid = to_object_id(project_id, "project_id")
        total = await self._sum(
            "material_requests",
            not_deleted({"projectId": oid, "status": "approved", "estimatedCost": {"$gt": 0}}),
            "estimatedCost", session
        )
        return round_financial(total)

    # =========================================================================
    # INVESTED
    # =========================================================================

    async def calculate_investor_totals(self, project_id, session=None) -> Dict[str, Any]:
        """
        Sum active investor allocations for the project, split by instrument.

        The allocation's own `type` wins over the investor's investmentType.
        MIXED allocations use loanAmount / equityAmount when present and
        otherwise count as equity.
        """
        oid = to_object_id(project_id, "project_id")

        total_loans = ZERO
        total_equity = ZERO
        investor_count = 0

        cursor = self.db.investors.find(
            {"status": INVESTOR_ACTIVE, "projectAllocations.projectId": oid},
            session=session
        )
        async for investor in cursor:
            matched = False
            for allocation in investor.get("projectAllocations") or []:
                if allocation.get("projectId") != oid:
                    continue
                matched = True

                amount = to_decimal(allocation.get("amount"))
                kind = (allocation.get("type") or investor.get("investmentType") or INVESTMENT_EQUITY).upper()

                if kind == INVESTMENT_LOAN:
                    total_loans += amount
                elif kind == INVESTMENT_MIXED and (
                    allocation.get("loanAmount") is not None or allocation.get("equityAmount") is not None
                ):
                    total_loans += to_decimal(allocation.get("loanAmount"))
                    total_equity += to_decimal(allocation.get("equityAmount"))
                else:
                    total_equity += amount

            if matched:
                investor_count += 1

        total_loans = round_financial(total_loans)
        total_equity = round_financial(total_equity)

        return {
            "total_invested": round_financial(total_loans + total_equity),
            "total_loans": total_loans,
            "total_equity": total_equity,
            "investor_count": investor_count,
        }

    # =========================================================================
    # PROJECT POSITION
    # =========================================================================

    async def get_project_totals(self, project_id, session=None) -> ProjectTotals:
        oid = to_object_id(project_id, "project_id")

        investors = await self.calculate_investor_totals(oid, session=session)
        breakdown = await self.calculate_used_breakdown(oid, session=session)
        committed = await self.calculate_committed_cost(oid, session=session)
        estimated = await self.calculate_estimated_cost(oid, session=session)

        totals = ProjectTotals(
            project_id=oid,
            total_invested=investors["total_invested"],
            total_loans=investors["total_loans"],
            total_equity=investors["total_equity"],
            total_used=round_financial(sum(breakdown.values(), ZERO)),
            committed_cost=committed,
            estimated_cost=estimated,
            investor_count=investors["investor_count"],
            used_breakdown=breakdown,
        )

        logger.debug(
            f"[LEDGER] project:{oid} invested={totals.total_invested} "
            f"used={totals.total_used} committed={totals.committed_cost}"
        )
        return totals

    async def get_project_finances(self, project_id, session=None) -> Dict[str, Any]:
        """
        Cached project_finances record when one exists, otherwise the live
        totals shaped as that record. Never writes.
        """
        oid = to_object_id(project_id, "project_id")

        cached = await self.db.project_finances.find_one({"projectId": oid}, session=session)
        if cached:
            return cached

        totals = await self.get_project_totals(oid, session=session)
        record = totals.to_record()
        record["isCached"] = False
        record["lastRecalculatedAt"] = datetime.utcnow()
        return record

    # =========================================================================
    # CATEGORY BUDGETS
    # =========================================================================

    async def get_category_spending(self, project_id, category: str, session=None) -> Dict[str, Decimal]:
        """Actual and committed spend attributed to one budget category"""
        oid = to_object_id(project_id, "project_id")
        if category not in BUDGET_CATEGORIES:
            raise ValidationError(
                f"Invalid category. Must be one of: {', '.join(BUDGET_CATEGORIES)}",
                {"category": category}
            )

        committed = ZERO

        if category == "materials":
            actual = await self._sum(
                "materials",
                not_deleted({"projectId": oid, "status": {"$in": MATERIAL_APPROVED_STATUSES}}),
                "totalCost", session
            )
            committed = await self.calculate_committed_cost(oid, session=session)
        elif category == "labour":
            actual = await self._sum(
                "labour_entries",
                not_deleted({"projectId": oid, "status": {"$in": LABOUR_APPROVED_STATUSES}}),
                "totalCost", session
            )
        else:
            actual = await self._sum(
                "expenses",
                not_deleted({
                    "projectId": oid,
                    "category": category,
                    "status": {"$in": EXPENSE_APPROVED_STATUSES}
                }),
                "amount", session
            )
            if category == "preconstruction":
                actual += await self._sum(
                    "initial_expenses",
                    not_deleted({"projectId": oid, "status": {"$in": INITIAL_EXPENSE_APPROVED_STATUSES}}),
                    "amount", session
                )

        return {"actual": round_financial(actual), "committed": round_financial(committed)}

    async def get_category_budget(self, project_id, category: str, session=None) -> CategoryBudget:
        oid = to_object_id(project_id, "project_id")
        spending = await self.get_category_spending(oid, category, session=session)

        project = await self.db.projects.find_one(not_deleted({"_id": oid}), session=session)
        budget = (project or {}).get("budget") or {}

        return CategoryBudget(
            category=category,
            budgeted=round_financial(budget.get(category)),
            actual=spending["actual"],
            committed=spending["committed"],
        )

    async def get_project(self, project_id, session=None) -> Optional[Dict[str, Any]]:
        oid = to_object_id(project_id, "project_id")
        return await self.db.projects.find_one(not_deleted({"_id": oid}), session=session)
