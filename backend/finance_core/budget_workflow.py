"""
FINANCE CORE: BUDGET ADJUSTMENT / TRANSFER WORKFLOW

Two-phase, owner-gated changes to a project's category budgets.

    request  -> pending   (validated against the budget/spend snapshot at request time)
    approve  -> approved  (terminal, budget mutated)
    reject   -> rejected  (terminal, no budget effect)

Approval is one atomic unit:
    1. load the pending record
    2. re-validate against the CURRENT snapshot
    3. flip pending -> approved guarded by the record's `version`
    4. $inc the category budget(s) guarded by the project's `budgetVersion`
    5. critical audit entry

If re-validation fails the unit aborts, the record stays pending and a
best-effort `lastApprovalFailure` note is stored on it. A concurrent
modification at step 3 or 4 raises ConcurrencyConflictError.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from bson import ObjectId
from bson.errors import InvalidId
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, Optional, List
import logging

from finance_core.errors import (
    ValidationError, NotFoundError, BusinessRuleError,
    PermissionDeniedError, ConcurrencyConflictError
)
from finance_core.financial_precision import (
    ZERO, parse_amount, round_financial, to_decimal, to_float, format_amount
)
from finance_core.ledger_reader import (
    LedgerReader, BUDGET_CATEGORIES, to_object_id, not_deleted
)
from finance_core.side_effects import PostCommitEffects
from finance_core.state_machine import (
    APPROVAL_MACHINE, APPROVAL_PENDING, APPROVAL_APPROVED, APPROVAL_REJECTED
)
from finance_core.transaction_coordinator import TransactionCoordinator

logger = logging.getLogger(__name__)

ADJUSTMENT_INCREASE = "increase"
ADJUSTMENT_DECREASE = "decrease"
ADJUSTMENT_TYPES = (ADJUSTMENT_INCREASE, ADJUSTMENT_DECREASE)

CONTINGENCY = "contingency"

OWNER_ROLE = "owner"
REQUESTER_ROLES = ["owner", "pm", "project_manager"]

KIND_TRANSFER = "transfer"
KIND_ADJUSTMENT = "adjustment"

KINDS = {
    KIND_TRANSFER: {
        "collection": "budget_transfers",
        "entity": "BUDGET_TRANSFER",
        "label": "Budget transfer",
    },
    KIND_ADJUSTMENT: {
        "collection": "budget_adjustments",
        "entity": "BUDGET_ADJUSTMENT",
        "label": "Budget adjustment",
    },
}


@dataclass
class BudgetValidation:
    """
    Outcome of a transfer/adjustment check.

    `input_error` marks malformed requests (unknown category, non-positive
    amount) as opposed to business-rule failures against the budget.
    """
    is_valid: bool
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    input_error: bool = False

    def raise_if_invalid(self) -> None:
        if self.is_valid:
            return
        if self.input_error:
            raise ValidationError(self.message, self.details)
        raise BusinessRuleError(self.message, self.details)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.details, isValid=self.is_valid, message=self.message)


def _invalid_input(message: str, **details) -> BudgetValidation:
    return BudgetValidation(False, message, details, input_error=True)


class BudgetWorkflowService:

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        coordinator: TransactionCoordinator,
        audit_service,
        notification_service=None,
        ledger: LedgerReader = None
    ):
        self.db = db
        self.coordinator = coordinator
        self.audit = audit_service
        self.notifications = notification_service
        self.ledger = ledger or LedgerReader(db)

    # =========================================================================
    # VALIDATION
    # =========================================================================

    async def _require_project(self, project_id, session=None) -> Dict[str, Any]:
        project = await self.ledger.get_project(project_id, session=session)
        if not project:
            raise NotFoundError("Project", project_id)
        return project

    async def validate_budget_transfer(
        self,
        project_id,
        from_category: str,
        to_category: str,
        amount,
        session=None
    ) -> BudgetValidation:
        oid = to_object_id(project_id, "project_id")

        if from_category not in BUDGET_CATEGORIES or to_category not in BUDGET_CATEGORIES:
            return _invalid_input(
                f"Invalid category. Must be one of: {', '.join(BUDGET_CATEGORIES)}",
                fromCategory=from_category, toCategory=to_category
            )
        if from_category == to_category:
            return _invalid_input("Cannot transfer budget to the same category", fromCategory=from_category)

        value = parse_amount(amount)
        if value is None or value <= ZERO:
            return _invalid_input("Transfer amount must be greater than 0", amount=str(amount))
        value = round_financial(value)

        await self._require_project(oid, session=session)
        source = await self.ledger.get_category_budget(oid, from_category, session=session)
        from_available = source.remaining

        details = {
            "fromCategory": from_category,
            "toCategory": to_category,
            "amount": to_float(value),
            "fromBudgeted": to_float(source.budgeted),
            "fromSpent": to_float(source.spent),
            "fromAvailable": to_float(from_available),
        }

        if to_category == CONTINGENCY:
            return BudgetValidation(
                False,
                "Cannot transfer budget to contingency reserve. "
                "Contingency is a reserve fund, not a transfer destination.",
                details
            )

        if from_category == CONTINGENCY and source.spent > ZERO:
            return BudgetValidation(
                False,
                "Cannot transfer from contingency reserve that has already been used. "
                "Contingency can only be transferred before any draws are made.",
                details
            )

        if value > from_available:
            details["shortfall"] = to_float(value - from_available)
            return BudgetValidation(
                False,
                f"Insufficient budget in {from_category}. Available: {format_amount(from_available)}, "
                f"Requested: {format_amount(value)}, Shortfall: {format_amount(value - from_available)}.",
                details
            )

        return BudgetValidation(True, "Budget transfer validation passed", details)

    async def validate_budget_adjustment(
        self,
        project_id,
        category: str,
        amount,
        adjustment_type: str,
        session=None
    ) -> BudgetValidation:
        oid = to_object_id(project_id, "project_id")

        value = parse_amount(amount)
        if value is None or value <= ZERO:
            return _invalid_input("Adjustment amount must be greater than 0", amount=str(amount))
        value = round_financial(value)

        if category not in BUDGET_CATEGORIES:
            return _invalid_input(
                f"Invalid category. Must be one of: {', '.join(BUDGET_CATEGORIES)}",
                category=category
            )
        if adjustment_type not in ADJUSTMENT_TYPES:
            return _invalid_input(
                f"Invalid adjustment type. Must be one of: {', '.join(ADJUSTMENT_TYPES)}",
                adjustmentType=adjustment_type
            )

        await self._require_project(oid, session=session)
        current = await self.ledger.get_category_budget(oid, category, session=session)

        if adjustment_type == ADJUSTMENT_INCREASE:
            new_budget = round_financial(current.budgeted + value)
        else:
            new_budget = round_financial(current.budgeted - value)

        details = {
            "category": category,
            "adjustmentType": adjustment_type,
            "amount": to_float(value),
            "currentBudget": to_float(current.budgeted),
            "newBudget": to_float(new_budget),
            "actual": to_float(current.actual),
            "committed": to_float(current.committed),
            "spent": to_float(current.spent),
        }

        if new_budget < ZERO:
            details["newBudget"] = 0.0
            return BudgetValidation(
                False,
                f"Adjustment would make {category} budget negative. "
                f"Current budget: {format_amount(current.budgeted)}, Decrease: {format_amount(value)}",
                details
            )

        if new_budget < current.spent:
            return BudgetValidation(
                False,
                f"Cannot decrease {category} budget below its actual and committed spend. "
                f"Spent: {format_amount(current.spent)}, New budget: {format_amount(new_budget)}",
                details
            )

        return BudgetValidation(True, "Budget adjustment validation passed", details)

    # =========================================================================
    # ROLES
    # =========================================================================

    async def _load_actor(self, actor: Dict[str, Any]) -> Dict[str, Any]:
        user_id = (actor or {}).get("user_id")
        try:
            user = await self.db.users.find_one({"_id": ObjectId(str(user_id))})
        except (InvalidId, TypeError):
            user = None
        if not user or user.get("status", "active") != "active":
            raise PermissionDeniedError("User not found or inactive", {"userId": str(user_id)})
        return user

    async def _require_role(self, actor: Dict[str, Any], roles: List[str], action: str) -> Dict[str, Any]:
        user = await self._load_actor(actor)
        role = (user.get("role") or "").lower()
        if role not in roles:
            raise PermissionDeniedError(
                f"Only {', '.join(roles)} can {action}",
                {"userId": str(user["_id"]), "role": role}
            )
        return user

    # =========================================================================
    # REQUEST
    # =========================================================================

    def _notify_owners(self, effects: PostCommitEffects, kind: str, record: Dict[str, Any], message: str, actor_id):
        if self.notifications is None:
            return
        effects.add(
            "owner_notifications",
            lambda: self.notifications.notify_roles(
                [OWNER_ROLE],
                type=f"budget_{kind}_requested",
                title=f"{KINDS[kind]['label']} approval required",
                message=message,
                project_id=record["projectId"],
                related_model=KINDS[kind]["entity"],
                related_id=record["_id"],
                created_by=actor_id
            ),
            {"recordId": str(record["_id"])}
        )

    def _notify_requester(self, effects: PostCommitEffects, kind: str, record: Dict[str, Any], decision: str, actor_id):
        if self.notifications is None or not record.get("requestedBy"):
            return
        label = KINDS[kind]["label"]
        message = f"{label} request was {decision}"
        if record.get("approvalNotes"):
            message += f": {record['approvalNotes']}"
        effects.add(
            "requester_notification",
            lambda: self.notifications.create_notification(
                user_id=record["requestedBy"],
                type=f"budget_{kind}_{decision}",
                title=f"{label} {decision}",
                message=message,
                project_id=record["projectId"],
                related_model=KINDS[kind]["entity"],
                related_id=record["_id"],
                created_by=actor_id
            ),
            {"recordId": str(record["_id"])}
        )

    async def _create_request(
        self,
        kind: str,
        project_id,
        fields: Dict[str, Any],
        validation: BudgetValidation,
        actor: Dict[str, Any],
        summary: str
    ) -> Dict[str, Any]:
        now = datetime.utcnow()
        record = dict(
            fields,
            projectId=project_id,
            status=APPROVAL_PENDING,
            version=1,
            requestedBy=str(actor["user_id"]),
            requestedAt=now,
            approvedBy=None,
            approvedAt=None,
            approvalNotes=None,
            lastApprovalFailure=None,
            createdAt=now,
            updatedAt=now,
            deletedAt=None,
        )
        result = await self.db[KINDS[kind]["collection"]].insert_one(record)
        record["_id"] = result.inserted_id

        await self.audit.log_action(
            user_id=actor["user_id"],
            action="REQUESTED",
            entity_type=KINDS[kind]["entity"],
            entity_id=record["_id"],
            project_id=project_id,
            changes={"request": validation.to_dict()}
        )

        logger.info(f"[BUDGET_WORKFLOW] {KINDS[kind]['label']} requested for project:{project_id} {summary}")

        effects = PostCommitEffects(self.db, project_id=project_id, operation=f"request_budget_{kind}")
        self._notify_owners(effects, kind, record, summary, actor["user_id"])
        outcomes = await effects.run_all()

        return {
            kind: record,
            "validation": validation.to_dict(),
            "sideEffects": [o.to_dict() for o in outcomes],
        }

    async def request_budget_transfer(self, project_id, data: Dict[str, Any], actor: Dict[str, Any]) -> Dict[str, Any]:
        oid = to_object_id(project_id, "project_id")
        await self._require_role(actor, REQUESTER_ROLES, "request budget transfers")

        from_category = data.get("fromCategory")
        to_category = data.get("toCategory")

        validation = await self.validate_budget_transfer(oid, from_category, to_category, data.get("amount"))
        validation.raise_if_invalid()

        return await self._create_request(
            KIND_TRANSFER,
            oid,
            {
                "fromCategory": from_category,
                "toCategory": to_category,
                "amount": validation.details["amount"],
                "fromAvailable": validation.details["fromAvailable"],
                "reason": data.get("reason"),
            },
            validation,
            actor,
            f"{format_amount(validation.details['amount'])} from {from_category} to {to_category}"
        )

    async def request_budget_adjustment(self, project_id, data: Dict[str, Any], actor: Dict[str, Any]) -> Dict[str, Any]:
        oid = to_object_id(project_id, "project_id")
        await self._require_role(actor, REQUESTER_ROLES, "request budget adjustments")

        category = data.get("category")
        adjustment_type = data.get("adjustmentType")

        validation = await self.validate_budget_adjustment(
            oid, category, data.get("adjustmentAmount"), adjustment_type
        )
        validation.raise_if_invalid()

        return await self._create_request(
            KIND_ADJUSTMENT,
            oid,
            {
                "category": category,
                "adjustmentType": adjustment_type,
                "adjustmentAmount": validation.details["amount"],
                "currentBudget": validation.details["currentBudget"],
                "newBudget": validation.details["newBudget"],
                "reason": data.get("reason"),
            },
            validation,
            actor,
            f"{adjustment_type} {category} by {format_amount(validation.details['amount'])}"
        )

    # =========================================================================
    # APPROVE / REJECT
    # =========================================================================

    async def _load_record(self, kind: str, record_id, session=None) -> Dict[str, Any]:
        record = await self.db[KINDS[kind]["collection"]].find_one(
            not_deleted({"_id": record_id}), session=session
        )
        if not record:
            raise NotFoundError(KINDS[kind]["label"], record_id)
        return record

    async def _revalidate(self, kind: str, record: Dict[str, Any], session) -> BudgetValidation:
        if kind == KIND_TRANSFER:
            return await self.validate_budget_transfer(
                record["projectId"], record.get("fromCategory"), record.get("toCategory"),
                record.get("amount"), session=session
            )
        return await self.validate_budget_adjustment(
            record["projectId"], record.get("category"), record.get("adjustmentAmount"),
            record.get("adjustmentType"), session=session
        )

    @staticmethod
    def _budget_deltas(kind: str, record: Dict[str, Any]) -> Dict[str, Decimal]:
        if kind == KIND_TRANSFER:
            amount = round_financial(record.get("amount"))
            return {record["fromCategory"]: -amount, record["toCategory"]: amount}
        amount = round_financial(record.get("adjustmentAmount"))
        if record.get("adjustmentType") == ADJUSTMENT_DECREASE:
            amount = -amount
        return {record["category"]: amount}

    async def _flip_status(
        self,
        kind: str,
        record: Dict[str, Any],
        to_state: str,
        fields: Dict[str, Any],
        session
    ) -> Dict[str, Any]:
        """pending -> to_state, only if nobody changed the record since it was read"""
        APPROVAL_MACHINE.validate_transition(record.get("status"), to_state)

        updated = await self.db[KINDS[kind]["collection"]].find_one_and_update(
            {
                "_id": record["_id"],
                "status": APPROVAL_PENDING,
                "version": record.get("version", 1),
            },
            {
                "$set": dict(fields, status=to_state, updatedAt=datetime.utcnow()),
                "$inc": {"version": 1},
            },
            return_document=ReturnDocument.AFTER,
            session=session
        )
        if updated is None:
            raise ConcurrencyConflictError(
                f"{KINDS[kind]['label']} was modified by another request. Please retry.",
                {"recordId": str(record["_id"]), "expectedVersion": record.get("version", 1)}
            )
        return updated

    async def _apply_budget_deltas(self, project: Dict[str, Any], deltas: Dict[str, Decimal], session) -> Dict[str, Any]:
        """
        Apply category deltas, guarded by the project's budgetVersion.

        A project without a budget map (missing or null) gets one built from
        the deltas; $inc cannot create fields under a null parent.
        """
        budget_version = project.get("budgetVersion")
        version_filter = (
            {"budgetVersion": budget_version}
            if budget_version is not None
            else {"budgetVersion": {"$exists": False}}
        )

        now = datetime.utcnow()
        if isinstance(project.get("budget"), dict):
            update = {
                "$inc": dict(
                    {f"budget.{category}": to_float(delta) for category, delta in deltas.items()},
                    budgetVersion=1
                ),
                "$set": {"updatedAt": now},
            }
        else:
            update = {
                "$inc": {"budgetVersion": 1},
                "$set": {
                    "budget": {category: to_float(delta) for category, delta in deltas.items()},
                    "updatedAt": now,
                },
            }

        updated = await self.db.projects.find_one_and_update(
            dict({"_id": project["_id"], "deletedAt": None}, **version_filter),
            update,
            return_document=ReturnDocument.AFTER,
            session=session
        )
        if updated is None:
            raise ConcurrencyConflictError(
                "Project budget was modified by another request. Please retry.",
                {"projectId": str(project["_id"]), "expectedBudgetVersion": budget_version}
            )
        return updated

    async def _record_approval_failure(self, kind: str, record_id, reason: str, actor_id):
        try:
            await self.db[KINDS[kind]["collection"]].update_one(
                {"_id": record_id, "status": APPROVAL_PENDING},
                {"$set": {
                    "lastApprovalFailure": {
                        "reason": reason,
                        "attemptedBy": str(actor_id),
                        "attemptedAt": datetime.utcnow(),
                    },
                    "updatedAt": datetime.utcnow(),
                }}
            )
        except Exception as e:
            logger.error(f"[BUDGET_WORKFLOW] Could not record approval failure on {record_id}: {str(e)}")

    async def _approve(self, kind: str, record_id, actor: Dict[str, Any], notes: Optional[str]) -> Dict[str, Any]:
        oid = to_object_id(record_id, f"{kind}_id")
        owner = await self._require_role(actor, [OWNER_ROLE], f"approve budget {kind}s")
        owner_id = str(owner["_id"])
        revalidation = {}

        async def approve(session):
            revalidation.clear()
            record = await self._load_record(kind, oid, session=session)
            APPROVAL_MACHINE.validate_transition(record.get("status"), APPROVAL_APPROVED)

            project = await self._require_project(record["projectId"], session=session)

            validation = await self._revalidate(kind, record, session)
            if not validation.is_valid:
                revalidation["failure"] = validation.message
                validation.raise_if_invalid()

            updated = await self._flip_status(
                kind, record, APPROVAL_APPROVED,
                {
                    "approvedBy": owner_id,
                    "approvedAt": datetime.utcnow(),
                    "approvalNotes": notes,
                    "lastApprovalFailure": None,
                },
                session
            )

            deltas = self._budget_deltas(kind, record)
            project_after = await self._apply_budget_deltas(project, deltas, session)

            budget_before = project.get("budget") or {}
            budget_after = project_after.get("budget") or {}
            await self.audit.log_action(
                user_id=owner_id,
                action="APPROVED",
                entity_type=KINDS[kind]["entity"],
                entity_id=oid,
                project_id=record["projectId"],
                changes={
                    "before": {c: to_float(to_decimal(budget_before.get(c))) for c in deltas},
                    "after": {c: to_float(to_decimal(budget_after.get(c))) for c in deltas},
                    "budgetVersion": project_after.get("budgetVersion"),
                    "validation": validation.to_dict(),
                    "notes": notes,
                },
                session=session,
                critical=True
            )
            return updated, validation

        try:
            updated, validation = await self.coordinator.run(approve, label=f"approve_budget_{kind}")
        except (BusinessRuleError, ValidationError):
            if "failure" in revalidation:
                logger.warning(
                    f"[BUDGET_WORKFLOW] {KINDS[kind]['label']} {oid} failed re-validation: "
                    f"{revalidation['failure']}"
                )
                await self._record_approval_failure(kind, oid, revalidation["failure"], owner_id)
            raise

        logger.info(f"[BUDGET_WORKFLOW] {KINDS[kind]['label']} {oid} approved by {owner_id}")

        effects = PostCommitEffects(self.db, project_id=updated["projectId"], operation=f"approve_budget_{kind}")
        self._notify_requester(effects, kind, updated, APPROVAL_APPROVED, owner_id)
        outcomes = await effects.run_all()

        return {
            kind: updated,
            "validation": validation.to_dict(),
            "sideEffects": [o.to_dict() for o in outcomes],
        }

    async def _reject(self, kind: str, record_id, actor: Dict[str, Any], notes: Optional[str]) -> Dict[str, Any]:
        oid = to_object_id(record_id, f"{kind}_id")
        owner = await self._require_role(actor, [OWNER_ROLE], f"reject budget {kind}s")
        owner_id = str(owner["_id"])

        async def reject(session):
            record = await self._load_record(kind, oid, session=session)
            updated = await self._flip_status(
                kind, record, APPROVAL_REJECTED,
                {
                    "approvedBy": owner_id,
                    "rejectedAt": datetime.utcnow(),
                    "approvalNotes": notes,
                },
                session
            )
            await self.audit.log_action(
                user_id=owner_id,
                action="REJECTED",
                entity_type=KINDS[kind]["entity"],
                entity_id=oid,
                project_id=record["projectId"],
                changes={"before": {"status": record.get("status")}, "after": {"status": APPROVAL_REJECTED}, "notes": notes},
                session=session,
                critical=True
            )
            return updated

        updated = await self.coordinator.run(reject, label=f"reject_budget_{kind}")
        logger.info(f"[BUDGET_WORKFLOW] {KINDS[kind]['label']} {oid} rejected by {owner_id}")

        effects = PostCommitEffects(self.db, project_id=updated["projectId"], operation=f"reject_budget_{kind}")
        self._notify_requester(effects, kind, updated, APPROVAL_REJECTED, owner_id)
        outcomes = await effects.run_all()

        return {kind: updated, "sideEffects": [o.to_dict() for o in outcomes]}

    async def approve_budget_transfer(self, transfer_id, actor, notes: Optional[str] = None):
        return await self._approve(KIND_TRANSFER, transfer_id, actor, notes)

    async def approve_budget_adjustment(self, adjustment_id, actor, notes: Optional[str] = None):
        return await self._approve(KIND_ADJUSTMENT, adjustment_id, actor, notes)

    async def reject_budget_transfer(self, transfer_id, actor, notes: Optional[str] = None):
        return await self._reject(KIND_TRANSFER, transfer_id, actor, notes)

    async def reject_budget_adjustment(self, adjustment_id, actor, notes: Optional[str] = None):
        return await self._reject(KIND_ADJUSTMENT, adjustment_id, actor, notes)

    # =========================================================================
    # HISTORY & SUMMARY
    # =========================================================================

    async def _history(self, kind: str, project_id, status: Optional[str], limit: int) -> List[Dict[str, Any]]:
        oid = to_object_id(project_id, "project_id")
        query = not_deleted({"projectId": oid})
        if status:
            query["status"] = status
        cursor = self.db[KINDS[kind]["collection"]].find(query).sort("createdAt", -1).limit(limit)
        return await cursor.to_list(length=limit)

    async def get_budget_transfer_history(self, project_id, status: Optional[str] = None, limit: int = 50):
        return await self._history(KIND_TRANSFER, project_id, status, limit)

    async def get_budget_adjustment_history(self, project_id, status: Optional[str] = None, limit: int = 50):
        return await self._history(KIND_ADJUSTMENT, project_id, status, limit)

    async def get_budget_transfer_summary(self, project_id) -> Dict[str, Any]:
        oid = to_object_id(project_id, "project_id")
        counts = {APPROVAL_PENDING: 0, APPROVAL_APPROVED: 0, APPROVAL_REJECTED: 0}
        approved_amount = ZERO
        pending_amount = ZERO

        async for record in self.db.budget_transfers.find(not_deleted({"projectId": oid})):
            status = record.get("status")
            counts[status] = counts.get(status, 0) + 1
            if status == APPROVAL_APPROVED:
                approved_amount += to_decimal(record.get("amount"))
            elif status == APPROVAL_PENDING:
                pending_amount += to_decimal(record.get("amount"))

        return {
            "total": sum(counts.values()),
            "pending": counts[APPROVAL_PENDING],
            "approved": counts[APPROVAL_APPROVED],
            "rejected": counts[APPROVAL_REJECTED],
            "totalApprovedAmount": to_float(approved_amount),
            "totalPendingAmount": to_float(pending_amount),
        }

    async def get_budget_adjustment_summary(self, project_id) -> Dict[str, Any]:
        oid = to_object_id(project_id, "project_id")
        counts = {APPROVAL_PENDING: 0, APPROVAL_APPROVED: 0, APPROVAL_REJECTED: 0}
        increases = ZERO
        decreases = ZERO

        async for record in self.db.budget_adjustments.find(not_deleted({"projectId": oid})):
            status = record.get("status")
            counts[status] = counts.get(status, 0) + 1
            if status != APPROVAL_APPROVED:
                continue
            if record.get("adjustmentType") == ADJUSTMENT_INCREASE:
                increases += to_decimal(record.get("adjustmentAmount"))
            else:
                decreases += to_decimal(record.get("adjustmentAmount"))

        return {
            "total": sum(counts.values()),
            "pending": counts[APPROVAL_PENDING],
            "approved": counts[APPROVAL_APPROVED],
            "rejected": counts[APPROVAL_REJECTED],
            "totalIncreases": to_float(increases),
            "totalDecreases": to_float(decreases),
            "netChange": to_float(increases - decreases),
        }
