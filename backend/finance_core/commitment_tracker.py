"""
FINANCE CORE: COMMITMENT TRACKER

Keeps project_finances.committedCost in step with purchase order transitions.

    order_sent / order_modified -> order_accepted   : add totalCost
    order_accepted / ready      -> delivered        : subtract totalCost
    order_accepted / ready      -> cancelled        : subtract totalCost
    rejected / cancelled before acceptance          : no effect

Project-level changes are atomic $inc updates that can join a caller's
transaction. Phase-level figures are a best-effort recomputation run after
commit; their failure never touches the project-level figure.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, List
import logging

from finance_core.errors import ValidationError
from finance_core.financial_precision import (
    ZERO, parse_amount, round_financial, to_decimal, to_float
)
from finance_core.ledger_reader import to_object_id, not_deleted

logger = logging.getLogger(__name__)

DIRECTION_ADD = "add"
DIRECTION_SUBTRACT = "subtract"


class CommitmentTracker:

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def update_committed_cost(
        self,
        project_id,
        amount,
        direction: str = DIRECTION_ADD,
        session=None
    ) -> Decimal:
        """
        Apply a signed delta to the cached committed cost.

        Uses $inc so concurrent acceptances on the same project both apply.
        A subtract never drives the cached figure below zero.

        Returns the committed cost after the update.
        """
        oid = to_object_id(project_id, "project_id")
        if direction not in (DIRECTION_ADD, DIRECTION_SUBTRACT):
            raise ValidationError(
                f"Invalid direction '{direction}'. Must be 'add' or 'subtract'",
                {"direction": direction}
            )

        delta = parse_amount(amount)
        if delta is None or delta < ZERO:
            raise ValidationError(f"Invalid committed cost amount: {amount!r}", {"amount": str(amount)})
        delta = to_float(delta)

        now = datetime.utcnow()

        if direction == DIRECTION_ADD:
            updated = await self._apply_delta(oid, delta, {}, now, session, upsert=True)
        else:
            updated = await self._apply_delta(
                oid, -delta, {"committedCost": {"$gte": delta}}, now, session
            )
            if updated is None:
                # Cached figure already below the release amount (or missing): clamp
                logger.warning(
                    f"[COMMITMENT] project:{oid} committed cost below release of {delta}, clamping to 0"
                )
                updated = await self.db.project_finances.find_one_and_update(
                    {"projectId": oid},
                    {
                        "$set": {"committedCost": 0.0, "updatedAt": now},
                        "$setOnInsert": {"createdAt": now},
                    },
                    upsert=True,
                    return_document=ReturnDocument.AFTER,
                    session=session
                )

        committed = round_financial(to_decimal(updated.get("committedCost")))
        logger.info(f"[COMMITMENT] project:{oid} {direction} {delta} -> committed={committed}")
        return committed

    async def _apply_delta(
        self,
        oid,
        signed_delta: float,
        guard: Dict[str, Any],
        now: datetime,
        session,
        upsert: bool = False
    ):
        """
        $inc committedCost by signed_delta.

        availableCapital moves with it only on a record a recalculation has
        already seeded. A record created here carries committedCost alone.
        """
        seeded = await self.db.project_finances.find_one_and_update(
            dict({"projectId": oid, "availableCapital": {"$exists": True}}, **guard),
            {
                "$inc": {"committedCost": signed_delta, "availableCapital": -signed_delta},
                "$set": {"updatedAt": now},
            },
            return_document=ReturnDocument.AFTER,
            session=session
        )
        if seeded is not None:
            return seeded

        update = {"$inc": {"committedCost": signed_delta}, "$set": {"updatedAt": now}}
        if upsert:
            update["$setOnInsert"] = {"createdAt": now}
        return await self.db.project_finances.find_one_and_update(
            dict({"projectId": oid}, **guard),
            update,
            upsert=upsert,
            return_document=ReturnDocument.AFTER,
            session=session
        )

    async def increase_committed_cost(self, project_id, amount, session=None) -> Decimal:
        return await self.update_committed_cost(project_id, amount, DIRECTION_ADD, session=session)

    async def decrease_committed_cost(self, project_id, amount, session=None) -> Decimal:
        return await self.update_committed_cost(project_id, amount, DIRECTION_SUBTRACT, session=session)

    # =========================================================================
    # PHASE LEVEL
    # =========================================================================

    async def get_phase_ids_for_po(self, purchase_order: Dict[str, Any]) -> List:
        """Phases referenced directly by the order or through its material request(s)"""
        phase_ids = []
        if purchase_order.get("phaseId"):
            phase_ids.append(purchase_order["phaseId"])

        request_ids = list(purchase_order.get("materialRequestIds") or [])
        if purchase_order.get("materialRequestId"):
            request_ids.append(purchase_order["materialRequestId"])

        if request_ids:
            cursor = self.db.material_requests.find({"_id": {"$in": request_ids}}, {"phaseId": 1})
            async for request in cursor:
                if request.get("phaseId"):
                    phase_ids.append(request["phaseId"])

        unique = []
        for phase_id in phase_ids:
            if phase_id not in unique:
                unique.append(phase_id)
        return unique

    async def recalculate_phase_committed_cost(self, phase_id) -> Dict[str, float]:
        """Rebuild one phase's committed and remaining figures from its orders"""
        phase = await self.db.phases.find_one({"_id": phase_id})
        if not phase:
            logger.warning(f"[COMMITMENT] Phase {phase_id} not found, skipping")
            return {}

        request_ids = [
            request["_id"]
            async for request in self.db.material_requests.find({"phaseId": phase_id}, {"_id": 1})
        ]

        committed = ZERO
        cursor = self.db.purchase_orders.find(
            not_deleted({
                "financialStatus": "committed",
                "$or": [
                    {"phaseId": phase_id},
                    {"materialRequestId": {"$in": request_ids}},
                ]
            }),
            {"totalCost": 1}
        )
        async for order in cursor:
            committed += to_decimal(order.get("totalCost"))

        allocation = to_decimal((phase.get("budgetAllocation") or {}).get("total"))
        actual = to_decimal((phase.get("actualSpending") or {}).get("total"))
        remaining = round_financial(allocation - actual - committed)

        figures = {"committed": to_float(committed), "remaining": to_float(remaining)}
        await self.db.phases.update_one(
            {"_id": phase_id},
            {"$set": {
                "financialStates.committed": figures["committed"],
                "financialStates.remaining": figures["remaining"],
                "updatedAt": datetime.utcnow(),
            }}
        )
        return figures

    async def refresh_phases_for_po(self, purchase_order: Dict[str, Any]) -> int:
        """Recalculate every phase the order touches. Raises on failure."""
        phase_ids = await self.get_phase_ids_for_po(purchase_order)
        if not phase_ids:
            logger.warning(
                f"[COMMITMENT] No phase ids for PO "
                f"{purchase_order.get('purchaseOrderNumber') or purchase_order.get('_id')}"
            )
            return 0

        for phase_id in phase_ids:
            await self.recalculate_phase_committed_cost(phase_id)
        return len(phase_ids)

    async def update_phase_committed_costs_for_po(self, purchase_order) -> bool:
        """
        Best-effort phase refresh for a purchase order.

        Never raises. Returns False when the refresh failed.
        """
        if not purchase_order:
            logger.warning("[COMMITMENT] Purchase order is missing, skipping phase update")
            return False
        try:
            await self.refresh_phases_for_po(purchase_order)
            return True
        except Exception as e:
            logger.error(f"[COMMITMENT] Phase committed cost update failed: {str(e)}")
            return False
