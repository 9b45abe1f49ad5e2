"""
FINANCE CORE: PURCHASE ORDER TRANSITIONS

Supplier and buyer actions on a purchase order, each run as one atomic unit
through the TransactionCoordinator, followed by best-effort side effects.

ACCEPT (supplier), atomic unit:
    1. order -> order_accepted with unit/total cost, financialStatus=committed
    2. committed cost += totalCost
    3. audit entry with before/after and the capital snapshot
  The capital check runs inside the same unit against the same snapshot.
  After commit: phase refresh, project recalculation, manager notifications.

REJECT (supplier):        sent/modified -> order_rejected, no financial effect
READY (supplier):         accepted -> ready_for_delivery
CONFIRM DELIVERY (buyer): accepted/ready -> delivered, financialStatus=fulfilled,
                          material recorded as actual spend, committed cost released
CANCEL (buyer):           non-terminal -> cancelled (soft-deleted), committed cost
                          released when the order was committed
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from datetime import datetime
from typing import Dict, Any, Optional, List
import logging

from finance_core.capital_validator import CapitalValidator
from finance_core.commitment_tracker import CommitmentTracker
from finance_core.errors import (
    ValidationError, NotFoundError, InvalidStatusError,
    PermissionDeniedError, ConcurrencyConflictError
)
from finance_core.financial_precision import (
    ZERO, NegativeValueError, parse_amount, to_decimal, to_float, calculate_order_total
)
from finance_core.ledger_reader import LedgerReader, to_object_id, not_deleted
from finance_core.side_effects import PostCommitEffects, SideEffectOutcome
from finance_core.state_machine import (
    PURCHASE_ORDER_MACHINE,
    PO_ACCEPTABLE_STATUSES, PO_DELIVERABLE_STATUSES,
    PO_ORDER_ACCEPTED, PO_ORDER_REJECTED, PO_READY_FOR_DELIVERY, PO_DELIVERED, PO_CANCELLED,
    FINANCIAL_COMMITTED, FINANCIAL_FULFILLED, FINANCIAL_NOT_COMMITTED
)
from finance_core.transaction_coordinator import TransactionCoordinator
from permissions import MANAGER_ROLES

logger = logging.getLogger(__name__)

ENTITY_PURCHASE_ORDER = "PURCHASE_ORDER"


class PurchaseOrderService:

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        coordinator: TransactionCoordinator,
        audit_service,
        recalculation_service,
        notification_service,
        ledger: LedgerReader = None,
        capital_validator: CapitalValidator = None,
        commitment_tracker: CommitmentTracker = None
    ):
        self.db = db
        self.coordinator = coordinator
        self.audit = audit_service
        self.recalculation = recalculation_service
        self.notifications = notification_service
        self.ledger = ledger or LedgerReader(db)
        self.capital = capital_validator or CapitalValidator(db, self.ledger)
        self.tracker = commitment_tracker or CommitmentTracker(db)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _load_order(self, order_id, session=None) -> Dict[str, Any]:
        order = await self.db.purchase_orders.find_one(not_deleted({"_id": order_id}), session=session)
        if not order:
            raise NotFoundError("Purchase order", order_id)
        return order

    @staticmethod
    def _require_supplier(order: Dict[str, Any], supplier_id) -> None:
        if supplier_id is None or str(order.get("supplierId")) != str(supplier_id):
            raise PermissionDeniedError(
                "Only the assigned supplier can respond to this purchase order",
                {"purchaseOrderId": str(order["_id"])}
            )

    async def _apply_transition(
        self,
        order: Dict[str, Any],
        to_state: str,
        fields: Dict[str, Any],
        user_id,
        session
    ) -> Dict[str, Any]:
        """
        Move the order to `to_state` guarded on its current status.
        A concurrent status change makes the filter miss.
        """
        from_state = order.get("status")
        update = {"$set": dict(fields, **PURCHASE_ORDER_MACHINE.get_status_update(to_state))}
        update["$set"]["updatedAt"] = datetime.utcnow()
        update["$push"] = {
            "statusHistory": PURCHASE_ORDER_MACHINE.get_history_entry(from_state, to_state, str(user_id))
        }

        updated = await self.db.purchase_orders.find_one_and_update(
            {"_id": order["_id"], "status": from_state, "deletedAt": None},
            update,
            return_document=ReturnDocument.AFTER,
            session=session
        )
        if updated is None:
            raise ConcurrencyConflictError(
                "Purchase order was modified by another request. Please retry.",
                {"purchaseOrderId": str(order["_id"]), "expectedStatus": from_state}
            )
        return updated

    @staticmethod
    def _snapshot(order: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "status": order.get("status"),
            "financialStatus": order.get("financialStatus"),
            "unitCost": order.get("unitCost"),
            "quantityOrdered": order.get("quantityOrdered"),
            "totalCost": order.get("totalCost"),
        }

    def _post_commit_effects(
        self,
        order: Dict[str, Any],
        operation: str,
        notification: Optional[Dict[str, str]] = None,
        actor_id=None,
        refresh_finances: bool = True
    ) -> PostCommitEffects:
        project_id = order.get("projectId")
        effects = PostCommitEffects(self.db, project_id=project_id, operation=operation)

        if refresh_finances:
            effects.add(
                "phase_committed_cost_refresh",
                lambda: self.tracker.refresh_phases_for_po(order),
                {"purchaseOrderId": str(order["_id"])}
            )
            effects.add(
                "project_finance_recalculation",
                lambda: self.recalculation.recalculate_project_finances(project_id),
                {"projectId": str(project_id)}
            )

        if notification and self.notifications is not None:
            effects.add(
                "manager_notifications",
                lambda: self.notifications.notify_roles(
                    MANAGER_ROLES,
                    type=notification["type"],
                    title=notification["title"],
                    message=notification["message"],
                    project_id=project_id,
                    related_model="PURCHASE_ORDER",
                    related_id=order["_id"],
                    created_by=actor_id
                ),
                {"purchaseOrderId": str(order["_id"])}
            )
        return effects

    @staticmethod
    def _label(order: Dict[str, Any]) -> str:
        return order.get("purchaseOrderNumber") or str(order["_id"])

    @staticmethod
    def _outcomes(outcomes: List[SideEffectOutcome]) -> List[Dict[str, Any]]:
        return [outcome.to_dict() for outcome in outcomes]

    # =========================================================================
    # ACCEPT
    # =========================================================================

    async def accept_purchase_order(
        self,
        order_id,
        supplier_id,
        final_unit_cost=None,
        supplier_notes: Optional[str] = None
    ) -> Dict[str, Any]:
        oid = to_object_id(order_id, "order_id")

        supplied_cost = None
        if final_unit_cost is not None:
            supplied_cost = parse_amount(final_unit_cost)
            if supplied_cost is None or supplied_cost <= ZERO:
                raise ValidationError(
                    "Final unit cost must be a number greater than 0",
                    {"finalUnitCost": str(final_unit_cost)}
                )

        async def accept(session):
            order = await self._load_order(oid, session=session)

            if order.get("status") not in PO_ACCEPTABLE_STATUSES:
                raise InvalidStatusError("purchase order", order.get("status"), PO_ACCEPTABLE_STATUSES)

            self._require_supplier(order, supplier_id)

            unit_cost = supplied_cost if supplied_cost is not None else to_decimal(order.get("unitCost"))
            if unit_cost <= ZERO:
                raise ValidationError(
                    "Unit cost is required to accept this order. Provide a final unit cost greater than 0.",
                    {"purchaseOrderId": str(oid), "unitCost": to_float(unit_cost)}
                )

            try:
                total_cost = calculate_order_total(order.get("quantityOrdered"), unit_cost)
            except NegativeValueError as e:
                raise ValidationError(str(e), {"purchaseOrderId": str(oid)})

            project_id = order.get("projectId")
            capital = await self.capital.validate_capital_availability(project_id, total_cost, session=session)
            capital.raise_if_insufficient()

            now = datetime.utcnow()
            updated = await self._apply_transition(
                order,
                PO_ORDER_ACCEPTED,
                {
                    "unitCost": to_float(unit_cost),
                    "totalCost": to_float(total_cost),
                    "financialStatus": FINANCIAL_COMMITTED,
                    "committedAt": now,
                    "supplierResponse": "accept",
                    "supplierResponseDate": now,
                    "supplierNotes": supplier_notes,
                },
                supplier_id,
                session
            )

            await self.tracker.update_committed_cost(project_id, total_cost, "add", session=session)

            await self.audit.log_action(
                user_id=supplier_id,
                action="ACCEPTED",
                entity_type=ENTITY_PURCHASE_ORDER,
                entity_id=oid,
                project_id=project_id,
                changes={
                    "before": self._snapshot(order),
                    "after": self._snapshot(updated),
                    "capitalValidation": capital.to_dict(),
                },
                session=session,
                critical=True
            )
            return updated, capital

        updated, capital = await self.coordinator.run(accept, label="accept_purchase_order")

        logger.info(
            f"[PURCHASE_ORDER] {self._label(updated)} accepted, "
            f"committed {updated.get('totalCost')} on project:{updated.get('projectId')}"
        )

        effects = self._post_commit_effects(
            updated,
            "accept_purchase_order",
            notification={
                "type": "order_accepted",
                "title": "Purchase order accepted",
                "message": (
                    f"Supplier accepted {self._label(updated)} "
                    f"({updated.get('materialName') or 'materials'}) for {to_float(updated.get('totalCost')):,.2f}"
                ),
            },
            actor_id=supplier_id
        )
        outcomes = await effects.run_all()

        return {
            "order": updated,
            "capitalInfo": capital.capital_info(),
            "sideEffects": self._outcomes(outcomes),
        }

    # =========================================================================
    # REJECT
    # =========================================================================

    async def reject_purchase_order(self, order_id, supplier_id, reason: Optional[str] = None) -> Dict[str, Any]:
        oid = to_object_id(order_id, "order_id")

        async def reject(session):
            order = await self._load_order(oid, session=session)
            self._require_supplier(order, supplier_id)
            PURCHASE_ORDER_MACHINE.validate_transition(order.get("status"), PO_ORDER_REJECTED)

            now = datetime.utcnow()
            updated = await self._apply_transition(
                order,
                PO_ORDER_REJECTED,
                {
                    "supplierResponse": "reject",
                    "supplierResponseDate": now,
                    "rejectionReason": reason,
                },
                supplier_id,
                session
            )
            await self.audit.log_action(
                user_id=supplier_id,
                action="REJECTED",
                entity_type=ENTITY_PURCHASE_ORDER,
                entity_id=oid,
                project_id=order.get("projectId"),
                changes={"before": self._snapshot(order), "after": self._snapshot(updated), "reason": reason},
                session=session,
                critical=True
            )
            return updated

        updated = await self.coordinator.run(reject, label="reject_purchase_order")
        logger.info(f"[PURCHASE_ORDER] {self._label(updated)} rejected by supplier")

        effects = self._post_commit_effects(
            updated,
            "reject_purchase_order",
            notification={
                "type": "order_rejected",
                "title": "Purchase order rejected",
                "message": f"Supplier rejected {self._label(updated)}" + (f": {reason}" if reason else ""),
            },
            actor_id=supplier_id,
            refresh_finances=False
        )
        outcomes = await effects.run_all()
        return {"order": updated, "sideEffects": self._outcomes(outcomes)}

    # =========================================================================
    # READY FOR DELIVERY
    # =========================================================================

    async def mark_ready_for_delivery(self, order_id, supplier_id, notes: Optional[str] = None) -> Dict[str, Any]:
        oid = to_object_id(order_id, "order_id")

        async def ready(session):
            order = await self._load_order(oid, session=session)
            self._require_supplier(order, supplier_id)
            PURCHASE_ORDER_MACHINE.validate_transition(order.get("status"), PO_READY_FOR_DELIVERY)

            updated = await self._apply_transition(
                order,
                PO_READY_FOR_DELIVERY,
                {"readyForDeliveryAt": datetime.utcnow(), "deliveryNotes": notes},
                supplier_id,
                session
            )
            await self.audit.log_action(
                user_id=supplier_id,
                action="READY_FOR_DELIVERY",
                entity_type=ENTITY_PURCHASE_ORDER,
                entity_id=oid,
                project_id=order.get("projectId"),
                changes={"before": self._snapshot(order), "after": self._snapshot(updated)},
                session=session,
                critical=True
            )
            return updated

        updated = await self.coordinator.run(ready, label="mark_ready_for_delivery")

        effects = self._post_commit_effects(
            updated,
            "mark_ready_for_delivery",
            notification={
                "type": "order_ready",
                "title": "Purchase order ready for delivery",
                "message": f"{self._label(updated)} is ready for delivery",
            },
            actor_id=supplier_id,
            refresh_finances=False
        )
        outcomes = await effects.run_all()
        return {"order": updated, "sideEffects": self._outcomes(outcomes)}

    # =========================================================================
    # CONFIRM DELIVERY
    # =========================================================================

    async def confirm_delivery(self, order_id, actor: Dict[str, Any], delivery_notes: Optional[str] = None) -> Dict[str, Any]:
        """
        Fulfil an accepted order.

        The delivered goods are recorded as an approved material (actual
        spend) and the order's committed cost is released in the same unit,
        so committed + used stays constant across fulfilment.
        """
        oid = to_object_id(order_id, "order_id")
        user_id = actor.get("user_id")

        async def deliver(session):
            order = await self._load_order(oid, session=session)
            if order.get("status") not in PO_DELIVERABLE_STATUSES:
                raise InvalidStatusError("purchase order", order.get("status"), PO_DELIVERABLE_STATUSES)

            was_committed = order.get("financialStatus") == FINANCIAL_COMMITTED
            total_cost = to_decimal(order.get("totalCost"))
            now = datetime.utcnow()

            material = {
                "projectId": order.get("projectId"),
                "phaseId": order.get("phaseId"),
                "purchaseOrderId": oid,
                "materialRequestId": order.get("materialRequestId"),
                "supplierId": order.get("supplierId"),
                "supplierName": order.get("supplierName"),
                "name": order.get("materialName"),
                "quantity": order.get("quantityOrdered"),
                "unit": order.get("unit"),
                "unitCost": order.get("unitCost"),
                "totalCost": to_float(total_cost),
                "status": "approved",
                "costStatus": "actual",
                "createdBy": str(user_id),
                "createdAt": now,
                "updatedAt": now,
                "deletedAt": None,
            }
            inserted = await self.db.materials.insert_one(material, session=session)

            updated = await self._apply_transition(
                order,
                PO_DELIVERED,
                {
                    "financialStatus": FINANCIAL_FULFILLED,
                    "fulfilledAt": now,
                    "deliveredAt": now,
                    "deliveryConfirmedBy": str(user_id),
                    "deliveryNotes": delivery_notes,
                    "materialId": inserted.inserted_id,
                },
                user_id,
                session
            )

            if was_committed:
                await self.tracker.update_committed_cost(
                    order.get("projectId"), total_cost, "subtract", session=session
                )

            await self.audit.log_action(
                user_id=user_id,
                action="DELIVERED",
                entity_type=ENTITY_PURCHASE_ORDER,
                entity_id=oid,
                project_id=order.get("projectId"),
                changes={
                    "before": self._snapshot(order),
                    "after": self._snapshot(updated),
                    "materialId": str(inserted.inserted_id),
                    "committedReleased": to_float(total_cost) if was_committed else 0.0,
                },
                session=session,
                critical=True
            )
            return updated

        updated = await self.coordinator.run(deliver, label="confirm_delivery")
        logger.info(f"[PURCHASE_ORDER] {self._label(updated)} delivered and fulfilled")

        effects = self._post_commit_effects(
            updated,
            "confirm_delivery",
            notification={
                "type": "order_delivered",
                "title": "Purchase order delivered",
                "message": f"Delivery of {self._label(updated)} confirmed",
            },
            actor_id=user_id
        )
        outcomes = await effects.run_all()
        return {"order": updated, "sideEffects": self._outcomes(outcomes)}

    # =========================================================================
    # CANCEL
    # =========================================================================

    async def cancel_purchase_order(self, order_id, actor: Dict[str, Any], reason: Optional[str] = None) -> Dict[str, Any]:
        oid = to_object_id(order_id, "order_id")
        user_id = actor.get("user_id")

        async def cancel(session):
            order = await self._load_order(oid, session=session)
            PURCHASE_ORDER_MACHINE.validate_transition(order.get("status"), PO_CANCELLED)

            was_committed = order.get("financialStatus") == FINANCIAL_COMMITTED
            total_cost = to_decimal(order.get("totalCost"))
            now = datetime.utcnow()

            updated = await self._apply_transition(
                order,
                PO_CANCELLED,
                {
                    "financialStatus": FINANCIAL_NOT_COMMITTED,
                    "cancelledAt": now,
                    "cancelledBy": str(user_id),
                    "cancellationReason": reason,
                },
                user_id,
                session
            )

            if was_committed:
                await self.tracker.update_committed_cost(
                    order.get("projectId"), total_cost, "subtract", session=session
                )

            await self.audit.log_action(
                user_id=user_id,
                action="CANCELLED",
                entity_type=ENTITY_PURCHASE_ORDER,
                entity_id=oid,
                project_id=order.get("projectId"),
                changes={
                    "before": self._snapshot(order),
                    "after": self._snapshot(updated),
                    "reason": reason,
                    "committedReleased": to_float(total_cost) if was_committed else 0.0,
                },
                session=session,
                critical=True
            )

            # Soft delete once the cancellation is recorded
            updated = await self.db.purchase_orders.find_one_and_update(
                {"_id": oid},
                {"$set": {"deletedAt": now}},
                return_document=ReturnDocument.AFTER,
                session=session
            )
            return updated, was_committed

        updated, was_committed = await self.coordinator.run(cancel, label="cancel_purchase_order")
        logger.info(f"[PURCHASE_ORDER] {self._label(updated)} cancelled")

        effects = self._post_commit_effects(
            updated,
            "cancel_purchase_order",
            notification={
                "type": "order_cancelled",
                "title": "Purchase order cancelled",
                "message": f"{self._label(updated)} was cancelled" + (f": {reason}" if reason else ""),
            },
            actor_id=user_id,
            refresh_finances=was_committed
        )
        outcomes = await effects.run_all()
        return {"order": updated, "sideEffects": self._outcomes(outcomes)}
