"""
FINANCE CORE: STATE MACHINES

A small state machine utility plus the two lifecycles the financial core
enforces:

    purchase_order:
        order_sent / order_modified -> order_accepted -> ready_for_delivery -> delivered
        order_sent / order_modified -> order_rejected
        any non-terminal            -> cancelled

    budget approval (adjustments and transfers):
        pending -> approved | rejected

Usage:
    PURCHASE_ORDER_MACHINE.validate_transition(order["status"], "order_accepted")
    update = PURCHASE_ORDER_MACHINE.get_status_update("order_accepted")
"""

from typing import Dict, Any, Optional, List, Set, Tuple
from datetime import datetime
import logging

from finance_core.errors import InvalidTransitionError

logger = logging.getLogger(__name__)


class StateMachine:
    """
    Registry of allowed (from_state, to_state) pairs for one entity.

    Terminal states never transition. Attempting an unregistered transition
    raises InvalidTransitionError listing what is allowed.
    """

    def __init__(self, entity_name: str, status_field: str = "status"):
        self.entity_name = entity_name
        self.status_field = status_field

        self._transitions: Dict[Tuple[str, str], str] = {}
        self._states: Set[str] = set()
        self._terminal: Set[str] = set()

    def register(self, from_state: str, to_state: str, description: str = "") -> "StateMachine":
        key = (from_state, to_state)
        if key in self._transitions:
            logger.warning(
                f"[STATE_MACHINE] Overwriting transition {self.entity_name}: "
                f"'{from_state}' -> '{to_state}'"
            )
        self._transitions[key] = description
        self._states.add(from_state)
        self._states.add(to_state)
        return self

    def mark_terminal(self, *states: str) -> "StateMachine":
        for state in states:
            self._terminal.add(state)
            self._states.add(state)
        return self

    def is_terminal(self, state: str) -> bool:
        return state in self._terminal

    def get_allowed_transitions(self, from_state: str) -> List[str]:
        return [dst for (src, dst) in self._transitions if src == from_state]

    def can_transition(self, from_state: str, to_state: str) -> bool:
        if from_state in self._terminal:
            return False
        return (from_state, to_state) in self._transitions

    def validate_transition(self, from_state: Optional[str], to_state: str) -> None:
        if from_state is None or not self.can_transition(from_state, to_state):
            raise InvalidTransitionError(
                entity=self.entity_name,
                from_state=str(from_state),
                to_state=to_state,
                allowed=self.get_allowed_transitions(from_state)
            )

    def get_status_update(self, to_state: str) -> Dict[str, Any]:
        """Update dict for changing status"""
        return {
            self.status_field: to_state,
            "statusChangedAt": datetime.utcnow(),
        }

    def get_history_entry(
        self,
        from_state: str,
        to_state: str,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Entry for the entity's statusHistory array"""
        return {
            "fromState": from_state,
            "toState": to_state,
            "transitionedAt": datetime.utcnow(),
            "transitionedBy": user_id,
            "metadata": metadata or {},
        }

    def get_graph(self) -> Dict[str, List[str]]:
        graph = {state: [] for state in self._states}
        for (src, dst) in self._transitions:
            graph[src].append(dst)
        return graph

    def __repr__(self):
        return (
            f"StateMachine({self.entity_name}, "
            f"states={len(self._states)}, "
            f"transitions={len(self._transitions)})"
        )


# =============================================================================
# PURCHASE ORDER
# =============================================================================

PO_ORDER_SENT = "order_sent"
PO_ORDER_MODIFIED = "order_modified"
PO_ORDER_ACCEPTED = "order_accepted"
PO_ORDER_REJECTED = "order_rejected"
PO_READY_FOR_DELIVERY = "ready_for_delivery"
PO_DELIVERED = "delivered"
PO_CANCELLED = "cancelled"

PO_ACCEPTABLE_STATUSES = [PO_ORDER_SENT, PO_ORDER_MODIFIED]
PO_DELIVERABLE_STATUSES = [PO_ORDER_ACCEPTED, PO_READY_FOR_DELIVERY]

FINANCIAL_NOT_COMMITTED = "not_committed"
FINANCIAL_COMMITTED = "committed"
FINANCIAL_FULFILLED = "fulfilled"

PURCHASE_ORDER_MACHINE = (
    StateMachine("purchase_order")
    .register(PO_ORDER_SENT, PO_ORDER_MODIFIED, "Supplier requested changes")
    .register(PO_ORDER_SENT, PO_ORDER_ACCEPTED, "Supplier accepted")
    .register(PO_ORDER_MODIFIED, PO_ORDER_ACCEPTED, "Supplier accepted modified order")
    .register(PO_ORDER_SENT, PO_ORDER_REJECTED, "Supplier rejected")
    .register(PO_ORDER_MODIFIED, PO_ORDER_REJECTED, "Supplier rejected modified order")
    .register(PO_ORDER_ACCEPTED, PO_READY_FOR_DELIVERY, "Supplier ready to deliver")
    .register(PO_ORDER_ACCEPTED, PO_DELIVERED, "Delivery confirmed")
    .register(PO_READY_FOR_DELIVERY, PO_DELIVERED, "Delivery confirmed")
    .register(PO_ORDER_SENT, PO_CANCELLED, "Cancelled by buyer")
    .register(PO_ORDER_MODIFIED, PO_CANCELLED, "Cancelled by buyer")
    .register(PO_ORDER_ACCEPTED, PO_CANCELLED, "Cancelled after acceptance")
    .register(PO_READY_FOR_DELIVERY, PO_CANCELLED, "Cancelled before delivery")
    .mark_terminal(PO_DELIVERED, PO_CANCELLED, PO_ORDER_REJECTED)
)


# =============================================================================
# BUDGET APPROVAL
# =============================================================================

APPROVAL_PENDING = "pending"
APPROVAL_APPROVED = "approved"
APPROVAL_REJECTED = "rejected"

APPROVAL_MACHINE = (
    StateMachine("budget_request")
    .register(APPROVAL_PENDING, APPROVAL_APPROVED, "Owner approved")
    .register(APPROVAL_PENDING, APPROVAL_REJECTED, "Owner rejected")
    .mark_terminal(APPROVAL_APPROVED, APPROVAL_REJECTED)
)
