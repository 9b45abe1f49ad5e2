"""
FINANCE CORE: CAPITAL VALIDATOR

Decides whether a project has enough uncommitted capital for a spend.

The result is tri-state:
- UNCONFIGURED: no capital was ever configured (total_invested == 0).
  The check is bypassed and spending is allowed.
- SUFFICIENT:   available >= requested
- INSUFFICIENT: available <  requested

UNCONFIGURED must never be reported as INSUFFICIENT.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Any
import logging

from finance_core.errors import ValidationError, InsufficientCapitalError
from finance_core.financial_precision import (
    ZERO, parse_amount, round_financial, to_float, format_amount
)
from finance_core.ledger_reader import LedgerReader, to_object_id

logger = logging.getLogger(__name__)


class CapitalStatus(str, Enum):
    UNCONFIGURED = "UNCONFIGURED"
    SUFFICIENT = "SUFFICIENT"
    INSUFFICIENT = "INSUFFICIENT"


@dataclass
class CapitalValidation:
    """Outcome of a capital availability check"""
    status: CapitalStatus
    available: Decimal
    required: Decimal
    total_invested: Decimal
    total_used: Decimal
    committed_cost: Decimal

    @property
    def is_valid(self) -> bool:
        return self.status != CapitalStatus.INSUFFICIENT

    @property
    def capital_not_set(self) -> bool:
        return self.status == CapitalStatus.UNCONFIGURED

    @property
    def remaining(self) -> Decimal:
        if self.capital_not_set:
            return ZERO
        return round_financial(self.available - self.required)

    @property
    def shortfall(self) -> Decimal:
        if self.status != CapitalStatus.INSUFFICIENT:
            return ZERO
        return round_financial(self.required - self.available)

    @property
    def message(self) -> str:
        if self.status == CapitalStatus.UNCONFIGURED:
            return "Capital not configured for this project. Capital check bypassed."
        if self.status == CapitalStatus.SUFFICIENT:
            return f"Sufficient capital. Available: {format_amount(self.available)}"
        return (
            f"Insufficient capital. Available: {format_amount(self.available)}, "
            f"Required: {format_amount(self.required)}, "
            f"Shortfall: {format_amount(self.shortfall)}"
        )

    def raise_if_insufficient(self) -> None:
        if self.status == CapitalStatus.INSUFFICIENT:
            raise InsufficientCapitalError(
                available=to_float(self.available),
                required=to_float(self.required),
                message=self.message
            )

    def capital_info(self) -> Dict[str, Any]:
        """Summary returned to callers alongside a successful spend"""
        return {
            "available": to_float(self.available),
            "required": to_float(self.required),
            "remaining": to_float(self.remaining),
            "capitalNotSet": self.capital_not_set,
        }

    def to_dict(self) -> Dict[str, Any]:
        result = self.capital_info()
        result.update({
            "status": self.status.value,
            "isValid": self.is_valid,
            "totalInvested": to_float(self.total_invested),
            "totalUsed": to_float(self.total_used),
            "committedCost": to_float(self.committed_cost),
            "message": self.message,
        })
        return result


class CapitalValidator:

    def __init__(self, db: AsyncIOMotorDatabase, ledger: LedgerReader = None):
        self.db = db
        self.ledger = ledger or LedgerReader(db)

    @staticmethod
    def _require_amount(value, field_name: str) -> Decimal:
        amount = parse_amount(value)
        if amount is None:
            raise ValidationError(f"Invalid {field_name}: {value!r}", {"field": field_name})
        if amount < ZERO:
            raise ValidationError(
                f"{field_name} cannot be negative: {value}",
                {"field": field_name, "value": str(value)}
            )
        return round_financial(amount)

    async def validate_capital_availability(
        self,
        project_id,
        requested_amount,
        session=None
    ) -> CapitalValidation:
        """
        Check the requested spend against invested - used - committed.

        A zero amount is accepted and acts as an availability probe.
        """
        oid = to_object_id(project_id, "project_id")
        required = self._require_amount(requested_amount, "amount")

        totals = await self.ledger.get_project_totals(oid, session=session)
        available = max(ZERO, totals.available_capital)

        if totals.total_invested == ZERO:
            status = CapitalStatus.UNCONFIGURED
        elif available >= required:
            status = CapitalStatus.SUFFICIENT
        else:
            status = CapitalStatus.INSUFFICIENT

        result = CapitalValidation(
            status=status,
            available=available,
            required=required,
            total_invested=totals.total_invested,
            total_used=totals.total_used,
            committed_cost=totals.committed_cost,
        )

        logger.info(f"[CAPITAL] project:{oid} required={required} status={status.value}")
        return result

    async def validate_capital_removal(self, project_id, amount, session=None) -> Dict[str, Any]:
        """Would withdrawing `amount` of invested capital leave available capital negative?"""
        oid = to_object_id(project_id, "project_id")
        to_remove = self._require_amount(amount, "amount")

        totals = await self.ledger.get_project_totals(oid, session=session)
        current_available = totals.available_capital
        new_total_invested = round_financial(totals.total_invested - to_remove)
        available_after = round_financial(new_total_invested - totals.total_used - totals.committed_cost)

        can_remove = to_remove == ZERO or available_after >= ZERO
        shortfall = ZERO if can_remove else abs(available_after)

        if can_remove:
            message = f"Capital removal allowed. Available after removal: {format_amount(max(ZERO, available_after))}"
        else:
            message = (
                f"Cannot remove capital. Would cause negative available capital. "
                f"Current available: {format_amount(current_available)}, "
                f"Removal amount: {format_amount(to_remove)}, Shortfall: {format_amount(shortfall)}"
            )

        return {
            "canRemove": can_remove,
            "currentAvailable": to_float(max(ZERO, current_available)),
            "availableAfterRemoval": to_float(max(ZERO, available_after)),
            "shortfall": to_float(shortfall),
            "currentTotalInvested": to_float(totals.total_invested),
            "newTotalInvested": to_float(new_total_invested),
            "totalUsed": to_float(totals.total_used),
            "committedCost": to_float(totals.committed_cost),
            "message": message,
        }
