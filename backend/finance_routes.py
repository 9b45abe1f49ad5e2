"""
PROJECT FINANCE API ROUTES

All mutating routes run their atomic unit through the TransactionCoordinator
and report post-commit side effects in `sideEffects`.

Errors from the financial core are mapped in one handler to:
    {"detail": message, "error": code, "details": {...}, "retryable": bool}
"""

from fastapi import APIRouter, HTTPException, status, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from bson import ObjectId, Decimal128
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any
import logging

from auth import get_current_user
from permissions import (
    PermissionChecker, OWNER_ROLES, MANAGER_ROLES, FINANCE_READ_ROLES, SUPPLIER_ROLES
)
from audit_service import AuditService
from notification_service import NotificationService
from financial_service import FinancialRecalculationService
from finance_models import (
    CapitalValidationRequest,
    PurchaseOrderAccept, PurchaseOrderReject, PurchaseOrderReady,
    PurchaseOrderDelivery, PurchaseOrderCancel,
    BudgetTransferCreate, BudgetAdjustmentCreate, BudgetDecision,
    IntegrityRunRequest
)
from finance_core.errors import FinanceError
from finance_core.ledger_reader import LedgerReader
from finance_core.capital_validator import CapitalValidator
from finance_core.commitment_tracker import CommitmentTracker
from finance_core.transaction_coordinator import TransactionCoordinator
from finance_core.purchase_order_service import PurchaseOrderService
from finance_core.budget_workflow import BudgetWorkflowService
from finance_core.integrity_job import FinancialIntegrityJob

logger = logging.getLogger(__name__)


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize MongoDB document for JSON response (handles Decimal128, ObjectId, datetime)"""
    if doc is None:
        return None
    result = {}
    for key, value in doc.items():
        result[key] = _serialize_value(value)
    return result


def _serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, Decimal128):
        return float(value.to_decimal())
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(item) for item in value]
    return value


# ============================================
# SERVICE WIRING
# ============================================

class FinanceServices:
    """Every service the finance routes need, built over one database"""

    def __init__(
        self,
        client: AsyncIOMotorClient,
        db: AsyncIOMotorDatabase,
        coordinator: Optional[TransactionCoordinator] = None,
        timeout_seconds: float = 10.0,
        max_attempts: int = 3
    ):
        self.client = client
        self.db = db
        self.coordinator = coordinator or TransactionCoordinator(client, timeout_seconds, max_attempts)

        self.permissions = PermissionChecker(db)
        self.audit = AuditService(db)
        self.notifications = NotificationService(db)
        self.ledger = LedgerReader(db)
        self.capital = CapitalValidator(db, self.ledger)
        self.tracker = CommitmentTracker(db)
        self.recalculation = FinancialRecalculationService(db, self.ledger)

        self.purchase_orders = PurchaseOrderService(
            db,
            self.coordinator,
            audit_service=self.audit,
            recalculation_service=self.recalculation,
            notification_service=self.notifications,
            ledger=self.ledger,
            capital_validator=self.capital,
            commitment_tracker=self.tracker
        )
        self.budget_workflow = BudgetWorkflowService(
            db,
            self.coordinator,
            audit_service=self.audit,
            notification_service=self.notifications,
            ledger=self.ledger
        )

    def integrity_job(self) -> FinancialIntegrityJob:
        return FinancialIntegrityJob(self.db, ledger=self.ledger, recalculation_service=self.recalculation)


_services: Optional[FinanceServices] = None


def configure_finance_services(services: FinanceServices) -> None:
    global _services
    _services = services


def get_finance_services() -> FinanceServices:
    if _services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Finance services are not configured"
        )
    return _services


async def finance_error_handler(request: Request, exc: FinanceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_finance_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FinanceError, finance_error_handler)


def _actor(user: dict) -> dict:
    return {"user_id": user["user_id"], "role": user.get("role")}


# Create router
finance_router = APIRouter(prefix="/api/v1/finance", tags=["Project Finance"])


# ============================================
# LEDGER & CAPITAL
# ============================================

@finance_router.get("/projects/{project_id}/totals")
async def get_project_totals(
    project_id: str,
    current_user: dict = Depends(get_current_user),
    services: FinanceServices = Depends(get_finance_services)
):
    """Live financial position computed from source collections"""
    user = await services.permissions.get_authenticated_user(current_user)
    await services.permissions.check_role(user, FINANCE_READ_ROLES)

    totals = await services.ledger.get_project_totals(project_id)
    return totals.to_dict()


@finance_router.get("/projects/{project_id}/finances")
async def get_project_finances(
    project_id: str,
    current_user: dict = Depends(get_current_user),
    services: FinanceServices = Depends(get_finance_services)
):
    """Cached project_finances record, or live totals when none exists yet"""
    user = await services.permissions.get_authenticated_user(current_user)
    await services.permissions.check_role(user, FINANCE_READ_ROLES)

    finances = await services.ledger.get_project_finances(project_id)
    return serialize_doc(finances)


@finance_router.post("/projects/{project_id}/recalculate")
async def recalculate_project_finances(
    project_id: str,
    current_user: dict = Depends(get_current_user),
    services: FinanceServices = Depends(get_finance_services)
):
    user = await services.permissions.get_authenticated_user(current_user)
    await services.permissions.check_role(user, MANAGER_ROLES)

    finances = await services.recalculation.recalculate_project_finances(project_id)
    return serialize_doc(finances)


@finance_router.post("/projects/{project_id}/capital/validate")
async def validate_capital(
    project_id: str,
    request: CapitalValidationRequest,
    current_user: dict = Depends(get_current_user),
    services: FinanceServices = Depends(get_finance_services)
):
    """Tri-state capital check: UNCONFIGURED | SUFFICIENT | INSUFFICIENT"""
    user = await services.permissions.get_authenticated_user(current_user)
    await services.permissions.check_role(user, FINANCE_READ_ROLES)

    validation = await services.capital.validate_capital_availability(project_id, request.amount)
    return validation.to_dict()


# ============================================
# PURCHASE ORDERS
# ============================================

def _order_response(result: Dict[str, Any]) -> Dict[str, Any]:
    response = dict(result)
    response["order"] = serialize_doc(result["order"])
    return response


@finance_router.post("/purchase-orders/{order_id}/accept")
async def accept_purchase_order(
    order_id: str,
    request: PurchaseOrderAccept,
    current_user: dict = Depends(get_current_user),
    services: FinanceServices = Depends(get_finance_services)
):
    """
    Supplier accepts an order.

    Atomic: status change + committed cost + audit. Capital is checked in the
    same unit and blocks unless capital is not configured for the project.
    """
    user = await services.permissions.get_authenticated_user(current_user)
    await services.permissions.check_role(user, SUPPLIER_ROLES)

    result = await services.purchase_orders.accept_purchase_order(
        order_id,
        supplier_id=user["user_id"],
        final_unit_cost=request.finalUnitCost,
        supplier_notes=request.supplierNotes
    )
    return _order_response(result)


@finance_router.post("/purchase-orders/{order_id}/reject")
async def reject_purchase_order(
    order_id: str,
    request: PurchaseOrderReject,
    current_user: dict = Depends(get_current_user),
    services: FinanceServices = Depends(get_finance_services)
):
    user = await services.permissions.get_authenticated_user(current_user)
    await services.permissions.check_role(user, SUPPLIER_ROLES)

    result = await services.purchase_orders.reject_purchase_order(order_id, user["user_id"], request.reason)
    return _order_response(result)


@finance_router.post("/purchase-orders/{order_id}/ready")
async def mark_ready_for_delivery(
    order_id: str,
    request: PurchaseOrderReady,
    current_user: dict = Depends(get_current_user),
    services: FinanceServices = Depends(get_finance_services)
):
    user = await services.permissions.get_authenticated_user(current_user)
    await services.permissions.check_role(user, SUPPLIER_ROLES)

    result = await services.purchase_orders.mark_ready_for_delivery(order_id, user["user_id"], request.notes)
    return _order_response(result)


@finance_router.post("/purchase-orders/{order_id}/confirm-delivery")
async def confirm_delivery(
    order_id: str,
    request: PurchaseOrderDelivery,
    current_user: dict = Depends(get_current_user),
    services: FinanceServices = Depends(get_finance_services)
):
    user = await services.permissions.get_authenticated_user(current_user)
    await services.permissions.check_role(user, MANAGER_ROLES)

    result = await services.purchase_orders.confirm_delivery(order_id, _actor(user), request.deliveryNotes)
    return _order_response(result)


@finance_router.post("/purchase-orders/{order_id}/cancel")
async def cancel_purchase_order(
    order_id: str,
    request: PurchaseOrderCancel,
    current_user: dict = Depends(get_current_user),
    services: FinanceServices = Depends(get_finance_services)
):
    user = await services.permissions.get_authenticated_user(current_user)
    await services.permissions.check_role(user, MANAGER_ROLES)

    result = await services.purchase_orders.cancel_purchase_order(order_id, _actor(user), request.reason)
    return _order_response(result)


# ============================================
# BUDGET TRANSFERS
# ============================================

def _workflow_response(result: Dict[str, Any], key: str) -> Dict[str, Any]:
    response = dict(result)
    response[key] = serialize_doc(result[key])
    return response


@finance_router.post("/projects/{project_id}/budget-transfers", status_code=status.HTTP_201_CREATED)
async def request_budget_transfer(
    project_id: str,
    request: BudgetTransferCreate,
    current_user: dict = Depends(get_current_user),
    services: FinanceServices = Depends(get_finance_services)
):
    user = await services.permissions.get_authenticated_user(current_user)
    result = await services.budget_workflow.request_budget_transfer(
        project_id, request.model_dump(), _actor(user)
    )
    return _workflow_response(result, "transfer")


@finance_router.get("/projects/{project_id}/budget-transfers")
async def list_budget_transfers(
    project_id: str,
    status_filter: Optional[str] = None,
    limit: int = 50,
    current_user: dict = Depends(get_current_user),
    services: FinanceServices = Depends(get_finance_services)
):
    user = await services.permissions.get_authenticated_user(current_user)
    await services.permissions.check_role(user, FINANCE_READ_ROLES)

    history = await services.budget_workflow.get_budget_transfer_history(project_id, status_filter, limit)
    summary = await services.budget_workflow.get_budget_transfer_summary(project_id)
    return {"transfers": [serialize_doc(t) for t in history], "summary": summary}


@finance_router.post("/budget-transfers/{transfer_id}/approve")
async def approve_budget_transfer(
    transfer_id: str,
    request: BudgetDecision,
    current_user: dict = Depends(get_current_user),
    services: FinanceServices = Depends(get_finance_services)
):
    user = await services.permissions.get_authenticated_user(current_user)
    await services.permissions.check_role(user, OWNER_ROLES)

    result = await services.budget_workflow.approve_budget_transfer(transfer_id, _actor(user), request.notes)
    return _workflow_response(result, "transfer")


@finance_router.post("/budget-transfers/{transfer_id}/reject")
async def reject_budget_transfer(
    transfer_id: str,
    request: BudgetDecision,
    current_user: dict = Depends(get_current_user),
    services: FinanceServices = Depends(get_finance_services)
):
    user = await services.permissions.get_authenticated_user(current_user)
    await services.permissions.check_role(user, OWNER_ROLES)

    result = await services.budget_workflow.reject_budget_transfer(transfer_id, _actor(user), request.notes)
    return _workflow_response(result, "transfer")


# ============================================
# BUDGET ADJUSTMENTS
# ============================================

@finance_router.post("/projects/{project_id}/budget-adjustments", status_code=status.HTTP_201_CREATED)
async def request_budget_adjustment(
    project_id: str,
    request: BudgetAdjustmentCreate,
    current_user: dict = Depends(get_current_user),
    services: FinanceServices = Depends(get_finance_services)
):
    user = await services.permissions.get_authenticated_user(current_user)
    result = await services.budget_workflow.request_budget_adjustment(
        project_id, request.model_dump(), _actor(user)
    )
    return _workflow_response(result, "adjustment")


@finance_router.get("/projects/{project_id}/budget-adjustments")
async def list_budget_adjustments(
    project_id: str,
    status_filter: Optional[str] = None,
    limit: int = 50,
    current_user: dict = Depends(get_current_user),
    services: FinanceServices = Depends(get_finance_services)
):
    user = await services.permissions.get_authenticated_user(current_user)
    await services.permissions.check_role(user, FINANCE_READ_ROLES)

    history = await services.budget_workflow.get_budget_adjustment_history(project_id, status_filter, limit)
    summary = await services.budget_workflow.get_budget_adjustment_summary(project_id)
    return {"adjustments": [serialize_doc(a) for a in history], "summary": summary}


@finance_router.post("/budget-adjustments/{adjustment_id}/approve")
async def approve_budget_adjustment(
    adjustment_id: str,
    request: BudgetDecision,
    current_user: dict = Depends(get_current_user),
    services: FinanceServices = Depends(get_finance_services)
):
    user = await services.permissions.get_authenticated_user(current_user)
    await services.permissions.check_role(user, OWNER_ROLES)

    result = await services.budget_workflow.approve_budget_adjustment(adjustment_id, _actor(user), request.notes)
    return _workflow_response(result, "adjustment")


@finance_router.post("/budget-adjustments/{adjustment_id}/reject")
async def reject_budget_adjustment(
    adjustment_id: str,
    request: BudgetDecision,
    current_user: dict = Depends(get_current_user),
    services: FinanceServices = Depends(get_finance_services)
):
    user = await services.permissions.get_authenticated_user(current_user)
    await services.permissions.check_role(user, OWNER_ROLES)

    result = await services.budget_workflow.reject_budget_adjustment(adjustment_id, _actor(user), request.notes)
    return _workflow_response(result, "adjustment")


# ============================================
# INTEGRITY & HEALTH
# ============================================

@finance_router.post("/integrity/run")
async def run_integrity_check(
    request: IntegrityRunRequest,
    current_user: dict = Depends(get_current_user),
    services: FinanceServices = Depends(get_finance_services)
):
    """Compare cached project finances with source collections, optionally repairing drift"""
    user = await services.permissions.get_authenticated_user(current_user)
    await services.permissions.check_role(user, OWNER_ROLES)

    return await services.integrity_job().run(repair=request.repair)


@finance_router.get("/health")
async def finance_health():
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow(),
        "module": "project-finance"
    }
