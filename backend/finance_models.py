from pydantic import BaseModel, Field
from typing import Optional

# ============================================
# FINANCE API REQUEST MODELS
# ============================================
# Field names follow the stored document fields (camelCase).
# Amount rules (> 0, known categories) are enforced by the services so they
# surface through the finance error taxonomy.

# ============================================
# CAPITAL
# ============================================
class CapitalValidationRequest(BaseModel):
    amount: float


# ============================================
# PURCHASE ORDER ACTIONS
# ============================================
class PurchaseOrderAccept(BaseModel):
    finalUnitCost: Optional[float] = None  # Supplier-asserted unit cost, must be > 0 when given
    supplierNotes: Optional[str] = Field(default=None, max_length=2000)

class PurchaseOrderReject(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)

class PurchaseOrderReady(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=2000)

class PurchaseOrderDelivery(BaseModel):
    deliveryNotes: Optional[str] = Field(default=None, max_length=2000)

class PurchaseOrderCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


# ============================================
# BUDGET WORKFLOW
# ============================================
class BudgetTransferCreate(BaseModel):
    fromCategory: str = Field(min_length=1, max_length=50)
    toCategory: str = Field(min_length=1, max_length=50)
    amount: float
    reason: Optional[str] = Field(default=None, max_length=2000)

class BudgetAdjustmentCreate(BaseModel):
    category: str = Field(min_length=1, max_length=50)
    adjustmentType: str = Field(min_length=1, max_length=20)  # increase | decrease
    adjustmentAmount: float
    reason: Optional[str] = Field(default=None, max_length=2000)

class BudgetDecision(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=2000)


# ============================================
# INTEGRITY
# ============================================
class IntegrityRunRequest(BaseModel):
    repair: bool = False
