"""
Project Finance Core Modules
"""
from .errors import (
    FinanceError,
    ValidationError,
    NotFoundError,
    BusinessRuleError,
    InsufficientCapitalError,
    InvalidStatusError,
    InvalidTransitionError,
    PermissionDeniedError,
    ConcurrencyConflictError,
    TransactionError,
    TransactionTimeoutError
)

from .financial_precision import (
    to_decimal,
    round_financial,
    to_float,
    FinancialPrecisionError,
    NegativeValueError
)

from .ledger_reader import (
    LedgerReader,
    ProjectTotals,
    CategoryBudget,
    BUDGET_CATEGORIES
)

from .capital_validator import (
    CapitalValidator,
    CapitalValidation,
    CapitalStatus
)

from .commitment_tracker import CommitmentTracker

from .transaction_coordinator import TransactionCoordinator

from .side_effects import (
    PostCommitEffects,
    SideEffectOutcome
)

from .purchase_order_service import PurchaseOrderService

from .budget_workflow import (
    BudgetWorkflowService,
    BudgetValidation
)

from .integrity_job import FinancialIntegrityJob

from .indexes import create_finance_indexes

__all__ = [
    # Errors
    'FinanceError',
    'ValidationError',
    'NotFoundError',
    'BusinessRuleError',
    'InsufficientCapitalError',
    'InvalidStatusError',
    'InvalidTransitionError',
    'PermissionDeniedError',
    'ConcurrencyConflictError',
    'TransactionError',
    'TransactionTimeoutError',
    # Financial Precision
    'to_decimal',
    'round_financial',
    'to_float',
    'FinancialPrecisionError',
    'NegativeValueError',
    # Ledger
    'LedgerReader',
    'ProjectTotals',
    'CategoryBudget',
    'BUDGET_CATEGORIES',
    # Capital
    'CapitalValidator',
    'CapitalValidation',
    'CapitalStatus',
    # Commitments
    'CommitmentTracker',
    # Transactions
    'TransactionCoordinator',
    'PostCommitEffects',
    'SideEffectOutcome',
    # Workflows
    'PurchaseOrderService',
    'BudgetWorkflowService',
    'BudgetValidation',
    # Integrity
    'FinancialIntegrityJob',
    'create_finance_indexes'
]
