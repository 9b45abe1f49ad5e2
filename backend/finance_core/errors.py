"""
FINANCE CORE: ERROR TAXONOMY

Every failure the financial core reports to a caller is one of these types.
The HTTP layer maps them to status codes in a single exception handler.

- ValidationError          (400) malformed or missing input
- NotFoundError            (404) referenced record absent or soft-deleted
- BusinessRuleError        (400) rule violation, numbers in `details`
    - InsufficientCapitalError
    - InvalidStatusError
    - InvalidTransitionError
- PermissionDeniedError    (403) identity not allowed to act
- ConcurrencyConflictError (409) record changed underneath the caller, retry
- TransactionError         (500) atomic unit aborted
- TransactionTimeoutError  (503) atomic unit exceeded its deadline, retry
"""

from typing import Dict, Any, Optional, List


class FinanceError(Exception):
    """Base exception for the financial core"""

    status_code = 500
    error_code = "FINANCE_ERROR"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detail": self.message,
            "error": self.error_code,
            "details": self.details,
            "retryable": self.retryable
        }


class ValidationError(FinanceError):
    """Caller supplied malformed or missing input"""
    status_code = 400
    error_code = "VALIDATION_ERROR"


class NotFoundError(FinanceError):
    """Referenced record does not exist (or is soft-deleted)"""
    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = str(entity_id)
        super().__init__(
            f"{entity} not found: {entity_id}",
            {"entity": entity, "entityId": str(entity_id)}
        )


class BusinessRuleError(FinanceError):
    """A business rule blocked the operation"""
    status_code = 400
    error_code = "BUSINESS_RULE_VIOLATION"


class InsufficientCapitalError(BusinessRuleError):
    """Not enough uncommitted capital for the requested spend"""
    error_code = "INSUFFICIENT_CAPITAL"

    def __init__(self, available: float, required: float, message: Optional[str] = None):
        self.available = available
        self.required = required
        self.shortfall = round(required - available, 2)
        super().__init__(
            message or (
                f"Insufficient capital. Available: {available:,.2f}, "
                f"Required: {required:,.2f}, Shortfall: {self.shortfall:,.2f}"
            ),
            {"available": available, "required": required, "shortfall": self.shortfall}
        )


class InvalidStatusError(BusinessRuleError):
    """Record is not in a status that allows the requested action"""
    error_code = "INVALID_STATUS"

    def __init__(self, entity: str, current: str, expected: List[str]):
        self.entity = entity
        self.current = current
        self.expected = list(expected)
        super().__init__(
            f"Cannot act on {entity} with status '{current}'. "
            f"Expected one of: {', '.join(self.expected)}",
            {"entity": entity, "currentStatus": current, "expectedStatuses": self.expected}
        )


class InvalidTransitionError(BusinessRuleError):
    """Attempted state transition is not allowed"""
    error_code = "INVALID_TRANSITION"

    def __init__(self, entity: str, from_state: str, to_state: str, allowed: Optional[List[str]] = None):
        self.entity = entity
        self.from_state = from_state
        self.to_state = to_state
        self.allowed = allowed or []

        allowed_str = f" Allowed transitions from '{from_state}': {self.allowed}" if self.allowed else ""
        super().__init__(
            f"Invalid transition for {entity}: '{from_state}' -> '{to_state}'.{allowed_str}",
            {"entity": entity, "from": from_state, "to": to_state, "allowed": self.allowed}
        )


class PermissionDeniedError(FinanceError):
    """Identity is not allowed to perform the action"""
    status_code = 403
    error_code = "PERMISSION_DENIED"


class ConcurrencyConflictError(FinanceError):
    """Record was modified concurrently; the caller may retry"""
    status_code = 409
    error_code = "CONCURRENCY_CONFLICT"
    retryable = True


class TransactionError(FinanceError):
    """Atomic unit aborted; nothing was applied"""
    status_code = 500
    error_code = "TRANSACTION_FAILED"


class TransactionTimeoutError(TransactionError):
    """Atomic unit exceeded its deadline; nothing was applied"""
    status_code = 503
    error_code = "TRANSACTION_TIMEOUT"
    retryable = True
