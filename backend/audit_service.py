from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime
from typing import Optional, Dict, Any
import logging

from finance_core.errors import PermissionDeniedError

logger = logging.getLogger(__name__)

# ARCHITECTURAL GUARD: Financial entity types that CANNOT be deleted
FINANCIAL_ENTITY_TYPES = [
    "PURCHASE_ORDER",
    "BUDGET_TRANSFER",
    "BUDGET_ADJUSTMENT",
    "PROJECT_FINANCES"
]


class AuditService:
    """Service for immutable audit logging"""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db.audit_logs

    def enforce_financial_delete_guard(self, entity_type: str, action: str):
        """
        ARCHITECTURAL GUARD: Prevent DELETE operations on financial entities.

        Purchase orders, budget requests and project finances are never
        hard-deleted. Use status flags or soft delete (deletedAt) instead.
        """
        if action == "DELETE" and entity_type in FINANCIAL_ENTITY_TYPES:
            raise PermissionDeniedError(
                f"ARCHITECTURAL GUARD: Cannot DELETE {entity_type}. "
                f"Financial entities are immutable. Use status flags or soft delete instead.",
                {"entityType": entity_type}
            )

    async def log_action(
        self,
        user_id: str,
        action: str,
        entity_type: str,
        entity_id: str,
        project_id: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None,
        session=None,
        critical: bool = False
    ):
        """
        Log an action to audit trail (INSERT ONLY).

        When `critical` is set the entry is part of an atomic unit: a failed
        write propagates so the unit aborts. Otherwise the failure is logged
        and the caller carries on.
        """
        self.enforce_financial_delete_guard(entity_type, action)

        audit_entry = {
            "userId": str(user_id) if user_id is not None else None,
            "action": action,
            "entityType": entity_type,
            "entityId": str(entity_id),
            "projectId": str(project_id) if project_id is not None else None,
            "changes": changes or {},
            "timestamp": datetime.utcnow()
        }

        try:
            await self.collection.insert_one(audit_entry, session=session)
            logger.info(f"Audit log created: {action} on {entity_type}:{entity_id} by user:{user_id}")
        except Exception as e:
            logger.error(f"Failed to create audit log: {str(e)}")
            if critical:
                raise

    async def get_audit_logs(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        project_id: Optional[str] = None,
        limit: int = 100
    ):
        """Retrieve audit logs (READ ONLY)"""
        query = {}

        if entity_type:
            query["entityType"] = entity_type
        if entity_id:
            query["entityId"] = str(entity_id)
        if project_id:
            query["projectId"] = str(project_id)

        cursor = self.collection.find(query).sort("timestamp", -1).limit(limit)
        logs = await cursor.to_list(length=limit)

        for log in logs:
            log["auditId"] = str(log.pop("_id"))

        return logs
