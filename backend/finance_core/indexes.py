"""
FINANCE CORE: INDEX BOOTSTRAP

Creates the indexes the financial core relies on. Idempotent; run at
application startup.

- project_finances.projectId is unique so concurrent upserts of the cached
  view cannot create duplicate records for one project.
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import List
import logging

logger = logging.getLogger(__name__)


async def create_finance_indexes(db: AsyncIOMotorDatabase) -> List[str]:
    created = []

    created.append(await db.project_finances.create_index(
        [("projectId", 1)],
        unique=True,
        name="idx_project_finances_project_unique"
    ))

    created.append(await db.purchase_orders.create_index(
        [("projectId", 1), ("financialStatus", 1), ("deletedAt", 1)],
        name="idx_po_project_financial_status"
    ))
    created.append(await db.purchase_orders.create_index(
        [("phaseId", 1), ("financialStatus", 1)],
        name="idx_po_phase_financial_status"
    ))

    for collection in ("materials", "expenses", "labour_entries", "initial_expenses"):
        created.append(await db[collection].create_index(
            [("projectId", 1), ("status", 1), ("deletedAt", 1)],
            name=f"idx_{collection}_project_status"
        ))

    created.append(await db.investors.create_index(
        [("status", 1), ("projectAllocations.projectId", 1)],
        name="idx_investors_status_allocation_project"
    ))

    for collection in ("budget_transfers", "budget_adjustments"):
        created.append(await db[collection].create_index(
            [("projectId", 1), ("status", 1), ("createdAt", -1)],
            name=f"idx_{collection}_project_status"
        ))

    created.append(await db.audit_logs.create_index(
        [("entityType", 1), ("entityId", 1), ("timestamp", -1)],
        name="idx_audit_entity"
    ))
    created.append(await db.failed_side_effects.create_index(
        [("status", 1), ("createdAt", 1)],
        name="idx_failed_side_effects_status"
    ))

    logger.info(f"[INDEXES] Ensured {len(created)} finance indexes")
    return created
