from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime
from typing import Dict, Any
import logging

from finance_core.errors import NotFoundError
from finance_core.ledger_reader import LedgerReader, to_object_id, not_deleted

logger = logging.getLogger(__name__)


class FinancialRecalculationService:
    """
    Rebuilds the project_finances materialized view from source collections.

    RULES:
    - The record is replaced wholesale, never patched field by field
    - Pure function of current collection state: two runs with no writes in
      between produce identical figures
    - Can join a caller's transaction via `session`
    """

    def __init__(self, db: AsyncIOMotorDatabase, ledger: LedgerReader = None):
        self.db = db
        self.ledger = ledger or LedgerReader(db)

    async def recalculate_project_finances(self, project_id, session=None) -> Dict[str, Any]:
        oid = to_object_id(project_id, "project_id")

        project = await self.db.projects.find_one(not_deleted({"_id": oid}), session=session)
        if not project:
            raise NotFoundError("Project", oid)

        try:
            totals = await self.ledger.get_project_totals(oid, session=session)

            now = datetime.utcnow()
            record = totals.to_record()
            record.pop("projectId")
            record["lastRecalculatedAt"] = now
            record["updatedAt"] = now

            await self.db.project_finances.update_one(
                {"projectId": oid},
                {"$set": record, "$setOnInsert": {"createdAt": now}},
                upsert=True,
                session=session
            )

            logger.info(
                f"Project finances recalculated for project:{oid} "
                f"(invested={record['totalInvested']}, used={record['totalUsed']}, "
                f"committed={record['committedCost']})"
            )

            return await self.db.project_finances.find_one({"projectId": oid}, session=session)

        except Exception as e:
            logger.error(f"Financial recalculation failed for project:{oid}: {str(e)}")
            raise

    async def recalculate_all_projects(self) -> Dict[str, Any]:
        """
        Recalculate every non-deleted project.
        A failing project is logged and reported; the sweep continues.
        """
        report = {"processed": 0, "succeeded": 0, "failed": []}

        cursor = self.db.projects.find(not_deleted({}), {"_id": 1})
        async for project in cursor:
            report["processed"] += 1
            try:
                await self.recalculate_project_finances(project["_id"])
                report["succeeded"] += 1
            except Exception as e:
                logger.error(f"Recalculation skipped project:{project['_id']}: {str(e)}")
                report["failed"].append({"projectId": str(project["_id"]), "error": str(e)})

        logger.info(
            f"All project finances recalculated: {report['succeeded']}/{report['processed']} succeeded"
        )
        return report
