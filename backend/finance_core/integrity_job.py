"""
FINANCE CORE: FINANCIAL INTEGRITY JOB

Verifies that cached project_finances records match the source collections.

For each project_finances record:
1. Recompute totals with the LedgerReader
2. Compare totalInvested, totalUsed, committedCost, availableCapital
3. Report mismatches beyond the 0.01 tolerance
4. With repair=True, rebuild drifted records wholesale

Usage:
    job = FinancialIntegrityJob(db, recalculation_service=service)
    report = await job.run(repair=False)
"""

from motor.motor_asyncio import AsyncIOMotorDatabase
from decimal import Decimal
from datetime import datetime
from typing import Dict, Any, List
import logging

from finance_core.financial_precision import round_financial, to_decimal
from finance_core.ledger_reader import LedgerReader

logger = logging.getLogger(__name__)


class FinancialIntegrityJob:
    """
    Compares stored project_finances figures against a fresh computation.

    Reports mismatches. Repairs only when asked and a recalculation
    service is available.
    """

    # Tolerance for floating point comparison (0.01 = 1 cent)
    TOLERANCE = Decimal('0.01')

    FIELDS_TO_CHECK = {
        "totalInvested": "total_invested",
        "totalUsed": "total_used",
        "committedCost": "committed_cost",
        "availableCapital": "available_capital",
    }

    def __init__(self, db: AsyncIOMotorDatabase, ledger: LedgerReader = None, recalculation_service=None):
        self.db = db
        self.ledger = ledger or LedgerReader(db)
        self.recalculation = recalculation_service
        self.mismatches: List[Dict[str, Any]] = []
        self.checked_count = 0
        self.mismatch_count = 0
        self.repaired_count = 0

    async def run(self, repair: bool = False) -> Dict[str, Any]:
        start_time = datetime.utcnow()
        self.mismatches = []
        self.checked_count = 0
        self.mismatch_count = 0
        self.repaired_count = 0

        logger.info("[INTEGRITY_JOB] Starting financial integrity check...")

        cursor = self.db.project_finances.find({})
        async for record in cursor:
            await self._check_record(record, repair)

        end_time = datetime.utcnow()
        duration_ms = (end_time - start_time).total_seconds() * 1000

        report = {
            "job_name": "FinancialIntegrityJob",
            "status": "completed",
            "started_at": start_time.isoformat(),
            "completed_at": end_time.isoformat(),
            "duration_ms": round(duration_ms, 2),
            "records_checked": self.checked_count,
            "mismatches_found": self.mismatch_count,
            "records_repaired": self.repaired_count,
            "mismatches": self.mismatches
        }

        if self.mismatch_count > 0:
            logger.warning(
                f"[INTEGRITY_JOB] Completed with {self.mismatch_count} mismatches "
                f"out of {self.checked_count} records"
            )
        else:
            logger.info(
                f"[INTEGRITY_JOB] Completed successfully. "
                f"All {self.checked_count} records verified."
            )

        return report

    async def _check_record(self, record: Dict[str, Any], repair: bool):
        self.checked_count += 1
        project_id = record.get("projectId")

        totals = await self.ledger.get_project_totals(project_id)
        discrepancies = self._compare_values(record, totals)

        if not discrepancies:
            return

        self.mismatch_count += 1
        mismatch = {
            "project_id": str(project_id),
            "record_id": str(record.get("_id")),
            "checked_at": datetime.utcnow().isoformat(),
            "discrepancies": discrepancies,
            "repaired": False
        }

        logger.warning(
            f"[INTEGRITY_JOB] MISMATCH found: project={project_id}, "
            f"discrepancies={len(discrepancies)}"
        )
        for d in discrepancies:
            logger.warning(
                f"  - {d['field']}: stored={d['stored']}, calculated={d['calculated']}, "
                f"diff={d['difference']}"
            )

        if repair and self.recalculation is not None:
            try:
                await self.recalculation.recalculate_project_finances(project_id)
                mismatch["repaired"] = True
                self.repaired_count += 1
            except Exception as e:
                logger.error(f"[INTEGRITY_JOB] Repair failed for project={project_id}: {str(e)}")
                mismatch["repair_error"] = str(e)

        self.mismatches.append(mismatch)

    def _compare_values(self, record: Dict[str, Any], totals) -> List[Dict[str, Any]]:
        discrepancies = []

        for field, attribute in self.FIELDS_TO_CHECK.items():
            stored = round_financial(to_decimal(record.get(field)))
            calc = round_financial(getattr(totals, attribute))

            diff = abs(stored - calc)

            if diff > self.TOLERANCE:
                discrepancies.append({
                    "field": field,
                    "stored": float(stored),
                    "calculated": float(calc),
                    "difference": float(diff)
                })

        return discrepancies
