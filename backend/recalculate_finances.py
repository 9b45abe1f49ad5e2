#!/usr/bin/env python3
"""
OPERATOR SCRIPT: Project Finances Rebuild

Rebuilds the cached project_finances records from source collections and
then runs the integrity check to confirm nothing drifted.

Run: python recalculate_finances.py [project_id]
"""

import asyncio
import sys

from motor.motor_asyncio import AsyncIOMotorClient

from config import MONGO_URL, DB_NAME
from financial_service import FinancialRecalculationService
from finance_core.indexes import create_finance_indexes
from finance_core.integrity_job import FinancialIntegrityJob


async def run_recalculation(project_id=None):
    """Rebuild one project's finances, or every project's when none is given."""

    print(f"Connecting to: {MONGO_URL}")
    print(f"Database: {DB_NAME}")

    client = AsyncIOMotorClient(MONGO_URL)
    db = client[DB_NAME]

    try:
        await client.admin.command('ping')
        print("✓ Connected to MongoDB")

        await create_finance_indexes(db)
        print("✓ Finance indexes ensured")

        service = FinancialRecalculationService(db)

        if project_id:
            record = await service.recalculate_project_finances(project_id)
            print(f"✓ Recalculated project {project_id}: "
                  f"invested={record['totalInvested']} used={record['totalUsed']} "
                  f"committed={record['committedCost']} available={record['availableCapital']}")
            report = {"processed": 1, "succeeded": 1, "failed": []}
        else:
            report = await service.recalculate_all_projects()
            print(f"✓ Recalculated {report['succeeded']}/{report['processed']} projects")
            for failure in report["failed"]:
                print(f"  ✗ {failure['projectId']}: {failure['error']}")

        integrity = await FinancialIntegrityJob(db).run(repair=False)
        print(f"✓ Integrity check: {integrity['records_checked']} checked, "
              f"{integrity['mismatches_found']} mismatches")

        return {"recalculation": report, "integrity_status": integrity["status"]}

    except Exception as e:
        print(f"\n✗ Recalculation failed: {str(e)}")
        raise
    finally:
        client.close()


if __name__ == "__main__":
    target = sys.argv[1] if len(sys.argv) > 1 else None
    result = asyncio.run(run_recalculation(target))
    print(f"\nResult: {result}")
