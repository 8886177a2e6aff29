"""
Backfill start_studies history events for students created before the history ledger existed.

Run once (idempotent): only students with neither a created nor a start_studies event get one,
timestamped at the student's created_at.
Usage: python -m registry.scripts.backfill_start_studies
"""

import asyncio

from registry.api.v1.students.history_service import backfill_start_studies
from registry.db.session import AsyncSessionLocal


async def run_backfill() -> None:
    async with AsyncSessionLocal() as session:
        inserted = await backfill_start_studies(session)
    if not inserted:
        print("All students already have a creation event. Exiting.")
        return
    print(f"Done. Inserted {inserted} start_studies event(s).")


def main() -> None:
    asyncio.run(run_backfill())


if __name__ == "__main__":
    main()
