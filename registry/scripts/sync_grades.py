"""
Academic-year rollover: recompute every student's grade from their cycle for the current
academic year and close out studying students whose cycle has ended. Run after 1 September.
Every change is written to the student's history.
Usage: python -m registry.scripts.sync_grades [--changed-by NAME]
"""

import argparse
import asyncio
import sys

from registry.api.v1.students.service import sync_grades_with_cycle
from registry.db.session import AsyncSessionLocal


async def run_sync(changed_by: str) -> int:
    async with AsyncSessionLocal() as session:
        result = await sync_grades_with_cycle(session, changed_by=changed_by)
    print(
        f"Academic year {result.academic_year}: examined {result.examined}, "
        f"updated {result.updated}, moved to completed {result.completed}."
    )
    for error in result.errors:
        print(f"  SKIP: {error}", file=sys.stderr)
    return 1 if result.errors else 0


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--changed-by", default="academic-year-rollover", help="Actor recorded in history")
    args = parser.parse_args()
    sys.exit(asyncio.run(run_sync(args.changed_by)))


if __name__ == "__main__":
    main()
