import argparse
import asyncio
import os
import sys
from datetime import timedelta

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from photo_attendance.config import settings
from photo_attendance.database import get_sessionmaker, shutdown_database
from photo_attendance.services.object_store import get_object_store, shutdown_object_store
from photo_attendance.services.retention import RetentionSweeper


async def run(retention_days: int) -> int:
    sweeper = RetentionSweeper(
        get_sessionmaker(),
        get_object_store(),
        retention=timedelta(days=retention_days),
    )
    try:
        report = await sweeper.sweep()
    finally:
        await shutdown_object_store()
        await shutdown_database()

    print(
        f"scanned={report.scanned} deleted={report.deleted} "
        f"failed={report.failed} flagged={report.flagged}"
    )
    return 1 if report.failed else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Delete attendance photos past retention.")
    parser.add_argument("--retention-days", type=int, default=settings.RETENTION_DAYS)
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args.retention_days)))
