import asyncio
import sys
import os
import logging
from dotenv import load_dotenv
from sqlalchemy import select

script_dir = os.path.dirname(os.path.abspath(__file__))
if os.path.basename(script_dir) == 'scripts':
    project_root = os.path.dirname(script_dir)
else:
    project_root = script_dir

sys.path.append(project_root)
env_path = os.path.join(project_root, ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)

# Keep SQLAlchemy quiet while printing the table
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)

from photo_attendance.database import get_sessionmaker, shutdown_database
from photo_attendance.models.attendance import AttendanceRecord


def _photo_state(record: AttendanceRecord) -> str:
    if record.needs_attention:
        return "FLAGGED"
    return "reclaimed" if record.photo_reclaimed else "stored"


async def show_attendance(limit: int = 50):
    print("\n" + "="*100)
    print(f" {'ID':<5} | {'Day':<12} | {'Time (UTC)':<10} | {'Name':<20} | {'Code':<12} | {'Department':<15} | {'Photo':<9}")
    print("="*100)

    try:
        async with get_sessionmaker()() as session:
            query = (
                select(AttendanceRecord)
                .order_by(AttendanceRecord.check_in_at.desc())
                .limit(limit)
            )

            result = await session.execute(query)
            records = result.scalars().all()

            if not records:
                print(f" {'No records found.':<95}")
            else:
                for record in records:
                    time_str = record.check_in_at.strftime("%H:%M:%S")
                    print(f" {record.id:<5} | {str(record.day_bucket):<12} | {time_str:<10} | {record.employee_name[:20]:<20} | {record.employee_code:<12} | {record.department[:15]:<15} | {_photo_state(record):<9}")

    except Exception as e:
        print(f"\n[!] Error fetching data: {e}")
        if "DATABASE_URL" in str(e):
            print("    Hint: Check your .env file location.")
    finally:
        await shutdown_database()

    print("="*100 + "\n")

if __name__ == "__main__":
    try:
        asyncio.run(show_attendance(int(sys.argv[1]) if len(sys.argv) > 1 else 50))
    except KeyboardInterrupt:
        pass
