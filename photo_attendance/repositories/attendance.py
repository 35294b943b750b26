from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from photo_attendance.models.attendance import AttendanceRecord


class AttendanceRepository:
    """Record store for attendance rows.

    The unique constraint on (employee_id, day_bucket) is what enforces one
    check-in per day; ``insert_if_absent`` turns a violation into ``None``.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def insert_if_absent(self, record: AttendanceRecord) -> Optional[AttendanceRecord]:
        self.db.add(record)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            return None
        await self.db.refresh(record)
        return record

    async def find_for_day(self, employee_id: str, day: date) -> Optional[AttendanceRecord]:
        query = select(AttendanceRecord).where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.day_bucket == day,
        )
        result = await self.db.execute(query)
        return result.scalars().first()

    async def get(self, record_id: int) -> Optional[AttendanceRecord]:
        return await self.db.get(AttendanceRecord, record_id)

    async def find_expired_page(
        self, cutoff: datetime, *, after_id: int = 0, limit: int = 100
    ) -> Sequence[AttendanceRecord]:
        # Keyset paging: rows left ACTIVE by a failed delete do not shift the window.
        query = (
            select(AttendanceRecord)
            .where(
                AttendanceRecord.photo_reclaimed.is_(False),
                AttendanceRecord.check_in_at < cutoff,
                AttendanceRecord.id > after_id,
            )
            .order_by(AttendanceRecord.id)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return result.scalars().all()

    async def mark_reclaimed(
        self,
        record_id: int,
        *,
        at: datetime,
        flagged: bool = False,
        error: Optional[str] = None,
    ) -> bool:
        query = (
            update(AttendanceRecord)
            .where(
                AttendanceRecord.id == record_id,
                AttendanceRecord.photo_reclaimed.is_(False),
            )
            .values(
                photo_reclaimed=True,
                photo_url="",
                reclaimed_at=at,
                needs_attention=flagged,
                reclaim_error=error,
                updated_at=at,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(query)
        await self.db.commit()
        return result.rowcount > 0

    async def history(
        self, employee_id: str, *, offset: int, limit: int
    ) -> tuple[Sequence[AttendanceRecord], int]:
        where = AttendanceRecord.employee_id == employee_id
        total = await self.db.scalar(
            select(func.count(AttendanceRecord.id)).where(where)
        )
        result = await self.db.execute(
            select(AttendanceRecord)
            .where(where)
            .order_by(AttendanceRecord.check_in_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return result.scalars().all(), int(total or 0)

    async def search(
        self,
        *,
        offset: int,
        limit: int,
        search: str = "",
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> tuple[Sequence[AttendanceRecord], int]:
        clauses = []
        if start is not None:
            clauses.append(AttendanceRecord.check_in_at >= start)
        if end is not None:
            clauses.append(AttendanceRecord.check_in_at <= end)
        if search:
            pattern = f"%{search}%"
            clauses.append(
                or_(
                    AttendanceRecord.employee_name.ilike(pattern),
                    AttendanceRecord.employee_email.ilike(pattern),
                    AttendanceRecord.employee_code.ilike(pattern),
                    AttendanceRecord.department.ilike(pattern),
                )
            )

        total = await self.db.scalar(
            select(func.count(AttendanceRecord.id)).where(*clauses)
        )
        result = await self.db.execute(
            select(AttendanceRecord)
            .where(*clauses)
            .order_by(AttendanceRecord.check_in_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return result.scalars().all(), int(total or 0)

    async def count_since(self, start: datetime) -> int:
        total = await self.db.scalar(
            select(func.count(AttendanceRecord.id)).where(
                AttendanceRecord.check_in_at >= start
            )
        )
        return int(total or 0)

    async def count_where(self, *clauses) -> int:
        total = await self.db.scalar(select(func.count(AttendanceRecord.id)).where(*clauses))
        return int(total or 0)

    async def list_for_employee(self, employee_id: str) -> Sequence[AttendanceRecord]:
        result = await self.db.execute(
            select(AttendanceRecord)
            .where(AttendanceRecord.employee_id == employee_id)
            .order_by(AttendanceRecord.id)
        )
        return result.scalars().all()

    async def delete_for_employee(self, employee_id: str) -> int:
        result = await self.db.execute(
            delete(AttendanceRecord)
            .where(AttendanceRecord.employee_id == employee_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount
