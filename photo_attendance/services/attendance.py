import asyncio
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from photo_attendance.config import settings
from photo_attendance.core.exceptions import AlreadyCheckedIn, PersistenceFailed
from photo_attendance.models.attendance import AttendanceRecord
from photo_attendance.redis_config import CacheClient, NullCache
from photo_attendance.repositories.attendance import AttendanceRepository
from photo_attendance.schemas.attendance import (
    AttendanceRead,
    AttendanceStats,
    CheckInStatus,
    EmployeeSnapshot,
    Location,
)
from photo_attendance.services.object_store import (
    ObjectStore,
    ObjectStoreError,
    TentativeUpload,
)
from photo_attendance.services.photo import photo_name, validate_photo
from photo_attendance.utils.logging import get_logger

logger = get_logger(__name__)

# Long enough to cover a whole day in any timezone
CHECKED_IN_CACHE_TTL_SECONDS = 36 * 3600


def as_utc(moment: Optional[datetime] = None) -> datetime:
    if moment is None:
        return datetime.now(timezone.utc)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class AttendanceService:
    """Daily check-in gate and the check-in orchestration around it."""

    def __init__(
        self,
        db: AsyncSession,
        store: Optional[ObjectStore] = None,
        cache: Optional[CacheClient] = None,
        *,
        tz: Optional[str] = None,
        max_photo_bytes: Optional[int] = None,
        store_timeout: Optional[float] = None,
    ):
        self.db = db
        self.records = AttendanceRepository(db)
        self.store = store
        self.cache = NullCache() if cache is None else cache
        self.tz = ZoneInfo(settings.ATTENDANCE_TIMEZONE if tz is None else tz)
        self.max_photo_bytes = (
            settings.MAX_PHOTO_BYTES if max_photo_bytes is None else max_photo_bytes
        )
        self.store_timeout = (
            settings.OBJECT_STORE_TIMEOUT_SECONDS if store_timeout is None else store_timeout
        )

    # --- Day boundaries ---
    def day_of(self, moment: datetime) -> date:
        return as_utc(moment).astimezone(self.tz).date()

    def day_start(self, day: date) -> datetime:
        """Midnight of ``day`` in the reference timezone, as UTC."""
        return datetime.combine(day, time.min, tzinfo=self.tz).astimezone(timezone.utc)

    @staticmethod
    def _cache_key(employee_id: str, day: date) -> str:
        return f"attendance:{employee_id}:{day.isoformat()}"

    async def _remember(self, employee_id: str, day: date) -> None:
        try:
            await self.cache.setex(
                self._cache_key(employee_id, day), CHECKED_IN_CACHE_TTL_SECONDS, "checked_in"
            )
        except Exception as error:
            logger.warning("Could not cache check-in for %s: %s", employee_id, error)

    async def _forget(self, employee_id: str, day: date) -> None:
        try:
            await self.cache.delete(self._cache_key(employee_id, day))
        except Exception as error:
            logger.warning("Could not clear cached check-in for %s: %s", employee_id, error)

    async def _remembered(self, employee_id: str, day: date) -> bool:
        try:
            return bool(await self.cache.get(self._cache_key(employee_id, day)))
        except Exception as error:
            logger.warning("Cache lookup failed for %s: %s", employee_id, error)
            return False

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError as error:
            logger.error("Rollback failed: %s", error)

    # --- Gate ---
    async def can_check_in(
        self, employee_id: str, now: Optional[datetime] = None
    ) -> CheckInStatus:
        day = self.day_of(as_utc(now))
        existing = await self.records.find_for_day(employee_id, day)
        if existing is None:
            return CheckInStatus(allowed=True)

        await self._remember(employee_id, day)
        return CheckInStatus(allowed=False, record=AttendanceRead.from_record(existing))

    # --- Orchestration ---
    async def check_in(
        self,
        employee_id: str,
        snapshot: EmployeeSnapshot,
        photo: bytes,
        location: Optional[Location] = None,
        now: Optional[datetime] = None,
    ) -> AttendanceRecord:
        """Accept at most one check-in per employee per day.

        Order matters: gate re-check, then upload, then insert. The insert is
        conditional on the (employee_id, day_bucket) constraint, so a request
        that loses a race still gets ``AlreadyCheckedIn`` and its upload is
        deleted again.
        """
        if self.store is None:
            raise RuntimeError("AttendanceService.check_in needs an object store")

        now = as_utc(now)
        day = self.day_of(now)

        if await self._remembered(employee_id, day):
            raise AlreadyCheckedIn()
        if await self.records.find_for_day(employee_id, day) is not None:
            await self._remember(employee_id, day)
            raise AlreadyCheckedIn()

        validate_photo(photo, self.max_photo_bytes)

        upload = TentativeUpload(
            self.store, photo, photo_name(employee_id, now), timeout=self.store_timeout
        )
        async with upload as stored:
            record = AttendanceRecord(
                employee_id=employee_id,
                employee_name=snapshot.name,
                employee_email=str(snapshot.email),
                department=snapshot.department,
                employee_code=snapshot.employee_code,
                check_in_at=now,
                day_bucket=day,
                photo_url=stored.url,
                photo_storage_id=stored.storage_id,
                latitude=location.latitude if location else None,
                longitude=location.longitude if location else None,
                accuracy=location.accuracy if location else None,
            )
            try:
                saved = await self.records.insert_if_absent(record)
            except (SQLAlchemyError, OSError) as error:
                logger.error("Could not persist check-in for %s: %s", employee_id, error)
                await self._rollback()
                raise PersistenceFailed() from error

            if saved is None:
                logger.info("Concurrent check-in for %s on %s rejected", employee_id, day)
                await self._remember(employee_id, day)
                raise AlreadyCheckedIn()

            upload.confirm()

        await self._remember(employee_id, day)
        logger.info("Check-in %s accepted for %s on %s", saved.id, employee_id, day)
        return saved

    # --- Queries ---
    async def history(self, employee_id: str, *, page: int = 1, limit: int = 10):
        return await self.records.history(
            employee_id, offset=(page - 1) * limit, limit=limit
        )

    async def search(
        self,
        *,
        page: int = 1,
        limit: int = 10,
        search: str = "",
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ):
        start = self.day_start(start_date) if start_date else None
        # Inclusive through the last microsecond of end_date
        end = (
            self.day_start(end_date + timedelta(days=1)) - timedelta(microseconds=1)
            if end_date
            else None
        )
        return await self.records.search(
            offset=(page - 1) * limit,
            limit=limit,
            search=search.strip(),
            start=start,
            end=end,
        )

    async def stats(self, now: Optional[datetime] = None) -> AttendanceStats:
        now = as_utc(now)
        return AttendanceStats(
            today_check_ins=await self.records.count_since(self.day_start(self.day_of(now))),
            weekly_check_ins=await self.records.count_since(now - timedelta(days=7)),
            pending_reclaim=await self.records.count_where(
                AttendanceRecord.photo_reclaimed.is_(False)
            ),
            needs_attention=await self.records.count_where(
                AttendanceRecord.needs_attention.is_(True)
            ),
        )

    # --- Employee removal ---
    async def purge_employee(self, employee_id: str) -> int:
        """Delete every record of a removed employee, photos first (best effort)."""
        if self.store is None:
            raise RuntimeError("AttendanceService.purge_employee needs an object store")

        records = await self.records.list_for_employee(employee_id)
        days = {r.day_bucket for r in records}
        storage_ids = [r.photo_storage_id for r in records if not r.photo_reclaimed]
        for storage_id in storage_ids:
            try:
                await asyncio.wait_for(self.store.delete(storage_id), self.store_timeout)
            except (ObjectStoreError, asyncio.TimeoutError) as error:
                logger.error("Could not delete photo %s of %s: %r", storage_id, employee_id, error)

        removed = await self.records.delete_for_employee(employee_id)
        # A reused id must be able to check in again today
        for day in days | {self.day_of(as_utc())}:
            await self._forget(employee_id, day)
        logger.info("Removed %s attendance records of %s", removed, employee_id)
        return removed
