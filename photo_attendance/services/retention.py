import asyncio
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from photo_attendance.config import settings
from photo_attendance.core.exceptions import (
    ReclaimPermanentFailure,
    ReclaimTransientFailure,
)
from photo_attendance.repositories.attendance import AttendanceRepository
from photo_attendance.schemas.attendance import SweepReport
from photo_attendance.services.attendance import as_utc
from photo_attendance.services.object_store import ObjectStore, ObjectStoreError
from photo_attendance.utils.logging import get_logger

logger = get_logger(__name__)


class RetentionSweeper:
    """Deletes photos older than the retention window and marks their records reclaimed.

    A record is eligible while ``check_in_at < now - retention`` (strictly older)
    and ``photo_reclaimed`` is false, so re-running the sweep is how failed
    records get retried. Runs are serialized by an in-process lock.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        store: ObjectStore,
        *,
        retention: Optional[timedelta] = None,
        page_size: Optional[int] = None,
        delete_timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.store = store
        self.retention = (
            timedelta(days=settings.RETENTION_DAYS) if retention is None else retention
        )
        self.page_size = settings.SWEEP_PAGE_SIZE if page_size is None else page_size
        self.delete_timeout = (
            settings.OBJECT_STORE_TIMEOUT_SECONDS if delete_timeout is None else delete_timeout
        )
        self._run_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    async def sweep(
        self, retention: Optional[timedelta] = None, now: Optional[datetime] = None
    ) -> SweepReport:
        async with self._run_lock:
            return await self._sweep(
                self.retention if retention is None else retention, as_utc(now)
            )

    async def _sweep(self, retention: timedelta, now: datetime) -> SweepReport:
        cutoff = now - retention
        report = SweepReport()
        after_id = 0

        async with self.session_factory() as session:
            records = AttendanceRepository(session)
            while True:
                page = await records.find_expired_page(
                    cutoff, after_id=after_id, limit=self.page_size
                )
                if not page:
                    break
                # Plain values: a rollback below expires the ORM objects.
                targets = [(record.id, record.photo_storage_id) for record in page]
                after_id = targets[-1][0]

                for record_id, storage_id in targets:
                    report.scanned += 1
                    outcome = await self._reclaim(session, records, record_id, storage_id, now)
                    if outcome == "deleted":
                        report.deleted += 1
                    elif outcome == "flagged":
                        report.flagged += 1
                    else:
                        report.failed += 1

        logger.info(
            "Photo sweep finished (cutoff %s): scanned=%s deleted=%s failed=%s flagged=%s",
            cutoff.isoformat(),
            report.scanned,
            report.deleted,
            report.failed,
            report.flagged,
        )
        return report

    async def _delete_blob(self, storage_id: str) -> None:
        try:
            await asyncio.wait_for(self.store.delete(storage_id), self.delete_timeout)
        except asyncio.TimeoutError as error:
            raise ReclaimTransientFailure(
                f"delete timed out after {self.delete_timeout}s"
            ) from error
        except ObjectStoreError as error:
            if error.permanent:
                raise ReclaimPermanentFailure(str(error)) from error
            raise ReclaimTransientFailure(str(error)) from error

    async def _reclaim(
        self,
        session: AsyncSession,
        records: AttendanceRepository,
        record_id: int,
        storage_id: str,
        now: datetime,
    ) -> str:
        flagged = False
        error_message = None
        try:
            await self._delete_blob(storage_id)
        except ReclaimTransientFailure as error:
            logger.warning("Photo of record %s not deleted, will retry: %s", record_id, error.message)
            return "failed"
        except ReclaimPermanentFailure as error:
            flagged, error_message = True, error.message
        except Exception:
            logger.exception("Unexpected error deleting photo of record %s", record_id)
            return "failed"

        try:
            await records.mark_reclaimed(
                record_id, at=now, flagged=flagged, error=error_message
            )
        except SQLAlchemyError as error:
            # The blob is gone; the next sweep's delete is a no-op and closes the record.
            logger.error("Could not mark record %s reclaimed: %s", record_id, error)
            try:
                await session.rollback()
            except SQLAlchemyError as rollback_error:
                logger.error("Rollback failed: %s", rollback_error)
            return "failed"

        if flagged:
            logger.error(
                "Photo of record %s can never be deleted, record closed for operator attention: %s",
                record_id,
                error_message,
            )
            return "flagged"
        return "deleted"
