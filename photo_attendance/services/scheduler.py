from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from photo_attendance.config import settings
from photo_attendance.services.retention import RetentionSweeper
from photo_attendance.utils.logging import get_logger

logger = get_logger(__name__)


class SweepScheduler:
    """Runs the photo retention sweep on a daily cron schedule."""

    job_id = "photo_retention_sweep"

    def __init__(self, sweeper: RetentionSweeper, *, hour: int | None = None, minute: int | None = None):
        self.sweeper = sweeper
        self.hour = settings.SWEEP_CRON_HOUR if hour is None else hour
        self.minute = settings.SWEEP_CRON_MINUTE if minute is None else minute
        self.scheduler = AsyncIOScheduler(timezone=settings.ATTENDANCE_TIMEZONE)
        self.is_running = False

    def start(self) -> None:
        if self.is_running:
            logger.warning("Sweep scheduler already running")
            return

        self.scheduler.add_job(
            func=self.run_once,
            trigger=CronTrigger(hour=self.hour, minute=self.minute),
            id=self.job_id,
            name="Photo Retention Sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        self.is_running = True
        logger.info("Sweep scheduler started (daily at %02d:%02d)", self.hour, self.minute)

    def stop(self) -> None:
        if not self.is_running:
            return
        self.scheduler.shutdown(wait=False)
        self.is_running = False
        logger.info("Sweep scheduler stopped")

    async def run_once(self) -> None:
        logger.info("Running photo cleanup...")
        try:
            await self.sweeper.sweep()
        except Exception:
            # A failed page query only delays reclamation until the next run.
            logger.exception("Photo sweep aborted")
