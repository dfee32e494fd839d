import logging
from datetime import datetime
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.config import settings
from app.services.cache_layer import CacheLayer


logger = logging.getLogger(__name__)

JOB_ID = 'cache_cleanup'


class CacheMaintenanceScheduler:
    """Periodically purges cache entries past their stale-retention window"""

    def __init__(self):
        self.scheduler: AsyncIOScheduler | None = None
        self.cache: CacheLayer | None = None

    async def _cleanup_job(self) -> None:
        """Background job that purges long-expired cache entries"""
        if self.cache is None:
            return
        logger.info("Scheduled cache cleanup triggered")
        try:
            removed = await self.cache.purge_expired(settings.cache_stale_retention_sec)
            logger.info(f"Cache cleanup finished: {removed} entries removed")
        except Exception as e:
            logger.error(f"Exception in scheduled cache cleanup: {e}", exc_info=True)

    def start(self, cache: CacheLayer, cron: str | None = None) -> None:
        """Start the scheduler with the cleanup job for the given cache"""
        if self.scheduler and self.scheduler.running:
            logger.warning("Scheduler already running")
            return

        cron = cron or settings.cache_cleanup_cron
        try:
            trigger = CronTrigger.from_crontab(cron)
        except (ValueError, KeyError) as exc:
            logger.error("Invalid cron expression '%s': %s", cron, exc)
            raise

        self.cache = cache
        self.scheduler = AsyncIOScheduler(timezone='UTC')
        self.scheduler.add_job(
            self._cleanup_job,
            trigger=trigger,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.start()
        next_time = self.get_next_run_time()
        logger.info(
            "Scheduler started. Next cache cleanup: %s",
            next_time.isoformat() if next_time else "unknown"
        )

    def shutdown(self) -> None:
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Scheduler stopped")
        self.scheduler = None
        self.cache = None

    def is_running(self) -> bool:
        return bool(self.scheduler and self.scheduler.running)

    def get_next_run_time(self) -> datetime | None:
        """Get next scheduled cleanup time"""
        if not self.scheduler:
            return None
        job = self.scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None


cache_scheduler = CacheMaintenanceScheduler()
