"""Background execution of admitted sync jobs"""

import logging
from typing import Callable

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler

from app.config import settings

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Runs each admitted sync job once, detached from the request that started it.

    Jobs run on a bounded thread pool, so a job that sleeps (backoff,
    rate-limit waits) never blocks the others.
    """

    def __init__(self, max_workers: int = 4):
        self.scheduler = BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(max_workers=max_workers)},
            job_defaults={"misfire_grace_time": None, "coalesce": False},
        )

    @property
    def running(self) -> bool:
        return bool(self.scheduler.running)

    def start(self):
        """Start the scheduler"""
        self.scheduler.start()
        logger.info("Sync scheduler started")

    def stop(self):
        """Stop the scheduler"""
        # Don't block shutdown on long-running jobs; interrupted jobs are
        # recovered as failed on the next start.
        self.scheduler.shutdown(wait=False)
        logger.info("Sync scheduler stopped")

    def submit(self, func: Callable[[int], None], job_id: int):
        """Run ``func(job_id)`` as soon as a worker is free."""
        if not self.running:
            raise RuntimeError("Sync scheduler is not running")
        self.scheduler.add_job(
            func=func,
            args=[job_id],
            id=f"sync_job_{job_id}",
            name=f"sync job {job_id}",
            replace_existing=True,
        )
        logger.info(f"Scheduled sync job {job_id}")


# Global scheduler instance
scheduler = SyncScheduler(max_workers=settings.sync_max_concurrent_jobs)
