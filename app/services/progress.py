"""Incremental, best-effort persistence of sync job progress"""
import logging
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import SyncJob
from app.schemas.sync import SyncJobMetadata, SyncProgress

logger = logging.getLogger(__name__)


class ProgressSink:
    """Merge per-page deltas into a job's persisted counters.

    Each write re-reads the job row in a fresh session and adds to what is
    stored there, so repeated calls accumulate and a failed write never
    clobbers earlier totals. A delta whose write failed is carried over into
    the next write. Failures are logged and swallowed: progress is advisory,
    the terminal write made by the sync service is authoritative.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self._unflushed = SyncProgress()

    def update(self, job_id: int, delta: SyncProgress) -> bool:
        """Persist ``delta`` (plus anything unflushed); return True if written."""
        pending = self._unflushed.merged(delta)
        db = self.session_factory()
        try:
            job = db.query(SyncJob).filter(SyncJob.id == job_id).first()
            if job is None:
                logger.warning(f"Progress update for unknown sync job {job_id} dropped")
                return False
            if job.is_terminal:
                # A terminal write already happened; never reopen the row.
                return False

            job.issues_processed = (job.issues_processed or 0) + pending.processed
            job.issues_created = (job.issues_created or 0) + pending.created
            job.issues_updated = (job.issues_updated or 0) + pending.updated
            job.errors = (job.errors or 0) + pending.errors
            if pending.error_details:
                job.error_details = [*(job.error_details or []), *pending.error_details]

            metadata = SyncJobMetadata.load(job.job_metadata)
            metadata.last_progress = SyncProgress(
                processed=job.issues_processed,
                created=job.issues_created,
                updated=job.issues_updated,
                errors=job.errors,
            )
            job.job_metadata = metadata.dump()

            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            self._unflushed = pending
            logger.warning(f"Failed to persist progress for sync job {job_id}: {e}")
            return False
        finally:
            db.close()

        self._unflushed = SyncProgress()
        return True
