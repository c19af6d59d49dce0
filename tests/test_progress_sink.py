import logging
import unittest

from sqlalchemy.exc import OperationalError
from sync_fixtures import TempDatabase

from app.models import SyncJob
from app.models.sync_job import SyncJobStatus
from app.schemas.sync import SyncJobMetadata, SyncOptions, SyncProgress
from app.services.progress import ProgressSink

logging.disable(logging.CRITICAL)


class _FailingSession:
    """Session whose commit always fails, as if the database were unavailable."""

    def __init__(self, real):
        self._real = real

    def query(self, *args, **kwargs):
        return self._real.query(*args, **kwargs)

    def commit(self):
        raise OperationalError("UPDATE sync_jobs", {}, Exception("database is locked"))

    def rollback(self):
        self._real.rollback()

    def close(self):
        self._real.close()


class ProgressSinkTests(unittest.TestCase):
    def setUp(self):
        self.database = TempDatabase()
        repository_id = self.database.add_repository()
        db = self.database.Session()
        job = SyncJob(
            repository_id=repository_id,
            status=SyncJobStatus.RUNNING,
            created_by="alice",
            error_details=[],
            job_metadata=SyncJobMetadata(options=SyncOptions(batchSize=10)).dump(),
        )
        db.add(job)
        db.commit()
        self.job_id = job.id
        db.close()

    def tearDown(self):
        self.database.close()

    def _job(self):
        db = self.database.Session()
        try:
            return db.query(SyncJob).filter(SyncJob.id == self.job_id).one()
        finally:
            db.close()

    def test_updates_accumulate_into_persisted_totals(self):
        sink = ProgressSink(self.database.Session)

        self.assertTrue(sink.update(self.job_id, SyncProgress(processed=2, created=2)))
        self.assertTrue(
            sink.update(
                self.job_id,
                SyncProgress(processed=2, created=1, updated=1, errors=1, error_details=["Page 2: boom"]),
            )
        )

        job = self._job()
        self.assertEqual(
            (job.issues_processed, job.issues_created, job.issues_updated, job.errors), (4, 3, 1, 1)
        )
        self.assertEqual(job.error_details, ["Page 2: boom"])
        metadata = SyncJobMetadata.load(job.job_metadata)
        self.assertEqual(metadata.last_progress.processed, 4)
        # Caller options survive progress writes.
        self.assertEqual(metadata.options.batch_size, 10)

    def test_failed_write_is_swallowed_and_carried_into_next_write(self):
        sink = ProgressSink(self.database.Session)
        sink.update(self.job_id, SyncProgress(processed=2, created=2))

        sink.session_factory = lambda: _FailingSession(self.database.Session())
        self.assertFalse(sink.update(self.job_id, SyncProgress(processed=2, updated=2)))

        # Earlier totals are intact.
        self.assertEqual(self._job().issues_processed, 2)

        sink.session_factory = self.database.Session
        self.assertTrue(sink.update(self.job_id, SyncProgress(processed=1, created=1)))

        job = self._job()
        self.assertEqual((job.issues_processed, job.issues_created, job.issues_updated), (5, 3, 2))

    def test_terminal_jobs_are_not_reopened(self):
        db = self.database.Session()
        job = db.query(SyncJob).filter(SyncJob.id == self.job_id).one()
        job.status = SyncJobStatus.COMPLETED
        job.issues_processed = 7
        db.commit()
        db.close()

        sink = ProgressSink(self.database.Session)
        self.assertFalse(sink.update(self.job_id, SyncProgress(processed=3)))
        self.assertEqual(self._job().issues_processed, 7)

    def test_unknown_job_is_ignored(self):
        sink = ProgressSink(self.database.Session)
        self.assertFalse(sink.update(9999, SyncProgress(processed=1)))


if __name__ == "__main__":
    unittest.main()
