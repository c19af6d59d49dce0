"""Issue synchronization service"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.models import Project, Repository, SyncJob
from app.models.base import SessionLocal, utcnow
from app.models.repository import RepositorySyncStatus
from app.models.sync_job import SyncJobStatus
from app.schemas.sync import SyncJobMetadata, SyncOptions, SyncProgress, SyncResult
from app.services.exceptions import (
    AlreadyRunning,
    ConfigurationError,
    FatalSyncError,
    RateLimited,
    RepositoryNotFound,
    SyncDisabled,
    SyncTimeout,
    TransientFetchError,
)
from app.services.github_client import GitHubGraphQLClient
from app.services.pager import RemotePage, RemotePager
from app.services.progress import ProgressSink
from app.services.rate_gate import RateGate, rate_gate
from app.services.reconciler import IssueReconciler

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Sync job interrupted by service restart"


@dataclass(frozen=True)
class StartedJob:
    job_id: int
    status: str = SyncJobStatus.RUNNING.value


class SyncService:
    """Admits, drives and finalizes repository issue sync jobs.

    ``start()`` runs in the caller's request: it throttles the actor, claims the
    repository with a compare-and-swap on ``repositories.sync_status`` and
    creates the job row in the same transaction, then hands ``run_job`` to the
    runner and returns. ``run_job()`` runs detached; everything it learns ends
    up on the job row, nothing is raised back to the trigger.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        runner=None,
        gate: Optional[RateGate] = None,
        client_factory: Optional[Callable[..., GitHubGraphQLClient]] = None,
        *,
        timeout_seconds: Optional[float] = None,
        page_max_attempts: Optional[int] = None,
        retry_base_delay_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if runner is None:
            from app.scheduler import scheduler as runner  # noqa: WPS433 (avoid import cycle)

        self.session_factory = session_factory
        self.runner = runner
        self.gate = gate if gate is not None else rate_gate
        self.client_factory = client_factory or GitHubGraphQLClient.from_settings
        self.timeout_seconds = (
            settings.sync_job_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self.page_max_attempts = max(
            1, settings.sync_page_max_attempts if page_max_attempts is None else page_max_attempts
        )
        self.retry_base_delay_seconds = (
            settings.sync_page_retry_base_delay_seconds
            if retry_base_delay_seconds is None
            else retry_base_delay_seconds
        )
        self._sleep = sleep
        self._clock = clock

    # Admission

    def start(self, repository_id: int, options: SyncOptions, actor_id: str) -> StartedJob:
        """Admit a sync job for a repository and schedule it; don't wait for it."""
        if not self.gate.try_admit(actor_id):
            raise RateLimited(actor_id, self.gate.retry_after(actor_id))

        db = self.session_factory()
        try:
            job_id = self._admit(db, repository_id, options, actor_id)
        finally:
            db.close()

        logger.info(f"Admitted sync job {job_id} for repository {repository_id} (by {actor_id})")
        try:
            self.runner.submit(self.run_job, job_id)
        except Exception as e:
            logger.error(f"Failed to schedule sync job {job_id}: {e}")
            self._finalize(
                job_id,
                SyncResult(
                    success=False,
                    errors=1,
                    error_details=[f"Failed to schedule sync job: {e}"],
                    summary="Sync job could not be scheduled",
                ),
            )
        return StartedJob(job_id=job_id)

    def _admit(self, db: Session, repository_id: int, options: SyncOptions, actor_id: str) -> int:
        repository = db.query(Repository).filter(Repository.id == repository_id).first()
        if repository is None:
            raise RepositoryNotFound(repository_id)
        if not repository.sync_enabled:
            raise SyncDisabled(repository_id)

        try:
            # Compare-and-swap: only one caller can move the repository to "syncing".
            claimed = (
                db.query(Repository)
                .filter(
                    Repository.id == repository_id,
                    Repository.sync_status != RepositorySyncStatus.SYNCING,
                )
                .update(
                    {Repository.sync_status: RepositorySyncStatus.SYNCING, Repository.updated_at: utcnow()},
                    synchronize_session=False,
                )
            )
            running = (
                db.query(SyncJob.id)
                .filter(SyncJob.repository_id == repository_id, SyncJob.status == SyncJobStatus.RUNNING)
                .first()
            )
            if claimed != 1 or running is not None:
                db.rollback()
                raise AlreadyRunning(repository_id)

            job = SyncJob(
                repository_id=repository_id,
                type="issues",
                status=SyncJobStatus.RUNNING,
                created_by=actor_id,
                error_details=[],
                job_metadata=SyncJobMetadata(options=options).dump(),
            )
            db.add(job)
            db.commit()
            return job.id
        except SQLAlchemyError:
            db.rollback()
            raise

    # Drive loop

    def run_job(self, job_id: int):
        """Drive one admitted job to a terminal state. Never raises."""
        deadline = self._clock() + self.timeout_seconds
        try:
            result = self._drive(job_id, deadline)
        except Exception as e:
            logger.exception(f"Sync job {job_id} crashed: {e}")
            result = self._result(SyncProgress(), e)
        self._finalize(job_id, result)

    def _drive(self, job_id: int, deadline: float) -> SyncResult:
        totals = SyncProgress()
        fatal: Optional[Exception] = None
        db = self.session_factory()
        try:
            job = db.query(SyncJob).filter(SyncJob.id == job_id).first()
            if job is None:
                raise ConfigurationError(f"Sync job {job_id} not found")
            options = SyncJobMetadata.load(job.job_metadata).options or SyncOptions()
            repository = job.repository
            coordinates = repository.remote_coordinates()
            if coordinates is None:
                raise ConfigurationError(
                    f"Unable to determine owner and name of repository {repository.id}"
                )
            owner, name = coordinates
            repository_id = repository.id
            project_id = self._ensure_project(db, repository).id
            created_by = job.created_by

            pager = RemotePager(
                self.client_factory(timeout=self._request_timeout(deadline)),
                owner,
                name,
                options,
                deadline=deadline,
                timeout_seconds=self.timeout_seconds,
                sleep=self._sleep,
                clock=self._clock,
            )
            reconciler = IssueReconciler(db, created_by=created_by)
            sink = ProgressSink(self.session_factory)
            logger.info(f"Sync job {job_id} started for {owner}/{name}")

            while not pager.exhausted:
                self._check_deadline(deadline)
                page_number = pager.page_number
                try:
                    page = self._fetch_page(pager, deadline)
                except TransientFetchError as e:
                    logger.error(f"Sync job {job_id}: giving up on page {page_number}: {e}")
                    totals = self._record(sink, job_id, totals, f"Page {page_number}: {e}")
                    try:
                        pager.skip_page()
                    except TransientFetchError as skip_error:
                        logger.error(f"Sync job {job_id}: pages after {page_number} unreachable: {skip_error}")
                        totals = self._record(
                            sink, job_id, totals, f"Pages after {page_number} unreachable: {skip_error}"
                        )
                        break
                    continue
                if page is None:
                    break

                delta = self._reconcile_page(reconciler, repository_id, project_id, page)
                totals = totals.merged(delta)
                sink.update(job_id, delta)
                logger.info(
                    f"Sync job {job_id} page {page.number}: {len(page.records)} issues, "
                    f"{delta.created} created, {delta.updated} updated, {delta.errors} errors"
                )
                self._check_deadline(deadline)
        except FatalSyncError as e:
            logger.error(f"Sync job {job_id} aborted: {e}")
            fatal = e
        except Exception as e:
            logger.exception(f"Sync job {job_id} failed unexpectedly: {e}")
            fatal = e
        finally:
            db.close()
        return self._result(totals, fatal)

    def _fetch_page(self, pager: RemotePager, deadline: float) -> Optional[RemotePage]:
        """Fetch the pager's next page, retrying transient errors with backoff."""
        attempt = 1
        while True:
            try:
                return pager.fetch_next()
            except TransientFetchError as e:
                if attempt >= self.page_max_attempts:
                    raise
                delay = self.retry_base_delay_seconds * (2 ** (attempt - 1))
                if self._clock() + delay > deadline:
                    raise SyncTimeout(self.timeout_seconds) from e
                logger.warning(
                    f"Page {pager.page_number} fetch failed (attempt {attempt}/{self.page_max_attempts}), "
                    f"retrying in {delay:.1f}s: {e}"
                )
                self._sleep(delay)
                attempt += 1

    @staticmethod
    def _reconcile_page(
        reconciler: IssueReconciler, repository_id: int, project_id: int, page: RemotePage
    ) -> SyncProgress:
        outcome = reconciler.reconcile(repository_id, project_id, page.records)
        return SyncProgress(
            processed=len(page.records),
            created=outcome.created,
            updated=outcome.updated,
            errors=len(outcome.errors),
            error_details=[f"Page {page.number}: {e}" for e in outcome.errors],
        )

    @staticmethod
    def _record(sink: ProgressSink, job_id: int, totals: SyncProgress, message: str) -> SyncProgress:
        delta = SyncProgress(errors=1, error_details=[message])
        sink.update(job_id, delta)
        return totals.merged(delta)

    def _check_deadline(self, deadline: float):
        if self._clock() >= deadline:
            raise SyncTimeout(self.timeout_seconds)

    def _request_timeout(self, deadline: float) -> float:
        """HTTP timeout for remote calls: the configured cap, or the time left if less."""
        remaining = deadline - self._clock()
        return max(1.0, min(settings.github_request_timeout_seconds, remaining))

    def _ensure_project(self, db: Session, repository: Repository) -> Project:
        """Project receiving the repository's issues; created on first sync."""
        project = (
            db.query(Project)
            .filter(Project.repository_id == repository.id)
            .order_by(Project.id)
            .first()
        )
        if project is not None:
            return project
        project = Project(repository_id=repository.id, name=repository.full_name)
        db.add(project)
        db.commit()
        logger.info(f"Created project '{project.name}' for repository {repository.id}")
        return project

    @staticmethod
    def _result(totals: SyncProgress, fatal: Optional[Exception]) -> SyncResult:
        error_details = list(totals.error_details)
        errors = totals.errors
        if fatal is not None:
            error_details.append(str(fatal) or fatal.__class__.__name__)
            errors += 1

        summary = (
            f"Processed {totals.processed} issues: {totals.created} created, "
            f"{totals.updated} updated, {errors} errors"
        )
        if fatal is not None:
            summary += f"; aborted ({fatal.__class__.__name__})"

        return SyncResult(
            success=fatal is None,
            processed=totals.processed,
            created=totals.created,
            updated=totals.updated,
            errors=errors,
            error_details=error_details,
            summary=summary,
        )

    # Terminal state

    def _finalize(self, job_id: int, result: SyncResult, *, max_attempts: int = 2):
        """Write the terminal status and release the repository."""
        for attempt in range(1, max_attempts + 1):
            db = self.session_factory()
            try:
                job = db.query(SyncJob).filter(SyncJob.id == job_id).first()
                if job is None:
                    logger.error(f"Cannot finalize unknown sync job {job_id}")
                    return
                now = utcnow()
                job.status = SyncJobStatus.COMPLETED if result.success else SyncJobStatus.FAILED
                job.completed_at = now
                job.issues_processed = result.processed
                job.issues_created = result.created
                job.issues_updated = result.updated
                job.errors = result.errors
                job.error_details = list(result.error_details)

                metadata = SyncJobMetadata.load(job.job_metadata)
                metadata.summary = result.summary
                metadata.last_progress = SyncProgress(
                    processed=result.processed,
                    created=result.created,
                    updated=result.updated,
                    errors=result.errors,
                )
                job.job_metadata = metadata.dump()

                repository = db.query(Repository).filter(Repository.id == job.repository_id).first()
                if repository is not None:
                    repository.sync_status = RepositorySyncStatus.IDLE
                    if result.success:
                        repository.last_synced_at = now

                db.commit()
                logger.info(f"Sync job {job_id} {job.status.value}: {result.summary}")
                return
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(
                    f"Failed to finalize sync job {job_id} (attempt {attempt}/{max_attempts}): {e}"
                )
            finally:
                db.close()

    def recover_interrupted_jobs(self) -> int:
        """Fail jobs left "running" by a previous process and release their repositories."""
        db = self.session_factory()
        try:
            jobs = db.query(SyncJob).filter(SyncJob.status == SyncJobStatus.RUNNING).all()
            now = utcnow()
            for job in jobs:
                job.status = SyncJobStatus.FAILED
                job.completed_at = now
                job.errors = (job.errors or 0) + 1
                job.error_details = [*(job.error_details or []), INTERRUPTED_MESSAGE]
                metadata = SyncJobMetadata.load(job.job_metadata)
                metadata.summary = INTERRUPTED_MESSAGE
                job.job_metadata = metadata.dump()

            db.query(Repository).filter(
                Repository.sync_status == RepositorySyncStatus.SYNCING
            ).update({Repository.sync_status: RepositorySyncStatus.IDLE}, synchronize_session=False)
            db.commit()
            if jobs:
                logger.warning(f"Marked {len(jobs)} interrupted sync job(s) as failed")
            return len(jobs)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to recover interrupted sync jobs: {e}")
            return 0
        finally:
            db.close()
