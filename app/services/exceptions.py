"""Sync engine error taxonomy.

Admission errors are raised synchronously by ``SyncService.start`` before any job
row exists. Everything else is raised inside the drive loop and ends up in the
job's error details:

- ``TransientFetchError``: retried per page, then recorded; the job continues.
- ``FatalSyncError``: aborts the job, which ends as "failed".
- ``ReconciliationError``: recorded per record; the record is skipped.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for all sync engine errors"""


# Admission


class AdmissionError(SyncError):
    """A sync job could not be started"""


class AlreadyRunning(AdmissionError):
    def __init__(self, repository_id: int):
        super().__init__(f"A sync job is already running for repository {repository_id}")
        self.repository_id = repository_id


class RateLimited(AdmissionError):
    def __init__(self, actor_id: str, retry_after: float):
        super().__init__(f"Too many sync requests from '{actor_id}', retry in {retry_after:.0f}s")
        self.actor_id = actor_id
        self.retry_after = retry_after


class RepositoryNotFound(AdmissionError):
    def __init__(self, repository_id: int):
        super().__init__(f"Repository {repository_id} not found")
        self.repository_id = repository_id


class SyncDisabled(AdmissionError):
    def __init__(self, repository_id: int):
        super().__init__(f"Sync is disabled for repository {repository_id}")
        self.repository_id = repository_id


# Transient (retried per page, then recorded)


class TransientFetchError(SyncError):
    """A page could not be fetched, but later pages may still succeed"""


class TransportError(TransientFetchError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        detail = f"HTTP {status_code}: {message}" if status_code else message
        super().__init__(detail)
        self.status_code = status_code
        self.message = message


class RateLimitExceeded(TransientFetchError):
    def __init__(self, waited_seconds: float, max_wait_seconds: float):
        super().__init__(
            f"Remote rate limit still in effect after waiting {waited_seconds:.0f}s "
            f"(max {max_wait_seconds:.0f}s)"
        )
        self.waited_seconds = waited_seconds


# Fatal (abort the job)


class FatalSyncError(SyncError):
    """The job cannot make further progress"""


class AuthenticationError(FatalSyncError):
    pass


class RemoteRepositoryNotFound(FatalSyncError):
    pass


class ConfigurationError(FatalSyncError):
    pass


class SyncTimeout(FatalSyncError):
    def __init__(self, timeout_seconds: float):
        super().__init__(f"Sync job exceeded its time limit of {timeout_seconds:.0f}s")
        self.timeout_seconds = timeout_seconds


# Per record


class ReconciliationError(SyncError):
    """A single remote record could not be applied locally"""


# Internal signal from the transport; absorbed by the pager.


class RemoteRateLimited(SyncError):
    def __init__(self, retry_after: Optional[float] = None, message: str = "Remote rate limit hit"):
        super().__init__(message)
        self.retry_after = retry_after
