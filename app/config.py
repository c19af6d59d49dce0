"""Application configuration"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Database
    database_url: str = "sqlite:///./issuesync.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # GitHub
    github_token: str | None = None
    github_api_url: str = "https://api.github.com"
    # Per-request HTTP timeout; lowered further when a job has less time left.
    github_request_timeout_seconds: float = 30.0

    # Sync
    sync_default_batch_size: int = 50
    sync_max_concurrent_jobs: int = 4
    # Hard wall-clock limit for one job; the job fails with a timeout beyond it.
    # Jobs run in-process: deploy a single worker (uvicorn --workers 1), since
    # startup fails every job still marked running.
    sync_job_timeout_seconds: int = 1800
    # Per-page retry budget for transient fetch errors.
    sync_page_max_attempts: int = 3
    sync_page_retry_base_delay_seconds: float = 2.0
    # Remote rate-limit handling (cumulative wait across one job).
    sync_rate_limit_default_wait_seconds: float = 60.0
    sync_rate_limit_max_wait_seconds: float = 900.0
    # How often one actor may start a sync job.
    sync_rate_limit_max_starts: int = 5
    sync_rate_limit_window_seconds: float = 60.0

    # Logging
    log_level: str = "INFO"

    # Auth (optional)
    # When enabled, all routes are protected by HTTP Basic auth, except for /health.
    # The authenticated username is recorded as the job creator.
    auth_enabled: bool = False
    # Comma separated "name:password" pairs; each name is a distinct actor.
    auth_users: str | None = None
    # Single-user shorthand, merged into auth_users.
    auth_username: str | None = None
    auth_password: str | None = None
    # Actor id used when auth is disabled.
    default_actor: str = "local"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
