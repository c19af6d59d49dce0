"""Value objects exchanged between the sync engine, the job row and the API"""
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from app.config import settings

RemoteState = Literal["OPEN", "CLOSED"]

MAX_BATCH_SIZE = 100


class SyncOptions(BaseModel):
    """Caller-supplied filters; immutable for the lifetime of a job"""

    states: Optional[List[RemoteState]] = None  # None means both
    since: Optional[datetime] = None
    batch_size: int = Field(
        default_factory=lambda: settings.sync_default_batch_size,
        alias="batchSize",
        ge=1,
        le=MAX_BATCH_SIZE,
    )

    class Config:
        frozen = True
        populate_by_name = True

    @field_validator("states")
    @classmethod
    def _dedupe_states(cls, value):
        if value is None:
            return None
        if not value:
            raise ValueError("states must not be empty")
        # Keep caller order, drop duplicates.
        return list(dict.fromkeys(value))

    @field_validator("since")
    @classmethod
    def _since_as_utc(cls, value):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class SyncProgress(BaseModel):
    """Incremental or running counters for one job"""

    processed: int = 0
    created: int = 0
    updated: int = 0
    errors: int = 0
    error_details: List[str] = Field(default_factory=list)

    def merged(self, other: "SyncProgress") -> "SyncProgress":
        return SyncProgress(
            processed=self.processed + other.processed,
            created=self.created + other.created,
            updated=self.updated + other.updated,
            errors=self.errors + other.errors,
            error_details=[*self.error_details, *other.error_details],
        )


class SyncResult(SyncProgress):
    """Final outcome of a drive loop"""

    success: bool
    summary: str


class SyncJobMetadata(BaseModel):
    """Typed shape of the sync_jobs.metadata column"""

    options: Optional[SyncOptions] = None
    last_progress: Optional[SyncProgress] = None
    summary: Optional[str] = None

    @classmethod
    def load(cls, raw: Optional[dict]) -> "SyncJobMetadata":
        return cls.model_validate(raw or {})

    def dump(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
