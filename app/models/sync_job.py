"""Sync job model"""
import enum

from sqlalchemy import JSON, Column, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.models.base import Base, utcnow


class SyncJobStatus(str, enum.Enum):
    """Sync job status enumeration"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({SyncJobStatus.COMPLETED, SyncJobStatus.FAILED})


class SyncJob(Base):
    """One synchronization run against a repository"""

    __tablename__ = "sync_jobs"

    id = Column(Integer, primary_key=True, index=True)

    # Target
    repository_id = Column(Integer, ForeignKey("repositories.id"), nullable=False, index=True)
    type = Column(String, nullable=False, default="issues")

    status = Column(Enum(SyncJobStatus), nullable=False, default=SyncJobStatus.PENDING, index=True)

    # Counters
    issues_processed = Column(Integer, nullable=False, default=0)
    issues_created = Column(Integer, nullable=False, default=0)
    issues_updated = Column(Integer, nullable=False, default=0)
    errors = Column(Integer, nullable=False, default=0)

    error_details = Column(JSON, nullable=False, default=list)
    # Serialized SyncJobMetadata ({options, last_progress, summary}).
    # "metadata" is reserved on declarative classes, hence the attribute name.
    job_metadata = Column("metadata", JSON, nullable=False, default=dict)

    created_by = Column(String, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    repository = relationship("Repository")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self):
        return f"<SyncJob(id={self.id}, status={self.status}, processed={self.issues_processed})>"
