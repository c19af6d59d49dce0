"""Repository model"""

import enum

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Enum, Integer, String

from app.models.base import Base, utcnow


class RepositorySyncStatus(str, enum.Enum):
    """Admission state of a repository; flipped atomically when a job starts/ends"""
    IDLE = "idle"
    SYNCING = "syncing"


class Repository(Base):
    """A GitHub repository whose issues are synchronized locally"""

    __tablename__ = "repositories"

    id = Column(Integer, primary_key=True, index=True)
    workspace_id = Column(Integer, nullable=True, index=True)

    # Remote coordinates
    github_id = Column(BigInteger, nullable=True)
    name = Column(String, nullable=False)
    full_name = Column(String, nullable=False, index=True)  # "owner/name"
    # Explicit coordinates win over full_name when set.
    github_owner = Column(String, nullable=True)
    github_name = Column(String, nullable=True)

    # Sync configuration/state
    sync_enabled = Column(Boolean, default=True, nullable=False)
    sync_status = Column(
        Enum(RepositorySyncStatus), default=RepositorySyncStatus.IDLE, nullable=False
    )
    last_synced_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def remote_coordinates(self) -> tuple[str, str] | None:
        """Return (owner, name) on the remote, or None if they can't be determined."""
        owner = self.github_owner
        name = self.github_name
        if not (owner and name) and self.full_name and "/" in self.full_name:
            full_owner, _, full_name = self.full_name.partition("/")
            owner = owner or full_owner
            name = name or full_name
        if not owner or not name:
            return None
        return owner, name

    def __repr__(self):
        return f"<Repository(full_name='{self.full_name}', sync_status={self.sync_status})>"
