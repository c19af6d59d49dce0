"""Issue model"""
import enum

from sqlalchemy import BigInteger, Column, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from app.models.base import Base, utcnow


class IssueStatus(str, enum.Enum):
    """Local issue status"""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class IssuePriority(str, enum.Enum):
    """Local issue priority"""
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Issue(Base):
    """Local issue, optionally linked to a GitHub issue"""

    __tablename__ = "issues"
    __table_args__ = (
        # NULL github_issue_id (local-only issues) never collides.
        UniqueConstraint("repository_id", "github_issue_id", name="uq_issues_repository_github_issue"),
    )

    id = Column(Integer, primary_key=True, index=True)

    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    repository_id = Column(Integer, ForeignKey("repositories.id"), nullable=False, index=True)

    # Remote link (NULL for local-only issues)
    github_issue_number = Column(Integer, nullable=True)
    github_issue_id = Column(BigInteger, nullable=True)

    # Content
    title = Column(String, nullable=False)
    original_description = Column(Text, nullable=True)  # Human-authored (remote body)
    expanded_description = Column(Text, nullable=True)  # Derived by enrichment, never by sync

    # Workflow (locally owned apart from status)
    status = Column(Enum(IssueStatus), default=IssueStatus.OPEN, nullable=False)
    priority = Column(Enum(IssuePriority), default=IssuePriority.MEDIUM, nullable=False)
    created_by = Column(String, nullable=False)
    assigned_to = Column(String, nullable=True)

    # Linked pull request
    github_pr_number = Column(Integer, nullable=True)
    github_pr_id = Column(BigInteger, nullable=True)

    # Sync metadata
    synced_status = Column(Enum(IssueStatus), nullable=True)  # Status last derived from remote state
    sync_hash = Column(String, nullable=True)  # Hash of last synced remote content
    last_synced_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    project = relationship("Project")
    repository = relationship("Repository")

    def __repr__(self):
        return f"<Issue(github_issue_number={self.github_issue_number}, status={self.status})>"
