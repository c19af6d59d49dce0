"""Database models"""

from app.models.base import Base
from app.models.issue import Issue
from app.models.project import Project
from app.models.repository import Repository
from app.models.sync_job import SyncJob

__all__ = [
    "Base",
    "Repository",
    "Project",
    "Issue",
    "SyncJob",
]
