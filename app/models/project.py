"""Project model"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.models.base import Base, utcnow


class Project(Base):
    """Local project that groups a repository's issues"""

    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    repository_id = Column(Integer, ForeignKey("repositories.id"), nullable=False, index=True)
    name = Column(String, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    repository = relationship("Repository")

    def __repr__(self):
        return f"<Project(name='{self.name}')>"
