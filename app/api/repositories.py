"""Repository management endpoints"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.models import Repository
from app.models.base import get_db
from app.models.repository import RepositorySyncStatus

router = APIRouter(prefix="/api/repositories", tags=["repositories"])


class RepositoryCreate(BaseModel):
    full_name: str  # "owner/name"
    # Optional: if omitted/blank, derived from full_name
    name: Optional[str] = None
    github_id: Optional[int] = None
    github_owner: Optional[str] = None
    github_name: Optional[str] = None
    workspace_id: Optional[int] = None
    sync_enabled: bool = True


class RepositoryResponse(BaseModel):
    id: int
    workspace_id: Optional[int]
    github_id: Optional[int]
    name: str
    full_name: str
    github_owner: Optional[str]
    github_name: Optional[str]
    sync_enabled: bool
    sync_status: RepositorySyncStatus
    last_synced_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


@router.get("/", response_model=List[RepositoryResponse])
def list_repositories(db: Session = Depends(get_db)):
    """List all repositories"""
    return db.query(Repository).order_by(Repository.id).all()


@router.post("/", response_model=RepositoryResponse)
def create_repository(repository: RepositoryCreate, db: Session = Depends(get_db)):
    """Register a repository"""
    full_name = repository.full_name.strip().strip("/")
    if full_name.count("/") != 1 or not all(full_name.split("/")):
        raise HTTPException(status_code=400, detail="full_name must look like 'owner/name'")

    existing = db.query(Repository).filter(Repository.full_name == full_name).first()
    if existing:
        raise HTTPException(status_code=400, detail="Repository already registered")

    payload = repository.model_dump()
    payload["full_name"] = full_name
    payload["name"] = (repository.name or "").strip() or full_name.split("/", 1)[1]
    db_repository = Repository(**payload)
    db.add(db_repository)
    db.commit()
    db.refresh(db_repository)
    return db_repository


@router.get("/{repository_id}", response_model=RepositoryResponse)
def get_repository(repository_id: int, db: Session = Depends(get_db)):
    """Get a specific repository"""
    repository = db.query(Repository).filter(Repository.id == repository_id).first()
    if not repository:
        raise HTTPException(status_code=404, detail="Repository not found")
    return repository


@router.post("/{repository_id}/toggle", response_model=RepositoryResponse)
def toggle_sync(repository_id: int, db: Session = Depends(get_db)):
    """Toggle sync enabled/disabled for a repository"""
    repository = db.query(Repository).filter(Repository.id == repository_id).first()
    if not repository:
        raise HTTPException(status_code=404, detail="Repository not found")

    repository.sync_enabled = not repository.sync_enabled
    db.commit()
    db.refresh(repository)
    return repository
