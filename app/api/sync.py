"""Sync trigger and status endpoints"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.config import settings
from app.models import Repository, SyncJob
from app.models.base import get_db
from app.models.sync_job import SyncJobStatus
from app.schemas.sync import SyncOptions
from app.services.exceptions import AlreadyRunning, RateLimited, RepositoryNotFound, SyncDisabled
from app.services.sync_service import SyncService

router = APIRouter(prefix="/api/repositories", tags=["sync"])


class SyncJobResponse(BaseModel):
    id: int
    repository_id: int
    type: str
    status: SyncJobStatus
    issues_processed: int
    issues_created: int
    issues_updated: int
    errors: int
    error_details: List[str]
    job_metadata: Dict[str, Any] = Field(serialization_alias="metadata")
    created_by: str
    created_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


def get_actor_id(request: Request) -> str:
    """Authenticated username, or the configured default actor when auth is off"""
    return getattr(request.state, "actor", None) or settings.default_actor


def get_sync_service() -> SyncService:
    return SyncService()


def _status_url(repository_id: int, job_id: int) -> str:
    return f"/api/repositories/{repository_id}/sync/status?jobId={job_id}"


@router.post("/{repository_id}/sync/issues")
def trigger_issue_sync(
    repository_id: int,
    options: Optional[SyncOptions] = Body(None),
    actor_id: str = Depends(get_actor_id),
    sync_service: SyncService = Depends(get_sync_service),
):
    """Start a background issue sync for a repository"""
    try:
        started = sync_service.start(repository_id, options or SyncOptions(), actor_id)
    except RateLimited as e:
        raise HTTPException(
            status_code=429,
            detail=str(e),
            headers={"Retry-After": str(max(1, int(round(e.retry_after))))},
        )
    except RepositoryNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SyncDisabled as e:
        raise HTTPException(status_code=403, detail=str(e))
    except AlreadyRunning as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {
        "message": "Sync job started",
        "jobId": started.job_id,
        "status": started.status,
        "checkStatusUrl": _status_url(repository_id, started.job_id),
    }


@router.get("/{repository_id}/sync/status", response_model=SyncJobResponse)
def get_sync_status(
    repository_id: int,
    job_id: int = Query(..., alias="jobId"),
    db: Session = Depends(get_db),
):
    """Poll a sync job's status and counters"""
    job = (
        db.query(SyncJob)
        .filter(SyncJob.id == job_id, SyncJob.repository_id == repository_id)
        .first()
    )
    if not job:
        raise HTTPException(status_code=404, detail="Sync job not found")
    return job


@router.get("/{repository_id}/sync/jobs", response_model=List[SyncJobResponse])
def list_sync_jobs(
    repository_id: int,
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """List recent sync jobs for a repository"""
    if not db.query(Repository.id).filter(Repository.id == repository_id).first():
        raise HTTPException(status_code=404, detail="Repository not found")
    return (
        db.query(SyncJob)
        .filter(SyncJob.repository_id == repository_id)
        .order_by(SyncJob.created_at.desc(), SyncJob.id.desc())
        .limit(limit)
        .all()
    )
