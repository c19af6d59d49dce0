"""Pydantic schemas"""

from app.schemas.sync import SyncJobMetadata, SyncOptions, SyncProgress, SyncResult

__all__ = ["SyncOptions", "SyncProgress", "SyncResult", "SyncJobMetadata"]
