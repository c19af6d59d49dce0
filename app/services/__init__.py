"""Services"""

from app.services.github_client import GitHubGraphQLClient
from app.services.sync_service import SyncService

__all__ = ["GitHubGraphQLClient", "SyncService"]
