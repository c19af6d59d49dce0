"""API routes"""

from app.api import repositories, sync

__all__ = ["repositories", "sync"]
