"""Main FastAPI application"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api import repositories, sync
from app.config import settings
from app.models.base import init_db
from app.scheduler import scheduler
from app.security import BasicAuthMiddleware, parse_user_table
from app.services.sync_service import SyncService

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info("Starting Issue Sync Service")
    init_db()
    # Jobs don't survive a restart; fail the ones a previous process left running.
    # Assumes a single worker process owns every running job.
    SyncService(runner=scheduler).recover_interrupted_jobs()
    scheduler.start()
    yield
    # Shutdown
    logger.info("Stopping Issue Sync Service")
    scheduler.stop()


app = FastAPI(
    title="Issue Sync Service",
    description="Synchronize GitHub repository issues into the local issue tracker",
    version="1.0.0",
    lifespan=lifespan,
)

# Optional built-in auth (recommended if exposed beyond localhost/private networks)
if settings.auth_enabled:
    auth_users = parse_user_table(settings.auth_users, settings.auth_username, settings.auth_password)
    if not auth_users:
        raise RuntimeError("AUTH_ENABLED=true requires AUTH_USERS or AUTH_USERNAME/AUTH_PASSWORD")
    app.add_middleware(
        BasicAuthMiddleware,
        users=auth_users,
        allow_paths={"/health"},
    )

# Include API routers
app.include_router(repositories.router)
app.include_router(sync.router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "Issue Sync"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
