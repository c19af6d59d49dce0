"""Database base configuration"""
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.config import settings

engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if "sqlite" in settings.database_url else {},
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def utcnow() -> datetime:
    """UTC 'now' as tz-naive datetime (consistent with GitHub timestamp parsing)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_db():
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _ensure_issues_unique_index(bind):
    """
    Best-effort schema hardening:
    Databases created before the unique constraint existed may hold duplicate
    (repository_id, github_issue_id) pairs. Add the UNIQUE INDEX when possible.

    NULL github_issue_id values (local-only issues) never collide.
    """
    with bind.begin() as conn:
        if bind.dialect.name == "sqlite":
            tables = {
                row[0]
                for row in conn.exec_driver_sql(
                    "SELECT name FROM sqlite_master WHERE type='table'"
                ).fetchall()
            }
            if "issues" not in tables:
                return

        sql = (
            "CREATE UNIQUE INDEX IF NOT EXISTS uq_issues_repository_github_issue "
            "ON issues(repository_id, github_issue_id)"
        )
        try:
            conn.exec_driver_sql(sql)
        except Exception:
            # Some dialects may not support IF NOT EXISTS; try without it.
            try:
                conn.exec_driver_sql(sql.replace(" IF NOT EXISTS", ""))
            except Exception:
                # Best-effort only; do not block app startup.
                pass


def init_db(bind=None):
    """Initialize database"""
    # Ensure all models are imported so SQLAlchemy metadata is populated.
    import app.models  # noqa: F401  (import for side-effects)

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    _ensure_issues_unique_index(bind)
