"""Database engine and session factory.

Matching chunks hold one session for the duration of a chunk; the API holds
one per request. SQLite is accepted for local runs and tests.
"""

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from config import settings


def build_engine(url: str):
    if url.startswith("sqlite"):
        # Celery prefork and TestClient threads share connections
        return create_engine(url, connect_args={"check_same_thread": False})

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        # Long AI chunks can outlive server-side idle timeouts
        pool_recycle=settings.DB_POOL_RECYCLE_SECONDS,
    )


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a request-scoped session.

    Routers commit explicitly; anything left uncommitted is discarded on close.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
