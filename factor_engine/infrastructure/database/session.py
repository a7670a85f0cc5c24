"""Database session management with connection pooling"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.orm.exc import StaleDataError

from factor_engine.config import settings
from factor_engine.domain.exceptions import StateConflictError

logger = logging.getLogger(__name__)

# Connection pool sized from settings
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,  # Verify connections before using
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_recycle=settings.db_pool_recycle_seconds,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Session:
    """Dependency injection for database sessions"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Run one aggregate mutation as a single unit: commit on success, roll back on any error.

    A concurrent writer that bumped the operation's row_version first surfaces
    as StateConflictError so the caller can refresh and retry.
    """
    try:
        yield db
        db.commit()
    except StaleDataError as e:
        db.rollback()
        logger.warning(f"Concurrent modification detected: {e}")
        raise StateConflictError("Operation was modified concurrently; refresh and retry", code="CONCURRENT_MODIFICATION") from e
    except Exception:
        db.rollback()
        raise
