"""Database setup with SQLAlchemy."""
import logging
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session

from helpdesk.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

if settings.database_url.startswith("sqlite"):
    engine = create_engine(
        settings.database_url,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def get_db():
    """Dependency for database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session):
    """
    Transaction boundary for a mutating operation.

    Every row written inside the block is committed together; any exception
    rolls the whole block back and is re-raised.
    """
    try:
        yield db
        db.commit()
    except Exception:
        logger.debug("Rolling back unit of work")
        db.rollback()
        raise


def init_db():
    """Create all tables."""
    import helpdesk.models  # noqa: F401  registers mappers
    Base.metadata.create_all(bind=engine)
