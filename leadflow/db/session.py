"""
leadflow/db/session.py — SQLAlchemy engine and session factory.

Usage:
    from leadflow.db.session import get_db

    # As a FastAPI dependency:
    def my_route(db: Session = Depends(get_db)):
        ...

    # In scripts and workers:
    with get_session() as db:
        ...
"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from leadflow.config import settings
from leadflow.db.models import Base
from leadflow.services.runtime_settings import seed_default_settings

logger = logging.getLogger(__name__)


def _engine_kwargs(url: str) -> dict:
    # SQLite uses a single-connection pool; pool sizing only applies to server databases
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_size": 5, "max_overflow": 10}


engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,          # reconnect on stale connections
    echo=False,                  # set True to log all SQL (useful for debugging)
    **_engine_kwargs(settings.database_url),
)

SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Context manager for use in scripts, workers and services (non-FastAPI code)."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request, committed when the route returns."""
    with get_session() as db:
        yield db


def init_db() -> None:
    """Create all tables (if missing) and seed the operator toggles."""
    Base.metadata.create_all(bind=engine)
    with get_session() as db:
        seed_default_settings(db)
    logger.info("Database initialised at %s", engine.url.render_as_string(hide_password=True))
