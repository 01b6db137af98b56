"""
Engine and session factory construction, plus the per-request session dependency.
"""
import logging
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from src.api.config import Settings

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def build_engine(settings: Settings) -> Engine:
    """Create the pooled engine. SQLite gets a single shared connection instead of a pool."""
    url = settings.database_url
    engine_kwargs = {"future": True, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            engine_kwargs["poolclass"] = StaticPool
        logger.info("Database configured with SQLite at %s", url)
    else:
        engine_kwargs.update(
            {
                "poolclass": QueuePool,
                "pool_size": settings.db_pool_size,
                "max_overflow": settings.db_max_overflow,
                "pool_timeout": settings.db_pool_timeout,
                "pool_recycle": settings.db_pool_recycle,
            }
        )
        logger.info(
            "Database connection pool configured: size=%s, max_overflow=%s, timeout=%ss",
            settings.db_pool_size, settings.db_max_overflow, settings.db_pool_timeout,
        )
    return create_engine(url, **engine_kwargs)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


# PUBLIC_INTERFACE
def get_db(request: Request) -> Iterator[Session]:
    """Yields a SQLAlchemy session bound to the application's engine."""
    db = request.app.state.context.session_factory()
    try:
        yield db
    finally:
        db.close()
