import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from import_hub.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_engine: Optional[Engine] = None

# Every blocking database round trip made from async code goes through this
# single worker, so store access is serialized and the event loop stays free.
_db_executor: Optional[ThreadPoolExecutor] = None


def _report_connection_failure(exc: Exception) -> None:
    """Log high-signal diagnostics when the application cannot reach the database."""
    logger.warning("Could not connect to database: %s", exc)
    try:
        url = make_url(settings.database_url)
    except Exception as parse_error:  # pragma: no cover
        logger.warning("Unable to parse DATABASE_URL (%s); skipping detailed diagnostics.", parse_error)
        return

    logger.warning(
        "Database settings: dialect=%s driver=%s host=%s database=%s",
        url.get_backend_name(),
        url.get_driver_name() or "default",
        url.host or "localhost",
        url.database,
    )


def _build_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        # Repository calls hop between the executor thread and request threads.
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url, pool_pre_ping=True)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = _build_engine(settings.database_url)
        try:
            with _engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            # Keep the engine so callers can proceed (operations may still fail later).
            _report_connection_failure(e)
    return _engine


# Don't create engine at import time
SessionLocal = None

Base = declarative_base()


def get_session_local():
    global SessionLocal
    if SessionLocal is None:
        engine = get_engine()
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    return SessionLocal


def _get_db_executor() -> ThreadPoolExecutor:
    global _db_executor
    if _db_executor is None:
        _db_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="import-hub-db")
    return _db_executor


async def run_db(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking repository call off the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_get_db_executor(), partial(func, *args, **kwargs))


def create_system_tables() -> None:
    """Create the import_jobs, import_errors, import_templates and job_queue tables."""
    # Models register themselves on Base.metadata at import time.
    from import_hub.db import models  # noqa: F401

    Base.metadata.create_all(bind=get_engine())
