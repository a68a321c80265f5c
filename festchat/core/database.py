"""
Database engine, session factory and declarative base.
"""
import functools
import logging
from typing import Callable, Generator, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from festchat.core.config import settings
from festchat.core.exceptions import ServiceError

logger = logging.getLogger(__name__)

Base = declarative_base()

F = TypeVar("F", bound=Callable)

# Errors worth a single retry: dropped connections, statement/pool timeouts.
TRANSIENT_ERRORS = (OperationalError, PoolTimeoutError)


def build_engine(url: str) -> Engine:
    """Create an engine with bounded waits for the configured backend."""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": settings.DB_POOL_TIMEOUT},
        )
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        connect_args={
            "connect_timeout": settings.DB_POOL_TIMEOUT,
            "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
        },
    )


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def retry_transient(func: F) -> F:
    """
    Retry a service method once on a transient data-store failure.

    The wrapped method must belong to an object exposing the session as ``self.db``.
    The session is rolled back before the retry; a second failure surfaces as ServiceError.
    """

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except TRANSIENT_ERRORS as e:
            self.db.rollback()
            logger.warning("Transient data store error in %s, retrying once: %s", func.__name__, e)
        try:
            return func(self, *args, **kwargs)
        except TRANSIENT_ERRORS as e:
            self.db.rollback()
            logger.error("Data store unavailable in %s: %s", func.__name__, e)
            raise ServiceError() from e

    return wrapper  # type: ignore[return-value]
