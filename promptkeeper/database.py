import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from promptkeeper.config import settings
from promptkeeper.errors import StoreFailureError
from promptkeeper.models.base import Base
# Import all models to ensure they are registered with Base.metadata
from promptkeeper import models  # noqa: F401

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL

__all__ = [
    "DATABASE_URL",
    "engine",
    "SessionLocal",
    "Base",
    "get_db",
    "init_db",
    "make_engine",
    "store_guard",
]


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(url: str, **kwargs) -> Engine:
    """
    Creates an engine for ``url``.

    SQLite engines get ``check_same_thread`` disabled (FastAPI serves requests
    from a thread pool) and foreign key enforcement switched on for every
    connection, so ON DELETE CASCADE behaves as declared.
    """
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        kwargs["connect_args"] = connect_args
    new_engine = create_engine(url, **kwargs)
    if new_engine.dialect.name == "sqlite":
        event.listen(new_engine, "connect", _enable_sqlite_foreign_keys)
    return new_engine


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine = None):
    """Initialize database tables if they do not exist."""
    target = bind if bind is not None else engine
    logger.info("Initializing database...")
    logger.info(f"Using database URL: {target.url!r}")

    Base.metadata.create_all(bind=target)
    logger.info("Database tables checked/created.")


@contextmanager
def store_guard(db: Session, action: str):
    """
    Rolls back and raises StoreFailureError on any store error in the block.

    The message names the operation only, never the step that failed.
    """
    try:
        yield
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Store failure while trying to {action}: {e}", exc_info=True)
        raise StoreFailureError(f"Failed to {action}") from e
