"""Database configuration and session management."""

import os
import logging
from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from app.config import settings

logger = logging.getLogger(__name__)


def _is_sqlite(url: str) -> bool:
    return make_url(url).get_backend_name() == "sqlite"


def _ensure_sqlite_directory(url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    database = make_url(url).database
    if not database or database == ":memory:":
        return
    directory = os.path.dirname(database)
    if directory:
        os.makedirs(directory, exist_ok=True)


def create_gateway_engine(url: str):
    """Create an engine; SQLite connections get foreign key enforcement.

    Provider deletion relies on ``ON DELETE SET NULL`` for usage records and
    audit entries, which SQLite only honours with the pragma enabled.
    """
    if not _is_sqlite(url):
        return create_engine(url, pool_pre_ping=True)

    _ensure_sqlite_directory(url)
    sqlite_engine = create_engine(url, connect_args={"check_same_thread": False})

    @event.listens_for(sqlite_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return sqlite_engine


engine = create_gateway_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Get database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create missing tables, then add columns missing from older databases."""
    import app.models  # noqa: F401

    existing_tables = inspect(engine).get_table_names()
    if existing_tables:
        logger.info(f"Found {len(existing_tables)} existing tables")
    else:
        logger.info("Empty database, creating schema")

    Base.metadata.create_all(bind=engine)

    if existing_tables:
        from app.database.migrations import migrate_database
        db = SessionLocal()
        try:
            migrate_database(db)
        finally:
            db.close()

    logger.info(f"Database initialized with tables: {inspect(engine).get_table_names()}")
