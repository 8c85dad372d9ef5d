"""SQLAlchemy table definitions and engine helpers - dialect-agnostic (SQLite and PostgreSQL)."""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
)
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import JSON

from scholarship_pipeline.utils import get_logger


logger = get_logger("storage")

# Metadata object for all tables
metadata = MetaData()


class StorageError(Exception):
    """Raised when the database cannot be reached or a statement fails."""

    def __init__(self, message: str, original: Exception = None):
        super().__init__(message)
        self.original = original


# ============================================================================
# LINKS TABLE
# ============================================================================
links_table = Table(
    "links",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("url", String, nullable=False, unique=True),
    Column("submitted_by", String, nullable=True),
    Column("source_context", String, nullable=True),  # message id, batch or callback source
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("processed", Boolean, nullable=False, default=False),
)

Index("idx_links_processed_created_at", links_table.c.processed, links_table.c.created_at)


# ============================================================================
# SCHOLARSHIPS TABLE
# ============================================================================
scholarships_table = Table(
    "scholarships",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String, nullable=False),
    Column("name_key", String, nullable=False, unique=True),  # case/whitespace-normalized name
    Column("deadline", String, nullable=True),  # raw deadline text, parsed at sweep time
    Column("amount", String, nullable=True),
    Column("description", Text, nullable=True),
    Column("requirements", JSON, nullable=True),  # list of strings or a single string
    Column("link", String, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

Index("idx_scholarships_name", scholarships_table.c.name)


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL and make sure the tables exist.

    SQLite databases get their parent directory created, are shared across
    threads and wait on locks instead of failing immediately. In-memory
    SQLite uses a single shared connection so every caller sees the same data.

    Args:
        database_url: SQLAlchemy database URL.
        echo: Log emitted SQL.

    Returns:
        Configured Engine.

    Raises:
        StorageError: If the database cannot be reached or initialized.
    """
    url = make_url(database_url)
    kwargs = {"echo": echo}

    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    try:
        engine = create_engine(url, **kwargs)
        metadata.create_all(engine)
    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize database at {url.render_as_string(hide_password=True)}: {e}")
        raise StorageError("Database initialization failed", original=e) from e

    logger.debug(f"Database ready: {url.render_as_string(hide_password=True)}")
    return engine


@contextmanager
def transaction(engine: Engine) -> Iterator[Connection]:
    """
    Open a connection inside a transaction.

    Commits on success and rolls back on error. Unique-constraint
    violations propagate as IntegrityError so callers can treat them as
    expected duplicates; every other database error becomes StorageError.
    """
    try:
        with engine.begin() as connection:
            yield connection
    except IntegrityError:
        raise
    except SQLAlchemyError as e:
        logger.error(f"Database operation failed: {e}")
        raise StorageError(f"Database operation failed: {e}", original=e) from e
