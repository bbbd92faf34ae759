"""
Database configuration and session management.
Supports SQLite (default) and PostgreSQL (optional override).
"""
import logging

from sqlalchemy import event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session

from app.core.config import settings
from app.core.logging_config import _sanitize_data

logger = logging.getLogger(__name__)


def _database_type(database_url: str) -> str:
    return make_url(database_url).get_backend_name()


def build_engine(database_url: str) -> Engine:
    """Create an engine with backend-specific tuning."""
    database_type = _database_type(database_url)

    if database_type == "sqlite":
        url = make_url(database_url)
        is_sqlite_memory = url.database in (None, "", ":memory:")

        engine_kwargs = {
            "echo": False,
            "connect_args": {"check_same_thread": False},
        }
        if is_sqlite_memory:
            engine_kwargs["poolclass"] = StaticPool

        sqlite_engine = create_engine(database_url, **engine_kwargs)

        @event.listens_for(sqlite_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            """Set SQLite-specific pragma settings for optimal performance."""
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if not is_sqlite_memory:
                cursor.execute("PRAGMA journal_mode=WAL")  # Better concurrency
                cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA temp_store=MEMORY")
            cursor.close()

        logger.info(f"Configured SQLite engine ({'in-memory' if is_sqlite_memory else 'file-based'})")
        return sqlite_engine

    if database_type in {"postgres", "postgresql"}:
        logger.info("Configured PostgreSQL engine with connection pooling")
        return create_engine(
            database_url,
            echo=False,
            pool_pre_ping=True,
            pool_size=20,
            max_overflow=10,
            pool_recycle=3600,  # Recycle connections every hour
        )

    logger.warning(
        f"Using unsupported database type '{database_type}'. "
        "Install the appropriate DB driver for production use."
    )
    return create_engine(database_url, echo=False, pool_pre_ping=True)


logger.info(f"Using database: {_sanitize_data(settings.database_url)}")
engine = build_engine(settings.database_url)


def create_db_and_tables(bind: Engine = None):
    """Create every table registered on SQLModel metadata."""
    # Register table models on the metadata
    import app.models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)


def get_session():
    """Get database session (FastAPI dependency)."""
    with Session(engine) as session:
        yield session


def init_db():
    """Initialize database tables."""
    logger.info("Initializing database...")
    create_db_and_tables()
    logger.info("Database initialization completed")
