"""Database session factory setup."""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine


def _make_sqlite_serializable(engine: AsyncEngine) -> None:
    """Give SQLite transactions a write lock from BEGIN.

    pysqlite defers BEGIN until the first DML statement, so two admissions could both
    read "no job yet" before either writes. BEGIN IMMEDIATE serializes them instead.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine(db_url: str, pool_size: int = 50) -> AsyncEngine:
    """Create async engine for PostgreSQL (production) or SQLite (tests, local runs)."""
    if db_url.startswith("sqlite"):
        engine = create_async_engine(db_url, connect_args={"timeout": 30}, echo=False)
        _make_sqlite_serializable(engine)
        return engine

    return create_async_engine(
        db_url,
        pool_size=pool_size,
        max_overflow=0,  # No overflow beyond pool_size
        pool_pre_ping=True,  # Verify connections before using
        echo=False,  # SQL is not logged, structlog covers application events
    )


def setup_db_session(db_url: str, pool_size: int = 50) -> async_sessionmaker[AsyncSession]:
    """Create async database session factory.

    Args:
        db_url: Database URL (postgresql+psycopg://... or sqlite+aiosqlite://...)
        pool_size: Maximum number of connections in the pool (default: 50)

    Returns:
        Async session factory for creating database sessions
    """
    engine = create_engine(db_url, pool_size)

    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevent lazy loading issues after commit
    )
