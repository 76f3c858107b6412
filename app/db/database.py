"""Database connection and session management"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool, NullPool
from app.config import settings
from app.db.models import Base


def _is_sqlite_memory(url: str) -> bool:
    return ":memory:" in url or url.split("://", 1)[-1] in ("", "/")


# Create async engine
if settings.database_url.startswith("sqlite") and _is_sqlite_memory(settings.database_url):
    # In-memory SQLite: one shared connection, single-process scratch use only
    engine = create_async_engine(
        settings.database_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=settings.debug,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
elif settings.database_url.startswith("sqlite"):
    # File SQLite (development and tests)
    # - NullPool: every session gets its own connection and transaction
    # - BEGIN IMMEDIATE: a transaction takes the write lock when it starts,
    #   so quota checks and thread transitions run one at a time
    # - timeout: waiters block for the lock while a turn is generating
    engine = create_async_engine(
        settings.database_url,
        connect_args={
            "check_same_thread": False,
            "timeout": settings.provider_timeout_seconds + 30,
        },
        poolclass=NullPool,
        echo=settings.debug,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _configure_sqlite_connection(dbapi_connection, connection_record):
        # Driver-level implicit BEGIN off; the "begin" hook below issues it
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
else:
    # PostgreSQL: row locks (SELECT ... FOR UPDATE) serialize ledger,
    # thread and subscription mutations per user.
    # - pool_pre_ping: detect stale connections after cold starts
    # - command_timeout: sessions stay open across provider calls, so the
    #   statement budget must exceed the generation timeout
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        connect_args={
            "command_timeout": settings.provider_timeout_seconds + 30,
        },
    )

# Session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncSession:
    """Dependency for getting database sessions"""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """Initialize database tables"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db():
    """Drop all database tables (for testing)"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
