"""
Async database engine and session factory.

SQLite (aiosqlite) in development, any async SQLAlchemy URL in production.
Tables are created at startup; alembic carries the same schema for
managed databases.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from src.core.config import settings
from src.core.logging import get_logger

# Models must be imported so they register with SQLModel.metadata
from src.modules.foods.models import Food  # noqa: F401

logger = get_logger(__name__)

engine = create_async_engine(settings.DATABASE_URL, echo=False, future=True, pool_pre_ping=True)

# Sessions keep loaded foods usable after commit, the repository hands them out
async_session_maker = sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def create_db_and_tables():
    """Create missing tables (checkfirst, safe to run on every startup)."""
    async with engine.begin() as conn:
        await conn.run_sync(lambda sync_conn: SQLModel.metadata.create_all(sync_conn, checkfirst=True))
    logger.info("database_tables_ready", tables=sorted(SQLModel.metadata.tables.keys()))


async def ping_database() -> bool:
    """Run a trivial query, used by the readiness probe."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return True
