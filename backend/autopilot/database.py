"""
Database engine and sessions for the automation tables.
PostgreSQL via asyncpg, SQLAlchemy 2 async.

Run status changes commit through RunStore, not through get_db's commit at the
end of the request, so a request that dies mid-way leaves runs in their last
committed status.
"""

import logging
import ssl

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from autopilot.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def _connect_args() -> dict:
    args = {"timeout": settings.database_connect_timeout}
    if settings.database_ssl:
        # Proxied Postgres presents a self-signed certificate
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        args["ssl"] = ctx
    return args


engine = create_async_engine(
    settings.database_url,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    pool_pre_ping=True,
    connect_args=_connect_args(),
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """Create missing automation tables. Column changes go through Alembic."""
    import autopilot.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Automation tables ready: {', '.join(sorted(Base.metadata.tables))}")


async def check_db_connection() -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
