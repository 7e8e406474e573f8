from fastapi import Request
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy import text
from sqlalchemy.pool import StaticPool
import logging

from identity.models import Base

logger = logging.getLogger(__name__)


def create_engine_for_url(database_url: str) -> AsyncEngine:
    """Create the async engine; pool options apply to server databases only."""
    if not database_url:
        raise ValueError("DATABASE_URL is not set")

    if database_url.startswith("sqlite"):
        # In-memory databases live per connection; share one
        poolclass = StaticPool if ":memory:" in database_url else None
        return create_async_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=poolclass
        )

    return create_async_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


async def get_db(request: Request):
    """Dependency to get database session"""
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(engine: AsyncEngine):
    """Verify the connection and create identity tables if missing"""
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.run_sync(Base.metadata.create_all)
            logger.info(f"Identity tables ready: {sorted(Base.metadata.tables)}")
        return True
    except Exception as e:
        logger.error(f"Database initialization error: {e}")
        raise
