from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine
from sqlalchemy.pool import NullPool
from contextlib import asynccontextmanager
from .config import settings

# Ensure the DATABASE_URL uses an async driver (asyncpg) for SQLAlchemy asyncio
if settings.DATABASE_URL.startswith("postgresql://") and "+asyncpg" not in settings.DATABASE_URL:
    raise RuntimeError(
        "DATABASE_URL must use an async driver for async SQLAlchemy (e.g. postgresql+asyncpg://...). "
        "Update your DATABASE_URL or set the DATABASE_URL environment variable accordingly."
    )


def build_engine(url: str) -> AsyncEngine:
    """Build the async engine; SQLite gets no pool since aiosqlite connections are loop bound."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.DB_ECHO, poolclass=NullPool)
    return create_async_engine(
        url,
        echo=settings.DB_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
    )


engine: AsyncEngine = build_engine(settings.DATABASE_URL)


@asynccontextmanager
async def get_conn():
    """One transaction per unit of work: commits on exit, rolls back on error."""
    async with engine.begin() as conn:
        yield conn


async def init_db():
    from .models import metadata as models_metadata
    async with engine.begin() as conn:
        await conn.run_sync(models_metadata.create_all)
