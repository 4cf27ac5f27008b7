"""Async database engine, session factory and declarative base"""
from typing import AsyncGenerator

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from afauth.config import settings
from afauth.utils.logger import logger


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}

    kwargs = {
        "pool_pre_ping": True,
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_timeout": settings.DATABASE_POOL_TIMEOUT,
        "pool_recycle": settings.DATABASE_POOL_RECYCLE,
    }
    if url.startswith("postgresql+asyncpg"):
        timeout_seconds = settings.DATABASE_STATEMENT_TIMEOUT_MS / 1000
        kwargs["connect_args"] = {
            "command_timeout": timeout_seconds,
            "server_settings": {
                "application_name": "afauth",
                "statement_timeout": str(settings.DATABASE_STATEMENT_TIMEOUT_MS),
            },
        }
    return kwargs


engine = create_async_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session; rolled back if the request fails"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def close_db() -> None:
    """Dispose of pooled connections"""
    await engine.dispose()
    logger.info("Database connections closed")


def dialect_insert(db: AsyncSession, model):
    """INSERT construct supporting ON CONFLICT for the session's dialect"""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upsert is not implemented for {dialect}")
