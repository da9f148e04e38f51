# multicloud/db/session.py
"""
Database session and base class setup (SQLAlchemy 2.0 style).
"""
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from multicloud.config import settings

DATABASE_URL = settings.DATABASE_URL

engine = create_async_engine(DATABASE_URL, future=True, echo=False)
SessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
    autocommit=False,
)

Base = declarative_base()


async def init_models(bind: AsyncEngine = None) -> None:
    """Create all tables on the given engine (defaults to the app engine)."""
    # Models must be imported so their tables are registered on Base.metadata
    from multicloud.db import models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_db_ready() -> bool:
    """Return True if the database responds to a simple SELECT 1, else False."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields an `AsyncSession` instance.

    Usage in endpoints:
        db: AsyncSession = Depends(get_async_session)
    """
    async with SessionLocal() as session:
        yield session
