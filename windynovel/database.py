from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from windynovel.config import DATABASE_URL, SQL_ECHO
from typing import AsyncGenerator
from datetime import datetime, timezone


def async_url(url: str) -> str:
    # Plain postgres URLs get the asyncpg driver; anything else is used as-is
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


engine = create_async_engine(
    async_url(DATABASE_URL),
    echo=SQL_ECHO,
    future=True
)

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
Base = declarative_base()


def utcnow() -> datetime:
    # Python-side default so timestamps are populated on flush without a refresh
    return datetime.now(timezone.utc)


# Dependency for FastAPI routes
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session
