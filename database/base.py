from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker, AsyncEngine
from sqlalchemy.orm import declarative_base

from config import get_settings


def create_engine_for(db_url: str, echo: bool = False) -> AsyncEngine:
    """Build the async engine; pool tuning only applies to server databases"""
    if db_url.startswith("sqlite"):
        return create_async_engine(db_url, echo=echo, future=True)

    return create_async_engine(
        db_url,
        echo=echo,
        future=True,
        pool_size=5,  # pool size
        max_overflow=10,  # extra connections under load
        pool_pre_ping=True,  # check the connection before use
        pool_recycle=3600  # recycle connections hourly
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False
    )


engine = create_engine_for(get_settings().DB_URL)

AsyncSessionLocal = create_session_factory(engine)

Base = declarative_base()


async def create_all(bind: AsyncEngine = engine):
    """Create every table registered on Base."""
    import database.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
