from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from .core.config import settings
from .db import models  # noqa: F401  registers tables on SQLModel.metadata


def build_engine(db_url: str, echo: bool = False) -> AsyncEngine:
    # Choose engine options based on database scheme
    engine_kwargs = {}
    if db_url.startswith("sqlite"):
        engine_kwargs.update({
            "connect_args": {"check_same_thread": False}
        })
    else:
        # Better resiliency for managed Postgres
        engine_kwargs.update({
            "pool_pre_ping": True,
            "pool_recycle": 300,
            "pool_size": 5,
            "max_overflow": 10,
        })
    return create_async_engine(db_url, echo=echo, **engine_kwargs)


def build_session_factory(target: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(target, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)


async def create_db_and_tables(target: AsyncEngine = engine) -> None:
    async with target.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
