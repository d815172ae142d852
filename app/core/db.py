from typing import AsyncIterator
from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine, AsyncSession
from .config import Settings
from .base import Base


def build_engine(dsn: str, **kwargs) -> AsyncEngine:
    if dsn.startswith("sqlite"):
        # sqlite waits on the writer lock instead of failing straight away
        kwargs.setdefault("connect_args", {"timeout": 30})
        engine = create_async_engine(dsn, **kwargs)

        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_pragmas(dbapi_conn, _record):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

        return engine
    return create_async_engine(dsn, pool_pre_ping=True, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_models(engine: AsyncEngine, settings: Settings):
    ## In dev-only "create_all" mode build the schema; otherwise, migrations own it.
    if settings.DB_MANAGE == "create_all":
        # register every mapped table on Base.metadata
        from app.modules.availability import models as _availability  # noqa: F401
        from app.modules.appointments import models as _appointments  # noqa: F401
        from app.modules.events import outbox as _outbox  # noqa: F401
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    async with request.app.state.session_factory() as session:
        yield session
