import asyncio

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import settings
from .repositories.models import Base

# Cache engines and sessionmakers by event loop to avoid cross-loop contamination
_engines: dict[asyncio.AbstractEventLoop, AsyncEngine] = {}
_session_factories: dict[
    asyncio.AbstractEventLoop, async_sessionmaker[AsyncSession]
] = {}


def get_engine() -> AsyncEngine:
    loop = asyncio.get_running_loop()
    if loop not in _engines:
        if settings.database_url is None:
            raise RuntimeError("DATABASE_URL not set")
        _engines[loop] = create_async_engine(str(settings.database_url))
    return _engines[loop]


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    loop = asyncio.get_running_loop()
    if loop not in _session_factories:
        _session_factories[loop] = async_sessionmaker(
            autocommit=False, autoflush=False, bind=get_engine(), expire_on_commit=False
        )
    return _session_factories[loop]


async def create_tables() -> None:
    """Creates all tables on the configured database."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
