"""Database engine, session factory and the per-request session dependency.

Learn: One async engine per process. Services never open sessions on their
own; the API hands each request an AsyncSession through get_db, and the
CLI and WebSocket handler open one from async_session_factory directly.
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from safespace.config import settings


def _engine_options(url: str) -> dict:
    # SQLite (tests, local runs) does not accept pool sizing
    if url.startswith("sqlite"):
        return {}
    return {"pool_size": 5, "max_overflow": 15, "pool_pre_ping": True}


engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    **_engine_options(settings.database_url),
)

# Objects stay readable after commit; snapshots are taken post-commit.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncSession:
    """Yield one session for the lifetime of a request."""
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def create_schema() -> None:
    """Create every table that does not exist yet (`safespace init-db`)."""
    from safespace.db.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
