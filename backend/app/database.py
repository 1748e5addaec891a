"""Database engine, session factory, and declarative base.

One DeclarativeBase holds the ledger tables (farmers, deliveries,
payments, activity_logs).  `get_db()` is the FastAPI session dependency:
it commits when the request succeeds and rolls back on any exception,
so a failed payment claim never leaves a partial write behind.  Work
that must only follow a durable write (report cache invalidation) is
queued with `after_commit()` and runs once the commit has gone through.
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings


def _engine_kwargs(url: str) -> dict:
    # SQLite (tests, local demos) does not accept pool sizing
    if url.startswith("sqlite"):
        return {}
    return {"pool_size": 20, "max_overflow": 10}


engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    **_engine_kwargs(settings.database_url),
)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class Base(DeclarativeBase):
    """Base class for all ledger models."""
    pass


# Key in Session.info holding async callables to run after a successful commit
_AFTER_COMMIT = "after_commit"


def after_commit(session: AsyncSession, hook) -> None:
    """Queue `hook` (an async callable) to run once `session` has committed."""
    session.info.setdefault(_AFTER_COMMIT, []).append(hook)


async def commit(session: AsyncSession) -> None:
    """Commit, then run the hooks queued with after_commit()."""
    await session.commit()
    for hook in session.info.pop(_AFTER_COMMIT, []):
        await hook()


async def rollback(session: AsyncSession) -> None:
    """Roll back and drop the queued hooks; nothing they describe happened."""
    session.info.pop(_AFTER_COMMIT, None)
    await session.rollback()


async def get_db() -> AsyncSession:
    """Yield a request-scoped session."""
    async with async_session() as session:
        try:
            yield session
            await commit(session)
        except Exception:
            await rollback(session)
            raise
