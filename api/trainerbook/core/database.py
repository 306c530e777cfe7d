"""Async database engine and session management.

One session is one unit of work: every booking operation runs inside the
session's transaction and is committed (or rolled back) as a whole by the
caller, so the ledger and the booking rows never diverge.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm.exc import StaleDataError

from trainerbook.core.config import settings
from trainerbook.core.exceptions import ConcurrencyConflict


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {}
    return {"pool_size": 20, "max_overflow": 10, "pool_pre_ping": True}


engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    **_engine_kwargs(settings.database_url),
)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session. Used as a FastAPI dependency."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def flush_or_conflict(db: AsyncSession) -> None:
    """Flush pending changes, translating optimistic-lock failures into ConcurrencyConflict."""
    try:
        await db.flush()
    except StaleDataError as exc:
        raise ConcurrencyConflict("The record was modified by another request. Please retry.") from exc
