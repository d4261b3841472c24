import asyncio
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from clipstack.config import get_settings
from clipstack.models.base import Base

logger = logging.getLogger(__name__)

settings = get_settings()


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    kwargs: dict[str, Any] = {"echo": echo, "future": True}
    if not database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=5,
            max_overflow=0,  # Queue instead of exceeding the connection limit
            pool_pre_ping=True,  # Check connection health before use
            pool_recycle=300,
            pool_timeout=30,
        )
    return create_async_engine(database_url, **kwargs)


def create_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = create_engine(settings.database_url, echo=settings.database_echo)

async_session_maker = create_session_maker(engine)


async def init_db(bind: AsyncEngine | None = None, max_retries: int = 5, retry_delay: float = 2) -> None:
    """Initialize database with retry logic for connection failures."""
    bind = bind or engine

    for attempt in range(max_retries):
        try:
            async with bind.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            return  # Success
        except Exception as e:
            if attempt < max_retries - 1:
                logger.warning(
                    f"DB connection attempt {attempt + 1}/{max_retries} failed: {e}. "
                    f"Retrying in {retry_delay} seconds..."
                )
                await asyncio.sleep(retry_delay)
                retry_delay *= 2  # Exponential backoff
            else:
                logger.error(f"Failed to connect to database after {max_retries} attempts")
                raise

