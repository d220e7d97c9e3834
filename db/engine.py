# db/engine.py
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

import models  # noqa: F401  registers every table on Base.metadata
from models.base import Base


def build_engine(database_url: str) -> AsyncEngine:
    kwargs: dict = {"echo": False}
    if not database_url.startswith("sqlite"):
        kwargs.update(pool_size=10, max_overflow=20)
    return create_async_engine(database_url, **kwargs)


async def create_schema(engine: AsyncEngine) -> None:
    """Create registry tables if they do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
