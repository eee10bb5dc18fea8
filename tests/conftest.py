import os

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from shared.database.connection import Base
from shared.database import models  # noqa: F401
from tests.doubles import FIXED_NOW, InMemoryBlobStore, InMemoryTicketStore


@pytest.fixture
def store():
    return InMemoryTicketStore()


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
async def session_maker(tmp_path):
    """SQLite en archivo para probar el adaptador SQL (varias conexiones)"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tickets.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()
