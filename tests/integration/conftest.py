"""
Integration fixtures: a migrated database pool and a throwaway channel.
"""
import os
import uuid

import pytest
import pytest_asyncio

from shared.database import DatabaseManager, PoolConfig
from shared.migrations import MigrationRunner
from shared.repositories.channel import ChannelRepository

DATABASE_URL = os.getenv("DATABASE_URL")


@pytest_asyncio.fixture
async def db_pool():
    """Connected, migrated pool; skips when no database is configured."""
    if not DATABASE_URL:
        pytest.skip("DATABASE_URL not set")

    database = DatabaseManager(DATABASE_URL, PoolConfig(min_size=1, max_size=2, max_retries=1))
    await database.connect()
    await MigrationRunner(database.pool).run_pending()
    try:
        yield database.pool
    finally:
        await database.disconnect()


@pytest_asyncio.fixture
async def channel_id(db_pool):
    """A registered channel that is removed (with its viewers) afterwards."""
    channel_id = f"UC_it_{uuid.uuid4().hex[:12]}"
    await ChannelRepository(db_pool).upsert_channel(channel_id, "Integration Channel")
    yield channel_id
    async with db_pool.acquire() as conn:
        await conn.execute("DELETE FROM channels WHERE channel_id = $1", channel_id)
