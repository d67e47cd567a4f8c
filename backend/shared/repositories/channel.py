"""Repository for the channels table."""

from __future__ import annotations

import logging

import asyncpg

from shared.cache import AsyncTTLCache, cached
from shared.models.channel import Channel

logger = logging.getLogger(__name__)

# Channels are read on every chat event (moderation flag); writes invalidate.
_channel_cache = AsyncTTLCache(maxsize=256, ttl=300)

_COLUMNS = (
    "channel_id, channel_name, moderation_enabled, auto_message_text, "
    "auto_message_interval, auto_message_enabled, created_at, updated_at"
)


class ChannelRepository:
    """Pure SQL operations for registered channels."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    @cached(cache=_channel_cache, key_func=lambda self, channel_id: f"channel:{channel_id}")
    async def get_channel(self, channel_id: str) -> Channel | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM channels WHERE channel_id = $1",
                channel_id,
            )
            return Channel(**dict(row)) if row else None

    async def list_channels(self) -> list[Channel]:
        """Return every registered channel."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(f"SELECT {_COLUMNS} FROM channels ORDER BY created_at")
            return [Channel(**dict(r)) for r in rows]

    async def upsert_channel(self, channel_id: str, channel_name: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO channels (channel_id, channel_name)
                VALUES ($1, $2)
                ON CONFLICT (channel_id) DO UPDATE SET
                    channel_name = EXCLUDED.channel_name,
                    updated_at   = NOW()
                """,
                channel_id,
                channel_name,
            )
        _channel_cache.invalidate(f"channel:{channel_id}")

    async def set_moderation(self, channel_id: str, enabled: bool) -> Channel | None:
        """Toggle content moderation. Returns None for an unknown channel."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE channels SET moderation_enabled = $2, updated_at = NOW()
                WHERE channel_id = $1
                RETURNING {_COLUMNS}
                """,
                channel_id,
                enabled,
            )
        _channel_cache.invalidate(f"channel:{channel_id}")
        return Channel(**dict(row)) if row else None

    async def set_auto_message(
        self,
        channel_id: str,
        *,
        text: str | None,
        interval_minutes: int | None,
        enabled: bool,
    ) -> Channel | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE channels SET
                    auto_message_text     = $2,
                    auto_message_interval = $3,
                    auto_message_enabled  = $4,
                    updated_at            = NOW()
                WHERE channel_id = $1
                RETURNING {_COLUMNS}
                """,
                channel_id,
                text,
                interval_minutes,
                enabled,
            )
        _channel_cache.invalidate(f"channel:{channel_id}")
        return Channel(**dict(row)) if row else None

    def invalidate(self, channel_id: str) -> None:
        _channel_cache.invalidate(f"channel:{channel_id}")
