"""Repository for the viewers table (points economy + moderation flags)."""

from __future__ import annotations

import logging
from datetime import datetime

import asyncpg

from shared.models.viewer import AdminStatus, Viewer, WelcomeStatus

logger = logging.getLogger(__name__)

_COLUMNS = (
    "channel_id, viewer_id, username, points, watch_minutes, last_active, "
    "admin_status, welcome_status, created_at"
)


def _affected(status: str) -> int:
    """Parse the row count out of an asyncpg status string like 'UPDATE 3'."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, IndexError):
        return 0


class ViewerRepository:
    """Pure SQL operations for per-channel viewers."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    # ==================== Lookup / creation ====================

    async def get_viewer(self, channel_id: str, viewer_id: str) -> Viewer | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM viewers WHERE channel_id = $1 AND viewer_id = $2",
                channel_id,
                viewer_id,
            )
            return Viewer(**dict(row)) if row else None

    async def get_or_create(
        self, channel_id: str, viewer_id: str, username: str, at: datetime
    ) -> Viewer:
        """Return the viewer row, inserting a fresh one (welcome pending) if absent."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO viewers (channel_id, viewer_id, username, last_active)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (channel_id, viewer_id) DO UPDATE SET
                    username = viewers.username
                RETURNING {_COLUMNS}
                """,
                channel_id,
                viewer_id,
                username,
                at,
            )
            return Viewer(**dict(row))

    # ==================== Chat bookkeeping ====================

    async def touch(self, channel_id: str, viewer_id: str, username: str, at: datetime) -> None:
        """Record activity: last_active and current display name."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE viewers SET last_active = $3, username = $4
                WHERE channel_id = $1 AND viewer_id = $2
                """,
                channel_id,
                viewer_id,
                at,
                username,
            )

    async def set_welcome_status(
        self, channel_id: str, viewer_id: str, status: WelcomeStatus
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE viewers SET welcome_status = $3 WHERE channel_id = $1 AND viewer_id = $2",
                channel_id,
                viewer_id,
                status.value,
            )

    async def set_admin_status(
        self, channel_id: str, viewer_id: str, status: AdminStatus
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE viewers SET admin_status = $3 WHERE channel_id = $1 AND viewer_id = $2",
                channel_id,
                viewer_id,
                status.value,
            )

    async def reset_session_flags(self, channel_id: str) -> int:
        """Re-arm welcomes and forget moderator status for a new broadcast.

        Viewers whose welcome status is ``unknown`` (opted out) keep it.
        """
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                """
                UPDATE viewers SET
                    welcome_status = CASE
                        WHEN welcome_status = 'unknown' THEN 'unknown'
                        ELSE 'pending'
                    END,
                    admin_status = 'unknown'
                WHERE channel_id = $1
                """,
                channel_id,
            )
            return _affected(status)

    # ==================== Economy ====================

    async def award_active(
        self, channel_id: str, since: datetime, points: int, minutes: int
    ) -> int:
        """Credit every viewer active since *since*. Returns the number awarded."""
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                """
                UPDATE viewers SET
                    points        = points + $3,
                    watch_minutes = watch_minutes + $4
                WHERE channel_id = $1 AND last_active >= $2
                """,
                channel_id,
                since,
                points,
                minutes,
            )
            return _affected(status)

    async def add_points(self, channel_id: str, viewer_id: str, delta: int) -> int:
        """Apply *delta* with a floor of zero. Returns the new balance."""
        async with self.pool.acquire() as conn:
            balance = await conn.fetchval(
                """
                UPDATE viewers SET points = GREATEST(points + $3, 0)
                WHERE channel_id = $1 AND viewer_id = $2
                RETURNING points
                """,
                channel_id,
                viewer_id,
                delta,
            )
            return int(balance or 0)

    async def top_by_points(self, channel_id: str, limit: int = 5) -> list[Viewer]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM viewers WHERE channel_id = $1 "
                "ORDER BY points DESC, username LIMIT $2",
                channel_id,
                limit,
            )
            return [Viewer(**dict(r)) for r in rows]

    async def top_by_watch_minutes(self, channel_id: str, limit: int = 5) -> list[Viewer]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM viewers WHERE channel_id = $1 "
                "ORDER BY watch_minutes DESC, username LIMIT $2",
                channel_id,
                limit,
            )
            return [Viewer(**dict(r)) for r in rows]
