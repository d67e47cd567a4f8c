"""Repository for the credentials table."""

from __future__ import annotations

import logging
from datetime import datetime

import asyncpg

from shared.models.credential import Credential

logger = logging.getLogger(__name__)

_COLUMNS = (
    "credential_id, client_id, client_secret, api_key, ai_api_key, "
    "access_token, refresh_token, token_expiry, bot_channel_id, active, priority, "
    "quota_exceeded, quota_exceeded_at, last_used, created_at"
)


class CredentialRepository:
    """Pure SQL operations for pooled API credentials.

    No caching: the pool must observe quota flags written by other channels
    immediately.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get(self, credential_id: str) -> Credential | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM credentials WHERE credential_id = $1",
                credential_id,
            )
            return Credential(**dict(row)) if row else None

    async def list_active(self) -> list[Credential]:
        """Active credentials ordered by priority (lowest first)."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM credentials WHERE active = TRUE "
                "ORDER BY priority, credential_id"
            )
            return [Credential(**dict(r)) for r in rows]

    async def count(self) -> int:
        async with self.pool.acquire() as conn:
            return int(await conn.fetchval("SELECT COUNT(*) FROM credentials"))

    async def create(self, credential: Credential) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO credentials
                    (credential_id, client_id, client_secret, api_key, ai_api_key, priority)
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (credential_id) DO NOTHING
                """,
                credential.credential_id,
                credential.client_id,
                credential.client_secret,
                credential.api_key,
                credential.ai_api_key,
                credential.priority,
            )

    async def update_tokens(
        self,
        credential_id: str,
        access_token: str,
        refresh_token: str | None,
        token_expiry: datetime | None,
    ) -> None:
        """Store a new token triple; a None refresh token keeps the old one."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE credentials SET
                    access_token  = $2,
                    refresh_token = COALESCE($3, refresh_token),
                    token_expiry  = $4
                WHERE credential_id = $1
                """,
                credential_id,
                access_token,
                refresh_token,
                token_expiry,
            )

    async def clear_tokens(self, credential_id: str) -> None:
        """Forget a revoked grant; the credential waits for a new OAuth handshake."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE credentials SET
                    access_token = NULL, refresh_token = NULL, token_expiry = NULL
                WHERE credential_id = $1
                """,
                credential_id,
            )

    async def set_identity(self, credential_id: str, bot_channel_id: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE credentials SET bot_channel_id = $2 WHERE credential_id = $1",
                credential_id,
                bot_channel_id,
            )

    async def mark_quota_exceeded(self, credential_id: str, at: datetime) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE credentials SET quota_exceeded = TRUE, quota_exceeded_at = $2
                WHERE credential_id = $1
                """,
                credential_id,
                at,
            )

    async def clear_quota(self, credential_ids: list[str]) -> None:
        if not credential_ids:
            return
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE credentials SET quota_exceeded = FALSE, quota_exceeded_at = NULL
                WHERE credential_id = ANY($1::text[])
                """,
                credential_ids,
            )

    async def touch_last_used(self, credential_id: str, at: datetime) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE credentials SET last_used = $2 WHERE credential_id = $1",
                credential_id,
                at,
            )
