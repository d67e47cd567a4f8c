"""Credential pool: priority round-robin over API projects with daily quota reset."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any, TypeVar

from shared.models.credential import Credential
from shared.repositories.credential import CredentialRepository
from ytlive.core.config import OAUTH_SCOPES
from ytlive.core.state import EngineState
from ytlive.services.youtube_api import (
    QuotaExceededError,
    UnauthorizedError,
    YouTubeAPIClient,
    YouTubeAPIError,
)

LOGGER: logging.Logger = logging.getLogger("Engine.CredentialPool")

T = TypeVar("T")

# Refresh slightly before the expiry Google reports
REFRESH_MARGIN = timedelta(seconds=60)


class NoCredentialAvailable(Exception):
    """Every active credential is unconfigured or out of quota."""


def exhausted_before_today(credential: Credential, now: datetime) -> bool:
    """True if the quota flag was set on an earlier local calendar date."""
    if not credential.quota_exceeded:
        return False
    if credential.quota_exceeded_at is None:
        return True
    return credential.quota_exceeded_at.astimezone().date() < now.astimezone().date()


class CredentialPool:
    """Shared source of credentials for every inbound and outbound API call.

    Callers select per call (``acquire`` / ``call``) and never hold a
    credential across operations. The round-robin cursor is private.
    """

    def __init__(
        self, repo: CredentialRepository, api: YouTubeAPIClient, state: EngineState
    ) -> None:
        self.repo = repo
        self.api = api
        self.state = state
        self._cursor = -1

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _remember_identities(self, credentials: list[Credential]) -> None:
        self.state.bot_identities.update(c.bot_channel_id for c in credentials if c.bot_channel_id)

    async def _reset_quotas(self, credentials: list[Credential]) -> None:
        now = self.state.now()
        stale = [c for c in credentials if exhausted_before_today(c, now)]
        if not stale:
            return
        await self.repo.clear_quota([c.credential_id for c in stale])
        for credential in stale:
            credential.quota_exceeded = False
            credential.quota_exceeded_at = None
        LOGGER.info(f"Quota reset for {', '.join(c.credential_id for c in stale)}")

    async def list_usable(self) -> list[Credential]:
        """Active, authorized, not exhausted; lowest priority value first."""
        credentials = await self.repo.list_active()
        self._remember_identities(credentials)
        return [c for c in credentials if c.access_token and not c.quota_exceeded]

    async def select_next(self) -> Credential:
        usable: list[Credential] = []
        for _ in range(2):
            credentials = await self.repo.list_active()
            self._remember_identities(credentials)
            await self._reset_quotas(credentials)
            usable = [c for c in credentials if c.access_token and not c.quota_exceeded]
            if usable:
                break
        if not usable:
            raise NoCredentialAvailable("No usable credential (unconfigured or quota exceeded)")

        self._cursor = (self._cursor + 1) % len(usable)
        credential = usable[self._cursor]

        now = self.state.now()
        await self.repo.touch_last_used(credential.credential_id, now)
        credential.last_used = now
        LOGGER.debug(f"Selected credential {credential.credential_id}")
        return credential

    async def mark_exhausted(self, credential_id: str) -> None:
        await self.repo.mark_quota_exceeded(credential_id, self.state.now())
        LOGGER.warning(f"Credential {credential_id} quota exceeded, rotating")

    async def ensure_fresh(self, credential: Credential) -> Credential:
        """Refresh the access token if it has expired (or is about to)."""
        if not credential.token_expired(self.state.now() + REFRESH_MARGIN):
            return credential

        result = await self.api.refresh_access_token(credential)
        if not result.success or not result.access_token:
            if result.revoked:
                await self.repo.clear_tokens(credential.credential_id)
                credential.access_token = credential.refresh_token = credential.token_expiry = None
                LOGGER.warning(
                    f"Grant of {credential.credential_id} revoked, "
                    "out of rotation until OAuth is completed again"
                )
            raise YouTubeAPIError(
                f"Token refresh failed for {credential.credential_id}: {result.error}"
            )

        await self.repo.update_tokens(
            credential.credential_id, result.access_token, result.refresh_token, result.expires_at
        )
        credential.access_token = result.access_token
        if result.refresh_token:
            credential.refresh_token = result.refresh_token
        credential.token_expiry = result.expires_at
        LOGGER.info(f"Refreshed token for {credential.credential_id}")
        return credential

    async def acquire(self) -> Credential:
        """Select the next credential and make sure its token is usable."""
        return await self.ensure_fresh(await self.select_next())

    async def call(
        self,
        operation: Callable[[Credential], Awaitable[T]],
        *,
        retry_on_quota: bool = False,
    ) -> T:
        """Run *operation* with a freshly selected credential.

        A quota rejection marks the credential exhausted; with
        *retry_on_quota* the operation is tried once more on another
        credential. A rejected token is expired so the next use refreshes it.
        """
        attempts = 2 if retry_on_quota else 1
        attempt = 0
        while True:
            attempt += 1
            credential = await self.acquire()
            try:
                return await operation(credential)
            except QuotaExceededError:
                await self.mark_exhausted(credential.credential_id)
                if attempt >= attempts:
                    raise
                LOGGER.info(f"Retrying on another credential ({attempt}/{attempts})")
            except UnauthorizedError:
                await self._expire_token(credential)
                raise

    async def _expire_token(self, credential: Credential) -> None:
        if not credential.access_token:
            return
        now = self.state.now()
        await self.repo.update_tokens(credential.credential_id, credential.access_token, None, now)
        credential.token_expiry = now
        LOGGER.warning(f"Access token of {credential.credential_id} rejected, will refresh")

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def bootstrap(self, configs: list[Credential]) -> int:
        """Create credentials from configuration when the table is empty.

        Also resolves the posting identity of authorized credentials that
        do not have one yet. Returns the number of credentials created.
        """
        created = 0
        if await self.repo.count() == 0:
            for config in configs:
                await self.repo.create(config)
                created += 1
            if created:
                LOGGER.info(f"Created {created} credential(s) from configuration")
            else:
                LOGGER.warning("No credential configured; set GOOGLE_CLIENT_ID/SECRET and YOUTUBE_API_KEY")

        for credential in await self.repo.list_active():
            if credential.configured and not credential.bot_channel_id:
                await self._resolve_identity(credential)
        self._remember_identities(await self.repo.list_active())
        return created

    async def _resolve_identity(self, credential: Credential) -> str | None:
        try:
            await self.ensure_fresh(credential)
            identity = await self.api.get_my_channel_id(credential)
        except YouTubeAPIError as e:
            LOGGER.warning(f"Could not resolve identity of {credential.credential_id}: {e}")
            return None
        if identity:
            await self.repo.set_identity(credential.credential_id, identity)
            credential.bot_channel_id = identity
            self.state.bot_identities.add(identity)
            LOGGER.info(f"Credential {credential.credential_id} posts as {identity}")
        return identity

    async def setup_status(self) -> dict[str, Any]:
        credentials = await self.repo.list_active()
        configured = [c for c in credentials if c.configured]
        return {
            "configured": len(configured),
            "total": len(credentials),
            "usable": sum(1 for c in configured if not c.quota_exceeded),
            "credentials": [
                {
                    "credential_id": c.credential_id,
                    "priority": c.priority,
                    "configured": c.configured,
                    "quota_exceeded": c.quota_exceeded,
                    "bot_channel_id": c.bot_channel_id,
                    "last_used": c.last_used.isoformat() if c.last_used else None,
                }
                for c in credentials
            ],
        }

    async def oauth_urls(self, redirect_uri: str) -> list[dict[str, Any]]:
        """Consent URLs for credentials still waiting for authorization."""
        return [
            {
                "credential_id": c.credential_id,
                "priority": c.priority,
                "url": self.api.build_consent_url(
                    c.client_id, redirect_uri, OAUTH_SCOPES, state=c.credential_id
                ),
            }
            for c in await self.repo.list_active()
            if not c.configured
        ]

    async def complete_oauth(self, credential_id: str, code: str, redirect_uri: str) -> Credential:
        """Store the tokens of a finished consent flow and resolve the identity."""
        credential = await self.repo.get(credential_id)
        if credential is None:
            raise ValueError(f"Unknown credential: {credential_id}")

        result = await self.api.exchange_code(credential, code, redirect_uri)
        if not result.success or not result.access_token:
            raise YouTubeAPIError(f"Code exchange failed for {credential_id}: {result.error}")

        await self.repo.update_tokens(
            credential_id, result.access_token, result.refresh_token, result.expires_at
        )
        credential.access_token = result.access_token
        credential.refresh_token = result.refresh_token or credential.refresh_token
        credential.token_expiry = result.expires_at
        LOGGER.info(f"Credential {credential_id} authorized")

        await self._resolve_identity(credential)
        return credential
