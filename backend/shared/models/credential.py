"""Data model for the credentials table (one Google Cloud project each)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class Credential:
    """API credential set shared by every channel through the pool.

    ``access_token`` / ``refresh_token`` / ``token_expiry`` form the OAuth
    triple. ``bot_channel_id`` is the YouTube channel the tokens post as.
    """

    credential_id: str
    client_id: str
    client_secret: str
    api_key: str
    ai_api_key: str = ""
    access_token: str | None = None
    refresh_token: str | None = None
    token_expiry: datetime | None = None
    bot_channel_id: str | None = None
    active: bool = True
    priority: int = 1
    quota_exceeded: bool = False
    quota_exceeded_at: datetime | None = None
    last_used: datetime | None = None
    created_at: datetime | None = None

    @property
    def configured(self) -> bool:
        """True once the OAuth handshake has produced an access token."""
        return bool(self.access_token)

    def token_expired(self, now: datetime) -> bool:
        return self.token_expiry is not None and now >= self.token_expiry
