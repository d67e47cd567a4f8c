"""YouTube Data API v3 and Google OAuth client.

Every call takes the credential to act with; selecting and rotating
credentials is the pool's job. Error responses are mapped onto a small
exception hierarchy:

- QuotaExceededError: the credential's daily quota is spent, rotate
- PermissionDeniedError: the chat refuses us (ended, disabled, forbidden)
- NotFoundError: chat or video is gone
- UnauthorizedError: the access token was rejected, refresh it
- YouTubeAPIError: anything else, treated as transient
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

import httpx

from shared.models.credential import Credential

logger = logging.getLogger(__name__)

API_BASE = "https://www.googleapis.com/youtube/v3"
OAUTH_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"

QUOTA_REASONS = {"quotaExceeded", "dailyLimitExceeded", "rateLimitExceeded", "userRateLimitExceeded"}
PERMISSION_REASONS = {"liveChatEnded", "liveChatDisabled", "forbidden", "insufficientPermissions"}

# Cursor-only request: no message bodies, just the page token
CURSOR_ONLY_FIELDS = "nextPageToken"

# OAuth error codes after which retrying the refresh token cannot succeed
REVOKED_GRANT_ERRORS = {"invalid_grant", "invalid_client", "unauthorized_client"}


# ------------------------------------------------------------------
# Errors
# ------------------------------------------------------------------


class YouTubeAPIError(Exception):
    """Transient or unclassified API failure."""

    def __init__(self, message: str, *, status: int | None = None, reason: str | None = None):
        super().__init__(message)
        self.status = status
        self.reason = reason


class QuotaExceededError(YouTubeAPIError):
    pass


class PermissionDeniedError(YouTubeAPIError):
    pass


class NotFoundError(YouTubeAPIError):
    pass


class UnauthorizedError(YouTubeAPIError):
    pass


# ------------------------------------------------------------------
# Payloads
# ------------------------------------------------------------------


@dataclass
class TokenRefreshResult:
    """Result of a code exchange or token refresh."""

    success: bool
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None
    error: str | None = None
    # the grant itself is gone; only a new consent flow helps
    revoked: bool = False


@dataclass
class ChatMessage:
    message_id: str
    author_id: str
    author_name: str
    text: str
    published_at: str | None = None

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> ChatMessage:
        snippet = item.get("snippet", {})
        author = item.get("authorDetails", {})
        text = snippet.get("displayMessage") or snippet.get("textMessageDetails", {}).get(
            "messageText", ""
        )
        return cls(
            message_id=item.get("id", ""),
            author_id=author.get("channelId") or snippet.get("authorChannelId", ""),
            author_name=author.get("displayName", ""),
            text=text,
            published_at=snippet.get("publishedAt"),
        )


@dataclass
class ChatPage:
    messages: list[ChatMessage] = field(default_factory=list)
    next_page_token: str | None = None


def _error_reason(response: httpx.Response) -> tuple[str | None, str]:
    try:
        error = response.json().get("error", {})
    except ValueError:
        return None, response.text[:200]
    errors = error.get("errors") or [{}]
    return errors[0].get("reason"), error.get("message", "")


def raise_for_error(response: httpx.Response) -> None:
    """Map a non-2xx API response onto the exception hierarchy."""
    if response.is_success:
        return

    status = response.status_code
    reason, message = _error_reason(response)
    detail = f"HTTP {status} {reason or ''}: {message}".strip()

    if reason in QUOTA_REASONS or status == 429:
        raise QuotaExceededError(detail, status=status, reason=reason)
    if status == 401:
        raise UnauthorizedError(detail, status=status, reason=reason)
    if status == 404:
        raise NotFoundError(detail, status=status, reason=reason)
    if status == 403 or reason in PERMISSION_REASONS:
        raise PermissionDeniedError(detail, status=status, reason=reason)
    raise YouTubeAPIError(detail, status=status, reason=reason)


class YouTubeAPIClient:
    """Thin async wrapper over the endpoints the engine needs.

    Shares one httpx client for connection reuse.
    """

    def __init__(self, http: httpx.AsyncClient | None = None, timeout: float = 10.0):
        self._http = http or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """Close the shared HTTP client. Call on shutdown."""
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _auth(self, credential: Credential, params: dict[str, Any]) -> dict[str, str]:
        if credential.access_token:
            return {"Authorization": f"Bearer {credential.access_token}"}
        params["key"] = credential.api_key
        return {}

    async def _request(
        self,
        method: str,
        path: str,
        credential: Credential,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        params = dict(params or {})
        headers = self._auth(credential, params)
        try:
            response = await self._http.request(
                method, f"{API_BASE}/{path}", params=params, json=json, headers=headers
            )
        except httpx.HTTPError as e:
            raise YouTubeAPIError(f"{method} /{path} transport error: {type(e).__name__}: {e}")

        raise_for_error(response)
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    # ------------------------------------------------------------------
    # Broadcast discovery
    # ------------------------------------------------------------------

    async def find_live_video(self, credential: Credential, channel_id: str) -> str | None:
        """Video id of the channel's current live broadcast, if any."""
        data = await self._request(
            "GET",
            "search",
            credential,
            params={
                "part": "id",
                "channelId": channel_id,
                "eventType": "live",
                "type": "video",
                "maxResults": 1,
            },
        )
        items = data.get("items", [])
        if not items:
            return None
        return items[0].get("id", {}).get("videoId")

    async def get_live_chat_id(self, credential: Credential, video_id: str) -> str | None:
        data = await self._request(
            "GET",
            "videos",
            credential,
            params={"part": "liveStreamingDetails", "id": video_id},
        )
        items = data.get("items", [])
        if not items:
            return None
        return items[0].get("liveStreamingDetails", {}).get("activeLiveChatId")

    async def get_my_channel_id(self, credential: Credential) -> str | None:
        """Channel the credential's tokens act as."""
        data = await self._request(
            "GET", "channels", credential, params={"part": "id", "mine": "true"}
        )
        items = data.get("items", [])
        return items[0].get("id") if items else None

    # ------------------------------------------------------------------
    # Live chat
    # ------------------------------------------------------------------

    async def list_chat_messages(
        self,
        credential: Credential,
        live_chat_id: str,
        page_token: str | None = None,
        *,
        cursor_only: bool = False,
    ) -> ChatPage:
        params: dict[str, Any] = {"liveChatId": live_chat_id, "part": "snippet,authorDetails"}
        if page_token:
            params["pageToken"] = page_token
        if cursor_only:
            params["part"] = "id"
            params["fields"] = CURSOR_ONLY_FIELDS

        data = await self._request("GET", "liveChat/messages", credential, params=params)
        page = ChatPage(next_page_token=data.get("nextPageToken"))
        if not cursor_only:
            page.messages = [
                ChatMessage.from_item(item)
                for item in data.get("items", [])
                if item.get("snippet", {}).get("type", "textMessageEvent") == "textMessageEvent"
            ]
        return page

    async def send_message(self, credential: Credential, live_chat_id: str, text: str) -> str:
        data = await self._request(
            "POST",
            "liveChat/messages",
            credential,
            params={"part": "snippet"},
            json={
                "snippet": {
                    "liveChatId": live_chat_id,
                    "type": "textMessageEvent",
                    "textMessageDetails": {"messageText": text},
                }
            },
        )
        return data.get("id", "")

    async def delete_message(self, credential: Credential, message_id: str) -> None:
        await self._request("DELETE", "liveChat/messages", credential, params={"id": message_id})

    async def list_moderators(self, credential: Credential, live_chat_id: str) -> set[str]:
        """Every moderator channel id of the chat, following pagination."""
        moderators: set[str] = set()
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {
                "liveChatId": live_chat_id,
                "part": "snippet",
                "maxResults": 50,
            }
            if page_token:
                params["pageToken"] = page_token
            data = await self._request("GET", "liveChat/moderators", credential, params=params)
            for item in data.get("items", []):
                channel_id = item.get("snippet", {}).get("moderatorDetails", {}).get("channelId")
                if channel_id:
                    moderators.add(channel_id)
            page_token = data.get("nextPageToken")
            if not page_token:
                return moderators

    async def timeout_user(
        self, credential: Credential, live_chat_id: str, channel_id: str, seconds: int
    ) -> None:
        await self._request(
            "POST",
            "liveChat/bans",
            credential,
            params={"part": "snippet"},
            json={
                "snippet": {
                    "liveChatId": live_chat_id,
                    "type": "temporary",
                    "banDurationSeconds": seconds,
                    "bannedUserDetails": {"channelId": channel_id},
                }
            },
        )

    # ------------------------------------------------------------------
    # OAuth flow
    # ------------------------------------------------------------------

    @staticmethod
    def build_consent_url(
        client_id: str, redirect_uri: str, scopes: list[str], state: str | None = None
    ) -> str:
        """Google consent screen URL requesting offline access."""
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{OAUTH_AUTHORIZE_URL}?{urlencode(params)}"

    async def _token_request(self, data: dict[str, str]) -> TokenRefreshResult:
        try:
            response = await self._http.post(OAUTH_TOKEN_URL, data=data)
        except httpx.TimeoutException:
            logger.error("Timeout while talking to the Google token endpoint")
            return TokenRefreshResult(success=False, error="timeout")
        except httpx.HTTPError as e:
            logger.error(f"Token request failed: {type(e).__name__}: {e}")
            return TokenRefreshResult(success=False, error=type(e).__name__)

        if response.status_code != 200:
            try:
                body = response.json()
            except ValueError:
                body = {}
            error_msg = body.get("error_description") or body.get("error") or f"HTTP {response.status_code}"
            logger.error(f"Token request rejected: {error_msg}")
            return TokenRefreshResult(
                success=False, error=error_msg, revoked=body.get("error") in REVOKED_GRANT_ERRORS
            )

        payload = response.json()
        access_token = payload.get("access_token")
        if not access_token:
            return TokenRefreshResult(success=False, error="No access_token in response")

        expires_in = int(payload.get("expires_in", 3600))
        return TokenRefreshResult(
            success=True,
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        )

    async def exchange_code(
        self, credential: Credential, code: str, redirect_uri: str
    ) -> TokenRefreshResult:
        """Exchange an authorization code using the credential's own client."""
        return await self._token_request(
            {
                "client_id": credential.client_id,
                "client_secret": credential.client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
            }
        )

    async def refresh_access_token(self, credential: Credential) -> TokenRefreshResult:
        """Refresh the credential's access token.

        Google usually omits the refresh token on refresh; callers keep the
        old one in that case.
        """
        if not credential.refresh_token:
            return TokenRefreshResult(success=False, error="No refresh token stored", revoked=True)
        result = await self._token_request(
            {
                "client_id": credential.client_id,
                "client_secret": credential.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": credential.refresh_token,
            }
        )
        if result.success:
            logger.debug(f"Refreshed access token for {credential.credential_id}")
        return result
