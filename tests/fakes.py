"""In-memory stand-ins for the repositories and external services."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta

from shared.models.channel import Channel
from shared.models.credential import Credential
from shared.models.viewer import AdminStatus, Viewer, WelcomeStatus
from ytlive.services.youtube_api import ChatMessage, ChatPage, TokenRefreshResult

CHANNEL_ID = "UC_channel"
CHAT_ID = "chat-1"


def make_credential(credential_id: str, priority: int, **overrides) -> Credential:
    values = dict(
        credential_id=credential_id,
        client_id=f"{credential_id}-client",
        client_secret=f"{credential_id}-secret",
        api_key=f"{credential_id}-key",
        ai_api_key=f"{credential_id}-ai",
        access_token=f"{credential_id}-token",
        refresh_token=f"{credential_id}-refresh",
        priority=priority,
    )
    values.update(overrides)
    return Credential(**values)


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


# ----------------------------------------------------------------------
# Repositories
# ----------------------------------------------------------------------


class FakeCredentialRepository:
    def __init__(self, credentials: list[Credential] | None = None) -> None:
        self.rows: dict[str, Credential] = {c.credential_id: c for c in credentials or []}

    async def get(self, credential_id: str) -> Credential | None:
        row = self.rows.get(credential_id)
        return replace(row) if row else None

    async def list_active(self) -> list[Credential]:
        active = [replace(c) for c in self.rows.values() if c.active]
        return sorted(active, key=lambda c: (c.priority, c.credential_id))

    async def count(self) -> int:
        return len(self.rows)

    async def create(self, credential: Credential) -> None:
        self.rows.setdefault(credential.credential_id, replace(credential))

    async def update_tokens(self, credential_id, access_token, refresh_token, token_expiry) -> None:
        row = self.rows[credential_id]
        row.access_token = access_token
        if refresh_token is not None:
            row.refresh_token = refresh_token
        row.token_expiry = token_expiry

    async def clear_tokens(self, credential_id: str) -> None:
        row = self.rows[credential_id]
        row.access_token = row.refresh_token = row.token_expiry = None

    async def set_identity(self, credential_id: str, bot_channel_id: str) -> None:
        self.rows[credential_id].bot_channel_id = bot_channel_id

    async def mark_quota_exceeded(self, credential_id: str, at: datetime) -> None:
        self.rows[credential_id].quota_exceeded = True
        self.rows[credential_id].quota_exceeded_at = at

    async def clear_quota(self, credential_ids: list[str]) -> None:
        for credential_id in credential_ids:
            self.rows[credential_id].quota_exceeded = False
            self.rows[credential_id].quota_exceeded_at = None

    async def touch_last_used(self, credential_id: str, at: datetime) -> None:
        self.rows[credential_id].last_used = at


class FakeChannelRepository:
    def __init__(self, channels: list[Channel] | None = None) -> None:
        self.rows: dict[str, Channel] = {c.channel_id: c for c in channels or []}

    async def get_channel(self, channel_id: str) -> Channel | None:
        row = self.rows.get(channel_id)
        return replace(row) if row else None

    async def list_channels(self) -> list[Channel]:
        return [replace(c) for c in self.rows.values()]

    async def upsert_channel(self, channel_id: str, channel_name: str) -> None:
        if channel_id in self.rows:
            self.rows[channel_id].channel_name = channel_name
        else:
            self.rows[channel_id] = Channel(channel_id=channel_id, channel_name=channel_name)

    async def set_moderation(self, channel_id: str, enabled: bool) -> Channel | None:
        row = self.rows.get(channel_id)
        if row is None:
            return None
        row.moderation_enabled = enabled
        return replace(row)

    async def set_auto_message(self, channel_id, *, text, interval_minutes, enabled) -> Channel | None:
        row = self.rows.get(channel_id)
        if row is None:
            return None
        row.auto_message_text = text
        row.auto_message_interval = interval_minutes
        row.auto_message_enabled = enabled
        return replace(row)

    def invalidate(self, channel_id: str) -> None:
        pass


class FakeViewerRepository:
    def __init__(self) -> None:
        self.rows: dict[tuple[str, str], Viewer] = {}

    def add(self, viewer: Viewer) -> Viewer:
        self.rows[(viewer.channel_id, viewer.viewer_id)] = viewer
        return viewer

    async def get_viewer(self, channel_id: str, viewer_id: str) -> Viewer | None:
        row = self.rows.get((channel_id, viewer_id))
        return replace(row) if row else None

    async def get_or_create(self, channel_id, viewer_id, username, at) -> Viewer:
        row = self.rows.get((channel_id, viewer_id))
        if row is None:
            row = self.add(Viewer(channel_id, viewer_id, username, last_active=at))
        return replace(row)

    async def touch(self, channel_id, viewer_id, username, at) -> None:
        row = self.rows[(channel_id, viewer_id)]
        row.last_active = at
        row.username = username

    async def set_welcome_status(self, channel_id, viewer_id, status: WelcomeStatus) -> None:
        self.rows[(channel_id, viewer_id)].welcome_status = status

    async def set_admin_status(self, channel_id, viewer_id, status: AdminStatus) -> None:
        self.rows[(channel_id, viewer_id)].admin_status = status

    async def reset_session_flags(self, channel_id: str) -> int:
        count = 0
        for (row_channel, _), row in self.rows.items():
            if row_channel != channel_id:
                continue
            if row.welcome_status is not WelcomeStatus.UNKNOWN:
                row.welcome_status = WelcomeStatus.PENDING
            row.admin_status = AdminStatus.UNKNOWN
            count += 1
        return count

    async def award_active(self, channel_id, since, points, minutes) -> int:
        count = 0
        for (row_channel, _), row in self.rows.items():
            if row_channel == channel_id and row.last_active and row.last_active >= since:
                row.points += points
                row.watch_minutes += minutes
                count += 1
        return count

    async def add_points(self, channel_id, viewer_id, delta) -> int:
        row = self.rows[(channel_id, viewer_id)]
        row.points = max(row.points + delta, 0)
        return row.points

    async def top_by_points(self, channel_id, limit=5) -> list[Viewer]:
        rows = [r for (c, _), r in self.rows.items() if c == channel_id]
        return [replace(r) for r in sorted(rows, key=lambda r: (-r.points, r.username))[:limit]]

    async def top_by_watch_minutes(self, channel_id, limit=5) -> list[Viewer]:
        rows = [r for (c, _), r in self.rows.items() if c == channel_id]
        return [replace(r) for r in sorted(rows, key=lambda r: (-r.watch_minutes, r.username))[:limit]]


# ----------------------------------------------------------------------
# External services
# ----------------------------------------------------------------------


class FakeYouTubeAPI:
    """Records every call; ``fail(method, exc)`` queues an error for the next call."""

    def __init__(self) -> None:
        self.live_videos: dict[str, str] = {}
        self.chat_ids: dict[str, str] = {}
        self.moderators: dict[str, set[str]] = {}
        self.identities: dict[str, str] = {}
        self.pages: list[ChatPage] = []
        self.calls: list[tuple[str, str, tuple]] = []
        self.sent: list[tuple[str, str]] = []
        self.deleted: list[str] = []
        self.timeouts: list[tuple[str, int]] = []
        self.refresh_results: dict[str, TokenRefreshResult] = {}
        self.exchange_results: dict[str, TokenRefreshResult] = {}
        self._errors: dict[str, list[Exception]] = defaultdict(list)
        self.closed = False

    def fail(self, method: str, exc: Exception) -> None:
        self._errors[method].append(exc)

    async def _record(self, method: str, credential: Credential, *args) -> None:
        self.calls.append((method, credential.credential_id, args))
        # yield like a network call would
        await asyncio.sleep(0)
        if self._errors[method]:
            raise self._errors[method].pop(0)

    def credentials_used(self, method: str) -> list[str]:
        return [credential_id for name, credential_id, _ in self.calls if name == method]

    async def find_live_video(self, credential, channel_id):
        await self._record("find_live_video", credential, channel_id)
        return self.live_videos.get(channel_id)

    async def get_live_chat_id(self, credential, video_id):
        await self._record("get_live_chat_id", credential, video_id)
        return self.chat_ids.get(video_id)

    async def get_my_channel_id(self, credential):
        await self._record("get_my_channel_id", credential)
        return self.identities.get(credential.credential_id)

    async def list_chat_messages(self, credential, live_chat_id, page_token=None, *, cursor_only=False):
        await self._record("list_chat_messages", credential, live_chat_id, page_token, cursor_only)
        if cursor_only:
            return ChatPage(next_page_token="cursor-0")
        if self.pages:
            return self.pages.pop(0)
        return ChatPage(next_page_token=page_token)

    async def send_message(self, credential, live_chat_id, text):
        await self._record("send_message", credential, live_chat_id, text)
        self.sent.append((live_chat_id, text))
        return f"msg-{len(self.sent)}"

    async def delete_message(self, credential, message_id):
        await self._record("delete_message", credential, message_id)
        self.deleted.append(message_id)

    async def list_moderators(self, credential, live_chat_id):
        await self._record("list_moderators", credential, live_chat_id)
        return set(self.moderators.get(live_chat_id, set()))

    async def timeout_user(self, credential, live_chat_id, channel_id, seconds):
        await self._record("timeout_user", credential, live_chat_id, channel_id, seconds)
        self.timeouts.append((channel_id, seconds))

    @staticmethod
    def build_consent_url(client_id, redirect_uri, scopes, state=None):
        return f"https://consent.test/?client_id={client_id}&state={state}"

    async def exchange_code(self, credential, code, redirect_uri):
        return self.exchange_results.get(code, TokenRefreshResult(success=False, error="bad code"))

    async def refresh_access_token(self, credential):
        self.calls.append(("refresh_access_token", credential.credential_id, ()))
        return self.refresh_results.get(
            credential.credential_id, TokenRefreshResult(success=False, error="no refresh")
        )

    async def close(self):
        self.closed = True


class FakeAI:
    def __init__(self, answer: str = "Forty-two.") -> None:
        self.answer_text = answer
        self.error: Exception | None = None
        self.questions: list[tuple[str, str]] = []

    async def answer(self, question: str, api_key: str) -> str:
        self.questions.append((question, api_key))
        if self.error is not None:
            raise self.error
        return self.answer_text

    async def close(self) -> None:
        pass


def chat(author_id: str, text: str, *, name: str | None = None, message_id: str | None = None) -> ChatMessage:
    chat.counter += 1  # type: ignore[attr-defined]
    return ChatMessage(
        message_id=message_id or f"m{chat.counter}",  # type: ignore[attr-defined]
        author_id=author_id,
        author_name=name or author_id,
        text=text,
    )


chat.counter = 0  # type: ignore[attr-defined]
