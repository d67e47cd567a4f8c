"""In-memory engine state shared by every component.

Nothing here is persisted; a restart starts from empty maps and re-detects
live broadcasts.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from ytlive.core.tasks import RepeatingTask

RECENT_WINDOW = 5

ViewerKey = tuple[str, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(eq=False)
class LiveSession:
    """A channel whose live chat is being polled.

    Identity matters: components hold on to the object they started with and
    compare it against ``EngineState.sessions`` after every await.
    """

    channel_id: str
    live_chat_id: str
    video_id: str | None = None
    next_page_token: str | None = None
    first_poll: bool = True
    started_at: datetime | None = None
    poll_task: RepeatingTask | None = None
    award_task: RepeatingTask | None = None
    auto_message_task: RepeatingTask | None = None

    def cancel_tasks(self) -> None:
        for task in (self.poll_task, self.award_task, self.auto_message_task):
            if task is not None:
                task.cancel()

    def summary(self) -> dict:
        return {
            "channel_id": self.channel_id,
            "live_chat_id": self.live_chat_id,
            "video_id": self.video_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "auto_message": self.auto_message_task is not None,
        }


@dataclass
class EngineState:
    """Sessions, moderator cache, cooldowns and other per-process maps."""

    clock: Callable[[], datetime] = utcnow
    initialized: bool = False
    paused: bool = False
    sessions: dict[str, LiveSession] = field(default_factory=dict)
    moderator_cache: dict[str, set[str]] = field(default_factory=dict)
    bot_identities: set[str] = field(default_factory=set)
    last_message_at: dict[str, datetime] = field(default_factory=dict)
    recent_messages: dict[ViewerKey, deque[str]] = field(default_factory=dict)
    timeouts: dict[ViewerKey, datetime] = field(default_factory=dict)
    # (command, channel_id, viewer_id) -> cooldown expiry
    cooldowns: dict[tuple[str, str, str], datetime] = field(default_factory=dict)

    def now(self) -> datetime:
        return self.clock()

    # ==================== Sessions ====================

    def is_current(self, session: LiveSession) -> bool:
        """True while *session* is still the registered session of its channel."""
        return self.sessions.get(session.channel_id) is session

    def forget_channel(self, channel_id: str) -> None:
        """Drop per-session moderation state of a channel."""
        self.moderator_cache.pop(channel_id, None)
        for key in [k for k in self.recent_messages if k[0] == channel_id]:
            del self.recent_messages[key]

    # ==================== Moderation ====================

    def push_recent(self, channel_id: str, viewer_id: str, text: str) -> deque[str]:
        window = self.recent_messages.get((channel_id, viewer_id))
        if window is None:
            window = self.recent_messages[(channel_id, viewer_id)] = deque(maxlen=RECENT_WINDOW)
        window.append(text)
        return window

    def timeout_active(self, channel_id: str, viewer_id: str) -> bool:
        until = self.timeouts.get((channel_id, viewer_id))
        if until is None:
            return False
        if self.now() < until:
            return True
        del self.timeouts[(channel_id, viewer_id)]
        return False

    def start_timeout(self, channel_id: str, viewer_id: str, seconds: int) -> datetime:
        until = self.now() + timedelta(seconds=seconds)
        self.timeouts[(channel_id, viewer_id)] = until
        return until

    # ==================== Cooldowns ====================

    def cooldown_remaining(self, command: str, channel_id: str, viewer_id: str) -> float:
        key = (command, channel_id, viewer_id)
        until = self.cooldowns.get(key)
        if until is None:
            return 0.0
        remaining = (until - self.now()).total_seconds()
        if remaining > 0:
            return remaining
        del self.cooldowns[key]
        return 0.0

    def start_cooldown(self, command: str, channel_id: str, viewer_id: str, seconds: int) -> None:
        self.cooldowns[(command, channel_id, viewer_id)] = self.now() + timedelta(seconds=seconds)

    def prune_expired(self) -> int:
        """Drop elapsed timeouts and cooldowns of viewers who never came back."""
        now = self.now()
        pruned = 0
        for expiries in (self.timeouts, self.cooldowns):
            expired = [key for key, until in expiries.items() if until <= now]
            for key in expired:
                del expiries[key]
            pruned += len(expired)
        return pruned
