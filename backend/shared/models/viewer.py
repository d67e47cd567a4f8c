"""Data model for the viewers table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class WelcomeStatus(str, Enum):
    """Welcome-message state of a viewer.

    UNKNOWN  viewer opted out, welcome logic never runs
    PENDING  greet on the next message
    SENT     greeted this session, eligible for a welcome-back
    """

    UNKNOWN = "unknown"
    PENDING = "pending"
    SENT = "sent"


class AdminStatus(str, Enum):
    """Cached moderator/owner resolution, reset at every session start."""

    UNKNOWN = "unknown"
    ADMIN = "admin"
    REGULAR = "regular"


@dataclass
class Viewer:
    """Per-channel viewer record (points economy + moderation flags)."""

    channel_id: str
    viewer_id: str
    username: str
    points: int = 0
    watch_minutes: int = 0
    last_active: datetime | None = None
    admin_status: AdminStatus = AdminStatus.UNKNOWN
    welcome_status: WelcomeStatus = WelcomeStatus.PENDING
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        # asyncpg hands back plain strings for the TEXT columns
        self.admin_status = AdminStatus(self.admin_status)
        self.welcome_status = WelcomeStatus(self.welcome_status)

    @property
    def is_admin(self) -> bool:
        return self.admin_status is AdminStatus.ADMIN
