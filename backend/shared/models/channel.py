"""Data model for the channels table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class Channel:
    """A registered YouTube channel the engine watches for live streams."""

    channel_id: str
    channel_name: str
    moderation_enabled: bool = False
    auto_message_text: str | None = None
    auto_message_interval: int | None = None
    auto_message_enabled: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def has_auto_message(self) -> bool:
        return bool(
            self.auto_message_enabled
            and self.auto_message_text
            and self.auto_message_interval
            and self.auto_message_interval > 0
        )
