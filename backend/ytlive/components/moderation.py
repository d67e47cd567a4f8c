"""Per-message pipeline: self filter, welcomes, exemptions, content policy, dispatch."""

from __future__ import annotations

import logging
import random
import re
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from shared.models.viewer import AdminStatus, Viewer, WelcomeStatus
from shared.repositories.channel import ChannelRepository
from shared.repositories.viewer import ViewerRepository
from ytlive.components import messages
from ytlive.components.commands import CommandDispatcher
from ytlive.components.messenger import ChatMessenger
from ytlive.core.state import EngineState
from ytlive.services.youtube_api import ChatMessage

if TYPE_CHECKING:
    from ytlive.core.config import EngineSettings

LOGGER: logging.Logger = logging.getLogger("Engine.Moderation")

URL_PATTERN = re.compile(r"https?://\S+", re.IGNORECASE)
REPEAT_THRESHOLD = 2


class Verdict(str, Enum):
    """What happened to a chat event."""

    SELF = "self"
    FREE_PASS = "free_pass"
    DROPPED = "dropped"
    EXEMPT = "exempt"
    MODERATED = "moderated"
    ACCEPTED = "accepted"


class ModerationEngine:
    """Runs each chat event through the ordered policy steps.

    The order is fixed: own messages are never moderated, greetings happen
    before any short-circuit, exempt viewers skip the content policy.
    """

    def __init__(
        self,
        state: EngineState,
        settings: EngineSettings,
        viewers: ViewerRepository,
        channels: ChannelRepository,
        messenger: ChatMessenger,
        dispatcher: CommandDispatcher,
    ) -> None:
        self.state = state
        self.settings = settings
        self.viewers = viewers
        self.channels = channels
        self.messenger = messenger
        self.dispatcher = dispatcher

    async def handle(self, channel_id: str, message: ChatMessage) -> Verdict:
        now = self.state.now()
        author_id = message.author_id

        if author_id in self.state.bot_identities:
            self.state.last_message_at[channel_id] = now
            return Verdict.SELF

        viewer = await self.viewers.get_or_create(channel_id, author_id, message.author_name, now)
        await self._greet(channel_id, viewer, message.author_name, now)

        if viewer.is_admin:
            await self._accept(channel_id, message, now)
            return Verdict.FREE_PASS

        if self.state.timeout_active(channel_id, author_id):
            LOGGER.debug(f"[{channel_id}] dropped message from timed out {message.author_name}")
            return Verdict.DROPPED

        if viewer.admin_status is AdminStatus.UNKNOWN:
            if self._is_moderator(channel_id, author_id):
                await self.viewers.set_admin_status(channel_id, author_id, AdminStatus.ADMIN)
                viewer.admin_status = AdminStatus.ADMIN
                await self._accept(channel_id, message, now)
                return Verdict.EXEMPT
            await self.viewers.set_admin_status(channel_id, author_id, AdminStatus.REGULAR)
            viewer.admin_status = AdminStatus.REGULAR

        channel = await self.channels.get_channel(channel_id)
        if channel is not None and channel.moderation_enabled:
            if self._violates_policy(channel_id, author_id, message.text):
                await self._punish(channel_id, message)
                return Verdict.MODERATED

        await self._accept(channel_id, message, now)
        return Verdict.ACCEPTED

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _greet(self, channel_id: str, viewer: Viewer, name: str, now: datetime) -> None:
        status = viewer.welcome_status
        if status is WelcomeStatus.UNKNOWN:
            return

        if status is WelcomeStatus.PENDING:
            await self.messenger.send(channel_id, random.choice(messages.WELCOME_TEMPLATES).format(name=name))
            await self.viewers.set_welcome_status(channel_id, viewer.viewer_id, WelcomeStatus.SENT)
            viewer.welcome_status = WelcomeStatus.SENT
            return

        if viewer.last_active is None:
            return
        away_minutes = int((now - viewer.last_active).total_seconds() // 60)
        if away_minutes >= self.settings.away_threshold_minutes:
            template = random.choice(messages.WELCOME_BACK_TEMPLATES)
            await self.messenger.send(channel_id, template.format(name=name, minutes=away_minutes))
            # the greeting closes the gap even if the message is dropped afterwards
            await self.viewers.touch(channel_id, viewer.viewer_id, name, now)
            viewer.last_active = now

    def _is_moderator(self, channel_id: str, author_id: str) -> bool:
        # the broadcaster's author id is the channel id
        if author_id == channel_id:
            return True
        return author_id in self.state.moderator_cache.get(channel_id, set())

    def _violates_policy(self, channel_id: str, author_id: str, text: str) -> bool:
        window = self.state.push_recent(channel_id, author_id, text)
        if window.count(text) >= REPEAT_THRESHOLD:
            return True
        return URL_PATTERN.search(text) is not None

    async def _punish(self, channel_id: str, message: ChatMessage) -> None:
        seconds = self.settings.timeout_seconds
        self.state.start_timeout(channel_id, message.author_id, seconds)
        LOGGER.info(f"[{channel_id}] moderating {message.author_name}: {message.text[:80]}")

        await self.messenger.delete(channel_id, message.message_id)
        await self.messenger.timeout(channel_id, message.author_id, seconds)
        await self.messenger.send(
            channel_id, messages.MODERATION_WARNING.format(name=message.author_name, seconds=seconds)
        )

    async def _accept(self, channel_id: str, message: ChatMessage, now: datetime) -> None:
        await self.viewers.touch(channel_id, message.author_id, message.author_name, now)
        self.state.last_message_at[channel_id] = now
        await self.dispatcher.dispatch(channel_id, message.author_id, message.author_name, message.text)
