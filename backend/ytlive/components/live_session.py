"""Per-channel live detection and session lifecycle (IDLE -> SEARCHING -> LIVE -> IDLE)."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from shared.repositories.channel import ChannelRepository
from shared.repositories.viewer import ViewerRepository
from ytlive.components.chat_poller import ChatIngestionLoop
from ytlive.components.credential_pool import CredentialPool, NoCredentialAvailable
from ytlive.components.economy import EconomyEngine
from ytlive.components.messages import ONBOARDING_MESSAGE
from ytlive.components.messenger import ChatMessenger
from ytlive.core.state import EngineState, LiveSession
from ytlive.core.tasks import RepeatingTask, seconds_until_boundary
from ytlive.services.youtube_api import NotFoundError, YouTubeAPIClient, YouTubeAPIError

if TYPE_CHECKING:
    from ytlive.core.config import EngineSettings

LOGGER: logging.Logger = logging.getLogger("Engine.LiveSession")


class LiveSessionManager:
    """Finds live broadcasts and owns each channel's session and timers."""

    def __init__(
        self,
        state: EngineState,
        settings: EngineSettings,
        pool: CredentialPool,
        api: YouTubeAPIClient,
        messenger: ChatMessenger,
        viewers: ViewerRepository,
        channels: ChannelRepository,
        poller: ChatIngestionLoop,
        economy: EconomyEngine,
    ) -> None:
        self.state = state
        self.settings = settings
        self.pool = pool
        self.api = api
        self.messenger = messenger
        self.viewers = viewers
        self.channels = channels
        self.poller = poller
        self.economy = economy

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    async def _find_live_chat(self, channel_id: str) -> tuple[str | None, str | None]:
        """Return (video_id, live_chat_id); both None when not live."""
        try:
            video_id = await self.pool.call(lambda c: self.api.find_live_video(c, channel_id))
            if not video_id:
                return None, None
            chat_id = await self.pool.call(lambda c: self.api.get_live_chat_id(c, video_id))
        except NotFoundError:
            return None, None
        return video_id, chat_id

    async def check_and_start_live(self, channel_id: str) -> bool:
        """Search for a live broadcast and start a session for it.

        Returns True when the channel has a live session afterwards. A search
        that finds nothing tears down an existing session; a failed search
        leaves it untouched.
        """
        if self.state.paused:
            LOGGER.debug(f"[{channel_id}] engine paused, skipping live check")
            return False

        try:
            video_id, chat_id = await self._find_live_chat(channel_id)
        except (YouTubeAPIError, NoCredentialAvailable) as e:
            LOGGER.warning(f"[{channel_id}] live check failed: {type(e).__name__}: {e}")
            return channel_id in self.state.sessions

        if not chat_id:
            if channel_id in self.state.sessions:
                LOGGER.info(f"[{channel_id}] broadcast no longer live")
                self.stop_session(channel_id)
            else:
                LOGGER.debug(f"[{channel_id}] not live")
            return False

        # Check and register without awaiting in between
        if channel_id in self.state.sessions or self.state.paused:
            return channel_id in self.state.sessions
        session = LiveSession(
            channel_id=channel_id,
            live_chat_id=chat_id,
            video_id=video_id,
            started_at=self.state.now(),
        )
        self.state.sessions[channel_id] = session
        LOGGER.info(f"[{channel_id}] live on video {video_id}, chat {chat_id}")

        try:
            await self._enter_live(session)
        except Exception as e:
            LOGGER.exception(f"[{channel_id}] failed to start session: {type(e).__name__}: {e}")
            self.end_session(session)
            return False
        return self.state.is_current(session)

    async def _enter_live(self, session: LiveSession) -> None:
        channel_id = session.channel_id

        reset = await self.viewers.reset_session_flags(channel_id)
        LOGGER.debug(f"[{channel_id}] reset session flags of {reset} viewer(s)")
        if not self.state.is_current(session):
            return

        moderators = await self._load_moderators(session)
        if not self.state.is_current(session):
            return
        self.state.moderator_cache[channel_id] = moderators

        await self.messenger.send(channel_id, ONBOARDING_MESSAGE)
        if not self.state.is_current(session):
            return

        session.poll_task = RepeatingTask(
            f"poll:{channel_id}",
            lambda: self._poll_tick(session),
            self.settings.poll_interval_seconds,
        ).start()

        award_minutes = self.settings.award_interval_minutes
        session.award_task = RepeatingTask(
            f"award:{channel_id}",
            lambda: self.economy.award_points(channel_id),
            award_minutes * 60,
            initial_delay=seconds_until_boundary(self.state.now().astimezone(), award_minutes),
        ).start()

        channel = await self.channels.get_channel(channel_id)
        if not self.state.is_current(session):
            return
        if channel is not None and channel.has_auto_message:
            self.schedule_auto_message(
                channel_id, channel.auto_message_text or "", channel.auto_message_interval or 0
            )
        LOGGER.info(f"[{channel_id}] session started")

    async def _load_moderators(self, session: LiveSession) -> set[str]:
        try:
            moderators = await self.pool.call(
                lambda c: self.api.list_moderators(c, session.live_chat_id)
            )
        except (YouTubeAPIError, NoCredentialAvailable) as e:
            LOGGER.warning(f"[{session.channel_id}] could not load moderators: {e}")
            return set()
        LOGGER.info(f"[{session.channel_id}] cached {len(moderators)} moderator(s)")
        return moderators

    async def _poll_tick(self, session: LiveSession) -> None:
        if not await self.poller.poll(session):
            self.end_session(session)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def stop_session(self, channel_id: str) -> bool:
        """Cancel the channel's timers and forget its session state."""
        session = self.state.sessions.pop(channel_id, None)
        if session is None:
            return False
        session.cancel_tasks()
        self.state.forget_channel(channel_id)
        LOGGER.info(f"[{channel_id}] session stopped")
        return True

    def end_session(self, session: LiveSession) -> bool:
        """Stop *session* only if it is still the registered one."""
        if not self.state.is_current(session):
            return False
        return self.stop_session(session.channel_id)

    def stop_all(self) -> int:
        return sum(self.stop_session(channel_id) for channel_id in list(self.state.sessions))

    # ------------------------------------------------------------------
    # Sweep / auto message
    # ------------------------------------------------------------------

    async def check_all(self) -> dict[str, bool]:
        """Live-check every registered channel without a session."""
        if self.state.paused:
            return {}
        results: dict[str, bool] = {}
        for channel in await self.channels.list_channels():
            if channel.channel_id in self.state.sessions:
                continue
            try:
                results[channel.channel_id] = await self.check_and_start_live(channel.channel_id)
            except Exception as e:
                LOGGER.warning(f"[{channel.channel_id}] live check error: {type(e).__name__}: {e}")
                results[channel.channel_id] = False
        live = sum(results.values())
        if results:
            LOGGER.info(f"Live check: {live}/{len(results)} channel(s) went live")
        return results

    def schedule_auto_message(self, channel_id: str, text: str, interval_minutes: int) -> bool:
        """(Re)start the repeating auto message of a live channel."""
        session = self.state.sessions.get(channel_id)
        if session is None:
            return False
        if session.auto_message_task is not None:
            session.auto_message_task.cancel()
            session.auto_message_task = None
        if not text or interval_minutes <= 0:
            return False

        session.auto_message_task = RepeatingTask(
            f"auto_message:{channel_id}",
            lambda: self._send_auto_message(session, text),
            interval_minutes * 60,
        ).start()
        LOGGER.info(f"[{channel_id}] auto message every {interval_minutes} minute(s)")
        return True

    async def _send_auto_message(self, session: LiveSession, text: str) -> None:
        if not self.state.is_current(session):
            return
        channel_id = session.channel_id
        last = self.state.last_message_at.get(channel_id)
        window = timedelta(minutes=self.settings.auto_message_activity_minutes)
        if last is None or self.state.now() - last > window:
            LOGGER.info(f"[{channel_id}] skipping auto message, chat inactive")
            return
        await self.messenger.send(channel_id, text)
