"""Engine controller: wires components together and exposes the control interface."""

from __future__ import annotations

import logging
from typing import Any

import asyncpg

from shared.models.channel import Channel
from shared.models.credential import Credential
from shared.repositories.channel import ChannelRepository
from shared.repositories.credential import CredentialRepository
from shared.repositories.viewer import ViewerRepository
from ytlive.components.chat_poller import ChatIngestionLoop
from ytlive.components.commands import CommandDispatcher
from ytlive.components.credential_pool import CredentialPool
from ytlive.components.economy import EconomyEngine
from ytlive.components.live_session import LiveSessionManager
from ytlive.components.messenger import ChatMessenger
from ytlive.components.moderation import ModerationEngine
from ytlive.core.config import EngineSettings
from ytlive.core.state import EngineState
from ytlive.core.tasks import RepeatingTask
from ytlive.services.ai import AIAnswerService
from ytlive.services.youtube_api import YouTubeAPIClient

LOGGER: logging.Logger = logging.getLogger("Engine")


class Bot:
    """Owns the engine state and every component built on it."""

    def __init__(
        self,
        *,
        settings: EngineSettings,
        credentials: CredentialRepository,
        channels: ChannelRepository,
        viewers: ViewerRepository,
        api: YouTubeAPIClient,
        ai: AIAnswerService,
        state: EngineState | None = None,
    ) -> None:
        self.settings = settings
        self.state = state or EngineState()
        self.channels = channels
        self.viewers = viewers
        self.api = api
        self.ai = ai

        self.pool = CredentialPool(credentials, api, self.state)
        self.messenger = ChatMessenger(self.state, self.pool, api)
        self.economy = EconomyEngine(self.state, settings, viewers, self.messenger, self.pool, ai)
        self.dispatcher = CommandDispatcher(self.economy)
        self.moderation = ModerationEngine(
            self.state, settings, viewers, channels, self.messenger, self.dispatcher
        )
        self.poller = ChatIngestionLoop(self.state, self.pool, api, self.moderation)
        self.sessions = LiveSessionManager(
            self.state,
            settings,
            self.pool,
            api,
            self.messenger,
            viewers,
            channels,
            self.poller,
            self.economy,
        )
        self._live_check_task: RepeatingTask | None = None

    @classmethod
    def from_pool(cls, settings: EngineSettings, db_pool: asyncpg.Pool) -> Bot:
        return cls(
            settings=settings,
            credentials=CredentialRepository(db_pool),
            channels=ChannelRepository(db_pool),
            viewers=ViewerRepository(db_pool),
            api=YouTubeAPIClient(),
            ai=AIAnswerService(settings.ai_base_url, settings.ai_model, settings.ai_max_chars),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, credential_configs: list[Credential]) -> None:
        await self.pool.bootstrap(credential_configs)
        self.state.initialized = True
        LOGGER.info("Engine initialized")

        await self.sessions.check_all()
        self._live_check_task = RepeatingTask(
            "live_check",
            self._scheduled_live_check,
            self.settings.live_check_interval_seconds,
        ).start()

    async def _scheduled_live_check(self) -> None:
        pruned = self.state.prune_expired()
        if pruned:
            LOGGER.debug(f"Pruned {pruned} expired timeout/cooldown entries")
        if self.state.paused:
            return
        await self.sessions.check_all()

    async def close(self) -> None:
        if self._live_check_task:
            self._live_check_task.cancel()
        stopped = self.sessions.stop_all()
        self.state.initialized = False
        await self.api.close()
        await self.ai.close()
        LOGGER.info(f"Engine closed ({stopped} session(s) stopped)")

    # ------------------------------------------------------------------
    # Control interface
    # ------------------------------------------------------------------

    async def start_channel(self, channel_id: str, channel_name: str | None = None) -> bool:
        """Register the channel if needed and start its session when it is live."""
        if channel_name or await self.channels.get_channel(channel_id) is None:
            await self.channels.upsert_channel(channel_id, channel_name or channel_id)
        if self.state.paused:
            LOGGER.info(f"[{channel_id}] engine paused, not starting")
            return False
        return await self.sessions.check_and_start_live(channel_id)

    async def stop_channel(self, channel_id: str) -> bool:
        return self.sessions.stop_session(channel_id)

    async def status(self) -> dict[str, Any]:
        return {
            "initialized": self.state.initialized,
            "paused": self.state.paused,
            "active_sessions": len(self.state.sessions),
            "channels": list(self.state.sessions),
            "sessions": [s.summary() for s in self.state.sessions.values()],
            "credentials": await self.pool.setup_status(),
        }

    async def check_live(self, channel_id: str | None = None) -> dict[str, bool]:
        """On-demand live check of one channel, or of every idle channel."""
        if channel_id is not None:
            return {channel_id: await self.sessions.check_and_start_live(channel_id)}
        return await self.sessions.check_all()

    def pause(self) -> int:
        """Stop every session and suppress automatic starts until resumed."""
        self.state.paused = True
        stopped = self.sessions.stop_all()
        LOGGER.info(f"Engine paused, {stopped} session(s) stopped")
        return stopped

    async def resume(self) -> dict[str, bool]:
        self.state.paused = False
        LOGGER.info("Engine resumed")
        return await self.sessions.check_all()

    async def set_moderation(self, channel_id: str, enabled: bool) -> Channel | None:
        channel = await self.channels.set_moderation(channel_id, enabled)
        if channel is not None:
            LOGGER.info(f"[{channel_id}] moderation {'enabled' if enabled else 'disabled'}")
        return channel

    async def leaderboard(self, channel_id: str, by: str = "points") -> list[dict[str, Any]]:
        top = await self.economy.leaderboard(channel_id, by)
        return [
            {
                "rank": rank,
                "viewer_id": v.viewer_id,
                "username": v.username,
                "points": v.points,
                "watch_minutes": v.watch_minutes,
            }
            for rank, v in enumerate(top, 1)
        ]

    async def setup_auto_message(
        self, channel_id: str, text: str, interval_minutes: int, enabled: bool = True
    ) -> Channel | None:
        """Persist the auto message and (re)schedule it if the channel is live."""
        if enabled and (not text.strip() or interval_minutes <= 0):
            raise ValueError("Auto message needs text and a positive interval")
        channel = await self.channels.set_auto_message(
            channel_id, text=text, interval_minutes=interval_minutes, enabled=enabled
        )
        if channel is None:
            return None
        if enabled:
            self.sessions.schedule_auto_message(channel_id, text, interval_minutes)
        else:
            self.sessions.schedule_auto_message(channel_id, "", 0)
        return channel
