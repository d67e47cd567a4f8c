"""Outbound chat actions routed through the credential pool."""

from __future__ import annotations

import logging

from ytlive.components.credential_pool import CredentialPool, NoCredentialAvailable
from ytlive.core.state import EngineState
from ytlive.services.youtube_api import YouTubeAPIClient, YouTubeAPIError

LOGGER: logging.Logger = logging.getLogger("Engine.Messenger")


class ChatMessenger:
    """Send, delete and timeout in a channel's current live chat.

    Failures are logged and reported as ``False``; a chat action never
    breaks the event that triggered it.
    """

    def __init__(self, state: EngineState, pool: CredentialPool, api: YouTubeAPIClient) -> None:
        self.state = state
        self.pool = pool
        self.api = api

    def _chat_id(self, channel_id: str) -> str | None:
        session = self.state.sessions.get(channel_id)
        return session.live_chat_id if session else None

    async def send(self, channel_id: str, text: str) -> bool:
        chat_id = self._chat_id(channel_id)
        if chat_id is None:
            LOGGER.debug(f"[{channel_id}] no live session, dropping message: {text}")
            return False
        try:
            # quota-rejected sends were never posted
            await self.pool.call(
                lambda c: self.api.send_message(c, chat_id, text), retry_on_quota=True
            )
        except (YouTubeAPIError, NoCredentialAvailable) as e:
            LOGGER.warning(f"[{channel_id}] send failed: {type(e).__name__}: {e}")
            return False
        LOGGER.info(f"[{channel_id}] sent: {text}")
        return True

    async def delete(self, channel_id: str, message_id: str) -> bool:
        if self._chat_id(channel_id) is None:
            return False
        try:
            await self.pool.call(lambda c: self.api.delete_message(c, message_id))
        except (YouTubeAPIError, NoCredentialAvailable) as e:
            LOGGER.warning(f"[{channel_id}] delete {message_id} failed: {type(e).__name__}: {e}")
            return False
        return True

    async def timeout(self, channel_id: str, viewer_id: str, seconds: int) -> bool:
        chat_id = self._chat_id(channel_id)
        if chat_id is None:
            return False
        try:
            await self.pool.call(lambda c: self.api.timeout_user(c, chat_id, viewer_id, seconds))
        except (YouTubeAPIError, NoCredentialAvailable) as e:
            LOGGER.warning(f"[{channel_id}] timeout of {viewer_id} failed: {type(e).__name__}: {e}")
            return False
        LOGGER.info(f"[{channel_id}] timed out {viewer_id} for {seconds}s")
        return True
