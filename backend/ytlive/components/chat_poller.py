"""Live chat polling: one tick fetches the next page and processes it in order."""

from __future__ import annotations

import logging

from ytlive.components.credential_pool import CredentialPool, NoCredentialAvailable
from ytlive.components.moderation import ModerationEngine
from ytlive.core.state import EngineState, LiveSession
from ytlive.services.youtube_api import (
    NotFoundError,
    PermissionDeniedError,
    QuotaExceededError,
    YouTubeAPIClient,
    YouTubeAPIError,
)

LOGGER: logging.Logger = logging.getLogger("Engine.ChatPoller")


class ChatIngestionLoop:
    """Fetch and process chat pages for a live session."""

    def __init__(
        self,
        state: EngineState,
        pool: CredentialPool,
        api: YouTubeAPIClient,
        moderation: ModerationEngine,
    ) -> None:
        self.state = state
        self.pool = pool
        self.api = api
        self.moderation = moderation

    async def poll(self, session: LiveSession) -> bool:
        """Run one tick. Returns False when the session has to end."""
        if not self.state.is_current(session):
            return True

        channel_id = session.channel_id
        try:
            if session.first_poll:
                # Only capture the cursor so chat from before we joined is skipped
                page = await self.pool.call(
                    lambda c: self.api.list_chat_messages(c, session.live_chat_id, cursor_only=True)
                )
            else:
                page = await self.pool.call(
                    lambda c: self.api.list_chat_messages(
                        c, session.live_chat_id, session.next_page_token
                    )
                )
        except QuotaExceededError:
            LOGGER.warning(f"[{channel_id}] poll hit quota, next tick uses another credential")
            return True
        except NoCredentialAvailable as e:
            LOGGER.warning(f"[{channel_id}] poll skipped: {e}")
            return True
        except (PermissionDeniedError, NotFoundError) as e:
            LOGGER.warning(f"[{channel_id}] live chat unavailable: {e}")
            return False
        except YouTubeAPIError as e:
            LOGGER.warning(f"[{channel_id}] poll failed: {e}")
            return True

        if not self.state.is_current(session):
            return True

        if page.next_page_token:
            session.next_page_token = page.next_page_token
        if session.first_poll:
            session.first_poll = False
            LOGGER.info(f"[{channel_id}] chat cursor captured, listening")
            return True

        for message in page.messages:
            if not self.state.is_current(session):
                LOGGER.debug(f"[{channel_id}] session ended, discarding rest of batch")
                break
            try:
                await self.moderation.handle(channel_id, message)
            except Exception as e:
                LOGGER.warning(
                    f"[{channel_id}] failed to process message {message.message_id}: "
                    f"{type(e).__name__}: {e}"
                )
        return True
