"""Unit tests for live detection, session lifecycle, chat polling and the control interface."""

import asyncio
from datetime import timedelta

import pytest

from fakes import CHANNEL_ID, CHAT_ID, chat
from shared.models.viewer import AdminStatus, Viewer, WelcomeStatus
from ytlive.components.messages import ONBOARDING_MESSAGE
from ytlive.core.state import LiveSession
from ytlive.services.youtube_api import (
    ChatPage,
    NotFoundError,
    PermissionDeniedError,
    QuotaExceededError,
    YouTubeAPIError,
)

VIDEO_ID = "vid-1"


@pytest.fixture
def broadcasting(api):
    api.live_videos[CHANNEL_ID] = VIDEO_ID
    api.chat_ids[VIDEO_ID] = CHAT_ID
    api.moderators[CHAT_ID] = {"UC_mod"}
    return api


def onboarding_count(api) -> int:
    return sum(1 for _, text in api.sent if text == ONBOARDING_MESSAGE)


@pytest.mark.unit
@pytest.mark.asyncio
class TestSessionStart:
    async def test_start_registers_session(self, bot, broadcasting, state):
        assert await bot.sessions.check_and_start_live(CHANNEL_ID) is True

        session = state.sessions[CHANNEL_ID]
        assert session.live_chat_id == CHAT_ID
        assert session.video_id == VIDEO_ID
        assert session.first_poll is True
        assert session.poll_task is not None and session.poll_task.running
        assert session.award_task is not None and session.award_task.running
        assert session.auto_message_task is None

    async def test_start_sends_onboarding_and_caches_moderators(self, bot, broadcasting, state):
        await bot.sessions.check_and_start_live(CHANNEL_ID)

        assert broadcasting.sent == [(CHAT_ID, ONBOARDING_MESSAGE)]
        assert state.moderator_cache[CHANNEL_ID] == {"UC_mod"}

    async def test_start_resets_session_flags(self, bot, broadcasting, viewer_repo):
        viewer_repo.add(
            Viewer(
                CHANNEL_ID,
                "UC_a",
                "a",
                admin_status=AdminStatus.REGULAR,
                welcome_status=WelcomeStatus.SENT,
            )
        )
        viewer_repo.add(Viewer(CHANNEL_ID, "UC_b", "b", welcome_status=WelcomeStatus.UNKNOWN))

        await bot.sessions.check_and_start_live(CHANNEL_ID)

        a = viewer_repo.rows[(CHANNEL_ID, "UC_a")]
        assert (a.admin_status, a.welcome_status) == (AdminStatus.UNKNOWN, WelcomeStatus.PENDING)
        assert viewer_repo.rows[(CHANNEL_ID, "UC_b")].welcome_status is WelcomeStatus.UNKNOWN

    async def test_concurrent_checks_start_one_session(self, bot, broadcasting, state):
        results = await asyncio.gather(
            bot.sessions.check_and_start_live(CHANNEL_ID),
            bot.sessions.check_and_start_live(CHANNEL_ID),
        )

        assert results == [True, True]
        assert list(state.sessions) == [CHANNEL_ID]
        assert onboarding_count(broadcasting) == 1

    async def test_repeat_check_keeps_existing_session(self, bot, broadcasting, state):
        await bot.sessions.check_and_start_live(CHANNEL_ID)
        session = state.sessions[CHANNEL_ID]

        assert await bot.sessions.check_and_start_live(CHANNEL_ID) is True
        assert state.sessions[CHANNEL_ID] is session
        assert onboarding_count(broadcasting) == 1

    async def test_failed_moderator_lookup_leaves_empty_cache(self, bot, broadcasting, state):
        broadcasting.fail("list_moderators", YouTubeAPIError("HTTP 500"))

        assert await bot.sessions.check_and_start_live(CHANNEL_ID) is True
        assert state.moderator_cache[CHANNEL_ID] == set()

    async def test_configured_auto_message_is_scheduled(self, bot, broadcasting, state, channel_repo):
        channel = channel_repo.rows[CHANNEL_ID]
        channel.auto_message_text = "Follow the channel!"
        channel.auto_message_interval = 15
        channel.auto_message_enabled = True

        await bot.sessions.check_and_start_live(CHANNEL_ID)

        assert state.sessions[CHANNEL_ID].auto_message_task is not None

    async def test_failed_start_is_cleaned_up(self, bot, broadcasting, state, viewer_repo, monkeypatch):
        async def broken(channel_id):
            raise RuntimeError("database down")

        monkeypatch.setattr(viewer_repo, "reset_session_flags", broken)

        assert await bot.sessions.check_and_start_live(CHANNEL_ID) is False
        assert state.sessions == {}

    async def test_stop_during_start_aborts(self, bot, broadcasting, state, viewer_repo, monkeypatch):
        async def stop_midway(channel_id):
            bot.sessions.stop_session(channel_id)
            return 0

        monkeypatch.setattr(viewer_repo, "reset_session_flags", stop_midway)

        assert await bot.sessions.check_and_start_live(CHANNEL_ID) is False
        assert state.sessions == {}
        assert broadcasting.sent == []
        assert CHANNEL_ID not in state.moderator_cache


@pytest.mark.unit
@pytest.mark.asyncio
class TestSessionEnd:
    async def test_broadcast_end_tears_down(self, bot, broadcasting, state):
        await bot.sessions.check_and_start_live(CHANNEL_ID)
        session = state.sessions[CHANNEL_ID]
        state.push_recent(CHANNEL_ID, "UC_v", "hi")

        broadcasting.live_videos.clear()
        assert await bot.sessions.check_and_start_live(CHANNEL_ID) is False

        assert CHANNEL_ID not in state.sessions
        assert CHANNEL_ID not in state.moderator_cache
        assert state.recent_messages == {}
        assert session.poll_task.cancelled
        assert session.award_task.cancelled

    async def test_failed_check_keeps_session(self, bot, broadcasting, state):
        await bot.sessions.check_and_start_live(CHANNEL_ID)
        broadcasting.fail("find_live_video", YouTubeAPIError("HTTP 503"))

        assert await bot.sessions.check_and_start_live(CHANNEL_ID) is True
        assert CHANNEL_ID in state.sessions

    async def test_video_without_chat_is_not_live(self, bot, api, state):
        api.live_videos[CHANNEL_ID] = VIDEO_ID

        assert await bot.sessions.check_and_start_live(CHANNEL_ID) is False
        assert state.sessions == {}

    async def test_missing_video_is_not_live(self, bot, api, state):
        api.live_videos[CHANNEL_ID] = VIDEO_ID
        api.fail("get_live_chat_id", NotFoundError("HTTP 404", status=404))

        assert await bot.sessions.check_and_start_live(CHANNEL_ID) is False

    async def test_stale_end_does_not_touch_new_session(self, bot, state):
        old = LiveSession(channel_id=CHANNEL_ID, live_chat_id="old-chat")
        new = LiveSession(channel_id=CHANNEL_ID, live_chat_id=CHAT_ID)
        state.sessions[CHANNEL_ID] = new

        assert bot.sessions.end_session(old) is False
        assert state.sessions[CHANNEL_ID] is new

    async def test_stop_unknown_channel(self, bot):
        assert await bot.stop_channel("UC_nobody") is False


@pytest.mark.unit
@pytest.mark.asyncio
class TestChatPolling:
    async def test_first_poll_only_captures_cursor(self, bot, api, state, viewer_repo):
        session = LiveSession(channel_id=CHANNEL_ID, live_chat_id=CHAT_ID)
        state.sessions[CHANNEL_ID] = session

        assert await bot.poller.poll(session) is True

        assert session.first_poll is False
        assert session.next_page_token == "cursor-0"
        assert api.calls[-1] == ("list_chat_messages", "project-1", (CHAT_ID, None, True))
        assert viewer_repo.rows == {}

    async def test_messages_processed_in_order(self, bot, api, live_session, viewer_repo):
        live_session.next_page_token = "cursor-0"
        api.pages.append(
            ChatPage(messages=[chat("UC_a", "first"), chat("UC_b", "second")], next_page_token="p2")
        )

        assert await bot.poller.poll(live_session) is True

        assert api.calls[0][2] == (CHAT_ID, "cursor-0", False)
        assert live_session.next_page_token == "p2"
        assert set(viewer_repo.rows) == {(CHANNEL_ID, "UC_a"), (CHANNEL_ID, "UC_b")}

    async def test_permission_denied_ends_session(self, bot, api, live_session, state):
        api.fail(
            "list_chat_messages",
            PermissionDeniedError("HTTP 403 liveChatEnded", status=403, reason="liveChatEnded"),
        )

        await bot.sessions._poll_tick(live_session)

        assert CHANNEL_ID not in state.sessions

    async def test_missing_chat_ends_session(self, bot, api, live_session):
        api.fail("list_chat_messages", NotFoundError("HTTP 404", status=404))

        assert await bot.poller.poll(live_session) is False

    async def test_quota_keeps_session_and_rotates(self, bot, api, live_session, state, credential_repo):
        api.fail("list_chat_messages", QuotaExceededError("quota", status=403, reason="quotaExceeded"))

        await bot.sessions._poll_tick(live_session)

        assert state.sessions[CHANNEL_ID] is live_session
        assert credential_repo.rows["project-1"].quota_exceeded is True

        await bot.poller.poll(live_session)
        assert api.credentials_used("list_chat_messages")[-1] != "project-1"

    async def test_transient_error_keeps_cursor(self, bot, api, live_session):
        live_session.next_page_token = "p5"
        api.fail("list_chat_messages", YouTubeAPIError("HTTP 500"))

        assert await bot.poller.poll(live_session) is True
        assert live_session.next_page_token == "p5"

    async def test_stopped_session_discards_rest_of_batch(self, bot, api, live_session, monkeypatch):
        handled = []

        async def handle(channel_id, message):
            handled.append(message.text)
            bot.sessions.stop_session(channel_id)

        monkeypatch.setattr(bot.moderation, "handle", handle)
        api.pages.append(ChatPage(messages=[chat("UC_a", "one"), chat("UC_b", "two")]))

        await bot.poller.poll(live_session)

        assert handled == ["one"]

    async def test_failing_message_does_not_stop_batch(self, bot, api, live_session, monkeypatch):
        handled = []

        async def handle(channel_id, message):
            handled.append(message.text)
            if message.text == "bad":
                raise RuntimeError("boom")

        monkeypatch.setattr(bot.moderation, "handle", handle)
        api.pages.append(ChatPage(messages=[chat("UC_a", "bad"), chat("UC_b", "good")]))

        assert await bot.poller.poll(live_session) is True
        assert handled == ["bad", "good"]

    async def test_poll_of_replaced_session_is_noop(self, bot, api, live_session, state):
        stale = LiveSession(channel_id=CHANNEL_ID, live_chat_id="old-chat", first_poll=False)

        assert await bot.poller.poll(stale) is True
        assert api.calls == []


@pytest.mark.unit
@pytest.mark.asyncio
class TestAutoMessage:
    async def test_sent_when_chat_active(self, bot, api, live_session, state, clock):
        state.last_message_at[CHANNEL_ID] = clock() - timedelta(minutes=5)

        await bot.sessions._send_auto_message(live_session, "Follow!")

        assert api.sent == [(CHAT_ID, "Follow!")]

    @pytest.mark.parametrize("idle", [None, timedelta(minutes=11)])
    async def test_skipped_when_chat_idle(self, bot, api, live_session, state, clock, idle):
        if idle is not None:
            state.last_message_at[CHANNEL_ID] = clock() - idle

        await bot.sessions._send_auto_message(live_session, "Follow!")

        assert api.sent == []

    async def test_setup_schedules_live_channel(self, bot, live_session, channel_repo):
        channel = await bot.setup_auto_message(CHANNEL_ID, "Follow!", 20)

        assert channel.auto_message_enabled
        assert channel_repo.rows[CHANNEL_ID].auto_message_interval == 20
        assert live_session.auto_message_task is not None

        task = live_session.auto_message_task
        await bot.setup_auto_message(CHANNEL_ID, "Follow!", 20, enabled=False)
        assert task.cancelled
        assert live_session.auto_message_task is None

    async def test_setup_for_idle_channel_only_persists(self, bot, channel_repo):
        channel = await bot.setup_auto_message(CHANNEL_ID, "Follow!", 20)

        assert channel is not None
        assert channel_repo.rows[CHANNEL_ID].auto_message_text == "Follow!"

    @pytest.mark.parametrize("text,interval", [("", 10), ("   ", 10), ("Follow!", 0)])
    async def test_setup_rejects_invalid(self, bot, text, interval):
        with pytest.raises(ValueError):
            await bot.setup_auto_message(CHANNEL_ID, text, interval)

    async def test_setup_unknown_channel(self, bot):
        assert await bot.setup_auto_message("UC_nobody", "Follow!", 10) is None


@pytest.mark.unit
@pytest.mark.asyncio
class TestControl:
    async def test_start_and_close(self, bot, broadcasting, state):
        await bot.start([])

        assert state.initialized
        assert CHANNEL_ID in state.sessions
        assert bot._live_check_task.running

        await bot.close()

        assert state.sessions == {}
        assert not state.initialized
        assert broadcasting.closed

    async def test_scheduled_check_prunes_expired_entries(self, bot, state, clock):
        state.start_timeout(CHANNEL_ID, "UC_v", 60)
        state.start_cooldown("gamble", CHANNEL_ID, "UC_v", 300)
        clock.advance(minutes=10)

        await bot._scheduled_live_check()

        assert state.timeouts == {}
        assert state.cooldowns == {}

    async def test_pause_and_resume(self, bot, broadcasting, state):
        await bot.sessions.check_and_start_live(CHANNEL_ID)

        assert bot.pause() == 1
        assert state.sessions == {}
        assert await bot.check_live(CHANNEL_ID) == {CHANNEL_ID: False}
        assert await bot.start_channel(CHANNEL_ID) is False

        assert await bot.resume() == {CHANNEL_ID: True}
        assert CHANNEL_ID in state.sessions

    async def test_start_channel_registers_unknown_channel(self, bot, channel_repo):
        assert await bot.start_channel("UC_new", "New Channel") is False
        assert channel_repo.rows["UC_new"].channel_name == "New Channel"

    async def test_status(self, bot, live_session):
        status = await bot.status()

        assert status["active_sessions"] == 1
        assert status["channels"] == [CHANNEL_ID]
        assert status["sessions"][0]["live_chat_id"] == CHAT_ID
        assert status["credentials"]["usable"] == 3

    async def test_set_moderation(self, bot, channel_repo):
        channel = await bot.set_moderation(CHANNEL_ID, False)

        assert channel is not None and not channel.moderation_enabled
        assert await bot.set_moderation("UC_nobody", True) is None

    async def test_leaderboard(self, bot, viewer_repo):
        viewer_repo.add(Viewer(CHANNEL_ID, "UC_a", "a", points=5, watch_minutes=90))
        viewer_repo.add(Viewer(CHANNEL_ID, "UC_b", "b", points=50, watch_minutes=10))

        by_points = await bot.leaderboard(CHANNEL_ID)
        by_hours = await bot.leaderboard(CHANNEL_ID, "hours")

        assert [(r["rank"], r["username"]) for r in by_points] == [(1, "b"), (2, "a")]
        assert [r["username"] for r in by_hours] == ["a", "b"]
