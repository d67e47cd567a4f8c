"""Points economy: periodic awards, balance queries, leaderboards, gamble and ask."""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from shared.models.viewer import Viewer
from shared.repositories.viewer import ViewerRepository
from ytlive.components import messages
from ytlive.components.credential_pool import CredentialPool
from ytlive.components.messenger import ChatMessenger
from ytlive.core.state import EngineState
from ytlive.services.ai import AIAnswerService

if TYPE_CHECKING:
    from ytlive.components.commands import CommandContext
    from ytlive.core.config import EngineSettings

LOGGER: logging.Logger = logging.getLogger("Engine.Economy")

LEADERBOARD_SIZE = 5


@dataclass(frozen=True)
class GambleBand:
    low: int
    high: int
    multiplier: int
    label: str


# Partition of 1..100
GAMBLE_BANDS = (
    GambleBand(1, 40, 0, "lost"),
    GambleBand(41, 90, 2, "2x"),
    GambleBand(91, 99, 3, "3x"),
    GambleBand(100, 100, 10, "10x JACKPOT!"),
)

IDENTITY_QUESTIONS = {
    "who are you",
    "what are you",
    "who made you",
    "who created you",
    "who built you",
    "who is your creator",
    "who owns you",
    "are you a bot",
}

_PUNCTUATION = re.compile(r"[^\w\s]")


def band_for(roll: int) -> GambleBand:
    for band in GAMBLE_BANDS:
        if band.low <= roll <= band.high:
            return band
    raise ValueError(f"Roll out of range: {roll}")


def settle(balance: int, stake: int, multiplier: int) -> tuple[int, int]:
    """Return (raw delta, new balance); the balance never drops below zero."""
    delta = stake * (multiplier - 1)
    return delta, max(0, balance + delta)


def is_identity_question(question: str) -> bool:
    normalized = " ".join(_PUNCTUATION.sub(" ", question.lower()).split())
    return normalized in IDENTITY_QUESTIONS


def format_watch_time(minutes: int) -> str:
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}m"


class EconomyEngine:
    """Per-viewer points and watch time, plus the chat commands that use them."""

    def __init__(
        self,
        state: EngineState,
        settings: EngineSettings,
        viewers: ViewerRepository,
        messenger: ChatMessenger,
        pool: CredentialPool,
        ai: AIAnswerService,
    ) -> None:
        self.state = state
        self.settings = settings
        self.viewers = viewers
        self.messenger = messenger
        self.pool = pool
        self.ai = ai

    # ==================== Periodic award ====================

    async def award_points(self, channel_id: str) -> int:
        """Credit viewers active within the trailing award window."""
        minutes = self.settings.award_interval_minutes
        since = self.state.now() - timedelta(minutes=minutes)
        awarded = await self.viewers.award_active(
            channel_id, since, self.settings.award_points, minutes
        )
        LOGGER.info(
            f"[{channel_id}] awarded {self.settings.award_points} points and "
            f"{minutes} minutes to {awarded} viewer(s)"
        )
        return awarded

    # ==================== Read-only commands ====================

    async def points(self, ctx: CommandContext) -> None:
        viewer = await self.viewers.get_viewer(ctx.channel_id, ctx.viewer_id)
        if viewer is None:
            await self.messenger.send(ctx.channel_id, messages.UNSEEN_VIEWER.format(name=ctx.display_name))
            return
        await self.messenger.send(
            ctx.channel_id,
            f"{ctx.display_name} has {viewer.points} points and has watched for "
            f"{viewer.watch_minutes} minutes!",
        )

    async def hours(self, ctx: CommandContext) -> None:
        viewer = await self.viewers.get_viewer(ctx.channel_id, ctx.viewer_id)
        if viewer is None:
            await self.messenger.send(ctx.channel_id, messages.UNSEEN_VIEWER.format(name=ctx.display_name))
            return
        hours, minutes = divmod(viewer.watch_minutes, 60)
        await self.messenger.send(
            ctx.channel_id,
            f"{ctx.display_name}, you have watched for {hours} hours and {minutes} minutes!",
        )

    async def leaderboard(self, channel_id: str, by: str = "points") -> list[Viewer]:
        if by == "points":
            return await self.viewers.top_by_points(channel_id, LEADERBOARD_SIZE)
        if by in ("hours", "watch_minutes"):
            return await self.viewers.top_by_watch_minutes(channel_id, LEADERBOARD_SIZE)
        raise ValueError(f"Unknown leaderboard: {by}")

    async def top_points(self, ctx: CommandContext) -> None:
        top = await self.leaderboard(ctx.channel_id, "points")
        if not top:
            await self.messenger.send(ctx.channel_id, messages.NO_VIEWERS)
            return
        ranking = " | ".join(f"{i}. {v.username} ({v.points} points)" for i, v in enumerate(top, 1))
        await self.messenger.send(ctx.channel_id, f"Top Points: {ranking}")

    async def top_hours(self, ctx: CommandContext) -> None:
        top = await self.leaderboard(ctx.channel_id, "hours")
        if not top:
            await self.messenger.send(ctx.channel_id, messages.NO_VIEWERS)
            return
        ranking = " | ".join(
            f"{i}. {v.username} ({format_watch_time(v.watch_minutes)})" for i, v in enumerate(top, 1)
        )
        await self.messenger.send(ctx.channel_id, f"Top Watch Time: {ranking}")

    # ==================== Gamble ====================

    def _on_cooldown(self, command: str, ctx: CommandContext, seconds: int) -> bool:
        """Check and start the cooldown; rejected attempts still start it."""
        remaining = self.state.cooldown_remaining(command, ctx.channel_id, ctx.viewer_id)
        if remaining > 0:
            LOGGER.debug(f"[{ctx.channel_id}] !{command} cooldown for {ctx.display_name}: {remaining:.0f}s")
            return True
        self.state.start_cooldown(command, ctx.channel_id, ctx.viewer_id, seconds)
        return False

    async def gamble(self, ctx: CommandContext) -> None:
        if self._on_cooldown("gamble", ctx, self.settings.gamble_cooldown_seconds):
            return

        name = ctx.display_name
        viewer = await self.viewers.get_viewer(ctx.channel_id, ctx.viewer_id)
        if viewer is None:
            await self.messenger.send(ctx.channel_id, messages.UNSEEN_VIEWER.format(name=name))
            return

        arg = ctx.args.strip().lower()
        if arg == "all":
            if viewer.points <= 0:
                await self.messenger.send(ctx.channel_id, f"{name}, you don't have any points to gamble!")
                return
            stake = min(viewer.points, self.settings.gamble_all_cap)
        else:
            stake = int(arg) if arg.isascii() and arg.isdigit() else 0
            if stake <= 0:
                await self.messenger.send(
                    ctx.channel_id, f"{name}, please specify a valid amount of points to gamble!"
                )
                return

        if stake > viewer.points:
            await self.messenger.send(ctx.channel_id, f"{name}, you don't have enough points!")
            return

        roll = random.randint(1, 100)
        band = band_for(roll)
        delta, expected = settle(viewer.points, stake, band.multiplier)
        balance = await self.viewers.add_points(ctx.channel_id, ctx.viewer_id, delta)

        if band.multiplier == 0:
            text = f"Rolled {roll}, {name}, you lost {stake} points! Balance: {balance}"
        else:
            text = f"Rolled {roll}, {name}, you won {delta} points! ({band.label}) Balance: {balance}"
        LOGGER.info(
            f"[{ctx.channel_id}] gamble {name}: stake={stake} roll={roll} delta={delta} "
            f"balance={viewer.points}->{balance} (expected {expected})"
        )
        await self.messenger.send(ctx.channel_id, text)

    # ==================== Ask ====================

    async def ask(self, ctx: CommandContext) -> None:
        if self._on_cooldown("ask", ctx, self.settings.ask_cooldown_seconds):
            return

        name = ctx.display_name
        question = ctx.args.strip()
        if not question:
            await self.messenger.send(ctx.channel_id, f"{name}, please provide a question!")
            return

        if is_identity_question(question):
            await self.messenger.send(ctx.channel_id, f"{name}, {messages.IDENTITY_ANSWER}")
            return

        try:
            credential = await self.pool.select_next()
            answer = await self.ai.answer(question, credential.ai_api_key)
        except Exception as e:
            LOGGER.error(f"Ask command error: {type(e).__name__}: {e}")
            await self.messenger.send(ctx.channel_id, messages.ASK_APOLOGY.format(name=name))
            return

        await self.messenger.send(ctx.channel_id, f"{name}, {answer}")
