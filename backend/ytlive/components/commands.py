"""Chat command parsing and routing."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ytlive.components.economy import EconomyEngine

LOGGER: logging.Logger = logging.getLogger("Engine.Commands")

COMMAND_PREFIXES = ("!", "/")


@dataclass
class CommandContext:
    channel_id: str
    viewer_id: str
    display_name: str
    command: str
    args: str = ""


def parse_command(text: str) -> tuple[str, str] | None:
    """Split ``!Name rest of text`` into ("name", "rest of text")."""
    text = text.strip()
    if not text or text[0] not in COMMAND_PREFIXES:
        return None
    parts = text[1:].split(maxsplit=1)
    if not parts:
        return None
    return parts[0].lower(), parts[1] if len(parts) > 1 else ""


class CommandDispatcher:
    """Flat, case-insensitive command table. Unknown commands are ignored."""

    def __init__(self, economy: EconomyEngine) -> None:
        self.handlers: dict[str, Callable[[CommandContext], Awaitable[None]]] = {
            "points": economy.points,
            "hours": economy.hours,
            "top": economy.top_points,
            "tophours": economy.top_hours,
            "gamble": economy.gamble,
            "ask": economy.ask,
        }

    async def dispatch(
        self, channel_id: str, viewer_id: str, display_name: str, text: str
    ) -> bool:
        parsed = parse_command(text)
        if parsed is None:
            return False
        command, args = parsed
        handler = self.handlers.get(command)
        if handler is None:
            return False

        LOGGER.debug(f"[{channel_id}] {display_name}: !{command} {args}")
        await handler(CommandContext(channel_id, viewer_id, display_name, command, args))
        return True
