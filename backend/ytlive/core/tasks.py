"""Cancellable repeating background tasks (chat poll, point award, auto message)."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

LOGGER = logging.getLogger("Engine.Tasks")


def seconds_until_boundary(now: datetime, minutes: int) -> float:
    """Seconds from *now* to the next wall-clock multiple of *minutes*.

    At 12:03:30 with minutes=10 this is 390.0; exactly on a boundary it is a
    full period.
    """
    period = minutes * 60
    start_of_hour = now.replace(minute=0, second=0, microsecond=0)
    elapsed = (now - start_of_hour).total_seconds() % period
    return period - elapsed


class RepeatingTask:
    """Run *callback* every *interval* seconds until cancelled.

    The first run happens after *initial_delay* (defaults to *interval*).
    A failing callback is logged and the schedule continues.
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[], Awaitable[None]],
        interval: float,
        *,
        initial_delay: float | None = None,
    ) -> None:
        self.name = name
        self.callback = callback
        self.interval = interval
        self.initial_delay = interval if initial_delay is None else initial_delay
        self._task: asyncio.Task | None = None
        self._cancelled = False

    def start(self) -> RepeatingTask:
        if self._task is None and not self._cancelled:
            self._task = asyncio.create_task(self._run(), name=self.name)
        return self

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def cancel(self) -> None:
        """Stop future ticks.

        Called from inside the callback itself (a poll tick tearing down its own
        session), the running tick is allowed to finish and the loop exits.
        """
        self._cancelled = True
        if self._task is None or self._task.done():
            return
        if self._task is not asyncio.current_task():
            self._task.cancel()

    async def _run(self) -> None:
        delay = self.initial_delay
        while not self._cancelled:
            await asyncio.sleep(delay)
            delay = self.interval
            if self._cancelled:
                break
            try:
                await self.callback()
            except Exception as e:
                LOGGER.warning(f"[{self.name}] tick failed: {type(e).__name__}: {e}")
        LOGGER.debug(f"[{self.name}] stopped")

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "running" if self.running else "idle"
        return f"<RepeatingTask {self.name} every {timedelta(seconds=self.interval)} {state}>"
