"""HTTP health check server"""

import asyncio
import logging
import os
import time
from typing import TYPE_CHECKING, Any

from aiohttp import web

if TYPE_CHECKING:
    from ytlive.core.bot import Bot

logger = logging.getLogger("Engine.Health")


class HealthCheckServer:
    """Read-only ``/health`` and ``/status`` endpoints."""

    def __init__(self, bot: "Bot | None" = None, host: str = "0.0.0.0", port: int | None = None):
        self.bot: Any = bot
        self.host = host
        # PORT from the hosting platform wins
        self.port = port or int(os.getenv("PORT", "4345"))
        self.app = web.Application()
        self.runner: web.AppRunner | None = None
        self._start_time: float = time.time()
        self._heartbeat_task: asyncio.Task | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        self.app.router.add_get("/", self.handle_root)
        self.app.router.add_get("/health", self.handle_health)
        self.app.router.add_get("/status", self.handle_status)

    def _ready(self) -> bool:
        return self.bot is not None and self.bot.state.initialized

    async def handle_root(self, request: web.Request) -> web.Response:
        return web.json_response({"service": "ytlive-engine", "status": "running"})

    async def handle_health(self, request: web.Request) -> web.Response:
        """Liveness, always 200"""
        ready = self._ready()
        return web.json_response({"status": "healthy" if ready else "starting", "ready": ready})

    async def handle_status(self, request: web.Request) -> web.Response:
        body: dict[str, Any] = {
            "service": "ytlive-engine",
            "uptime_seconds": int(time.time() - self._start_time),
        }
        if self.bot is not None:
            try:
                body.update(await self.bot.status())
            except Exception as e:
                logger.warning(f"Status collection failed: {type(e).__name__}: {e}")
                body["error"] = "status_unavailable"
                return web.json_response(body, status=503)
        return web.json_response(body)

    async def _heartbeat(self) -> None:
        """Log uptime and session count every five minutes."""
        while True:
            await asyncio.sleep(300)
            uptime = int(time.time() - self._start_time)
            sessions = len(self.bot.state.sessions) if self.bot else 0
            logger.info(f"Heartbeat: uptime={uptime}s, ready={self._ready()}, sessions={sessions}")

    async def start(self) -> None:
        try:
            self.runner = web.AppRunner(self.app)
            await self.runner.setup()

            site = web.TCPSite(self.runner, self.host, self.port)
            await site.start()

            self._heartbeat_task = asyncio.create_task(self._heartbeat())

            logger.info(f"Health server started on {self.host}:{self.port}")
            logger.info(f"  GET http://{self.host}:{self.port}/health - Health check")
            logger.info(f"  GET http://{self.host}:{self.port}/status - Engine status")

        except Exception as e:
            logger.exception(f"Failed to start health server: {e}")
            raise

    async def stop(self) -> None:
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
        if self.runner:
            try:
                await self.runner.cleanup()
                logger.info("Health server stopped")
            except Exception as e:
                logger.exception(f"Error stopping health server: {e}")
