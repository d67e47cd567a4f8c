"""Engine entry point: ``python -m ytlive.main`` from the backend directory."""

import asyncio
import logging

from shared.database import DatabaseManager
from shared.migrations import MigrationRunner
from ytlive.core.bot import Bot
from ytlive.core.config import get_settings
from ytlive.core.health_server import HealthCheckServer
from ytlive.core.logging import setup_logging

LOGGER: logging.Logger = logging.getLogger("Engine")


async def runner() -> None:
    settings = get_settings()
    database = DatabaseManager(settings.database_url)
    await database.connect()

    health: HealthCheckServer | None = None
    bot: Bot | None = None
    try:
        await MigrationRunner(database.pool).run_pending()

        bot = Bot.from_pool(settings, database.pool)
        health = HealthCheckServer(bot, port=settings.health_port)
        await health.start()

        slots = settings.credential_slots()
        LOGGER.info(f"Starting engine with {len(slots)} configured credential slot(s)")
        await bot.start(slots)

        setup = await bot.pool.setup_status()
        if setup["configured"] == 0:
            for entry in await bot.pool.oauth_urls(settings.google_redirect_uri):
                LOGGER.warning(f"Authorize {entry['credential_id']}: {entry['url']}")

        await asyncio.Event().wait()
    finally:
        if bot is not None:
            await bot.close()
        if health is not None:
            await health.stop()
        await database.disconnect()


def main() -> None:
    setup_logging(get_settings().log_level)
    try:
        asyncio.run(runner())
    except KeyboardInterrupt:
        LOGGER.warning("Shutting down due to KeyboardInterrupt...")


if __name__ == "__main__":
    main()
