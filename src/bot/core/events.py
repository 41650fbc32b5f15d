"""
Application lifecycle event handlers.

Manages startup and shutdown of logging, the shared HTTP client and services,
the background scheduler and the Discord gateway connection.
"""

import asyncio
from typing import Callable

import structlog
from fastapi import FastAPI

from core.config import settings
from core.logging import configure_logging

logger = structlog.get_logger(__name__)


def _log_bot_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error("Discord client stopped", error=str(error), error_type=type(error).__name__)


def create_start_app_handler(app: FastAPI) -> Callable:
    """Create startup event handler."""

    async def start_app() -> None:
        configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
        logger.info("Starting SmallStreet bot...", env=settings.APP_ENV)

        from services.provider import init_services

        services = await init_services(settings)
        logger.info("Services initialized")

        # Start background scheduler (monthly polls, poll resolution)
        try:
            from services.background_scheduler import start_scheduler

            await start_scheduler()
            logger.info("Background scheduler started successfully")
        except Exception as e:
            logger.exception("Failed to start background scheduler", error=str(e))
            logger.warning("Polls will not be created or resolved automatically!")

        # Connect to Discord in the background
        if settings.DISCORD_TOKEN:
            app.state.bot_task = asyncio.create_task(services.bot.start(settings.DISCORD_TOKEN))
            app.state.bot_task.add_done_callback(_log_bot_exit)
            logger.info("Discord client starting")
        else:
            app.state.bot_task = None
            logger.warning("DISCORD_TOKEN not set; Discord client disabled")

        logger.info("SmallStreet bot started successfully")

    return start_app


def create_stop_app_handler(app: FastAPI) -> Callable:
    """Create shutdown event handler."""

    async def stop_app() -> None:
        logger.info("Shutting down SmallStreet bot...")

        # Stop background scheduler
        try:
            from services.background_scheduler import stop_scheduler

            await stop_scheduler()
            logger.info("Background scheduler stopped")
        except Exception as e:
            logger.warning(f"Background scheduler cleanup failed: {e}")

        from services.provider import close_services

        await close_services()

        bot_task = getattr(app.state, "bot_task", None)
        if bot_task is not None and not bot_task.done():
            bot_task.cancel()
            try:
                await bot_task
            except asyncio.CancelledError:
                pass

        logger.info("SmallStreet bot shutdown complete")

    return stop_app
