"""
Service provider for dependency injection.

Builds the process-wide service graph once at startup and hands out the
shared instances.

Usage:
    from services.provider import get_poll_orchestrator, get_poll_repository

    # In FastAPI dependencies:
    async def some_endpoint(
        orchestrator: PollOrchestrator = Depends(get_poll_orchestrator),
    ):
        outcome = await orchestrator.preview(poll_id)
"""

from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from core.config import Settings, settings
from discord_bot.client import SmallStreetBot
from discord_bot.platform import DiscordChatPlatform
from repositories.poll_repository import PollRepository
from services.lock_service import LockService
from services.notification_service import NotificationService
from services.poll_aggregator import PollAggregator
from services.poll_orchestrator import PollOrchestrator
from services.qr_service import QRService
from services.reaction_collector import ReactionCollector
from services.smallstreet_client import SmallStreetClient
from services.verification_service import VerificationService
from services.voting_power import UnknownVoterPolicy, VotingPowerResolver

logger = structlog.get_logger(__name__)


@dataclass
class ServiceContainer:
    """Shared service instances."""

    http_client: httpx.AsyncClient
    bot: SmallStreetBot
    repository: PollRepository
    lock_service: LockService
    smallstreet: SmallStreetClient
    orchestrator: PollOrchestrator
    verification: VerificationService


_container: Optional[ServiceContainer] = None


def build_services(config: Settings, http_client: httpx.AsyncClient) -> ServiceContainer:
    """Wire the bot, the poll engine and the verification flow together."""
    from services.background_scheduler import schedule_poll_resolution

    bot = SmallStreetBot(config)
    platform = DiscordChatPlatform(bot)
    repository = PollRepository()
    lock_service = LockService()
    smallstreet = SmallStreetClient(http_client, config)

    resolver = VotingPowerResolver(smallstreet, UnknownVoterPolicy(config.UNKNOWN_VOTER_POLICY))
    collector = ReactionCollector(
        platform,
        config.POLL_CHANNEL_ID or "",
        max_attempts=config.HTTP_MAX_ATTEMPTS,
        backoff_seconds=config.HTTP_BACKOFF_SECONDS,
    )
    notifications = NotificationService(platform, config.OPERATOR_CHANNEL_ID)
    orchestrator = PollOrchestrator(
        platform=platform,
        repository=repository,
        aggregator=PollAggregator(collector, resolver),
        record_store=smallstreet,
        notifications=notifications,
        lock_service=lock_service,
        channel_id=config.POLL_CHANNEL_ID,
        fund_amount=config.POLL_FUND_AMOUNT,
        duration_days=config.POLL_DURATION_DAYS,
        lock_timeout_seconds=config.POLL_LOCK_TIMEOUT_SECONDS,
        max_attempts=config.HTTP_MAX_ATTEMPTS,
        backoff_seconds=config.HTTP_BACKOFF_SECONDS,
        schedule_resolution=schedule_poll_resolution,
    )
    verification = VerificationService(
        config,
        QRService(http_client, config),
        smallstreet,
        platform,
        lock_service,
    )
    bot.bind(orchestrator, verification)

    return ServiceContainer(
        http_client=http_client,
        bot=bot,
        repository=repository,
        lock_service=lock_service,
        smallstreet=smallstreet,
        orchestrator=orchestrator,
        verification=verification,
    )


async def init_services(config: Settings = settings) -> ServiceContainer:
    """Create the shared HTTP client and the service graph."""
    global _container
    if _container is None:
        http_client = httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_SECONDS)
        _container = build_services(config, http_client)
        logger.info("services_initialized")
    return _container


async def close_services() -> None:
    """Close the bot connection and the HTTP client."""
    global _container
    if _container is None:
        return
    if _container.bot.settings.DISCORD_TOKEN and not _container.bot.is_closed():
        await _container.bot.close()
    await _container.http_client.aclose()
    _container = None
    logger.info("services_closed")


def get_services() -> ServiceContainer:
    if _container is None:
        raise RuntimeError("Services are not initialized")
    return _container


def get_poll_orchestrator() -> PollOrchestrator:
    return get_services().orchestrator


def get_poll_repository() -> PollRepository:
    return get_services().repository


def get_bot_status() -> str:
    """Gateway connection state for the health endpoint."""
    if _container is None:
        return "not_initialized"
    if not _container.bot.settings.DISCORD_TOKEN:
        return "disabled"
    return _container.bot.status_label
