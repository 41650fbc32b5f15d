"""
Reaction Collector

Reads the live reaction state of a poll announcement. The platform only
reports who is reacting now, so a reaction removed before resolution is not
counted.
"""

from typing import Protocol

import structlog

from core.exceptions import TransientFetchError
from core.retry import retry_async
from models.poll import Choice
from models.voter import PlatformUser

logger = structlog.get_logger(__name__)


class ChatPlatform(Protocol):
    """Chat-platform operations the poll engine relies on."""

    async def post_poll(self, channel_id: str, content: str, reactions: list[str]) -> str: ...

    async def fetch_reactions(self, channel_id: str, message_id: str) -> dict[str, list[PlatformUser]]: ...

    async def send_direct_message(self, user_id: str, content: str) -> None: ...

    async def send_channel_message(self, channel_id: str, content: str) -> None: ...


class ReactionCollector:
    """Turns a poll message's reactions into per-choice voter lists."""

    def __init__(
        self,
        platform: ChatPlatform,
        channel_id: str,
        max_attempts: int = 5,
        backoff_seconds: float = 1.0,
    ):
        self.platform = platform
        self.channel_id = channel_id
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

    async def collect(self, poll_id: str) -> dict[Choice, list[PlatformUser]]:
        """
        Return the non-bot users currently reacting with each choice.

        Raises:
            PollNotFound: channel or message is missing (not retried)
            TransientFetchError: the platform kept failing after retries
        """
        raw = await retry_async(
            lambda: self.platform.fetch_reactions(self.channel_id, poll_id),
            attempts=self.max_attempts,
            initial_delay=self.backoff_seconds,
            retry_on=(TransientFetchError,),
            operation="fetch_reactions",
        )

        collected: dict[Choice, list[PlatformUser]] = {choice: [] for choice in Choice}
        for emoji, users in raw.items():
            choice = Choice.from_emoji(emoji)
            if choice is None:
                continue
            seen = {u.id for u in collected[choice]}
            for user in users:
                if user.bot or user.id in seen:
                    continue
                seen.add(user.id)
                collected[choice].append(user)

        logger.debug(
            "reactions_collected",
            poll_id=poll_id,
            counts={c.value: len(u) for c, u in collected.items()},
        )
        return collected
