"""
discord.py implementation of the chat-platform operations used by the poll
engine and the verification flow.
"""

from typing import Optional

import discord
import structlog

from core.exceptions import PollNotFound, TransientFetchError
from models.voter import PlatformUser

logger = structlog.get_logger(__name__)


def _snowflake(value: str, kind: str) -> int:
    """Parse a Discord id; ids that cannot exist are reported as not found."""
    try:
        return int(value)
    except (TypeError, ValueError):
        raise PollNotFound(str(value), f"{kind} {value!r} is not a valid Discord id") from None


def to_platform_user(user: discord.abc.User) -> PlatformUser:
    return PlatformUser(
        id=str(user.id),
        username=user.name,
        display_name=getattr(user, "display_name", None) or user.name,
        bot=user.bot,
    )


class DiscordChatPlatform:
    """Poll posting, reaction reads and messaging through a discord.py client."""

    def __init__(self, client: discord.Client):
        self.client = client

    def _ensure_ready(self) -> None:
        if not self.client.is_ready():
            raise TransientFetchError("Discord client is not connected")

    async def _channel(self, channel_id: str) -> discord.abc.Messageable:
        self._ensure_ready()
        snowflake = _snowflake(channel_id, "Channel")
        channel = self.client.get_channel(snowflake)
        if channel is not None:
            return channel
        try:
            return await self.client.fetch_channel(snowflake)
        except discord.NotFound as e:
            raise PollNotFound(channel_id, f"Channel {channel_id} not found") from e
        except discord.HTTPException as e:
            raise TransientFetchError(f"Fetching channel {channel_id} failed: {e}") from e

    async def post_poll(self, channel_id: str, content: str, reactions: list[str]) -> str:
        channel = await self._channel(channel_id)
        try:
            message = await channel.send(content)
            for emoji in reactions:
                await message.add_reaction(emoji)
        except discord.HTTPException as e:
            raise TransientFetchError(f"Posting poll to {channel_id} failed: {e}") from e
        return str(message.id)

    async def fetch_reactions(self, channel_id: str, message_id: str) -> dict[str, list[PlatformUser]]:
        snowflake = _snowflake(message_id, "Poll message")
        channel = await self._channel(channel_id)
        try:
            message = await channel.fetch_message(snowflake)
        except discord.NotFound as e:
            raise PollNotFound(message_id, f"Poll message {message_id} not found") from e
        except discord.HTTPException as e:
            raise TransientFetchError(f"Fetching poll message {message_id} failed: {e}") from e

        reactions: dict[str, list[PlatformUser]] = {}
        try:
            for reaction in message.reactions:
                emoji = str(reaction.emoji)
                users = reactions.setdefault(emoji, [])
                async for user in reaction.users():
                    users.append(to_platform_user(user))
        except discord.HTTPException as e:
            raise TransientFetchError(f"Reading reactions of {message_id} failed: {e}") from e
        return reactions

    async def send_direct_message(self, user_id: str, content: str) -> None:
        self._ensure_ready()
        user = self.client.get_user(int(user_id)) or await self.client.fetch_user(int(user_id))
        await user.send(content)

    async def send_channel_message(self, channel_id: str, content: str) -> None:
        channel = await self._channel(channel_id)
        await channel.send(content)


class DiscordMemberRoles:
    """Role operations on one guild member."""

    def __init__(self, member: discord.Member):
        self.member = member

    def _role(self, role_id: str) -> Optional[discord.Role]:
        return self.member.guild.get_role(int(role_id))

    def has_role(self, role_id: str) -> bool:
        return any(str(role.id) == str(role_id) for role in self.member.roles)

    async def add_role(self, role_id: str) -> None:
        role = self._role(role_id)
        if role is None:
            raise ValueError(f"Role {role_id} not found in guild")
        await self.member.add_roles(role)

    async def remove_role(self, role_id: str) -> None:
        role = self._role(role_id)
        if role is not None:
            await self.member.remove_roles(role)


class MessageProgress:
    """Reports verification progress by editing one status message."""

    def __init__(self, message: discord.Message):
        self.message = message

    async def update(self, content: str) -> None:
        try:
            await self.message.edit(content=content)
        except discord.HTTPException as e:
            logger.warning("progress_update_failed", message_id=self.message.id, error=str(e))
