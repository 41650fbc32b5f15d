"""Tests for the Discord client handlers and platform adapter."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from core.config import Settings
from core.exceptions import PollAlreadyResolved, PollNotFound, TransientFetchError
from discord_bot.client import SmallStreetBot, welcome_channel_message, welcome_direct_message
from discord_bot.platform import DiscordChatPlatform, DiscordMemberRoles
from models.poll import Choice, Poll


@pytest.fixture
def config() -> Settings:
    return Settings(_env_file=None, ADMIN_USER_ID="1", VERIFY_CHANNEL_ID="3000")


@pytest.fixture
def bot(config):
    bot = SmallStreetBot(config)
    bot.bind(MagicMock(), MagicMock())
    bot.orchestrator.create_poll = AsyncMock()
    bot.orchestrator.resolve_poll = AsyncMock()
    bot.verification.verify = AsyncMock()
    return bot


def _message(content: str, author_id: int = 1, channel_id: int = 1000):
    message = MagicMock()
    message.content = content
    message.author.id = author_id
    message.author.bot = False
    message.channel.id = channel_id
    message.attachments = []
    message.reply = AsyncMock()
    return message


@pytest.mark.unit
class TestAdminCommands:
    @pytest.mark.asyncio
    async def test_createpoll_forces_creation(self, bot):
        bot.orchestrator.create_poll.return_value = Poll(
            id="m9", channel_id="1000", created_at=datetime(2025, 1, 1, tzinfo=timezone.utc)
        )
        message = _message("!createpoll")

        await bot.on_message(message)

        bot.orchestrator.create_poll.assert_awaited_once_with(force=True)
        assert "m9" in message.reply.await_args.args[0]

    @pytest.mark.asyncio
    async def test_non_admin_is_ignored(self, bot):
        await bot.on_message(_message("!createpoll", author_id=2))
        bot.orchestrator.create_poll.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_resultpoll_requires_message_id(self, bot):
        message = _message("!resultpoll")

        await bot.on_message(message)

        bot.orchestrator.resolve_poll.assert_not_awaited()
        assert "Usage" in message.reply.await_args.args[0]

    @pytest.mark.asyncio
    async def test_resultpoll_reports_resolution(self, bot):
        resolution = MagicMock(poll_id="m9", winner=Choice.VOTING, total_xp=13_000_000)
        resolution.tally.total_voters = 3
        bot.orchestrator.resolve_poll.return_value = resolution
        message = _message("!resultpoll m9")

        await bot.on_message(message)

        bot.orchestrator.resolve_poll.assert_awaited_once_with("m9")
        reply = message.reply.await_args.args[0]
        assert "Winner: Voting" in reply
        assert "13,000,000" in reply

    @pytest.mark.asyncio
    async def test_resultpoll_already_resolved(self, bot):
        bot.orchestrator.resolve_poll.side_effect = PollAlreadyResolved("m9")
        message = _message("!resultpoll m9")

        await bot.on_message(message)

        assert "already been resolved" in message.reply.await_args.args[0]

    @pytest.mark.asyncio
    async def test_resultpoll_invalid_id_is_reported(self, bot, orchestrator, repository):
        client = MagicMock()
        client.is_ready.return_value = True
        orchestrator.aggregator.collector.platform = DiscordChatPlatform(client)
        bot.orchestrator = orchestrator
        message = _message("!resultpoll abc")

        await bot.on_message(message)

        reply = message.reply.await_args.args[0]
        assert reply.startswith("❌")
        assert "abc" in reply
        assert await repository.get_by_id("abc") is None

    @pytest.mark.asyncio
    async def test_bot_messages_ignored(self, bot):
        message = _message("!createpoll")
        message.author.bot = True

        await bot.on_message(message)

        bot.orchestrator.create_poll.assert_not_awaited()


@pytest.mark.unit
class TestWelcome:
    def test_messages_point_to_verify_channel(self, config):
        assert "<#3000>" in welcome_channel_message(42, config)
        assert "<@42>" in welcome_channel_message(42, config)
        assert "5,000,000 XP" in welcome_direct_message(config)

    @pytest.mark.asyncio
    async def test_dm_failure_is_swallowed(self, bot):
        member = MagicMock()
        member.id = 42
        member.send = AsyncMock(side_effect=discord.HTTPException(MagicMock(status=403), "Cannot send"))

        await bot.on_member_join(member)

        member.send.assert_awaited_once()


@pytest.mark.unit
class TestDiscordChatPlatform:
    def _client(self, channel):
        client = MagicMock()
        client.is_ready.return_value = True
        client.get_channel.return_value = channel
        return client

    @pytest.mark.asyncio
    async def test_not_ready_is_transient(self):
        client = MagicMock()
        client.is_ready.return_value = False

        with pytest.raises(TransientFetchError):
            await DiscordChatPlatform(client).fetch_reactions("1000", "5")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("channel_id,message_id", [("1000", "abc"), ("general", "5"), ("1000", "")])
    async def test_non_numeric_ids_raise_not_found(self, channel_id, message_id):
        channel = MagicMock()
        channel.fetch_message = AsyncMock()

        with pytest.raises(PollNotFound):
            await DiscordChatPlatform(self._client(channel)).fetch_reactions(channel_id, message_id)
        channel.fetch_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_message_raises_not_found(self):
        channel = MagicMock()
        channel.fetch_message = AsyncMock(side_effect=discord.NotFound(MagicMock(status=404), "Unknown Message"))

        with pytest.raises(PollNotFound):
            await DiscordChatPlatform(self._client(channel)).fetch_reactions("1000", "5")

    @pytest.mark.asyncio
    async def test_reactions_are_converted(self):
        voter = MagicMock(id=7, bot=False, display_name="Alice")
        voter.name = "alice"

        async def users():
            yield voter

        reaction = MagicMock(emoji=Choice.PEACE.emoji)
        reaction.users = users
        message = MagicMock(reactions=[reaction])
        channel = MagicMock()
        channel.fetch_message = AsyncMock(return_value=message)

        result = await DiscordChatPlatform(self._client(channel)).fetch_reactions("1000", "5")

        [user] = result[Choice.PEACE.emoji]
        assert (user.id, user.username, user.display_name, user.bot) == ("7", "alice", "Alice", False)


@pytest.mark.unit
class TestDiscordMemberRoles:
    @pytest.mark.asyncio
    async def test_role_lookup_and_assignment(self):
        role = MagicMock(id=111)
        member = MagicMock()
        member.roles = [MagicMock(id=222)]
        member.guild.get_role.return_value = role
        member.add_roles = AsyncMock()

        roles = DiscordMemberRoles(member)

        assert roles.has_role("222")
        assert not roles.has_role("111")
        await roles.add_role("111")
        member.add_roles.assert_awaited_once_with(role)
