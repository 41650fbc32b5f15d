"""
Discord client: member welcome, admin poll commands and QR verification
uploads.
"""

from typing import Optional

import discord
import structlog

from core.config import Settings
from core.exceptions import BotError, PollAlreadyResolved, PollBusy, PollNotFound
from discord_bot.platform import DiscordMemberRoles, MessageProgress
from services.poll_orchestrator import PollOrchestrator
from services.verification_service import (
    SIGNATURE,
    VerificationRequest,
    VerificationService,
)

logger = structlog.get_logger(__name__)

CREATE_POLL_COMMAND = "!createpoll"
RESULT_POLL_COMMAND = "!resultpoll"


def build_intents() -> discord.Intents:
    intents = discord.Intents.default()
    intents.members = True
    intents.message_content = True
    intents.reactions = True
    return intents


def welcome_channel_message(user_id: int, settings: Settings) -> str:
    return (
        f"🎉 Welcome <@{user_id}> to the SmallStreet community!\n\n"
        "🎯 **Next Steps:**\n"
        f"• Upload your QR code in <#{settings.VERIFY_CHANNEL_ID}> to verify membership "
        "and get your Discord roles\n"
        "• You'll receive XP rewards after verification\n\n"
        f"🔗 **SmallStreet Account:** {settings.SMALLSTREET_LOGIN_URL}\n\n"
        f"*{SIGNATURE}* 🚀"
    )


def welcome_direct_message(settings: Settings) -> str:
    return (
        "🎉 **Welcome to SmallStreet!**\n\n"
        "🎯 **Next Steps:**\n"
        f"• Upload your QR code in <#{settings.VERIFY_CHANNEL_ID}> to verify membership\n"
        "• Get your Discord roles based on your membership level\n"
        f"• Receive **{settings.VERIFICATION_XP_AWARD:,} XP** rewards after verification\n\n"
        f"🔗 **SmallStreet Account:** {settings.SMALLSTREET_LOGIN_URL}\n\n"
        f"*{SIGNATURE}* 🚀"
    )


class SmallStreetBot(discord.Client):
    """Gateway client. Services are bound after construction."""

    def __init__(self, settings: Settings, **options):
        super().__init__(intents=build_intents(), **options)
        self.settings = settings
        self.orchestrator: Optional[PollOrchestrator] = None
        self.verification: Optional[VerificationService] = None

    def bind(self, orchestrator: PollOrchestrator, verification: VerificationService) -> None:
        self.orchestrator = orchestrator
        self.verification = verification

    @property
    def status_label(self) -> str:
        if self.is_closed():
            return "offline"
        return "online" if self.is_ready() else "connecting"

    async def on_ready(self) -> None:
        logger.info("discord_ready", user=str(self.user), guilds=len(self.guilds))

    async def on_member_join(self, member: discord.Member) -> None:
        logger.info("member_joined", user_id=member.id, guild_id=member.guild.id)

        if self.settings.WELCOME_CHANNEL_ID:
            channel = self.get_channel(int(self.settings.WELCOME_CHANNEL_ID))
            if channel is None:
                logger.warning("welcome_channel_not_found", channel_id=self.settings.WELCOME_CHANNEL_ID)
            else:
                try:
                    await channel.send(welcome_channel_message(member.id, self.settings))
                except discord.HTTPException as e:
                    logger.error("welcome_message_failed", user_id=member.id, error=str(e))

        try:
            await member.send(welcome_direct_message(self.settings))
        except discord.HTTPException as e:
            # Members with DMs disabled
            logger.info("welcome_dm_failed", user_id=member.id, error=str(e))

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return

        content = message.content.strip()
        if content.startswith(CREATE_POLL_COMMAND) or content.startswith(RESULT_POLL_COMMAND):
            await self.handle_admin_command(message, content)
            return

        if (
            self.settings.VERIFY_CHANNEL_ID
            and str(message.channel.id) == str(self.settings.VERIFY_CHANNEL_ID)
            and message.attachments
        ):
            await self.handle_verification_upload(message)

    def is_admin(self, user: discord.abc.User) -> bool:
        return bool(self.settings.ADMIN_USER_ID) and str(user.id) == str(self.settings.ADMIN_USER_ID)

    async def handle_admin_command(self, message: discord.Message, content: str) -> None:
        if not self.is_admin(message.author):
            logger.info("admin_command_rejected", user_id=message.author.id, command=content.split()[0])
            return
        if self.orchestrator is None:
            await message.reply("⚠️ Poll service is not available yet.")
            return

        parts = content.split()
        command = parts[0]
        try:
            if command == CREATE_POLL_COMMAND:
                poll = await self.orchestrator.create_poll(force=True)
                await message.reply(
                    f"✅ Poll created (ID: {poll.id}). Closes {poll.closes_at:%Y-%m-%d %H:%M} UTC."
                )
            elif command == RESULT_POLL_COMMAND:
                if len(parts) < 2:
                    await message.reply(f"Usage: `{RESULT_POLL_COMMAND} <message_id>`")
                    return
                resolution = await self.orchestrator.resolve_poll(parts[1])
                winner = resolution.winner.label if resolution.winner else "none"
                await message.reply(
                    f"✅ Poll {resolution.poll_id} resolved. Winner: {winner}. "
                    f"Voters: {resolution.tally.total_voters}. XP awarded: {resolution.total_xp:,}."
                )
        except PollAlreadyResolved as e:
            await message.reply(f"ℹ️ {e}")
        except PollBusy as e:
            await message.reply(f"⚠️ {e}")
        except PollNotFound as e:
            await message.reply(f"❌ {e}")
        except BotError as e:
            logger.error("admin_command_failed", command=command, error=str(e))
            await message.reply(f"❌ {command} failed: {e}")

    async def handle_verification_upload(self, message: discord.Message) -> None:
        if self.verification is None or not isinstance(message.author, discord.Member):
            return

        member = message.author
        attachment = message.attachments[0]
        progress_message = await message.reply("🔍 Processing QR code...")
        request = VerificationRequest(
            user_id=str(member.id),
            username=member.name,
            display_name=member.display_name,
            guild_id=str(member.guild.id),
            attachment_url=attachment.url,
            attachment_name=attachment.filename,
            joined_at=member.joined_at,
        )
        outcome = await self.verification.verify(
            request,
            DiscordMemberRoles(member),
            MessageProgress(progress_message),
        )
        logger.info("verification_finished", user_id=member.id, status=outcome.status.value)
