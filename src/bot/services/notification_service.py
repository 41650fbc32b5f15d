"""
Notification Service

Sends poll results to voters by direct message and to the operator channel.
Delivery failures (for example a voter with DMs disabled) are logged and
counted, never raised.
"""

import structlog

from services.reaction_collector import ChatPlatform
from services.reward_calculator import RewardBreakdown

logger = structlog.get_logger(__name__)


def format_reward_message(poll_id: str, reward: RewardBreakdown) -> str:
    lines = [
        "🗳️ **Community poll resolved!**",
        f"**Poll:** {poll_id}",
        f"**Your vote:** {reward.choice.emoji} {reward.choice.label}",
        f"**Voting power:** {reward.voting_power}x",
        f"**Base reward:** {reward.base:,} XP",
    ]
    if reward.winner_bonus:
        lines.append(f"**Winning choice bonus:** {reward.winner_bonus:,} XP")
    if reward.top_contributor_bonus:
        lines.append(f"**Top contributor bonus:** {reward.top_contributor_bonus:,} XP")
    lines.append(f"**Total awarded:** {reward.total:,} XP")
    lines.append("Make Everyone Great Again")
    return "\n".join(lines)


class NotificationService:
    """Delivers poll notifications through the chat platform."""

    def __init__(self, platform: ChatPlatform, operator_channel_id: str | None = None):
        self.platform = platform
        self.operator_channel_id = operator_channel_id

    async def notify_voters(self, poll_id: str, rewards: list[RewardBreakdown]) -> dict:
        """
        DM every rewarded voter.

        Returns:
            Dict with notification stats
        """
        sent = 0
        errors = 0

        for reward in rewards:
            try:
                await self.platform.send_direct_message(
                    reward.user_id,
                    format_reward_message(poll_id, reward),
                )
                sent += 1
            except Exception as e:
                logger.warning(
                    "voter_notification_failed",
                    poll_id=poll_id,
                    user_id=reward.user_id,
                    error=str(e),
                )
                errors += 1

        logger.info("voter_notifications_sent", poll_id=poll_id, sent=sent, errors=errors)
        return {"sent": sent, "errors": errors}

    async def notify_operator(self, content: str) -> bool:
        """Post to the operator channel when one is configured."""
        if not self.operator_channel_id:
            logger.debug("operator_channel_not_configured")
            return False
        try:
            await self.platform.send_channel_message(self.operator_channel_id, content)
            return True
        except Exception as e:
            logger.warning("operator_notification_failed", error=str(e))
            return False

    async def announce(self, channel_id: str, content: str) -> bool:
        """Post to a public channel, swallowing delivery errors."""
        try:
            await self.platform.send_channel_message(channel_id, content)
            return True
        except Exception as e:
            logger.warning("announcement_failed", channel_id=channel_id, error=str(e))
            return False
