"""
Poll domain model.

A poll is keyed by the chat-platform message id of its announcement.
The set of choices is fixed; only the lifecycle status changes.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional


class Choice(str, Enum):
    """The three fixed poll options, in tie-break priority order."""

    PEACE = "peace"
    VOTING = "voting"
    DISASTER = "disaster"

    @property
    def emoji(self) -> str:
        return CHOICE_EMOJIS[self]

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @classmethod
    def from_emoji(cls, emoji: str) -> Optional["Choice"]:
        """Map a reaction emoji to a choice, ignoring variation selectors."""
        return _EMOJI_TO_CHOICE.get(emoji.replace("\ufe0f", ""))


CHOICE_EMOJIS: dict[Choice, str] = {
    Choice.PEACE: "☮️",
    Choice.VOTING: "🗳️",
    Choice.DISASTER: "🌋",
}

_EMOJI_TO_CHOICE = {emoji.replace("\ufe0f", ""): choice for choice, emoji in CHOICE_EMOJIS.items()}

# Enum definition order is the tie-break priority
CHOICE_PRIORITY: tuple[Choice, ...] = tuple(Choice)


class PollStatus(str, Enum):
    """Poll lifecycle status."""

    CREATED = "created"  # Announcement being posted
    OPEN = "open"  # Accepting reactions
    RESOLVING = "resolving"  # Tally and rewards in progress
    RESOLVED = "resolved"  # Terminal, results announced


@dataclass
class Poll:
    """A single voting round."""

    id: str
    channel_id: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_days: int = 7
    status: PollStatus = PollStatus.CREATED
    resolved_at: Optional[datetime] = None

    @property
    def closes_at(self) -> datetime:
        return self.created_at + timedelta(days=self.duration_days)

    @property
    def is_resolved(self) -> bool:
        return self.status == PollStatus.RESOLVED
