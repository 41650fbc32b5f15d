"""Domain models module."""

from models.poll import CHOICE_EMOJIS, Choice, Poll, PollStatus
from models.voter import (
    KnownVoter,
    MemberRecord,
    NameOnlyVoter,
    PlatformUser,
    ResolvedVoter,
    Voter,
    VotingPowerTier,
)

__all__ = [
    "CHOICE_EMOJIS",
    "Choice",
    "Poll",
    "PollStatus",
    "PlatformUser",
    "MemberRecord",
    "KnownVoter",
    "NameOnlyVoter",
    "ResolvedVoter",
    "Voter",
    "VotingPowerTier",
]
