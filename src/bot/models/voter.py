"""
Voter-side domain types: platform users, membership records, resolved voters.
"""

from dataclasses import dataclass
from typing import Literal, Optional, Union

from models.poll import Choice


@dataclass(frozen=True)
class PlatformUser:
    """A chat-platform user as seen on a reaction."""

    id: str
    username: str
    display_name: str
    bot: bool = False


@dataclass(frozen=True)
class MemberRecord:
    """A row from the membership API."""

    username: str
    xp: Optional[int] = None
    email: Optional[str] = None
    membership_name: Optional[str] = None


@dataclass(frozen=True)
class KnownVoter:
    """Voter whose identity resolved to a membership record with XP."""

    member: MemberRecord
    display_name: str


@dataclass(frozen=True)
class NameOnlyVoter:
    """Voter the membership API could not resolve; only a display name is known."""

    display_name: str


ResolvedVoter = Union[KnownVoter, NameOnlyVoter]

XpSource = Literal["membership", "fallback"]


@dataclass(frozen=True)
class VotingPowerTier:
    """XP lower bound and the voting power it grants."""

    min_xp: int
    power: int


@dataclass(frozen=True)
class Voter:
    """One voter's contribution to one choice of one poll."""

    user_id: str
    display_name: str
    xp_level: int
    voting_power: int
    choice: Choice
    verified: bool
    email: Optional[str] = None
    xp_source: XpSource = "membership"
