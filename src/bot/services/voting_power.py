"""
Voting Power Resolver

Maps a voter to an XP level and the XP level to a voting-power multiplier.

XP comes from the membership API when the voter's username resolves to a
record with an XP field. Otherwise the configured unknown-voter policy
supplies it and the fallback is logged. Resolved levels are cached per poll
so that repeated tallies of an unchanged reaction set agree.
"""

import random
from enum import Enum
from typing import Iterable, Optional, Protocol

import structlog

from models.voter import (
    KnownVoter,
    MemberRecord,
    NameOnlyVoter,
    PlatformUser,
    ResolvedVoter,
    VotingPowerTier,
    XpSource,
)

logger = structlog.get_logger(__name__)

# Highest threshold first; the first match wins
VOTING_POWER_TIERS: tuple[VotingPowerTier, ...] = (
    VotingPowerTier(min_xp=10**168, power=100),
    VotingPowerTier(min_xp=10**120, power=50),
    VotingPowerTier(min_xp=10**48, power=25),
    VotingPowerTier(min_xp=10**24, power=10),
    VotingPowerTier(min_xp=10**12, power=5),
    VotingPowerTier(min_xp=10**6, power=2),
)
DEFAULT_VOTING_POWER = 1

FALLBACK_XP_BASE = 1_000_000


def voting_power_for_xp(xp_level: int) -> int:
    """Return the multiplier for an XP level using the tier table."""
    for tier in VOTING_POWER_TIERS:
        if xp_level >= tier.min_xp:
            return tier.power
    return DEFAULT_VOTING_POWER


class UnknownVoterPolicy(str, Enum):
    """How XP is chosen for voters the membership API cannot resolve."""

    SEEDED = "seeded"  # Stable pseudo-random level in [base, 2 * base)
    BASE = "base"  # Exactly the base level

    def fallback_xp(self, poll_id: str, user_id: str) -> int:
        if self is UnknownVoterPolicy.BASE:
            return FALLBACK_XP_BASE
        rng = random.Random(f"{poll_id}:{user_id}")
        return FALLBACK_XP_BASE + rng.randrange(FALLBACK_XP_BASE)


class MembershipDirectory(Protocol):
    """Anything that can look chat usernames up in the membership store."""

    async def lookup_members(self, usernames: Iterable[str]) -> dict[str, MemberRecord]: ...


class ResolvedPower:
    """XP and voting power for one voter in one poll."""

    __slots__ = ("resolved", "xp_level", "voting_power", "xp_source")

    def __init__(self, resolved: ResolvedVoter, xp_level: int, xp_source: XpSource):
        self.resolved = resolved
        self.xp_level = xp_level
        self.voting_power = voting_power_for_xp(xp_level)
        self.xp_source = xp_source

    @property
    def verified(self) -> bool:
        return isinstance(self.resolved, KnownVoter)

    @property
    def email(self) -> Optional[str]:
        if isinstance(self.resolved, KnownVoter):
            return self.resolved.member.email
        return None


class VotingPowerResolver:
    """Resolves XP and voting power, caching results per poll."""

    def __init__(
        self,
        directory: MembershipDirectory,
        policy: UnknownVoterPolicy = UnknownVoterPolicy.SEEDED,
    ):
        self.directory = directory
        self.policy = policy
        self._cache: dict[tuple[str, str], ResolvedPower] = {}
        # Per poll: username -> member, None for misses and failed lookups
        self._members: dict[str, dict[str, Optional[MemberRecord]]] = {}

    async def prefetch(self, poll_id: str, users: Iterable[PlatformUser]) -> None:
        """Look every uncached voter of a poll up with a single directory call."""
        known = self._members.setdefault(poll_id, {})
        pending = sorted(
            {u.username for u in users if (poll_id, u.id) not in self._cache and u.username not in known}
        )
        if not pending:
            return
        try:
            found = await self.directory.lookup_members(pending)
        except Exception as e:
            logger.warning(
                "membership_prefetch_failed",
                poll_id=poll_id,
                voters=len(pending),
                error=str(e),
            )
            found = {}
        for username in pending:
            known[username] = found.get(username)

    async def _lookup(self, poll_id: str, user: PlatformUser) -> Optional[MemberRecord]:
        known = self._members.get(poll_id, {})
        if user.username in known:
            return known[user.username]
        try:
            return (await self.directory.lookup_members([user.username])).get(user.username)
        except Exception as e:
            logger.warning(
                "membership_lookup_failed",
                poll_id=poll_id,
                user_id=user.id,
                username=user.username,
                error=str(e),
            )
            return None

    async def resolve(self, poll_id: str, user: PlatformUser) -> ResolvedPower:
        """Resolve one voter. Lookup failures fall back; they never raise."""
        key = (poll_id, user.id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        member = await self._lookup(poll_id, user)
        if member is not None and member.xp is not None:
            result = ResolvedPower(
                KnownVoter(member=member, display_name=user.display_name),
                xp_level=member.xp,
                xp_source="membership",
            )
        else:
            xp_level = self.policy.fallback_xp(poll_id, user.id)
            logger.warning(
                "voting_power_fallback",
                poll_id=poll_id,
                user_id=user.id,
                username=user.username,
                policy=self.policy.value,
                xp_level=xp_level,
            )
            result = ResolvedPower(
                NameOnlyVoter(display_name=user.display_name),
                xp_level=xp_level,
                xp_source="fallback",
            )

        self._cache[key] = result
        return result

    def forget_poll(self, poll_id: str) -> None:
        """Drop cached levels for a poll once it is resolved."""
        for key in [k for k in self._cache if k[0] == poll_id]:
            del self._cache[key]
        self._members.pop(poll_id, None)
