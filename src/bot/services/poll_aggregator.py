"""
Poll Aggregator

Combines reaction state and voting power into per-choice counts and weighted
totals. Every call recomputes from the platform; nothing accumulates between
calls, so repeated tallies of unchanged reactions are identical.

A user reacting with several choices counts fully under each of them but
only once toward ``total_voters``.
"""

from dataclasses import dataclass, field

import structlog

from models.poll import Choice
from models.voter import Voter
from services.reaction_collector import ReactionCollector
from services.voting_power import VotingPowerResolver

logger = structlog.get_logger(__name__)


@dataclass
class ChoiceTally:
    """Votes for one choice."""

    choice: Choice
    count: int = 0
    weighted: int = 0
    voters: list[Voter] = field(default_factory=list)


@dataclass
class PollTally:
    """Votes for every choice of a poll."""

    poll_id: str
    choices: dict[Choice, ChoiceTally]
    total_voters: int

    @property
    def weighted_totals(self) -> dict[Choice, int]:
        return {choice: tally.weighted for choice, tally in self.choices.items()}

    @property
    def total_weight(self) -> int:
        return sum(self.weighted_totals.values())

    def all_voters(self) -> list[Voter]:
        """Voter records across choices, in choice priority order."""
        return [voter for choice in Choice for voter in self.choices[choice].voters]


class PollAggregator:
    """Computes a fresh PollTally from current reactions."""

    def __init__(self, collector: ReactionCollector, resolver: VotingPowerResolver):
        self.collector = collector
        self.resolver = resolver

    async def tally(self, poll_id: str) -> PollTally:
        """
        Tally a poll.

        Propagates PollNotFound and TransientFetchError from the collector.
        Voting-power lookups never abort the tally.
        """
        reactions = await self.collector.collect(poll_id)
        await self.resolver.prefetch(poll_id, [user for users in reactions.values() for user in users])

        choices: dict[Choice, ChoiceTally] = {}
        distinct_voters: set[str] = set()

        for choice in Choice:
            tally = ChoiceTally(choice=choice)
            for user in reactions.get(choice, []):
                power = await self.resolver.resolve(poll_id, user)
                tally.voters.append(
                    Voter(
                        user_id=user.id,
                        display_name=user.display_name,
                        xp_level=power.xp_level,
                        voting_power=power.voting_power,
                        choice=choice,
                        verified=power.verified,
                        email=power.email,
                        xp_source=power.xp_source,
                    )
                )
                tally.count += 1
                tally.weighted += power.voting_power
                distinct_voters.add(user.id)
            choices[choice] = tally

        result = PollTally(poll_id=poll_id, choices=choices, total_voters=len(distinct_voters))
        logger.info(
            "poll_tallied",
            poll_id=poll_id,
            total_voters=result.total_voters,
            counts={c.value: t.count for c, t in choices.items()},
            weighted={c.value: t.weighted for c, t in choices.items()},
        )
        return result
