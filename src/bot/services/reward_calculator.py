"""
Reward Calculator

Deterministic XP rewards for poll participants:
- 1,000,000 XP base for voting
- 5,000,000 XP when the voter backed the winning choice
- 10,000,000 XP for top contributors (voting power 25 and above)
"""

from dataclasses import dataclass
from typing import Mapping

from models.poll import CHOICE_PRIORITY, Choice
from models.voter import Voter
from services.poll_aggregator import PollTally

BASE_REWARD = 1_000_000
WINNER_BONUS = 5_000_000
TOP_CONTRIBUTOR_BONUS = 10_000_000
TOP_CONTRIBUTOR_MIN_POWER = 25


@dataclass(frozen=True)
class RewardBreakdown:
    """XP awarded to one voter for one poll."""

    user_id: str
    display_name: str
    choice: Choice
    voting_power: int
    verified: bool
    base: int
    winner_bonus: int
    top_contributor_bonus: int

    @property
    def total(self) -> int:
        return self.base + self.winner_bonus + self.top_contributor_bonus

    @property
    def is_winner(self) -> bool:
        return self.winner_bonus > 0

    @property
    def is_top_contributor(self) -> bool:
        return self.top_contributor_bonus > 0


def determine_winner(weighted: Mapping[Choice, int]) -> Choice:
    """
    Return the choice with the greatest weighted total.

    Exact ties go to the earlier choice in priority order
    (peace, then voting, then disaster).
    """
    winner = CHOICE_PRIORITY[0]
    for choice in CHOICE_PRIORITY[1:]:
        if weighted.get(choice, 0) > weighted.get(winner, 0):
            winner = choice
    return winner


def is_top_contributor(voting_power: int) -> bool:
    return voting_power >= TOP_CONTRIBUTOR_MIN_POWER


def calculate_reward(voter: Voter, winning_choice: Choice) -> RewardBreakdown:
    """Reward for a single voter record."""
    return RewardBreakdown(
        user_id=voter.user_id,
        display_name=voter.display_name,
        choice=voter.choice,
        voting_power=voter.voting_power,
        verified=voter.verified,
        base=BASE_REWARD,
        winner_bonus=WINNER_BONUS if voter.choice == winning_choice else 0,
        top_contributor_bonus=TOP_CONTRIBUTOR_BONUS if is_top_contributor(voter.voting_power) else 0,
    )


def rewards_for_tally(tally: PollTally, winning_choice: Choice) -> list[RewardBreakdown]:
    """
    One reward per distinct voter.

    A voter who reacted with several choices is credited with the winning
    one when it is among them, otherwise with their first choice.
    """
    by_user: dict[str, Voter] = {}
    for voter in tally.all_voters():
        current = by_user.get(voter.user_id)
        if current is None or (voter.choice == winning_choice and current.choice != winning_choice):
            by_user[voter.user_id] = voter
    return [calculate_reward(voter, winning_choice) for voter in by_user.values()]
