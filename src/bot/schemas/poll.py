"""
Poll-related Pydantic schemas for the HTTP API.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from models.poll import Choice, PollStatus


class PollSummary(BaseModel):
    """A poll known to this bot instance."""

    id: str
    channel_id: str
    status: PollStatus
    created_at: datetime
    closes_at: datetime
    resolved_at: Optional[datetime] = None


class PollListResponse(BaseModel):
    polls: list[PollSummary]
    total: int


class VoterSummary(BaseModel):
    """A voter's contribution to one choice."""

    user_id: str
    display_name: str
    voting_power: int
    verified: bool
    # XP can exceed 2**53; sent as a decimal string so JSON clients keep every digit
    xp_level: str
    xp_source: str


class ChoiceResult(BaseModel):
    """Tally and fund share for one choice."""

    choice: Choice
    emoji: str
    count: int
    weighted: int
    percentage: float = Field(..., description="Share of the fund, unrounded")
    display_percentage: str
    allocation: float
    voters: list[VoterSummary]


class VoterReward(BaseModel):
    """XP a voter would receive if the poll were resolved now."""

    user_id: str
    display_name: str
    choice: Choice
    voting_power: int
    base: int
    winner_bonus: int
    top_contributor_bonus: int
    total: int


class PollResultsResponse(BaseModel):
    """Live results for a poll."""

    poll_id: str
    status: Optional[PollStatus] = None
    total_voters: int
    total_weight: int
    fund_amount: float
    winner: Optional[Choice] = None
    choices: list[ChoiceResult]
    rewards: list[VoterReward]
    total_xp: int
