"""
Poll endpoints.

Read-only views of the polls this bot instance knows about and of the live
results of any poll message. Results are computed on request from current
reactions; nothing is persisted or sent.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from models.poll import Choice, Poll, PollStatus
from repositories.poll_repository import PollRepository
from schemas.poll import (
    ChoiceResult,
    PollListResponse,
    PollResultsResponse,
    PollSummary,
    VoterReward,
    VoterSummary,
)
from services.poll_orchestrator import PollOrchestrator, PollOutcome
from services.provider import get_poll_orchestrator, get_poll_repository

router = APIRouter()


def poll_to_schema(poll: Poll) -> PollSummary:
    return PollSummary(
        id=poll.id,
        channel_id=poll.channel_id,
        status=poll.status,
        created_at=poll.created_at,
        closes_at=poll.closes_at,
        resolved_at=poll.resolved_at,
    )


def outcome_to_schema(outcome: PollOutcome, status: Optional[PollStatus] = None) -> PollResultsResponse:
    """Convert a computed outcome to the API response."""
    choices = []
    for choice in Choice:
        tally = outcome.tally.choices[choice]
        allocation = outcome.allocations[choice]
        choices.append(
            ChoiceResult(
                choice=choice,
                emoji=choice.emoji,
                count=tally.count,
                weighted=tally.weighted,
                percentage=allocation.percentage,
                display_percentage=allocation.display_percentage,
                allocation=allocation.amount,
                voters=[
                    VoterSummary(
                        user_id=v.user_id,
                        display_name=v.display_name,
                        voting_power=v.voting_power,
                        verified=v.verified,
                        xp_level=str(v.xp_level),
                        xp_source=v.xp_source,
                    )
                    for v in tally.voters
                ],
            )
        )

    return PollResultsResponse(
        poll_id=outcome.poll_id,
        status=status,
        total_voters=outcome.tally.total_voters,
        total_weight=outcome.tally.total_weight,
        fund_amount=outcome.fund_amount,
        winner=outcome.winner,
        choices=choices,
        rewards=[
            VoterReward(
                user_id=r.user_id,
                display_name=r.display_name,
                choice=r.choice,
                voting_power=r.voting_power,
                base=r.base,
                winner_bonus=r.winner_bonus,
                top_contributor_bonus=r.top_contributor_bonus,
                total=r.total,
            )
            for r in outcome.rewards
        ],
        total_xp=outcome.total_xp,
    )


@router.get("", response_model=PollListResponse)
async def list_polls(
    status: Optional[PollStatus] = Query(None, description="Filter by lifecycle status"),
    repository: PollRepository = Depends(get_poll_repository),
) -> PollListResponse:
    """List polls created or resolved by this bot instance, newest first."""
    polls = await repository.list_polls(status)
    return PollListResponse(polls=[poll_to_schema(p) for p in polls], total=len(polls))


@router.get("/{poll_id}/results", response_model=PollResultsResponse)
async def get_poll_results(
    poll_id: str,
    orchestrator: PollOrchestrator = Depends(get_poll_orchestrator),
    repository: PollRepository = Depends(get_poll_repository),
) -> PollResultsResponse:
    """
    Live results for a poll message.

    Includes per-choice tallies, the fund split, the current leader and the
    XP each voter would receive if the poll closed now.
    """
    outcome = await orchestrator.preview(poll_id)
    poll = await repository.get_by_id(poll_id)
    return outcome_to_schema(outcome, poll.status if poll else None)
