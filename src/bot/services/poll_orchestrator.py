"""
Poll Orchestrator

Runs the community poll lifecycle:

    created -> open -> resolving -> resolved

- Creation posts the announcement with one reaction per choice, registers the
  poll as open, records it in the record store and schedules resolution.
- Resolution tallies live reactions, splits the fund, picks the winner,
  computes XP rewards, persists per-voter records, announces the results and
  DMs each voter. A resolved poll cannot be resolved again.

Create and resolve each run under a named lock with a bounded lifetime.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

import structlog

from core.exceptions import (
    BotError,
    MembershipServiceError,
    PollAlreadyResolved,
    PollBusy,
    TransientFetchError,
)
from core.retry import retry_async
from models.poll import CHOICE_EMOJIS, Choice, Poll, PollStatus
from repositories.poll_repository import PollRepository
from schemas.records import FinalAwardRecord, PollCreatedRecord, VoteRecord
from services.fund_allocator import DEFAULT_FUND_AMOUNT, FundAllocation, allocate_funds
from services.lock_service import (
    DEFAULT_LOCK_TIMEOUT_SECONDS,
    LOCK_POLL_CREATION,
    LockService,
    poll_resolution_lock,
)
from services.notification_service import NotificationService
from services.poll_aggregator import PollAggregator, PollTally
from services.reaction_collector import ChatPlatform
from services.reward_calculator import RewardBreakdown, determine_winner, rewards_for_tally

logger = structlog.get_logger(__name__)

AnyPollRecord = PollCreatedRecord | VoteRecord | FinalAwardRecord


class RecordStore(Protocol):
    """Append-only store for poll records."""

    async def submit_record(self, record: AnyPollRecord) -> None: ...

    async def list_records(self, poll_id: str) -> list[AnyPollRecord]: ...


@dataclass
class PollOutcome:
    """Computed results of a poll at one point in time."""

    poll_id: str
    tally: PollTally
    allocations: dict[Choice, FundAllocation]
    winner: Optional[Choice]
    rewards: list[RewardBreakdown]
    fund_amount: float

    @property
    def total_xp(self) -> int:
        return sum(r.total for r in self.rewards)


@dataclass
class PollResolution(PollOutcome):
    """Outcome of a resolution pass, including delivery statistics."""

    records_written: int = 0
    record_failures: list[str] = field(default_factory=list)
    notifications_sent: int = 0
    notification_failures: int = 0
    resolved_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def format_poll_announcement(poll_duration_days: int, fund_amount: float) -> str:
    lines = [
        "📢 **Monthly Community Poll**",
        f"How should the community fund of **{fund_amount:,.0f}** be directed this month?",
        "",
    ]
    for choice in Choice:
        lines.append(f"{CHOICE_EMOJIS[choice]} **{choice.label}**")
    lines += [
        "",
        "React below to vote. Your voting power grows with your XP level.",
        f"Voting closes in {poll_duration_days} days.",
        "Make Everyone Great Again",
    ]
    return "\n".join(lines)


def format_results(outcome: PollOutcome) -> str:
    """Render poll results for the poll channel."""
    tally = outcome.tally
    lines = [f"📊 **Poll Results** (poll {outcome.poll_id})"]

    if tally.total_voters == 0:
        lines.append("No votes were cast. The fund is split evenly.")

    for choice in Choice:
        choice_tally = tally.choices[choice]
        allocation = outcome.allocations[choice]
        lines.append(
            f"{choice.emoji} **{choice.label}**: {choice_tally.count} votes, "
            f"{choice_tally.weighted} weighted, {allocation.display_percentage} "
            f"({allocation.display_amount} of {outcome.fund_amount:,.0f})"
        )

    lines.append(f"👥 Total voters: {tally.total_voters}")
    if outcome.winner is not None and tally.total_voters:
        lines.append(f"🏆 Winner: {outcome.winner.emoji} {outcome.winner.label}")
    if outcome.rewards:
        lines.append(f"✨ XP awarded: {outcome.total_xp:,} across {len(outcome.rewards)} voters")
    lines.append("Make Everyone Great Again")
    return "\n".join(lines)


def format_operator_summary(resolution: PollResolution) -> str:
    lines = [
        f"🗂️ **Poll {resolution.poll_id} resolved**",
        f"Records written: {resolution.records_written}",
        f"Record failures: {len(resolution.record_failures)}",
        f"Voter DMs sent: {resolution.notifications_sent}",
        f"Voter DMs failed: {resolution.notification_failures}",
    ]
    for failure in resolution.record_failures[:10]:
        lines.append(f"• {failure}")
    return "\n".join(lines)


class PollOrchestrator:
    """Sequences poll creation and resolution."""

    def __init__(
        self,
        platform: ChatPlatform,
        repository: PollRepository,
        aggregator: PollAggregator,
        record_store: RecordStore,
        notifications: NotificationService,
        lock_service: LockService,
        channel_id: Optional[str] = None,
        fund_amount: float = DEFAULT_FUND_AMOUNT,
        duration_days: int = 7,
        lock_timeout_seconds: int = DEFAULT_LOCK_TIMEOUT_SECONDS,
        max_attempts: int = 5,
        backoff_seconds: float = 1.0,
        schedule_resolution: Optional[Callable[[Poll], None]] = None,
    ):
        self.platform = platform
        self.repository = repository
        self.aggregator = aggregator
        self.record_store = record_store
        self.notifications = notifications
        self.lock_service = lock_service
        self.channel_id = channel_id
        self.fund_amount = fund_amount
        self.duration_days = duration_days
        self.lock_timeout_seconds = lock_timeout_seconds
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.schedule_resolution = schedule_resolution

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_poll(self, channel_id: Optional[str] = None, *, force: bool = False) -> Poll:
        """
        Post a new poll and open it for voting.

        Args:
            channel_id: Channel to post in (defaults to the configured poll channel)
            force: Skip the one-poll-per-month guard (manual creation)

        Raises:
            PollBusy: another creation is running, or this month's poll is already open
        """
        channel = channel_id or self.channel_id
        if not channel:
            raise BotError("No poll channel configured")

        async with self.lock_service.acquire_lock(LOCK_POLL_CREATION, self.lock_timeout_seconds) as acquired:
            if not acquired:
                raise PollBusy(LOCK_POLL_CREATION)

            now = datetime.now(timezone.utc)
            if not force:
                slot = f"{now.year:04d}-{now.month:02d}"
                for existing in await self.repository.get_open_polls():
                    if (existing.created_at.year, existing.created_at.month) == (now.year, now.month):
                        logger.info("poll_slot_taken", slot=slot, poll_id=existing.id)
                        raise PollBusy(f"poll_slot:{slot}")

            content = format_poll_announcement(self.duration_days, self.fund_amount)
            try:
                message_id = await retry_async(
                    lambda: self.platform.post_poll(channel, content, [c.emoji for c in Choice]),
                    attempts=self.max_attempts,
                    initial_delay=self.backoff_seconds,
                    operation="post_poll",
                )
            except Exception as e:
                logger.error("poll_creation_failed", channel_id=channel, error=str(e))
                await self.notifications.notify_operator(f"❌ Poll creation failed: {e}")
                raise

            poll = await self.repository.add(
                Poll(
                    id=str(message_id),
                    channel_id=channel,
                    created_at=now,
                    duration_days=self.duration_days,
                    status=PollStatus.CREATED,
                )
            )
            await self.repository.update_status(poll.id, PollStatus.OPEN)

            try:
                await self.record_store.submit_record(
                    PollCreatedRecord(poll_id=poll.id, channel_id=channel, closes_at=poll.closes_at)
                )
            except Exception as e:
                logger.warning("poll_created_record_failed", poll_id=poll.id, error=str(e))

            if self.schedule_resolution is not None:
                try:
                    self.schedule_resolution(poll)
                except Exception as e:
                    logger.error("poll_resolution_schedule_failed", poll_id=poll.id, error=str(e))

            logger.info(
                "poll_created",
                poll_id=poll.id,
                channel_id=channel,
                closes_at=poll.closes_at.isoformat(),
            )
            return poll

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    async def _compute_outcome(self, poll_id: str) -> PollOutcome:
        tally = await self.aggregator.tally(poll_id)
        allocations = allocate_funds(tally.weighted_totals, self.fund_amount)
        winner = determine_winner(tally.weighted_totals) if tally.total_voters else None
        rewards = rewards_for_tally(tally, winner) if winner is not None else []
        return PollOutcome(
            poll_id=poll_id,
            tally=tally,
            allocations=allocations,
            winner=winner,
            rewards=rewards,
            fund_amount=self.fund_amount,
        )

    async def preview(self, poll_id: str) -> PollOutcome:
        """Compute current results without persisting or notifying."""
        return await self._compute_outcome(poll_id)

    async def _already_has_awards(self, poll_id: str) -> bool:
        try:
            records = await self.record_store.list_records(poll_id)
        except (TransientFetchError, MembershipServiceError) as e:
            logger.warning("poll_record_check_failed", poll_id=poll_id, error=str(e))
            return False
        return any(isinstance(r, FinalAwardRecord) for r in records)

    async def resolve_poll(self, poll_id: str) -> PollResolution:
        """
        Resolve a poll exactly once.

        Raises:
            PollAlreadyResolved: the poll has final results already
            PollBusy: another resolution of this poll is running
            PollNotFound / TransientFetchError: reactions could not be read
        """
        lock_name = poll_resolution_lock(poll_id)
        async with self.lock_service.acquire_lock(lock_name, self.lock_timeout_seconds) as acquired:
            if not acquired:
                raise PollBusy(lock_name)

            poll = await self.repository.get_by_id(poll_id)
            registered = poll is not None
            if not registered:
                # Polls posted before a restart are only known by message id
                poll = await self.repository.add(
                    Poll(
                        id=poll_id,
                        channel_id=self.channel_id or "",
                        duration_days=self.duration_days,
                        status=PollStatus.OPEN,
                    )
                )

            if poll.status == PollStatus.RESOLVED:
                raise PollAlreadyResolved(poll_id)
            if poll.status == PollStatus.RESOLVING:
                raise PollBusy(lock_name)
            if await self._already_has_awards(poll_id):
                await self.repository.update_status(poll_id, PollStatus.RESOLVED)
                raise PollAlreadyResolved(poll_id)

            await self.repository.update_status(poll_id, PollStatus.RESOLVING)
            logger.info("poll_resolution_started", poll_id=poll_id)

            try:
                outcome = await self._compute_outcome(poll_id)
            except Exception as e:
                if registered:
                    await self.repository.update_status(poll_id, PollStatus.OPEN)
                else:
                    # Unconfirmed ids never stay in the registry
                    await self.repository.remove(poll_id)
                logger.error("poll_resolution_failed", poll_id=poll_id, error=str(e))
                await self.notifications.notify_operator(f"❌ Resolving poll {poll_id} failed: {e}")
                raise

            resolution = PollResolution(**vars(outcome))
            await self._persist(resolution)

            await self.repository.update_status(poll_id, PollStatus.RESOLVED)
            self.aggregator.resolver.forget_poll(poll_id)

            announce_channel = poll.channel_id or self.channel_id
            if announce_channel:
                await self.notifications.announce(announce_channel, format_results(resolution))

            stats = await self.notifications.notify_voters(poll_id, resolution.rewards)
            resolution.notifications_sent = stats["sent"]
            resolution.notification_failures = stats["errors"]

            await self.notifications.notify_operator(format_operator_summary(resolution))

            logger.info(
                "poll_resolved",
                poll_id=poll_id,
                winner=resolution.winner.value if resolution.winner else None,
                total_voters=resolution.tally.total_voters,
                records_written=resolution.records_written,
                record_failures=len(resolution.record_failures),
                notifications_sent=resolution.notifications_sent,
                notification_failures=resolution.notification_failures,
            )
            return resolution

    async def _persist(self, resolution: PollResolution) -> None:
        """Write vote and award records, continuing past individual failures."""
        records: list[AnyPollRecord] = []
        for voter in resolution.tally.all_voters():
            records.append(
                VoteRecord(
                    poll_id=resolution.poll_id,
                    voter_identity=voter.user_id,
                    choice=voter.choice,
                    voting_power=voter.voting_power,
                    verified=voter.verified,
                    submitted_at=resolution.resolved_at,
                )
            )
        for reward in resolution.rewards:
            records.append(
                FinalAwardRecord(
                    poll_id=resolution.poll_id,
                    voter_identity=reward.user_id,
                    choice=reward.choice,
                    voting_power=reward.voting_power,
                    verified=reward.verified,
                    xp_awarded=reward.total,
                    is_winner=reward.is_winner,
                    is_top_contributor=reward.is_top_contributor,
                    submitted_at=resolution.resolved_at,
                )
            )

        for record in records:
            try:
                await self.record_store.submit_record(record)
                resolution.records_written += 1
            except Exception as e:
                voter_id = getattr(record, "voter_identity", "?")
                logger.warning(
                    "poll_record_write_failed",
                    poll_id=resolution.poll_id,
                    record_type=record.record_type,
                    voter_id=voter_id,
                    error=str(e),
                )
                resolution.record_failures.append(f"{record.record_type} {voter_id}: {e}")
