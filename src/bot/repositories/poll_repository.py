"""
Poll repository.

Keeps the lifecycle state of polls created or resolved by this process.
Vote state is never stored here; it is always read live from the platform.
"""

from datetime import datetime, timezone
from typing import Optional

from models.poll import Poll, PollStatus


class PollRepository:
    """In-process registry of polls keyed by announcement message id."""

    def __init__(self) -> None:
        self._polls: dict[str, Poll] = {}

    async def get_by_id(self, poll_id: str) -> Optional[Poll]:
        """Get a poll by ID."""
        return self._polls.get(poll_id)

    async def add(self, poll: Poll) -> Poll:
        """Register a poll, replacing any earlier entry with the same id."""
        self._polls[poll.id] = poll
        return poll

    async def list_polls(self, status: Optional[PollStatus] = None) -> list[Poll]:
        """List polls, newest first."""
        polls = [p for p in self._polls.values() if status is None or p.status == status]
        return sorted(polls, key=lambda p: p.created_at, reverse=True)

    async def get_open_polls(self) -> list[Poll]:
        return await self.list_polls(PollStatus.OPEN)

    async def update_status(self, poll_id: str, status: PollStatus) -> Optional[Poll]:
        """Move a poll to a new lifecycle status."""
        poll = self._polls.get(poll_id)
        if poll is None:
            return None
        poll.status = status
        if status == PollStatus.RESOLVED:
            poll.resolved_at = datetime.now(timezone.utc)
        return poll

    async def remove(self, poll_id: str) -> bool:
        """Drop a poll from the registry."""
        return self._polls.pop(poll_id, None) is not None
