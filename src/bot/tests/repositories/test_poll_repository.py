"""
Tests for poll repository.
"""

from datetime import datetime, timedelta, timezone

import pytest

from models.poll import Poll, PollStatus
from repositories.poll_repository import PollRepository


def _poll(poll_id: str, days_ago: int = 0, status: PollStatus = PollStatus.OPEN) -> Poll:
    created = datetime.now(timezone.utc) - timedelta(days=days_ago)
    return Poll(id=poll_id, channel_id="1000", created_at=created, status=status)


@pytest.mark.unit
class TestPollRepository:
    async def test_add_and_get(self):
        repo = PollRepository()
        poll = await repo.add(_poll("m1"))

        assert await repo.get_by_id("m1") is poll
        assert await repo.get_by_id("missing") is None

    async def test_list_newest_first(self):
        repo = PollRepository()
        await repo.add(_poll("old", days_ago=40))
        await repo.add(_poll("new"))

        assert [p.id for p in await repo.list_polls()] == ["new", "old"]

    async def test_open_polls_filter(self):
        repo = PollRepository()
        await repo.add(_poll("open"))
        await repo.add(_poll("done", status=PollStatus.RESOLVED))

        assert [p.id for p in await repo.get_open_polls()] == ["open"]

    async def test_resolving_sets_timestamp(self):
        repo = PollRepository()
        await repo.add(_poll("m1"))

        await repo.update_status("m1", PollStatus.RESOLVING)
        assert (await repo.get_by_id("m1")).resolved_at is None

        poll = await repo.update_status("m1", PollStatus.RESOLVED)
        assert poll.is_resolved
        assert poll.resolved_at is not None

    async def test_update_unknown_poll(self):
        assert await PollRepository().update_status("missing", PollStatus.OPEN) is None

    async def test_remove(self):
        repo = PollRepository()
        await repo.add(_poll("m1"))

        assert await repo.remove("m1") is True
        assert await repo.get_by_id("m1") is None
        assert await repo.remove("m1") is False
