"""
Pytest fixtures for SmallStreet bot tests.
"""

import os
from collections.abc import AsyncGenerator
from typing import Any, Callable, Iterable, Optional

import pytest
from httpx import ASGITransport, AsyncClient

# Set test environment variables before importing app
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("POLL_CHANNEL_ID", "1000")
os.environ.setdefault("OPERATOR_CHANNEL_ID", "2000")
os.environ.setdefault("VERIFY_CHANNEL_ID", "3000")
os.environ.setdefault("MEGAVOTER_ROLE_ID", "111")
os.environ.setdefault("PATRON_ROLE_ID", "222")
os.environ.setdefault("POLL_AUTO_SCHEDULE", "false")
os.environ.setdefault("HTTP_BACKOFF_SECONDS", "0")

from models.poll import Choice  # noqa: E402
from models.voter import MemberRecord, PlatformUser  # noqa: E402
from repositories.poll_repository import PollRepository  # noqa: E402
from services.lock_service import LockService  # noqa: E402
from services.notification_service import NotificationService  # noqa: E402
from services.poll_aggregator import PollAggregator  # noqa: E402
from services.poll_orchestrator import PollOrchestrator  # noqa: E402
from services.reaction_collector import ReactionCollector  # noqa: E402
from services.voting_power import UnknownVoterPolicy, VotingPowerResolver  # noqa: E402

POLL_CHANNEL = "1000"
OPERATOR_CHANNEL = "2000"


class FakeChatPlatform:
    """In-memory chat platform recording everything sent through it."""

    def __init__(self) -> None:
        self.reactions: dict[str, dict[str, list[PlatformUser]]] = {}
        self.posted: list[dict[str, Any]] = []
        self.direct_messages: list[tuple[str, str]] = []
        self.channel_messages: list[tuple[str, str]] = []
        self.dm_failures: set[str] = set()
        self.fetch_errors: list[Exception] = []
        self.post_error: Optional[Exception] = None
        self.fetch_calls = 0
        self._next_id = 5000

    def react(self, message_id: str, choice: Choice, *users: PlatformUser) -> None:
        emojis = self.reactions.setdefault(message_id, {})
        emojis.setdefault(choice.emoji, []).extend(users)

    async def post_poll(self, channel_id: str, content: str, reactions: list[str]) -> str:
        if self.post_error is not None:
            raise self.post_error
        self._next_id += 1
        message_id = str(self._next_id)
        self.posted.append(
            {"id": message_id, "channel_id": channel_id, "content": content, "reactions": reactions}
        )
        return message_id

    async def fetch_reactions(self, channel_id: str, message_id: str) -> dict[str, list[PlatformUser]]:
        self.fetch_calls += 1
        if self.fetch_errors:
            raise self.fetch_errors.pop(0)
        return {emoji: list(users) for emoji, users in self.reactions.get(message_id, {}).items()}

    async def send_direct_message(self, user_id: str, content: str) -> None:
        if user_id in self.dm_failures:
            raise RuntimeError("Cannot send messages to this user")
        self.direct_messages.append((user_id, content))

    async def send_channel_message(self, channel_id: str, content: str) -> None:
        self.channel_messages.append((channel_id, content))


class FakeMembershipDirectory:
    """Membership lookups served from a dict of username -> MemberRecord.

    A lookup fails as a whole when any requested username is in ``failing``.
    """

    def __init__(self, members: Optional[dict[str, MemberRecord]] = None) -> None:
        self.members = members or {}
        self.failing: set[str] = set()
        self.lookups: list[str] = []
        self.batches: list[list[str]] = []

    def add(self, username: str, xp: int, email: Optional[str] = None) -> None:
        self.members[username] = MemberRecord(username=username, xp=xp, email=email)

    async def lookup_members(self, usernames: Iterable[str]) -> dict[str, MemberRecord]:
        usernames = list(usernames)
        self.batches.append(usernames)
        self.lookups.extend(usernames)
        if self.failing.intersection(usernames):
            raise ConnectionError("membership API unreachable")
        return {name: self.members[name] for name in usernames if name in self.members}


class FakeRecordStore:
    """Append-only record store with optional per-record failures."""

    def __init__(self) -> None:
        self.records: list[Any] = []
        self.fail_when: Callable[[Any], bool] = lambda record: False

    async def submit_record(self, record: Any) -> None:
        if self.fail_when(record):
            raise RuntimeError(f"store rejected {record.record_type}")
        self.records.append(record)

    async def list_records(self, poll_id: str) -> list[Any]:
        return [r for r in self.records if r.poll_id == poll_id]


def _make_user(user_id: str, name: Optional[str] = None, bot: bool = False) -> PlatformUser:
    name = name or f"user{user_id}"
    return PlatformUser(id=user_id, username=name, display_name=name.title(), bot=bot)


@pytest.fixture
def make_user() -> Callable[..., PlatformUser]:
    """Factory for platform users; the username defaults to user<id>."""
    return _make_user


@pytest.fixture
def platform() -> FakeChatPlatform:
    return FakeChatPlatform()


@pytest.fixture
def directory() -> FakeMembershipDirectory:
    return FakeMembershipDirectory()


@pytest.fixture
def record_store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def lock_service() -> LockService:
    return LockService()


@pytest.fixture
def repository() -> PollRepository:
    return PollRepository()


@pytest.fixture
def resolver(directory: FakeMembershipDirectory) -> VotingPowerResolver:
    return VotingPowerResolver(directory, UnknownVoterPolicy.SEEDED)


@pytest.fixture
def collector(platform: FakeChatPlatform) -> ReactionCollector:
    return ReactionCollector(platform, POLL_CHANNEL, max_attempts=3, backoff_seconds=0)


@pytest.fixture
def aggregator(collector: ReactionCollector, resolver: VotingPowerResolver) -> PollAggregator:
    return PollAggregator(collector, resolver)


@pytest.fixture
def orchestrator(
    platform: FakeChatPlatform,
    repository: PollRepository,
    aggregator: PollAggregator,
    record_store: FakeRecordStore,
    lock_service: LockService,
) -> PollOrchestrator:
    return PollOrchestrator(
        platform=platform,
        repository=repository,
        aggregator=aggregator,
        record_store=record_store,
        notifications=NotificationService(platform, OPERATOR_CHANNEL),
        lock_service=lock_service,
        channel_id=POLL_CHANNEL,
        max_attempts=2,
        backoff_seconds=0,
    )


@pytest.fixture
async def app() -> Any:
    """Create FastAPI application for testing."""
    from main import app as fastapi_app

    return fastapi_app


@pytest.fixture
async def client(app: Any) -> AsyncGenerator[AsyncClient, None]:
    """Async test client. The lifespan is not run, so no bot or scheduler starts."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
