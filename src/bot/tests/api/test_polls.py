"""
Tests for poll endpoints.
"""

from unittest.mock import MagicMock

import pytest
from httpx import AsyncClient

from core.exceptions import PollNotFound, TransientFetchError
from discord_bot.platform import DiscordChatPlatform
from models.poll import Choice, PollStatus
from services.provider import get_poll_orchestrator, get_poll_repository


@pytest.fixture
def api_client(app, client, orchestrator, repository):
    app.dependency_overrides[get_poll_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_poll_repository] = lambda: repository
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def reactions(platform, directory, make_user):
    directory.add("voter_a", 100)
    directory.add("voter_b", 10**12)
    directory.add("voter_c", 10**168)
    platform.react("m1", Choice.PEACE, make_user("a", "voter_a"))
    platform.react("m1", Choice.VOTING, make_user("b", "voter_b"), make_user("c", "voter_c"))
    return "m1"


@pytest.mark.unit
class TestListPolls:
    async def test_empty_registry(self, api_client: AsyncClient) -> None:
        response = await api_client.get("/api/v1/polls")
        assert response.status_code == 200
        assert response.json() == {"polls": [], "total": 0}

    async def test_lists_created_polls(self, api_client: AsyncClient, orchestrator) -> None:
        poll = await orchestrator.create_poll()

        response = await api_client.get("/api/v1/polls", params={"status": "open"})

        data = response.json()
        assert data["total"] == 1
        assert data["polls"][0]["id"] == poll.id
        assert data["polls"][0]["status"] == PollStatus.OPEN.value

    async def test_status_filter(self, api_client: AsyncClient, orchestrator) -> None:
        await orchestrator.create_poll()

        response = await api_client.get("/api/v1/polls", params={"status": "resolved"})

        assert response.json()["total"] == 0


@pytest.mark.unit
class TestPollResults:
    async def test_live_results(self, api_client: AsyncClient, reactions, record_store) -> None:
        response = await api_client.get(f"/api/v1/polls/{reactions}/results")

        assert response.status_code == 200
        data = response.json()
        assert data["total_voters"] == 3
        assert data["total_weight"] == 106
        assert data["winner"] == "voting"
        choices = {c["choice"]: c for c in data["choices"]}
        assert choices["voting"]["weighted"] == 105
        assert choices["peace"]["display_percentage"] == "0.9%"
        voter_c = next(v for v in choices["voting"]["voters"] if v["user_id"] == "c")
        assert voter_c["xp_level"] == str(10**168)
        rewards = {r["user_id"]: r["total"] for r in data["rewards"]}
        assert rewards == {"a": 1_000_000, "b": 6_000_000, "c": 16_000_000}
        # Preview never writes records
        assert record_store.records == []

    async def test_no_votes(self, api_client: AsyncClient) -> None:
        response = await api_client.get("/api/v1/polls/quiet/results")

        data = response.json()
        assert data["winner"] is None
        assert data["rewards"] == []
        assert [c["display_percentage"] for c in data["choices"]] == ["33.3%"] * 3

    async def test_missing_poll_returns_404(self, api_client: AsyncClient, platform) -> None:
        platform.fetch_errors = [PollNotFound("gone")]

        response = await api_client.get("/api/v1/polls/gone/results")

        assert response.status_code == 404

    async def test_invalid_discord_id_returns_404(self, api_client: AsyncClient, orchestrator) -> None:
        client = MagicMock()
        client.is_ready.return_value = True
        orchestrator.aggregator.collector.platform = DiscordChatPlatform(client)

        response = await api_client.get("/api/v1/polls/abc/results")

        assert response.status_code == 404
        assert "abc" in response.json()["detail"]

    async def test_platform_outage_returns_503(self, api_client: AsyncClient, platform) -> None:
        platform.fetch_errors = [TransientFetchError("down")] * 3

        response = await api_client.get("/api/v1/polls/m1/results")

        assert response.status_code == 503
