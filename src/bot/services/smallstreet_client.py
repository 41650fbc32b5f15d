"""
SmallStreet API client.

Talks to the SmallStreet WordPress API for:
- membership verification by email
- XP lookup by Discord username
- inserting verified Discord users
- storing and reading poll records

Every call goes through the shared retry policy. Network errors and
retryable statuses become TransientFetchError; other failures raise
MembershipServiceError.
"""

import asyncio
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Iterable, Optional

import httpx
import structlog
from pydantic import ValidationError

from core.config import Settings
from core.exceptions import MembershipServiceError, TransientFetchError
from core.retry import raise_for_transient, retry_async
from models.voter import MemberRecord
from schemas.records import (
    FinalAwardRecord,
    PollCreatedRecord,
    VoteRecord,
    parse_record,
    to_envelope,
)

logger = structlog.get_logger(__name__)

# Fields the API has used for usernames and XP
_USERNAME_FIELDS = ("discord_username", "user_login", "username")
_XP_FIELDS = ("xp", "xp_level", "xp_awarded")


def parse_xp(value: Any) -> Optional[int]:
    """
    Parse an XP value without losing precision.

    Accepts ints, numeric strings (including exponent notation such as
    ``"1e48"``) and floats. Returns None for missing or unparseable values.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        parsed = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not parsed.is_finite():
        return None
    return int(parsed)


class SmallStreetClient:
    """Async client for the SmallStreet membership and record APIs."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.http_client = http_client
        self.settings = settings
        self.base_url = settings.SMALLSTREET_API_BASE.rstrip("/")
        self._sleep = sleep

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        headers = {**self.settings.smallstreet_headers, **kwargs.pop("headers", {})}

        async def _send() -> httpx.Response:
            try:
                response = await self.http_client.request(
                    method,
                    url,
                    headers=headers,
                    timeout=self.settings.HTTP_TIMEOUT_SECONDS,
                    **kwargs,
                )
            except httpx.TransportError as e:
                raise TransientFetchError(f"{method} {url} failed: {e}") from e
            raise_for_transient(response)
            return response

        return await retry_async(
            _send,
            attempts=self.settings.HTTP_MAX_ATTEMPTS,
            initial_delay=self.settings.HTTP_BACKOFF_SECONDS,
            operation=f"{method} {path}",
            sleep=self._sleep,
        )

    @staticmethod
    def _json_or_error(response: httpx.Response) -> Any:
        if response.is_error:
            raise MembershipServiceError(
                f"SmallStreet API returned HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise MembershipServiceError("SmallStreet API returned invalid JSON") from e

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    async def list_members(self) -> list[dict[str, Any]]:
        """Fetch the full member list."""
        response = await self._request("GET", self.settings.SMALLSTREET_MEMBERS_PATH)
        data = self._json_or_error(response)
        if not isinstance(data, list):
            raise MembershipServiceError("Unexpected member list format")
        return data

    async def verify_membership(self, email: str) -> tuple[bool, Optional[str]]:
        """
        Check whether an email belongs to a paying member.

        Returns:
            (is_member, membership_name)
        """
        target = email.strip().lower()
        for user in await self.list_members():
            user_email = str(user.get("user_email") or "").lower()
            if user_email == target and user.get("membership_id"):
                logger.info(
                    "membership_verified",
                    email=email,
                    membership=user.get("membership_name"),
                )
                return True, user.get("membership_name")

        logger.info("membership_not_found", email=email)
        return False, None

    async def lookup_members(self, usernames: Iterable[str]) -> dict[str, MemberRecord]:
        """
        Find the members whose Discord usernames match, with one list fetch.

        Returns a map keyed by the usernames as given; unmatched names are absent.
        """
        wanted = {name.strip().lower(): name for name in usernames}
        found: dict[str, MemberRecord] = {}
        if not wanted:
            return found
        for user in await self.list_members():
            names = {str(user.get(f) or "").strip().lower() for f in _USERNAME_FIELDS}
            for key in names & wanted.keys():
                username = wanted[key]
                if username in found:
                    continue
                xp = None
                for field_name in _XP_FIELDS:
                    xp = parse_xp(user.get(field_name))
                    if xp is not None:
                        break
                found[username] = MemberRecord(
                    username=username,
                    xp=xp,
                    email=user.get("user_email"),
                    membership_name=user.get("membership_name"),
                )
        return found

    async def insert_discord_user(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Record a verified Discord user and the XP granted for verifying."""
        response = await self._request(
            "POST",
            self.settings.SMALLSTREET_DISCORD_USER_PATH,
            json=payload,
        )
        result = self._json_or_error(response)
        logger.info("discord_user_inserted", discord_id=payload.get("discord_id"))
        return result if isinstance(result, dict) else {"result": result}

    # ------------------------------------------------------------------
    # Poll records
    # ------------------------------------------------------------------

    async def submit_record(self, record: PollCreatedRecord | VoteRecord | FinalAwardRecord) -> None:
        """Append one poll record to the store."""
        envelope = to_envelope(record)
        response = await self._request(
            "POST",
            self.settings.SMALLSTREET_POLL_RECORDS_PATH,
            json=envelope.model_dump(),
        )
        self._json_or_error(response)

    async def list_records(self, poll_id: str) -> list[PollCreatedRecord | VoteRecord | FinalAwardRecord]:
        """Read back every record stored for a poll. Malformed rows are skipped."""
        response = await self._request(
            "GET",
            self.settings.SMALLSTREET_POLL_RECORDS_PATH,
            params={"poll_id": poll_id},
        )
        if response.status_code == 404:
            return []
        rows = self._json_or_error(response)
        if not isinstance(rows, list):
            raise MembershipServiceError("Unexpected poll record list format")

        records = []
        for row in rows:
            try:
                records.append(parse_record(row))
            except (ValidationError, ValueError) as e:
                logger.warning("poll_record_unparseable", poll_id=poll_id, error=str(e)[:200])
        return [r for r in records if r.poll_id == poll_id]
