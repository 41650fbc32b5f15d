"""Tests for QR membership verification."""

from unittest.mock import AsyncMock

import pytest

from core.config import Settings
from core.exceptions import MembershipServiceError, QRCodeError, TransientFetchError
from services.lock_service import verification_lock
from services.qr_service import ContactInfo
from services.verification_service import (
    SIGNATURE,
    VerificationRequest,
    VerificationService,
    VerificationStatus,
    assign_role_for_membership,
    is_supported_image,
)

MEGAVOTER = "111"
PATRON = "222"


class FakeRoles:
    def __init__(self, *role_ids: str) -> None:
        self.roles = set(role_ids)
        self.fail_add = False

    def has_role(self, role_id: str) -> bool:
        return role_id in self.roles

    async def add_role(self, role_id: str) -> None:
        if self.fail_add:
            raise PermissionError("Missing Permissions")
        self.roles.add(role_id)

    async def remove_role(self, role_id: str) -> None:
        self.roles.discard(role_id)


class FakeProgress:
    def __init__(self) -> None:
        self.updates: list[str] = []

    async def update(self, content: str) -> None:
        self.updates.append(content)


@pytest.fixture
def config() -> Settings:
    return Settings(_env_file=None, MEGAVOTER_ROLE_ID=MEGAVOTER, PATRON_ROLE_ID=PATRON)


@pytest.fixture
def qr_service():
    service = AsyncMock()
    service.read_qr_code.return_value = "https://qr1.be/ABCD"
    service.fetch_contact_info.return_value = ContactInfo(email="member@example.com", name="Member")
    return service


@pytest.fixture
def smallstreet():
    client = AsyncMock()
    client.verify_membership.return_value = (True, "Pioneer")
    client.insert_discord_user.return_value = {"success": True}
    return client


@pytest.fixture
def service(config, qr_service, smallstreet, platform, lock_service) -> VerificationService:
    return VerificationService(config, qr_service, smallstreet, platform, lock_service)


def _request(filename: str = "qr.png", user_id: str = "42") -> VerificationRequest:
    return VerificationRequest(
        user_id=user_id,
        username="member",
        display_name="Member",
        guild_id="9",
        attachment_url=f"https://cdn.example.com/{filename}",
        attachment_name=filename,
    )


@pytest.mark.unit
class TestHelpers:
    @pytest.mark.parametrize(
        "filename,expected",
        [("a.png", True), ("a.JPG", True), ("a.jpeg", True), ("a.gif", False), ("png", False)],
    )
    def test_supported_images(self, filename, expected):
        assert is_supported_image(filename) is expected

    @pytest.mark.asyncio
    async def test_pioneer_gets_megavoter_and_loses_patron(self):
        roles = FakeRoles(PATRON)

        result = await assign_role_for_membership(roles, "Pioneer", MEGAVOTER, PATRON)

        assert result.role_name == "MEGAvoter"
        assert roles.roles == {MEGAVOTER}

    @pytest.mark.asyncio
    async def test_patron_role(self):
        roles = FakeRoles()
        result = await assign_role_for_membership(roles, "patron", MEGAVOTER, PATRON)
        assert result.role_name == "Patron"
        assert roles.roles == {PATRON}

    @pytest.mark.asyncio
    async def test_existing_role_is_reported(self):
        result = await assign_role_for_membership(FakeRoles(PATRON), "Patron", MEGAVOTER, PATRON)
        assert result.already_has is True

    @pytest.mark.asyncio
    async def test_unknown_membership_type(self):
        result = await assign_role_for_membership(FakeRoles(), "Gold", MEGAVOTER, PATRON)
        assert result.role_name is None
        assert "Unknown membership type" in result.error

    @pytest.mark.asyncio
    async def test_missing_role_configuration(self):
        result = await assign_role_for_membership(FakeRoles(), "pioneer", None, PATRON)
        assert result.error == "Role IDs not configured"

    @pytest.mark.asyncio
    async def test_role_failure_is_reported(self):
        roles = FakeRoles()
        roles.fail_add = True
        result = await assign_role_for_membership(roles, "pioneer", MEGAVOTER, PATRON)
        assert result.role_name is None
        assert "Missing Permissions" in result.error


@pytest.mark.unit
class TestVerify:
    @pytest.mark.asyncio
    async def test_successful_verification(self, service, smallstreet, platform, lock_service, config):
        roles = FakeRoles()
        progress = FakeProgress()

        outcome = await service.verify(_request(), roles, progress)

        assert outcome.status == VerificationStatus.VERIFIED
        assert outcome.email == "member@example.com"
        assert outcome.record_saved is True
        assert roles.roles == {MEGAVOTER}
        payload = smallstreet.insert_discord_user.await_args.args[0]
        assert payload["discord_id"] == "42"
        assert payload["email"] == "member@example.com"
        assert payload["xp_awarded"] == config.VERIFICATION_XP_AWARD
        assert platform.direct_messages[0][0] == "42"
        assert "5,000,000 XP" in platform.direct_messages[0][1]
        assert progress.updates[0] == "🔍 Processing QR code..."
        assert progress.updates[-1] == outcome.message
        assert outcome.message.endswith(SIGNATURE)
        assert not lock_service.is_locked(verification_lock("42"))

    @pytest.mark.asyncio
    async def test_rejects_unsupported_file(self, service, qr_service):
        outcome = await service.verify(_request("qr.gif"), FakeRoles(), FakeProgress())

        assert outcome.status == VerificationStatus.INVALID_FILE
        qr_service.read_qr_code.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_upload_asked_to_wait(self, service, lock_service, qr_service):
        lock_service.try_acquire(verification_lock("42"))

        outcome = await service.verify(_request(), FakeRoles(), FakeProgress())

        assert outcome.status == VerificationStatus.BUSY
        assert "Please wait" in outcome.message
        qr_service.read_qr_code.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_qr1be_code_rejected(self, service, qr_service):
        qr_service.read_qr_code.return_value = "https://example.com/card"

        outcome = await service.verify(_request(), FakeRoles(), FakeProgress())

        assert outcome.status == VerificationStatus.INVALID_QR
        assert "qr1.be" in outcome.message

    @pytest.mark.asyncio
    async def test_unreadable_qr(self, service, qr_service):
        qr_service.read_qr_code.side_effect = QRCodeError("Could not locate QR code in image.")

        outcome = await service.verify(_request(), FakeRoles(), FakeProgress())

        assert outcome.status == VerificationStatus.INVALID_QR
        assert "Could not locate QR code" in outcome.message

    @pytest.mark.asyncio
    async def test_missing_contact(self, service, qr_service):
        qr_service.fetch_contact_info.return_value = None

        outcome = await service.verify(_request(), FakeRoles(), FakeProgress())

        assert outcome.status == VerificationStatus.NO_CONTACT

    @pytest.mark.asyncio
    async def test_not_a_member(self, service, smallstreet):
        smallstreet.verify_membership.return_value = (False, None)
        roles = FakeRoles()

        outcome = await service.verify(_request(), roles, FakeProgress())

        assert outcome.status == VerificationStatus.NOT_MEMBER
        assert "smallstreet.app/login" in outcome.message
        assert roles.roles == set()
        smallstreet.insert_discord_user.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_already_verified(self, service, smallstreet):
        outcome = await service.verify(_request(), FakeRoles(MEGAVOTER), FakeProgress())

        assert outcome.status == VerificationStatus.ALREADY_VERIFIED
        assert "already verified as MEGAvoter" in outcome.message
        smallstreet.insert_discord_user.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_membership_api_down(self, service, smallstreet):
        smallstreet.verify_membership.side_effect = TransientFetchError("timeout")

        outcome = await service.verify(_request(), FakeRoles(), FakeProgress())

        assert outcome.status == VerificationStatus.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_save_failure_is_reported_not_raised(self, service, smallstreet, platform):
        smallstreet.insert_discord_user.side_effect = MembershipServiceError("HTTP 400")

        outcome = await service.verify(_request(), FakeRoles(), FakeProgress())

        assert outcome.status == VerificationStatus.VERIFIED
        assert outcome.record_saved is False
        assert "database save failed" in outcome.message
        assert "Database Update Failed" in platform.direct_messages[0][1]

    @pytest.mark.asyncio
    async def test_dm_failure_is_swallowed(self, service, platform):
        platform.dm_failures.add("42")

        outcome = await service.verify(_request(), FakeRoles(), FakeProgress())

        assert outcome.status == VerificationStatus.VERIFIED
        assert platform.direct_messages == []

    @pytest.mark.asyncio
    async def test_lock_released_after_failure(self, service, qr_service, lock_service):
        qr_service.read_qr_code.side_effect = RuntimeError("boom")

        outcome = await service.verify(_request(), FakeRoles(), FakeProgress())

        assert outcome.status == VerificationStatus.ERROR
        assert not lock_service.is_locked(verification_lock("42"))
