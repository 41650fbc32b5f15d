"""
Verification Service

Membership verification from an uploaded QR code:

1. decode the QR code (must point at qr1.be)
2. read the contact card's email
3. verify the email against SmallStreet memberships
4. assign the Discord role for the membership level
5. record the verified user (with the verification XP award)

Progress is reported by editing a single status message. One verification
per user runs at a time.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Protocol

import structlog

from core.config import Settings
from core.exceptions import (
    MembershipServiceError,
    QRCodeError,
    TransientFetchError,
)
from services.lock_service import LockService, verification_lock
from services.qr_service import QRService, is_qr1be_url
from services.reaction_collector import ChatPlatform
from services.smallstreet_client import SmallStreetClient

logger = structlog.get_logger(__name__)

ALLOWED_IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg")
VERIFICATION_LOCK_TIMEOUT_SECONDS = 120
SIGNATURE = "Make Everyone Great Again"


class MemberRoles(Protocol):
    """Role operations on the member being verified."""

    def has_role(self, role_id: str) -> bool: ...

    async def add_role(self, role_id: str) -> None: ...

    async def remove_role(self, role_id: str) -> None: ...


class ProgressReporter(Protocol):
    async def update(self, content: str) -> None: ...


class VerificationStatus(str, Enum):
    VERIFIED = "verified"
    ALREADY_VERIFIED = "already_verified"
    BUSY = "busy"
    INVALID_FILE = "invalid_file"
    INVALID_QR = "invalid_qr"
    NO_CONTACT = "no_contact"
    NOT_MEMBER = "not_member"
    UNAVAILABLE = "unavailable"
    ERROR = "error"


@dataclass(frozen=True)
class VerificationRequest:
    """A QR upload from a guild member."""

    user_id: str
    username: str
    display_name: str
    guild_id: str
    attachment_url: str
    attachment_name: str
    joined_at: Optional[datetime] = None


@dataclass(frozen=True)
class RoleAssignment:
    role_name: Optional[str]
    already_has: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class VerificationOutcome:
    status: VerificationStatus
    message: str
    email: Optional[str] = None
    membership: Optional[str] = None
    role: Optional[RoleAssignment] = None
    record_saved: bool = False


def is_supported_image(filename: str) -> bool:
    return filename.lower().endswith(ALLOWED_IMAGE_EXTENSIONS)


async def assign_role_for_membership(
    roles: MemberRoles,
    membership_type: str,
    megavoter_role_id: Optional[str],
    patron_role_id: Optional[str],
) -> RoleAssignment:
    """
    Give the member the role for their membership level.

    ``pioneer`` maps to MEGAvoter and ``patron`` to Patron; the other role is
    removed. Members who already hold the right role are left untouched.
    """
    if not megavoter_role_id or not patron_role_id:
        logger.error("role_ids_not_configured")
        return RoleAssignment(role_name=None, error="Role IDs not configured")

    level = membership_type.strip().lower()
    targets = {
        "pioneer": ("MEGAvoter", megavoter_role_id),
        "patron": ("Patron", patron_role_id),
    }
    if level not in targets:
        logger.warning("unknown_membership_type", membership_type=membership_type)
        return RoleAssignment(role_name=None, error=f"Unknown membership type: {membership_type}")

    role_name, role_id = targets[level]
    if roles.has_role(role_id):
        return RoleAssignment(role_name=role_name, already_has=True)

    try:
        for other_id in (megavoter_role_id, patron_role_id):
            if other_id != role_id and roles.has_role(other_id):
                await roles.remove_role(other_id)
        await roles.add_role(role_id)
    except Exception as e:
        logger.error("role_assignment_failed", membership_type=membership_type, error=str(e))
        return RoleAssignment(role_name=None, error=str(e))

    logger.info("role_assigned", role=role_name)
    return RoleAssignment(role_name=role_name)


class VerificationService:
    """Runs the QR verification flow for one upload."""

    def __init__(
        self,
        settings: Settings,
        qr_service: QRService,
        smallstreet: SmallStreetClient,
        platform: ChatPlatform,
        lock_service: LockService,
    ):
        self.settings = settings
        self.qr_service = qr_service
        self.smallstreet = smallstreet
        self.platform = platform
        self.lock_service = lock_service

    def _failure(self, text: str) -> str:
        return f"❌ {text}\n{SIGNATURE}\n{self.settings.SMALLSTREET_LOGIN_URL}"

    async def verify(
        self,
        request: VerificationRequest,
        roles: MemberRoles,
        progress: ProgressReporter,
    ) -> VerificationOutcome:
        """Verify one upload, reporting progress and returning the final outcome."""
        if not is_supported_image(request.attachment_name):
            outcome = VerificationOutcome(
                VerificationStatus.INVALID_FILE,
                self._failure("Please send a valid image file (PNG, JPG, or JPEG)."),
            )
            await progress.update(outcome.message)
            return outcome

        lock_name = verification_lock(request.user_id)
        async with self.lock_service.acquire_lock(lock_name, VERIFICATION_LOCK_TIMEOUT_SECONDS) as acquired:
            if not acquired:
                outcome = VerificationOutcome(
                    VerificationStatus.BUSY,
                    f"⚠️ Please wait for your current verification to complete.\n{SIGNATURE}",
                )
                await progress.update(outcome.message)
                return outcome

            try:
                outcome = await self._run(request, roles, progress)
            except QRCodeError as e:
                outcome = VerificationOutcome(VerificationStatus.INVALID_QR, self._failure(str(e)))
            except (TransientFetchError, MembershipServiceError) as e:
                logger.error("verification_service_unavailable", user_id=request.user_id, error=str(e))
                outcome = VerificationOutcome(
                    VerificationStatus.UNAVAILABLE,
                    self._failure("Service is temporarily unavailable.\nPlease try again in a few minutes."),
                )
            except Exception as e:
                logger.exception("verification_failed", user_id=request.user_id)
                outcome = VerificationOutcome(VerificationStatus.ERROR, self._failure(f"An error occurred: {e}"))

            await progress.update(outcome.message)
            return outcome

    async def _run(
        self,
        request: VerificationRequest,
        roles: MemberRoles,
        progress: ProgressReporter,
    ) -> VerificationOutcome:
        await progress.update("🔍 Processing QR code...")
        qr_data = await self.qr_service.read_qr_code(request.attachment_url)
        if not is_qr1be_url(qr_data):
            return VerificationOutcome(
                VerificationStatus.INVALID_QR,
                self._failure("Invalid QR code.\nMust be from qr1.be"),
            )

        await progress.update("🔍 Reading contact information...")
        contact = await self.qr_service.fetch_contact_info(qr_data)
        if contact is None:
            return VerificationOutcome(
                VerificationStatus.NO_CONTACT,
                self._failure("Could not read contact information.\nPlease try again."),
            )

        await progress.update("🔍 Verifying membership...")
        is_member, membership = await self.smallstreet.verify_membership(contact.email)
        if not is_member or not membership:
            return VerificationOutcome(
                VerificationStatus.NOT_MEMBER,
                f"❌ User not verified!\nPlease register and purchase a membership at "
                f"{self.settings.SMALLSTREET_LOGIN_URL} first.\n{SIGNATURE}",
                email=contact.email,
            )

        role = await assign_role_for_membership(
            roles,
            membership,
            self.settings.MEGAVOTER_ROLE_ID,
            self.settings.PATRON_ROLE_ID,
        )
        if role.already_has:
            return VerificationOutcome(
                VerificationStatus.ALREADY_VERIFIED,
                f"✅ You have already verified as {role.role_name}\n{SIGNATURE}",
                email=contact.email,
                membership=membership,
                role=role,
            )

        await progress.update("💾 Saving user data to database...")
        saved, save_error = await self._save_user(request, contact.email)
        await self._dm_result(request, contact.email, saved, save_error)

        lines = [
            f"✅ Verified SmallStreet Membership - {membership}",
            f"🎭 Discord Role Assigned: {role.role_name}"
            if role.role_name
            else f"⚠️ Role assignment failed: {role.error or 'Unknown error'}",
            "💾 User data saved to SmallStreet database"
            if saved
            else f"⚠️ Role assigned but database save failed: {save_error or 'Unknown error'}",
            SIGNATURE,
        ]
        return VerificationOutcome(
            VerificationStatus.VERIFIED,
            "\n".join(lines),
            email=contact.email,
            membership=membership,
            role=role,
            record_saved=saved,
        )

    async def _save_user(self, request: VerificationRequest, email: str) -> tuple[bool, Optional[str]]:
        joined_at = request.joined_at or datetime.now(timezone.utc)
        payload = {
            "discord_id": request.user_id,
            "discord_username": request.username,
            "discord_display_name": request.display_name,
            "email": email,
            "joined_at": joined_at.strftime("%Y-%m-%d %H:%M:%S"),
            "guild_id": request.guild_id,
            "joined_via_invite": self.settings.DISCORD_INVITE_URL,
            "xp_awarded": self.settings.VERIFICATION_XP_AWARD,
        }
        try:
            await self.smallstreet.insert_discord_user(payload)
            return True, None
        except (TransientFetchError, MembershipServiceError) as e:
            logger.error("verified_user_save_failed", user_id=request.user_id, error=str(e))
            return False, str(e)

    async def _dm_result(
        self,
        request: VerificationRequest,
        email: str,
        saved: bool,
        save_error: Optional[str],
    ) -> None:
        if saved:
            content = (
                "✅ **QR Verification - Database Update:** Your data has been updated in SmallStreet database!\n"
                f"**Email Used:** {email}\n"
                f"**XP Awarded:** {self.settings.VERIFICATION_XP_AWARD:,} XP\n"
                "**Status:** Successfully updated"
            )
        else:
            content = (
                "❌ **QR Verification - Database Update Failed:** Could not update your data in SmallStreet database.\n"
                f"**Email Used:** {email}\n"
                f"**Error:** {save_error or 'Unknown error'}\n"
                "**Status:** Please contact support"
            )
        try:
            await self.platform.send_direct_message(request.user_id, content)
        except Exception as e:
            logger.info("verification_dm_failed", user_id=request.user_id, error=str(e))
