"""
Error taxonomy shared by the poll engine, the membership client and the bot.
"""


class BotError(Exception):
    """Base class for errors raised by this application."""


class PollNotFound(BotError):
    """The poll message, its channel, or the registry entry does not exist."""

    def __init__(self, poll_id: str, detail: str | None = None):
        self.poll_id = poll_id
        super().__init__(detail or f"Poll {poll_id} not found")


class TransientFetchError(BotError):
    """An external call failed in a way that may succeed on retry."""


class PollAlreadyResolved(BotError):
    """Resolution was requested for a poll that already has final results."""

    def __init__(self, poll_id: str):
        self.poll_id = poll_id
        super().__init__(f"Poll {poll_id} has already been resolved")


class PollBusy(BotError):
    """Another create or resolve operation holds the lock."""

    def __init__(self, lock_name: str):
        self.lock_name = lock_name
        super().__init__(f"Operation '{lock_name}' is already in progress")


class MembershipServiceError(BotError):
    """The membership API rejected a request or could not be reached."""


class QRCodeError(BotError):
    """A QR image could not be turned into contact information.

    The message is shown to the uploader as-is.
    """
