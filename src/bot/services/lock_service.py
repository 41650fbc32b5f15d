"""
Lock Service

Named, expiring locks for the bot's one-at-a-time operations
(poll creation, poll resolution, per-user QR verification).

Everything runs on a single event loop, so a check-and-set with no await in
between is atomic. A lock older than its timeout is treated as abandoned by a
crashed handler and released on the next acquisition attempt.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable, Optional
from uuid import uuid4

import structlog

logger = structlog.get_logger(__name__)

# Default lock timeout (how long a lock is valid before considered stale)
DEFAULT_LOCK_TIMEOUT_SECONDS = 30


@dataclass
class LockState:
    """A held lock."""

    lock_name: str
    token: str
    locked_at: datetime
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LockService:
    """
    Service for managing named locks.

    Usage:
        async with lock_service.acquire_lock("poll_creation") as acquired:
            if acquired:
                # Do the work
                pass
            else:
                # Another handler is running this operation
                pass
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._locks: dict[str, LockState] = {}

    def try_acquire(
        self,
        lock_name: str,
        timeout_seconds: int = DEFAULT_LOCK_TIMEOUT_SECONDS,
    ) -> Optional[str]:
        """
        Attempt to acquire a lock.

        Returns:
            A release token if acquired, None if another holder has it
        """
        now = self._clock()
        existing = self._locks.get(lock_name)

        if existing is not None:
            if existing.expires_at > now:
                logger.debug(
                    "lock_busy",
                    lock_name=lock_name,
                    expires_at=existing.expires_at.isoformat(),
                )
                return None
            logger.warning(
                "lock_force_released",
                lock_name=lock_name,
                locked_at=existing.locked_at.isoformat(),
            )

        token = uuid4().hex
        self._locks[lock_name] = LockState(
            lock_name=lock_name,
            token=token,
            locked_at=now,
            expires_at=now + timedelta(seconds=timeout_seconds),
        )
        logger.debug("lock_acquired", lock_name=lock_name)
        return token

    def release(self, lock_name: str, token: str) -> bool:
        """Release a lock if ``token`` still owns it."""
        existing = self._locks.get(lock_name)
        if existing is None or existing.token != token:
            logger.warning("lock_release_skipped", lock_name=lock_name)
            return False
        del self._locks[lock_name]
        logger.debug("lock_released", lock_name=lock_name)
        return True

    def is_locked(self, lock_name: str) -> bool:
        existing = self._locks.get(lock_name)
        return existing is not None and existing.expires_at > self._clock()

    @asynccontextmanager
    async def acquire_lock(
        self,
        lock_name: str,
        timeout_seconds: int = DEFAULT_LOCK_TIMEOUT_SECONDS,
    ) -> AsyncGenerator[bool, None]:
        """
        Context manager for acquiring and releasing a lock.

        Yields:
            True if lock acquired, False otherwise
        """
        token = self.try_acquire(lock_name, timeout_seconds)
        try:
            yield token is not None
        finally:
            if token is not None:
                self.release(lock_name, token)


# Lock names for standard operations
LOCK_POLL_CREATION = "poll_creation"


def poll_resolution_lock(poll_id: str) -> str:
    return f"poll_resolution:{poll_id}"


def verification_lock(user_id: str) -> str:
    return f"verification:{user_id}"
