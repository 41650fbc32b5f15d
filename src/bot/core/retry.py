"""
Exponential backoff for external calls.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

import httpx
import structlog

from core.exceptions import TransientFetchError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Status codes worth retrying
RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    attempts: int = 5,
    initial_delay: float = 1.0,
    retry_on: tuple[type[BaseException], ...] = (TransientFetchError,),
    operation: str = "external_call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await ``func()`` until it succeeds or the attempt budget is spent.

    The delay starts at ``initial_delay`` and doubles after every failure.
    Exceptions outside ``retry_on`` propagate immediately; the last retryable
    error is re-raised once attempts are exhausted.
    """
    attempts = max(1, attempts)
    delay = initial_delay

    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except retry_on as e:
            if attempt >= attempts:
                logger.error(
                    "retry_exhausted",
                    operation=operation,
                    attempts=attempts,
                    error=str(e),
                )
                raise
            logger.warning(
                "retry_attempt_failed",
                operation=operation,
                attempt=attempt,
                max_attempts=attempts,
                retry_in_seconds=delay,
                error=str(e),
            )
            await sleep(delay)
            delay *= 2

    raise AssertionError("unreachable")  # pragma: no cover


def raise_for_transient(response: httpx.Response) -> None:
    """Turn retryable HTTP statuses into TransientFetchError."""
    if response.status_code in RETRYABLE_STATUS_CODES:
        raise TransientFetchError(
            f"HTTP {response.status_code} from {response.request.url}: {response.text[:200]}"
        )
