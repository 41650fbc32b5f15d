"""Repository modules for poll lifecycle state."""

from repositories.poll_repository import PollRepository

__all__ = [
    "PollRepository",
]
