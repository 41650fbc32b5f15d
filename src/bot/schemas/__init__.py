"""Schemas module initialization."""

from schemas.poll import PollListResponse, PollResultsResponse, PollSummary
from schemas.records import (
    FinalAwardRecord,
    PollCreatedRecord,
    RecordEnvelope,
    VoteRecord,
    parse_record,
    to_envelope,
)

__all__ = [
    "PollSummary",
    "PollListResponse",
    "PollResultsResponse",
    "PollCreatedRecord",
    "VoteRecord",
    "FinalAwardRecord",
    "RecordEnvelope",
    "parse_record",
    "to_envelope",
]
