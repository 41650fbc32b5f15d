"""
Poll records kept in the SmallStreet record store.

The store keeps a generic envelope per row with the record body JSON-encoded
in a string ``payload`` field. Bodies are parsed once, here, into a record
type selected by ``recordType``.
"""

import json
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from models.poll import Choice


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _RecordBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    poll_id: str
    submitted_at: datetime = Field(default_factory=_utcnow)


class PollCreatedRecord(_RecordBase):
    """Written once when a poll announcement is posted."""

    record_type: Literal["poll_created"] = "poll_created"
    channel_id: str
    closes_at: datetime


class VoteRecord(_RecordBase):
    """One voter's vote for one choice, as tallied at resolution."""

    record_type: Literal["vote"] = "vote"
    voter_identity: str
    choice: Choice
    voting_power: int
    verified: bool


class FinalAwardRecord(_RecordBase):
    """XP awarded to one voter when the poll was resolved."""

    record_type: Literal["final_award"] = "final_award"
    voter_identity: str
    choice: Choice
    voting_power: int
    verified: bool
    xp_awarded: int
    is_winner: bool
    is_top_contributor: bool


PollRecord = Annotated[
    Union[PollCreatedRecord, VoteRecord, FinalAwardRecord],
    Field(discriminator="record_type"),
]

_poll_record_adapter: TypeAdapter[PollRecord] = TypeAdapter(PollRecord)


class RecordEnvelope(BaseModel):
    """Row shape used by the record store endpoint."""

    poll_id: str
    record_type: str
    payload: str


def to_envelope(record: PollCreatedRecord | VoteRecord | FinalAwardRecord) -> RecordEnvelope:
    return RecordEnvelope(
        poll_id=record.poll_id,
        record_type=record.record_type,
        payload=record.model_dump_json(by_alias=True),
    )


def parse_record(row: dict[str, Any]) -> PollCreatedRecord | VoteRecord | FinalAwardRecord:
    """
    Parse a stored row into its record type.

    Accepts either an envelope with a JSON ``payload`` string or an already
    decoded body.

    Raises:
        pydantic.ValidationError: unknown ``recordType`` or malformed body
    """
    payload = row.get("payload", row)
    if isinstance(payload, str):
        payload = json.loads(payload)
    return _poll_record_adapter.validate_python(payload)
