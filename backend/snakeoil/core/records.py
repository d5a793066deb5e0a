"""Row Records - immutable value objects for every row the change feed can carry.

Invariants:
    - Records are frozen: reconciliation replaces them, never mutates them
    - SessionRecord: in_progress implies guest_id set, waiting implies guest_id unset
    - RoundRecord: words set together, only after a role, and accepted only after words
    - version increments on every write of a row and orders its snapshots

Design Decisions:
    - Pydantic models (not dataclasses): change-feed payloads are untrusted dicts,
      model_validate gives the malformed-payload check for free
    - from_attributes=True: ORM rows convert directly via model_validate(row)
"""

from datetime import datetime, timezone
from typing import Annotated
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator

from snakeoil.core.domain_types import (
    ChangeOperation, ChangeTable, SessionStatus,
)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on read; every writer stores UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)


class SessionRecord(_Record):
    """One two-player game instance."""
    id: UUID
    host_id: str = Field(min_length=1)
    guest_id: str | None = None
    status: SessionStatus
    current_round: int = Field(ge=1)
    host_ready: bool = False
    guest_ready: bool = False
    version: int = Field(ge=1)
    created_at: UtcDatetime

    @model_validator(mode="after")
    def check_guest_matches_status(self) -> "SessionRecord":
        if self.status == SessionStatus.WAITING and self.guest_id is not None:
            raise ValueError("waiting session cannot have a guest")
        if self.status == SessionStatus.IN_PROGRESS and self.guest_id is None:
            raise ValueError("in_progress session requires a guest")
        return self


class RoundRecord(_Record):
    """One negotiation cycle: role pick, word pick, pitch, verdict."""
    id: UUID
    session_id: UUID
    round_number: int = Field(ge=1)
    customer_id: str
    seller_id: str
    selected_role_id: UUID | None = None
    word1_id: UUID | None = None
    word2_id: UUID | None = None
    accepted: bool | None = None
    version: int = Field(ge=1)
    created_at: UtcDatetime

    @model_validator(mode="after")
    def check_step_order(self) -> "RoundRecord":
        if (self.word1_id is None) != (self.word2_id is None):
            raise ValueError("word1_id and word2_id must be set together")
        if self.word1_id is not None and self.selected_role_id is None:
            raise ValueError("words cannot be set before the role")
        if self.accepted is not None and self.word1_id is None:
            raise ValueError("pitch cannot be resolved before words are set")
        return self

    @property
    def has_role(self) -> bool:
        return self.selected_role_id is not None

    @property
    def has_words(self) -> bool:
        return self.word1_id is not None

    @property
    def is_resolved(self) -> bool:
        return self.accepted is not None


class ChatMessageRecord(_Record):
    """Append-only chat line."""
    id: UUID
    session_id: UUID
    user_id: str
    content: str
    created_at: UtcDatetime


class RoleRecord(_Record):
    id: UUID
    name: str


class WordRecord(_Record):
    id: UUID
    word: str


class ChangeEvent(_Record):
    """A row-change notification as delivered by the pub/sub transport.

    `new` is the full row after the write; consumers treat it as a total
    replacement of that row's known fields, never as a delta.
    """
    table: ChangeTable
    operation: ChangeOperation
    session_id: UUID
    new: dict | None = None
    old: dict | None = None
