"""Game Schemas - Pydantic models with field-level validation for API boundaries.

Invariants:
    - WordSelection.word_ids: exactly 2 entries (distinctness checked by the negotiator)
    - MessageCreate.content: stripped; length bound enforced by the coordinator

Design Decisions:
    - Responses reuse core records: one shape for REST bodies and SSE payloads
"""

from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from snakeoil.core.records import RoundRecord, SessionRecord


class RoleSelection(BaseModel):
    role_id: UUID


class WordSelection(BaseModel):
    """Seller's product pick."""
    word_ids: list[UUID] = Field(min_length=2, max_length=2)


class PitchVerdict(BaseModel):
    accepted: bool


class MessageCreate(BaseModel):
    content: str = Field(min_length=1, max_length=10_000)

    @field_validator("content")
    @classmethod
    def strip_content(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("content cannot be empty or whitespace")
        return v


class PitchResolution(BaseModel):
    """Resolved round plus the advanced session."""
    round: RoundRecord
    session: SessionRecord
